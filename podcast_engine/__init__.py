"""Podcast generation pipeline service."""
