"""Pydantic shape of a generated episode script."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr, StringConstraints

NonBlankStr = Annotated[StrictStr, StringConstraints(strip_whitespace=True, min_length=1)]


class ScriptLine(BaseModel):
  speaker: NonBlankStr
  text: NonBlankStr
  emotion: StrictStr | None = None
  model_config = ConfigDict(extra="ignore")


class ScriptSegment(BaseModel):
  type: Literal["intro", "main", "outro"]
  duration: NonBlankStr = Field(description="Approximate segment length, MM:SS.")
  lines: list[ScriptLine] = Field(min_length=1)
  model_config = ConfigDict(extra="ignore")


class ScriptDocument(BaseModel):
  title: NonBlankStr
  description: NonBlankStr
  segments: list[ScriptSegment] = Field(min_length=1)
  model_config = ConfigDict(extra="ignore")
