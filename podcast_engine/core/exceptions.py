import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from podcast_engine.pipeline.errors import PipelineError


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    error_message = str(value)
    if error_message:
      return f"{type(value).__name__}: {error_message}"
    return type(value).__name__
  return str(value)


def _error_payload(code: str, message: str, *, details: Any = None, request_id: str | None = None) -> dict[str, Any]:
  payload: dict[str, Any] = {"error": {"code": code, "message": message}}
  if details:
    payload["error"]["details"] = _coerce_json_safe(details)
  # Lets support correlate client reports with server logs.
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key != "input"}
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx
    sanitized.append(_coerce_json_safe(scrubbed))
  return sanitized


async def pipeline_exception_handler(request: Request, exc: PipelineError) -> JSONResponse:
  """Map pipeline errors to their HTTP status and stable error code."""
  request_id = getattr(request.state, "request_id", None)
  logger = logging.getLogger("uvicorn.error")
  if exc.status_code >= 500:
    logger.error("Pipeline failure request_id=%s path=%s code=%s message=%s", request_id, request.url.path, exc.code, exc.message, exc_info=True)
  else:
    logger.info("Pipeline rejection request_id=%s path=%s code=%s message=%s", request_id, request.url.path, exc.code, exc.message)
  payload: dict[str, Any] = {"error": _coerce_json_safe(exc.to_dict())}
  if request_id:
    payload["requestId"] = request_id
  return JSONResponse(status_code=exc.status_code, content=payload)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Log request validation errors without leaking payloads."""
  request_id = getattr(request.state, "request_id", None)
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  logger = logging.getLogger("uvicorn.error")
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload("VALIDATION_ERROR", "Request validation failed.", details={"errors": sanitized_errors}, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle HTTPExceptions; 5xx details are logged, never returned."""
  from podcast_engine.config import get_settings

  settings = get_settings()
  request_id = getattr(request.state, "request_id", None)
  if exc.status_code >= 500:
    logger = logging.getLogger("uvicorn.error")
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail, exc_info=True)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("INTERNAL_ERROR", "Internal Server Error", request_id=request_id))

  if settings.log_http_4xx:
    logger = logging.getLogger("uvicorn.error")
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)

  return JSONResponse(status_code=exc.status_code, content=_error_payload("HTTP_ERROR", str(exc.detail), request_id=request_id), headers=getattr(exc, "headers", None))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Catch-all for unhandled errors."""
  logger = logging.getLogger("uvicorn.error")
  request_id = getattr(request.state, "request_id", None)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("INTERNAL_ERROR", "Internal Server Error", request_id=request_id))
