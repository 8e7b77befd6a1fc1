from __future__ import annotations

from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from podcast_engine.api.routes import jobs, tasks
from podcast_engine.config import get_settings
from podcast_engine.core.exceptions import global_exception_handler, http_exception_handler, pipeline_exception_handler, request_validation_exception_handler
from podcast_engine.core.lifespan import lifespan
from podcast_engine.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from podcast_engine.core.security import security_scheme
from podcast_engine.pipeline.errors import PipelineError

settings = get_settings()

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length"])

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(PipelineError, pipeline_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


# Reject anonymous callers before any route dependency builds clients.
app.include_router(jobs.router, prefix="/v1/jobs", tags=["jobs"], dependencies=[Depends(security_scheme)])
app.include_router(tasks.router, prefix="/internal", tags=["tasks"])
