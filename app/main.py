from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import credits, events, generation, internal, push, webhooks
from app.config import get_settings
from app.core.errors import CoordinatorError
from app.core.exceptions import coordinator_exception_handler, global_exception_handler, http_exception_handler, request_validation_exception_handler
from app.core.json import RelayJSONResponse
from app.core.lifespan import lifespan
from app.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware

settings = get_settings()

app = FastAPI(default_response_class=RelayJSONResponse, lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "DELETE", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "retry-after", "x-request-id"])


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(CoordinatorError, coordinator_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(generation.router, prefix="/v1/generation", tags=["generation"])
app.include_router(events.router, prefix="/v1/generation", tags=["generation"])
app.include_router(webhooks.router, prefix="/v1/webhooks", tags=["webhooks"])
app.include_router(credits.router, prefix="/v1/credits", tags=["credits"])
app.include_router(push.router, prefix="/v1/push", tags=["push"])
app.include_router(internal.router, prefix="/internal", tags=["internal"])
