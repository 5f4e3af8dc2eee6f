# propflow/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from .config import settings
from .errors import ExternalServiceError, PropFlowError
from .logging_config import configure_logging, get_request_id
from .middleware.structured_logging import StructuredLoggingMiddleware

from .routers.health import router as health_router
from .routers.evictions import router as evictions_router
from .routers.escrow import router as escrow_router
from .routers.rent import router as rent_router
from .routers.invoices import router as invoices_router

API_PREFIX = "/api"

configure_logging()
log = logging.getLogger("propflow.api")


def _cors_origins() -> list[str]:
    val = getattr(settings, "cors_allow_origins", ["*"])
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


app = FastAPI(title=settings.app_name, version=settings.app_version)

app.add_middleware(StructuredLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PropFlowError)
async def _propflow_error(request: Request, exc: PropFlowError):
    body = exc.to_dict()
    body["request_id"] = get_request_id()
    if isinstance(exc, ExternalServiceError):
        log.warning(
            f"{exc.service} {exc.operation} failed",
            extra={"error_code": exc.error_code, "stripe_id": exc.request_id},
        )
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))


@app.exception_handler(ValueError)
async def _value_error(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=422,
        content={"error": "invalid_request", "message": str(exc), "details": {}, "request_id": get_request_id()},
    )


app.include_router(health_router, prefix=API_PREFIX)
app.include_router(evictions_router, prefix=API_PREFIX)
app.include_router(escrow_router, prefix=API_PREFIX)
app.include_router(rent_router, prefix=API_PREFIX)
app.include_router(invoices_router, prefix=API_PREFIX)
