"""
Punto de entrada de la aplicación FastAPI.
Configura logging, CORS, handlers de errores (OperationOutcome bajo /fhir)
y monta los routers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import (
    http_exception_handler,
    request_validation_exception_handler,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.router import api_v1_router, fhir_router
from app.config import get_settings
from app.core.exceptions import ValidationException
from app.core.fhir_format import fhir_response, resolve_format
from app.services import fhir_service

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

FHIR_PREFIX = "/fhir"


# ── Lifecycle ────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Eventos de inicio y cierre de la aplicación."""
    logger.info(f"{settings.APP_NAME} iniciando en modo {settings.APP_ENV}")
    if not settings.icd11_credentials_configured:
        logger.warning("Credenciales de la API CIE-11 no configuradas: sync-icd11 fallará")
    yield
    logger.info(f"{settings.APP_NAME} cerrando...")


# ── App ──────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    description="Servidor de terminología FHIR R4: NAMASTE ↔ CIE-11 (TM2 / Biomedicina)",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Errores FHIR (OperationOutcome) ──────────────────
def _is_fhir(request: Request) -> bool:
    path = request.url.path
    return path == FHIR_PREFIX or path.startswith(f"{FHIR_PREFIX}/")


def _outcome_response(request: Request, status_code: int, diagnostics: str):
    try:
        fmt = resolve_format(request.query_params.get("_format"))
    except ValidationException:
        fmt = "json"
    outcome = fhir_service.operation_outcome(
        "error", fhir_service.issue_code_for_status(status_code), diagnostics
    )
    return fhir_response(outcome, fmt, status_code=status_code)


@app.exception_handler(StarletteHTTPException)
async def fhir_aware_http_exception_handler(request: Request, exc: StarletteHTTPException):
    if _is_fhir(request):
        return _outcome_response(request, exc.status_code, str(exc.detail))
    return await http_exception_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def fhir_aware_validation_handler(request: Request, exc: RequestValidationError):
    if _is_fhir(request):
        messages = [
            f"{'.'.join(str(p) for p in err.get('loc', []))}: {err.get('msg')}"
            for err in exc.errors()
        ]
        return _outcome_response(
            request, status.HTTP_422_UNPROCESSABLE_ENTITY, "; ".join(messages)
        )
    return await request_validation_exception_handler(request, exc)


# ── Global Exception Handler ────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Captura excepciones no manejadas para evitar exponer detalles internos."""
    logger.exception(f"Error no manejado en {request.method} {request.url.path}")
    detail = str(exc) if settings.DEBUG else "Error interno del servidor"
    if _is_fhir(request):
        return _outcome_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, detail)
    if settings.DEBUG:
        # En desarrollo, mostrar detalles
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": detail, "type": type(exc).__name__},
        )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": detail},
    )


# ── Routers ──────────────────────────────────────────
app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)
app.include_router(fhir_router, prefix=FHIR_PREFIX)


# ── Health Check ─────────────────────────────────────
@app.get("/health", tags=["Health"])
async def health_check():
    """Endpoint de health check para monitoreo."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": "0.1.0",
        "environment": settings.APP_ENV,
    }
