"""
Punto de entrada de la aplicación FastAPI.
Configura logging, CORS y el handler global de errores, y monta los routers
de agenda, horarios, jerarquía y cascadas.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.router import api_v1_router
from app.config import get_settings
from app.database import engine

settings = get_settings()
logger = logging.getLogger(__name__)


# ── Lifecycle ────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configura el logging al iniciar y libera el pool de conexiones al cerrar."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.info(
        f"{settings.APP_NAME} iniciando en modo {settings.APP_ENV} "
        f"(zona {settings.CLINIC_TIMEZONE}, cascadas: {settings.CASCADE_MAX_WORKERS} workers, "
        f"plazo {settings.CASCADE_TIMEOUT_SECONDS}s)"
    )
    yield
    await engine.dispose()
    logger.info(f"{settings.APP_NAME} detenido")


# ── App ──────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    description="API de agenda de citas y cascadas de ciclo de vida para redes de clínicas",
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
    allow_headers=["*", "X-User-Id"],
)


# ── Global Exception Handler ────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Captura excepciones no manejadas. Responde con el mismo formato
    `{code, message}` que las excepciones de negocio.
    """
    logger.exception(f"Error no manejado en {request.method} {request.url.path}")
    message = str(exc) if settings.DEBUG else "Error interno del servidor"
    detail = {"code": "INTERNAL_ERROR", "message": message}
    if settings.DEBUG:
        detail["type"] = type(exc).__name__
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": detail},
    )


# ── Routers ──────────────────────────────────────────
app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)


# ── Health Check ─────────────────────────────────────
@app.get("/health", tags=["Health"])
async def health_check():
    """Endpoint de health check para monitoreo."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": "0.1.0",
        "environment": settings.APP_ENV,
        "timezone": settings.CLINIC_TIMEZONE,
    }
