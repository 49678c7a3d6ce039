"""
=============================================================================
SPAMSCAN - Punto de Entrada Principal (FastAPI + Socket.IO)
=============================================================================
Servicio de análisis de capturas de mensajes SMS: detecta spam y extrae el
número de teléfono del remitente.

Integra:
- FastAPI para REST API
- Socket.IO para notificaciones en tiempo real (WebSockets)
- Middleware de seguridad y CORS
=============================================================================
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger

from .analysis_pipeline import AnalysisPipeline
from .blob_store import BlobStore, LocalBlobStore
from .broadcaster import EventBroadcaster, NullBroadcaster, SocketIOBroadcaster
from .config import Settings, configure_logging, settings as default_settings
from .database import create_engine, create_session_factory, init_models
from .exceptions import SpamScanError
from .image_compressor import ImageCompressor
from .lifecycle import ScreenshotLifecycle
from .ocr_engine import OCREngine, configure_tesseract
from .repository import ScreenshotRepository
from .screenshots import router as screenshots_router
from .security import TokenVerifier
from .spam_classifier import SpamClassifier
from .websocket_handler import create_socket_app, sio


def create_app(
    settings: Optional[Settings] = None,
    *,
    ocr_engine: Optional[OCREngine] = None,
    blob_store: Optional[BlobStore] = None,
    broadcaster: Optional[EventBroadcaster] = None,
) -> FastAPI:
    """
    Construye la aplicación con sus colaboradores.

    Los colaboradores externos (OCR, blob store, difusor) se pueden inyectar;
    por defecto se usan Tesseract, disco local y Socket.IO.
    """
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    engine = create_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    repository = ScreenshotRepository(create_session_factory(engine))

    if broadcaster is None:
        broadcaster = SocketIOBroadcaster(sio) if settings.REALTIME_ENABLED else NullBroadcaster()

    if ocr_engine is None:
        # La ruta del binario es global en pytesseract: solo se fija con el motor por defecto
        configure_tesseract(settings.TESSERACT_CMD)
        ocr_engine = OCREngine(
            timeout_seconds=settings.OCR_TIMEOUT_SECONDS,
            language=settings.OCR_LANGUAGE,
        )

    pipeline = AnalysisPipeline(
        compressor=ImageCompressor(
            target_bytes=settings.COMPRESSION_TARGET_BYTES,
            start_width=settings.COMPRESSION_START_WIDTH,
            min_width=settings.COMPRESSION_MIN_WIDTH,
            width_step=settings.COMPRESSION_WIDTH_STEP,
            start_quality=settings.COMPRESSION_START_QUALITY,
            min_quality=settings.COMPRESSION_MIN_QUALITY,
            quality_step=settings.COMPRESSION_QUALITY_STEP,
        ),
        ocr_engine=ocr_engine,
        classifier=SpamClassifier(),
        blob_store=blob_store or LocalBlobStore(settings.BLOB_STORAGE_DIR, settings.BLOB_BASE_URL),
    )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Gestiona el ciclo de vida de la aplicación."""
        logger.info(f"[SPAMSCAN] Iniciando servidor v{settings.APP_VERSION}...")
        await init_models(engine)
        logger.info(
            f"[SPAMSCAN] OCR: timeout={settings.OCR_TIMEOUT_SECONDS}s lang={settings.OCR_LANGUAGE}"
        )
        logger.info(f"[SPAMSCAN] Tiempo real: {type(broadcaster).__name__}")
        yield
        logger.info("[SPAMSCAN] Cerrando servidor...")
        await broadcaster.drain()
        await engine.dispose()

    app = FastAPI(
        title="SpamScan API",
        description="""
        ## Análisis de capturas de mensajes SMS

        ### Características:
        - **Compresión**: búsqueda descendente ancho x calidad hasta ~100 KB
        - **OCR con fallback**: varias estrategias, cada una con timeout
        - **Clasificador por capas**: exacta, espaciada, confusión OCR, normalizada, sinónimos
        - **WebSockets**: notificación de altas y cambios de estado

        ### Ciclo de vida:
        ACTIVE ⇄ SOFT_DELETED → GONE
        """,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.pipeline = pipeline
    app.state.lifecycle = ScreenshotLifecycle(repository, broadcaster)
    app.state.token_verifier = TokenVerifier(settings.JWT_SECRET, settings.JWT_ALGORITHM)

    # =========================================================================
    # MIDDLEWARE
    # =========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        """Agrega headers de seguridad a las respuestas."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    # =========================================================================
    # MANEJO DE ERRORES
    # =========================================================================

    @app.exception_handler(SpamScanError)
    async def spamscan_error_handler(request: Request, exc: SpamScanError):
        if exc.status_code >= 500:
            logger.error(f"[API] {request.method} {request.url.path}: {exc}")
        else:
            logger.warning(f"[API] {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"success": False, "error": errors})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.opt(exception=exc).error(
            f"[API] {request.method} {request.url.path}: error no controlado"
        )
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Error interno del servidor"},
        )

    # =========================================================================
    # ENDPOINTS - HEALTH & STATUS
    # =========================================================================

    @app.get("/health")
    async def health_check():
        """Endpoint de health check para Docker y load balancers."""
        return {
            "status": "healthy",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "timestamp": time.time(),
        }

    @app.get("/")
    async def root():
        """Endpoint raíz con información básica del servicio."""
        return {
            "message": "Bienvenido a SpamScan API",
            "docs": "/docs",
            "health": "/health",
            "websocket": "/socket.io",
            "version": settings.APP_VERSION,
        }

    # =========================================================================
    # ROUTERS Y ARCHIVOS
    # =========================================================================

    app.include_router(screenshots_router, prefix="/api/v1")

    # Imágenes comprimidas servidas por LocalBlobStore
    app.mount(
        "/media",
        StaticFiles(directory=str(settings.BLOB_STORAGE_DIR), check_dir=False),
        name="media",
    )

    return app


app = create_app()

# Socket.IO envuelve a FastAPI para que los upgrades de WebSocket funcionen
combined_app = create_socket_app(app)
