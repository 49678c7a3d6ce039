"""
=============================================================================
SPAMSCAN - Endpoints de Capturas
=============================================================================
API REST de capturas analizadas:
- Subida + análisis (compresión, OCR, clasificación, extracción)
- Consultas (todas, propias paginadas, por email, por nombre, papelera)
- Ciclo de vida (borrado lógico, restauración, borrado permanente)

Todas las respuestas siguen el formato {success, ...}; los errores los
renderiza el handler de SpamScanError en main.py.
=============================================================================
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from loguru import logger
from pydantic import BaseModel

from .analysis_pipeline import AnalysisPipeline
from .config import Settings
from .exceptions import ValidationError
from .lifecycle import ScreenshotLifecycle
from .models import AnalyzedScreenshot
from .security import Principal, get_current_admin, get_current_user, get_optional_user

router = APIRouter(prefix="/screenshots", tags=["Screenshots"])

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9_-]")


# =============================================================================
# DEPENDENCIAS
# =============================================================================

def get_pipeline(request: Request) -> AnalysisPipeline:
    return request.app.state.pipeline


def get_lifecycle(request: Request) -> ScreenshotLifecycle:
    return request.app.state.lifecycle


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# =============================================================================
# SCHEMAS
# =============================================================================

class ScreenshotResponse(BaseModel):
    """Respuesta con una captura."""
    success: bool = True
    data: Dict[str, Any]


class ScreenshotListResponse(BaseModel):
    """Listado completo."""
    success: bool = True
    count: int
    data: List[Dict[str, Any]]


class ScreenshotPageResponse(BaseModel):
    """Página de capturas del usuario."""
    success: bool = True
    page: int
    limit: int
    total: int
    data: List[Dict[str, Any]]


def _listing(records: Sequence[AnalyzedScreenshot]) -> ScreenshotListResponse:
    data = [r.to_public_dict() for r in records]
    return ScreenshotListResponse(count=len(data), data=data)


def _upload_folder(owner: Principal, when: datetime) -> str:
    # El id viene del token: solo caracteres seguros como segmento de ruta
    owner_segment = _UNSAFE_PATH_CHARS.sub("_", owner.id) or "_"
    return f"screenshots/{owner_segment}/{when.strftime('%Y-%m-%d')}"


# =============================================================================
# ENDPOINT: SUBIDA Y ANÁLISIS
# =============================================================================

@router.post("", response_model=ScreenshotResponse, status_code=status.HTTP_201_CREATED)
async def upload_screenshot(
    image: Optional[UploadFile] = File(None),
    to_number: Optional[str] = Form(None, alias="toNumber"),
    carrier: Optional[str] = Form(None),
    submitted_at: Optional[datetime] = Form(None, alias="time"),
    debug: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_user),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
    lifecycle: ScreenshotLifecycle = Depends(get_lifecycle),
    settings: Settings = Depends(get_settings),
):
    """
    Analiza una captura de pantalla de un mensaje.

    Retorna:
    - Número de teléfono extraído ("Not Found" si no hay)
    - Veredicto de spam
    - URL de la imagen comprimida
    - Con ?debug=1: texto OCR, texto normalizado, capa de coincidencia,
      tiempos e intentos de OCR
    """
    if image is None:
        raise ValidationError("No se recibió ninguna imagen")

    if not principal.email or not principal.name:
        raise ValidationError("El usuario autenticado no tiene email o nombre")

    # Validar tipo de archivo
    if image.content_type not in settings.ALLOWED_CONTENT_TYPES:
        raise ValidationError(f"Tipo de archivo no soportado: {image.content_type}")

    image_data = await image.read()
    if not image_data:
        raise ValidationError("La imagen está vacía")

    if len(image_data) > settings.MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"Archivo demasiado grande. Máximo {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB."
        )

    now = datetime.now(timezone.utc)
    if submitted_at is not None and submitted_at.tzinfo is None:
        submitted_at = submitted_at.replace(tzinfo=timezone.utc)

    analysis = await pipeline.analyze(image_data, _upload_folder(principal, now))
    record = await lifecycle.create(
        principal,
        analysis,
        to_number=to_number,
        carrier=carrier,
        submitted_at=submitted_at or now,
    )

    data = record.to_public_dict()
    data.pop("isDeleted", None)
    data.pop("deletedAt", None)

    if debug == "1":
        ocr = pipeline.ocr_engine
        data.update(analysis.debug_dict())
        data["env"] = {
            "timeoutMs": int(ocr.timeout_seconds * 1000),
            "language": ocr.language,
            "modes": [ocr.PRIMARY_MODE.value] + [m.value for m in ocr.fallback_modes],
        }

    logger.info(
        f"[API] Captura {record.id} analizada: spam={record.is_spam} "
        f"numero={record.extracted_number}"
    )
    return ScreenshotResponse(data=data)


# =============================================================================
# ENDPOINTS: CONSULTAS
# =============================================================================

@router.get("", response_model=ScreenshotListResponse)
async def list_screenshots(lifecycle: ScreenshotLifecycle = Depends(get_lifecycle)):
    """Capturas activas, más recientes primero."""
    return _listing(await lifecycle.list_active())


@router.get("/mine", response_model=ScreenshotPageResponse)
async def list_my_screenshots(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_user),
    lifecycle: ScreenshotLifecycle = Depends(get_lifecycle),
):
    items, total = await lifecycle.list_by_owner(principal.id, page, limit)
    return ScreenshotPageResponse(
        page=page,
        limit=limit,
        total=total,
        data=[r.to_public_dict() for r in items],
    )


@router.get("/by-email", response_model=ScreenshotListResponse)
async def list_screenshots_by_email(
    email: Optional[str] = Query(None),
    principal: Optional[Principal] = Depends(get_optional_user),
    lifecycle: ScreenshotLifecycle = Depends(get_lifecycle),
):
    """Filtra por el email indicado o, en su defecto, el del usuario."""
    target = email or (principal.email if principal else None)
    if not target:
        raise ValidationError("Se requiere un email")
    return _listing(await lifecycle.list_by_email(target))


@router.get("/by-name", response_model=ScreenshotListResponse)
async def list_screenshots_by_name(
    name: Optional[str] = Query(None),
    principal: Optional[Principal] = Depends(get_optional_user),
    lifecycle: ScreenshotLifecycle = Depends(get_lifecycle),
):
    target = name or (principal.name if principal else None)
    if not target:
        raise ValidationError("Se requiere un nombre")
    return _listing(await lifecycle.list_by_name(target))


@router.get("/recently-deleted", response_model=ScreenshotListResponse)
async def list_recently_deleted(
    admin: Principal = Depends(get_current_admin),
    lifecycle: ScreenshotLifecycle = Depends(get_lifecycle),
):
    """Papelera (solo administradores)."""
    return _listing(await lifecycle.list_deleted())


@router.get("/{screenshot_id}", response_model=ScreenshotResponse)
async def get_screenshot(
    screenshot_id: str,
    lifecycle: ScreenshotLifecycle = Depends(get_lifecycle),
):
    record = await lifecycle.get(screenshot_id)
    return ScreenshotResponse(data=record.to_public_dict())


# =============================================================================
# ENDPOINTS: CICLO DE VIDA
# =============================================================================

@router.delete("/{screenshot_id}", response_model=ScreenshotResponse)
async def soft_delete_screenshot(
    screenshot_id: str,
    principal: Principal = Depends(get_current_user),
    lifecycle: ScreenshotLifecycle = Depends(get_lifecycle),
):
    """Mueve la captura a la papelera (recuperable)."""
    record = await lifecycle.soft_delete(screenshot_id)
    return ScreenshotResponse(data=record.to_public_dict())


@router.post("/{screenshot_id}/restore", response_model=ScreenshotResponse)
async def restore_screenshot(
    screenshot_id: str,
    principal: Principal = Depends(get_current_user),
    lifecycle: ScreenshotLifecycle = Depends(get_lifecycle),
):
    record = await lifecycle.restore(screenshot_id)
    return ScreenshotResponse(data=record.to_public_dict())


@router.delete("/{screenshot_id}/permanent", response_model=ScreenshotResponse)
async def permanent_delete_screenshot(
    screenshot_id: str,
    principal: Principal = Depends(get_current_user),
    lifecycle: ScreenshotLifecycle = Depends(get_lifecycle),
):
    """Borrado irreversible. Devuelve el registro eliminado."""
    record = await lifecycle.permanent_delete(screenshot_id)
    return ScreenshotResponse(data=record.to_public_dict())
