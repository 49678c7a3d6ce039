"""
=============================================================================
SPAMSCAN - Ciclo de Vida de Capturas (FSM)
=============================================================================
Máquina de estados sobre los registros persistidos:

    ACTIVE ──soft_delete──▶ SOFT_DELETED ──restore──▶ ACTIVE
      │                         │
      └────permanent_delete─────┴──permanent_delete──▶ GONE (terminal)

- soft_delete es idempotente (refresca deleted_at)
- restore desde ACTIVE es un no-op legal
- Cada transición exitosa publica un evento; un fallo al publicar nunca
  hace fallar la transición
=============================================================================
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple
from uuid import UUID

from loguru import logger

from .analysis_pipeline import AnalysisResult
from .broadcaster import EventBroadcaster, Events, NullBroadcaster
from .exceptions import NotFoundError
from .models import AnalyzedScreenshot, UNKNOWN
from .repository import ScreenshotRepository
from .security import Principal


class ScreenshotState(Enum):
    """Estados del registro."""
    ACTIVE = "ACTIVE"
    SOFT_DELETED = "SOFT_DELETED"
    GONE = "GONE"


def state_of(record: Optional[AnalyzedScreenshot]) -> ScreenshotState:
    if record is None:
        return ScreenshotState.GONE
    return ScreenshotState.SOFT_DELETED if record.is_deleted else ScreenshotState.ACTIVE


class ScreenshotLifecycle:
    """Creación y transiciones de estado de las capturas analizadas."""

    def __init__(
        self,
        repository: ScreenshotRepository,
        broadcaster: Optional[EventBroadcaster] = None,
    ):
        self.repository = repository
        self.broadcaster = broadcaster or NullBroadcaster()

    # =========================================================================
    # CREACIÓN
    # =========================================================================

    async def create(
        self,
        owner: Principal,
        analysis: AnalysisResult,
        to_number: Optional[str] = None,
        carrier: Optional[str] = None,
        submitted_at: Optional[datetime] = None,
    ) -> AnalyzedScreenshot:
        """Persiste el resultado del análisis y publica screenshots:new."""
        record = await self.repository.add({
            "owner_user_id": owner.id,
            "owner_email": owner.email,
            "owner_name": owner.name,
            "image_url": analysis.image_url,
            "extracted_number": analysis.extracted_number,
            "is_spam": analysis.is_spam,
            "submitted_at": submitted_at or datetime.now(timezone.utc),
            "to_number": to_number or UNKNOWN,
            "carrier": carrier or UNKNOWN,
        })
        logger.info(f"[Lifecycle] Creada {record.id} (owner={owner.id}, spam={record.is_spam})")
        self._publish(Events.NEW, record.to_public_dict())
        return record

    # =========================================================================
    # TRANSICIONES
    # =========================================================================

    async def soft_delete(self, screenshot_id: Any) -> AnalyzedScreenshot:
        record = await self.repository.set_deleted(
            self._parse_id(screenshot_id), True, datetime.now(timezone.utc)
        )
        if record is None:
            raise self._not_found(screenshot_id)

        logger.info(f"[Lifecycle] {record.id} -> {ScreenshotState.SOFT_DELETED.value}")
        self._publish(Events.DELETE_SOFT, record.to_public_dict())
        return record

    async def restore(self, screenshot_id: Any) -> AnalyzedScreenshot:
        record = await self.repository.set_deleted(self._parse_id(screenshot_id), False)
        if record is None:
            raise self._not_found(screenshot_id)

        logger.info(f"[Lifecycle] {record.id} -> {ScreenshotState.ACTIVE.value}")
        self._publish(Events.UPDATE, record.to_public_dict())
        return record

    async def permanent_delete(self, screenshot_id: Any) -> AnalyzedScreenshot:
        """Borrado físico e irreversible. Devuelve el registro eliminado."""
        record = await self.repository.delete(self._parse_id(screenshot_id))
        if record is None:
            raise self._not_found(screenshot_id)

        logger.info(f"[Lifecycle] {record.id} -> {ScreenshotState.GONE.value}")
        self._publish(Events.DELETE_PERM, record.to_public_dict())
        return record

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    async def get(self, screenshot_id: Any) -> AnalyzedScreenshot:
        record = await self.repository.get(self._parse_id(screenshot_id))
        if record is None:
            raise self._not_found(screenshot_id)
        return record

    async def state(self, screenshot_id: Any) -> ScreenshotState:
        try:
            return state_of(await self.get(screenshot_id))
        except NotFoundError:
            return ScreenshotState.GONE

    async def list_active(self) -> Sequence[AnalyzedScreenshot]:
        return await self.repository.list_active()

    async def list_by_owner(
        self,
        owner_user_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[Sequence[AnalyzedScreenshot], int]:
        return await self.repository.list_by_owner(owner_user_id, max(page, 1), max(limit, 1))

    async def list_by_email(self, email: str) -> Sequence[AnalyzedScreenshot]:
        return await self.repository.list_by_email(email)

    async def list_by_name(self, name: str) -> Sequence[AnalyzedScreenshot]:
        return await self.repository.list_by_name(name)

    async def list_deleted(self) -> Sequence[AnalyzedScreenshot]:
        return await self.repository.list_deleted()

    # =========================================================================
    # UTILIDADES
    # =========================================================================

    def _publish(self, kind: str, payload: Dict[str, Any]) -> None:
        try:
            self.broadcaster.publish(kind, payload)
        except Exception as e:
            logger.warning(f"[Lifecycle] No se pudo publicar {kind} ({payload.get('id')}): {e}")

    def _parse_id(self, screenshot_id: Any) -> UUID:
        if isinstance(screenshot_id, UUID):
            return screenshot_id
        try:
            return UUID(str(screenshot_id))
        except ValueError:
            raise self._not_found(screenshot_id)

    @staticmethod
    def _not_found(screenshot_id: Any) -> NotFoundError:
        return NotFoundError(f"Captura no encontrada: {screenshot_id}", "ScreenshotLifecycle")
