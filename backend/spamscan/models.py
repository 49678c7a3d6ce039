"""
=============================================================================
SPAMSCAN - Modelos de Base de Datos (SQLAlchemy)
=============================================================================
Entidad única: AnalyzedScreenshot.

Principios de Diseño:
- Escritura única: los campos del análisis no cambian tras la creación
- Borrado lógico: solo is_deleted / deleted_at son mutables, siempre juntos
- Instantánea del propietario: nombre y email se copian al crear y no se
  re-sincronizan (precisión histórica sobre frescura referencial)
=============================================================================
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    String,
    Text,
    Uuid,
    event,
    func,
    inspect,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


NOT_FOUND_NUMBER = "Not Found"
UNKNOWN = "Unknown"


# =============================================================================
# BASE DECLARATIVA
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """Clase base para todos los modelos con soporte async."""
    pass


# =============================================================================
# TABLA: ANALYZED_SCREENSHOTS
# =============================================================================

class AnalyzedScreenshot(Base):
    """
    Captura analizada.

    CICLO DE VIDA:
    ACTIVE → SOFT_DELETED → ACTIVE (restaurar) | GONE (borrado permanente)
    ACTIVE → GONE también es legal.
    """
    __tablename__ = "analyzed_screenshots"

    # Campos que pueden cambiar después de la creación
    MUTABLE_FIELDS = frozenset({"is_deleted", "deleted_at"})

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Propietario (instantánea al momento de la subida)
    owner_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_email: Mapped[str] = mapped_column(String(320), nullable=False)
    owner_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Resultado del análisis
    image_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    extracted_number: Mapped[str] = mapped_column(String(100), nullable=False, default=NOT_FOUND_NUMBER)
    is_spam: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Metadata del llamante
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    to_number: Mapped[str] = mapped_column(Text, nullable=False, default=UNKNOWN)
    carrier: Mapped[str] = mapped_column(Text, nullable=False, default=UNKNOWN)

    analyzed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    # Borrado lógico
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_screenshots_owner_active_time", "owner_user_id", "is_deleted", "submitted_at"),
        Index("idx_screenshots_email_active", "owner_email", "is_deleted"),
        Index("idx_screenshots_deleted_at", "is_deleted", "deleted_at"),
        CheckConstraint(
            "is_deleted OR deleted_at IS NULL",
            name="check_deleted_at_only_when_deleted"
        ),
    )

    def mark_deleted(self, when: Optional[datetime] = None) -> None:
        self.is_deleted = True
        self.deleted_at = when or datetime.now(timezone.utc)

    def mark_restored(self) -> None:
        self.is_deleted = False
        self.deleted_at = None

    def to_public_dict(self) -> Dict[str, Any]:
        """Payload público (respuesta HTTP y eventos en tiempo real)."""
        return {
            "id": str(self.id),
            "user": self.owner_user_id,
            "name": self.owner_name,
            "email": self.owner_email,
            "screenshotUrl": self.image_url,
            "extractedNumber": self.extracted_number,
            "time": _isoformat(self.submitted_at),
            "toNumber": self.to_number,
            "carrier": self.carrier,
            "isSpam": bool(self.is_spam),
            "isDeleted": bool(self.is_deleted),
            "deletedAt": _isoformat(self.deleted_at),
        }


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # SQLite devuelve datetimes naive; se guardan siempre en UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


# =============================================================================
# EVENT LISTENERS PARA INTEGRIDAD AUTOMÁTICA
# =============================================================================

class ImmutableFieldError(ValueError):
    """Intento de modificar un campo de escritura única."""
    pass


@event.listens_for(AnalyzedScreenshot, "before_update")
def screenshot_before_update(mapper, connection, target: AnalyzedScreenshot):
    """Rechaza cambios fuera de is_deleted / deleted_at y mantiene el invariante."""
    state = inspect(target)
    changed = [
        attr.key
        for attr in state.attrs
        if attr.key not in AnalyzedScreenshot.MUTABLE_FIELDS and attr.history.has_changes()
    ]
    if changed:
        raise ImmutableFieldError(f"Campos de escritura única modificados: {', '.join(changed)}")

    if not target.is_deleted:
        target.deleted_at = None
