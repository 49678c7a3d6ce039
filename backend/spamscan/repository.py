"""
=============================================================================
SPAMSCAN - Repositorio de Capturas Analizadas
=============================================================================
Acceso a datos (SQLAlchemy async). Cada operación abre su propia sesión;
las consultas independientes (página + total) corren en paralelo con
sesiones separadas.
=============================================================================
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .exceptions import PersistenceError
from .models import AnalyzedScreenshot


class ScreenshotRepository:
    """Operaciones de persistencia sobre AnalyzedScreenshot."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add(self, values: Dict[str, Any]) -> AnalyzedScreenshot:
        """Inserta una captura nueva y la devuelve con su id asignado."""
        try:
            async with self.session_factory() as session, session.begin():
                record = AnalyzedScreenshot(**values)
                session.add(record)
                await session.flush()
                await session.refresh(record)
            return record
        except SQLAlchemyError as e:
            raise PersistenceError("Error al guardar la captura", "ScreenshotRepository", e)

    async def get(self, screenshot_id: UUID) -> Optional[AnalyzedScreenshot]:
        try:
            async with self.session_factory() as session:
                return await session.get(AnalyzedScreenshot, screenshot_id)
        except SQLAlchemyError as e:
            raise PersistenceError("Error al leer la captura", "ScreenshotRepository", e)

    async def set_deleted(
        self,
        screenshot_id: UUID,
        deleted: bool,
        when: Optional[datetime] = None,
    ) -> Optional[AnalyzedScreenshot]:
        """Marca/desmarca el borrado lógico. None si el id no existe."""
        try:
            async with self.session_factory() as session, session.begin():
                record = await session.get(AnalyzedScreenshot, screenshot_id)
                if record is None:
                    return None
                if deleted:
                    record.mark_deleted(when)
                else:
                    record.mark_restored()
            return record
        except SQLAlchemyError as e:
            raise PersistenceError("Error al actualizar la captura", "ScreenshotRepository", e)

    async def delete(self, screenshot_id: UUID) -> Optional[AnalyzedScreenshot]:
        """Borra físicamente. Devuelve el registro eliminado o None."""
        try:
            async with self.session_factory() as session, session.begin():
                record = await session.get(AnalyzedScreenshot, screenshot_id)
                if record is None:
                    return None
                await session.delete(record)
            return record
        except SQLAlchemyError as e:
            raise PersistenceError("Error al eliminar la captura", "ScreenshotRepository", e)

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    async def list_active(self) -> Sequence[AnalyzedScreenshot]:
        query = (
            select(AnalyzedScreenshot)
            .where(AnalyzedScreenshot.is_deleted.is_(False))
            .order_by(AnalyzedScreenshot.submitted_at.desc(), AnalyzedScreenshot.id.desc())
        )
        return await self._scalars(query)

    async def list_by_owner(
        self,
        owner_user_id: str,
        page: int,
        limit: int,
    ) -> Tuple[Sequence[AnalyzedScreenshot], int]:
        """Página de capturas activas del propietario + total."""
        condition = (
            (AnalyzedScreenshot.owner_user_id == owner_user_id)
            & AnalyzedScreenshot.is_deleted.is_(False)
        )
        items_query = (
            select(AnalyzedScreenshot)
            .where(condition)
            .order_by(AnalyzedScreenshot.submitted_at.desc(), AnalyzedScreenshot.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        count_query = select(func.count()).select_from(AnalyzedScreenshot).where(condition)

        items, total = await asyncio.gather(
            self._scalars(items_query),
            self._scalar(count_query),
        )
        return items, int(total or 0)

    async def list_by_email(self, email: str) -> Sequence[AnalyzedScreenshot]:
        query = (
            select(AnalyzedScreenshot)
            .where(
                (AnalyzedScreenshot.owner_email == email)
                & AnalyzedScreenshot.is_deleted.is_(False)
            )
            .order_by(AnalyzedScreenshot.submitted_at.desc())
        )
        return await self._scalars(query)

    async def list_by_name(self, name: str) -> Sequence[AnalyzedScreenshot]:
        query = (
            select(AnalyzedScreenshot)
            .where(
                (AnalyzedScreenshot.owner_name == name)
                & AnalyzedScreenshot.is_deleted.is_(False)
            )
            .order_by(AnalyzedScreenshot.submitted_at.desc())
        )
        return await self._scalars(query)

    async def list_deleted(self) -> Sequence[AnalyzedScreenshot]:
        query = (
            select(AnalyzedScreenshot)
            .where(AnalyzedScreenshot.is_deleted.is_(True))
            .order_by(AnalyzedScreenshot.deleted_at.desc())
        )
        return await self._scalars(query)

    async def _scalars(self, query) -> List[AnalyzedScreenshot]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError("Error al consultar capturas", "ScreenshotRepository", e)

    async def _scalar(self, query):
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError("Error al consultar capturas", "ScreenshotRepository", e)
