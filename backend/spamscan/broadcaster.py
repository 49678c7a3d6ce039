"""
=============================================================================
SPAMSCAN - Difusión de Eventos en Tiempo Real
=============================================================================
Publica eventos de creación / ciclo de vida a cuatro canales (salas de
Socket.IO): global, por usuario, por email y administradores.

- Fire-and-forget: publish() agenda los emits y retorna de inmediato
- Sin ACK ni reintentos: es una pista de notificación, no un log garantizado
- Un fallo de emisión se registra y nunca se propaga
=============================================================================
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Set

from loguru import logger


class Events:
    """Nombres de eventos emitidos a los clientes."""
    NEW = "screenshots:new"
    UPDATE = "screenshots:update"
    DELETE_SOFT = "screenshots:delete:soft"
    DELETE_PERM = "screenshots:delete:permanent"


class Rooms:
    """Nombres de salas."""
    ALL = "all"
    ADMINS = "admins"

    @staticmethod
    def user(user_id: str) -> str:
        return f"user:{user_id}"

    @staticmethod
    def email(email: str) -> str:
        return f"email:{email}"

    @classmethod
    def for_payload(cls, payload: Dict[str, Any]) -> List[str]:
        """Salas destino de un payload (global, usuario, email, admins)."""
        rooms = [cls.ALL]
        if payload.get("user"):
            rooms.append(cls.user(str(payload["user"])))
        if payload.get("email"):
            rooms.append(cls.email(str(payload["email"])))
        rooms.append(cls.ADMINS)
        return rooms


class EventBroadcaster(ABC):
    """Interfaz del difusor de eventos."""

    @abstractmethod
    def publish(self, kind: str, payload: Dict[str, Any]) -> None:
        """Publica sin bloquear a quien dispara el evento."""

    async def drain(self) -> None:
        """Espera los envíos pendientes (apagado ordenado)."""
        return None


class NullBroadcaster(EventBroadcaster):
    """Difusor nulo: transporte deshabilitado o no inicializado."""

    def publish(self, kind: str, payload: Dict[str, Any]) -> None:
        logger.debug(f"[WS] Emisión omitida (sin transporte): {kind} id={payload.get('id')}")


class SocketIOBroadcaster(EventBroadcaster):
    """Difusor sobre un socketio.AsyncServer."""

    def __init__(self, sio):
        self.sio = sio
        self._pending: Set[asyncio.Task] = set()

    def publish(self, kind: str, payload: Dict[str, Any]) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self._emit_all(kind, payload))
        except RuntimeError as e:
            logger.warning(f"[WS] Emisión omitida ({kind}): {e}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _emit_all(self, kind: str, payload: Dict[str, Any]) -> None:
        for room in Rooms.for_payload(payload):
            try:
                await self.sio.emit(kind, payload, room=room)
            except Exception as e:
                logger.warning(f"[WS] Fallo al emitir {kind} a {room}: {e}")

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
