"""
=============================================================================
SPAMSCAN - Manejador de WebSockets (Socket.IO)
=============================================================================
Canal de notificaciones en tiempo real. Al conectar, el cliente declara en
el handshake (auth) su rol, id de usuario y email; el servidor lo une a las
salas correspondientes:

    all           -> todos los clientes
    admins        -> role == "admin"
    user:<id>     -> userId
    email:<email> -> email

Los eventos de capturas se emiten desde broadcaster.SocketIOBroadcaster.
=============================================================================
"""

from typing import Any, Dict, List, Optional

import socketio
from loguru import logger

from .broadcaster import Rooms
from .config import SocketConfig, settings


# =============================================================================
# SERVIDOR SOCKET.IO
# =============================================================================

sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins=settings.CORS_ORIGINS,
    ping_timeout=SocketConfig.PING_TIMEOUT,
    ping_interval=SocketConfig.PING_INTERVAL,
)


def rooms_for_handshake(auth: Optional[Dict[str, Any]]) -> List[str]:
    """Salas a las que se une un cliente según su handshake."""
    auth = auth if isinstance(auth, dict) else {}
    rooms = []
    if auth.get('role') == 'admin':
        rooms.append(Rooms.ADMINS)
    if auth.get('userId'):
        rooms.append(Rooms.user(str(auth['userId'])))
    if auth.get('email'):
        rooms.append(Rooms.email(str(auth['email'])))
    rooms.append(Rooms.ALL)
    return rooms


# =============================================================================
# HANDLERS DE EVENTOS
# =============================================================================

@sio.event
async def connect(sid: str, environ: dict, auth: dict = None):
    """Une al cliente a sus salas y confirma con 'ready'."""
    rooms = rooms_for_handshake(auth)
    for room in rooms:
        await sio.enter_room(sid, room)

    logger.info(f"[WS] Nueva conexión: {sid} -> {', '.join(rooms)}")
    await sio.emit('ready', {'ok': True}, room=sid)


@sio.event
async def disconnect(sid: str, *args):
    logger.info(f"[WS] Desconexión: {sid}")


# =============================================================================
# APLICACIÓN ASGI
# =============================================================================

def create_socket_app(other_asgi_app=None):
    """Envuelve la app FastAPI: Socket.IO atiende /socket.io, el resto pasa."""
    return socketio.ASGIApp(
        sio,
        other_asgi_app=other_asgi_app,
        socketio_path=SocketConfig.SOCKETIO_PATH,
    )
