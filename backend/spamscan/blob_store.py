"""
=============================================================================
SPAMSCAN - Almacenamiento de Imágenes
=============================================================================
Guarda la imagen comprimida y devuelve una URL estable.
La implementación local escribe en disco y se sirve bajo /media.
=============================================================================
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from uuid import uuid4

from loguru import logger

from .exceptions import BlobStoreError


class BlobStore(ABC):
    """Interfaz del almacén de blobs."""

    @abstractmethod
    async def upload(self, data: bytes, folder: str) -> str:
        """Sube el buffer y devuelve su URL pública."""


class LocalBlobStore(BlobStore):
    """Almacén en sistema de archivos local."""

    def __init__(self, root_dir: Path, base_url: str):
        self.root_dir = Path(root_dir)
        self.base_url = base_url.rstrip("/")

    async def upload(self, data: bytes, folder: str) -> str:
        relative = Path(folder.strip("/")) / f"{uuid4().hex}.jpg"
        target = self.root_dir / relative

        # La carpeta no puede salir del directorio raíz
        if not target.resolve().is_relative_to(self.root_dir.resolve()):
            raise BlobStoreError(
                message=f"Carpeta fuera del almacén: {folder}",
                component="LocalBlobStore"
            )

        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as e:
            raise BlobStoreError(
                message=f"No se pudo guardar la imagen en {folder}",
                component="LocalBlobStore",
                original_error=e
            )

        url = f"{self.base_url}/{relative.as_posix()}"
        logger.debug(f"[Blob] {len(data)} bytes -> {url}")
        return url

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
