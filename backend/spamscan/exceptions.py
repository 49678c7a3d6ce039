"""
=============================================================================
SPAMSCAN - Excepciones del dominio
=============================================================================
Taxonomía de errores. Cada clase lleva el código HTTP con el que se
responde al cliente (ver handler en main.py).
=============================================================================
"""

from typing import Optional


class SpamScanError(Exception):
    """Excepción base del servicio."""

    status_code = 500

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.component = component
        self.original_error = original_error
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.component:
            msg += f" (Component: {self.component})"
        if self.original_error:
            msg += f" [Original: {type(self.original_error).__name__}: {self.original_error}]"
        return msg


class ValidationError(SpamScanError):
    """Entrada inválida: falta el archivo, campos requeridos, etc."""
    status_code = 400


class ImageDecodingError(ValidationError):
    """El buffer recibido no es una imagen decodificable."""
    pass


class AuthError(SpamScanError):
    """Credencial ausente o inválida."""
    status_code = 401


class NotFoundError(SpamScanError):
    """Registro inexistente."""
    status_code = 404


class UpstreamError(SpamScanError):
    """Fallo de un colaborador externo (blob store, motor OCR)."""
    status_code = 500


class BlobStoreError(UpstreamError):
    """Fallo al subir la imagen comprimida."""
    pass


class OCREngineError(UpstreamError):
    """Fallo del motor OCR (se absorbe dentro del pipeline)."""
    pass


class PersistenceError(SpamScanError):
    """Fallo de lectura/escritura en la base de datos."""
    status_code = 500
