"""
=============================================================================
SPAMSCAN - Compresor de Imágenes
=============================================================================
Reduce la captura a un presupuesto de bytes para una subida rápida.

Búsqueda descendente en rejilla (ancho x calidad JPEG):
- Ancho: 1000px → 200px en pasos de 100px (nunca se amplía)
- Calidad: 80 → 30 en pasos de 10 para cada ancho
- Gana el PRIMER resultado que cabe en el presupuesto (latencia > ratio)
- Si ninguno cabe, se devuelve el último mejor resultado de la búsqueda
=============================================================================
"""

import io
from typing import Iterator, Optional, Tuple

from loguru import logger
from PIL import Image, ImageOps, UnidentifiedImageError

from .exceptions import ImageDecodingError


class ImageCompressor:
    """Compresor JPEG con presupuesto de bytes."""

    def __init__(
        self,
        target_bytes: int = 100 * 1024,
        start_width: int = 1000,
        min_width: int = 200,
        width_step: int = 100,
        start_quality: int = 80,
        min_quality: int = 30,
        quality_step: int = 10,
    ):
        self.target_bytes = target_bytes
        self.start_width = start_width
        self.min_width = min_width
        self.width_step = width_step
        self.start_quality = start_quality
        self.min_quality = min_quality
        self.quality_step = quality_step

    def compress(self, buffer: bytes, target_bytes: Optional[int] = None) -> bytes:
        """
        Comprime la imagen hasta caber en target_bytes.

        Args:
            buffer: Bytes de la imagen original (cualquier formato raster)
            target_bytes: Presupuesto; por defecto el del constructor

        Returns:
            JPEG <= target_bytes si algún punto de la rejilla lo logra; si no,
            el último mejor resultado (nunca más grande que la entrada).

        Raises:
            ImageDecodingError: si el buffer no es una imagen decodificable
        """
        target = target_bytes if target_bytes is not None else self.target_bytes
        image = self._decode(buffer)
        original_size = image.size

        best = buffer
        attempts = 0
        tried_sizes = set()

        for width in self._widths():
            size = self._fit_width(original_size, width)
            # Sin ampliación: varios anchos colapsan al tamaño original
            if size in tried_sizes:
                continue
            tried_sizes.add(size)

            resized = image if size == original_size else image.resize(size, Image.LANCZOS)

            for quality in self._qualities():
                out = self._encode(resized, quality)
                attempts += 1
                if len(out) <= target:
                    logger.debug(
                        f"[Compressor] {original_size[0]}x{original_size[1]} -> "
                        f"{size[0]}x{size[1]} q={quality}: {len(buffer)} -> {len(out)} bytes "
                        f"({attempts} intentos)"
                    )
                    # Entradas diminutas: el JPEG puede superar al original
                    return out if len(out) <= len(buffer) else buffer
                best = out

        if len(best) > len(buffer):
            logger.info(
                f"[Compressor] Sin mejora sobre el original ({len(buffer)} bytes), se conserva"
            )
            return buffer

        logger.info(
            f"[Compressor] Presupuesto {target} bytes no alcanzado; "
            f"mejor resultado {len(best)} bytes ({attempts} intentos)"
        )
        return best

    # =========================================================================
    # UTILIDADES
    # =========================================================================

    def _widths(self) -> Iterator[int]:
        width = self.start_width
        while width >= self.min_width:
            yield width
            width -= self.width_step

    def _qualities(self) -> Iterator[int]:
        quality = self.start_quality
        while quality >= self.min_quality:
            yield quality
            quality -= self.quality_step

    @staticmethod
    def _fit_width(size: Tuple[int, int], width: int) -> Tuple[int, int]:
        """Tamaño con el ancho pedido, manteniendo aspect ratio y sin ampliar."""
        w, h = size
        if w <= width:
            return (w, h)
        return (width, max(1, round(h * width / w)))

    @staticmethod
    def _decode(buffer: bytes) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(buffer))
            image.load()
            image = ImageOps.exif_transpose(image)
            if image.mode != "RGB":
                image = image.convert("RGB")
            return image
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            # DecompressionBombError: dimensiones por encima del límite de Pillow
            raise ImageDecodingError(
                message="El archivo no es una imagen válida",
                component="ImageCompressor",
                original_error=e
            )

    @staticmethod
    def _encode(image: Image.Image, quality: int) -> bytes:
        out = io.BytesIO()
        image.save(out, format="JPEG", quality=quality, progressive=True, subsampling=0)
        return out.getvalue()
