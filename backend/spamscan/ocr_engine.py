"""
=============================================================================
SPAMSCAN - Motor de OCR con Estrategias de Respaldo
=============================================================================
Extrae el texto de capturas de llamadas/SMS usando Tesseract.

CAPACIDADES:
1. Preprocesado determinístico (escala de grises + normalización de contraste)
2. Modos de segmentación de página (PSM) con respaldo ordenado
3. Cada intento compite contra un deadline; el perdedor se abandona
4. Un fallo del OCR nunca es fatal: el resultado es texto vacío

PLAN DE INTENTOS (se detiene en el primer texto no vacío):
  a) original   + BLOCK
  b) comprimida + BLOCK
  c) original   + SINGLE_LINE
  d) original   + AUTO
=============================================================================
"""

import asyncio
import io
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import pytesseract
from loguru import logger
from PIL import Image, ImageOps

from .exceptions import OCREngineError


# =============================================================================
# ENUMERACIONES
# =============================================================================

class PageSegMode(int, Enum):
    """Modos de segmentación de página de Tesseract (--psm)."""
    AUTO = 3            # Segmentación automática
    BLOCK = 6           # Un bloque uniforme de texto
    SINGLE_LINE = 7     # Una sola línea
    SPARSE_TEXT = 11    # Texto disperso, sin orden


class ImageSource(str, Enum):
    """Buffer usado en un intento."""
    ORIGINAL = "original"
    COMPRESSED = "compressed"


OCR_TIMEOUT = "OCR_TIMEOUT"


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class OCRAttempt:
    """Resultado de un intento individual."""
    source: ImageSource
    mode: PageSegMode
    text: str = ""
    elapsed_ms: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return bool(self.text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "psm": self.mode.value,
            "strategy": self.mode.name,
            "length": len(self.text),
            "elapsed_ms": round(self.elapsed_ms, 2),
            "error": self.error,
        }


@dataclass
class OCRResult:
    """Resultado completo de la extracción."""
    text: str
    attempts: List[OCRAttempt] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def errors(self) -> List[str]:
        return [
            f"{a.mode.name}/{a.source.value}: {a.error}"
            for a in self.attempts
            if a.error
        ]


Recognizer = Callable[[Image.Image, PageSegMode], str]


# =============================================================================
# MOTOR DE OCR
# =============================================================================

class OCREngine:
    """
    Motor de OCR con deadline por intento y respaldo de estrategias.

    El reconocimiento corre en un hilo del executor; el deadline se implementa
    como una carrera entre esa llamada y un temporizador. Si gana el
    temporizador, la llamada queda desacoplada y su resultado se descarta.
    """

    PRIMARY_MODE = PageSegMode.BLOCK
    FALLBACK_MODES: Tuple[PageSegMode, ...] = (PageSegMode.SINGLE_LINE, PageSegMode.AUTO)

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        language: str = "eng",
        recognizer: Optional[Recognizer] = None,
        fallback_modes: Optional[Sequence[PageSegMode]] = None,
    ):
        """
        Inicializa el motor OCR.

        Args:
            timeout_seconds: Deadline de cada intento
            language: Idioma(s) de Tesseract
            recognizer: Función (imagen, psm) -> texto; por defecto pytesseract
            fallback_modes: Modos a probar sobre el original tras el primario
        """
        self.timeout_seconds = timeout_seconds
        self.language = language
        self.recognizer = recognizer or self._tesseract
        self.fallback_modes = tuple(fallback_modes) if fallback_modes is not None else self.FALLBACK_MODES

    async def run(self, original: bytes, compressed: Optional[bytes] = None) -> OCRResult:
        """
        Ejecuta el plan de intentos hasta obtener texto.

        Args:
            original: Imagen a resolución completa
            compressed: Imagen comprimida (opcional)

        Returns:
            OCRResult; text == "" si todos los intentos fallan
        """
        start_time = time.perf_counter()
        attempts: List[OCRAttempt] = []
        text = ""

        for source, buffer, mode in self._plan(original, compressed):
            attempt = await self._attempt(buffer, source, mode)
            attempts.append(attempt)
            if attempt.succeeded:
                text = attempt.text
                break

        elapsed = (time.perf_counter() - start_time) * 1000
        if not text:
            logger.warning(f"[OCR] Sin texto tras {len(attempts)} intentos ({elapsed:.0f}ms)")

        return OCRResult(text=text, attempts=attempts, elapsed_ms=elapsed)

    async def extract(
        self,
        image_data: bytes,
        mode: PageSegMode = PageSegMode.BLOCK,
        deadline: Optional[float] = None,
    ) -> str:
        """Un único intento; timeout o error del motor devuelven ""."""
        attempt = await self._attempt(image_data, ImageSource.ORIGINAL, mode, deadline)
        return attempt.text

    def _plan(
        self,
        original: bytes,
        compressed: Optional[bytes]
    ) -> Iterator[Tuple[ImageSource, bytes, PageSegMode]]:
        """Secuencia perezosa de intentos (fuente, buffer, modo)."""
        yield ImageSource.ORIGINAL, original, self.PRIMARY_MODE

        # Si el compresor devolvió el original, el intento sería idéntico
        if compressed and compressed != original:
            yield ImageSource.COMPRESSED, compressed, self.PRIMARY_MODE

        for mode in self.fallback_modes:
            yield ImageSource.ORIGINAL, original, mode

    async def _attempt(
        self,
        image_data: bytes,
        source: ImageSource,
        mode: PageSegMode,
        deadline: Optional[float] = None,
    ) -> OCRAttempt:
        """Intento individual compitiendo contra el deadline."""
        timeout = deadline if deadline is not None else self.timeout_seconds
        attempt = OCRAttempt(source=source, mode=mode)

        loop = asyncio.get_running_loop()
        start_time = time.perf_counter()
        engine_call = loop.run_in_executor(None, self._recognize, image_data, mode)

        try:
            done, _ = await asyncio.wait({engine_call}, timeout=timeout)
        except asyncio.CancelledError:
            engine_call.add_done_callback(_discard_result)
            raise
        attempt.elapsed_ms = (time.perf_counter() - start_time) * 1000

        if engine_call not in done:
            # No se puede cancelar el hilo: se desacopla y se ignora su resultado
            engine_call.add_done_callback(_discard_result)
            attempt.error = OCR_TIMEOUT
            logger.warning(
                f"[OCR] PSM={mode.value} ({mode.name}) source={source.value} "
                f"timeout tras {attempt.elapsed_ms:.0f}ms"
            )
            return attempt

        try:
            attempt.text = (engine_call.result() or "").strip()
        except Exception as e:
            attempt.error = f"{type(e).__name__}: {e}"
            logger.warning(
                f"[OCR] PSM={mode.value} ({mode.name}) source={source.value} "
                f"error tras {attempt.elapsed_ms:.0f}ms: {attempt.error}"
            )
            return attempt

        logger.info(
            f"[OCR] PSM={mode.value} ({mode.name}) source={source.value} "
            f"len={len(attempt.text)} took={attempt.elapsed_ms:.0f}ms"
        )
        return attempt

    # =========================================================================
    # RECONOCIMIENTO (hilo del executor)
    # =========================================================================

    def _recognize(self, image_data: bytes, mode: PageSegMode) -> str:
        image = self.preprocess(image_data)
        return self.recognizer(image, mode)

    @staticmethod
    def preprocess(image_data: bytes) -> Image.Image:
        """Escala de grises + estiramiento de contraste."""
        image = Image.open(io.BytesIO(image_data))
        image = ImageOps.exif_transpose(image)
        gray = ImageOps.grayscale(image)
        return ImageOps.autocontrast(gray)

    def _tesseract(self, image: Image.Image, mode: PageSegMode) -> str:
        config = f"--psm {mode.value} -c preserve_interword_spaces=1"
        try:
            return pytesseract.image_to_string(image, lang=self.language, config=config)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            raise OCREngineError(
                message=f"Tesseract falló (psm={mode.value})",
                component="OCREngine",
                original_error=e
            )


def configure_tesseract(tesseract_cmd: Optional[str]) -> None:
    """
    Fija la ruta del binario de tesseract si no está en PATH.

    pytesseract la guarda a nivel de proceso, por eso se configura una vez al
    construir la aplicación y no por instancia de OCREngine.
    """
    if tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        logger.info(f"[OCR] tesseract_cmd={tesseract_cmd}")


def _discard_result(future: "asyncio.Future[str]") -> None:
    """Consume el resultado de una llamada abandonada."""
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.debug(f"[OCR] Intento abandonado terminó con error: {error}")
