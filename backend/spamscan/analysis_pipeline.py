"""
=============================================================================
SPAMSCAN - Pipeline de Análisis de Capturas
=============================================================================
Orquesta: compresión → (subida de la comprimida || OCR original→comprimida)
→ normalización + clasificación → extracción de teléfono.

- Un fallo del OCR se absorbe (texto vacío, el pipeline continúa)
- Un fallo del blob store es fatal para la petición (500)
- El resultado siempre incluye un veredicto
=============================================================================
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from loguru import logger

from .blob_store import BlobStore
from .image_compressor import ImageCompressor
from .ocr_engine import OCREngine, OCRResult
from .phone_extractor import extract_phone
from .spam_classifier import SpamClassifier, SpamLayer


@dataclass
class AnalysisResult:
    """Resultado del análisis de una captura."""
    image_url: str
    extracted_number: str
    is_spam: bool
    raw_text: str
    normalized_text: str
    matched_layer: Optional[SpamLayer]
    ocr: OCRResult
    original_bytes: int
    compressed_bytes: int
    timings_ms: Dict[str, float] = field(default_factory=dict)

    def debug_dict(self) -> Dict[str, Any]:
        """Campos de diagnóstico (solo con ?debug=1)."""
        return {
            "rawOCR": self.raw_text,
            "normalized": self.normalized_text,
            "matchedLayer": self.matched_layer.value if self.matched_layer else None,
            "timings": {k: round(v, 2) for k, v in self.timings_ms.items()},
            "sizes": {
                "original": self.original_bytes,
                "compressed": self.compressed_bytes,
            },
            "ocrAttempts": [a.to_dict() for a in self.ocr.attempts],
            "ocrErrors": self.ocr.errors,
        }


class AnalysisPipeline:
    """Pipeline de análisis (una tarea lógica por petición)."""

    def __init__(
        self,
        compressor: ImageCompressor,
        ocr_engine: OCREngine,
        classifier: SpamClassifier,
        blob_store: BlobStore,
    ):
        self.compressor = compressor
        self.ocr_engine = ocr_engine
        self.classifier = classifier
        self.blob_store = blob_store

    async def analyze(self, image_data: bytes, folder: str) -> AnalysisResult:
        """
        Analiza una captura.

        Args:
            image_data: Bytes de la imagen subida
            folder: Carpeta de destino en el blob store

        Returns:
            AnalysisResult con URL, número extraído y veredicto

        Raises:
            ImageDecodingError: si la imagen no se puede decodificar
            BlobStoreError: si la subida falla
        """
        start_time = time.perf_counter()
        timings: Dict[str, float] = {}

        # 1. Compresión (CPU, fuera del event loop)
        compressed = await asyncio.to_thread(self.compressor.compress, image_data)
        timings["compress"] = (time.perf_counter() - start_time) * 1000

        # 2. Subida y OCR en paralelo
        ocr_task = asyncio.ensure_future(
            self._timed(self.ocr_engine.run(image_data, compressed), "ocr", timings)
        )
        try:
            image_url = await self._timed(self.blob_store.upload(compressed, folder), "upload", timings)
        except BaseException:
            # Sin URL no hay resultado: el OCR pendiente se cancela y se recoge
            ocr_task.cancel()
            await asyncio.gather(ocr_task, return_exceptions=True)
            raise
        ocr_result = await ocr_task

        # 3. Clasificación y extracción
        text = ocr_result.text
        matched_layer = self.classifier.explain(text)
        extracted_number = extract_phone(text)

        timings["total"] = (time.perf_counter() - start_time) * 1000

        logger.info(
            f"[Pipeline] {len(image_data)} -> {len(compressed)} bytes, "
            f"spam={matched_layer is not None} ({matched_layer.value if matched_layer else '-'}), "
            f"number={extracted_number}, total={timings['total']:.0f}ms"
        )

        return AnalysisResult(
            image_url=image_url,
            extracted_number=extracted_number,
            is_spam=matched_layer is not None,
            raw_text=text,
            normalized_text=self.classifier.normalize(text),
            matched_layer=matched_layer,
            ocr=ocr_result,
            original_bytes=len(image_data),
            compressed_bytes=len(compressed),
            timings_ms=timings,
        )

    @staticmethod
    async def _timed(coro, name: str, timings: Dict[str, float]):
        start_time = time.perf_counter()
        try:
            return await coro
        finally:
            timings[name] = (time.perf_counter() - start_time) * 1000
