"""
=============================================================================
SPAMSCAN - Clasificador de Spam por Capas
=============================================================================
Evalúa el texto crudo del OCR y su forma normalizada. Se detiene en la
primera capa que coincide:

1. EXACT       - palabra completa "spam" (sin distinguir mayúsculas)
2. SPACED      - letras separadas por espacios ("s p a m")
3. OCR_CONFUSED - confusiones típicas del OCR por posición ("5pam", "$pan")
4. NORMALIZED  - "spam" dentro del texto normalizado (homoglifos, leetspeak)
5. SYNONYM     - sinónimos (scam, junk, fraud) en crudo y normalizado

Los falsos positivos de la capa 3 son un compromiso aceptado (recall > precisión):
solo exige límite de palabra al inicio, así "5panx" o "spaNish" también cuentan
y el veredicto no cambia al añadir texto al final.
=============================================================================
"""

import re
from enum import Enum
from typing import Callable, List, Optional, Tuple

from . import text_normalizer


class SpamLayer(str, Enum):
    """Capa del clasificador que produjo la coincidencia."""
    EXACT = "EXACT"
    SPACED = "SPACED"
    OCR_CONFUSED = "OCR_CONFUSED"
    NORMALIZED = "NORMALIZED"
    SYNONYM = "SYNONYM"


class SpamClassifier:
    """Clasificador de spam basado en patrones."""

    TARGET_TERM = "spam"
    SYNONYMS = ["scam", "junk", "fraud"]

    def __init__(self, normalizer: Callable[[str], str] = text_normalizer.normalize):
        self.normalize = normalizer

        term = re.escape(self.TARGET_TERM)
        spaced = r"\s*".join(re.escape(ch) for ch in self.TARGET_TERM)
        synonyms = "|".join(re.escape(s) for s in self.SYNONYMS)

        self._exact = re.compile(rf"\b{term}\b", re.IGNORECASE)
        self._spaced = re.compile(rf"\b{spaced}\b", re.IGNORECASE)
        # Anclada solo al inicio: texto pegado al final no anula la coincidencia
        self._ocr_confused = re.compile(r"\b[s$5]\s*[pP]\s*[a@]\s*[mMnRN]")
        self._synonym_word = re.compile(rf"\b({synonyms})\b", re.IGNORECASE)
        self._synonym_any = re.compile(rf"({synonyms})")

    def is_spam(self, raw_text: str) -> bool:
        """True si alguna capa detecta spam en el texto."""
        return self.explain(raw_text) is not None

    def explain(self, raw_text: str) -> Optional[SpamLayer]:
        """Devuelve la primera capa que coincide, o None si no hay evidencia."""
        if not raw_text:
            return None

        raw_layers: List[Tuple[SpamLayer, "re.Pattern[str]"]] = [
            (SpamLayer.EXACT, self._exact),
            (SpamLayer.SPACED, self._spaced),
            (SpamLayer.OCR_CONFUSED, self._ocr_confused),
        ]
        for layer, pattern in raw_layers:
            if pattern.search(raw_text):
                return layer

        normalized = self.normalize(raw_text)
        if self.TARGET_TERM in normalized:
            return SpamLayer.NORMALIZED

        if self._synonym_word.search(raw_text) or self._synonym_any.search(normalized):
            return SpamLayer.SYNONYM

        return None

