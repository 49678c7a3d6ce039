"""
=============================================================================
SPAMSCAN - Extractor de Números Telefónicos
=============================================================================
Primera coincidencia con forma de teléfono (sin validar país ni longitud).
=============================================================================
"""

import re


NOT_FOUND = "Not Found"

# "+" opcional, un dígito y al menos 7 caracteres más de dígitos/espacios/-/()
PHONE_PATTERN = re.compile(r"\+?[0-9][0-9\s\-()]{7,}")
_WHITESPACE = re.compile(r"\s+")


def extract_phone(raw_text: str) -> str:
    """Devuelve el primer candidato (espacios colapsados) o "Not Found"."""
    if not raw_text:
        return NOT_FOUND

    matches = PHONE_PATTERN.findall(raw_text)
    if not matches:
        return NOT_FOUND

    return _WHITESPACE.sub(" ", matches[0]).strip() or NOT_FOUND
