"""
=============================================================================
SPAMSCAN - Normalizador de Texto OCR
=============================================================================
Convierte texto ruidoso del OCR a una forma canónica segura para comparar:
homoglifos cirílicos/griegos, diacríticos, leetspeak y artefactos del OCR.

La transformación es pura e idempotente: normalize(normalize(x)) == normalize(x)
=============================================================================
"""

import re
import unicodedata


# Homoglifos (cirílico / griego) → latín
CONFUSABLES = {
    "a": "аα",          # а α
    "e": "еε",          # е ε
    "i": "іι",          # і ι
    "o": "оο",          # о ο
    "p": "рρ",          # р ρ
    "c": "сσϲ",    # с σ ϲ
    "y": "уυ",          # у υ
    "x": "хχ",          # х χ
    "m": "м",                # м
    "s": "ѕ",                # ѕ
    "n": "н",                # н
    "b": "в",                # в
    "h": "һ",                # һ
}

# Sustituciones de símbolos / dígitos por letras
LEETSPEAK = {
    "$": "s",
    "5": "s",
    "@": "a",
    "0": "o",
    "|": "l",
    "!": "l",
}

# Dígrafos que el OCR devuelve en lugar de una sola letra
OCR_DIGRAPHS = {
    "rn": "m",
}

_CONFUSABLE_TABLE = str.maketrans(
    {char: latin for latin, chars in CONFUSABLES.items() for char in chars}
)
_LEET_TABLE = str.maketrans(LEETSPEAK)
_NON_ALNUM = re.compile(r"[\W_]+")


def _strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(raw_text: str) -> str:
    """
    Forma canónica del texto.

    Orden: NFKD + minúsculas, sin diacríticos, homoglifos → latín,
    leetspeak, se eliminan los no alfanuméricos y por último se reparan
    los dígrafos (al final para que una segunda pasada no encuentre nada).
    """
    if not raw_text:
        return ""

    text = unicodedata.normalize("NFKD", raw_text).lower()
    text = _strip_diacritics(text)
    text = text.translate(_CONFUSABLE_TABLE)
    text = text.translate(_LEET_TABLE)
    text = _NON_ALNUM.sub("", text)

    for digraph, letter in OCR_DIGRAPHS.items():
        text = text.replace(digraph, letter)

    return text
