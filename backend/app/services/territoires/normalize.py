from __future__ import annotations

import re
import unicodedata

# Ligaduras que NFKD no descompone
LIGATURES = {"œ": "oe", "æ": "ae"}

# Guiones y apóstrofes tipográficos que se pliegan a espacio
FOLD_CHARS = "-‐‑‒–—―'’‘`´"

_FOLD_RE = re.compile("[" + re.escape(FOLD_CHARS) + "]")
_NON_WORD_RE = re.compile(r"[^\w\s]|_")
_SPACES_RE = re.compile(r"\s+")


def _strip_marks(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_nom(text: str | None) -> str:
    """
    Normaliza un nombre de territorio para comparación.

    minúsculas, sin acentos, guiones/apóstrofes -> espacio, sin puntuación,
    espacios colapsados. Función total e idempotente:
    normalize_nom(normalize_nom(x)) == normalize_nom(x).
    """
    if not text:
        return ""

    t = _strip_marks(text).casefold()
    for lig, repl in LIGATURES.items():
        t = t.replace(lig, repl)
    # casefold puede reintroducir marcas combinantes (İ -> i̇)
    t = _strip_marks(t)

    t = _FOLD_RE.sub(" ", t)
    t = _NON_WORD_RE.sub(" ", t)
    t = _SPACES_RE.sub(" ", t).strip()
    return t
