from __future__ import annotations

import unicodedata


def normalize(label: str) -> str:
    """Fold a checklist label so lookups ignore case, accents and spacing."""

    decomposed = unicodedata.normalize("NFKD", label)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return "".join(stripped.strip().lower().split())
