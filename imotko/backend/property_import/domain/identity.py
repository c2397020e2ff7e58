# property_import/domain/identity.py
from __future__ import annotations

import hashlib

EXTERNAL_ID_PREFIX = "ext_"
EXTERNAL_ID_HEX_LEN = 32


def _norm(x: str | None) -> str:
    return (x or "").strip().lower()


def compute_external_id(title: str | None, address: str | None, location: str | None) -> str:
    """
    Deterministic dedup key from the salient listing text.

    Same (title, address, location) after lower/trim => same id, in any run.
    """
    unique = f"{_norm(title)}|{_norm(address)}|{_norm(location)}"
    digest = hashlib.sha256(unique.encode("utf-8")).hexdigest()
    return f"{EXTERNAL_ID_PREFIX}{digest[:EXTERNAL_ID_HEX_LEN]}"
