from __future__ import annotations
import hashlib
import unicodedata


def normalize_term(term: str) -> str:
    """
    NFKC + casefold + whitespace collapse.
    normalize_term(normalize_term(x)) == normalize_term(x)
    """
    if not term:
        return ""
    t = unicodedata.normalize("NFKC", str(term))
    return " ".join(t.casefold().split())


def keyword_id(source: str, market: str, term: str) -> str:
    """Deterministic keyword id (sha1 hex, 40 chars) of source|market|normalized term."""
    key = "|".join([
        (source or "").strip().lower(),
        (market or "").strip().lower(),
        normalize_term(term),
    ])
    return hashlib.sha1(key.encode("utf-8")).hexdigest()


def hash_term(term: str, namespace: str = "") -> str:
    payload = f"{namespace}|{normalize_term(term)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
