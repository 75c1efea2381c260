from __future__ import annotations

from flask import current_app

from ..errors import UnsupportedPromoError


def _normalize_code(code: str | None) -> str:
    return (code or "").strip().lower()


def _catalog() -> dict[str, dict]:
    raw = current_app.config.get("PROMO_CODES") or {}
    return {_normalize_code(code): dict(entry or {}) for code, entry in raw.items()}


def list_promotions(active_only: bool = False) -> list[dict]:
    promos = []
    for code, entry in sorted(_catalog().items()):
        is_active = bool(entry.get("active", True))
        if active_only and not is_active:
            continue
        promos.append({
            "code": code,
            "id": entry.get("id"),
            "description": entry.get("description"),
            "active": is_active,
        })
    return promos


def resolve_promo(code: str | None) -> dict | None:
    """
    Validate a promo code against the configured allow-list.

    Returns None when no code was supplied. Unknown or inactive codes are an
    input error; the payment processor is never asked.
    """
    normalized = _normalize_code(code)
    if not normalized:
        return None
    entry = _catalog().get(normalized)
    if entry is None:
        raise UnsupportedPromoError(f"Promo code '{code}' is not supported", details={"promo_code": normalized})
    if not entry.get("active", True):
        raise UnsupportedPromoError(f"Promo code '{code}' is no longer active", details={"promo_code": normalized})
    if not entry.get("id"):
        raise UnsupportedPromoError(f"Promo code '{code}' is not configured", details={"promo_code": normalized})
    return {"code": normalized, "id": entry["id"], "description": entry.get("description")}
