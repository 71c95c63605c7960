"""Address and coin-type normalization helpers."""

from __future__ import annotations

import config


def normalize_address(value: str | None) -> str:
    """Normalize on-chain address keys for internal maps/dedup."""
    return str(value or "").strip().lower()


def normalize_coin_type(value: str | None) -> str:
    """Return a fully-qualified `0x<package>::<module>::<name>` coin type."""
    raw = str(value or "").strip()
    if not raw:
        return ""
    return raw if raw.startswith("0x") else f"0x{raw}"


def coin_parts(value: str | None) -> tuple[str, str, str]:
    parts = normalize_coin_type(value).split("::")
    while len(parts) < 3:
        parts.append("")
    return parts[0], parts[1], parts[2]


def coin_symbol(value: str | None) -> str:
    return coin_parts(value)[2].upper()


def is_native_coin(value: str | None) -> bool:
    native_symbol = coin_symbol(getattr(config, "SUI_NATIVE_COIN", "0x2::sui::SUI"))
    return coin_symbol(value) == native_symbol and coin_parts(value)[1].lower() == native_symbol.lower()
