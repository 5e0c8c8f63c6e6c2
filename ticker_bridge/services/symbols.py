from __future__ import annotations

DEFAULT_SUFFIX = ".NS"


def normalize_symbol(raw: str, suffix: str = DEFAULT_SUFFIX) -> str:
    """Uppercase and append the provider suffix once. Idempotent."""
    if not isinstance(raw, str):
        raise ValueError("symbol must be a string")
    value = raw.strip().upper()
    if not value:
        raise ValueError("symbol must not be blank")
    suffix = suffix.upper()
    if suffix and not value.endswith(suffix):
        value = f"{value}{suffix}"
    return value


def display_symbol(symbol: str, suffix: str = DEFAULT_SUFFIX) -> str:
    suffix = suffix.upper()
    if suffix and symbol.endswith(suffix) and len(symbol) > len(suffix):
        return symbol[: -len(suffix)]
    return symbol
