"""
ShieldLedger Canonical JSON (RFC 8785 subset)

Deterministic byte representation for everything the ledger persists.
Every WAL record payload goes through canonical_json_bytes so that a replay
on any platform hashes to the same chain.

Ledger Policy:
- NO FLOATS and NO Decimals: amounts are integer base units
- Object keys sorted by UTF-8 bytes, no whitespace
- Strings escaped minimally, literal UTF-8 otherwise
- Enums encode as their .value
"""

import json
from decimal import Decimal
from typing import Any


class CanonicalEncodingError(Exception):
    """Raised when data cannot be canonically encoded."""
    pass


class FloatNotAllowedError(CanonicalEncodingError):
    """Raised when a float or Decimal is detected in a ledger payload."""
    pass


CONTROL_CHAR_MAP = {
    '\x08': '\\b', '\x09': '\\t', '\x0a': '\\n', '\x0c': '\\f', '\x0d': '\\r',
}


def _escape_string(s: str) -> str:
    """Escape backslash, double quote and control characters (0x00-0x1F)."""
    result = []
    for char in s:
        if char == '\\':
            result.append('\\\\')
        elif char == '"':
            result.append('\\"')
        elif char in CONTROL_CHAR_MAP:
            result.append(CONTROL_CHAR_MAP[char])
        elif ord(char) < 0x20:
            result.append(f'\\u{ord(char):04x}')
        else:
            result.append(char)
    return ''.join(result)


def _encode_value(value: Any, path: str = "") -> str:
    if value is None:
        return 'null'

    # bool before int: bool is a subclass of int
    if isinstance(value, bool):
        return 'true' if value else 'false'

    if isinstance(value, int):
        return str(value)

    if isinstance(value, (float, Decimal)):
        raise FloatNotAllowedError(
            f"Non-integer number {value!r} at path '{path}' not allowed in a ledger "
            f"payload. Use integer base units."
        )

    if isinstance(value, str):
        return f'"{_escape_string(value)}"'

    if isinstance(value, (list, tuple)):
        elements = [_encode_value(item, f"{path}[{i}]") for i, item in enumerate(value)]
        return '[' + ','.join(elements) + ']'

    if isinstance(value, dict):
        for key in value.keys():
            if not isinstance(key, str):
                raise CanonicalEncodingError(
                    f"Dictionary key must be string, got {type(key).__name__} at path '{path}'"
                )

        sorted_keys = sorted(value.keys(), key=lambda k: k.encode('utf-8'))

        pairs = []
        for key in sorted_keys:
            key_path = f"{path}.{key}" if path else key
            pairs.append(f'"{_escape_string(key)}":{_encode_value(value[key], key_path)}')

        return '{' + ','.join(pairs) + '}'

    if hasattr(value, 'value'):
        return _encode_value(value.value, path)

    raise CanonicalEncodingError(
        f"Cannot canonically encode {type(value).__name__} at path '{path}'"
    )


def canonical_json_bytes(obj: Any) -> bytes:
    """
    Convert object to canonical JSON bytes.

    Example:
        >>> canonical_json_bytes({"b": 1, "a": 2})
        b'{"a":2,"b":1}'
    """
    return _encode_value(obj).encode('utf-8')


def load_canonical(data: bytes) -> Any:
    """Decode canonical bytes. Floats in the input are rejected."""
    def _reject_float(raw: str) -> Any:
        raise FloatNotAllowedError(f"Float literal {raw} in ledger payload")

    return json.loads(data.decode('utf-8'), parse_float=_reject_float)
