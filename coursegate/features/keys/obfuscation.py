"""
coursegate/features/keys/obfuscation.py

Non-cryptographic digest used to keep raw activation codes out of storage.

This is the 32-bit rolling checksum ``h = h * 31 + unit`` over the UTF-16
code units of the input, wrapped to a signed 32-bit integer and written in
base 36 (with a leading "-" for negative values). It is deterministic and
order-sensitive but NOT collision resistant and NOT a security boundary.
Digests already sitting in the used-code ledgers depend on this exact
function, so it must not be swapped for a cryptographic hash without
migrating those ledgers.
"""

_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_MASK = 0xFFFFFFFF


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_DIGITS[rem])
    return sign + "".join(reversed(out))


def _utf16_units(text: str):
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def rolling_checksum(text: str) -> int:
    h = 0
    for unit in _utf16_units(text):
        h = (h * 31 + unit) & _MASK
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def obfuscate_code(code: str) -> str:
    """Digest of ``code`` exactly as given (callers normalize first)."""
    return to_base36(rolling_checksum(code))


def normalize_code(code: str) -> str:
    """Strip dashes and surrounding whitespace, upper-case."""
    return code.strip().replace("-", "").upper()
