"""Setup code validation, setup URI encoding and QR rendering."""

from __future__ import annotations

import io
import re

import qrcode

from hapbridge.core.errors import ConfigValidationError
from hapbridge.core.model import Category

SETUP_CODE_RE = re.compile(r"^\d{3}-\d{2}-\d{3}$")
SETUP_ID_RE = re.compile(r"^[0-9A-Z]{4}$")

# Codes rejected by controllers as too easy to guess.
_TRIVIAL_CODES = frozenset(
    {f"{d}{d}{d}-{d}{d}-{d}{d}{d}" for d in "0123456789"} | {"123-45-678", "876-54-321"}
)

FLAG_NFC = 1
FLAG_IP = 2
FLAG_BLE = 4

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def validate_setup_code(code: str) -> str:
    if not SETUP_CODE_RE.match(code):
        raise ConfigValidationError(f"Setup code '{code}' must have the form NNN-NN-NNN")
    if code in _TRIVIAL_CODES:
        raise ConfigValidationError(f"Setup code '{code}' is too trivial")
    return code


def validate_setup_id(setup_id: str) -> str:
    if not SETUP_ID_RE.match(setup_id):
        raise ConfigValidationError(f"Setup id '{setup_id}' must be four characters of [0-9A-Z]")
    return setup_id


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def encode_setup_uri(setup_code: str, setup_id: str, category: Category, flags: int = FLAG_IP) -> str:
    """Encode the ``X-HM://`` setup URI scanned by controllers."""
    digits = int(validate_setup_code(setup_code).replace("-", ""))
    payload = (int(category) << 31) | (flags << 27) | digits
    return "X-HM://" + _base36(payload).rjust(9, "0") + validate_setup_id(setup_id)


def render_qr(data: str) -> str:
    qr = qrcode.QRCode(border=1, error_correction=qrcode.constants.ERROR_CORRECT_M)
    qr.add_data(data)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()
