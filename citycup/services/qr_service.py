"""
QR codes for certificate verification.

A released certificate carries a QR code pointing to
CERTIFICATE_VERIFY_URL + certificate number. Uses `segno`, a pure-Python QR
encoder (no native libs required).
"""
from __future__ import annotations

import io
import re
import uuid

import segno

from citycup.config import settings

_NUMBER_RE = re.compile(r"^CERT-\d{4}-\d+-\d+-[0-9A-F]{10}$")


def make_certificate_token() -> str:
    """Random uppercase suffix for certificate numbers."""
    return uuid.uuid4().hex[:10].upper()


def verify_url(certificate_number: str) -> str:
    base = settings.CERTIFICATE_VERIFY_URL
    if not base.endswith("/"):
        base += "/"
    return base + certificate_number


def generate_qr_png(data: str, scale: int = 10, border: int = 2) -> bytes:
    """
    Render `data` as a QR code PNG.

    Parameters
    ----------
    data   : the string to encode (normally a verification URL)
    scale  : pixels per module
    border : quiet-zone width in modules
    """
    return generate_qr_buffered(data, scale, border).read()


def generate_qr_buffered(data: str, scale: int = 10, border: int = 2) -> io.BytesIO:
    """Same as generate_qr_png but returns a seeked BytesIO (for BufferedInputFile)."""
    qr  = segno.make_qr(data, error="M")
    buf = io.BytesIO()
    qr.save(buf, kind="png", scale=scale, border=border)
    buf.seek(0)
    return buf


def validate_certificate_number(number: str) -> bool:
    """Basic shape check of CERT-<year>-<competition>-<city>-<token>."""
    return bool(_NUMBER_RE.match(number or ""))
