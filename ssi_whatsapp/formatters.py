"""
WhatsApp Formatters

Phone number normalization, console QR rendering and the HTML status page.
"""

import re
import sys
import logging
from typing import Optional, TextIO, Union

import qrcode

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_CODE = "91"
LOCAL_NUMBER_LENGTH = 10
CHAT_SUFFIX = "@c.us"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: Union[str, int], country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """
    Reduce a phone number to the digits WhatsApp expects.

    All non-digit characters are dropped. A bare ten digit number is treated
    as local and gets the country code prepended; anything else is kept as is.

    Args:
        phone: Phone number as typed by the caller
        country_code: Prefix for ten digit numbers

    Returns:
        Digits only phone number
    """
    digits = _NON_DIGITS.sub("", str(phone))
    if len(digits) == LOCAL_NUMBER_LENGTH:
        digits = country_code + digits
    return digits


def to_chat_id(phone: Union[str, int], country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Recipient address for a phone number, e.g. 919876543210@c.us."""
    return f"{normalize_phone(phone, country_code)}{CHAT_SUFFIX}"


def render_qr(payload: str, out: Optional[TextIO] = None):
    """Print a pairing QR code to the terminal."""
    out = out or sys.stdout
    qr = qrcode.QRCode(border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    qr.print_ascii(out=out, invert=True)


def render_status_page(ready: bool) -> str:
    """Small HTML page showing whether WhatsApp is online."""
    color = "green" if ready else "red"
    label = "ONLINE" if ready else "OFFLINE / LOADING"
    return f"""
        <div style="text-align:center; padding:50px; font-family: sans-serif;">
            <h1>SSI WhatsApp Server</h1>
            <h2 style="color: {color}">
                Status: {label}
            </h2>
        </div>
    """
