"""
PIX Codec Module - SIGNEA Event Management Core

This module builds the static BR Code payload used to charge event
registration fees through PIX, and renders it as a QR code image. The BR Code
is the EMVCo Merchant-Presented QR format: an ordered sequence of TLV
(tag-length-value) fields closed by a CRC-16/CCITT-FALSE checksum. The
output must match byte for byte what banking apps expect.

Features:
- TLV field encoding with length bound checks
- CRC-16/CCITT-FALSE checksum computation
- BR Code payload assembly and self-consistency validation
- QR code image rendering (PNG bytes or data URL)
- Charge request validation before payload assembly
"""

import base64
import io
import logging
import math
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, List, Tuple, Union

import qrcode
from PIL import Image

from signea.modules.exceptions import ValidationError

logger = logging.getLogger(__name__)

PIX_GUI = 'br.gov.bcb.pix'
PIX_DESCRIPTION = 'SIGNEA'
CRC_TAG = '6304'

MAX_PAYEE_KEY_LENGTH = 77
MAX_MERCHANT_NAME_LENGTH = 25
MAX_MERCHANT_CITY_LENGTH = 15
MAX_TRANSACTION_ID_LENGTH = 25
MAX_TLV_VALUE_LENGTH = 99

DEFAULT_QR_WIDTH = 300

_TAG_PATTERN = re.compile(r'^\d{2}$')
_TRANSACTION_ID_PATTERN = re.compile(r'^[A-Za-z0-9]+$')

Amount = Union[Decimal, float, int, str]


@dataclass(frozen=True)
class PixChargeRequest:
    """A single charge to encode. Lives only while the payload is built."""
    payee_key: str
    merchant_name: str
    merchant_city: str
    amount: Decimal
    transaction_id: str


def tlv(tag: str, value: str) -> str:
    """
    Encode one TLV field.

    Args:
        tag (str): Two-digit field identifier
        value (str): Field value

    Returns:
        str: tag, zero-padded two-digit length and value

    Raises:
        ValidationError: If the tag is malformed or the value does not fit
            the two-digit length field
    """
    if not _TAG_PATTERN.match(tag):
        raise ValidationError(f"TLV tag must be two digits, got {tag!r}")

    if len(value) > MAX_TLV_VALUE_LENGTH:
        raise ValidationError(
            f"TLV value for tag {tag} is {len(value)} characters long "
            f"(maximum {MAX_TLV_VALUE_LENGTH})",
            details={'tag': tag, 'length': len(value)}
        )

    return f"{tag}{len(value):02d}{value}"


def crc16(payload: str) -> str:
    """
    Compute the CRC-16/CCITT-FALSE checksum of a payload.

    Initial register 0xFFFF, polynomial 0x1021, no final XOR. Each
    character's code point is shifted into the high byte of the register.

    Args:
        payload (str): Text to checksum

    Returns:
        str: Four uppercase hexadecimal digits
    """
    crc = 0xFFFF
    for char in payload:
        crc ^= ord(char) << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = (crc << 1) ^ 0x1021
            else:
                crc <<= 1
            crc &= 0xFFFF

    return f"{crc:04X}"


def _to_decimal(amount: Amount) -> Decimal:
    if isinstance(amount, bool):
        raise ValidationError("Amount must be a number")

    if isinstance(amount, float):
        if not math.isfinite(amount):
            raise ValidationError("Amount must be a finite number", details={'amount': str(amount)})
        return Decimal(amount)

    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number", details={'amount': str(amount)})

    if not value.is_finite():
        raise ValidationError("Amount must be a finite number", details={'amount': str(amount)})

    return value


def format_amount(amount: Decimal) -> str:
    """Format an amount with exactly two decimal places and a dot separator."""
    return str(amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def build_charge_request(payee_key: str, merchant_name: str, merchant_city: str,
                         amount: Amount, transaction_id: str) -> PixChargeRequest:
    """
    Validate raw charge fields and build a PixChargeRequest.

    Merchant name and city are not rejected when long; they are truncated
    during payload assembly.

    Raises:
        ValidationError: On an empty or over-long key, a non-finite or
            negative amount, or a malformed transaction id
    """
    payee_key = (payee_key or '').strip()
    if not payee_key:
        raise ValidationError("PIX key is required")

    if len(payee_key) > MAX_PAYEE_KEY_LENGTH:
        raise ValidationError(
            f"PIX key must be at most {MAX_PAYEE_KEY_LENGTH} characters",
            details={'length': len(payee_key)}
        )

    if not merchant_name or not merchant_name.strip():
        raise ValidationError("Merchant name is required")

    if not merchant_city or not merchant_city.strip():
        raise ValidationError("Merchant city is required")

    value = _to_decimal(amount)
    if value < 0:
        raise ValidationError("Amount must not be negative", details={'amount': str(value)})

    # negative zero would be formatted as "-0.00"
    if value.is_zero():
        value = abs(value)

    if not transaction_id or len(transaction_id) > MAX_TRANSACTION_ID_LENGTH:
        raise ValidationError(
            f"Transaction id must have between 1 and {MAX_TRANSACTION_ID_LENGTH} characters"
        )

    if not _TRANSACTION_ID_PATTERN.match(transaction_id):
        raise ValidationError(
            "Transaction id must be alphanumeric",
            details={'transaction_id': transaction_id}
        )

    return PixChargeRequest(
        payee_key=payee_key,
        merchant_name=merchant_name,
        merchant_city=merchant_city,
        amount=value,
        transaction_id=transaction_id
    )


def generate_pix_payload(request: PixChargeRequest) -> str:
    """
    Assemble the BR Code payload for a charge.

    The point of initiation method is always "12", whatever the charge.

    Args:
        request (PixChargeRequest): Validated charge

    Returns:
        str: Complete BR Code string ending with the CRC
    """
    merchant_account_info = tlv(
        '26',
        tlv('00', PIX_GUI) + tlv('01', request.payee_key) + tlv('02', PIX_DESCRIPTION)
    )

    payload = (
        tlv('00', '01') +
        tlv('01', '12') +
        merchant_account_info +
        tlv('52', '0000') +
        tlv('53', '986') +
        tlv('54', format_amount(request.amount)) +
        tlv('58', 'BR') +
        tlv('59', request.merchant_name[:MAX_MERCHANT_NAME_LENGTH]) +
        tlv('60', request.merchant_city[:MAX_MERCHANT_CITY_LENGTH]) +
        tlv('62', tlv('05', request.transaction_id))
    )

    payload += CRC_TAG
    return payload + crc16(payload)


def parse_tlv(payload: str) -> List[Tuple[str, str]]:
    """
    Split a TLV string into its top-level (tag, value) fields.

    Raises:
        ValidationError: If a field header or length is malformed
    """
    fields = []
    position = 0

    while position < len(payload):
        header = payload[position:position + 4]
        if len(header) < 4 or not header.isdigit():
            raise ValidationError(f"Malformed TLV header at position {position}")

        tag, length = header[:2], int(header[2:])
        value = payload[position + 4:position + 4 + length]
        if len(value) != length:
            raise ValidationError(f"Truncated TLV value for tag {tag}")

        fields.append((tag, value))
        position += 4 + length

    return fields


def validate_pix_payload(payload: str) -> bool:
    """
    Check that a payload ends with a CRC field matching its content.

    Returns:
        bool: True if the trailing checksum matches
    """
    if len(payload) < 8 or payload[-8:-4] != CRC_TAG:
        return False

    return crc16(payload[:-4]) == payload[-4:].upper()


def render_pix_qr_image(payload: str, width: int = DEFAULT_QR_WIDTH) -> bytes:
    """
    Render a payload as a square PNG QR code.

    Args:
        payload (str): BR Code string
        width (int): Raster width and height in pixels

    Returns:
        bytes: PNG-encoded image
    """
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4
    )
    qr.add_data(payload)
    qr.make(fit=True)

    img = qr.make_image(fill_color='black', back_color='white').get_image()
    img = img.resize((width, width), Image.NEAREST)

    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()


def render_pix_qr_data_url(payload: str, width: int = DEFAULT_QR_WIDTH) -> str:
    """Render a payload as a ``data:image/png;base64`` URL."""
    image_base64 = base64.b64encode(render_pix_qr_image(payload, width)).decode()
    return f"data:image/png;base64,{image_base64}"


class PixGenerator:
    """
    Issues PIX charges for a single payee.
    Holds the merchant identity and QR settings so callers only supply the
    amount and the transaction id of each charge.
    """

    def __init__(self, payee_key: str, merchant_name: str, merchant_city: str,
                 qr_width: int = DEFAULT_QR_WIDTH):
        """
        Initialize the generator with the merchant identity.

        Args:
            payee_key (str): PIX key receiving the payments
            merchant_name (str): Merchant name shown by banking apps
            merchant_city (str): Merchant city
            qr_width (int): Width of rendered QR images in pixels
        """
        self.payee_key = payee_key
        self.merchant_name = merchant_name
        self.merchant_city = merchant_city
        self.qr_width = qr_width

    def create_charge(self, amount: Amount, transaction_id: str) -> Dict[str, Any]:
        """
        Build the payload and QR image for one charge.

        Args:
            amount: Charge amount in BRL
            transaction_id (str): Reference label, usually the registration id

        Returns:
            Dict[str, Any]: Payload, formatted amount and QR data URL

        Raises:
            ValidationError: If the charge fields are invalid
        """
        request = build_charge_request(
            self.payee_key,
            self.merchant_name,
            self.merchant_city,
            amount,
            transaction_id
        )

        payload = generate_pix_payload(request)
        logger.info(f"PIX payload generated for transaction {transaction_id}")

        return {
            'payload': payload,
            'transaction_id': request.transaction_id,
            'amount': format_amount(request.amount),
            'qr_code': render_pix_qr_data_url(payload, self.qr_width)
        }
