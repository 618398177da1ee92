# Overview: QR pickup payload for the dispensary scanner.

from __future__ import annotations

import base64
import io
import json
from datetime import datetime

import qrcode

from campuscare.time_utils import to_utc_z, utcnow


def _currency_units(amount_cents: int) -> int | float:
    whole, rest = divmod(amount_cents, 100)
    return whole if rest == 0 else amount_cents / 100


def build_payload(*, order_id: int, transaction_id: str, amount_cents: int, timestamp: datetime | None = None) -> str:
    """
    Serialize {orderId, transactionId, amount, timestamp}.

    The key names are the scanner's contract; do not rename them.
    amount is in currency units (6000 cents -> 60, 1250 cents -> 12.5).
    """
    return json.dumps(
        {
            "orderId": order_id,
            "transactionId": transaction_id,
            "amount": _currency_units(amount_cents),
            "timestamp": to_utc_z(timestamp or utcnow()),
        },
        separators=(",", ":"),
    )


def render_data_url(payload: str) -> str:
    """Render the payload as a PNG data URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(payload)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
