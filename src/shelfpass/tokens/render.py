"""QR image rendering for envelope payloads."""

import base64
import io

import qrcode
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q

ERROR_CORRECTION_LEVELS = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    "H": ERROR_CORRECT_H,
}


def render_png(
    payload: str,
    error_correction: str = "M",
    box_size: int = 10,
    border: int = 2,
) -> bytes:
    """Return PNG bytes of a QR code carrying ``payload``."""
    level = ERROR_CORRECTION_LEVELS.get(error_correction.upper())
    if level is None:
        raise ValueError(f"Unknown error correction level '{error_correction}'")

    qr = qrcode.QRCode(error_correction=level, box_size=box_size, border=border)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def render_data_url(payload: str, **kwargs) -> str:
    """PNG as a data: URL, for clients that embed the image inline."""
    png = render_png(payload, **kwargs)
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
