from __future__ import annotations

import base64
import io

import qrcode


def build_qr_png(payload: str) -> bytes:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF").convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def render_qr_data_url(payload: str) -> str:
    """Render a raw login challenge as a ``data:image/png;base64`` URL."""
    encoded = base64.b64encode(build_qr_png(payload)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


__all__ = ["build_qr_png", "render_qr_data_url"]
