"""Image renderer: encoded content + style -> PNG or SVG bytes.

PNG symbols are built with ``qrcode`` and drawn through Pillow; SVG symbols
come from ``segno``. Both keep a 2-module quiet zone.
"""

import io
from enum import Enum

import qrcode
import qrcode.constants
import segno
from PIL import Image
from qrcode.exceptions import DataOverflowError

from qrgen.cancel import CancellationToken, check
from qrgen.errors import RenderError
from qrgen.logging import audit, get_logger
from qrgen.models import ImageFormat, StyleOptions

log = get_logger("render")

QUIET_ZONE = 2


class ECCLevel(Enum):
    L = qrcode.constants.ERROR_CORRECT_L  # 7%
    M = qrcode.constants.ERROR_CORRECT_M  # 15%
    Q = qrcode.constants.ERROR_CORRECT_Q  # 25%
    H = qrcode.constants.ERROR_CORRECT_H  # 30%


ECC_NAMES = {"L": ECCLevel.L, "M": ECCLevel.M, "Q": ECCLevel.Q, "H": ECCLevel.H}


def build_symbol(content: str, ecc: str = "M") -> qrcode.QRCode:
    """Fit ``content`` into the smallest symbol at ``ecc``.

    Raises:
        RenderError: the content does not fit in a version 40 symbol or
            cannot be encoded.
    """
    # Content is not logged: it can carry WiFi passwords
    log.debug("building symbol for %d characters at ECC %s", len(content), ecc)
    qr = qrcode.QRCode(
        version=None,
        error_correction=ECC_NAMES[ecc.upper()].value,
        box_size=1,
        border=QUIET_ZONE,
    )
    try:
        qr.add_data(content)
        qr.make(fit=True)
    except DataOverflowError:
        raise RenderError(f"content of {len(content)} characters does not fit in a QR symbol at ECC {ecc}") from None
    except (ValueError, UnicodeError) as exc:
        raise RenderError(f"content cannot be encoded: {exc}") from exc
    return qr


def render_png(content: str, style: StyleOptions, cancel: CancellationToken | None = None) -> bytes:
    check(cancel)
    qr = build_symbol(content, style.error_correction)
    side = qr.modules_count + 2 * QUIET_ZONE
    qr.box_size = max(1, style.size // side)

    check(cancel)
    try:
        img = qr.make_image(fill_color=style.foreground, back_color=style.background).convert("RGB")
    except ValueError as exc:
        raise RenderError(f"could not draw symbol: {exc}") from exc
    if img.size != (style.size, style.size):
        img = img.resize((style.size, style.size), Image.NEAREST)

    check(cancel)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    audit("qr.rendered", logger=log, format="png", version=qr.version,
          modules=qr.modules_count, image_px=f"{style.size}x{style.size}", bytes=buf.tell())
    return buf.getvalue()


def render_svg(content: str, style: StyleOptions, cancel: CancellationToken | None = None) -> bytes:
    check(cancel)
    try:
        qr = segno.make(content.encode("utf-8"), error=style.error_correction, micro=False, boost_error=False)
    except segno.DataOverflowError:
        raise RenderError(f"content of {len(content)} characters does not fit in a QR symbol") from None
    except (ValueError, UnicodeError) as exc:
        raise RenderError(f"content cannot be encoded: {exc}") from exc

    width, _ = qr.symbol_size(scale=1, border=QUIET_ZONE)
    check(cancel)
    buf = io.BytesIO()
    qr.save(buf, kind="svg", scale=style.size / width, border=QUIET_ZONE,
            dark=style.foreground, light=style.background)
    audit("qr.rendered", logger=log, format="svg", version=qr.version,
          image_px=f"{style.size}x{style.size}", bytes=buf.tell())
    return buf.getvalue()


class ImageRenderer:
    """Dispatches to the PNG or SVG backend by ``style.format``."""

    def render(self, content: str, style: StyleOptions, cancel: CancellationToken | None = None) -> bytes:
        if style.format is ImageFormat.SVG:
            return render_svg(content, style, cancel)
        return render_png(content, style, cancel)
