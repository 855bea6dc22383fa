"""Logo compositor: fetch a logo and place it on a rendered QR image.

A logo is decoration. Every failure on this path (fetch, decode, geometry,
cancellation) ends with the original QR bytes being returned unchanged.
"""

from dataclasses import dataclass

import requests

from qrgen.cancel import CancellationToken, check
from qrgen.errors import LogoEmbedError, QRGenError
from qrgen.imaging import ImageProcessor, Layer
from qrgen.logging import audit, get_logger, trace
from qrgen.models import MAX_LOGO_RATIO, LogoOptions, LogoPosition
from qrgen.sanitize import sanitize_url

log = get_logger("logo")

# Corner anchors sit this fraction of the image side in from the edge
CORNER_INSET = 0.1
# Backdrop disc diameter relative to the logo slot
BACKDROP_SCALE = 1.2

_CHUNK = 64 * 1024


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

class LogoFetcher:
    """Downloads logo bytes over HTTP(S) with a timeout and a size cap."""

    def __init__(self, timeout: float = 5.0, max_bytes: int = 5 * 1024 * 1024,
                 session: requests.Session | None = None):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.session = session or requests.Session()

    @trace
    def fetch(self, url: str, cancel: CancellationToken | None = None) -> bytes:
        """Return the logo body.

        Raises:
            LogoEmbedError: unsafe URL, network error, non-2xx status, or a
                body over ``max_bytes``.
        """
        try:
            url = sanitize_url(url, "logo.url")
        except QRGenError as exc:
            raise LogoEmbedError(f"logo url rejected: {exc}") from exc

        try:
            with self.session.get(url, timeout=self.timeout, stream=True) as resp:
                if not 200 <= resp.status_code < 300:
                    raise LogoEmbedError(f"Failed to fetch logo: HTTP {resp.status_code}")
                body = bytearray()
                for chunk in resp.iter_content(chunk_size=_CHUNK):
                    check(cancel)
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        raise LogoEmbedError(f"logo larger than {self.max_bytes} bytes")
        except requests.RequestException as exc:
            raise LogoEmbedError(f"Failed to fetch logo: {exc}") from exc

        if not body:
            raise LogoEmbedError("logo response was empty")
        return bytes(body)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Placement:
    """Where the logo slot and its backdrop disc go, in image pixels."""

    slot: int            # side of the square slot the logo is fitted into
    left: int
    top: int
    backdrop: int        # backdrop disc diameter
    backdrop_left: int
    backdrop_top: int


def logo_slot_size(width: int, height: int, requested: int | None = None) -> int:
    """Logo side: ``min(width, height) * 0.2``, or less if asked."""
    if width <= 0 or height <= 0:
        raise LogoEmbedError(f"Invalid QR code dimensions {width}x{height}")
    slot = LogoOptions(url="-", max_size=requested).effective_size(width, height)
    if slot < 1:
        raise LogoEmbedError("image too small for a logo")
    return slot


def compute_placement(width: int, height: int, slot: int, position: LogoPosition) -> Placement:
    """Anchor the slot and its backdrop for ``position``."""
    if slot > min(width, height) * MAX_LOGO_RATIO + 1:
        raise LogoEmbedError(f"logo slot {slot}px exceeds {MAX_LOGO_RATIO:.0%} of the image")

    near_x, near_y = round(width * CORNER_INSET), round(height * CORNER_INSET)
    far_x = round(width * (1 - CORNER_INSET) - slot)
    far_y = round(height * (1 - CORNER_INSET) - slot)

    match position:
        case LogoPosition.TOP_LEFT:
            left, top = near_x, near_y
        case LogoPosition.TOP_RIGHT:
            left, top = far_x, near_y
        case LogoPosition.BOTTOM_LEFT:
            left, top = near_x, far_y
        case LogoPosition.BOTTOM_RIGHT:
            left, top = far_x, far_y
        case _:
            left, top = round((width - slot) / 2), round((height - slot) / 2)

    backdrop = round(slot * BACKDROP_SCALE)
    margin = (backdrop - slot) / 2
    return Placement(
        slot=slot,
        left=left,
        top=top,
        backdrop=backdrop,
        backdrop_left=max(0, round(left - margin)),
        backdrop_top=max(0, round(top - margin)),
    )


# ---------------------------------------------------------------------------
# Compositing
# ---------------------------------------------------------------------------

class LogoCompositor:
    def __init__(self, processor: ImageProcessor, fetcher: LogoFetcher | None = None):
        self.processor = processor
        self.fetcher = fetcher or LogoFetcher()

    def embed(self, qr_image: bytes, logo: LogoOptions, background: str = "#ffffff",
              cancel: CancellationToken | None = None) -> bytes:
        """Return ``qr_image`` with the logo composited on, or unchanged on any failure."""
        try:
            return self._embed(qr_image, logo, background, cancel)
        except Exception as exc:
            reason = exc if isinstance(exc, LogoEmbedError) else LogoEmbedError(f"{type(exc).__name__}: {exc}")
            log.warning("logo embedding failed, returning plain QR code: %s", reason)
            audit("logo.skipped", logger=log, url=logo.url[:80], reason=str(reason))
            return qr_image

    def _embed(self, qr_image, logo, background, cancel):
        width, height = self.processor.decode_metadata(qr_image)
        slot = logo_slot_size(width, height, logo.max_size)
        placement = compute_placement(width, height, slot, logo.position)

        check(cancel)
        raw = self.fetcher.fetch(logo.url, cancel)
        check(cancel)

        fitted = self.processor.resize(raw, placement.slot)
        logo_w, logo_h = self.processor.decode_metadata(fitted)
        if logo_w <= 0 or logo_h <= 0:
            raise LogoEmbedError("logo has no usable dimensions")

        disc = self.processor.circle(placement.backdrop, background)
        result = self.processor.composite(qr_image, [
            Layer(disc, placement.backdrop_left, placement.backdrop_top),
            # centre the fitted logo inside its square slot
            Layer(fitted, placement.left + (placement.slot - logo_w) // 2,
                  placement.top + (placement.slot - logo_h) // 2),
        ])
        audit("logo.embedded", logger=log, url=logo.url[:80], position=logo.position.value,
              slot=placement.slot, logo_px=f"{logo_w}x{logo_h}")
        return result
