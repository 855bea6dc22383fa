"""Image processing capability used by the logo compositor.

``PillowImageProcessor`` does the real work. ``NullImageProcessor`` leaves
images untouched, for deployments and tests that must not decode images.
"""

import io
from dataclasses import dataclass
from typing import Protocol

from PIL import Image, ImageDraw, UnidentifiedImageError

from qrgen.errors import LogoEmbedError

# Decoding guard against decompression bombs
MAX_DECODE_PIXELS = 4096 * 4096


@dataclass(frozen=True)
class Layer:
    image: bytes
    left: int
    top: int


class ImageProcessor(Protocol):
    def decode_metadata(self, data: bytes) -> tuple[int, int]:
        """Return (width, height) of an encoded image."""
        ...

    def resize(self, data: bytes, max_side: int) -> bytes:
        """Shrink to fit a ``max_side`` square, keeping the aspect ratio. PNG out."""
        ...

    def circle(self, diameter: int, color: str) -> bytes:
        """Solid disc on a transparent square. PNG out."""
        ...

    def composite(self, base: bytes, layers: list[Layer]) -> bytes:
        """Paste ``layers`` in order onto ``base``, honouring alpha. PNG out."""
        ...


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        w, h = img.size
        if w <= 0 or h <= 0 or w * h > MAX_DECODE_PIXELS:
            raise LogoEmbedError(f"unsupported image dimensions {w}x{h}")
        img.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise LogoEmbedError(f"cannot decode image: {exc}") from exc
    return img


def _png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class PillowImageProcessor:
    def decode_metadata(self, data: bytes) -> tuple[int, int]:
        return _open(data).size

    def resize(self, data: bytes, max_side: int) -> bytes:
        if max_side < 1:
            raise LogoEmbedError(f"invalid target size {max_side}")
        img = _open(data).convert("RGBA")
        # thumbnail() keeps the aspect ratio and never enlarges
        img.thumbnail((max_side, max_side), Image.LANCZOS)
        return _png(img)

    def circle(self, diameter: int, color: str) -> bytes:
        if diameter < 1:
            raise LogoEmbedError(f"invalid circle diameter {diameter}")
        # Drawn at 4x and downscaled for an anti-aliased edge
        big = diameter * 4
        img = Image.new("RGBA", (big, big), (0, 0, 0, 0))
        ImageDraw.Draw(img).ellipse([0, 0, big - 1, big - 1], fill=color)
        return _png(img.resize((diameter, diameter), Image.LANCZOS))

    def composite(self, base: bytes, layers: list[Layer]) -> bytes:
        canvas = _open(base).convert("RGBA")
        for layer in layers:
            overlay = _open(layer.image).convert("RGBA")
            canvas.alpha_composite(overlay, dest=(layer.left, layer.top))
        return _png(canvas.convert("RGB"))


class NullImageProcessor:
    """No-op processor: metadata is still read, images are never changed."""

    def __init__(self, size: tuple[int, int] = (0, 0)):
        self._size = size

    def decode_metadata(self, data: bytes) -> tuple[int, int]:
        return self._size

    def resize(self, data: bytes, max_side: int) -> bytes:
        return data

    def circle(self, diameter: int, color: str) -> bytes:
        return b""

    def composite(self, base: bytes, layers: list[Layer]) -> bytes:
        return base
