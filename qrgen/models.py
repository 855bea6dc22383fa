"""Request, style and result types for QR generation."""

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum

from qrgen.errors import InvalidFormat
from qrgen.payloads import QRType, TypedPayload, parse_bool, payload_from_dict

ECC_LEVELS = ("L", "M", "Q", "H")

MIN_SIZE = 64
MAX_SIZE = 2048

# Logo may cover at most this fraction of the image side
MAX_LOGO_RATIO = 0.2

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


class Mode(str, Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"


class ImageFormat(str, Enum):
    PNG = "png"
    SVG = "svg"

    @property
    def mime_type(self) -> str:
        return "image/svg+xml" if self is ImageFormat.SVG else "image/png"


class LogoPosition(str, Enum):
    CENTER = "center"
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"


def _enum(kind, value, what):
    if isinstance(value, kind):
        return value
    text = str(value).strip().lower()
    if kind is LogoPosition:
        text = text.replace("_", "-")
    try:
        return kind(text)
    except ValueError:
        allowed = ", ".join(m.value for m in kind)
        raise InvalidFormat(f"invalid {what} {value!r} (expected one of: {allowed})") from None


@dataclass(frozen=True)
class LogoOptions:
    url: str
    max_size: int | None = None   # pixels; clamped to MAX_LOGO_RATIO of the image
    position: LogoPosition = LogoPosition.CENTER

    def __post_init__(self):
        if not self.url or not self.url.strip():
            raise InvalidFormat("logo url must not be empty")
        object.__setattr__(self, "position", _enum(LogoPosition, self.position, "logo position"))
        if self.max_size is not None and self.max_size <= 0:
            raise InvalidFormat("logo max_size must be positive")

    def effective_size(self, width: int, height: int) -> int:
        """Logo side in pixels: the requested size, never above 20% of the image."""
        limit = min(width, height) * MAX_LOGO_RATIO
        if self.max_size is None:
            return int(round(limit))
        return int(round(min(self.max_size, limit)))


@dataclass(frozen=True)
class StyleOptions:
    size: int = 512
    error_correction: str = "M"
    format: ImageFormat = ImageFormat.PNG
    foreground: str = "#000000"
    background: str = "#ffffff"
    logo: LogoOptions | None = None

    def __post_init__(self):
        if not isinstance(self.size, int) or isinstance(self.size, bool):
            raise InvalidFormat(f"size must be an integer, got {self.size!r}")
        if not MIN_SIZE <= self.size <= MAX_SIZE:
            raise InvalidFormat(f"size must be between {MIN_SIZE} and {MAX_SIZE} pixels")
        ecc = str(self.error_correction).upper()
        if ecc not in ECC_LEVELS:
            raise InvalidFormat(f"invalid error correction level {self.error_correction!r}")
        object.__setattr__(self, "error_correction", ecc)
        object.__setattr__(self, "format", _enum(ImageFormat, self.format, "format"))
        for name in ("foreground", "background"):
            if not _HEX_COLOR.match(getattr(self, name)):
                raise InvalidFormat(f"{name} must be a hex colour like #1a2b3c")

    def to_dict(self) -> dict:
        """Plain form accepted back by ``style_from_dict``."""
        out = {
            "size": self.size,
            "error_correction": self.error_correction,
            "format": self.format.value,
            "foreground": self.foreground,
            "background": self.background,
        }
        if self.logo is not None:
            out["logo"] = {"url": self.logo.url, "max_size": self.logo.max_size,
                           "position": self.logo.position.value}
        return out


@dataclass(frozen=True)
class PayloadRequest:
    type: QRType
    data: TypedPayload
    mode: Mode = Mode.STATIC
    style: StyleOptions = field(default_factory=StyleOptions)
    name: str | None = None
    tags: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "type", QRType.parse(self.type))
        object.__setattr__(self, "mode", _enum(Mode, self.mode, "mode"))
        if getattr(self.data, "type", None) is not self.type:
            raise InvalidFormat(
                f"payload {type(self.data).__name__} does not match type {self.type.value}"
            )

    @property
    def is_dynamic(self) -> bool:
        return self.mode is Mode.DYNAMIC


@dataclass(frozen=True)
class EncodedPayload:
    """Encoder output: the exact string that goes into the symbol."""

    type: QRType
    content: str

    def __len__(self):
        return len(self.content)


@dataclass(frozen=True)
class GenerationResult:
    id: str
    image_url: str
    type: QRType
    mode: Mode
    format: ImageFormat
    size: int
    error_correction: str
    version: int
    modules: int
    byte_size: int
    created_at: datetime
    elapsed_ms: float = 0.0
    short_url: str | None = None
    short_code: str | None = None

    def to_dict(self) -> dict:
        out = asdict(self)
        out["type"] = self.type.value
        out["mode"] = self.mode.value
        out["format"] = self.format.value
        out["created_at"] = self.created_at.isoformat()
        if self.short_url is None:
            del out["short_url"]
            del out["short_code"]
        return out


# ---------------------------------------------------------------------------
# Parsing from JSON-like request bodies
# ---------------------------------------------------------------------------

def _pick(d: dict, *keys, default=None):
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return default


def parse_tags(value) -> tuple[str, ...]:
    """Tags from a list or a ``;``-separated string, blanks dropped."""
    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(";")
    if not isinstance(value, (list, tuple)):
        raise InvalidFormat("tags must be a list or a ;-separated string")
    return tuple(t for t in (str(v).strip() for v in value) if t)


def style_from_dict(data: dict | None) -> StyleOptions:
    """Build StyleOptions from ``style``/``options`` request bodies.

    Understands both the flat form and the ``customization`` sub-object with
    ``foregroundColor``/``logoUrl``/``logoSize``/``logoPosition`` keys.
    """
    if not data:
        return StyleOptions()
    if not isinstance(data, dict):
        raise InvalidFormat("style must be an object")
    custom = data.get("customization") or {}
    merged = {**data, **custom}

    logo = None
    logo_data = merged.get("logo")
    if isinstance(logo_data, dict):
        logo = LogoOptions(
            url=_pick(logo_data, "url", default=""),
            max_size=_pick(logo_data, "max_size", "maxSize"),
            position=_pick(logo_data, "position", default=LogoPosition.CENTER),
        )
    elif _pick(merged, "logo_url", "logoUrl"):
        logo = LogoOptions(
            url=_pick(merged, "logo_url", "logoUrl"),
            max_size=_pick(merged, "logo_size", "logoSize"),
            position=_pick(merged, "logo_position", "logoPosition", default=LogoPosition.CENTER),
        )

    defaults = StyleOptions()
    size = _pick(merged, "size", default=defaults.size)
    if isinstance(size, str) and size.isdigit():
        size = int(size)
    return StyleOptions(
        size=size,
        error_correction=_pick(merged, "error_correction", "errorCorrection", "ecc",
                               default=defaults.error_correction),
        format=_pick(merged, "format", default=defaults.format),
        foreground=_pick(merged, "foreground", "foreground_color", "foregroundColor",
                         default=defaults.foreground),
        background=_pick(merged, "background", "background_color", "backgroundColor",
                         default=defaults.background),
        logo=logo,
    )


def request_from_dict(data: dict, defaults: StyleOptions | None = None) -> PayloadRequest:
    """Parse a generation request body.

    ``{"type": "wifi", "mode": "static", "data": {...}, "style": {...}}``
    """
    if not isinstance(data, dict):
        raise InvalidFormat("request must be an object")
    if "type" not in data:
        raise InvalidFormat("request type is required")
    qr_type = QRType.parse(data["type"])
    style_data = _pick(data, "style", "options")
    style = style_from_dict(style_data) if style_data else (defaults or StyleOptions())
    mode = _pick(data, "mode", default=None)
    if mode is None:
        dynamic = parse_bool(_pick(data, "isDynamic", "is_dynamic", default=False), "isDynamic")
        mode = Mode.DYNAMIC if dynamic else Mode.STATIC
    return PayloadRequest(
        type=qr_type,
        data=payload_from_dict(qr_type, data.get("data", {})),
        mode=mode,
        style=style,
        name=data.get("name"),
        tags=parse_tags(data.get("tags")),
    )
