"""Typed QR payloads: one dataclass per QR content type.

``TypedPayload`` is a closed union. Required fields default to empty values so
that a partially filled payload can still be constructed; the encoder is the
single place that rejects it with ``MissingField``.
"""

import re
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Union

from qrgen.errors import InvalidFormat


class QRType(str, Enum):
    URL = "url"
    VCARD = "vcard"
    WIFI = "wifi"
    TEXT = "text"
    SMS = "sms"
    EMAIL = "email"
    PHONE = "phone"
    LOCATION = "location"
    EVENT = "event"
    APP_DOWNLOAD = "app_download"
    MULTI_URL = "multi_url"
    MENU = "menu"
    PAYMENT = "payment"
    PDF = "pdf"
    IMAGE = "image"
    VIDEO = "video"

    @classmethod
    def parse(cls, value) -> "QRType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace("-", "_"))
        except ValueError:
            raise InvalidFormat(f"Unsupported QR code type: {value}") from None


# ---------------------------------------------------------------------------
# Nested value types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PostalAddress:
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


@dataclass(frozen=True)
class SocialLink:
    platform: str
    url: str


@dataclass(frozen=True)
class CustomField:
    label: str
    value: str


@dataclass(frozen=True)
class Link:
    title: str
    url: str
    icon: str | None = None


@dataclass(frozen=True)
class MenuItem:
    name: str
    description: str | None = None
    price: float | None = None
    currency: str | None = None
    allergens: tuple[str, ...] = ()
    available: bool = True


@dataclass(frozen=True)
class MenuCategory:
    name: str
    items: tuple[MenuItem, ...] = ()


# ---------------------------------------------------------------------------
# Payload variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UrlPayload:
    type: ClassVar[QRType] = QRType.URL
    url: str = ""


@dataclass(frozen=True)
class VCardPayload:
    type: ClassVar[QRType] = QRType.VCARD
    first_name: str = ""
    last_name: str = ""
    middle_name: str = ""
    nickname: str = ""
    organization: str = ""
    department: str = ""
    title: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    address: str = ""
    address_components: PostalAddress | None = None
    birthday: str = ""
    note: str = ""
    social_links: tuple[SocialLink, ...] = ()
    custom_fields: tuple[CustomField, ...] = ()


@dataclass(frozen=True)
class WifiPayload:
    type: ClassVar[QRType] = QRType.WIFI
    ssid: str = ""
    password: str = field(default="", repr=False)
    security: str = "WPA"
    hidden: bool = False


@dataclass(frozen=True)
class TextPayload:
    type: ClassVar[QRType] = QRType.TEXT
    text: str = ""


@dataclass(frozen=True)
class SmsPayload:
    type: ClassVar[QRType] = QRType.SMS
    phone: str = ""
    message: str = ""


@dataclass(frozen=True)
class EmailPayload:
    type: ClassVar[QRType] = QRType.EMAIL
    to: str = ""
    subject: str = ""
    body: str = ""


@dataclass(frozen=True)
class PhonePayload:
    type: ClassVar[QRType] = QRType.PHONE
    phone: str = ""


@dataclass(frozen=True)
class LocationPayload:
    type: ClassVar[QRType] = QRType.LOCATION
    latitude: float | None = None
    longitude: float | None = None
    address: str = ""


@dataclass(frozen=True)
class EventPayload:
    type: ClassVar[QRType] = QRType.EVENT
    title: str = ""
    start: datetime | date | str | None = None
    end: datetime | date | str | None = None
    description: str = ""
    location: str = ""
    all_day: bool = False


@dataclass(frozen=True)
class AppDownloadPayload:
    type: ClassVar[QRType] = QRType.APP_DOWNLOAD
    app_name: str = ""
    android_url: str = ""
    ios_url: str = ""
    fallback_url: str = ""


@dataclass(frozen=True)
class MultiUrlPayload:
    type: ClassVar[QRType] = QRType.MULTI_URL
    links: tuple[Link, ...] = ()
    title: str = ""
    description: str = ""


@dataclass(frozen=True)
class MenuPayload:
    type: ClassVar[QRType] = QRType.MENU
    restaurant_name: str = ""
    categories: tuple[MenuCategory, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class PaymentPayload:
    type: ClassVar[QRType] = QRType.PAYMENT
    method: str = ""  # upi | paypal | crypto | bank
    address: str = ""
    amount: float | None = None
    currency: str = ""
    note: str = ""


@dataclass(frozen=True)
class PdfPayload:
    type: ClassVar[QRType] = QRType.PDF
    file_url: str = ""
    title: str = ""
    description: str = ""


@dataclass(frozen=True)
class ImagePayload:
    type: ClassVar[QRType] = QRType.IMAGE
    image_url: str = ""
    title: str = ""
    description: str = ""


@dataclass(frozen=True)
class VideoPayload:
    type: ClassVar[QRType] = QRType.VIDEO
    video_url: str = ""
    title: str = ""
    description: str = ""


TypedPayload = Union[
    UrlPayload, VCardPayload, WifiPayload, TextPayload, SmsPayload,
    EmailPayload, PhonePayload, LocationPayload, EventPayload,
    AppDownloadPayload, MultiUrlPayload, MenuPayload, PaymentPayload,
    PdfPayload, ImagePayload, VideoPayload,
]

PAYLOAD_CLASSES: dict[QRType, type] = {
    cls.type: cls for cls in TypedPayload.__args__
}
_unmapped = set(QRType) - set(PAYLOAD_CLASSES)
if _unmapped:
    raise RuntimeError(f"no payload class for: {sorted(t.value for t in _unmapped)}")


# ---------------------------------------------------------------------------
# Parsing from plain data (JSON bodies, CSV cells, CLI arguments)
# ---------------------------------------------------------------------------

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")

# Alternative spellings used by older clients
_ALIASES = {
    "organisation": "organization",
    "company": "organization",
    "social_profiles": "social_links",
    "start_date": "start",
    "end_date": "end",
    "play_store_url": "android_url",
    "app_store_url": "ios_url",
    "lat": "latitude",
    "lon": "longitude",
    "lng": "longitude",
}
_CLASS_ALIASES = {
    EmailPayload: {"email": "to"},
    PaymentPayload: {"type": "method"},
    PdfPayload: {"url": "file_url"},
    ImagePayload: {"url": "image_url"},
    VideoPayload: {"url": "video_url"},
}


_TRUE_WORDS = frozenset({"true", "1", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "0", "no", "off", ""})

_TEXT_TYPES = (str, str | None)


def parse_bool(value, what: str) -> bool:
    """Strict boolean: real bools, 0/1 and the usual words from CSV or form input.

    Raises:
        InvalidFormat: anything else.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_WORDS:
            return True
        if text in _FALSE_WORDS:
            return False
    raise InvalidFormat(f"{what} must be true or false, got {value!r}")


def _text(value, what: str):
    # JSON numbers are accepted where text is expected: phones, SSIDs, postcodes
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise InvalidFormat(f"{what} must be a string, got {type(value).__name__}")


def _snake(key: str) -> str:
    return _CAMEL.sub("_", key).lower()


def _normalize_keys(cls, data: dict) -> dict:
    types = {f.name: f.type for f in fields(cls)}
    aliases = {**_ALIASES, **_CLASS_ALIASES.get(cls, {})}
    out = {}
    for raw_key, value in data.items():
        key = _snake(raw_key)
        if key not in types:
            key = aliases.get(key, key)
        if key not in types:
            continue
        if types[key] is bool:
            if value is None:
                continue
            value = parse_bool(value, key)
        elif types[key] in _TEXT_TYPES:
            value = _text(value, key)
        out[key] = value
    return out


def _as_list(value, what: str) -> list:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise InvalidFormat(f"{what} must be a list")
    return list(value)


def _build(cls, data):
    if isinstance(data, cls):
        return data
    if not isinstance(data, dict):
        raise InvalidFormat(f"{cls.__name__} expects an object, got {type(data).__name__}")
    try:
        return cls(**_normalize_keys(cls, data))
    except TypeError as exc:
        raise InvalidFormat(f"{cls.__name__} is malformed: {exc}") from None


def _build_vcard(data: dict) -> VCardPayload:
    values = _normalize_keys(VCardPayload, data)
    if values.get("address_components"):
        values["address_components"] = _build(PostalAddress, values["address_components"])
    values["social_links"] = tuple(
        _build(SocialLink, s) for s in _as_list(values.get("social_links"), "socialLinks")
    )
    values["custom_fields"] = tuple(
        _build(CustomField, c) for c in _as_list(values.get("custom_fields"), "customFields")
    )
    return VCardPayload(**values)


def _build_multi_url(data: dict) -> MultiUrlPayload:
    values = _normalize_keys(MultiUrlPayload, data)
    values["links"] = tuple(_build(Link, link) for link in _as_list(values.get("links"), "links"))
    return MultiUrlPayload(**values)


def _build_menu(data: dict) -> MenuPayload:
    values = _normalize_keys(MenuPayload, data)
    categories = []
    for cat in _as_list(values.get("categories"), "categories"):
        cat_values = _normalize_keys(MenuCategory, cat if isinstance(cat, dict) else {})
        items = []
        for item in _as_list(cat_values.get("items"), "items"):
            item_values = _normalize_keys(MenuItem, item if isinstance(item, dict) else {})
            item_values["allergens"] = tuple(_as_list(item_values.get("allergens"), "allergens"))
            items.append(MenuItem(**{"name": "", **item_values}))
        cat_values["items"] = tuple(items)
        categories.append(MenuCategory(**{"name": "", **cat_values}))
    values["categories"] = tuple(categories)
    return MenuPayload(**values)


_BUILDERS = {
    QRType.VCARD: _build_vcard,
    QRType.MULTI_URL: _build_multi_url,
    QRType.MENU: _build_menu,
}

# Wrapper keys of the nested request form, e.g. {"wifi": {...}}
_WRAPPER_KEYS = {
    QRType.APP_DOWNLOAD: "appDownload",
    QRType.MULTI_URL: "multiUrl",
}

# Types whose payload may be given as a bare string
_SCALAR_FIELD = {
    QRType.URL: "url",
    QRType.TEXT: "text",
    QRType.PHONE: "phone",
    QRType.PDF: "file_url",
    QRType.IMAGE: "image_url",
    QRType.VIDEO: "video_url",
}


def payload_from_dict(qr_type, data: Any) -> TypedPayload:
    """Build the payload variant for ``qr_type`` from plain data.

    Accepts the flat form (``{"ssid": ...}``), the nested form keyed by the
    type (``{"wifi": {"ssid": ...}}``), camelCase or snake_case keys, and a
    bare string for single-field types.

    Raises:
        InvalidFormat: unknown type, or data of the wrong shape.
    """
    qr_type = QRType.parse(qr_type)
    cls = PAYLOAD_CLASSES[qr_type]
    if isinstance(data, cls):
        return data

    if isinstance(data, (str, int, float)) and not isinstance(data, bool) and qr_type in _SCALAR_FIELD:
        return cls(**{_SCALAR_FIELD[qr_type]: _text(data, _SCALAR_FIELD[qr_type])})

    if not isinstance(data, dict):
        raise InvalidFormat(f"{qr_type.value} data must be an object")

    wrapper = _WRAPPER_KEYS.get(qr_type, qr_type.value)
    for key in (wrapper, qr_type.value):
        if isinstance(data.get(key), dict):
            data = data[key]
            break

    builder = _BUILDERS.get(qr_type)
    if builder is not None:
        return builder(data)
    try:
        return cls(**_normalize_keys(cls, data))
    except TypeError as exc:
        raise InvalidFormat(f"{qr_type.value} data is malformed: {exc}") from None


def _plain(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def payload_to_dict(payload: TypedPayload) -> dict:
    """JSON-safe snake_case dict that ``payload_from_dict`` turns back into ``payload``."""
    return _plain(asdict(payload))
