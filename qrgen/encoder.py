"""Payload encoder: typed payload -> the exact string a scanner expects.

Wire formats follow what phone scanners (ZXing, iOS/Android camera apps)
understand: ``WIFI:`` (MECARD style), vCard 3.0, iCalendar VEVENT, ``geo:``,
``mailto:``, ``tel:``, ``SMSTO:``, ``upi://pay`` and ``paypal.me`` links.
Landing-page types (app download, multi link, menu, bank transfer) become
compact JSON documents for the resolver behind dynamic codes.
"""

import json
import re
from datetime import date, datetime
from typing import assert_never
from urllib.parse import quote

from qrgen.errors import InvalidFormat, LengthExceeded, MissingField
from qrgen.logging import audit, get_logger, trace
from qrgen.models import EncodedPayload
from qrgen.payloads import (
    AppDownloadPayload,
    EmailPayload,
    EventPayload,
    ImagePayload,
    LocationPayload,
    MenuPayload,
    MultiUrlPayload,
    PaymentPayload,
    PdfPayload,
    PhonePayload,
    QRType,
    SmsPayload,
    TextPayload,
    TypedPayload,
    UrlPayload,
    VCardPayload,
    VideoPayload,
    WifiPayload,
    payload_from_dict,
)
from qrgen.sanitize import CONTROL_CHARS, sanitize_url

log = get_logger("encoder")

# Practical maximum length of the encoded content, per type
MAX_LENGTHS = {
    QRType.URL: 2953,
    QRType.VCARD: 1000,
    QRType.WIFI: 500,
    QRType.TEXT: 2000,
    QRType.SMS: 500,
    QRType.EMAIL: 1000,
    QRType.PHONE: 50,
    QRType.LOCATION: 200,
    QRType.EVENT: 1500,
    QRType.APP_DOWNLOAD: 500,
    QRType.MULTI_URL: 2000,
    QRType.MENU: 3000,
    QRType.PAYMENT: 500,
    QRType.PDF: 1000,
    QRType.IMAGE: 1000,
    QRType.VIDEO: 1000,
}

RECOMMENDED_ECC = {
    QRType.WIFI: "H",
    QRType.PHONE: "H",
    QRType.PAYMENT: "H",
}

WIFI_SECURITY = ("WPA", "WPA2", "WPA3", "WEP", "nopass")
PAYMENT_METHODS = ("upi", "paypal", "crypto", "bank")
MAX_LINKS = 10

_PHONE = re.compile(r"^\+?[1-9]\d{1,14}$")
_PHONE_NOISE = re.compile(r"[\s\-.()]")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CURRENCY = re.compile(r"^[A-Za-z]{3}$")
_X_NAME = re.compile(r"[^A-Z0-9]+")

# encodeURIComponent leaves these unescaped
_URI_COMPONENT_SAFE = "-_.!~*'()"


# ---------------------------------------------------------------------------
# Escaping
# ---------------------------------------------------------------------------

def escape_vcard(value: str) -> str:
    """Escape a vCard 3.0 text value (RFC 2426 section 4)."""
    return (
        value.replace("\\", "\\\\")
        .replace(",", "\\,")
        .replace(";", "\\;")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
        .replace("\r", "\\n")
    )


def escape_wifi(value: str) -> str:
    """Backslash-escape the characters that delimit a WIFI: payload."""
    out = []
    for ch in value:
        if ch in '\\;,"\n\r\t':
            out.append("\\")
        out.append(ch)
    return "".join(out)


def escape_ical(value: str) -> str:
    """Escape an iCalendar TEXT value (RFC 5545 section 3.3.11)."""
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
        .replace("\r", "\\n")
    )


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _require(value, field: str, qr_type: QRType):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingField(field, qr_type.value)
    return value.strip() if isinstance(value, str) else value


def _phone(value: str, field: str, qr_type: QRType) -> str:
    cleaned = _PHONE_NOISE.sub("", _require(value, field, qr_type))
    if not _PHONE.match(cleaned):
        raise InvalidFormat(f"Invalid phone format: {value!r}")
    return cleaned


def _email(value: str, field: str, qr_type: QRType) -> str:
    address = _require(value, field, qr_type)
    if not _EMAIL.match(address):
        raise InvalidFormat(f"Invalid email format: {address!r}")
    return address


def _number(value, field: str, minimum=None, maximum=None) -> float:
    if isinstance(value, bool):
        raise InvalidFormat(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidFormat(f"{field} must be a number, got {value!r}") from None
    if number != number or number in (float("inf"), float("-inf")):
        raise InvalidFormat(f"{field} must be a finite number")
    if minimum is not None and number < minimum:
        raise InvalidFormat(f"{field} must be >= {minimum:g}")
    if maximum is not None and number > maximum:
        raise InvalidFormat(f"{field} must be <= {maximum:g}")
    return number


def _fmt_number(number: float) -> str:
    """Shortest text form: 40.0 -> '40', 40.7128 -> '40.7128'."""
    if number == int(number):
        return str(int(number))
    return repr(number)


def _compact_json(document: dict) -> str:
    return json.dumps(
        {k: v for k, v in document.items() if v not in (None, "", [], ())},
        separators=(",", ":"),
        ensure_ascii=False,
    )


def _parse_when(value, field: str) -> datetime | date:
    if isinstance(value, (datetime, date)):
        return value
    text = str(value).strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        return datetime.fromisoformat(text)
    except ValueError:
        raise InvalidFormat(f"Invalid {field} format: {value!r}") from None


def format_ical_datetime(value: datetime | date) -> str:
    """YYYYMMDDTHHMMSS wall-clock time, no timezone designator."""
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    return value.strftime("%Y%m%dT%H%M%S")


def format_ical_date(value: datetime | date) -> str:
    return value.strftime("%Y%m%d")


# ---------------------------------------------------------------------------
# Per-type encoders
# ---------------------------------------------------------------------------

def _encode_url(p: UrlPayload) -> str:
    return sanitize_url(p.url, "url", MAX_LENGTHS[QRType.URL])


def _encode_vcard(p: VCardPayload) -> str:
    if not (p.first_name.strip() or p.last_name.strip()):
        raise MissingField("first_name", p.type.value)

    first, middle, last = p.first_name.strip(), p.middle_name.strip(), p.last_name.strip()
    full_name = " ".join(part for part in (first, middle, last) if part)

    lines = [
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"FN:{escape_vcard(full_name)}",
        f"N:{escape_vcard(last)};{escape_vcard(first)};{escape_vcard(middle)};;",
    ]
    if p.nickname:
        lines.append(f"NICKNAME:{escape_vcard(p.nickname)}")
    if p.organization:
        org = escape_vcard(p.organization)
        if p.department:
            org += f";{escape_vcard(p.department)}"
        lines.append(f"ORG:{org}")
    if p.title:
        lines.append(f"TITLE:{escape_vcard(p.title)}")
    if p.phone:
        lines.append(f"TEL;TYPE=VOICE:{_phone(p.phone, 'phone', p.type)}")
    if p.email:
        lines.append(f"EMAIL;TYPE=INTERNET:{_email(p.email, 'email', p.type)}")
    if p.website:
        lines.append(f"URL:{sanitize_url(p.website, 'website')}")

    adr = p.address_components
    if adr is not None and any((adr.street, adr.city, adr.state, adr.postal_code, adr.country)):
        parts = (adr.street, adr.city, adr.state, adr.postal_code, adr.country)
        lines.append("ADR:;;" + ";".join(escape_vcard(x) for x in parts))
    elif p.address:
        lines.append(f"ADR:;;{escape_vcard(p.address)};;;;")

    if p.birthday:
        try:
            birthday = date.fromisoformat(p.birthday.strip())
        except ValueError:
            raise InvalidFormat(f"Invalid birthday format: {p.birthday!r}") from None
        lines.append(f"BDAY:{birthday.isoformat()}")
    if p.note:
        lines.append(f"NOTE:{escape_vcard(p.note)}")

    for link in p.social_links:
        platform = _X_NAME.sub("-", link.platform.strip().upper()).strip("-").lower()
        if not platform:
            raise MissingField("social_links.platform", p.type.value)
        url = sanitize_url(link.url, f"social_links.{platform}")
        lines.append(f"X-SOCIALPROFILE;TYPE={platform}:{url}")

    for custom in p.custom_fields:
        name = _X_NAME.sub("-", custom.label.strip().upper()).strip("-")
        if not name:
            raise MissingField("custom_fields.label", p.type.value)
        if not name.startswith("X-"):
            name = f"X-{name}"
        lines.append(f"{name}:{escape_vcard(custom.value)}")

    lines.append("END:VCARD")
    return "\r\n".join(lines)


def _encode_wifi(p: WifiPayload) -> str:
    ssid = p.ssid
    if not ssid or not ssid.strip():
        raise MissingField("ssid", p.type.value)
    if len(ssid) > 32:
        raise InvalidFormat("SSID too long (maximum 32 characters)")

    security = (p.security or "").strip()
    security = "nopass" if security.lower() in ("nopass", "none", "") else security.upper()
    if security not in WIFI_SECURITY:
        raise InvalidFormat(f"Invalid security type: {p.security!r}")

    if security == "nopass":
        password = ""
    else:
        if not p.password:
            raise MissingField("password", p.type.value)
        if len(p.password) > 63:
            raise InvalidFormat("Password too long (maximum 63 characters)")
        password = p.password

    out = f"WIFI:T:{security};S:{escape_wifi(ssid)};P:{escape_wifi(password)};"
    if p.hidden:
        out += "H:true;"
    return out + ";"


def _encode_text(p: TextPayload) -> str:
    if not p.text or not p.text.strip():
        raise MissingField("text", p.type.value)
    if CONTROL_CHARS.search(p.text):
        raise InvalidFormat("Text contains control characters that may cause scanning issues")
    return p.text


def _encode_sms(p: SmsPayload) -> str:
    phone = _phone(p.phone, "phone", p.type)
    return f"SMSTO:{phone}:{p.message or ''}"


def _encode_email(p: EmailPayload) -> str:
    to = _email(p.to, "to", p.type)
    query = []
    if p.subject:
        query.append(f"subject={quote(p.subject, safe=_URI_COMPONENT_SAFE)}")
    if p.body:
        query.append(f"body={quote(p.body, safe=_URI_COMPONENT_SAFE)}")
    return f"mailto:{to}" + (f"?{'&'.join(query)}" if query else "")


def _encode_phone(p: PhonePayload) -> str:
    return f"tel:{_phone(p.phone, 'phone', p.type)}"


def _encode_location(p: LocationPayload) -> str:
    lat = _number(_require(p.latitude, "latitude", p.type), "latitude", -90, 90)
    lon = _number(_require(p.longitude, "longitude", p.type), "longitude", -180, 180)
    return f"geo:{_fmt_number(lat)},{_fmt_number(lon)}"


def _encode_event(p: EventPayload) -> str:
    title = _require(p.title, "title", p.type)
    start = _parse_when(_require(p.start, "start", p.type), "start")
    end = _parse_when(p.end, "end") if p.end not in (None, "") else None
    all_day = p.all_day or not isinstance(start, datetime)

    # Wall-clock comparison; no timezone conversion takes place
    if end is not None and format_ical_datetime(end) < format_ical_datetime(start):
        raise InvalidFormat("Event end is before its start")

    lines = ["BEGIN:VEVENT", f"SUMMARY:{escape_ical(title)}"]
    if p.description:
        lines.append(f"DESCRIPTION:{escape_ical(p.description)}")
    if p.location:
        lines.append(f"LOCATION:{escape_ical(p.location)}")
    if all_day:
        lines.append(f"DTSTART;VALUE=DATE:{format_ical_date(start)}")
        if end is not None:
            lines.append(f"DTEND;VALUE=DATE:{format_ical_date(end)}")
    else:
        lines.append(f"DTSTART:{format_ical_datetime(start)}")
        if end is not None:
            lines.append(f"DTEND:{format_ical_datetime(end)}")
    lines.append("END:VEVENT")
    return "\n".join(lines)


def _encode_app_download(p: AppDownloadPayload) -> str:
    name = _require(p.app_name, "app_name", p.type)
    if not (p.android_url or p.ios_url):
        raise MissingField("android_url", p.type.value)
    return _compact_json({
        "type": "app_download",
        "appName": name,
        "androidUrl": sanitize_url(p.android_url, "android_url") if p.android_url else None,
        "iosUrl": sanitize_url(p.ios_url, "ios_url") if p.ios_url else None,
        "fallbackUrl": sanitize_url(p.fallback_url, "fallback_url") if p.fallback_url else None,
    })


def _encode_multi_url(p: MultiUrlPayload) -> str:
    if not p.links:
        raise MissingField("links", p.type.value)
    if len(p.links) > MAX_LINKS:
        raise InvalidFormat(f"Too many links (maximum {MAX_LINKS})")
    links = []
    for i, link in enumerate(p.links):
        title = _require(link.title, f"links[{i}].title", p.type)
        url = sanitize_url(link.url, f"links[{i}].url")
        links.append({k: v for k, v in (("title", title), ("url", url), ("icon", link.icon)) if v})
    return _compact_json({
        "type": "multi_url",
        "title": p.title,
        "description": p.description,
        "links": links,
    })


def _encode_menu(p: MenuPayload) -> str:
    name = _require(p.restaurant_name, "restaurant_name", p.type)
    if not p.categories:
        raise MissingField("categories", p.type.value)
    categories = []
    for ci, category in enumerate(p.categories):
        cat_name = _require(category.name, f"categories[{ci}].name", p.type)
        if not category.items:
            raise MissingField(f"categories[{ci}].items", p.type.value)
        items = []
        for ii, item in enumerate(category.items):
            item_name = _require(item.name, f"categories[{ci}].items[{ii}].name", p.type)
            price = None
            if item.price is not None:
                price = _number(item.price, f"categories[{ci}].items[{ii}].price", minimum=0)
            entry = {
                "name": item_name,
                "description": item.description or None,
                "price": price,
                "currency": item.currency.upper() if item.currency else None,
                "allergens": list(item.allergens) or None,
            }
            entry = {k: v for k, v in entry.items() if v is not None}
            if not item.available:
                entry["available"] = False
            items.append(entry)
        categories.append({"name": cat_name, "items": items})
    return _compact_json({
        "type": "menu",
        "restaurantName": name,
        "description": p.description,
        "categories": categories,
    })


def _encode_payment(p: PaymentPayload) -> str:
    method = _require(p.method, "method", p.type).lower()
    if method not in PAYMENT_METHODS:
        raise InvalidFormat(f"Unsupported payment type: {p.method!r}")
    address = _require(p.address, "address", p.type)
    if re.search(r"\s", address):
        raise InvalidFormat("Payment address must not contain whitespace")

    amount = _number(p.amount, "amount", minimum=0) if p.amount not in (None, "") else None
    currency = None
    if p.currency:
        if not _CURRENCY.match(p.currency.strip()):
            raise InvalidFormat(f"Invalid currency code: {p.currency!r}")
        currency = p.currency.strip().upper()

    if method == "upi":
        parts = [f"upi://pay?pa={quote(address, safe='@.-_')}"]
        if amount:
            parts.append(f"am={_fmt_number(amount)}")
        if currency:
            parts.append(f"cu={currency}")
        if p.note:
            parts.append(f"tn={quote(p.note, safe=_URI_COMPONENT_SAFE)}")
        return "&".join(parts)

    if method == "paypal":
        url = f"https://paypal.me/{quote(address, safe='')}"
        if amount:
            url += f"/{_fmt_number(amount)}"
            if currency:
                url += currency
        return url

    if method == "crypto":
        url = address
        if amount:
            url += f"?amount={_fmt_number(amount)}"
        if p.note:
            url += f"{'&' if amount else '?'}label={quote(p.note, safe=_URI_COMPONENT_SAFE)}"
        return url

    return _compact_json({
        "type": "bank_payment",
        "account": address,
        "amount": amount,
        "currency": currency,
        "note": p.note,
    })


def _encode_pdf(p: PdfPayload) -> str:
    return sanitize_url(p.file_url, "file_url")


def _encode_image(p: ImagePayload) -> str:
    return sanitize_url(p.image_url, "image_url")


def _encode_video(p: VideoPayload) -> str:
    return sanitize_url(p.video_url, "video_url")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

@trace
def encode(payload: TypedPayload) -> EncodedPayload:
    """Encode a typed payload into the string that goes into the QR symbol.

    Raises:
        MissingField, InvalidFormat, UnsafeContent, LengthExceeded.
    """
    match payload:
        case UrlPayload():
            content = _encode_url(payload)
        case VCardPayload():
            content = _encode_vcard(payload)
        case WifiPayload():
            content = _encode_wifi(payload)
        case TextPayload():
            content = _encode_text(payload)
        case SmsPayload():
            content = _encode_sms(payload)
        case EmailPayload():
            content = _encode_email(payload)
        case PhonePayload():
            content = _encode_phone(payload)
        case LocationPayload():
            content = _encode_location(payload)
        case EventPayload():
            content = _encode_event(payload)
        case AppDownloadPayload():
            content = _encode_app_download(payload)
        case MultiUrlPayload():
            content = _encode_multi_url(payload)
        case MenuPayload():
            content = _encode_menu(payload)
        case PaymentPayload():
            content = _encode_payment(payload)
        case PdfPayload():
            content = _encode_pdf(payload)
        case ImagePayload():
            content = _encode_image(payload)
        case VideoPayload():
            content = _encode_video(payload)
        case _:
            assert_never(payload)

    limit = MAX_LENGTHS[payload.type]
    if len(content) > limit:
        raise LengthExceeded(payload.type.value, len(content), limit)

    audit("payload.encoded", logger=log, type=payload.type.value, length=len(content))
    return EncodedPayload(type=payload.type, content=content)


def encode_content(qr_type, data) -> str:
    """Convenience form: plain data in, encoded string out."""
    return encode(payload_from_dict(qr_type, data)).content


def recommend_error_correction(qr_type, use_case: str = "digital", has_logo: bool = False) -> str:
    """Suggest an ECC level for a type and where the code will be used.

    Print and logo codes need H; harsh environments get at least Q; WiFi and
    payment codes always get H.
    """
    qr_type = QRType.parse(qr_type)
    recommended = RECOMMENDED_ECC.get(qr_type, "M")
    if use_case == "print" or has_logo:
        recommended = "H"
    elif use_case == "harsh" and recommended != "H":
        recommended = "Q"
    if qr_type in (QRType.WIFI, QRType.PAYMENT):
        recommended = "H"
    return recommended
