"""Unit tests for payload encoding."""

import json
import re

import pytest

from qrgen.encoder import (
    MAX_LENGTHS,
    encode,
    encode_content,
    escape_vcard,
    escape_wifi,
    recommend_error_correction,
)
from qrgen.errors import InvalidFormat, LengthExceeded, MissingField, UnsafeContent
from qrgen.payloads import (
    CustomField,
    EventPayload,
    QRType,
    SocialLink,
    TextPayload,
    VCardPayload,
    WifiPayload,
)


def parse_wifi(content: str) -> dict:
    """Minimal WIFI: parser honouring backslash escapes, as scanners do."""
    assert content.startswith("WIFI:") and content.endswith(";;")
    fields, key, buf, escaped = {}, None, "", False
    for ch in content[len("WIFI:"):-1]:
        if escaped:
            buf += ch
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ":" and key is None:
            key, buf = buf, ""
        elif ch == ";":
            fields[key] = buf
            key, buf = None, ""
        else:
            buf += ch
    return fields


def parse_vcard(content: str) -> dict:
    out = {}
    for line in content.split("\r\n"):
        name, _, value = line.partition(":")
        out[name] = value
    return out


def test_url_is_normalised():
    """Bare host gets https and a root path."""
    assert encode_content("url", "example.com") == "https://example.com/"


def test_url_rejects_javascript():
    """Script URLs never reach a symbol."""
    with pytest.raises(UnsafeContent):
        encode_content("url", {"url": "javascript:alert(1)"})


def test_wifi_escapes_delimiters():
    """SSID and password delimiters are backslash-escaped."""
    content = encode(WifiPayload(ssid="Home;Net", password='p"a,ss', security="WPA")).content
    assert content == 'WIFI:T:WPA;S:Home\\;Net;P:p\\"a\\,ss;;'


def test_wifi_round_trip():
    """A scanner-style parser recovers the original credentials."""
    ssid, password = 'Café, "Guest";1', "a\\b;c:d"
    content = encode(WifiPayload(ssid=ssid, password=password, security="wpa2", hidden=True)).content
    fields = parse_wifi(content)
    assert fields == {"T": "WPA2", "S": ssid, "P": password, "H": "true"}


def test_wifi_nopass_has_empty_password():
    """Open networks emit an empty password and the trailing ;;."""
    content = encode_content("wifi", {"ssid": "Cafe", "security": "nopass", "password": "ignored"})
    assert content == "WIFI:T:nopass;S:Cafe;P:;;"


def test_wifi_hidden_flag():
    content = encode_content("wifi", {"wifi": {"ssid": "x", "password": "secret", "hidden": True}})
    assert content == "WIFI:T:WPA;S:x;P:secret;H:true;;"


def test_wifi_requires_password_when_secured():
    with pytest.raises(MissingField) as exc:
        encode(WifiPayload(ssid="Home", security="WPA"))
    assert exc.value.field == "password"


def test_wifi_rejects_unknown_security():
    with pytest.raises(InvalidFormat):
        encode(WifiPayload(ssid="Home", password="pw", security="TKIP"))


def test_wifi_password_not_in_repr():
    """Passwords stay out of reprs, and so out of debug logs."""
    assert "hunter2" not in repr(WifiPayload(ssid="Home", password="hunter2"))


def test_vcard_layout():
    """vCard 3.0 with CRLF line endings and escaped values."""
    content = encode(VCardPayload(
        first_name="Jane",
        last_name="Doe",
        organization="Acme, Inc.",
        department="R&D",
        phone="+1 (555) 123-4567",
        email="jane@example.com",
        social_links=(SocialLink("LinkedIn", "linkedin.com/in/jane"),),
        custom_fields=(CustomField("Employee ID", "42"),),
    )).content
    lines = content.split("\r\n")
    assert lines[:4] == ["BEGIN:VCARD", "VERSION:3.0", "FN:Jane Doe", "N:Doe;Jane;;;"]
    assert "ORG:Acme\\, Inc.;R&D" in lines
    assert "TEL;TYPE=VOICE:+15551234567" in lines
    assert "EMAIL;TYPE=INTERNET:jane@example.com" in lines
    assert "X-SOCIALPROFILE;TYPE=linkedin:https://linkedin.com/in/jane" in lines
    assert "X-EMPLOYEE-ID:42" in lines
    assert lines[-1] == "END:VCARD"


def test_vcard_round_trip():
    """Names and organisation come back out of the N and ORG lines."""
    content = encode_content("vcard", {"firstName": "Ana", "lastName": "Lima", "organization": "Lima; Filhos"})
    card = parse_vcard(content)
    last, first = card["N"].split(";")[:2]
    assert (first, last) == ("Ana", "Lima")
    assert card["ORG"] == "Lima\\; Filhos"


def test_vcard_requires_a_name():
    with pytest.raises(MissingField):
        encode(VCardPayload(organization="Acme"))


def test_escape_helpers():
    assert escape_vcard("a,b;c\\d\ne") == "a\\,b\\;c\\\\d\\ne"
    assert escape_wifi('a:b"c') == 'a:b\\"c'


def test_sms():
    assert encode_content("sms", {"phone": "+1 555 123 4567", "message": "Hello"}) == "SMSTO:+15551234567:Hello"


def test_email_percent_encodes_query():
    content = encode_content("email", {"email": "a@b.com", "subject": "Hi there", "body": "Line 1"})
    assert content == "mailto:a@b.com?subject=Hi%20there&body=Line%201"


def test_email_without_query():
    assert encode_content("email", {"to": "a@b.com"}) == "mailto:a@b.com"


def test_email_rejects_bad_address():
    with pytest.raises(InvalidFormat):
        encode_content("email", {"to": "not-an-email"})


def test_phone_strips_punctuation():
    assert encode_content("phone", "+1 (555) 123-4567") == "tel:+15551234567"


def test_location():
    assert encode_content("location", {"lat": 40.7128, "lng": -74.006}) == "geo:40.7128,-74.006"


@pytest.mark.parametrize("lat,lon", [(91, 0), (0, -181), ("north", 0)])
def test_location_out_of_range(lat, lon):
    with pytest.raises(InvalidFormat):
        encode_content("location", {"latitude": lat, "longitude": lon})


def test_event_lines():
    """VEVENT with floating local times, newline-joined."""
    content = encode(EventPayload(
        title="Launch; party",
        start="2024-06-01T10:00:00",
        end="2024-06-01T12:30:00",
        location="Main St, 1",
    )).content
    assert content.split("\n") == [
        "BEGIN:VEVENT",
        "SUMMARY:Launch\\; party",
        "LOCATION:Main St\\, 1",
        "DTSTART:20240601T100000",
        "DTEND:20240601T123000",
        "END:VEVENT",
    ]


def test_event_all_day():
    content = encode_content("event", {"title": "Holiday", "startDate": "2024-12-25"})
    assert "DTSTART;VALUE=DATE:20241225" in content.split("\n")


def test_event_end_before_start():
    with pytest.raises(InvalidFormat):
        encode_content("event", {"title": "x", "start": "2024-06-01T10:00:00", "end": "2024-06-01T09:00:00"})


def test_text_rejects_control_characters():
    with pytest.raises(InvalidFormat):
        encode(TextPayload(text="bell\x07"))


def test_text_length_limit():
    with pytest.raises(LengthExceeded) as exc:
        encode(TextPayload(text="a" * (MAX_LENGTHS[QRType.TEXT] + 1)))
    assert exc.value.limit == 2000


def test_payment_upi():
    content = encode_content("payment", {
        "type": "upi", "address": "shop@upi", "amount": 250, "currency": "inr", "note": "Order 42",
    })
    assert content == "upi://pay?pa=shop@upi&am=250&cu=INR&tn=Order%2042"


def test_payment_paypal():
    content = encode_content("payment", {"method": "paypal", "address": "jane", "amount": 10.5, "currency": "EUR"})
    assert content == "https://paypal.me/jane/10.5EUR"


def test_payment_bank_is_json():
    doc = json.loads(encode_content("payment", {"method": "bank", "address": "DE89370400440532013000"}))
    assert doc == {"type": "bank_payment", "account": "DE89370400440532013000"}


@pytest.mark.parametrize("data", [
    {"method": "upi", "address": "a@upi", "currency": "RUPEE"},
    {"method": "upi", "address": "a@upi", "amount": -1},
    {"method": "cheque", "address": "x"},
])
def test_payment_rejects_bad_input(data):
    with pytest.raises(InvalidFormat):
        encode_content("payment", data)


def test_app_download_document():
    doc = json.loads(encode_content("app_download", {
        "appDownload": {"appName": "Notes", "iosUrl": "apps.apple.com/app/id1"},
    }))
    assert doc == {"type": "app_download", "appName": "Notes", "iosUrl": "https://apps.apple.com/app/id1"}


def test_app_download_needs_a_store_url():
    with pytest.raises(MissingField):
        encode_content("app_download", {"appName": "Notes"})


def test_multi_url_limits_links():
    links = [{"title": f"L{i}", "url": f"example.com/{i}"} for i in range(11)]
    with pytest.raises(InvalidFormat):
        encode_content("multi_url", {"links": links})


def test_multi_url_document():
    doc = json.loads(encode_content("multi_url", {"title": "Me", "links": [{"title": "Blog", "url": "blog.example.com"}]}))
    assert doc["links"] == [{"title": "Blog", "url": "https://blog.example.com/"}]


def test_menu_requires_items():
    with pytest.raises(MissingField):
        encode_content("menu", {"restaurantName": "Bistro", "categories": [{"name": "Mains", "items": []}]})


def test_menu_document():
    doc = json.loads(encode_content("menu", {
        "restaurantName": "Bistro",
        "categories": [{"name": "Mains", "items": [{"name": "Soup", "price": 4.5, "allergens": ["celery"]}]}],
    }))
    assert doc["categories"][0]["items"][0] == {"name": "Soup", "price": 4.5, "allergens": ["celery"]}


def test_pdf_uses_sanitised_url():
    assert encode_content("pdf", {"url": "files.example.com/menu.pdf"}) == "https://files.example.com/menu.pdf"


def test_unknown_type():
    with pytest.raises(InvalidFormat, match="Unsupported QR code type"):
        encode_content("fax", {})


def test_non_payload_is_a_programming_error():
    with pytest.raises(AssertionError):
        encode(object())


def test_every_encoded_type_is_short_enough():
    """Content stays within the per-type limit table."""
    content = encode_content("url", "example.com/" + "a" * 100)
    assert len(content) <= MAX_LENGTHS[QRType.URL]
    assert re.match(r"^https://example\.com/a+$", content)


@pytest.mark.parametrize("qr_type,use_case,has_logo,expected", [
    ("url", "digital", False, "M"),
    ("url", "print", False, "H"),
    ("url", "digital", True, "H"),
    ("text", "harsh", False, "Q"),
    ("wifi", "digital", False, "H"),
    ("payment", "harsh", False, "H"),
])
def test_recommend_error_correction(qr_type, use_case, has_logo, expected):
    assert recommend_error_correction(qr_type, use_case, has_logo) == expected
