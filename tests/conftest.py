"""Shared fixtures: a fully wired service with in-memory stores and no network."""

import io
import itertools
from datetime import datetime, timezone

import pytest
from PIL import Image

from qrgen.cache import LRUCache
from qrgen.errors import LogoEmbedError
from qrgen.imaging import PillowImageProcessor
from qrgen.logo import LogoCompositor
from qrgen.service import QRCodeService
from qrgen.shortcode import ShortCodeAllocator
from qrgen.store import CachedImageStorage, ShortCodeStore

BASE_URL = "https://qr.example.com"
FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_png(size=(40, 40), color=(255, 0, 0, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


class StubFetcher:
    """Logo fetcher that never touches the network."""

    def __init__(self, body: bytes | None = None, error: Exception | None = None):
        self.body = body
        self.error = error
        self.calls = []

    def fetch(self, url, cancel=None):
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        if self.body is None:
            raise LogoEmbedError("no logo configured")
        return self.body


@pytest.fixture
def png_factory():
    return make_png


@pytest.fixture
def store():
    return ShortCodeStore()


@pytest.fixture
def fetcher():
    return StubFetcher(body=make_png())


def build_test_service(store, fetcher, budget_ms=500.0):
    counter = itertools.count()
    return QRCodeService(
        store,
        CachedImageStorage(LRUCache(64), BASE_URL),
        ShortCodeAllocator(store, BASE_URL),
        compositor=LogoCompositor(PillowImageProcessor(), fetcher),
        budget_ms=budget_ms,
        id_factory=lambda: f"id{next(counter):04d}",
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def service(store, fetcher):
    return build_test_service(store, fetcher)
