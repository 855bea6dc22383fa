"""Persistence collaborators: QR metadata records, short codes, rendered images.

``ShortCodeStore`` and ``CachedImageStorage`` are the in-process
implementations. A deployment with a real database or object store provides
its own classes satisfying ``Repository`` and ``ImageStorage``.
"""

import json
import threading
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Protocol

from qrgen.cache import Cache
from qrgen.errors import ShortCodeConflict
from qrgen.logging import audit, get_logger, trace
from qrgen.models import ImageFormat

log = get_logger("store")


@dataclass(frozen=True)
class QRRecord:
    """Everything needed to describe, resolve and re-render one QR code."""

    id: str
    actor_id: str
    type: str
    mode: str
    data: dict                       # payload_to_dict() form
    style: dict = field(default_factory=dict)
    name: str | None = None
    tags: list = field(default_factory=list)
    short_code: str | None = None
    created_at: str = ""             # ISO-8601
    image_url: str | None = None
    meta: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "QRRecord":
        return cls(**data)


class Repository(Protocol):
    def exists_short_code(self, code: str) -> bool: ...

    def insert_short_code(self, code: str, record: QRRecord) -> QRRecord:
        """Atomically bind ``code`` to ``record``; ShortCodeConflict if taken."""
        ...

    def release(self, code: str) -> bool:
        """Undo an insert_short_code whose generation did not finish."""
        ...

    def save(self, record: QRRecord) -> None: ...

    def get(self, record_id: str) -> QRRecord | None: ...

    def resolve(self, code: str) -> QRRecord | None: ...


class ShortCodeStore:
    """Thread-safe record and short-code store, optionally JSON-file-backed.

    With ``db_path=None`` everything lives in memory.
    """

    def __init__(self, db_path: str | None = None):
        self.db_path = Path(db_path) if db_path else None
        self._lock = threading.Lock()
        self._codes: dict[str, str] = {}
        self._records: dict[str, QRRecord] = {}
        if self.db_path is not None and self.db_path.exists():
            with open(self.db_path) as f:
                raw = json.load(f)
            self._codes = dict(raw.get("codes", {}))
            self._records = {rid: QRRecord.from_dict(r) for rid, r in raw.get("records", {}).items()}
            log.info("Loaded store from %s (%d records, %d short codes)",
                     self.db_path, len(self._records), len(self._codes))

    def _save(self):
        if self.db_path is None:
            return
        with open(self.db_path, "w") as f:
            json.dump({
                "codes": self._codes,
                "records": {rid: r.to_dict() for rid, r in self._records.items()},
            }, f, indent=2)

    def exists_short_code(self, code: str) -> bool:
        with self._lock:
            return code in self._codes

    @trace
    def insert_short_code(self, code: str, record: QRRecord) -> QRRecord:
        with self._lock:
            if code in self._codes:
                raise ShortCodeConflict(code)
            record = replace(record, short_code=code)
            self._codes[code] = record.id
            self._records[record.id] = record
            self._save()
        audit("shortcode.inserted", logger=log, code=code, record=record.id)
        return record

    @trace
    def release(self, code: str) -> bool:
        """Drop ``code`` and the record it was claimed for. False if unknown."""
        with self._lock:
            record_id = self._codes.pop(code, None)
            if record_id is None:
                return False
            record = self._records.get(record_id)
            if record is not None and record.short_code == code:
                del self._records[record_id]
            self._save()
        audit("shortcode.released", logger=log, code=code, record=record_id)
        return True

    def save(self, record: QRRecord) -> None:
        with self._lock:
            self._records[record.id] = record
            if record.short_code:
                self._codes[record.short_code] = record.id
            self._save()

    def get(self, record_id: str) -> QRRecord | None:
        with self._lock:
            return self._records.get(record_id)

    @trace
    def resolve(self, code: str) -> QRRecord | None:
        with self._lock:
            record_id = self._codes.get(code)
            record = self._records.get(record_id) if record_id else None
        if record is None:
            audit("shortcode.resolve_miss", logger=log, code=code)
        else:
            audit("shortcode.resolved", logger=log, code=code, record=record.id)
        return record

    def stats(self) -> dict:
        with self._lock:
            return {"total_records": len(self._records), "short_codes": len(self._codes)}


# ---------------------------------------------------------------------------
# Image storage
# ---------------------------------------------------------------------------

class ImageStorage(Protocol):
    def put(self, image_id: str, fmt: ImageFormat, data: bytes) -> str:
        """Store ``data`` and return its public URL."""
        ...

    def get(self, image_id: str) -> bytes | None: ...


def image_url(base_url: str, image_id: str, fmt: ImageFormat) -> str:
    return f"{base_url.rstrip('/')}/api/qr/image/{image_id}.{ImageFormat(fmt).value}"


class CachedImageStorage:
    """Keeps rendered images in an injected cache.

    Evicted images are re-rendered on demand from their saved record.
    """

    def __init__(self, cache: Cache, base_url: str):
        self.cache = cache
        self.base_url = base_url

    def put(self, image_id: str, fmt: ImageFormat, data: bytes) -> str:
        self.cache.put(image_id, data)
        return image_url(self.base_url, image_id, fmt)

    def get(self, image_id: str) -> bytes | None:
        return self.cache.get(image_id)
