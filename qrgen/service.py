"""Generation orchestrator: request -> encoded content -> image -> stored result.

``QRCodeService`` is an ordinary object built once per process by
``build_service`` and handed to whoever needs it (CLI, HTTP app, batch
coordinator). Its collaborators are passed in, so tests swap any of them.
"""

import threading
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone

from qrgen import capacity
from qrgen.cache import LRUCache
from qrgen.cancel import CancellationToken, check
from qrgen.config import Settings
from qrgen.encoder import encode
from qrgen.imaging import ImageProcessor, PillowImageProcessor
from qrgen.logging import audit, get_logger, trace
from qrgen.logo import LogoCompositor, LogoFetcher
from qrgen.models import GenerationResult, ImageFormat, PayloadRequest, StyleOptions, request_from_dict
from qrgen.payloads import QRType, payload_to_dict
from qrgen.render import ImageRenderer
from qrgen.shortcode import ShortCodeAllocator
from qrgen.store import CachedImageStorage, ImageStorage, QRRecord, Repository, ShortCodeStore

log = get_logger("service")

# Types whose short code redirects straight to a URL instead of a landing page
REDIRECT_TYPES = frozenset({QRType.URL, QRType.PDF, QRType.IMAGE, QRType.VIDEO})


class PerformanceMonitor:
    """Running generation counters for one service instance."""

    def __init__(self, budget_ms: float = 500.0):
        self.budget_ms = budget_ms
        self._lock = threading.Lock()
        self.total = 0
        self.failed = 0
        self.over_budget = 0
        self._total_ms = 0.0

    def record(self, elapsed_ms: float, ok: bool = True):
        with self._lock:
            self.total += 1
            self._total_ms += elapsed_ms
            if not ok:
                self.failed += 1
            elif elapsed_ms > self.budget_ms:
                self.over_budget += 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "total": self.total,
                "failed": self.failed,
                "over_budget": self.over_budget,
                "average_ms": round(self._total_ms / self.total, 2) if self.total else 0.0,
                "error_rate": round(self.failed / self.total, 4) if self.total else 0.0,
            }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class QRCodeService:
    def __init__(
        self,
        repository: Repository,
        storage: ImageStorage,
        allocator: ShortCodeAllocator,
        renderer: ImageRenderer | None = None,
        compositor: LogoCompositor | None = None,
        budget_ms: float = 500.0,
        id_factory=None,
        clock=None,
        monitor: PerformanceMonitor | None = None,
    ):
        self.repository = repository
        self.storage = storage
        self.allocator = allocator
        self.renderer = renderer or ImageRenderer()
        self.compositor = compositor
        self.budget_ms = budget_ms
        self.id_factory = id_factory or _new_id
        self.clock = clock or _utcnow
        self.monitor = monitor or PerformanceMonitor(budget_ms)

    @trace
    def generate(self, request: PayloadRequest, actor_id: str,
                 cancel: CancellationToken | None = None) -> GenerationResult:
        """Generate one QR code.

        Raises:
            PayloadError: the payload failed validation (no short code is used).
            RenderError: the content could not be drawn.
            AllocationExhausted: no free short code for a dynamic request.
            GenerationCancelled: ``cancel`` was signalled.
        """
        started = time.perf_counter()
        try:
            result = self._generate(request, actor_id, cancel, started)
        except Exception:
            self.monitor.record((time.perf_counter() - started) * 1000, ok=False)
            raise
        self.monitor.record(result.elapsed_ms, ok=True)
        return result

    def _generate(self, request, actor_id, cancel, started):
        check(cancel)
        # Encoding first: an invalid dynamic request must not consume a code
        encoded = encode(request.data)
        style = request.style

        record = QRRecord(
            id=self.id_factory(),
            actor_id=actor_id,
            type=request.type.value,
            mode=request.mode.value,
            data=payload_to_dict(request.data),
            style=style.to_dict(),
            name=request.name,
            tags=list(request.tags),
            created_at=self.clock().isoformat(),
        )

        short_code = short_url = None
        if request.is_dynamic:
            check(cancel)
            short_code = self.allocator.claim(record)
            short_url = self.allocator.short_url(short_code)
            content = short_url
        else:
            content = encoded.content

        try:
            estimate = capacity.estimate(content, style.error_correction)
            image = self._render(content, style, cancel)

            check(cancel)
            url = self.storage.put(record.id, style.format, image)
            record = replace(record, short_code=short_code, image_url=url, meta={
                "version": estimate.version,
                "modules": estimate.modules,
                "byte_size": len(image),
            })
            # A caller that gave up must not find the record saved afterwards
            check(cancel)
            self.repository.save(record)
        except Exception:
            if short_code is not None:
                log.info("releasing short code %s after failed generation of %s", short_code, record.id)
                self.repository.release(short_code)
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > self.budget_ms:
            log.warning("generation of %s took %.1fms, over the %.0fms budget",
                        record.id, elapsed_ms, self.budget_ms)

        audit("qr.generated", logger=log, id=record.id, actor=actor_id, type=record.type,
              mode=record.mode, format=style.format.value, version=estimate.version,
              bytes=len(image), elapsed_ms=round(elapsed_ms, 1))
        return GenerationResult(
            id=record.id,
            image_url=url,
            type=request.type,
            mode=request.mode,
            format=style.format,
            size=style.size,
            error_correction=style.error_correction,
            version=estimate.version,
            modules=estimate.modules,
            byte_size=len(image),
            created_at=datetime.fromisoformat(record.created_at),
            elapsed_ms=elapsed_ms,
            short_url=short_url,
            short_code=short_code,
        )

    def _render(self, content: str, style: StyleOptions, cancel) -> bytes:
        image = self.renderer.render(content, style, cancel)
        if style.logo is None:
            return image
        if style.format is not ImageFormat.PNG:
            log.info("logo ignored for %s output", style.format.value)
            return image
        if self.compositor is None:
            log.info("no logo compositor configured, logo ignored")
            return image
        return self.compositor.embed(image, style.logo, style.background, cancel)

    def record(self, record_id: str) -> QRRecord | None:
        return self.repository.get(record_id)

    @trace
    def image_bytes(self, record_id: str) -> bytes | None:
        """Stored image for ``record_id``, re-rendered from its record if evicted."""
        cached = self.storage.get(record_id)
        if cached is not None:
            return cached
        record = self.repository.get(record_id)
        if record is None:
            return None

        request = request_from_dict({
            "type": record.type, "mode": record.mode, "data": record.data, "style": record.style,
        })
        if record.short_code:
            content = self.allocator.short_url(record.short_code)
        else:
            content = encode(request.data).content
        image = self._render(content, request.style, None)
        self.storage.put(record.id, request.style.format, image)
        audit("qr.regenerated", logger=log, id=record.id, bytes=len(image))
        return image

    def resolve(self, code: str) -> QRRecord | None:
        """Record (with its original payload) behind a dynamic short code."""
        return self.repository.resolve(code)

    def destination(self, record: QRRecord) -> str | None:
        """Redirect target for URL-like records, None for landing-page types."""
        qr_type = QRType.parse(record.type)
        if qr_type not in REDIRECT_TYPES:
            return None
        request = request_from_dict({"type": record.type, "data": record.data})
        return encode(request.data).content

    def stats(self) -> dict:
        return self.monitor.snapshot()


def build_service(settings: Settings | None = None, processor: ImageProcessor | None = None,
                  fetcher: LogoFetcher | None = None, repository: Repository | None = None) -> QRCodeService:
    """Wire the default collaborators for ``settings``."""
    settings = settings or Settings.from_env()
    base_url = settings.public_base_url
    repository = repository or ShortCodeStore(settings.store_path)
    storage = CachedImageStorage(LRUCache(settings.cache_max_entries), base_url)
    allocator = ShortCodeAllocator(
        repository,
        base_url=base_url,
        length=settings.short_code_length,
        max_attempts=settings.max_allocation_attempts,
    )
    compositor = LogoCompositor(
        processor or PillowImageProcessor(),
        fetcher or LogoFetcher(timeout=settings.logo_fetch_timeout, max_bytes=settings.logo_max_bytes),
    )
    log.info("service ready (base_url=%s, store=%s)", base_url, settings.store_path or "memory")
    return QRCodeService(
        repository,
        storage,
        allocator,
        renderer=ImageRenderer(),
        compositor=compositor,
        budget_ms=settings.generation_budget_ms,
    )
