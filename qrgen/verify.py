"""Scan verification: decode a rendered PNG with ZBar and compare the content."""

import io
import time
from dataclasses import dataclass

from PIL import Image
from pyzbar.pyzbar import ZBarSymbol
from pyzbar.pyzbar import decode as pyzbar_decode

from qrgen.logging import audit, get_logger, trace

log = get_logger("verify")


@dataclass
class ScanResult:
    """Result of a single scan attempt."""
    success: bool
    decoded_data: str | None = None
    decode_time_ms: float = 0.0
    decoder: str = "pyzbar/zbar"
    error: str | None = None


@trace
def scan(png: bytes) -> ScanResult:
    """Decode the first QR symbol found in ``png``."""
    start = time.perf_counter()
    try:
        image = Image.open(io.BytesIO(png)).convert("L")
        results = pyzbar_decode(image, symbols=[ZBarSymbol.QRCODE])
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        audit("scan.error", logger=log, error=str(e), time_ms=round(elapsed, 1))
        return ScanResult(success=False, decode_time_ms=elapsed, error=str(e))

    elapsed = (time.perf_counter() - start) * 1000
    if not results:
        audit("scan.verified", logger=log, success=False, time_ms=round(elapsed, 1),
              error="No QR code detected")
        return ScanResult(success=False, decode_time_ms=elapsed, error="No QR code detected")

    data = results[0].data.decode("utf-8", errors="replace")
    audit("scan.verified", logger=log, success=True, time_ms=round(elapsed, 1), length=len(data))
    return ScanResult(success=True, decoded_data=data, decode_time_ms=elapsed)


@trace
def verify(png: bytes, expected_data: str | None = None) -> ScanResult:
    """Scan ``png``; a successful scan of different content counts as a failure."""
    result = scan(png)
    if result.success and expected_data is not None and result.decoded_data != expected_data:
        result.success = False
        result.error = f"Data mismatch: got {result.decoded_data!r}, expected {expected_data!r}"
    return result
