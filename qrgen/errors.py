"""Error taxonomy for payload encoding, rendering and generation."""


class QRGenError(Exception):
    """Base class for every error qrgen surfaces to callers."""

    code = "qrgen_error"
    retryable = False


class PayloadError(QRGenError):
    """Caller-supplied payload data was rejected."""

    code = "invalid_payload"


class MissingField(PayloadError):
    code = "missing_field"

    def __init__(self, field: str, qr_type: str | None = None):
        self.field = field
        self.qr_type = qr_type
        where = f" for {qr_type} QR codes" if qr_type else ""
        super().__init__(f"{field} is required{where}")


class InvalidFormat(PayloadError):
    code = "invalid_format"


class UnsafeContent(PayloadError):
    code = "unsafe_content"


class LengthExceeded(PayloadError):
    code = "length_exceeded"

    def __init__(self, qr_type: str, length: int, limit: int):
        self.qr_type = qr_type
        self.length = length
        self.limit = limit
        super().__init__(
            f"{qr_type} content is {length} characters, maximum is {limit}"
        )


class RenderError(QRGenError):
    """The symbol encoder could not produce an image for the content."""

    code = "render_error"


class LogoEmbedError(QRGenError):
    """Logo could not be embedded. Always recovered by the compositor."""

    code = "logo_embed_error"


class ShortCodeConflict(QRGenError):
    """A short code is already taken (raised by repositories on insert)."""

    code = "short_code_conflict"

    def __init__(self, short_code: str):
        self.short_code = short_code
        super().__init__(f"short code {short_code!r} already exists")


class AllocationExhausted(QRGenError):
    code = "allocation_exhausted"
    retryable = True

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Failed to generate unique short code after {attempts} attempts"
        )


class GenerationCancelled(QRGenError):
    code = "cancelled"
    retryable = True


class BatchItemTimeout(QRGenError):
    code = "batch_item_timeout"
    retryable = True

    def __init__(self, index: int, timeout: float):
        self.index = index
        self.timeout = timeout
        super().__init__(f"Generation timeout after {timeout:g}s")


class BatchItemFailure(QRGenError):
    code = "batch_item_failure"

    def __init__(self, index: int, cause: BaseException):
        self.index = index
        self.cause = cause
        self.retryable = getattr(cause, "retryable", False)
        super().__init__(str(cause) or type(cause).__name__)
