"""Short code allocation for dynamic QR codes.

Codes are random Base62 strings. ``claim`` is the path used by the service:
the repository's atomic insert decides uniqueness, so two concurrent
allocations can never both win the same code. ``generate`` keeps the older
check-then-use contract for callers that insert on their own.
"""

import secrets
import string

from qrgen.errors import AllocationExhausted, ShortCodeConflict
from qrgen.logging import audit, get_logger, trace
from qrgen.store import QRRecord, Repository

log = get_logger("shortcode")

# Base62 alphabet: 0-9, a-z, A-Z
BASE62_ALPHABET = string.digits + string.ascii_lowercase + string.ascii_uppercase
BASE62_SIZE = len(BASE62_ALPHABET)

DEFAULT_LENGTH = 8
DEFAULT_MAX_ATTEMPTS = 10


def random_code(length: int = DEFAULT_LENGTH) -> str:
    """Uniformly random Base62 string from the OS CSPRNG."""
    return "".join(secrets.choice(BASE62_ALPHABET) for _ in range(length))


def is_valid_code(code: str, length: int = DEFAULT_LENGTH) -> bool:
    return len(code) == length and all(c in BASE62_ALPHABET for c in code)


class ShortCodeAllocator:
    def __init__(self, repository: Repository, base_url: str = "http://localhost:3000",
                 length: int = DEFAULT_LENGTH, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 code_factory=None):
        if length < 1 or max_attempts < 1:
            raise ValueError("length and max_attempts must be positive")
        self.repository = repository
        self.base_url = base_url.rstrip("/")
        self.length = length
        self.max_attempts = max_attempts
        self._next_code = code_factory or (lambda: random_code(self.length))

    @trace
    def generate(self) -> str:
        """Return a code not yet known to the repository.

        Raises:
            AllocationExhausted: every attempt collided.
        """
        for attempt in range(1, self.max_attempts + 1):
            code = self._next_code()
            if not self.repository.exists_short_code(code):
                audit("shortcode.generated", logger=log, code=code, attempts=attempt)
                return code
            log.debug("short code %s taken (attempt %d/%d)", code, attempt, self.max_attempts)
        audit("shortcode.exhausted", logger=log, attempts=self.max_attempts)
        raise AllocationExhausted(self.max_attempts)

    @trace
    def claim(self, record: QRRecord) -> str:
        """Bind a fresh code to ``record`` through the repository's atomic insert.

        Raises:
            AllocationExhausted: every attempt hit ShortCodeConflict.
        """
        for attempt in range(1, self.max_attempts + 1):
            code = self._next_code()
            try:
                self.repository.insert_short_code(code, record)
            except ShortCodeConflict:
                log.debug("short code %s taken (attempt %d/%d)", code, attempt, self.max_attempts)
                continue
            audit("shortcode.claimed", logger=log, code=code, record=record.id, attempts=attempt)
            return code
        audit("shortcode.exhausted", logger=log, record=record.id, attempts=self.max_attempts)
        raise AllocationExhausted(self.max_attempts)

    def short_url(self, code: str) -> str:
        return f"{self.base_url}/q/{code}"
