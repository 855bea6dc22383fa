"""Runtime configuration, read from QRGEN_* environment variables."""

import os
from dataclasses import dataclass, fields

ENV_PREFIX = "QRGEN_"


@dataclass(frozen=True)
class Settings:
    base_url: str = "http://localhost:3000"
    short_code_length: int = 8
    max_allocation_attempts: int = 10
    generation_budget_ms: float = 500.0
    batch_max_concurrency: int = 10
    batch_timeout: float = 30.0           # seconds per batch item
    logo_fetch_timeout: float = 5.0       # seconds
    logo_max_bytes: int = 5 * 1024 * 1024
    cache_max_entries: int = 512
    store_path: str | None = None         # JSON file for short codes, None = memory only
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings from the environment, falling back to defaults.

        Raises:
            ValueError: if a numeric variable does not parse.
        """
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            if f.type in (int, "int"):
                values[f.name] = _parse(int, f.name, raw)
            elif f.type in (float, "float"):
                values[f.name] = _parse(float, f.name, raw)
            else:
                values[f.name] = raw
        settings = cls(**values)
        settings.validate()
        return settings

    def validate(self):
        if self.short_code_length < 4:
            raise ValueError("short_code_length must be at least 4")
        if self.max_allocation_attempts < 1:
            raise ValueError("max_allocation_attempts must be positive")
        if self.batch_max_concurrency < 1:
            raise ValueError("batch_max_concurrency must be positive")
        if self.batch_timeout <= 0 or self.logo_fetch_timeout <= 0:
            raise ValueError("timeouts must be positive")

    @property
    def public_base_url(self) -> str:
        return self.base_url.rstrip("/")


def _parse(kind, name, raw):
    try:
        return kind(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name.upper()}={raw!r} is not a valid {kind.__name__}") from None
