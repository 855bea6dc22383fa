"""Cooperative cancellation for render and fetch work."""

import threading

from qrgen.errors import GenerationCancelled


class CancellationToken:
    """Signalled by whoever gave up waiting; checked by the worker between steps.

    Python threads cannot be killed, so long-running steps poll the token and
    stop on their own.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled"):
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise GenerationCancelled(self.reason)

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


def check(token: CancellationToken | None):
    """Raise GenerationCancelled if ``token`` has been signalled."""
    if token is not None:
        token.raise_if_cancelled()
