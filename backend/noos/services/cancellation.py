"""
Cooperative cancellation.

A token is handed to the pipeline and checked at phase boundaries and
between batches of styles. Work already inside a single query or pandas
operation is not interrupted.
"""

import threading
from typing import Callable, Optional

from noos.exceptions import TaskCancelledError


class CancellationToken:
    """
    Set locally through ``cancel()`` or observed through ``probe``, a
    callable that reads the persisted cancellation flag.
    """

    def __init__(self, probe: Optional[Callable[[], bool]] = None):
        self._event = threading.Event()
        self._probe = probe

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._probe is not None and self._probe():
            self._event.set()
            return True
        return False

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise TaskCancelledError()

    def bind(self, probe: Callable[[], bool]) -> "CancellationToken":
        self._probe = probe
        return self
