"""Single-flight concurrency control with cancel-on-supersede."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from linkgate.errors import JobCancelled

logger = logging.getLogger(__name__)


def concurrency_key(group: str, *, workflow: str, ref: str) -> str:
    """Expand a concurrency group template such as ``{workflow}-{ref}``."""
    try:
        return group.format(workflow=workflow, ref=ref)
    except (AttributeError, KeyError, IndexError, ValueError) as exc:
        raise ValueError(f"invalid concurrency group template `{group}`: {exc}") from exc


@dataclass
class CancellationToken:
    """Cooperative cancellation flag passed through every job step."""

    key: str
    _event: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, step: str | None = None) -> None:
        """Raise ``JobCancelled`` if a newer run superseded this one."""
        if self._event.is_set():
            where = f" before step `{step}`" if step else ""
            raise JobCancelled(f"run for `{self.key}` superseded by a newer run{where}")


class ConcurrencyController:
    """Track the in-flight job per concurrency key.

    With ``cancel_in_progress`` set, acquiring a key that already has a
    holder cancels the older holder, so at most one non-cancelled token per
    key is ever in flight. Cancellation is asynchronous: the older job only
    notices at its next step boundary.
    """

    def __init__(self, *, cancel_in_progress: bool = True) -> None:
        self.cancel_in_progress = cancel_in_progress
        self._lock = threading.Lock()
        self._active: dict[str, CancellationToken] = {}

    def acquire(self, key: str) -> CancellationToken:
        token = CancellationToken(key=key)
        with self._lock:
            previous = self._active.get(key)
            self._active[key] = token
        if previous is not None and self.cancel_in_progress:
            logger.info("cancelling in-flight run for %s", key)
            previous.cancel()
        return token

    def release(self, key: str, token: CancellationToken) -> None:
        """Drop ``token`` if it is still the current holder of ``key``."""
        with self._lock:
            if self._active.get(key) is token:
                del self._active[key]

    def active(self, key: str) -> CancellationToken | None:
        with self._lock:
            return self._active.get(key)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._active)
