"""Sources of the physical cube state handed to the authenticator."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import CancelledError, Future, InvalidStateError
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Dict, List, Optional, Protocol

from .errors import UserCancelled

LOGGER = logging.getLogger(__name__)


class PhysicalStateProvider(Protocol):
    def read_state(self, request_id: str, prompt: str) -> str:
        ...


class StaticStateProvider:
    """Provider that always yields the same state (scripts and tests)."""

    def __init__(self, state: str) -> None:
        self.state = state

    def read_state(self, request_id: str, prompt: str) -> str:
        return self.state


class PromptStateProvider:
    """Ask for the cube state on the terminal."""

    def read_state(self, request_id: str, prompt: str) -> str:
        try:
            answer = input(f"{prompt} [{request_id}]: ")
        except (EOFError, KeyboardInterrupt) as exc:
            raise UserCancelled("No cube state entered") from exc
        answer = answer.strip()
        if not answer:
            raise UserCancelled("No cube state entered")
        return answer


class PendingStateRequests:
    """Cube states delivered out of band, correlated by request id.

    The engine blocks in :meth:`read_state` while another thread (the
    browser bridge) calls :meth:`submit` or :meth:`cancel` with the same id.
    """

    def __init__(self, timeout: Optional[float] = 120.0) -> None:
        self.timeout = timeout
        self._pending: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._closed = False

    def _future(self, request_id: str) -> Future:
        with self._lock:
            if self._closed:
                raise UserCancelled("State requests are closed")
            future = self._pending.get(request_id)
            if future is None:
                future = Future()
                self._pending[request_id] = future
            return future

    def expect(self, request_id: str) -> None:
        """Register ``request_id`` so an answer arriving before :meth:`read_state` is kept."""
        self._future(request_id)

    def read_state(self, request_id: str, prompt: str) -> str:
        future = self._future(request_id)
        LOGGER.debug("Waiting for cube state: %s", request_id)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as exc:
            raise UserCancelled(f"Timed out waiting for cube state ({request_id})") from exc
        except CancelledError as exc:
            raise UserCancelled(f"Cube state request cancelled ({request_id})") from exc
        finally:
            self.discard(request_id)

    def discard(self, request_id: str) -> None:
        with self._lock:
            self._pending.pop(request_id, None)

    def _existing(self, request_id: str) -> Optional[Future]:
        with self._lock:
            future = self._pending.get(request_id)
        if future is None:
            LOGGER.debug("Ignoring answer for unknown state request %s", request_id)
        return future

    def submit(self, request_id: str, state: str) -> None:
        future = self._existing(request_id)
        if future is None:
            return
        try:
            future.set_result(state)
        except InvalidStateError:
            LOGGER.debug("State request %s already settled", request_id)

    def cancel(self, request_id: str) -> None:
        future = self._existing(request_id)
        if future is not None:
            future.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            self._closed = True
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            future.cancel()

    def pending(self) -> List[str]:
        with self._lock:
            return list(self._pending)
