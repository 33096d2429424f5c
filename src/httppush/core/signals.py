"""
One-shot readiness signal between the thread that launches a server and
the thread that runs it.

    ready = ReadySignal()
    threading.Thread(target=server.run, args=(ready,), daemon=True).start()

    ready.wait(timeout=5)      # returns once the socket is listening
    host, port = ready.address
"""

import threading
from typing import Optional, Tuple


class ReadySignal:
    """
    Write-once, read-many notification.

    The server thread resolves it exactly once, either with fire() when
    the listener is bound or with fail() when binding failed. A second
    resolution is a programming error and raises RuntimeError.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None
        self.address: Optional[Tuple[str, int]] = None

    @property
    def fired(self) -> bool:
        """True once resolved, successfully or not."""
        return self._event.is_set()

    def _resolve(self, address, error) -> None:
        with self._lock:
            if self._event.is_set():
                raise RuntimeError("ready signal already fired")
            self.address = address
            self._error = error
            self._event.set()

    def fire(self, address: Optional[Tuple[str, int]] = None) -> None:
        """Signal that the server is listening on address."""
        self._resolve(address, None)

    def fail(self, error: BaseException) -> None:
        """Signal that the server will never become ready."""
        self._resolve(None, error)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until resolved.

        Returns:
            True once fired, False if timeout expired first.

        Raises:
            The exception passed to fail().
        """
        if not self._event.wait(timeout):
            return False
        if self._error is not None:
            raise self._error
        return True
