"""One-shot loopback listener for the authorization redirect.

:class:`CallbackListener` binds a tiny HTTP server to a loopback address and
waits for exactly one request on the redirect path. That request gets a
static HTML page, its query parameters become a
:class:`~looplogin.models.CallbackResult`, and the listener shuts down.
Requests for any other path are answered with 404 and ignored, so a browser
fetching ``/favicon.ico`` cannot consume the callback.

The server runs on a daemon thread (:class:`http.server.ThreadingHTTPServer`)
and hands the result to the event loop with ``call_soon_threadsafe``; the
awaiting coroutine is the flow's only suspension point.

Lifecycle::

    IDLE -> LISTENING -> {FULFILLED | TIMED_OUT | ABORTED} -> CLOSED

Terminal outcomes are final. A listener object serves one flow attempt and
cannot be restarted; the port is released on every exit path.
"""

from __future__ import annotations

import asyncio
import enum
import html
import logging
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlparse

from looplogin.exceptions import CallbackTimeoutError, ConfigurationError
from looplogin.models import CallbackResult, is_loopback_host

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05

_PAGE_TEMPLATE = """<!doctype html>
<html lang="en">
<head><meta charset="utf-8"><title>looplogin</title></head>
<body style="font-family: sans-serif; margin: 3rem;">
<h2>{heading}</h2>
<p>{detail}</p>
</body>
</html>
"""


class ListenerState(str, enum.Enum):
    """Lifecycle states of a :class:`CallbackListener`."""

    IDLE = "idle"
    LISTENING = "listening"
    FULFILLED = "fulfilled"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"
    CLOSED = "closed"


def _render_page(result: CallbackResult) -> bytes:
    """Render the terminal page shown in the browser.

    Only the provider's error code is echoed back (escaped); the code,
    state, and any token material never appear on the page.
    """
    if result.is_error():
        heading = "Sign-in failed"
        detail = (
            f"The identity provider returned <code>{html.escape(result.error or '')}</code>. "
            "Return to the terminal for details."
        )
    elif result.code:
        heading = "Sign-in response received"
        detail = "You can close this window and return to the terminal."
    else:
        heading = "Sign-in failed"
        detail = "No authorization code was received. Return to the terminal."
    return _PAGE_TEMPLATE.format(heading=heading, detail=detail).encode("utf-8")


def _parse_callback(query: str) -> CallbackResult:
    params = parse_qs(query)

    def single(key: str) -> Optional[str]:
        values = params.get(key)
        return values[0] if values else None

    return CallbackResult(
        code=single("code"),
        state=single("state"),
        error=single("error"),
        error_description=single("error_description"),
        error_uri=single("error_uri"),
    )


class _CallbackServer(ThreadingHTTPServer):
    """HTTP server that accepts at most one callback on ``callback_path``."""

    daemon_threads = True

    def __init__(
        self,
        address: tuple[str, int],
        callback_path: str,
        on_callback: Callable[[CallbackResult], None],
    ) -> None:
        self.address_family = socket.AF_INET6 if ":" in address[0] else socket.AF_INET
        self.callback_path = callback_path
        self._on_callback = on_callback
        self._claim_lock = threading.Lock()
        self._claimed = False
        super().__init__(address, _CallbackHandler)

    def claim(self) -> bool:
        """Return True exactly once: for the request that becomes the callback."""
        with self._claim_lock:
            if self._claimed:
                return False
            self._claimed = True
            return True

    def deliver(self, result: CallbackResult) -> None:
        self._on_callback(result)


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer
    # Browsers open speculative connections that never send a request.
    timeout = 10

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path != self.server.callback_path:
            self._send(404, b"Not Found", "text/plain; charset=utf-8")
            return
        if not self.server.claim():
            self._send(404, b"Not Found", "text/plain; charset=utf-8")
            return

        result = _parse_callback(parsed.query)
        self._send(200, _render_page(result), "text/html; charset=utf-8")
        self.server.deliver(result)

    def _method_not_allowed(self) -> None:
        self._send(405, b"Method Not Allowed", "text/plain; charset=utf-8")

    do_POST = do_PUT = do_DELETE = do_PATCH = _method_not_allowed

    def _send(self, status: int, body: bytes, content_type: str) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)
        self.wfile.flush()

    def log_message(self, format: str, *args: Any) -> None:
        # Request lines carry the authorization code.
        pass


class CallbackListener:
    """Loopback HTTP listener that accepts exactly one authorization callback.

    Use as an async context manager so the port is released on every exit
    path::

        async with CallbackListener(3000, "/auth/callback") as listener:
            browser(authorize_url)
            result = await listener.wait(timeout=300)

    Args:
        port: TCP port to bind. ``0`` picks a free port (see :attr:`port`).
        path: The redirect path, e.g. ``/auth/callback``.
        host: Loopback host to bind. ``localhost`` binds ``127.0.0.1``.

    Raises:
        ConfigurationError: If *host* is not a loopback address.
    """

    def __init__(self, port: int, path: str = "/auth/callback", host: str = "127.0.0.1") -> None:
        if not is_loopback_host(host):
            raise ConfigurationError(
                f"Callback listener must bind a loopback address, got {host!r}"
            )
        self._bind_host = "127.0.0.1" if host.lower() == "localhost" else host.strip("[]")
        self._requested_port = port
        self._path = path
        self._state = ListenerState.IDLE
        self._outcome: Optional[ListenerState] = None
        self._server: Optional[_CallbackServer] = None
        self._thread: Optional[threading.Thread] = None
        self._future: Optional[asyncio.Future[CallbackResult]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def state(self) -> ListenerState:
        """The current lifecycle state."""
        return self._state

    @property
    def outcome(self) -> Optional[ListenerState]:
        """The terminal state reached before closing, or ``None`` while open."""
        return self._outcome

    @property
    def port(self) -> int:
        """The bound port (differs from the requested one when that was ``0``)."""
        if self._server is not None:
            return self._server.server_address[1]
        return self._requested_port

    @property
    def path(self) -> str:
        return self._path

    async def __aenter__(self) -> CallbackListener:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Optional[type], *args: object) -> None:
        if exc_type is not None and not issubclass(exc_type, Exception):
            # Cancelled or interrupted: release the port without suspending.
            self.close()
        else:
            await self.aclose()

    async def start(self) -> None:
        """Bind the port and begin serving on a background thread.

        Raises:
            ConfigurationError: If the port cannot be bound (already in use,
                permission denied).
            RuntimeError: If the listener was already started.
        """
        if self._state is not ListenerState.IDLE:
            raise RuntimeError(f"Callback listener cannot start from state {self._state.value}")

        self._loop = asyncio.get_running_loop()
        self._future = self._loop.create_future()
        try:
            self._server = _CallbackServer(
                (self._bind_host, self._requested_port), self._path, self._on_callback
            )
        except OSError as exc:
            self._outcome = ListenerState.ABORTED
            self._state = ListenerState.CLOSED
            raise ConfigurationError(
                f"Cannot listen on {self._bind_host}:{self._requested_port}: "
                f"{exc.strerror or exc}"
            ) from exc

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": _POLL_INTERVAL},
            name="looplogin-callback",
            daemon=True,
        )
        self._thread.start()
        self._state = ListenerState.LISTENING
        logger.debug("Callback listener bound to %s:%d%s", self._bind_host, self.port, self._path)

    async def wait(self, timeout: float) -> CallbackResult:
        """Wait for the callback, then close the listener.

        Args:
            timeout: Seconds to wait before giving up.

        Returns:
            The parsed :class:`~looplogin.models.CallbackResult`.

        Raises:
            CallbackTimeoutError: If no matching request arrives in time.
            RuntimeError: If the listener is not listening.
        """
        if self._state is not ListenerState.LISTENING or self._future is None:
            raise RuntimeError(f"Callback listener cannot wait from state {self._state.value}")

        try:
            result = await asyncio.wait_for(self._future, timeout)
        except asyncio.TimeoutError:
            self._state = ListenerState.TIMED_OUT
            await self.aclose()
            raise CallbackTimeoutError(
                f"No authorization callback received within {timeout:g} seconds"
            ) from None
        except BaseException:
            self._state = ListenerState.ABORTED
            self.close()
            raise

        self._state = ListenerState.FULFILLED
        await self.aclose()
        return result

    def close(self) -> None:
        """Stop serving and release the port. Safe to call more than once."""
        if self._state is ListenerState.CLOSED:
            return
        if self._state in (ListenerState.IDLE, ListenerState.LISTENING):
            self._state = ListenerState.ABORTED
        self._outcome = self._state

        if self._server is not None:
            self._stop_serving()
            self._server.server_close()
        if self._future is not None and not self._future.done():
            self._future.cancel()

        self._state = ListenerState.CLOSED
        logger.debug("Callback listener closed (%s)", self._outcome.value)

    async def aclose(self) -> None:
        """Like :meth:`close`, but stops the server thread off the event loop."""
        if self._state is ListenerState.CLOSED:
            return
        await asyncio.to_thread(self._stop_serving)
        self.close()

    def _stop_serving(self) -> None:
        if self._server is not None and self._thread is not None:
            self._server.shutdown()
            self._thread.join()
            self._thread = None

    def _on_callback(self, result: CallbackResult) -> None:
        # Runs on the server thread.
        if self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._resolve, result)
        except RuntimeError:
            # Event loop already closed; nobody is waiting any more.
            pass

    def _resolve(self, result: CallbackResult) -> None:
        if self._future is not None and not self._future.done():
            self._future.set_result(result)


async def await_callback(
    port: int,
    path: str,
    timeout: float,
    host: str = "127.0.0.1",
) -> CallbackResult:
    """Listen on *host*:*port* for one callback on *path* and return it.

    Convenience wrapper around :class:`CallbackListener` for callers that do
    not need to act between binding and waiting.

    Raises:
        CallbackTimeoutError: If nothing arrives within *timeout* seconds.
        ConfigurationError: If the host is not loopback or the port is busy.
    """
    async with CallbackListener(port, path, host) as listener:
        return await listener.wait(timeout)
