"""System browser launcher used by the login flow."""

from __future__ import annotations

import logging
import threading
import webbrowser

logger = logging.getLogger(__name__)


def open_browser(url: str) -> None:
    """Open *url* in the default browser without blocking the caller.

    ``webbrowser.open`` may block on some platforms until the browser
    process exits, so it runs on a daemon thread.
    """

    def _open() -> None:
        if not webbrowser.open(url):
            logger.warning("Could not open a browser; open the sign-in URL manually")

    threading.Thread(target=_open, name="looplogin-browser", daemon=True).start()


def no_browser(url: str) -> None:
    """Browser stand-in for ``--no-browser``: the URL is only printed."""
