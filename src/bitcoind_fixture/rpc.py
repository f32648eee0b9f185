"""Cookie-authenticated JSON-RPC client for the daemon.

``CookieAuthProxy`` reads the daemon's ``.cookie`` file once and then
forwards attribute calls as JSON-RPC requests through ``python-bitcoinlib``'s
``RawProxy``::

    proxy = CookieAuthProxy("http://127.0.0.1:18443", cookie_file)
    proxy.getblockchaininfo()["blocks"]

Each call opens its own HTTP connection and closes it afterwards, so a
connection the daemon dropped between calls is never reused.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from bitcoin.rpc import RawProxy

from bitcoind_fixture.errors import FixtureStoppedError

logger = logging.getLogger(__name__)

DEFAULT_RPC_TIMEOUT = 30.0


def read_cookie(cookie_file: Path) -> tuple[str, str]:
    """Read ``user:password`` credentials from a cookie file.

    Args:
        cookie_file: Path to the daemon's ``.cookie`` file.

    Returns:
        The ``(user, password)`` pair.

    Raises:
        FileNotFoundError: If the daemon has not written the cookie yet.
        ValueError: If the file is not of the form ``user:password``.
    """
    content = cookie_file.read_text(encoding="utf-8").strip()
    user, sep, password = content.partition(":")
    if not sep or not user:
        msg = f"malformed cookie file {cookie_file}"
        raise ValueError(msg)
    return user, password


def _with_credentials(url: str, user: str, password: str) -> str:
    parts = urlsplit(url)
    netloc = f"{user}:{password}@{parts.hostname}"
    if parts.port is not None:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path or "/", "", ""))


class CookieAuthProxy:
    """JSON-RPC client authenticated with the daemon's cookie file.

    Attributes:
        url: Endpoint without credentials, e.g.
            ``http://127.0.0.1:18443/wallet/default``.
        cookie_file: Cookie the credentials were read from.
        timeout: HTTP timeout of each call in seconds.
    """

    def __init__(
        self,
        url: str,
        cookie_file: Path,
        *,
        timeout: float = DEFAULT_RPC_TIMEOUT,
    ) -> None:
        """Read the cookie and prepare the authenticated endpoint.

        Raises:
            FileNotFoundError: If the cookie file does not exist yet.
            ValueError: If the cookie file is malformed.
        """
        self.url = url
        self.cookie_file = Path(cookie_file)
        self.timeout = timeout
        user, password = read_cookie(self.cookie_file)
        self._service_url = _with_credentials(url, user, password)
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether ``close()`` has been called."""
        return self._closed

    def close(self) -> None:
        """Reject all further calls with ``FixtureStoppedError``."""
        self._closed = True

    def call(self, method: str, *params: Any) -> Any:
        """Perform one JSON-RPC call.

        Args:
            method: RPC method name, e.g. ``"getblockchaininfo"``.
            *params: Positional RPC parameters.

        Returns:
            The ``result`` member of the response.

        Raises:
            FixtureStoppedError: If the proxy was closed.
            bitcoin.rpc.JSONRPCError: If the daemon returned an error.
            OSError: If the connection failed.
        """
        if self._closed:
            msg = f"RPC client for {self.url} is closed; cannot call {method!r}"
            raise FixtureStoppedError(msg)

        proxy = RawProxy(service_url=self._service_url, timeout=self.timeout)
        try:
            logger.debug("Calling %s with arguments %s", method, params)
            result = proxy._call(method, *params)
        finally:
            proxy.close()
        logger.debug("Result for %s call: %s", method, result)
        return result

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__") and name.endswith("__"):
            raise AttributeError(name)

        def rpc_method(*params: Any) -> Any:
            return self.call(name, *params)

        rpc_method.__name__ = name
        return rpc_method

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<CookieAuthProxy {self.url} ({state})>"
