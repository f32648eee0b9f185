"""Readiness synchronization: wait until a spawned daemon serves RPC calls.

A freshly spawned daemon first writes its cookie file, then opens the RPC
port, then spends some time in warm-up answering every call with an error.
``wait_until_ready`` polls through all of that, treating every such
failure as "not ready yet", and returns only once a status query succeeds
and the default wallet exists.

Readiness is observed over RPC only. The daemon's output is never parsed,
so its stderr must not be piped.
"""

from __future__ import annotations

from http.client import HTTPException
import logging
from pathlib import Path
import subprocess
import time
from urllib.parse import quote

from bitcoin.rpc import JSONRPCError

from bitcoind_fixture.errors import (
    DaemonExitedError,
    LaunchIOError,
    LaunchRPCError,
    ReadinessTimeoutError,
)
from bitcoind_fixture.models import FixtureSettings
from bitcoind_fixture.rpc import CookieAuthProxy

logger = logging.getLogger(__name__)

_MIN_PROBE_TIMEOUT = 0.05


class _NotYetReady(Exception):
    """Cookie missing, connection refused or daemon still warming up."""


def _probe(rpc_url: str, cookie_file: Path, timeout: float) -> CookieAuthProxy:
    """Build a client and run one status query, or raise ``_NotYetReady``."""
    try:
        client = CookieAuthProxy(rpc_url, cookie_file, timeout=timeout)
    except (OSError, ValueError) as exc:
        msg = f"cookie {cookie_file} not readable: {exc}"
        raise _NotYetReady(msg) from exc

    try:
        client.getblockchaininfo()
    except (OSError, HTTPException, JSONRPCError, ValueError) as exc:
        msg = f"status query failed: {exc}"
        raise _NotYetReady(msg) from exc
    return client


def wallet_url(rpc_url: str, wallet_name: str) -> str:
    """Endpoint of *wallet_name* on the node at *rpc_url*.

    The name is percent-encoded as a single path segment, so spaces, ``#``
    and ``/`` reach the daemon intact.
    """
    return f"{rpc_url.rstrip('/')}/wallet/{quote(wallet_name, safe='')}"


def wait_until_ready(
    rpc_url: str,
    cookie_file: Path,
    *,
    process: subprocess.Popen[bytes] | None = None,
    settings: FixtureSettings | None = None,
) -> CookieAuthProxy:
    """Block until the daemon answers RPC calls, then create the wallet.

    Sleeps ``poll_interval_seconds`` before every probe. A probe builds a
    cookie-authenticated client and calls ``getblockchaininfo``; any
    failure of either step is retried. After the first successful probe
    the wallet ``wallet_name`` is created exactly once and a client bound
    to that wallet's endpoint is returned.

    Each probe's HTTP timeout is capped at the time left before
    ``timeout_seconds`` runs out, so a daemon that accepts connections but
    never answers cannot stretch the wait. With ``timeout_seconds=None``
    the loop never gives up; callers that need bounded latency must impose
    their own timeout.

    Args:
        rpc_url: Base RPC URL, e.g. ``http://127.0.0.1:18443``.
        cookie_file: Where the daemon writes its cookie.
        process: The daemon process. When given, polling stops as soon as
            the process exits.
        settings: Poll interval, timeout and wallet name.

    Returns:
        A client bound to ``<rpc_url>/wallet/<wallet_name>``.

    Raises:
        ValueError: If *process* has its stderr piped.
        DaemonExitedError: If *process* exited before becoming ready.
        ReadinessTimeoutError: If ``timeout_seconds`` elapsed first.
        LaunchRPCError: If wallet creation failed.
        LaunchIOError: If the cookie vanished after readiness.
    """
    resolved = settings if settings is not None else FixtureSettings()

    if process is not None and process.stderr is not None:
        msg = "daemon stderr must not be piped; readiness is detected over RPC only"
        raise ValueError(msg)

    start = time.monotonic()
    deadline = (
        None if resolved.timeout_seconds is None else start + resolved.timeout_seconds
    )
    attempt = 0
    last_error: _NotYetReady | None = None

    while True:
        pause = resolved.poll_interval_seconds
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0 and last_error is not None:
                msg = (
                    f"daemon at {rpc_url} not ready after "
                    f"{resolved.timeout_seconds}s ({attempt} attempts)"
                )
                raise ReadinessTimeoutError(
                    msg,
                    diagnostics={
                        "rpc_url": rpc_url,
                        "attempts": attempt,
                        "last_error": str(last_error),
                    },
                ) from last_error.__cause__
            pause = min(pause, max(remaining, 0.0))

        time.sleep(pause)
        attempt += 1

        if process is not None:
            returncode = process.poll()
            if returncode is not None:
                msg = f"daemon exited with code {returncode} before becoming ready"
                raise DaemonExitedError(
                    msg,
                    returncode=returncode,
                    diagnostics={
                        "rpc_url": rpc_url,
                        "attempts": attempt,
                        "elapsed_seconds": time.monotonic() - start,
                    },
                )

        # A probe never outlives the readiness deadline.
        probe_timeout = resolved.rpc_timeout_seconds
        if deadline is not None:
            probe_timeout = min(
                probe_timeout, max(deadline - time.monotonic(), _MIN_PROBE_TIMEOUT)
            )

        try:
            client = _probe(rpc_url, cookie_file, probe_timeout)
        except _NotYetReady as exc:
            logger.debug("Daemon at %s not ready (attempt %d): %s", rpc_url, attempt, exc)
            last_error = exc
            continue
        break

    logger.info(
        "Daemon at %s ready after %.1fs (%d attempts)",
        rpc_url,
        time.monotonic() - start,
        attempt,
    )

    client.timeout = resolved.rpc_timeout_seconds
    try:
        client.createwallet(resolved.wallet_name)
    except (JSONRPCError, OSError, HTTPException) as exc:
        msg = f"could not create wallet {resolved.wallet_name!r}: {exc}"
        raise LaunchRPCError(msg, diagnostics={"rpc_url": rpc_url}) from exc

    try:
        return CookieAuthProxy(
            wallet_url(rpc_url, resolved.wallet_name),
            cookie_file,
            timeout=resolved.rpc_timeout_seconds,
        )
    except OSError as exc:
        msg = f"cookie {cookie_file} disappeared after readiness"
        raise LaunchIOError(msg) from exc
