"""The fixture handle: a running regtest daemon plus everything it owns.

``BitcoinD`` composes the launch sequence. Constructing one reserves ports,
creates the working directory, spawns the daemon and waits for it to be
ready; either a ready handle comes back or a ``LaunchError`` is raised with
every acquired resource already released::

    with BitcoinD("/usr/local/bin/bitcoind") as node:
        assert node.client.getblockchaininfo()["blocks"] == 0

Lifecycle: ``Launching`` (inside the constructor) -> ``Ready`` ->
``Stopped`` (``stop()``) and/or ``Closed`` (``close()``, context-manager
exit, garbage collection or interpreter exit). Closing kills the process if
it still runs and deletes the working directory, and it never raises.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
import contextlib
from http.client import HTTPException
import logging
import os
from pathlib import Path
import subprocess
import tempfile
import time
from types import TracebackType
import weakref

from bitcoin.rpc import JSONRPCError

from bitcoind_fixture.errors import (
    DaemonExitedError,
    FixtureStoppedError,
    LaunchError,
    LaunchIOError,
    LaunchRPCError,
)
from bitcoind_fixture.launcher import (
    build_daemon_args,
    build_p2p_args,
    resolve_exe,
    spawn_daemon,
)
from bitcoind_fixture.models import (
    DEFAULT_ARGS,
    LOCAL_IP,
    P2P,
    ConnectionConfig,
    FixtureSettings,
    SocketAddress,
)
from bitcoind_fixture.ports import release_port, reserve_port
from bitcoind_fixture.readiness import wait_until_ready
from bitcoind_fixture.rpc import CookieAuthProxy
from bitcoind_fixture.workdir import cookie_path, create_workdir

logger = logging.getLogger(__name__)

_KILL_WAIT_SECONDS = 5


def _teardown(
    process: subprocess.Popen[bytes] | None,
    workdir: tempfile.TemporaryDirectory[str],
    ports: Sequence[int],
    client: CookieAuthProxy | None,
) -> None:
    """Kill the daemon, delete its directory and release its ports.

    Safe to call on a process that already exited. Never raises.
    """
    if client is not None:
        client.close()

    if process is not None:
        if process.poll() is None:
            with contextlib.suppress(OSError):
                process.kill()
        with contextlib.suppress(OSError, subprocess.TimeoutExpired):
            process.wait(timeout=_KILL_WAIT_SECONDS)

    with contextlib.suppress(OSError):
        workdir.cleanup()

    for port in ports:
        release_port(port)

    logger.debug("Tore down daemon working directory %s", workdir.name)


class BitcoinD:
    """A regtest daemon launched and owned by this object.

    Attributes:
        client: RPC client bound to the node's default wallet.
        config: Connection parameters for other clients and tools.
        process: The daemon child process.
        workdir: Owning handle of the data directory.
        settings: Settings the node was launched with.
        exe: Executable that was launched.
        args: Caller-supplied daemon arguments.
    """

    def __init__(
        self,
        exe: str | os.PathLike[str] | None = None,
        args: Iterable[str] = DEFAULT_ARGS,
        *,
        view_stdout: bool = False,
        p2p: P2P | None = None,
        settings: FixtureSettings | None = None,
    ) -> None:
        """Launch the daemon and wait until it is ready.

        Args:
            exe: Path to the daemon; see ``resolve_exe`` for the fallbacks.
            args: Extra daemon arguments such as ``["-txindex"]``, appended
                after the generated ones. ``-datadir``, ``-rpcport``,
                ``-port``, ``-connect`` and ``-listen`` are generated and
                must not be passed.
            view_stdout: Keep the daemon's log output visible.
            p2p: Peer-to-peer mode; defaults to ``P2P.no()``.
            settings: Launch settings; defaults to ``FixtureSettings()``.

        Raises:
            LaunchIOError: If the executable, a port, the directory or the
                process could not be set up, or the daemon kept exiting
                before becoming ready.
            LaunchRPCError: If wallet creation failed.
            ReadinessTimeoutError: If the daemon did not become ready in
                ``settings.timeout_seconds``.
            TypeError: If *args* is a single string.
        """
        if isinstance(args, str):
            msg = f"args must be a sequence of arguments, not a string: {args!r}"
            raise TypeError(msg)

        self.settings = settings if settings is not None else FixtureSettings()
        self.exe = resolve_exe(exe)
        self.args = [str(a) for a in args]
        self.p2p = p2p if p2p is not None else P2P.no()
        self._stopped = False

        attempts = self.settings.launch_attempts
        for attempt in range(1, attempts + 1):
            try:
                self._launch(view_stdout=view_stdout, attempt=attempt)
            except DaemonExitedError as exc:
                if attempt == attempts:
                    raise
                logger.warning("Launch attempt %d/%d failed: %s", attempt, attempts, exc)
                continue
            break

        self._finalizer = weakref.finalize(
            self, _teardown, self.process, self.workdir, self._ports, self.client
        )
        logger.info(
            "Daemon ready: pid=%d rpc=%s p2p=%s datadir=%s",
            self.process.pid,
            self.config.rpc_socket,
            self.config.p2p_socket,
            self.config.datadir,
        )

    def _launch(self, *, view_stdout: bool, attempt: int) -> None:
        """Run one launch attempt, releasing everything it acquired on failure."""
        start = time.monotonic()
        workdir = create_workdir(self.settings.tempdir_root)
        ports: list[int] = []
        process: subprocess.Popen[bytes] | None = None
        try:
            datadir = Path(workdir.name)
            cookie_file = cookie_path(datadir)

            rpc_port = reserve_port()
            ports.append(rpc_port)
            rpc_socket = SocketAddress(ip=LOCAL_IP, port=rpc_port)

            p2p_args, p2p_socket = build_p2p_args(self.p2p)
            if p2p_socket is not None:
                ports.append(p2p_socket.port)

            argv = build_daemon_args(datadir, rpc_port, p2p_args, self.args)
            process = spawn_daemon(self.exe, argv, view_stdout=view_stdout)

            config = ConnectionConfig(
                datadir=datadir,
                cookie_file=cookie_file,
                rpc_socket=rpc_socket,
                p2p_socket=p2p_socket,
            )
            client = wait_until_ready(
                config.rpc_url,
                cookie_file,
                process=process,
                settings=self.settings,
            )
        except LaunchError as exc:
            _teardown(process, workdir, ports, None)
            exc.diagnostics.setdefault("exe", self.exe)
            exc.diagnostics.setdefault("args", self.args)
            exc.diagnostics.setdefault("attempt", attempt)
            exc.diagnostics.setdefault("elapsed_seconds", time.monotonic() - start)
            raise
        except BaseException:
            _teardown(process, workdir, ports, None)
            raise

        self.process = process
        self.workdir = workdir
        self.config = config
        self.client = client
        self._ports = ports

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def pid(self) -> int:
        """Process id of the daemon."""
        return self.process.pid

    @property
    def stopped(self) -> bool:
        """Whether ``stop()`` or ``close()`` has been called."""
        return self._stopped

    def is_running(self) -> bool:
        """Whether the daemon process is still alive."""
        return self.process.poll() is None

    def rpc_url(self) -> str:
        """RPC URL including the scheme, e.g. ``http://127.0.0.1:44842``."""
        return self.config.rpc_url

    def p2p_connect(self) -> P2P | None:
        """``P2P`` value that makes another node connect to this one.

        Returns ``None`` when this node was launched without P2P.
        """
        if self.config.p2p_socket is None:
            return None
        return P2P.connect(self.config.p2p_socket)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def stop(self) -> int:
        """Stop the daemon over RPC and wait for the process to exit.

        Afterwards ``client`` rejects every call with
        ``FixtureStoppedError``. The working directory is kept until
        ``close()``.

        Returns:
            The process exit code.

        Raises:
            FixtureStoppedError: If the fixture was already stopped or closed.
            LaunchRPCError: If the daemon rejected the stop command.
            LaunchIOError: If waiting for the process failed or timed out.
        """
        if self._stopped:
            msg = f"daemon {self.pid} already stopped"
            raise FixtureStoppedError(msg)

        try:
            self.client.stop()
        except (JSONRPCError, OSError, HTTPException) as exc:
            msg = f"daemon {self.pid} rejected stop: {exc}"
            raise LaunchRPCError(msg, diagnostics={"rpc_url": self.rpc_url()}) from exc

        self._stopped = True
        self.client.close()

        try:
            returncode = self.process.wait(timeout=self.settings.timeout_seconds)
        except subprocess.TimeoutExpired as exc:
            msg = f"daemon {self.pid} did not exit within {self.settings.timeout_seconds}s"
            raise LaunchIOError(msg) from exc
        except OSError as exc:
            msg = f"waiting for daemon {self.pid} failed: {exc}"
            raise LaunchIOError(msg) from exc

        logger.info("Daemon %d stopped with exit code %d", self.pid, returncode)
        return returncode

    def close(self) -> None:
        """Kill the daemon if needed and delete the working directory.

        Idempotent and never raises, also after ``stop()``.
        """
        self._stopped = True
        self._finalizer()

    def __enter__(self) -> BitcoinD:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"<BitcoinD pid={self.process.pid} rpc={self.config.rpc_socket} "
            f"stopped={self._stopped}>"
        )


def launch(
    exe: str | os.PathLike[str] | None = None,
    args: Iterable[str] = DEFAULT_ARGS,
    *,
    view_stdout: bool = False,
    p2p: P2P | None = None,
    settings: FixtureSettings | None = None,
) -> BitcoinD:
    """Launch a daemon; shorthand for ``BitcoinD(...)``."""
    return BitcoinD(exe, args, view_stdout=view_stdout, p2p=p2p, settings=settings)
