"""Process launcher: executable discovery, argument assembly and spawning.

Builds the daemon command line from the data directory, the RPC port and
the requested peer mode, then spawns the daemon as a child process. The
launcher returns as soon as the process exists; waiting for the daemon to
accept RPC calls is the job of ``bitcoind_fixture.readiness``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
import logging
import os
from pathlib import Path
import shutil
import subprocess

from bitcoind_fixture.errors import LaunchIOError
from bitcoind_fixture.models import LOCAL_IP, P2P, PeerMode, SocketAddress
from bitcoind_fixture.ports import reserve_port

logger = logging.getLogger(__name__)

EXE_ENV_VAR = "BITCOIND_EXE"
_DEFAULT_EXE_NAME = "bitcoind"


def resolve_exe(exe: str | os.PathLike[str] | None = None) -> str:
    """Locate the daemon executable.

    Resolution order: the explicit *exe* argument, the ``BITCOIND_EXE``
    environment variable, then ``bitcoind`` on ``PATH``.

    Args:
        exe: Explicit path to the executable, or ``None``.

    Returns:
        Path of the executable to launch.

    Raises:
        LaunchIOError: If no executable can be found.
    """
    if exe is not None:
        return os.fspath(exe)

    from_env = os.environ.get(EXE_ENV_VAR)
    if from_env:
        return from_env

    found = shutil.which(_DEFAULT_EXE_NAME)
    if found is not None:
        return found

    msg = (
        f"no daemon executable: pass exe, set {EXE_ENV_VAR} "
        f"or put {_DEFAULT_EXE_NAME!r} on PATH"
    )
    raise LaunchIOError(msg)


def build_p2p_args(p2p: P2P) -> tuple[list[str], SocketAddress | None]:
    """Translate *p2p* into daemon arguments.

    ``ENABLED`` and ``CONNECT`` reserve a fresh port for the P2P listener.

    Args:
        p2p: Requested peer mode.

    Returns:
        The P2P arguments and the P2P socket (``None`` when disabled).

    Raises:
        LaunchIOError: If a port cannot be reserved.
    """
    if p2p.mode is PeerMode.DISABLED:
        return ["-listen=0"], None

    p2p_socket = SocketAddress(ip=LOCAL_IP, port=reserve_port())
    args = [f"-port={p2p_socket.port}"]
    if p2p.mode is PeerMode.CONNECT:
        args.append(f"-connect={p2p.connect_to}")
    return args, p2p_socket


def build_daemon_args(
    datadir: Path,
    rpc_port: int,
    p2p_args: Sequence[str],
    args: Iterable[str],
) -> list[str]:
    """Assemble the daemon's argument list.

    Order is ``-datadir``, ``-rpcport``, the P2P arguments, then the
    caller's arguments. Caller arguments must not repeat ``-datadir``,
    ``-rpcport``, ``-port``, ``-connect`` or ``-listen``; that is not
    checked.

    Returns:
        The argument list, without the executable.
    """
    return [
        f"-datadir={datadir}",
        f"-rpcport={rpc_port}",
        *p2p_args,
        *(str(a) for a in args),
    ]


def spawn_daemon(
    exe: str,
    argv: Sequence[str],
    *,
    view_stdout: bool = False,
) -> subprocess.Popen[bytes]:
    """Spawn the daemon and return immediately.

    Standard output is inherited when *view_stdout* is true and discarded
    otherwise. Standard error stays attached to the parent; it is never
    piped. The child gets its own session so terminal signals aimed at the
    caller do not reach it.

    Args:
        exe: Path to the executable.
        argv: Arguments, as built by ``build_daemon_args``.
        view_stdout: Whether the daemon's log output stays visible.

    Returns:
        The running child process.

    Raises:
        LaunchIOError: If the process cannot be spawned. Not retried.
    """
    logger.debug("Launching %s with args %s", exe, " ".join(argv))
    try:
        process = subprocess.Popen(  # nosec B603
            [exe, *argv],
            stdin=subprocess.DEVNULL,
            stdout=None if view_stdout else subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as exc:
        msg = f"could not spawn {exe}: {exc}"
        raise LaunchIOError(msg, diagnostics={"exe": exe, "args": list(argv)}) from exc

    logger.debug("Spawned %s with pid %d", exe, process.pid)
    return process
