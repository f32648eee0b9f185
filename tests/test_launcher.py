"""Tests for executable discovery, argument assembly and spawning.

Validates ``resolve_exe``, ``build_p2p_args``, ``build_daemon_args`` and
``spawn_daemon`` defined in ``src/bitcoind_fixture/launcher.py``.
"""

from __future__ import annotations

from pathlib import Path
import subprocess
from unittest.mock import patch

from bitcoind_fixture.errors import LaunchIOError
from bitcoind_fixture.launcher import (
    build_daemon_args,
    build_p2p_args,
    resolve_exe,
    spawn_daemon,
)
from bitcoind_fixture.models import LOCAL_IP, P2P, SocketAddress
from bitcoind_fixture.ports import release_port
from hypothesis import given, strategies as st
import pytest

_MODULE = "bitcoind_fixture.launcher"

# ===========================================================================
# resolve_exe
# ===========================================================================


@pytest.mark.unit
class TestResolveExe:
    """resolve_exe: explicit path, then $BITCOIND_EXE, then PATH."""

    def test_explicit_path_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BITCOIND_EXE", "/from/env/bitcoind")
        assert resolve_exe("/explicit/bitcoind") == "/explicit/bitcoind"

    def test_accepts_path_objects(self) -> None:
        assert resolve_exe(Path("/explicit/bitcoind")) == "/explicit/bitcoind"

    def test_env_var_before_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BITCOIND_EXE", "/from/env/bitcoind")
        with patch(f"{_MODULE}.shutil.which", return_value="/usr/bin/bitcoind"):
            assert resolve_exe() == "/from/env/bitcoind"

    def test_falls_back_to_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("BITCOIND_EXE", raising=False)
        with patch(f"{_MODULE}.shutil.which", return_value="/usr/bin/bitcoind") as which:
            assert resolve_exe() == "/usr/bin/bitcoind"
        which.assert_called_once_with("bitcoind")

    def test_empty_env_var_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BITCOIND_EXE", "")
        with patch(f"{_MODULE}.shutil.which", return_value="/usr/bin/bitcoind"):
            assert resolve_exe() == "/usr/bin/bitcoind"

    def test_nothing_found_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("BITCOIND_EXE", raising=False)
        with (
            patch(f"{_MODULE}.shutil.which", return_value=None),
            pytest.raises(LaunchIOError, match="BITCOIND_EXE"),
        ):
            resolve_exe()


# ===========================================================================
# build_p2p_args
# ===========================================================================


@pytest.mark.unit
class TestBuildP2PArgs:
    """build_p2p_args maps each peer mode to daemon arguments."""

    def test_disabled_turns_listening_off(self) -> None:
        args, socket = build_p2p_args(P2P.no())
        assert args == ["-listen=0"]
        assert socket is None

    def test_enabled_reserves_a_port(self) -> None:
        with patch(f"{_MODULE}.reserve_port", return_value=40100):
            args, socket = build_p2p_args(P2P.yes())
        assert args == ["-port=40100"]
        assert socket == SocketAddress(ip=LOCAL_IP, port=40100)

    def test_connect_adds_connect_directive(self) -> None:
        target = SocketAddress(port=40200)
        with patch(f"{_MODULE}.reserve_port", return_value=40101):
            args, socket = build_p2p_args(P2P.connect(target))
        assert args == ["-port=40101", "-connect=127.0.0.1:40200"]
        assert socket == SocketAddress(ip=LOCAL_IP, port=40101)

    def test_enabled_uses_real_reservation(self) -> None:
        _, socket = build_p2p_args(P2P.yes())
        assert socket is not None
        release_port(socket.port)


# ===========================================================================
# build_daemon_args
# ===========================================================================


@pytest.mark.unit
class TestBuildDaemonArgs:
    """build_daemon_args orders generated arguments before the caller's."""

    def test_full_order(self) -> None:
        argv = build_daemon_args(
            Path("/data"), 18443, ["-port=18444"], ["-regtest", "-txindex"]
        )
        assert argv == [
            "-datadir=/data",
            "-rpcport=18443",
            "-port=18444",
            "-regtest",
            "-txindex",
        ]

    def test_no_caller_args(self) -> None:
        argv = build_daemon_args(Path("/data"), 1, ["-listen=0"], [])
        assert argv == ["-datadir=/data", "-rpcport=1", "-listen=0"]

    def test_reserved_keys_are_not_validated(self) -> None:
        argv = build_daemon_args(Path("/data"), 1, [], ["-rpcport=2"])
        assert argv[-1] == "-rpcport=2"

    @given(st.lists(st.text(alphabet="abcxyz-=0123", min_size=1), max_size=8))
    def test_caller_args_appended_verbatim(self, extra: list[str]) -> None:
        argv = build_daemon_args(Path("/d"), 5, ["-listen=0"], extra)
        assert argv[:3] == ["-datadir=/d", "-rpcport=5", "-listen=0"]
        assert argv[3:] == extra


# ===========================================================================
# spawn_daemon
# ===========================================================================


@pytest.mark.unit
class TestSpawnDaemon:
    """spawn_daemon starts the child and returns without waiting."""

    def test_missing_executable_raises_launch_io_error(self, tmp_path: Path) -> None:
        exe = str(tmp_path / "no-such-bitcoind")
        with pytest.raises(LaunchIOError, match="could not spawn") as info:
            spawn_daemon(exe, ["-regtest"])
        assert isinstance(info.value.__cause__, FileNotFoundError)
        assert info.value.diagnostics["exe"] == exe

    def test_non_executable_file_raises(self, tmp_path: Path) -> None:
        exe = tmp_path / "bitcoind"
        exe.write_text("not a program")
        exe.chmod(0o644)
        with pytest.raises(LaunchIOError) as info:
            spawn_daemon(str(exe), [])
        assert isinstance(info.value.__cause__, PermissionError)

    def test_stderr_never_piped(self) -> None:
        with patch(f"{_MODULE}.subprocess.Popen") as popen:
            spawn_daemon("/bin/bitcoind", ["-regtest"])
        kwargs = popen.call_args.kwargs
        assert "stderr" not in kwargs
        assert popen.call_args.args[0] == ["/bin/bitcoind", "-regtest"]

    def test_stdout_discarded_by_default(self) -> None:
        with patch(f"{_MODULE}.subprocess.Popen") as popen:
            spawn_daemon("/bin/bitcoind", [])
        assert popen.call_args.kwargs["stdout"] is subprocess.DEVNULL

    def test_stdout_inherited_when_viewing(self) -> None:
        with patch(f"{_MODULE}.subprocess.Popen") as popen:
            spawn_daemon("/bin/bitcoind", [], view_stdout=True)
        assert popen.call_args.kwargs["stdout"] is None

    def test_child_gets_own_session(self) -> None:
        with patch(f"{_MODULE}.subprocess.Popen") as popen:
            spawn_daemon("/bin/bitcoind", [])
        assert popen.call_args.kwargs["start_new_session"] is True

    def test_returns_running_process_immediately(self, tmp_path: Path) -> None:
        exe = tmp_path / "sleeper"
        exe.write_text("#!/bin/sh\nexec sleep 30\n")
        exe.chmod(0o755)
        process = spawn_daemon(str(exe), [])
        try:
            assert process.poll() is None
            assert process.stderr is None
        finally:
            process.kill()
            process.wait()
