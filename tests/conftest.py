"""Shared fixtures for the bitcoind_fixture test suite."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
import sys
import time
from typing import Any

from bitcoind_fixture.models import (
    LOCAL_IP,
    ConnectionConfig,
    FixtureSettings,
    SocketAddress,
)
import pytest

FAKE_BITCOIND = Path(__file__).with_name("fake_bitcoind.py")

# ---------------------------------------------------------------------------
# Factory functions (plain functions, importable from conftest)
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> FixtureSettings:
    """Build FixtureSettings tuned for fast tests.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed FixtureSettings instance.
    """
    defaults: dict[str, Any] = {
        "poll_interval_seconds": 0.05,
        "timeout_seconds": 15.0,
        "rpc_timeout_seconds": 5.0,
    }
    defaults.update(overrides)
    return FixtureSettings(**defaults)


def make_connection_config(**overrides: Any) -> ConnectionConfig:
    """Build a valid ConnectionConfig with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed ConnectionConfig instance.
    """
    datadir = Path("/tmp/bitcoind-test")
    defaults: dict[str, Any] = {
        "datadir": datadir,
        "cookie_file": datadir / "regtest" / ".cookie",
        "rpc_socket": SocketAddress(ip=LOCAL_IP, port=18443),
        "p2p_socket": None,
    }
    defaults.update(overrides)
    return ConnectionConfig(**defaults)


def wait_for(success: Callable[[], bool], timeout: float = 10.0) -> None:
    """Poll *success* until it returns true, failing the test on timeout."""
    deadline = time.monotonic() + timeout
    while not success():
        if time.monotonic() >= deadline:
            pytest.fail(f"timed out waiting for {success}")
        time.sleep(0.05)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def fake_bitcoind_exe(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Executable wrapper that runs ``tests/fake_bitcoind.py``.

    ``exec`` keeps the fake daemon as the spawned process, so killing the
    child kills the fake itself.
    """
    exe = tmp_path_factory.mktemp("bin") / "bitcoind"
    exe.write_text(
        f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_BITCOIND}" "$@"\n',
        encoding="utf-8",
    )
    exe.chmod(0o755)
    return str(exe)


@pytest.fixture()
def tempdir_root(tmp_path: Path) -> Path:
    """Empty parent directory for fixture working directories."""
    root = tmp_path / "fixtures"
    root.mkdir()
    return root


@pytest.fixture()
def fast_settings(tempdir_root: Path) -> FixtureSettings:
    """Settings with a short poll interval rooted in ``tempdir_root``."""
    return make_settings(tempdir_root=str(tempdir_root))
