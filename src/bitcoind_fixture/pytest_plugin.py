"""pytest fixtures for tests that need a running regtest node.

Registered through the ``pytest11`` entry point, so installing the package
makes ``bitcoind``, ``bitcoind_factory`` and ``bitcoind_exe`` available to
every test suite::

    def test_mining(bitcoind):
        address = bitcoind.client.getnewaddress()
        bitcoind.client.generatetoaddress(1, address)
        assert bitcoind.client.getblockchaininfo()["blocks"] == 1

Tests requesting these fixtures are skipped when no daemon executable can
be found.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import Any

import pytest

from bitcoind_fixture.errors import LaunchIOError
from bitcoind_fixture.fixture import BitcoinD
from bitcoind_fixture.launcher import resolve_exe
from bitcoind_fixture.models import DEFAULT_ARGS, FixtureSettings
from bitcoind_fixture.settings import apply_env_overrides


@pytest.fixture(scope="session")
def bitcoind_exe() -> str:
    """Path of the daemon executable, or skip the test if there is none."""
    try:
        return resolve_exe()
    except LaunchIOError as exc:
        pytest.skip(str(exc))


@pytest.fixture(scope="session")
def bitcoind_settings() -> FixtureSettings:
    """Launch settings, with ``BITCOIND_FIXTURE_*`` overrides applied."""
    return apply_env_overrides(FixtureSettings())


@pytest.fixture()
def bitcoind_factory(
    bitcoind_exe: str, bitcoind_settings: FixtureSettings
) -> Iterator[Callable[..., BitcoinD]]:
    """Launch any number of nodes; all of them are closed at teardown.

    The factory accepts the keyword arguments of ``BitcoinD`` other than
    ``exe``.
    """
    nodes: list[BitcoinD] = []

    def _launch(args: Iterable[str] = DEFAULT_ARGS, **kwargs: Any) -> BitcoinD:
        kwargs.setdefault("settings", bitcoind_settings)
        node = BitcoinD(bitcoind_exe, args, **kwargs)
        nodes.append(node)
        return node

    yield _launch

    for node in reversed(nodes):
        node.close()


@pytest.fixture()
def bitcoind(bitcoind_factory: Callable[..., BitcoinD]) -> BitcoinD:
    """A standalone regtest node with the default wallet loaded."""
    return bitcoind_factory()
