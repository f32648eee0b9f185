"""CLI entry point: run a throwaway regtest node until interrupted.

Provides ``main()`` as the console-script entry point registered in
``pyproject.toml`` as ``bitcoind-fixture = "bitcoind_fixture.cli:main"``.
Launches a ``BitcoinD``, prints its ``ConnectionConfig`` as JSON on
stdout so other tools can connect, and waits for SIGINT or SIGTERM before
stopping the node and deleting its data directory.
"""

from __future__ import annotations

import argparse
from collections.abc import Sequence
import signal
import sys
import threading
from types import FrameType

from bitcoind_fixture.errors import LaunchError
from bitcoind_fixture.fixture import BitcoinD
from bitcoind_fixture.models import DEFAULT_ARGS, P2P, FixtureSettings, SocketAddress
from bitcoind_fixture.settings import apply_env_overrides, configure_logging, load_settings

_LIVENESS_CHECK_SECONDS = 1.0


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ``ArgumentParser``.
    """
    parser = argparse.ArgumentParser(
        prog="bitcoind-fixture",
        description="Run an ephemeral regtest bitcoind until interrupted.",
    )
    parser.add_argument(
        "--exe",
        default=None,
        help="Path to bitcoind (default: $BITCOIND_EXE, then bitcoind on PATH).",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to an optional FixtureSettings YAML file.",
    )
    peer = parser.add_mutually_exclusive_group()
    peer.add_argument(
        "--p2p",
        action="store_true",
        help="Open a P2P port.",
    )
    peer.add_argument(
        "--connect",
        default=None,
        metavar="IP:PORT",
        help="Open a P2P port and connect to this peer.",
    )
    parser.add_argument(
        "--show-output",
        action="store_true",
        help="Do not suppress the daemon's stdout.",
    )
    parser.add_argument(
        "daemon_args",
        nargs="*",
        help="Extra daemon arguments after '--' (default: %s)." % " ".join(DEFAULT_ARGS),
    )
    return parser


def _p2p_from_args(args: argparse.Namespace) -> P2P:
    if args.connect is not None:
        return P2P.connect(SocketAddress.parse(args.connect))
    if args.p2p:
        return P2P.yes()
    return P2P.no()


def _wait_for_shutdown(node: BitcoinD) -> bool:
    """Block until SIGINT/SIGTERM or until the daemon dies.

    Returns:
        ``True`` when a signal asked for shutdown, ``False`` when the
        daemon exited on its own.
    """
    requested = threading.Event()

    def _handle(signum: int, frame: FrameType | None) -> None:
        requested.set()

    previous = {
        sig: signal.signal(sig, _handle) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        while not requested.wait(_LIVENESS_CHECK_SECONDS):
            if not node.is_running():
                return False
        return True
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the bitcoind-fixture CLI.

    Args:
        argv: Arguments to parse, or ``None`` for ``sys.argv[1:]``.

    Returns:
        Exit code: 0 on success, 1 on error.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        settings = (
            load_settings(args.config) if args.config is not None else FixtureSettings()
        )
        settings = apply_env_overrides(settings)
        configure_logging(settings)
        p2p = _p2p_from_args(args)
        daemon_args = args.daemon_args or list(DEFAULT_ARGS)

        with BitcoinD(
            args.exe,
            daemon_args,
            view_stdout=args.show_output,
            p2p=p2p,
            settings=settings,
        ) as node:
            print(node.config.model_dump_json(indent=2), flush=True)
            if not _wait_for_shutdown(node):
                print(
                    f"Error: daemon exited with code {node.process.returncode}",
                    file=sys.stderr,
                )
                return 1
            node.stop()

    except LaunchError as exc:
        print(f"Launch error: {exc}", file=sys.stderr)
        if exc.diagnostics:
            print(f"Diagnostics: {exc.diagnostics}", file=sys.stderr)
        return 1
    except (ValueError, FileNotFoundError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
