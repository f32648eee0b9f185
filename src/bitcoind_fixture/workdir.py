"""Working directory provisioning for the daemon's data directory."""

from __future__ import annotations

import logging
from pathlib import Path
import tempfile

from bitcoind_fixture.errors import LaunchIOError
from bitcoind_fixture.models import COOKIE_RELATIVE_PATH

logger = logging.getLogger(__name__)

_WORKDIR_PREFIX = "bitcoind-"


def create_workdir(root: str | None = None) -> tempfile.TemporaryDirectory[str]:
    """Create a fresh, empty, uniquely named directory.

    The returned handle removes the whole tree exactly once: on
    ``cleanup()``, or when the handle is garbage collected, whichever
    comes first.

    Args:
        root: Parent directory, or ``None`` for the system temp directory.

    Returns:
        The owning ``TemporaryDirectory`` handle.

    Raises:
        LaunchIOError: If the directory cannot be created.
    """
    try:
        workdir = tempfile.TemporaryDirectory(prefix=_WORKDIR_PREFIX, dir=root)
    except OSError as exc:
        msg = f"could not create working directory under {root or tempfile.gettempdir()}"
        raise LaunchIOError(msg, diagnostics={"root": root}) from exc
    logger.debug("Created working directory %s", workdir.name)
    return workdir


def cookie_path(datadir: Path) -> Path:
    """Location of the regtest RPC cookie inside *datadir*."""
    return datadir.joinpath(*COOKIE_RELATIVE_PATH)
