"""Core data models for the bitcoind fixture.

Defines the frozen Pydantic value types shared by every component of the
launch sequence: socket addresses, the peer-to-peer mode requested by the
caller, the connection parameters handed back to test code, and the
settings that tune polling, timeouts and logging.
"""

from __future__ import annotations

from enum import StrEnum
from ipaddress import IPv4Address
from pathlib import Path
from typing import Final

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

LOCAL_IP: Final[IPv4Address] = IPv4Address("127.0.0.1")
"""Loopback address every fixture binds its RPC and P2P ports to."""

DEFAULT_ARGS: Final[tuple[str, ...]] = ("-regtest", "-fallbackfee=0.0001")
"""Arguments used when the caller does not supply any."""

COOKIE_RELATIVE_PATH: Final[tuple[str, ...]] = ("regtest", ".cookie")


class SocketAddress(BaseModel):
    """An IPv4 address and TCP port pair.

    Attributes:
        ip: IPv4 address.
        port: TCP port in ``1..65535``.
    """

    model_config = ConfigDict(frozen=True)

    ip: IPv4Address = LOCAL_IP
    port: int

    @field_validator("port")
    @classmethod
    def _port_in_range(cls, v: int) -> int:
        """Validate that the port is a usable TCP port."""
        if not 1 <= v <= 65535:
            msg = f"port must be in 1..65535, got {v}"
            raise ValueError(msg)
        return v

    @classmethod
    def parse(cls, value: str) -> SocketAddress:
        """Parse an ``ip:port`` string.

        Args:
            value: Address such as ``"127.0.0.1:18444"``.

        Returns:
            The parsed address.

        Raises:
            ValueError: If *value* is not of the form ``ip:port``.
        """
        host, sep, port = value.rpartition(":")
        if not sep or not host or not port.isdigit():
            msg = f"expected ip:port, got {value!r}"
            raise ValueError(msg)
        return cls(ip=IPv4Address(host), port=int(port))

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"


class PeerMode(StrEnum):
    """Peer-to-peer networking mode requested at launch."""

    DISABLED = "disabled"
    ENABLED = "enabled"
    CONNECT = "connect"


class P2P(BaseModel):
    """Peer-to-peer configuration for a launch.

    ``DISABLED`` starts the node without a P2P listener, ``ENABLED`` opens
    a P2P port, and ``CONNECT`` opens a port and also connects out to
    ``connect_to``.

    Attributes:
        mode: Requested peer mode.
        connect_to: Peer to connect to; set iff ``mode`` is ``CONNECT``.
    """

    model_config = ConfigDict(frozen=True)

    mode: PeerMode = PeerMode.DISABLED
    connect_to: SocketAddress | None = None

    @model_validator(mode="after")
    def _connect_target_matches_mode(self) -> P2P:
        """Validate that ``connect_to`` is present only in ``CONNECT`` mode."""
        if self.mode is PeerMode.CONNECT and self.connect_to is None:
            msg = "connect_to is required when mode is 'connect'"
            raise ValueError(msg)
        if self.mode is not PeerMode.CONNECT and self.connect_to is not None:
            msg = f"connect_to must be unset when mode is {self.mode.value!r}"
            raise ValueError(msg)
        return self

    @classmethod
    def no(cls) -> P2P:
        """Standalone node, no P2P port."""
        return cls(mode=PeerMode.DISABLED)

    @classmethod
    def yes(cls) -> P2P:
        """Node with an open P2P port."""
        return cls(mode=PeerMode.ENABLED)

    @classmethod
    def connect(cls, address: SocketAddress) -> P2P:
        """Node with an open P2P port that also connects to *address*."""
        return cls(mode=PeerMode.CONNECT, connect_to=address)


class ConnectionConfig(BaseModel):
    """Everything another client needs to reach a running node.

    Attributes:
        datadir: The node's data directory.
        cookie_file: Path to the RPC authentication cookie, under ``datadir``.
        rpc_socket: Address of the JSON-RPC endpoint.
        p2p_socket: Address of the P2P endpoint, ``None`` when P2P is disabled.
    """

    model_config = ConfigDict(frozen=True)

    datadir: Path
    cookie_file: Path
    rpc_socket: SocketAddress
    p2p_socket: SocketAddress | None = None

    @model_validator(mode="after")
    def _cookie_under_datadir(self) -> ConnectionConfig:
        """Validate that the cookie file lives inside the data directory."""
        if not self.cookie_file.is_relative_to(self.datadir):
            msg = f"cookie_file {self.cookie_file} is not under datadir {self.datadir}"
            raise ValueError(msg)
        return self

    @property
    def rpc_url(self) -> str:
        """RPC URL including the scheme, e.g. ``http://127.0.0.1:44842``."""
        return f"http://{self.rpc_socket}"


class FixtureSettings(BaseModel):
    """Tunables of the launch sequence.

    Attributes:
        poll_interval_seconds: Sleep between readiness probes.
        timeout_seconds: Maximum time to wait for readiness per launch
            attempt, or ``None`` to poll until the node answers.
        launch_attempts: How many times to relaunch when the daemon exits
            before it becomes ready (e.g. after losing a port race).
        wallet_name: Name of the wallet created once the node is ready.
        rpc_timeout_seconds: HTTP timeout of a single RPC call.
        tempdir_root: Parent directory for working directories, or ``None``
            for the system temp directory.
        log_level: Logging level string.
        log_file: Optional log file path.
    """

    model_config = ConfigDict(frozen=True)

    poll_interval_seconds: float = 0.5
    timeout_seconds: float | None = 60.0
    launch_attempts: int = 3
    wallet_name: str = "default"
    rpc_timeout_seconds: float = 30.0
    tempdir_root: str | None = None
    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator("poll_interval_seconds", "rpc_timeout_seconds")
    @classmethod
    def _must_be_positive(cls, v: float) -> float:
        """Validate that durations are strictly positive."""
        if v <= 0:
            msg = "Value must be > 0"
            raise ValueError(msg)
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _timeout_positive_or_none(cls, v: float | None) -> float | None:
        """Validate that the readiness timeout is positive when set."""
        if v is not None and v <= 0:
            msg = "timeout_seconds must be > 0 or None"
            raise ValueError(msg)
        return v

    @field_validator("launch_attempts")
    @classmethod
    def _at_least_one_attempt(cls, v: int) -> int:
        if v < 1:
            msg = "launch_attempts must be >= 1"
            raise ValueError(msg)
        return v

    @field_validator("wallet_name")
    @classmethod
    def _wallet_name_not_blank(cls, v: str) -> str:
        if not v.strip():
            msg = "wallet_name must not be empty"
            raise ValueError(msg)
        return v
