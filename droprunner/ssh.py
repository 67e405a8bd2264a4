"""SSH connection establishment.

Host key verification is disabled: the droplet was created moments ago and its
host key cannot be known in advance. Anyone able to intercept traffic to the
droplet address during a run can impersonate it.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import asyncssh
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    wait_fixed,
)

from droprunner.errors import ConfigError, ConnectError

SSH_PORT = 22

# Timeout of a single connection attempt.
DIAL_TIMEOUT = 10.0

# Overall time allowed for a fresh droplet to start accepting SSH connections.
NETWORK_TIMEOUT = 600.0

RETRY_INTERVAL = 10.0


@dataclass(frozen=True, slots=True)
class Backoff:
    """Fixed-interval retry policy with an overall deadline.

    ``sleep`` and ``clock`` are swappable so waits can be simulated.
    """

    interval: float = RETRY_INTERVAL
    timeout: float = NETWORK_TIMEOUT
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    clock: Callable[[], float] = time.monotonic


def normalize_address(address: str, default_port: int = SSH_PORT) -> tuple[str, int]:
    """Split ``address`` into host and port, defaulting the port to 22.

    Accepts ``host``, ``host:port``, bare IPv6 and ``[ipv6]:port``.
    """
    host, sep, tail = address.rpartition(":")
    if sep and tail.isdigit() and (host.startswith("[") or ":" not in host):
        return host.strip("[]"), int(tail)
    return address.strip("[]"), default_port


@functools.cache
def _warn_insecure_host_key() -> None:
    logger.warning("SSH host key verification is disabled for provisioned droplets")


async def dial(
    address: str,
    user: str,
    private_key: str | bytes,
    *,
    connect_timeout: float = DIAL_TIMEOUT,
) -> asyncssh.SSHClientConnection:
    """Open an authenticated SSH connection. No retry.

    Raises:
        ConfigError: If the private key cannot be parsed.
        ConnectError: If the host is unreachable or rejects the key.
    """
    try:
        key = asyncssh.import_private_key(private_key)
    except (asyncssh.KeyImportError, ValueError) as e:
        raise ConfigError(f"Invalid SSH private key: {e}") from e

    host, port = normalize_address(address)
    _warn_insecure_host_key()
    try:
        return await asyncssh.connect(
            host,
            port=port,
            username=user,
            client_keys=[key],
            known_hosts=None,
            connect_timeout=connect_timeout,
        )
    except (OSError, asyncssh.Error) as e:
        raise ConnectError(f"Cannot connect to {user}@{host}:{port}: {e}") from e


def _deadline(backoff: Backoff) -> Callable[[RetryCallState], bool]:
    started = backoff.clock()

    def stop(_: RetryCallState) -> bool:
        # the next attempt would start past the deadline
        return backoff.clock() - started + backoff.interval > backoff.timeout

    return stop


async def dial_retry(
    address: str,
    user: str,
    private_key: str | bytes,
    *,
    backoff: Backoff | None = None,
    connect_timeout: float = DIAL_TIMEOUT,
) -> asyncssh.SSHClientConnection:
    """Dial until the droplet accepts the connection or the deadline passes.

    Bridges the gap between the provider reporting the droplet as active and
    sshd accepting connections. Only ``ConnectError`` is retried; a malformed
    key fails immediately. Cancellation propagates during attempts and waits.

    Raises:
        ConnectError: If the deadline passed without a successful attempt.
    """
    backoff = backoff or Backoff()
    log = logger.bind(host=address, user=user)

    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        log.bind(retry_attempt=state.attempt_number).trace(
            f"failed to dial droplet: {error}"
        )

    retrying = AsyncRetrying(
        stop=_deadline(backoff),
        wait=wait_fixed(backoff.interval),
        retry=retry_if_exception_type(ConnectError),
        sleep=backoff.sleep,
        before=lambda state: log.bind(retry_attempt=state.attempt_number).debug(
            "dialing the droplet"
        ),
        before_sleep=before_sleep,
    )
    try:
        return await retrying(dial, address, user, private_key, connect_timeout=connect_timeout)
    except RetryError as e:
        raise ConnectError(
            f"Gave up connecting to {address} after {e.last_attempt.attempt_number} attempts"
        ) from e.last_attempt.exception()


async def close_connection(conn: asyncssh.SSHClientConnection) -> None:
    """Close the connection, waiting briefly for the transport to shut down."""
    conn.close()
    with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(conn.wait_closed(), timeout=5.0)
