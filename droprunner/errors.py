"""Error taxonomy.

Cancellation is not part of it: a cancelled call raises the
``asyncio.CancelledError`` (or the ``TimeoutError`` of an ``asyncio.timeout``
block) it received, unwrapped.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from droprunner.types import Machine, State


class EngineError(Exception):
    """Base class for engine failures.

    ``machine`` is set when the failure happened after a droplet was created,
    so the caller can still destroy it.
    """

    def __init__(self, message: str, *, machine: Machine | None = None) -> None:
        super().__init__(message)
        self.machine = machine


class ConfigError(EngineError):
    """Malformed key material, unreadable key file or invalid settings."""


class ProvisionError(EngineError):
    """Key registration, droplet creation or deletion failed."""


class ConnectError(EngineError):
    """SSH dial failed, including an exhausted retry deadline."""


class TransferError(EngineError):
    """Directory creation or file upload over SFTP failed."""

    def __init__(self, path: str, error: BaseException) -> None:
        self.path = path
        self.error = error
        super().__init__(f"Transfer of {path!r} failed: {error}")


class ExecError(EngineError):
    """Session could not be opened, or the session broke while running.

    ``state`` is populated when the command had started.
    """

    def __init__(self, message: str, *, state: State | None = None) -> None:
        super().__init__(message)
        self.state = state


__all__ = [
    "ConfigError",
    "ConnectError",
    "EngineError",
    "ExecError",
    "ProvisionError",
    "TransferError",
]
