"""Data types shared by the engine, the script generator and providers.

All values are immutable. The machine a pipeline runs on is not written back
into the ``Spec``; it is returned by ``Engine.setup`` as a ``Machine`` and passed
explicitly to ``Engine.run`` and ``Engine.destroy``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from droprunner.errors import ConfigError

_POSIX_NAMES = frozenset({
    "",
    "linux",
    "darwin",
    "freebsd",
    "netbsd",
    "openbsd",
    "dragonfly",
    "solaris",
})


class OSFamily(Enum):
    """Shell syntax family of the target machine."""

    POSIX = "posix"
    WINDOWS = "windows"

    @classmethod
    def from_os(cls, name: str) -> OSFamily:
        """Map an operating system name (``linux``, ``windows``...) to its family."""
        normalized = name.strip().lower()
        if normalized == "windows":
            return cls.WINDOWS
        if normalized in _POSIX_NAMES:
            return cls.POSIX
        raise ConfigError(f"Unsupported operating system: {name!r}")


@dataclass(frozen=True, slots=True)
class Server:
    """Droplet descriptor."""

    image: str
    name: str
    region: str
    size: str
    user: str = "root"


@dataclass(frozen=True, slots=True)
class Platform:
    os: str = "linux"
    arch: str = "amd64"

    @property
    def family(self) -> OSFamily:
        return OSFamily.from_os(self.os)


@dataclass(frozen=True, slots=True)
class File:
    """Filesystem entry to materialize on the machine.

    ``data`` is ignored when ``is_dir`` is set.
    """

    path: str
    data: bytes = b""
    mode: int = 0o644
    is_dir: bool = False


@dataclass(frozen=True, slots=True)
class Secret:
    env: str
    data: bytes = field(repr=False)


@dataclass(frozen=True, slots=True)
class Spec:
    """Pipeline-level execution specification.

    Attributes:
        token: Provisioning API token.
        server: Droplet to create.
        root: Workspace root created before any step runs.
        files: Global files and directories staged during setup.
        platform: Target platform; decides the script syntax.
    """

    token: str = field(repr=False)
    server: Server
    root: str
    files: tuple[File, ...] = ()
    platform: Platform = Platform()


@dataclass(frozen=True, slots=True)
class Step:
    """A single command executed in its own remote session."""

    command: str
    args: tuple[str, ...] = ()
    working_dir: str = ""
    envs: dict[str, str] = field(default_factory=dict)
    secrets: tuple[Secret, ...] = ()
    files: tuple[File, ...] = ()
    name: str = ""

    @property
    def command_line(self) -> str:
        return " ".join((self.command, *self.args))


@dataclass(frozen=True, slots=True)
class Machine:
    """Provisioning result. ``id == 0`` means no droplet exists."""

    id: int = 0
    ip: str = ""

    @property
    def exists(self) -> bool:
        return self.id != 0


@dataclass(frozen=True, slots=True)
class State:
    """Outcome of a step.

    ``oom_killed`` is always False: exit reporting over SSH cannot tell an
    out-of-memory kill apart from any other signal.
    """

    exit_code: int = 0
    exited: bool = True
    oom_killed: bool = False


__all__ = [
    "File",
    "Machine",
    "OSFamily",
    "Platform",
    "Secret",
    "Server",
    "Spec",
    "State",
    "Step",
]
