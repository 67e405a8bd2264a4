"""Script preamble generation.

SSH runs a single command string and has no way to pass a working directory
or environment variables. Every step file is therefore prefixed with a small
preamble (``cd``, exports) written in the syntax of the target OS family.
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Callable, Iterable, Mapping
from typing import BinaryIO

from droprunner.errors import ConfigError
from droprunner.types import OSFamily, Secret, Step

_ENV_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_POWERSHELL_SAFE = re.compile(r"[\w@%+=:,./\\-]+", re.ASCII)

_POSIX_ESCAPES = str.maketrans({
    "\\": "\\\\",
    '"': '\\"',
    "$": "\\$",
    "`": "\\`",
})
_POWERSHELL_ESCAPES = str.maketrans({
    "`": "``",
    '"': '`"',
    "$": "`$",
})


def _powershell_quote(path: str) -> str:
    if path and _POWERSHELL_SAFE.fullmatch(path):
        return path
    return "'" + path.replace("'", "''") + "'"


_QUOTE_PATH: dict[OSFamily, Callable[[str], str]] = {
    OSFamily.POSIX: shlex.quote,
    OSFamily.WINDOWS: _powershell_quote,
}

_EXPORT: dict[OSFamily, Callable[[str, str], str]] = {
    OSFamily.POSIX: lambda k, v: f'export {k}="{v.translate(_POSIX_ESCAPES)}"\n',
    OSFamily.WINDOWS: lambda k, v: f'$Env:{k} = "{v.translate(_POWERSHELL_ESCAPES)}"\n',
}

_REMOVE: dict[OSFamily, str] = {
    OSFamily.POSIX: "rm -rf {path}",
    OSFamily.WINDOWS: (
        'powershell -noprofile -noninteractive -command '
        '"Remove-Item {path} -Recurse -Force"'
    ),
}


def _write_exports(buf: BinaryIO, family: OSFamily, items: Iterable[tuple[str, str]]) -> None:
    export = _EXPORT[family]
    for name, value in items:
        if not _ENV_NAME.fullmatch(name):
            raise ConfigError(f"Invalid environment variable name: {name!r}")
        buf.write(export(name, value).encode("utf-8", "surrogateescape"))


def write_workdir(buf: BinaryIO, family: OSFamily, path: str) -> None:
    """Write the change-directory statement."""
    buf.write(f"cd {_QUOTE_PATH[family](path)}\n".encode())


def write_environ(buf: BinaryIO, family: OSFamily, environ: Mapping[str, str]) -> None:
    """Write one export per variable, sorted by name."""
    _write_exports(buf, family, sorted(environ.items()))


def write_secrets(buf: BinaryIO, family: OSFamily, secrets: Iterable[Secret]) -> None:
    """Write one export per secret, in the given order.

    Secret bytes that are not valid UTF-8 are written through unchanged.
    """
    _write_exports(
        buf, family, ((s.env, s.data.decode("utf-8", "surrogateescape")) for s in secrets),
    )


def remove_command(family: OSFamily, path: str) -> str:
    """Return the command that recursively deletes ``path``."""
    return _REMOVE[family].format(path=_QUOTE_PATH[family](path))


def build_script(buf: BinaryIO, family: OSFamily, step: Step, data: bytes) -> None:
    """Write the full step script: preamble followed by the file content."""
    if step.working_dir:
        write_workdir(buf, family, step.working_dir)
    write_secrets(buf, family, step.secrets)
    write_environ(buf, family, step.envs)
    buf.write(data)
