"""Engine configuration.

Loaded from the ``[engine]`` table of ``droprunner.toml`` in the working
directory, then overridden by environment variables.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from droprunner.errors import ConfigError
from droprunner.ssh import DIAL_TIMEOUT, NETWORK_TIMEOUT, RETRY_INTERVAL

CONFIG_NAME = "droprunner.toml"

_ENV_OVERRIDES = {
    "DRONE_PUBLIC_KEY_FILE": "public_key_path",
    "DRONE_PRIVATE_KEY_FILE": "private_key_path",
    "DRONE_KEY_NAME": "key_name",
}


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Engine settings.

    Attributes:
        public_key_path: Public key registered with DigitalOcean.
        private_key_path: Matching private key used to log into droplets.
        key_name: Name under which the public key is registered.
        dial_timeout: Timeout of a single SSH connection attempt, in seconds.
        retry_interval: Wait between SSH connection attempts during setup.
        network_timeout: Overall time allowed for a droplet to accept SSH.
    """

    public_key_path: str = "~/.ssh/id_rsa.pub"
    private_key_path: str = "~/.ssh/id_rsa"
    key_name: str = "droprunner"
    dial_timeout: float = DIAL_TIMEOUT
    retry_interval: float = RETRY_INTERVAL
    network_timeout: float = NETWORK_TIMEOUT


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e


def load_config(
    path: Path | None = None,
    *,
    environ: dict[str, str] | None = None,
) -> EngineConfig:
    """Build an ``EngineConfig`` from a TOML file and the environment.

    Raises:
        ConfigError: On unreadable TOML or unknown settings.
    """
    raw = dict(_read_toml(path or Path.cwd() / CONFIG_NAME).get("engine", {}))
    known = {f.name for f in fields(EngineConfig)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"Unknown engine settings: {', '.join(sorted(unknown))}")

    config = EngineConfig(**raw)
    env = os.environ if environ is None else environ
    overrides = {attr: env[var] for var, attr in _ENV_OVERRIDES.items() if env.get(var)}
    return replace(config, **overrides)


def get_token(environ: dict[str, str] | None = None) -> str:
    """Get the DigitalOcean API token from ``DIGITALOCEAN_TOKEN``."""
    env = os.environ if environ is None else environ
    token = env.get("DIGITALOCEAN_TOKEN")
    if not token:
        raise ConfigError(
            "DigitalOcean API token not found. "
            "Set DIGITALOCEAN_TOKEN environment variable."
        )
    return token
