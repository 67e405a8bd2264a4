"""droprunner - run pipeline steps on ephemeral DigitalOcean droplets.

Example:
    from droprunner import Engine, Spec, Server, Step, load_config

    engine = Engine.create(load_config())
    machine = await engine.setup(spec)
    try:
        for step in steps:
            state = await engine.run(spec, machine, step, sys.stdout.buffer)
    finally:
        await engine.destroy(spec, machine)
"""

from droprunner import logging as _logging  # noqa: F401  disables logging by default
from droprunner.config import EngineConfig, get_token, load_config
from droprunner.engine import Engine
from droprunner.errors import (
    ConfigError,
    ConnectError,
    EngineError,
    ExecError,
    ProvisionError,
    TransferError,
)
from droprunner.fingerprint import compute_fingerprint
from droprunner.providers import DigitalOceanProvisioner, Provisioner
from droprunner.script import remove_command
from droprunner.ssh import Backoff
from droprunner.types import (
    File,
    Machine,
    OSFamily,
    Platform,
    Secret,
    Server,
    Spec,
    State,
    Step,
)

__all__ = [
    "Backoff",
    "ConfigError",
    "ConnectError",
    "DigitalOceanProvisioner",
    "Engine",
    "EngineConfig",
    "EngineError",
    "ExecError",
    "File",
    "Machine",
    "OSFamily",
    "Platform",
    "ProvisionError",
    "Provisioner",
    "Secret",
    "Server",
    "Spec",
    "State",
    "Step",
    "TransferError",
    "compute_fingerprint",
    "get_token",
    "load_config",
    "remove_command",
]
