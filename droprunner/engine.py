"""Pipeline engine: Setup, Run (once per step) and Destroy against a droplet.

Steps of one pipeline run sequentially; an engine holds no per-pipeline
state and does not lock. Callers that overlap calls for the same machine must
synchronize themselves.
"""

from __future__ import annotations

import asyncio
import io
import signal
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import asyncssh
from loguru import logger

from droprunner.config import EngineConfig
from droprunner.errors import ConfigError, EngineError, ExecError, TransferError
from droprunner.fingerprint import compute_fingerprint
from droprunner.providers import DigitalOceanProvisioner, Provisioner
from droprunner.script import build_script
from droprunner.sftp import make_directory, upload
from droprunner.ssh import DIAL_TIMEOUT, Backoff, close_connection, dial, dial_retry
from droprunner.types import File, Machine, Spec, State, Step

_CHUNK_SIZE = 32 * 1024


class Output(Protocol):
    """Sink receiving the combined stdout/stderr of a step."""

    def write(self, data: bytes, /) -> object: ...


def _read_key(path: str) -> str:
    try:
        return Path(path).expanduser().read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read key file {path}: {e}") from e


def _exit_code(result: asyncssh.SSHCompletedProcess) -> int:
    if result.exit_signal:
        name = result.exit_signal[0]
        try:
            return 128 + signal.Signals[f"SIG{name}"].value
        except KeyError:
            return 128
    if result.exit_status is None or result.exit_status < 0:
        # no exit status reported
        return 255
    return result.exit_status


async def _session[T](awaitable: Awaitable[T]) -> T:
    try:
        return await awaitable
    except (OSError, asyncssh.Error) as e:
        raise ExecError(
            f"SSH session failed: {e}", state=State(exit_code=255, exited=True),
        ) from e


def _split_files(files: tuple[File, ...]) -> tuple[list[File], list[File]]:
    return [f for f in files if f.is_dir], [f for f in files if not f.is_dir]


@asynccontextmanager
async def _sftp(conn: asyncssh.SSHClientConnection, path: str) -> AsyncIterator[asyncssh.SFTPClient]:
    try:
        client = await conn.start_sftp_client()
    except (OSError, asyncssh.Error) as e:
        raise TransferError(path, e) from e
    try:
        yield client
    finally:
        client.exit()


@dataclass
class Engine:
    """Runs pipeline steps on a freshly provisioned droplet.

    Lifecycle: ``setup`` provisions and stages the droplet and returns its
    ``Machine``; ``run`` executes one step on it; ``destroy`` deletes it. The
    droplet is only destroyed automatically when ``setup`` is cancelled. In
    every other case the caller destroys the ``Machine`` returned by ``setup``
    or attached to the raised ``EngineError``.

    Example:
        >>> engine = Engine.create(load_config())
        >>> machine = await engine.setup(spec)
        >>> try:
        ...     state = await engine.run(spec, machine, step, sys.stdout.buffer)
        ... finally:
        ...     await engine.destroy(spec, machine)
    """

    public_key: str
    private_key: str = field(repr=False)
    provisioner: Provisioner = field(default_factory=DigitalOceanProvisioner)
    backoff: Backoff = field(default_factory=Backoff)
    key_name: str = "droprunner"
    dial_timeout: float = DIAL_TIMEOUT
    fingerprint: str = field(init=False)

    def __post_init__(self) -> None:
        self.fingerprint = compute_fingerprint(self.public_key)

    @classmethod
    def create(cls, config: EngineConfig, provisioner: Provisioner | None = None) -> Engine:
        """Build an engine from the key files named in ``config``."""
        return cls(
            public_key=_read_key(config.public_key_path),
            private_key=_read_key(config.private_key_path),
            provisioner=provisioner or DigitalOceanProvisioner(),
            backoff=Backoff(interval=config.retry_interval, timeout=config.network_timeout),
            key_name=config.key_name,
            dial_timeout=config.dial_timeout,
        )

    @asynccontextmanager
    async def _connect(
        self, spec: Spec, machine: Machine, *, retry: bool = False,
    ) -> AsyncIterator[asyncssh.SSHClientConnection]:
        if retry:
            conn = await dial_retry(
                machine.ip,
                spec.server.user,
                self.private_key,
                backoff=self.backoff,
                connect_timeout=self.dial_timeout,
            )
        else:
            conn = await dial(
                machine.ip, spec.server.user, self.private_key,
                connect_timeout=self.dial_timeout,
            )
        try:
            yield conn
        finally:
            await close_connection(conn)

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    async def provision(self, spec: Spec) -> Machine:
        """Register the public key and create the droplet."""
        await self.provisioner.register_key(
            self.fingerprint, self.key_name, self.public_key, spec.token,
        )
        server = spec.server
        return await self.provisioner.provision(
            self.fingerprint, server.image, server.name, server.region, server.size, spec.token,
        )

    async def prepare(self, spec: Spec, machine: Machine) -> None:
        """Wait for SSH, create the workspace and stage the global files."""
        log = logger.bind(hostname=spec.server.name, ip=machine.ip, id=machine.id)
        dirs, files = _split_files(spec.files)

        async with (
            self._connect(spec, machine, retry=True) as conn,
            _sftp(conn, spec.root) as sftp,
        ):
            # everything created during the pipeline lives in the workspace
            try:
                await make_directory(sftp, spec.root, 0o777)
            except TransferError:
                log.bind(path=spec.root).error("cannot create workspace directory")
                raise

            for d in dirs:
                try:
                    await make_directory(sftp, d.path, d.mode)
                except TransferError:
                    log.bind(path=d.path).error("cannot create directory")
                    raise

            for f in files:
                try:
                    await upload(sftp, f.path, f.data, f.mode)
                except TransferError:
                    log.bind(path=f.path).error("cannot write file")
                    raise

        log.debug("server configuration complete")

    async def setup(self, spec: Spec) -> Machine:
        """Provision the droplet and prepare it for the pipeline.

        If the calling task is cancelled after the droplet exists, the droplet
        is deleted before the cancellation propagates, since the caller never
        receives its ``Machine``.

        Raises:
            EngineError: With ``machine`` set whenever a droplet was created.
        """
        machine = await self.provision(spec)
        try:
            await self.prepare(spec, machine)
        except EngineError as e:
            e.machine = machine
            raise
        except asyncio.CancelledError:
            await asyncio.shield(self._destroy_abandoned(spec, machine))
            raise
        return machine

    async def _destroy_abandoned(self, spec: Spec, machine: Machine) -> None:
        log = logger.bind(hostname=spec.server.name, id=machine.id)
        try:
            await self.provisioner.destroy(machine, spec.token)
        except EngineError as e:
            log.error(f"cannot delete droplet after cancelled setup: {e}")
            return
        log.debug("droplet deleted after cancelled setup")

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def _stage_step(
        self, conn: asyncssh.SSHClientConnection, spec: Spec, step: Step,
    ) -> None:
        family = spec.platform.family
        dirs, files = _split_files(step.files)
        async with _sftp(conn, step.files[0].path) as sftp:
            for d in dirs:
                await make_directory(sftp, d.path, d.mode)
            for f in files:
                buf = io.BytesIO()
                build_script(buf, family, step, f.data)
                try:
                    await upload(sftp, f.path, buf.getvalue(), f.mode)
                except TransferError:
                    logger.bind(path=f.path).error("cannot write file")
                    raise

    async def run(self, spec: Spec, machine: Machine, step: Step, output: Output) -> State:
        """Execute ``step`` and stream its combined output to ``output``.

        Connectivity was proven by ``setup``, so the dial is not retried.
        A non-zero exit is reported through ``State.exit_code``, not raised.

        Cancelling the calling task requests a KILL of the remote process and
        re-raises the cancellation. Termination is not guaranteed: OpenSSH
        ignores signal requests, so the command may keep running on the droplet.

        Raises:
            ConnectError: If the droplet cannot be reached.
            TransferError: If the step files cannot be written.
            ExecError: If the session fails; ``state`` is set once the command started.
        """
        log = logger.bind(step=step.name, ip=machine.ip, id=machine.id)

        async with self._connect(spec, machine) as conn:
            # environment, secrets and working directory are prepended to
            # the step script; SSH offers no other way to set them
            if step.files:
                await self._stage_step(conn, spec, step)

            try:
                process = await conn.create_process(
                    step.command_line, stderr=asyncssh.STDOUT, encoding=None,
                )
            except (OSError, asyncssh.Error) as e:
                raise ExecError(f"Cannot open SSH session: {e}") from e

            log.debug("ssh session started")
            # errors raised by the sink are the caller's and propagate unchanged
            try:
                while chunk := await _session(process.stdout.read(_CHUNK_SIZE)):
                    output.write(chunk)
                result = await _session(process.wait())
            except asyncio.CancelledError:
                try:
                    process.kill()
                except (OSError, asyncssh.Error) as e:
                    log.bind(error=str(e)).debug("kill remote process")
                log.debug("ssh session killed")
                raise
            finally:
                process.close()

        state = State(exit_code=_exit_code(result), exited=True)
        log.bind(exit_code=state.exit_code).debug("ssh session finished")
        return state

    # -------------------------------------------------------------------------
    # Destroy
    # -------------------------------------------------------------------------

    async def destroy(self, spec: Spec, machine: Machine | None) -> None:
        """Delete the droplet. No-op if none was created.

        Effective at most once; a second call for the same machine is not
        expected to succeed.
        """
        if machine is None or not machine.exists:
            return
        logger.bind(hostname=spec.server.name, ip=machine.ip, id=machine.id).debug(
            "terminating droplet"
        )
        await self.provisioner.destroy(machine, spec.token)
