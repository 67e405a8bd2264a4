"""DigitalOcean provisioner using pydo.aio."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydo.aio import Client
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from droprunner.errors import ProvisionError
from droprunner.types import Machine

TAG = "droprunner"


class _DropletPendingError(Exception):
    """Droplet not yet active - retry."""


def get_public_ip(droplet: dict[str, Any]) -> str:
    for network in droplet.get("networks", {}).get("v4", []):
        if network.get("type") == "public":
            return network.get("ip_address", "")
    return ""


def _already_registered(error: Exception) -> bool:
    message = str(error).lower()
    return "already been taken" in message or "already in use" in message


@asynccontextmanager
async def _client(token: str) -> AsyncIterator[Client]:
    client = Client(token=token)
    try:
        yield client
    finally:
        await client.close()


@dataclass(frozen=True, slots=True)
class DigitalOceanProvisioner:
    """Provisioner backed by the DigitalOcean API.

    Args:
        boot_timeout: Seconds to wait for a droplet to become active.
        poll_interval: Seconds between droplet status checks.
    """

    boot_timeout: float = 300.0
    poll_interval: float = 5.0

    async def register_key(
        self, fingerprint: str, name: str, public_key: str, token: str,
    ) -> None:
        async with _client(token) as client:
            try:
                resp = await client.ssh_keys.list()
            except Exception as e:
                raise ProvisionError(f"Failed to list SSH keys: {e}") from e

            if any(k.get("fingerprint") == fingerprint for k in resp.get("ssh_keys", [])):
                logger.bind(fingerprint=fingerprint).debug("ssh key already registered")
                return

            try:
                await client.ssh_keys.create(body={"name": name, "public_key": public_key})
            except Exception as e:
                # key may exist under a different name
                if _already_registered(e):
                    logger.bind(fingerprint=fingerprint).debug("ssh key already registered")
                    return
                raise ProvisionError(f"Failed to register SSH key: {e}") from e

        logger.bind(fingerprint=fingerprint, name=name).debug("ssh key registered")

    async def provision(
        self, key: str, image: str, name: str, region: str, size: str, token: str,
    ) -> Machine:
        body = {
            "name": name,
            "region": region,
            "size": size,
            "image": image,
            "ssh_keys": [key],
            "tags": [TAG],
        }
        async with _client(token) as client:
            try:
                resp = await client.droplets.create(body=body)
                droplet_id = int(resp["droplet"]["id"])
            except Exception as e:
                raise ProvisionError(f"Failed to create droplet: {e}") from e

            log = logger.bind(hostname=name, id=droplet_id)
            log.debug("droplet created, waiting for it to become active")
            try:
                ip = await self._wait_for_active(client, droplet_id)
            except asyncio.CancelledError:
                # the caller never receives the id; delete instead of orphaning
                await asyncio.shield(self._destroy_orphan(Machine(id=droplet_id), token))
                raise
            except RetryError as e:
                raise ProvisionError(
                    f"Droplet {droplet_id} did not become active within {self.boot_timeout}s",
                    machine=Machine(id=droplet_id),
                ) from e
            except Exception as e:
                raise ProvisionError(
                    f"Failed to get droplet {droplet_id}: {e}",
                    machine=Machine(id=droplet_id),
                ) from e

        log.bind(ip=ip).debug("droplet active")
        return Machine(id=droplet_id, ip=ip)

    async def _wait_for_active(self, client: Client, droplet_id: int) -> str:
        async for attempt in AsyncRetrying(
            stop=stop_after_delay(self.boot_timeout),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_exception_type(_DropletPendingError),
        ):
            with attempt:
                resp = await client.droplets.get(droplet_id=droplet_id)
                droplet = resp["droplet"]
                ip = get_public_ip(droplet)
                if droplet.get("status") != "active" or not ip:
                    raise _DropletPendingError()
        return ip

    async def destroy(self, machine: Machine, token: str) -> None:
        async with _client(token) as client:
            try:
                await client.droplets.destroy(droplet_id=machine.id)
            except Exception as e:
                raise ProvisionError(
                    f"Failed to delete droplet {machine.id}: {e}", machine=machine,
                ) from e

    async def _destroy_orphan(self, machine: Machine, token: str) -> None:
        try:
            await self.destroy(machine, token)
        except ProvisionError as e:
            logger.bind(id=machine.id).error(f"cannot delete abandoned droplet: {e}")
            return
        logger.bind(id=machine.id).debug("abandoned droplet deleted")
