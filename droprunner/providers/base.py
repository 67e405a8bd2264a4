"""Provisioning collaborator contract."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from droprunner.types import Machine


class Provisioner(Protocol):
    """Creates and deletes droplets and registers SSH keys.

    Implementations raise ``ProvisionError`` on failure. When a droplet was
    created but never became usable, the error carries its ``Machine``.
    """

    async def register_key(
        self, fingerprint: str, name: str, public_key: str, token: str,
    ) -> None:
        """Register ``public_key``. A key that is already registered is not an error."""
        ...

    async def provision(
        self, key: str, image: str, name: str, region: str, size: str, token: str,
    ) -> Machine:
        """Create a droplet and return it once it has a public address."""
        ...

    async def destroy(self, machine: Machine, token: str) -> None:
        ...
