"""Provisioning collaborators."""

from droprunner.providers.base import Provisioner
from droprunner.providers.digitalocean import DigitalOceanProvisioner

__all__ = ["DigitalOceanProvisioner", "Provisioner"]
