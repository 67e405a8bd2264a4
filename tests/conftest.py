from __future__ import annotations

import asyncssh
import pytest


@pytest.fixture(scope="session")
def keypair() -> tuple[str, str]:
    """(public_key, private_key) in OpenSSH text format."""
    key = asyncssh.generate_private_key("ssh-ed25519")
    return key.export_public_key().decode(), key.export_private_key().decode()
