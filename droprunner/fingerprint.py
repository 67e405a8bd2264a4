"""SSH public key fingerprints, as used by DigitalOcean to identify keys."""

from __future__ import annotations

import hashlib

import asyncssh

from droprunner.errors import ConfigError


def compute_fingerprint(public_key: bytes | str) -> str:
    """Compute the MD5 fingerprint of an authorized-keys formatted public key.

    Args:
        public_key: Key content (e.g. ``b"ssh-rsa AAAA... user@host"``).

    Returns:
        Fingerprint in the format ``"aa:bb:cc:..."``.

    Raises:
        ConfigError: If the content is not a valid public key.
    """
    try:
        key = asyncssh.import_public_key(public_key)
    except (asyncssh.KeyImportError, ValueError) as e:
        raise ConfigError(f"Invalid SSH public key: {e}") from e

    digest = hashlib.md5(key.public_data).hexdigest()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))
