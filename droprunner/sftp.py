"""File staging over SFTP."""

from __future__ import annotations

import asyncssh

from droprunner.errors import TransferError


async def make_directory(sftp: asyncssh.SFTPClient, path: str, mode: int) -> None:
    """Create ``path`` with missing parents, then set its permissions."""
    try:
        await sftp.makedirs(path, exist_ok=True)
        await sftp.chmod(path, mode)
    except (OSError, asyncssh.SFTPError) as e:
        raise TransferError(path, e) from e


async def upload(sftp: asyncssh.SFTPClient, path: str, data: bytes, mode: int) -> None:
    """Create or truncate ``path``, write ``data`` and set permissions.

    Not transactional: a failed write can leave an empty or partial file.
    """
    try:
        async with sftp.open(path, "wb") as f:
            await f.write(data)
            await f.chmod(mode)
    except (OSError, asyncssh.SFTPError) as e:
        raise TransferError(path, e) from e
