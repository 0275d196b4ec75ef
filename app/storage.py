import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "uploads"))


class StorageError(Exception):
    """Raised for keys that cannot be mapped into the upload directory."""


def _path_for(key: str) -> Path:
    root = UPLOAD_DIR.resolve()
    path = (root / key).resolve()
    if not key or path.parent != root:
        raise StorageError(f"Invalid storage key: {key!r}")
    return path


def _write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _read(path: Path) -> Optional[bytes]:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


async def put_object(key: str, data: bytes) -> None:
    path = _path_for(key)
    await asyncio.to_thread(_write, path, data)
    logger.info("Stored %s (%d bytes)", key, len(data))


async def get_object(key: str) -> Optional[bytes]:
    """Return the stored bytes, or None if nothing is stored under ``key``."""
    return await asyncio.to_thread(_read, _path_for(key))


async def delete_object(key: str) -> bool:
    deleted = await asyncio.to_thread(_unlink, _path_for(key))
    if not deleted:
        logger.warning("Nothing stored under %s", key)
    return deleted
