"""Persisted cached address.

The file holds exactly the last-known address string, no trailing
newline. Writes go to a temp file in the same directory which is then
renamed over the target, so readers never see a partial address.
"""

import asyncio
import logging
import os
import stat
import tempfile
from pathlib import Path

from ipsync.errors import StorageError

__all__ = [
    "AddressStore",
    "StorageError",
]

logger = logging.getLogger(__name__)

DEFAULT_FILE_MODE = 0o644


class AddressStore:
    """Plain-text file holding the listener's cached address.

    Attributes:
        path: Path to the cached address file.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> str:
        """Read the cached address exactly as stored.

        Raises:
            StorageError: If the file cannot be read.
        """
        try:
            return self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Cannot read cached address {self.path}: {e}") from e

    def save(self, address: str) -> None:
        """Atomically replace the cached address.

        Keeps the permission bits of the existing file.

        Raises:
            StorageError: If the file cannot be written.
        """
        try:
            mode = stat.S_IMODE(os.stat(self.path).st_mode)
        except FileNotFoundError:
            mode = DEFAULT_FILE_MODE
        except OSError as e:
            raise StorageError(f"Cannot stat {self.path}: {e}") from e

        directory = self.path.parent
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(directory), prefix=f".{self.path.name}.", suffix=".tmp"
            )
        except OSError as e:
            raise StorageError(f"Cannot write cached address {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(address)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StorageError(f"Cannot write cached address {self.path}: {e}") from e

        logger.debug(f"Persisted cached address to {self.path}")

    async def aload(self) -> str:
        """Read the cached address without blocking the event loop."""
        return await asyncio.to_thread(self.load)

    async def asave(self, address: str) -> None:
        """Persist the cached address without blocking the event loop."""
        await asyncio.to_thread(self.save, address)
