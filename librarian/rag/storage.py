"""Local storage for original uploaded files.

Files live under ``<root>/original/YYYY-MM-DD/<sanitized filename>``. Stored
paths are relative to the root so the root can move between deployments.
"""

import asyncio
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from librarian.rag.hashing import sanitize_filename

logger = logging.getLogger(__name__)


class FileStorage:
    """Stores original files on the local filesystem."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def _resolve(self, relative_path: str) -> Path:
        path = (self.root / relative_path).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValueError(f"Path escapes storage root: {relative_path}")
        return path

    def _target_path(self, filename: str, raw_hash: str, now: datetime) -> str:
        safe_name = sanitize_filename(filename)
        relative = Path("original") / now.strftime("%Y-%m-%d") / safe_name
        if (self.root / relative).exists():
            # Different bytes under the same name on the same day
            stem, ext = os.path.splitext(safe_name)
            relative = relative.with_name(f"{stem}_{raw_hash[:8]}{ext}")
        return relative.as_posix()

    def _write(self, relative_path: str, data: bytes) -> None:
        path = self._resolve(relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def save(
        self,
        data: bytes,
        filename: str,
        raw_hash: str,
        now: datetime | None = None,
    ) -> str:
        """Write an original file.

        Returns:
            Storage path relative to the root
        """
        relative_path = self._target_path(filename, raw_hash, now or datetime.now(UTC))
        await asyncio.to_thread(self._write, relative_path, data)
        logger.info(f"[Storage] Saved {len(data)} bytes to {relative_path}")
        return relative_path

    async def read(self, relative_path: str) -> bytes:
        """Read a stored file.

        Raises:
            FileNotFoundError: If the file is missing
        """
        return await asyncio.to_thread(self._resolve(relative_path).read_bytes)

    async def delete(self, relative_path: str) -> bool:
        """Remove a stored file. Returns False if it did not exist."""
        path = self._resolve(relative_path)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        return True
