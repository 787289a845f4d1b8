"""Local object storage for uploaded files, keyed by relative path."""
from pathlib import Path

import structlog

from docchat.errors import InvalidRequestError, NotFoundError

logger = structlog.get_logger()


class LocalObjectStorage:
    """Byte-level upload/download/delete under a root directory."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise InvalidRequestError(f"Storage path escapes root: {path}")
        return target

    async def upload(self, path: str, data: bytes) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("file_uploaded", path=path, size=len(data))
        return path

    async def download(self, path: str) -> bytes:
        """Read a stored file.

        Raises:
            NotFoundError: If nothing is stored at path
        """
        target = self._resolve(path)
        if not target.is_file():
            logger.error("file_not_found", path=path)
            raise NotFoundError(f"Stored file not found: {path}")
        return target.read_bytes()

    async def delete(self, path: str) -> bool:
        target = self._resolve(path)
        if not target.exists():
            return False
        target.unlink()
        logger.info("file_deleted", path=path)
        return True
