"""
Local Disk Cover Cache

Second stop of the cover chain: cover files written under
settings.cover_cache_dir, one file per book id.

Files are served by whatever fronts the engine under
"/<cache dir name>/<file name>", which is the path recorded on ImageDetails.
"""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")
_EXTENSIONS = ("jpg", "png", "webp", "gif")


class LocalCoverCache:
    """
    Read and write cover files on local disk.

    All I/O errors are soft: reads become misses and writes return None.
    """

    def __init__(self, cache_dir: str | Path):
        self.cache_dir = Path(cache_dir)

    def _stem(self, book_id: str) -> str:
        return _SAFE_NAME.sub("_", book_id)

    def web_path(self, path: Path) -> str:
        return f"/{self.cache_dir.name}/{path.name}"

    def find(self, book_id: str) -> Path | None:
        stem = self._stem(book_id)
        for ext in _EXTENSIONS:
            candidate = self.cache_dir / f"{stem}.{ext}"
            if candidate.is_file():
                return candidate
        return None

    def read(self, book_id: str) -> tuple[Path, bytes] | None:
        """
        Return (path, bytes) of the cached cover for book_id.

        Returns:
            The file and its content, or None when absent or unreadable
        """
        path = self.find(book_id)
        if path is None:
            return None
        try:
            return path, path.read_bytes()
        except OSError as e:
            logger.warning(f"Failed to read cached cover {path}: {e}")
            return None

    def write(self, book_id: str, data: bytes, extension: str = "jpg") -> Path | None:
        path = self.cache_dir / f"{self._stem(book_id)}.{extension}"
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            # Drop covers cached under another extension
            for ext in _EXTENSIONS:
                stale = self.cache_dir / f"{self._stem(book_id)}.{ext}"
                if ext != extension and stale.exists():
                    stale.unlink()
            path.write_bytes(data)
            logger.debug(f"Cached cover for {book_id} at {path}")
            return path
        except OSError as e:
            logger.warning(f"Failed to write cover for {book_id} to {path}: {e}")
            return None
