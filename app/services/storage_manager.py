import os
import stat
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Tuple

import aiofiles
import aiofiles.os
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

import config
from app.errors import InternalError, NotFound, UploadTooLarge
from logger_config import setup_logger

logger = setup_logger()


def file_extension(filename: Optional[str]) -> str:
    """Return the extension of ``filename``: everything from the last dot of the base name, or ''."""
    if not filename:
        return ""
    base = filename.rsplit("/", 1)[-1]
    dot = base.rfind(".")
    if dot == -1:
        return ""
    return base[dot:]


@dataclass(frozen=True)
class StorageKey:
    """Names one stored file: the ingest date, a random UUID and the original extension."""

    year: int
    month: int
    day: int
    random_id: uuid.UUID
    extension: str = ""

    @classmethod
    def generate(cls, filename: Optional[str], now: datetime) -> "StorageKey":
        return cls(
            year=now.year,
            month=now.month,
            day=now.day,
            random_id=uuid.uuid4(),
            extension=file_extension(filename),
        )

    @property
    def filename(self) -> str:
        return f"{self.random_id}{self.extension}"

    @property
    def date_path(self) -> str:
        return f"{self.year}/{self.month:02d}/{self.day:02d}"

    @property
    def relative_path(self) -> str:
        return f"{self.date_path}/{self.filename}"


class StorageManager:
    def __init__(
        self,
        upload_dir: Path,
        temp_dir: Path,
        max_upload_size: int = config.MAX_LENGTH,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.upload_dir = Path(upload_dir)
        # Resolved once; retrieval paths are checked against it
        self.upload_root = self.upload_dir.resolve()
        self.temp_dir = Path(temp_dir)
        self.max_upload_size = max_upload_size
        self.clock = clock

    async def initialize(self):
        """Create the storage directories and drop staging files left by an earlier run."""
        logger.info("Initializing storage manager...")

        await aiofiles.os.makedirs(self.upload_dir, exist_ok=True)
        await aiofiles.os.makedirs(self.temp_dir, exist_ok=True)
        logger.debug(f"Storage directories created/verified: {self.upload_dir}, {self.temp_dir}")

        files_removed = 0
        for file in self.temp_dir.glob("*.part"):
            if file.is_file():
                await aiofiles.os.unlink(file)
                files_removed += 1
        logger.info(f"Cleaned temporary directory, removed {files_removed} files")

    def filesystem_path(self, key: StorageKey) -> Path:
        return self.upload_dir / key.relative_path

    @staticmethod
    def public_url(key: StorageKey, access_prefix: str) -> str:
        return f"{access_prefix.rstrip('/')}/{key.relative_path}"

    async def store(self, upload: UploadFile, filename: Optional[str]) -> Tuple[StorageKey, int]:
        """Write an uploaded file under a freshly generated key.

        The content is staged in the temp directory and moved into place once
        fully written, so a failed upload never leaves a file at the public path.

        Returns:
            The key the file was stored under and the number of bytes written

        Raises:
            UploadTooLarge: If the content exceeds ``max_upload_size``
            InternalError: If any directory, file or copy operation fails
        """
        key = StorageKey.generate(filename, self.clock())
        target_path = self.filesystem_path(key)
        temp_path = self.temp_dir / f"{key.filename}.part"

        size = 0
        try:
            await aiofiles.os.makedirs(self.temp_dir, exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                while chunk := await upload.read(config.CHUNK_SIZE):
                    size += len(chunk)
                    if size > self.max_upload_size:
                        raise UploadTooLarge(
                            f"Upload exceeds {self.max_upload_size} bytes for key {key.relative_path}"
                        )
                    await f.write(chunk)

            await aiofiles.os.makedirs(target_path.parent, exist_ok=True)
            await aiofiles.os.replace(temp_path, target_path)
        except UploadTooLarge:
            await self._discard(temp_path)
            raise
        except OSError as e:
            logger.error(f"Error storing {key.relative_path}: {e}", exc_info=True)
            await self._discard(temp_path)
            raise InternalError(f"Failed to store {key.relative_path}") from e

        logger.info(f"Stored {key.relative_path} ({size} bytes)")
        return key, size

    async def _discard(self, path: Path):
        try:
            await aiofiles.os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove staging file {path}: {e}")

    async def resolve(self, year: str, month: str, day: str, filename: str) -> Tuple[Path, os.stat_result]:
        """Map the path segments of a public URL back to a stored file.

        Raises:
            NotFound: If nothing readable is stored there
        """
        file_path = self.upload_dir / year / month / day / filename

        # Segments such as ".." must not escape the upload root
        resolved = await run_in_threadpool(file_path.resolve)
        if not resolved.is_relative_to(self.upload_root):
            logger.warning(f"Rejected path outside upload root: {file_path}")
            raise NotFound(f"Path outside upload root: {file_path}")

        try:
            stat_result = await aiofiles.os.stat(file_path)
        except (FileNotFoundError, NotADirectoryError):
            logger.debug(f"File not found: {file_path}")
            raise NotFound(f"File not found: {file_path}")
        except OSError as e:
            logger.warning(f"Cannot stat {file_path}: {e}")
            raise NotFound(f"Cannot stat {file_path}") from e

        if not stat.S_ISREG(stat_result.st_mode):
            raise NotFound(f"Not a regular file: {file_path}")

        return file_path, stat_result
