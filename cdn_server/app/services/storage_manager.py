import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import quote

import aiofiles
import aiofiles.os

import config
from app.services.content_addressing import content_hash
from logger_config import setup_logger

logger = setup_logger()


class StorageError(Exception):
    """Base class for storage failures that are not plain I/O errors."""


class UnsafePathError(StorageError):
    """The key would resolve outside of its store directory."""


class StoredFileNotFoundError(StorageError):
    pass


class UploadTooLargeError(StorageError):
    pass


class StorageMode(str, Enum):
    UNVERSIONED = "unversioned"
    VERSIONED = "versioned"


@dataclass(frozen=True)
class StoredFile:
    mode: StorageMode
    identifier: str
    display_name: str
    path: Path
    size: int

    @property
    def link(self) -> str:
        """URL path the file can be downloaded from."""
        if self.mode is StorageMode.VERSIONED:
            return f"/files/versioned/{self.identifier}/{quote(self.display_name, safe='')}"
        return f"/files/latest/{quote(self.identifier, safe='')}"


class StorageManager:
    def __init__(self, root_dir: Path, max_upload_size: int = config.MAX_UPLOAD_SIZE):
        self.root_dir = Path(root_dir).resolve()
        self.max_upload_size = max_upload_size

        files_dir = self.root_dir / config.FILES_DIR
        self.unversioned_dir = files_dir / config.UNVERSIONED_DIR
        self.versioned_dir = files_dir / config.VERSIONED_DIR
        # Same filesystem as the stores so the final rename is atomic
        self.temp_dir = files_dir / config.TEMP_DIR

    async def initialize(self):
        """Create the store directories and drop leftovers of interrupted uploads."""
        logger.info("Initializing storage manager...")

        for directory in (self.unversioned_dir, self.versioned_dir, self.temp_dir):
            directory.mkdir(exist_ok=True, parents=True)
        logger.debug(f"Storage directories created/verified under {self.root_dir}")

        files_removed = 0
        for file in self.temp_dir.glob("*"):
            if file.is_file():
                await aiofiles.os.unlink(file)
                files_removed += 1
        logger.info(f"Cleaned temporary directory, removed {files_removed} files")

    def directory_for(self, mode: StorageMode) -> Path:
        if mode is StorageMode.VERSIONED:
            return self.versioned_dir
        return self.unversioned_dir

    def resolve(self, mode: StorageMode, key: str) -> Path:
        """Get the canonical path for key inside the store for mode.

        Raises UnsafePathError unless the result is a direct child of the
        store directory.
        """
        if not key or "\x00" in key:
            raise UnsafePathError(f"Invalid {mode.value} key")

        directory = self.directory_for(mode).resolve()
        path = (directory / key).resolve()
        if path.parent != directory:
            raise UnsafePathError(f"Key escapes the {mode.value} store: {key!r}")
        return path

    def _temp_path(self) -> Path:
        return self.temp_dir / f"{uuid.uuid4().hex}.part"

    async def _discard(self, temp_path: Path):
        if await aiofiles.os.path.exists(temp_path):
            await aiofiles.os.unlink(temp_path)

    async def save_unversioned(self, name: str, upload) -> StoredFile:
        """Stream upload into the unversioned store, replacing any file of that name.

        Args:
            name: Sanitized file name, used as the key
            upload: Object with an async read(size) method, e.g. an UploadFile
        """
        final_path = self.resolve(StorageMode.UNVERSIONED, name)
        temp_path = self._temp_path()

        size = 0
        try:
            async with aiofiles.open(temp_path, 'wb') as f:
                while chunk := await upload.read(config.CHUNK_SIZE):
                    size += len(chunk)
                    if size > self.max_upload_size:
                        raise UploadTooLargeError(f"Upload exceeds {self.max_upload_size} bytes")
                    await f.write(chunk)

            await aiofiles.os.replace(temp_path, final_path)
        except Exception:
            await self._discard(temp_path)
            raise

        logger.debug(f"Wrote {size} bytes to {final_path}")
        return StoredFile(StorageMode.UNVERSIONED, name, name, final_path, size)

    async def save_versioned(self, data: bytes, display_name: str) -> StoredFile:
        """Store data under its content hash.

        Identical content maps to the same path, so an existing file is reused
        as is.
        """
        if len(data) > self.max_upload_size:
            raise UploadTooLargeError(f"Upload exceeds {self.max_upload_size} bytes")

        digest = content_hash(data)
        final_path = self.resolve(StorageMode.VERSIONED, digest)

        if await aiofiles.os.path.exists(final_path):
            logger.debug(f"Content {digest} already stored, skipping write")
        else:
            temp_path = self._temp_path()
            try:
                async with aiofiles.open(temp_path, 'wb') as f:
                    await f.write(data)
                await aiofiles.os.replace(temp_path, final_path)
            except Exception:
                await self._discard(temp_path)
                raise
            logger.debug(f"Wrote {len(data)} bytes to {final_path}")

        return StoredFile(StorageMode.VERSIONED, digest, display_name, final_path, len(data))

    async def _open(self, mode: StorageMode, key: str, display_name: str) -> StoredFile:
        path = self.resolve(mode, key)
        if not await aiofiles.os.path.isfile(path):
            raise StoredFileNotFoundError(f"No {mode.value} file stored as {key!r}")

        stat = await aiofiles.os.stat(path)
        return StoredFile(mode, key, display_name, path, stat.st_size)

    async def open_unversioned(self, name: str) -> StoredFile:
        return await self._open(StorageMode.UNVERSIONED, name, name)

    async def open_versioned(self, digest: str, display_name: str = "") -> StoredFile:
        return await self._open(StorageMode.VERSIONED, digest, display_name or digest)
