"""
Blob storage for generated audio.

Blobs live under the audio directory, addressed by slash-separated keys such as
``audio/12/scene_3/utt_40_81_1717171717171.mp3``.
"""
import asyncio
import functools
import logging
import time
from pathlib import Path
from typing import Optional

from app.config import AUDIO_DIR, FILES_ROUTE_PREFIX, PUBLIC_BLOB_URL

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Blob could not be written, verified or located."""


def build_audio_key(
    project_id: int,
    scene_idx: int,
    utterance_id: Optional[int],
    audio_id: int,
    extension: str,
    timestamp_ms: Optional[int] = None,
) -> str:
    """Deterministic storage key for an audio item."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    name = f'{audio_id}_{timestamp_ms}.{extension}'
    if utterance_id is not None:
        name = f'utt_{utterance_id}_{name}'
    return f'audio/{project_id}/scene_{scene_idx}/{name}'


class BlobStorage:
    """
    Filesystem-backed blob store.

    File I/O runs in the default executor so the event loop is never blocked.
    """

    def __init__(self, root: Path, public_base_url: str = '', files_prefix: str = FILES_ROUTE_PREFIX):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip('/')
        self.files_prefix = files_prefix.rstrip('/')

    def path_for(self, key: str) -> Path:
        """Filesystem path of a key; rejects keys escaping the root."""
        root = self.root.resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            raise StorageError(f'Invalid storage key: {key}')
        return path

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f'{self.public_base_url}/{key}'
        return f'{self.files_prefix}/{key}'

    async def put(self, key: str, data: bytes) -> str:
        """Store a blob and return its public URL."""
        path = self.path_for(key)
        try:
            await self._run(self._write, path, data)
        except OSError as e:
            raise StorageError(f'Blob upload failed for {key}: {e}') from e
        return self.public_url(key)

    async def exists(self, key: str) -> bool:
        try:
            path = self.path_for(key)
        except StorageError:
            return False
        return await self._run(path.is_file)

    async def delete(self, key: str):
        path = self.path_for(key)
        try:
            await self._run(functools.partial(path.unlink, missing_ok=True))
        except OSError as e:
            raise StorageError(f'Blob delete failed for {key}: {e}') from e

    @staticmethod
    def _write(path: Path, data: bytes):
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + '.part')
        tmp_path.write_bytes(data)
        tmp_path.replace(path)

    @staticmethod
    async def _run(func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))


# Singleton instance
_blob_storage: Optional[BlobStorage] = None


def get_blob_storage() -> BlobStorage:
    """Get the blob storage singleton instance."""
    global _blob_storage
    if _blob_storage is None:
        _blob_storage = BlobStorage(AUDIO_DIR, PUBLIC_BLOB_URL)
    return _blob_storage


def reset_blob_storage():
    """Reset the blob storage singleton (for testing)."""
    global _blob_storage
    _blob_storage = None
