"""
Blob store implementations.

InMemoryBlobStore keeps bytes in a dict (tests, single-process runs).
FileBlobStore writes each blob to a file; disk I/O runs in a worker thread.

Refs may carry a media fragment (#t=... or #bytes=...) pointing inside the
blob; get() resolves byte fragments and returns the whole blob for time
fragments.
"""

import asyncio
import logging
import re
import uuid
from pathlib import Path

from narrator.config import Settings

logger = logging.getLogger(__name__)

BYTES_FRAGMENT = re.compile(r"#bytes=(\d+)-(\d+)$")


def split_fragment(ref: str) -> tuple[str, str | None]:
    """Split 'blob#t=0,30' into ('blob', 't=0,30')."""
    base, sep, fragment = ref.partition("#")
    return base, (fragment if sep else None)


def _slice(data: bytes, ref: str) -> bytes:
    match = BYTES_FRAGMENT.search(ref)
    if match is None:
        return data
    start, end = int(match.group(1)), int(match.group(2))
    return data[start:end + 1]


class InMemoryBlobStore:
    """Dict-backed blob store."""

    def __init__(self):
        self._blobs: dict[str, bytes] = {}

    async def put(self, data: bytes, suffix: str = "") -> str:
        ref = f"mem://{uuid.uuid4().hex}{suffix}"
        self._blobs[ref] = bytes(data)
        return ref

    async def get(self, ref: str) -> bytes:
        base, _ = split_fragment(ref)
        if base not in self._blobs:
            raise FileNotFoundError(f"Blob not found: {base}")
        return _slice(self._blobs[base], ref)


class FileBlobStore:
    """
    Filesystem blob store.

    Example:
        store = FileBlobStore(Path("/data/blobs"))
        ref = await store.put(audio_bytes, suffix=".mp3")
        data = await store.get(ref)
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FileBlobStore":
        return cls(settings.blob_store_dir)

    async def put(self, data: bytes, suffix: str = "") -> str:
        name = f"{uuid.uuid4().hex}{suffix}"
        path = self._path(name)
        await asyncio.to_thread(self._write, path, data)
        logger.debug(f"Stored blob {name}: {len(data)} bytes")
        return f"file://{name}"

    async def get(self, ref: str) -> bytes:
        base, _ = split_fragment(ref)
        path = self._path(base.removeprefix("file://"))
        if not path.exists():
            raise FileNotFoundError(f"Blob not found: {base}")
        data = await asyncio.to_thread(path.read_bytes)
        return _slice(data, ref)

    def _path(self, name: str) -> Path:
        """Resolve a blob name under root; names escaping root are not found."""
        root = self.root.resolve()
        path = (root / name).resolve()
        if path == root or not path.is_relative_to(root):
            logger.warning(f"Rejected blob ref outside store: {name}")
            raise FileNotFoundError(f"Blob not found: {name}")
        return path

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
