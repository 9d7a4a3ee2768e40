"""Baseline storage backends.

A baseline is the first observation of a page (structure, computed styles
or a screenshot) and the reference every later observation is diffed
against. Baselines are created automatically at most once per key and stay
read-only until an operator deletes them.
"""

import asyncio
import hashlib
import json
import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiofiles
import aiofiles.os

from ..errors import BaselineUnreadable


logger = logging.getLogger(__name__)


class BaselineKind(str, Enum):
    """Kinds of stored baselines."""
    STRUCTURE = "structure"
    STYLE = "style"
    SCREENSHOT = "screenshot"


_EXTENSIONS = {
    BaselineKind.STRUCTURE: ".json",
    BaselineKind.STYLE: ".json",
    BaselineKind.SCREENSHOT: ".png",
}


def url_hash(url: str) -> str:
    """Short stable identifier for a URL used in baseline keys."""
    return hashlib.md5(url.encode('utf-8')).hexdigest()[:8]


@dataclass(frozen=True)
class BaselineKey:
    """Identity of a stored baseline."""
    url_hash: str
    kind: BaselineKind
    variant: str = ""

    @classmethod
    def for_url(cls, url: str, kind: BaselineKind, variant: str = "") -> "BaselineKey":
        return cls(url_hash(url), kind, variant)

    @property
    def name(self) -> str:
        return f"{self.url_hash}_{self.variant}" if self.variant else self.url_hash

    @classmethod
    def parse(cls, kind: BaselineKind, name: str) -> "BaselineKey":
        hash_part, _, variant = name.partition('_')
        return cls(hash_part, kind, variant)


class _KeyLock:
    """Per-key lock shared by the calls currently waiting on it."""

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class BaselineStore(ABC):
    """Abstract base class for baseline storage backends."""

    def __init__(self):
        self._key_locks: Dict[BaselineKey, _KeyLock] = {}

    @abstractmethod
    async def exists(self, key: BaselineKey) -> bool:
        """Check whether a baseline is stored under ``key``."""
        pass

    @abstractmethod
    async def read(self, key: BaselineKey) -> Optional[bytes]:
        """Return the stored payload, or None if absent.

        Raises:
            BaselineUnreadable: If the baseline exists but cannot be read
        """
        pass

    @abstractmethod
    async def write(self, key: BaselineKey, payload: bytes) -> None:
        """Store ``payload`` under ``key``, replacing any existing baseline."""
        pass

    @abstractmethod
    async def delete(self, key: BaselineKey) -> bool:
        """Delete a baseline; returns False if nothing was stored."""
        pass

    @abstractmethod
    async def list_keys(self, kind: Optional[BaselineKind] = None) -> List[BaselineKey]:
        """List stored baseline keys, optionally for one kind."""
        pass

    @abstractmethod
    async def write_diff(self, key: BaselineKey, payload: bytes) -> str:
        """Store a diff image for ``key`` and return a reference to it."""
        pass

    async def write_if_absent(self, key: BaselineKey, payload: bytes) -> bool:
        """Create a baseline unless one already exists.

        Returns:
            True if the baseline was written by this call
        """
        entry = self._key_locks.get(key)
        if entry is None:
            entry = self._key_locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                if await self.exists(key):
                    return False
                await self.write(key, payload)
                return True
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._key_locks[key]

    async def read_json(self, key: BaselineKey) -> Optional[Dict[str, Any]]:
        """Read and parse a JSON baseline.

        Raises:
            BaselineUnreadable: If the payload is not valid JSON
        """
        payload = await self.read(key)
        if payload is None:
            return None
        try:
            return json.loads(payload.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise BaselineUnreadable(f"Baseline {key.kind.value}/{key.name} is corrupt: {e}") from e

    async def write_json(self, key: BaselineKey, data: Dict[str, Any]) -> None:
        await self.write(key, json.dumps(data, indent=2, default=str).encode('utf-8'))

    async def delete_url(self, url: str) -> int:
        """Delete every baseline (all kinds and variants) for a URL."""
        target = url_hash(url)
        deleted = 0
        for key in await self.list_keys():
            if key.url_hash == target and await self.delete(key):
                deleted += 1
        return deleted

    async def clear(self, kind: Optional[BaselineKind] = None) -> int:
        """Delete all baselines, or all of one kind. Returns the count deleted."""
        deleted = 0
        for key in await self.list_keys(kind):
            if await self.delete(key):
                deleted += 1
        logger.info(f"Cleared {deleted} baselines" + (f" of kind {kind.value}" if kind else ""))
        return deleted

    async def get_stats(self) -> Dict[str, int]:
        stats = {}
        for kind in BaselineKind:
            stats[kind.value] = len(await self.list_keys(kind))
        return stats


class LocalBaselineStore(BaselineStore):
    """Filesystem baseline storage: ``<base>/<kind>/<hash>[_<variant>].<ext>``."""

    def __init__(self, base_path: Union[str, Path] = "./baselines", diff_path: Optional[Union[str, Path]] = None):
        """Initialize local storage.

        Args:
            base_path: Base directory for baselines
            diff_path: Directory for diff images (defaults to <base>/diffs)
        """
        super().__init__()
        self.base_path = Path(base_path)
        self.diff_path = Path(diff_path) if diff_path else self.base_path / "diffs"
        for kind in BaselineKind:
            (self.base_path / kind.value).mkdir(parents=True, exist_ok=True)
        self.diff_path.mkdir(parents=True, exist_ok=True)

    def _path(self, key: BaselineKey) -> Path:
        return self.base_path / key.kind.value / f"{key.name}{_EXTENSIONS[key.kind]}"

    async def exists(self, key: BaselineKey) -> bool:
        return await aiofiles.os.path.exists(self._path(key))

    async def read(self, key: BaselineKey) -> Optional[bytes]:
        path = self._path(key)
        if not await aiofiles.os.path.exists(path):
            return None
        try:
            async with aiofiles.open(path, 'rb') as f:
                return await f.read()
        except OSError as e:
            raise BaselineUnreadable(f"Cannot read baseline {path}: {e}") from e

    async def write(self, key: BaselineKey, payload: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, 'wb') as f:
            await f.write(payload)
        logger.debug(f"Wrote baseline {path}")

    async def delete(self, key: BaselineKey) -> bool:
        path = self._path(key)
        if not await aiofiles.os.path.exists(path):
            return False
        await aiofiles.os.remove(path)
        return True

    async def list_keys(self, kind: Optional[BaselineKind] = None) -> List[BaselineKey]:
        kinds = [kind] if kind else list(BaselineKind)
        keys = []
        for k in kinds:
            directory = self.base_path / k.value
            if not directory.exists():
                continue
            for path in sorted(directory.glob(f"*{_EXTENSIONS[k]}")):
                keys.append(BaselineKey.parse(k, path.stem))
        return keys

    async def write_diff(self, key: BaselineKey, payload: bytes) -> str:
        path = self.diff_path / f"{key.name}_diff.png"
        async with aiofiles.open(path, 'wb') as f:
            await f.write(payload)
        return str(path)

    async def clear(self, kind: Optional[BaselineKind] = None) -> int:
        deleted = await super().clear(kind)
        if kind is None and self.diff_path.exists():
            shutil.rmtree(self.diff_path)
            self.diff_path.mkdir(parents=True, exist_ok=True)
        return deleted


class MemoryBaselineStore(BaselineStore):
    """In-process baseline storage, mainly for tests and dry runs."""

    def __init__(self):
        super().__init__()
        self._baselines: Dict[BaselineKey, bytes] = {}
        self.diffs: Dict[str, bytes] = {}

    async def exists(self, key: BaselineKey) -> bool:
        return key in self._baselines

    async def read(self, key: BaselineKey) -> Optional[bytes]:
        return self._baselines.get(key)

    async def write(self, key: BaselineKey, payload: bytes) -> None:
        self._baselines[key] = payload

    async def delete(self, key: BaselineKey) -> bool:
        return self._baselines.pop(key, None) is not None

    async def list_keys(self, kind: Optional[BaselineKind] = None) -> List[BaselineKey]:
        return [key for key in self._baselines if kind is None or key.kind == kind]

    async def write_diff(self, key: BaselineKey, payload: bytes) -> str:
        ref = f"memory://diffs/{key.name}_diff.png"
        self.diffs[ref] = payload
        return ref
