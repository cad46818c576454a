"""
Cache Storage Backends

Backends store opaque serialized payloads under string keys. They know
nothing about arcs, lifetimes or single-flight; the StoryCache layers
those on top.
"""

from __future__ import annotations
from typing import Dict, List, Optional
import base64
import logging
import os

from ..contracts.errors import CacheCorruption

logger = logging.getLogger(__name__)


class CacheBackend:
    """
    Abstract cache backend interface.

    Implementations can keep payloads in memory, on disk or in an
    external key-value store.
    """

    def get(self, key: str) -> Optional[str]:
        """Stored payload, or None. Raises CacheCorruption if it cannot be read."""
        raise NotImplementedError

    def put(self, key: str, payload: str):
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError


class InMemoryCacheBackend(CacheBackend):
    """Dictionary-backed payload store. Suitable for a single process."""

    def __init__(self):
        self._payloads: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._payloads.get(key)

    def put(self, key: str, payload: str):
        self._payloads[key] = payload

    def delete(self, key: str) -> bool:
        return self._payloads.pop(key, None) is not None

    def keys(self) -> List[str]:
        return list(self._payloads)


class FileCacheBackend(CacheBackend):
    """
    One JSON file per key under a directory.

    File names are the url-safe base64 of the key, so keys survive a
    restart without a separate index. Writes go through a temp file and
    an atomic rename.
    """

    _SUFFIX = ".json"

    def __init__(self, cache_dir: str):
        self._cache_dir = cache_dir
        os.makedirs(cache_dir, exist_ok=True)

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return f.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise CacheCorruption(f"Unreadable cache file for {key}: {e}", (('key', key),))

    def put(self, key: str, payload: str):
        path = self._path_for(key)
        tmp_path = path + ".tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(payload)
        os.replace(tmp_path, path)

    def delete(self, key: str) -> bool:
        try:
            os.remove(self._path_for(key))
        except FileNotFoundError:
            return False
        return True

    def keys(self) -> List[str]:
        keys = []
        for name in sorted(os.listdir(self._cache_dir)):
            if not name.endswith(self._SUFFIX):
                continue
            encoded = name[:-len(self._SUFFIX)]
            try:
                keys.append(base64.urlsafe_b64decode(encoded.encode('ascii')).decode('utf-8'))
            except (ValueError, UnicodeDecodeError):
                logger.warning("Ignoring unrecognised cache file %s", name)
        return keys

    def _path_for(self, key: str) -> str:
        encoded = base64.urlsafe_b64encode(key.encode('utf-8')).decode('ascii')
        return os.path.join(self._cache_dir, encoded + self._SUFFIX)
