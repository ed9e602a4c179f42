# realtrack/services/blob_store.py
"""
File-system blob store.

Layout: <base_dir>/<store name>/<safe key>.blob plus <safe key>.meta.json.
Keys may contain '/', which is mapped to '_' on disk. get() returns the
payload base64-encoded so callers never deal with partial reads.
"""
from __future__ import annotations
import base64
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


def _parse_ts(v: str) -> Optional[datetime]:
    try:
        ts = datetime.fromisoformat(v.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class LocalBlobStore:
    def __init__(self, name: str, base_dir: str | Path = ".blobs"):
        self.name = name
        self.base_dir = Path(base_dir) / name
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info("blob store %r at %s", name, self.base_dir)
        self.cleanup_expired()

    # --- paths ---
    @staticmethod
    def _safe_key(key: str) -> str:
        return key.replace("/", "_")

    def _blob_path(self, key: str) -> Path:
        return self.base_dir / f"{self._safe_key(key)}.blob"

    def _meta_path(self, key: str) -> Path:
        return self.base_dir / f"{self._safe_key(key)}.meta.json"

    # --- maintenance ---
    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Delete entries whose metadata 'expiresAt' is in the past."""
        now = now or datetime.now(timezone.utc)
        cleaned = 0
        for meta_path in self.base_dir.glob("*.meta.json"):
            try:
                metadata = json.loads(meta_path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                logger.warning("unreadable blob metadata %s", meta_path)
                continue
            expires_at = _parse_ts(metadata.get("expiresAt")) if metadata.get("expiresAt") else None
            if expires_at is None or expires_at >= now:
                continue
            blob_path = meta_path.with_name(meta_path.name[: -len(".meta.json")] + ".blob")
            blob_path.unlink(missing_ok=True)
            meta_path.unlink(missing_ok=True)
            cleaned += 1
        if cleaned:
            logger.info("cleaned %d expired blob(s) from %r", cleaned, self.name)
        return cleaned

    # --- API ---
    def set(self, key: str, value: bytes, metadata: Optional[Dict[str, str]] = None) -> None:
        self._blob_path(key).write_bytes(bytes(value))
        self._meta_path(key).write_text(json.dumps(metadata or {}, indent=2), encoding="utf-8")
        logger.debug("SET %s/%s (%d bytes)", self.name, key, len(value))

    def get(self, key: str) -> Optional[str]:
        path = self._blob_path(key)
        if not path.exists():
            logger.debug("GET %s/%s (not found)", self.name, key)
            return None
        return base64.b64encode(path.read_bytes()).decode("ascii")

    def get_metadata(self, key: str) -> Optional[Dict[str, str]]:
        path = self._meta_path(key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def delete(self, key: str) -> bool:
        existed = False
        for path in (self._blob_path(key), self._meta_path(key)):
            if path.exists():
                path.unlink()
                existed = True
        if existed:
            logger.debug("DELETE %s/%s", self.name, key)
        return existed

    def list(self) -> List[str]:
        return sorted(
            p.name[: -len(".blob")].replace("_", "/")
            for p in self.base_dir.glob("*.blob")
        )


_stores: Dict[tuple, LocalBlobStore] = {}


def get_blob_store(name: str, base_dir: str | Path = ".blobs") -> LocalBlobStore:
    """One store instance per (base_dir, name)."""
    k = (str(base_dir), name)
    if k not in _stores:
        _stores[k] = LocalBlobStore(name, base_dir)
    return _stores[k]


def clear_blob_stores() -> None:
    _stores.clear()
