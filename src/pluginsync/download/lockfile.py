"""Persisted spec -> {resolved URL, integrity digest} mapping."""

import base64
import hashlib
import json
import logging
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from .models import LockEntry

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "sha512"
SUPPORTED_ALGORITHMS = ("sha256", "sha384", "sha512")


def compute_integrity(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Return a self-describing digest, e.g. ``sha512-<base64>``."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported integrity algorithm: {algorithm}")
    digest = hashlib.new(algorithm, data).digest()
    return f"{algorithm}-{base64.b64encode(digest).decode('ascii')}"


def verify_integrity(data: bytes, expected: str) -> bool:
    """Check ``data`` against an integrity string produced by compute_integrity."""
    algorithm, sep, _ = expected.partition("-")
    if not sep or algorithm not in SUPPORTED_ALGORITHMS:
        return False
    return compute_integrity(data, algorithm) == expected


class Lockfile:
    """In-memory lock map, loaded once and flushed once per run.

    Keys are the original spec strings from the manifest (not plugin ids),
    so a pinned registry reference keeps resolving to the same URL.
    Safe for concurrent ``get``/``put`` from download workers.
    """

    def __init__(self, entries: Optional[Dict[str, LockEntry]] = None) -> None:
        self._entries: Dict[str, LockEntry] = dict(entries or {})
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: Path) -> "Lockfile":
        """Read a lockfile, falling back to an empty one on any problem."""
        path = Path(path)
        if not path.exists():
            return cls()

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable lockfile {path}: {e}")
            return cls()
        if not isinstance(data, dict):
            logger.warning(f"Ignoring lockfile {path}: expected a JSON object")
            return cls()

        entries: Dict[str, LockEntry] = {}
        for spec, value in data.items():
            if not isinstance(value, dict) or not isinstance(value.get("resolved"), str):
                logger.warning(f"Skipping malformed lock entry for '{spec}'")
                continue
            integrity = value.get("integrity")
            entries[spec] = LockEntry(
                resolved=value["resolved"],
                integrity=integrity if isinstance(integrity, str) else "",
            )
        logger.debug(f"Loaded {len(entries)} lock entries from {path}")
        return cls(entries)

    def get(self, spec: str) -> Optional[LockEntry]:
        with self._lock:
            return self._entries.get(spec)

    def put(self, spec: str, entry: LockEntry) -> None:
        with self._lock:
            self._entries[spec] = entry

    def to_dict(self) -> Dict[str, dict]:
        with self._lock:
            return {spec: self._entries[spec].to_dict() for spec in sorted(self._entries)}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def flush(self, path: Path) -> None:
        """Atomically rewrite ``path`` with the full mapping."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.to_dict()

        # Atomic write: write to temp file, then rename
        fd, tmp_path = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with open(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            Path(tmp_path).replace(path)
        except Exception:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.debug(f"Wrote {len(data)} lock entries to {path}")
