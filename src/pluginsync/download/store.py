"""On-disk layout of downloaded plugins.

Every write is staged next to its destination and renamed into place, so a
destination path either does not exist or holds a complete artifact.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, List, Optional

from .errors import StoreError
from .extract import extract_archive

logger = logging.getLogger(__name__)

PACKS_DIR_NAME = ".packs"
TEMP_PREFIX = ".pluginsync-"
ARCHIVE_EXTENSIONS = (".tar.gz", ".vsix", ".theia")

Extractor = Callable[[Path, Path], None]


class ArtifactStore:
    """Writes plugin artifacts under ``plugins_dir``.

    In packed mode artifacts are stored as ``<id><ext>`` files; otherwise
    they are extracted into ``<id>/`` directories.
    """

    def __init__(
        self,
        plugins_dir: Path,
        packed: bool = False,
        extractor: Optional[Extractor] = None,
    ) -> None:
        self.plugins_dir = Path(plugins_dir)
        self.packed = packed
        self._extractor = extractor or extract_archive

    @property
    def packs_dir(self) -> Path:
        return self.plugins_dir / PACKS_DIR_NAME

    def target_path(self, plugin_id: str, ext: str) -> Path:
        if self.packed:
            return self.plugins_dir / f"{plugin_id}{ext}"
        return self.plugins_dir / plugin_id

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def find_existing(self, plugin_id: str) -> Optional[Path]:
        """Return where ``plugin_id`` is already stored, without knowing its URL.

        Packed mode accepts an archive with any supported extension.
        """
        if not self.packed:
            candidate = self.plugins_dir / plugin_id
            return candidate if candidate.exists() else None
        for ext in ARCHIVE_EXTENSIONS:
            candidate = self.plugins_dir / f"{plugin_id}{ext}"
            if candidate.exists():
                return candidate
        return None

    def _ensure_plugins_dir(self) -> None:
        try:
            self.plugins_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create {self.plugins_dir}: {e}") from e

    def write_archive(self, path: Path, data: bytes) -> None:
        """Store ``data`` verbatim at ``path``."""
        path = Path(path)
        self._ensure_plugins_dir()
        tmp_path: Optional[str] = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=path.parent, prefix=TEMP_PREFIX, suffix=".part"
            )
            with open(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path:
                Path(tmp_path).unlink(missing_ok=True)
            raise StoreError(f"Failed to write {path}: {e}") from e
        logger.debug(f"Stored {len(data)} bytes at {path}")

    def write_directory(self, path: Path, data: bytes, ext: str) -> None:
        """Extract the archive ``data`` into the directory ``path``."""
        path = Path(path)
        self._ensure_plugins_dir()
        archive_path: Optional[Path] = None
        staging_dir: Optional[Path] = None
        try:
            fd, archive_name = tempfile.mkstemp(
                dir=self.plugins_dir, prefix=TEMP_PREFIX, suffix=ext
            )
            archive_path = Path(archive_name)
            with open(fd, "wb") as f:
                f.write(data)
            staging_dir = Path(
                tempfile.mkdtemp(dir=self.plugins_dir, prefix=TEMP_PREFIX)
            )
            self._extractor(archive_path, staging_dir)
            staging_dir.chmod(0o755)
            os.replace(staging_dir, path)
            staging_dir = None
        except OSError as e:
            raise StoreError(f"Failed to unpack into {path}: {e}") from e
        finally:
            if archive_path is not None:
                archive_path.unlink(missing_ok=True)
            if staging_dir is not None:
                shutil.rmtree(staging_dir, ignore_errors=True)
        logger.debug(f"Unpacked {len(data)} bytes into {path}")

    def _top_level_entry(self, path: Path) -> Optional[Path]:
        """Return the direct child of plugins_dir containing ``path``."""
        try:
            relative = Path(path).relative_to(self.plugins_dir)
        except ValueError:
            return None
        if not relative.parts:
            return None
        return self.plugins_dir / relative.parts[0]

    def cache_extension_pack(self, manifest_path: Path) -> Optional[Path]:
        """Move the plugin owning ``manifest_path`` into ``.packs``.

        Packs are hidden from the plugin loader this way, so it does not
        install members listed in the exclusion list. Returns the new
        location, or None when nothing was moved.
        """
        entry = self._top_level_entry(manifest_path)
        if entry is None or entry.name == PACKS_DIR_NAME or not entry.exists():
            return None
        destination = self.packs_dir / entry.name
        if destination.exists():
            logger.debug(f"Extension pack {entry.name} already cached")
            return None
        try:
            self.packs_dir.mkdir(parents=True, exist_ok=True)
            os.replace(entry, destination)
        except OSError as e:
            raise StoreError(f"Failed to cache extension pack {entry}: {e}") from e
        logger.info(f"Moved extension pack {entry.name} to {self.packs_dir}")
        return destination

    def cached_pack_ids(self) -> List[str]:
        """Ids of extension packs already moved into ``.packs``."""
        if not self.packs_dir.is_dir():
            return []
        ids = []
        for entry in sorted(self.packs_dir.iterdir()):
            name = entry.name
            for ext in ARCHIVE_EXTENSIONS:
                if entry.is_file() and name.endswith(ext):
                    name = name[: -len(ext)]
                    break
            ids.append(name)
        return ids
