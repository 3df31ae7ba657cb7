"""Discover plugin references declared inside downloaded plugins.

Plugins list other plugins in their own ``package.json``: members of an
extension pack under ``extensionPack`` and hard requirements under
``extensionDependencies``.
"""

import json
import logging
import os
import tarfile
import threading
import zipfile
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .store import PACKS_DIR_NAME, TEMP_PREFIX

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"
PACKED_MANIFEST_MEMBER = "extension/package.json"
TARBALL_MANIFEST_MEMBER = "package/package.json"
TARBALL_SUFFIX = ".tar.gz"
PACKED_SUFFIXES = (".vsix", ".theia", TARBALL_SUFFIX)
SKIPPED_DIRS = {"node_modules"}


class ExtensionManifest(BaseModel):
    """The parts of a plugin's ``package.json`` relevant to resolution."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    extension_pack: List[str] = Field(default_factory=list, alias="extensionPack")
    extension_dependencies: List[str] = Field(
        default_factory=list, alias="extensionDependencies"
    )

    @field_validator("name", mode="before")
    @classmethod
    def _name_as_string(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    @field_validator("extension_pack", "extension_dependencies", mode="before")
    @classmethod
    def _string_ids(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, str)]


class ManifestScanner:
    """Reads plugin manifests under ``plugins_dir`` and filters exclusions.

    Exclusions are reported once per id for the lifetime of the scanner.
    """

    def __init__(self, plugins_dir: Path, excluded_ids: Iterable[str] = ()) -> None:
        self.plugins_dir = Path(plugins_dir)
        self.excluded_ids: Set[str] = set(excluded_ids)
        self._reported: Set[str] = set()
        self._lock = threading.Lock()

    def _manifest_files(self) -> Iterator[Path]:
        if not self.plugins_dir.is_dir():
            return
        for root, dirs, files in os.walk(self.plugins_dir):
            dirs[:] = sorted(
                d for d in dirs if d not in SKIPPED_DIRS and not d.startswith(TEMP_PREFIX)
            )
            if MANIFEST_NAME in files:
                yield Path(root) / MANIFEST_NAME

    def _packed_archives(self) -> Iterator[Path]:
        if not self.plugins_dir.is_dir():
            return
        for parent in (self.plugins_dir, self.plugins_dir / PACKS_DIR_NAME):
            if not parent.is_dir():
                continue
            for path in sorted(parent.iterdir()):
                if path.is_file() and path.name.endswith(PACKED_SUFFIXES):
                    yield path

    @staticmethod
    def _read_packed_manifest(archive: Path) -> bytes:
        """Read the manifest member of a packed plugin.

        Raises:
            KeyError: If the archive has no manifest member.
        """
        if archive.name.endswith(TARBALL_SUFFIX):
            with tarfile.open(archive, "r:gz") as tar_ref:
                member = tar_ref.extractfile(TARBALL_MANIFEST_MEMBER)
                if member is None:
                    raise KeyError(TARBALL_MANIFEST_MEMBER)
                with member:
                    return member.read()
        with zipfile.ZipFile(archive) as zip_ref:
            return zip_ref.read(PACKED_MANIFEST_MEMBER)

    def _parse(self, source: Path, raw: bytes) -> Optional[ExtensionManifest]:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            return ExtensionManifest.model_validate(data)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Skipping invalid plugin manifest {source}: {e}")
            return None

    def manifests(self) -> List[Tuple[Path, ExtensionManifest]]:
        """Every readable plugin manifest, keyed by where it was found.

        Packed plugins are keyed by their archive path.
        """
        found: List[Tuple[Path, ExtensionManifest]] = []
        for path in self._manifest_files():
            try:
                raw = path.read_bytes()
            except OSError as e:
                logger.warning(f"Cannot read plugin manifest {path}: {e}")
                continue
            manifest = self._parse(path, raw)
            if manifest is not None:
                found.append((path, manifest))

        for archive in self._packed_archives():
            try:
                raw = self._read_packed_manifest(archive)
            except KeyError:
                logger.debug(f"No plugin manifest in {archive}")
                continue
            except (OSError, EOFError, zipfile.BadZipFile, tarfile.TarError) as e:
                logger.warning(f"Cannot read packed plugin {archive}: {e}")
                continue
            manifest = self._parse(archive, raw)
            if manifest is not None:
                found.append((archive, manifest))
        return found

    def _filter(
        self, ids: List[str], source: Path, manifest: ExtensionManifest, category: str
    ) -> List[str]:
        owner = manifest.name or str(source)
        kept = []
        for plugin_id in ids:
            if plugin_id not in self.excluded_ids:
                kept.append(plugin_id)
                continue
            with self._lock:
                first_time = plugin_id not in self._reported
                self._reported.add(plugin_id)
            if first_time:
                logger.warning(
                    f"'{plugin_id}' referenced by '{owner}' ({category}) "
                    "is excluded because of 'theiaPluginsExcludeIds'"
                )
        return kept

    def scan_extension_packs(self) -> Dict[Path, List[str]]:
        """Map each extension pack manifest to its non-excluded member ids."""
        packs: Dict[Path, List[str]] = {}
        for path, manifest in self.manifests():
            if manifest.extension_pack:
                packs[path] = self._filter(manifest.extension_pack, path, manifest, "ext pack")
        return packs

    def scan_dependencies(self) -> Set[str]:
        """Union of every non-excluded ``extensionDependencies`` id."""
        ids: Set[str] = set()
        for path, manifest in self.manifests():
            if manifest.extension_dependencies:
                ids.update(
                    self._filter(
                        manifest.extension_dependencies, path, manifest, "ext dependency"
                    )
                )
        return ids

    def collect(self) -> Set[str]:
        ids: Set[str] = set()
        for members in self.scan_extension_packs().values():
            ids.update(members)
        ids.update(self.scan_dependencies())
        return ids
