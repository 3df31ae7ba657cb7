"""Unpack plugin archives (.vsix/.theia zip files and .tar.gz tarballs)."""

import logging
import tarfile
import zipfile
from pathlib import Path

from .errors import ExtractionError

logger = logging.getLogger(__name__)


def _ensure_inside(dest_dir: Path, member_name: str) -> None:
    target = (dest_dir / member_name).resolve()
    if target != dest_dir and dest_dir not in target.parents:
        raise ExtractionError(f"Archive member escapes destination: {member_name}")


def extract_archive(archive_path: Path, dest_dir: Path) -> None:
    """Extract ``archive_path`` into ``dest_dir``.

    The format is detected from the archive contents rather than its name.

    Raises:
        ExtractionError: If the archive is corrupt, of an unknown format, or
            contains entries outside ``dest_dir``.
    """
    archive_path = Path(archive_path)
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    root = dest_dir.resolve()

    logger.debug(f"Extracting {archive_path} to {dest_dir}")
    try:
        if zipfile.is_zipfile(archive_path):
            with zipfile.ZipFile(archive_path) as zip_ref:
                for name in zip_ref.namelist():
                    _ensure_inside(root, name)
                zip_ref.extractall(dest_dir)
        elif tarfile.is_tarfile(archive_path):
            with tarfile.open(archive_path, "r:*") as tar_ref:
                tar_ref.extractall(dest_dir, filter="data")
        else:
            raise ExtractionError(f"Unrecognized archive format: {archive_path.name}")
    except (zipfile.BadZipFile, tarfile.TarError, EOFError) as e:
        raise ExtractionError(f"Failed to extract {archive_path.name}: {e}") from e
