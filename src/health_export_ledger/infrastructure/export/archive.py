"""
Export archive helpers.

Locates the most recent downloaded export archive and extracts it into a
clean raw directory.
"""

import logging
import shutil
import zipfile
from pathlib import Path

from health_export_ledger.utils.exceptions import ParseError

logger = logging.getLogger(__name__)

EXPORT_PATTERN = "*export*.zip"


def find_latest_export(directory: Path, pattern: str = EXPORT_PATTERN) -> Path | None:
    """
    Find the newest export archive in a directory.

    Args:
        directory: Directory to search (not recursive).
        pattern: Glob pattern for archive names.

    Returns:
        Path of the archive with the latest modification time, or None.
    """
    if not directory.is_dir():
        logger.warning(f"Export directory not found: {directory}")
        return None

    archives = [p for p in directory.glob(pattern) if p.is_file()]
    if not archives:
        return None

    latest = max(archives, key=lambda p: p.stat().st_mtime)
    logger.info(f"Latest export archive: {latest.name}")
    return latest


def extract_export(zip_path: Path, dest: Path) -> list[Path]:
    """
    Extract an export archive into a clean directory.

    Any existing content of `dest` is removed first.

    Returns:
        Extracted file paths.

    Raises:
        ParseError: If the archive is missing or corrupt.
    """
    if not zip_path.is_file():
        raise ParseError(f"Export archive not found: {zip_path}")

    if dest.exists():
        shutil.rmtree(dest)
    dest.mkdir(parents=True)

    try:
        with zipfile.ZipFile(zip_path) as archive:
            archive.extractall(dest)
    except zipfile.BadZipFile as e:
        raise ParseError(f"Corrupt export archive {zip_path}: {e}") from e

    extracted = sorted(p for p in dest.rglob("*") if p.is_file())
    logger.info(f"Extracted {len(extracted)} files from {zip_path.name} to {dest}")
    return extracted
