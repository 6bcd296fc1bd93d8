"""
Archive Extractor
Extracts addon archives with root stripping, subpath selection and excludes
"""

import logging
import os
import shutil
import zipfile
import zlib
from pathlib import Path, PurePosixPath

from errors import ArchiveError, FileSystemError
from manifest_parser import has_manifest

logger = logging.getLogger(__name__)

# How deep below the extraction directory find_addon_root looks
ADDON_ROOT_MAX_DEPTH = 2
EXAMPLE_MARKERS = ('example', '_test')


def matches_glob_pattern(name, pattern):
    """Match a single path component against an exclude pattern.

    Supported forms: exact name, ``.*`` (hidden names), ``*.ext`` and
    ``*suffix``.

    Args:
        name: str - Path component
        pattern: str - Exclude pattern

    Returns:
        bool - True if the component matches
    """
    if name == pattern:
        return True

    if pattern == '.*' and name.startswith('.'):
        return True

    if pattern.startswith('*.') and name.endswith(pattern[1:]):
        return True

    if pattern.startswith('*'):
        suffix = pattern[1:]
        if suffix and name.endswith(suffix):
            return True

    return False


def should_exclude(relative_path, excludes):
    """Check every component of a remapped path against the exclude list."""
    if not excludes:
        return False
    for component in PurePosixPath(relative_path).parts:
        for pattern in excludes:
            if matches_glob_pattern(component, pattern):
                return True
    return False


def is_example_dir(name):
    """Folders holding example/test addons that must never be installed."""
    lower = name.lower()
    if name.startswith('_'):
        return True
    return any(marker in lower for marker in EXAMPLE_MARKERS)


class ArchiveExtractor:
    def __init__(self):
        """Initialize archive extractor."""
        pass

    def _entry_parts(self, name):
        """Split an archive entry name into path components.

        Returns None for names that can never be confined to the target
        (absolute paths, drive letters).
        """
        name = name.replace('\\', '/')
        if name.startswith('/') or (len(name) > 1 and name[1] == ':'):
            return None
        return [part for part in name.split('/') if part not in ('', '.')]

    def _remap(self, parts, extract_path):
        """Map archive components to a path relative to the target directory.

        The first component is the archive's wrapper folder ("repo-main/")
        and is always dropped.

        Returns:
            str - Relative posix path ('' for the root marker), or None to skip
        """
        if not parts:
            return None
        inner = parts[1:]

        if extract_path is None:
            return '/'.join(inner)

        prefix = [part for part in extract_path.replace('\\', '/').split('/') if part]
        if inner == prefix:
            return ''
        if len(inner) > len(prefix) and inner[:len(prefix)] == prefix:
            return '/'.join(inner[len(prefix):])
        return None

    def _confined_target(self, target_root, relative):
        """Resolve the output path and verify it stays inside target_root."""
        outpath = (target_root / relative).resolve()
        try:
            outpath.relative_to(target_root)
        except ValueError:
            return None
        return outpath

    def extract(self, archive_path, target_dir, install_info=None):
        """Extract a zip archive into target_dir.

        Args:
            archive_path: str/Path - Zip file to read
            target_dir: str/Path - Destination directory (created if missing)
            install_info: Optional InstallInfo - extract_path and excludes

        Returns:
            list - Absolute paths (str) of every file and directory written

        Raises:
            ArchiveError - Archive is corrupt or unreadable
            FileSystemError - Writing to target_dir failed
        """
        extract_path = install_info.extract_path if install_info else None
        excludes = install_info.excludes if install_info else []

        try:
            target_root = Path(target_dir)
            target_root.mkdir(parents=True, exist_ok=True)
            target_root = target_root.resolve()
        except OSError as e:
            raise FileSystemError(f"Cannot create {target_dir}: {e}")

        extracted = []
        dir_modes = []
        try:
            with zipfile.ZipFile(archive_path, 'r') as archive:
                for info in archive.infolist():
                    parts = self._entry_parts(info.filename)
                    if parts is None:
                        logger.warning("Skipping unsafe archive entry %r", info.filename)
                        continue

                    relative = self._remap(parts, extract_path)
                    if relative is None:
                        continue
                    is_dir = info.is_dir()
                    if not relative:
                        # Root marker, never a real file
                        continue

                    if should_exclude(relative, excludes):
                        logger.debug("Excluded %s", relative)
                        continue

                    outpath = self._confined_target(target_root, relative)
                    if outpath is None:
                        logger.warning("Skipping archive entry outside target: %r", info.filename)
                        continue

                    mode = (info.external_attr >> 16) & 0o7777
                    if is_dir:
                        outpath.mkdir(parents=True, exist_ok=True)
                        if mode:
                            dir_modes.append((outpath, mode))
                    else:
                        outpath.parent.mkdir(parents=True, exist_ok=True)
                        with archive.open(info) as source, open(outpath, 'wb') as target:
                            shutil.copyfileobj(source, target)
                        if mode and os.name != 'nt':
                            os.chmod(outpath, mode)

                    extracted.append(str(outpath))
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, zlib.error,
                NotImplementedError, RuntimeError) as e:
            # RuntimeError: encrypted entry; NotImplementedError: unsupported compression
            raise ArchiveError(f"Invalid archive {Path(archive_path).name}: {e}")
        except OSError as e:
            raise FileSystemError(f"Extraction to {target_dir} failed: {e}")

        # Directory modes last so a read-only directory cannot block its own files
        if os.name != 'nt':
            for path, mode in dir_modes:
                try:
                    os.chmod(path, mode)
                except OSError as e:
                    raise FileSystemError(f"Cannot set permissions on {path}: {e}")

        logger.debug("Extracted %d entries from %s", len(extracted), archive_path)
        return extracted

    def find_addon_root(self, extracted_dir):
        """Find the folder holding the addon manifest inside an extracted archive.

        Checks the directory itself, then its subdirectories, then theirs,
        visiting names in lexicographic order and skipping example/test
        folders. First match wins.

        Args:
            extracted_dir: str/Path - Directory the archive was extracted to

        Returns:
            Path - Addon root, or None if no manifest was found
        """
        extracted_dir = Path(extracted_dir)
        if has_manifest(extracted_dir):
            return extracted_dir

        level = [extracted_dir]
        for _ in range(ADDON_ROOT_MAX_DEPTH):
            next_level = []
            for parent in level:
                for child in sorted(parent.iterdir(), key=lambda p: p.name):
                    if child.is_dir() and not is_example_dir(child.name):
                        next_level.append(child)
            for candidate in next_level:
                if has_manifest(candidate):
                    return candidate
            level = next_level

        return None
