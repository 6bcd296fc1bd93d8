"""
Manifest Parser
Reads ESO addon manifest files (## Key: Value header plus file list)
"""

from pathlib import Path

from errors import InvalidManifestError

MANIFEST_EXTENSIONS = ('.txt', '.addon')
TITLE_MARKER = '## Title:'


class ManifestParser:
    def __init__(self, manifest_path):
        self.manifest_path = Path(manifest_path)
        self.title = None
        self.api_version = None
        self.author = None
        self.version = None
        self.description = None
        self.dependencies = []
        self.optional_dependencies = []
        self.saved_variables = []
        self.files = []
        self.meta = {}

    def parse(self):
        """Parse the manifest file.

        Returns:
            ManifestParser - self, with fields populated

        Raises:
            InvalidManifestError - File unreadable or missing a ## Title: line
        """
        try:
            with open(self.manifest_path, 'r', encoding='utf-8', errors='replace') as f:
                lines = f.readlines()
        except OSError as e:
            raise InvalidManifestError(f"Cannot read manifest {self.manifest_path}: {e}")

        meta = {}
        files = []
        for line in lines:
            stripped = line.strip()

            if stripped.startswith('## '):
                # Header line: ## Key: Value
                if ':' in stripped:
                    key, value = stripped[3:].split(':', 1)
                    meta[key.strip().lower()] = value.strip()
            elif stripped and not stripped.startswith(';') and not stripped.startswith('#'):
                files.append(stripped)

        if 'title' not in meta:
            raise InvalidManifestError(f"Missing ## Title: in {self.manifest_path.name}")

        self.meta = meta
        self.title = meta['title']
        self.api_version = meta.get('apiversion')
        self.author = meta.get('author')
        self.version = meta.get('version') or meta.get('addonversion')
        self.description = meta.get('description')
        self.dependencies = _split_list(meta.get('dependson'))
        self.optional_dependencies = _split_list(meta.get('optionaldependson'))
        self.saved_variables = _split_list(meta.get('savedvariables'))
        self.files = files
        return self

    @property
    def addon_name(self):
        """Folder name the game requires for this manifest (its file stem)."""
        return self.manifest_path.stem

    def to_dict(self):
        return {
            'title': self.title,
            'apiVersion': self.api_version,
            'author': self.author,
            'version': self.version,
            'description': self.description,
            'dependencies': list(self.dependencies),
            'optionalDependencies': list(self.optional_dependencies),
            'savedVariables': list(self.saved_variables),
            'files': list(self.files),
        }


def _split_list(value):
    if not value:
        return []
    return value.split()


def is_manifest(path):
    """Check whether a file is an addon manifest.

    Args:
        path: str/Path - File to test

    Returns:
        bool - True for a .txt/.addon file containing a ## Title: line
    """
    path = Path(path)
    if not path.is_file() or path.suffix.lower() not in MANIFEST_EXTENSIONS:
        return False
    try:
        content = path.read_text(encoding='utf-8', errors='replace')
    except OSError:
        return False
    return TITLE_MARKER in content


def find_manifests(addon_dir):
    """List manifest files directly inside a directory, sorted by name."""
    addon_dir = Path(addon_dir)
    if not addon_dir.is_dir():
        return []
    return sorted(p for p in addon_dir.iterdir() if is_manifest(p))


def has_manifest(addon_dir):
    return bool(find_manifests(addon_dir))


def get_manifest_path(addon_dir):
    """Locate the manifest for an installed addon folder.

    Tries ``<Folder>.txt``, then ``<Folder>.addon``, then any manifest.

    Args:
        addon_dir: str/Path - Addon folder

    Returns:
        Path - Manifest path, or None if the folder holds no manifest
    """
    addon_dir = Path(addon_dir)
    for extension in MANIFEST_EXTENSIONS:
        candidate = addon_dir / f"{addon_dir.name}{extension}"
        if candidate.exists():
            return candidate

    manifests = find_manifests(addon_dir)
    if manifests:
        return manifests[0]
    return None


def _is_example_name(name):
    return name.startswith('_') or 'example' in name.lower()


def addon_name_from_manifests(addon_root):
    """Derive the installed folder name from the manifest filename.

    Archives often wrap content in a version-suffixed folder
    ("WarMask-1.3.0/WarMask.txt"); the game loads the addon only from a
    folder named after the manifest, so the manifest stem wins. Example
    manifests sort last, ties break alphabetically.

    Args:
        addon_root: str/Path - Directory holding the manifest

    Returns:
        str - Addon folder name

    Raises:
        InvalidManifestError - No manifest in the directory
    """
    manifests = find_manifests(addon_root)
    if not manifests:
        raise InvalidManifestError('No manifest file found in addon')

    manifests.sort(key=lambda p: (_is_example_name(p.stem), p.stem))
    return manifests[0].stem


def read_manifest(addon_dir):
    """Parse the manifest of an addon folder, or return None if absent."""
    manifest_path = get_manifest_path(addon_dir)
    if manifest_path is None:
        return None
    return ManifestParser(manifest_path).parse()
