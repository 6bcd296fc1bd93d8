"""
Catalog Models
Data shapes for the addon index, installed addons and dependency plans
"""

from datetime import datetime

SOURCE_KINDS = ('catalog', 'repository', 'local')
RELEASE_TYPES = ('release', 'branch')

# Older tracker files and index versions call these 'index' and 'github'
_SOURCE_KIND_ALIASES = {
    'index': 'catalog',
    'github': 'repository',
}


def _get(data, *keys, default=None):
    """Read the first present key, accepting snake_case or camelCase."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def normalize_release_type(value):
    if not value:
        return 'release'
    value = str(value).lower()
    if value not in RELEASE_TYPES:
        raise ValueError(f"Unknown release type: {value}")
    return value


def normalize_source_kind(value):
    if not value:
        return 'catalog'
    value = str(value).lower()
    value = _SOURCE_KIND_ALIASES.get(value, value)
    if value not in SOURCE_KINDS:
        raise ValueError(f"Unknown source kind: {value}")
    return value


class InstallInfo:
    def __init__(self, target_folder, method='branch', extract_path=None, excludes=None):
        """Initialize explicit extraction instructions from the index.

        Args:
            target_folder: str - Folder name inside the AddOns directory
            method: str - 'branch', 'github_release' or 'github_archive'
            extract_path: Optional str - Subpath inside the archive to extract
            excludes: list - Glob patterns for files/folders to leave out
        """
        self.target_folder = target_folder
        self.method = method
        self.extract_path = extract_path.strip('/') if extract_path else None
        self.excludes = list(excludes or [])

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return None
        if isinstance(data, InstallInfo):
            return data
        return cls(
            target_folder=_get(data, 'target_folder', 'targetFolder', default=''),
            method=_get(data, 'method', default='branch'),
            extract_path=_get(data, 'extract_path', 'extractPath'),
            excludes=_get(data, 'excludes', default=[]),
        )

    def to_dict(self):
        return {
            'method': self.method,
            'extract_path': self.extract_path,
            'target_folder': self.target_folder,
            'excludes': list(self.excludes),
        }

    def __eq__(self, other):
        if not isinstance(other, InstallInfo):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"InstallInfo(target_folder={self.target_folder!r}, extract_path={self.extract_path!r})"


class DownloadSource:
    def __init__(self, source_type, url):
        self.source_type = source_type
        self.url = url

    @classmethod
    def from_dict(cls, data):
        if isinstance(data, DownloadSource):
            return data
        return cls(_get(data, 'type', 'source_type', 'sourceType', default=''), _get(data, 'url', default=''))

    def to_dict(self):
        return {'type': self.source_type, 'url': self.url}

    def __repr__(self):
        return f"DownloadSource({self.source_type!r}, {self.url!r})"


class Release:
    def __init__(self, version, download_url, commit_sha=None, commit_date=None, published_at=None):
        self.version = version
        self.download_url = download_url
        self.commit_sha = commit_sha
        self.commit_date = commit_date
        self.published_at = published_at

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            version=_get(data, 'version', default=''),
            download_url=_get(data, 'download_url', 'downloadUrl', default=''),
            commit_sha=_get(data, 'commit_sha', 'commitSha'),
            commit_date=_get(data, 'commit_date', 'commitDate'),
            published_at=_get(data, 'published_at', 'publishedAt'),
        )

    def to_dict(self):
        return {
            'version': self.version,
            'download_url': self.download_url,
            'commit_sha': self.commit_sha,
            'commit_date': self.commit_date,
            'published_at': self.published_at,
        }


class CatalogEntry:
    """One addon as published in the index.

    Instances are snapshots of the fetched index; nothing in the manager
    mutates them after parsing.
    """

    def __init__(self, slug, name, required_dependencies=None, optional_dependencies=None,
                 install_info=None, latest_release=None, download_sources=None,
                 source_type=None, source_repo=None, source_branch='main',
                 description='', authors=None, category='', tags=None,
                 version_sort_key=None, release_channel=None):
        self.slug = slug
        self.name = name
        self.required_dependencies = list(required_dependencies or [])
        self.optional_dependencies = list(optional_dependencies or [])
        self.install_info = install_info
        self.latest_release = latest_release
        self.download_sources = list(download_sources or [])
        self.source_type = source_type
        self.source_repo = source_repo
        self.source_branch = source_branch or 'main'
        self.description = description
        self.authors = list(authors or [])
        self.category = category
        self.tags = list(tags or [])
        self.version_sort_key = version_sort_key
        self.release_channel = release_channel

    @classmethod
    def from_dict(cls, data):
        """Build an entry from a parsed index record.

        Missing optional fields default to empty values rather than failing.

        Args:
            data: dict - One element of the index's ``addons`` array

        Returns:
            CatalogEntry - Parsed entry
        """
        compatibility = _get(data, 'compatibility', default={})
        source = _get(data, 'source', default={})
        version_info = _get(data, 'version_info', 'versionInfo', default={})

        required = _get(data, 'required_dependencies', 'requiredDependencies')
        if required is None:
            required = _get(compatibility, 'required_dependencies', 'requiredDependencies', default=[])
        optional = _get(data, 'optional_dependencies', 'optionalDependencies')
        if optional is None:
            optional = _get(compatibility, 'optional_dependencies', 'optionalDependencies', default=[])

        install_data = _get(data, 'install', 'install_info', 'installInfo')

        return cls(
            slug=data['slug'],
            name=_get(data, 'name', default=data['slug']),
            required_dependencies=required,
            optional_dependencies=optional,
            install_info=InstallInfo.from_dict(install_data),
            latest_release=Release.from_dict(_get(data, 'latest_release', 'latestRelease')),
            download_sources=[
                DownloadSource.from_dict(s)
                for s in _get(data, 'download_sources', 'downloadSources', default=[])
            ],
            source_type=_get(source, 'type'),
            source_repo=_get(source, 'repo'),
            source_branch=_get(source, 'branch', default='main'),
            description=_get(data, 'description', default=''),
            authors=_get(data, 'authors', default=[]),
            category=_get(data, 'category', default=''),
            tags=_get(data, 'tags', default=[]),
            version_sort_key=_get(version_info, 'version_sort_key', 'versionSortKey'),
            release_channel=_get(version_info, 'release_channel', 'releaseChannel'),
        )

    def __repr__(self):
        return f"CatalogEntry({self.slug!r})"


class InstalledRecord:
    def __init__(self, slug, name, installed_version, manifest_path, source_kind='catalog',
                 source_repo=None, version_sort_key=None, commit_sha=None,
                 installed_at=None, updated_at=None):
        """Initialize a record of an addon present on disk.

        Args:
            slug: str - Unique addon identifier
            name: str - Display name
            installed_version: str - Version string that was installed
            manifest_path: str - Absolute path of the addon's manifest file
            source_kind: str - 'catalog', 'repository' or 'local'
            source_repo: Optional str - owner/repo for repository installs
            version_sort_key: Optional int - Index-provided sort key
            commit_sha: Optional str - Commit for branch-tracked installs
            installed_at: Optional str - ISO timestamp of first install
            updated_at: Optional str - ISO timestamp of last install
        """
        now = datetime.now().isoformat()
        self.slug = slug
        self.name = name
        self.installed_version = installed_version
        self.manifest_path = str(manifest_path)
        self.source_kind = normalize_source_kind(source_kind)
        self.source_repo = source_repo
        self.version_sort_key = version_sort_key
        self.commit_sha = commit_sha
        self.installed_at = installed_at or now
        self.updated_at = updated_at or self.installed_at

    @classmethod
    def from_dict(cls, data):
        return cls(
            slug=data['slug'],
            name=_get(data, 'name', default=data['slug']),
            installed_version=_get(data, 'installed_version', 'installedVersion', default='unknown'),
            manifest_path=_get(data, 'manifest_path', 'manifestPath', default=''),
            source_kind=_get(data, 'source_kind', 'sourceKind', 'source_type', 'sourceType'),
            source_repo=_get(data, 'source_repo', 'sourceRepo'),
            version_sort_key=_get(data, 'version_sort_key', 'versionSortKey'),
            commit_sha=_get(data, 'commit_sha', 'commitSha'),
            installed_at=_get(data, 'installed_at', 'installedAt'),
            updated_at=_get(data, 'updated_at', 'updatedAt'),
        )

    def to_dict(self):
        return {
            'slug': self.slug,
            'name': self.name,
            'installed_version': self.installed_version,
            'source_kind': self.source_kind,
            'source_repo': self.source_repo,
            'manifest_path': self.manifest_path,
            'version_sort_key': self.version_sort_key,
            'commit_sha': self.commit_sha,
            'installed_at': self.installed_at,
            'updated_at': self.updated_at,
        }

    def __repr__(self):
        return f"InstalledRecord({self.slug!r}, {self.installed_version!r})"


class CustomRepo:
    def __init__(self, repo, branch='main', release_type='release', added_at=None, last_checked=None):
        """Initialize a user-tracked GitHub repository.

        Args:
            repo: str - owner/repo
            branch: str - Branch used for branch installs
            release_type: str - 'release' (latest release asset) or 'branch'
            added_at: Optional str - ISO timestamp the repository was added
            last_checked: Optional str - ISO timestamp of the last update check
        """
        self.repo = repo
        self.branch = branch or 'main'
        self.release_type = normalize_release_type(release_type)
        self.added_at = added_at or datetime.now().isoformat()
        self.last_checked = last_checked

    @classmethod
    def from_dict(cls, data):
        return cls(
            repo=data['repo'],
            branch=_get(data, 'branch', default='main'),
            release_type=_get(data, 'release_type', 'releaseType'),
            added_at=_get(data, 'added_at', 'addedAt'),
            last_checked=_get(data, 'last_checked', 'lastChecked'),
        )

    def to_dict(self):
        return {
            'repo': self.repo,
            'branch': self.branch,
            'release_type': self.release_type,
            'added_at': self.added_at,
            'last_checked': self.last_checked,
        }

    def __repr__(self):
        return f"CustomRepo({self.repo!r}, {self.release_type!r})"


class ResolvedDependency:
    def __init__(self, slug, name, version, download_url, install_info, depth):
        self.slug = slug
        self.name = name
        self.version = version
        self.download_url = download_url
        self.install_info = install_info
        self.depth = depth

    def to_dict(self):
        return {
            'slug': self.slug,
            'name': self.name,
            'version': self.version,
            'downloadUrl': self.download_url,
            'installInfo': self.install_info.to_dict() if self.install_info else None,
            'depth': self.depth,
        }

    def __repr__(self):
        return f"ResolvedDependency({self.slug!r}, depth={self.depth})"


class DependencyResult:
    """Outcome of a dependency resolution.

    ``resolved`` is in install order (deepest dependency first). The three
    lists are disjoint and hold no duplicates.
    """

    def __init__(self, resolved=None, already_installed=None, unresolved=None):
        self.resolved = list(resolved or [])
        self.already_installed = list(already_installed or [])
        self.unresolved = list(unresolved or [])

    def has_dependencies(self):
        return bool(self.resolved)

    def has_unresolved(self):
        return bool(self.unresolved)

    def to_dict(self):
        return {
            'resolved': [dep.to_dict() for dep in self.resolved],
            'alreadyInstalled': list(self.already_installed),
            'unresolved': list(self.unresolved),
        }

    def __repr__(self):
        return (f"DependencyResult(resolved={[d.slug for d in self.resolved]}, "
                f"already_installed={self.already_installed}, unresolved={self.unresolved})")
