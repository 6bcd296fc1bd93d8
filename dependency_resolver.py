"""
Dependency Resolver
Computes which index addons must be installed before a given addon
"""

import re
from pathlib import Path

from catalog_models import DependencyResult, ResolvedDependency

# "LibAddonMenu-2.0" -> "LibAddonMenu", "LibFoo-v1.3" -> "LibFoo"
_VERSION_SUFFIX_RE = re.compile(r'-v?\d+(?:\.\d+)*$', re.IGNORECASE)

REPOSITORY_SOURCE_TYPES = ('github',)


def strip_version_suffix(slug):
    return _VERSION_SUFFIX_RE.sub('', slug)


def branch_archive_url(repo, branch):
    return f"https://api.github.com/repos/{repo}/zipball/{branch}"


def download_target(entry):
    """Pick the URL and version to install for an index entry.

    A release asset wins; repository-sourced entries without a release
    fall back to the branch archive, versioned "<branch>-latest".

    Args:
        entry: CatalogEntry - Index entry

    Returns:
        tuple - (download_url, version), or (None, None) if not installable
    """
    release = entry.latest_release
    if release and release.download_url:
        return release.download_url, release.version
    if entry.source_type in REPOSITORY_SOURCE_TYPES and entry.source_repo:
        branch = entry.source_branch or 'main'
        return branch_archive_url(entry.source_repo, branch), f"{branch}-latest"
    return None, None


class DependencyResolver:
    def __init__(self, catalog, installed=None):
        """Initialize resolver over an index snapshot.

        Args:
            catalog: iterable - CatalogEntry objects from the index
            installed: iterable - InstalledRecord objects currently on disk
        """
        self.entries = list(catalog)
        self.by_slug = {entry.slug: entry for entry in self.entries}
        self.by_lower = {}
        self.by_base = {}
        for entry in self.entries:
            lower = entry.slug.lower()
            self.by_lower.setdefault(lower, entry)
            self.by_base.setdefault(strip_version_suffix(lower), entry)

        installed = list(installed or [])
        self.installed_slugs = {record.slug.lower() for record in installed}
        self.installed_folders = set()
        for record in installed:
            if record.manifest_path:
                folder = Path(record.manifest_path).parent.name
                if folder:
                    self.installed_folders.add(folder.lower())

    def find_in_catalog(self, slug):
        """Look up a slug: exact, then case-insensitive, then without version suffix."""
        if slug in self.by_slug:
            return self.by_slug[slug]
        lower = slug.lower()
        if lower in self.by_lower:
            return self.by_lower[lower]
        return self.by_base.get(strip_version_suffix(lower))

    def is_installed(self, slug):
        """Match a dependency against installed slugs and addon folder names.

        Folder names often carry a version ("LibAddonMenu-2.0"), so after an
        exact miss both sides are compared with version suffixes stripped,
        accepting prefix containment in either direction.
        """
        lower = slug.lower()
        if lower in self.installed_slugs or lower in self.installed_folders:
            return True

        base = strip_version_suffix(lower)
        if not base:
            return False
        for name in self.installed_slugs | self.installed_folders:
            other = strip_version_suffix(name)
            if other and (other.startswith(base) or base.startswith(other)):
                return True
        return False

    def resolve(self, root_slug):
        """Resolve the required dependencies of an addon.

        Walks the graph depth-first with an explicit stack so each
        dependency's own requirements are expanded before its siblings.
        A slug seen twice is skipped, which also breaks cycles.

        Args:
            root_slug: str - Addon being installed

        Returns:
            DependencyResult - resolved deps in install order (deepest first)
        """
        result = DependencyResult()
        root = self.by_slug.get(root_slug) or self.by_lower.get(root_slug.lower())
        if root is None:
            return result

        visited = {root_slug.lower(), root.slug.lower()}
        resolved_slugs = set()
        stack = [(dep, 0) for dep in reversed(root.required_dependencies)]

        while stack:
            dep_slug, depth = stack.pop()
            dep_lower = dep_slug.lower()
            if dep_lower in visited:
                continue
            visited.add(dep_lower)

            if self.is_installed(dep_slug):
                if dep_slug not in result.already_installed:
                    result.already_installed.append(dep_slug)
                continue

            entry = self.find_in_catalog(dep_slug)
            url, version = download_target(entry) if entry else (None, None)
            if url is None:
                if dep_slug not in result.unresolved:
                    result.unresolved.append(dep_slug)
                continue

            visited.add(entry.slug.lower())
            if entry.slug not in resolved_slugs:
                resolved_slugs.add(entry.slug)
                result.resolved.append(ResolvedDependency(
                    slug=entry.slug,
                    name=entry.name,
                    version=version,
                    download_url=url,
                    install_info=entry.install_info,
                    depth=depth,
                ))

            for child in reversed(entry.required_dependencies):
                stack.append((child, depth + 1))

        # Deepest first: a library must be on disk before anything using it
        result.resolved.sort(key=lambda dep: -dep.depth)
        return result


def resolve_dependencies(slug, catalog, installed=None):
    return DependencyResolver(catalog, installed).resolve(slug)
