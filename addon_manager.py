"""
Addon Manager
Handles installation, updates, and removal of ESO addons
"""

import logging
import os
import shutil
import stat
import tempfile
from pathlib import Path

from addon_paths import get_addon_path_with_custom, get_saved_variables_path
from archive_extractor import ArchiveExtractor
from catalog_client import CatalogClient
from catalog_models import InstallInfo, InstalledRecord, normalize_release_type, normalize_source_kind
from dependency_resolver import DependencyResolver, download_target
from download_manager import (
    DownloadSourceSelector,
    get_github_branch_url,
    get_github_release_info,
    get_github_release_url,
    get_github_repo_info,
    validate_github_repo,
)
from errors import (
    AddonDirectoryNotFoundError,
    AddonManagerError,
    AddonNotFoundError,
    FileSystemError,
    InvalidManifestError,
    error_result,
)
from manifest_parser import (
    ManifestParser,
    addon_name_from_manifests,
    find_manifests,
    get_manifest_path,
    has_manifest,
)
from version_compare import is_update_available, normalize_version

logger = logging.getLogger(__name__)

STATUS_PENDING = 'pending'
STATUS_DOWNLOADING = 'downloading'
STATUS_EXTRACTING = 'extracting'
STATUS_COMPLETE = 'complete'
STATUS_FAILED = 'failed'

RELEASE_CHANNEL_BRANCH = 'branch'
RELEASE_TYPE_BRANCH = 'branch'


def progress_event(slug, status, progress=0.0, error=None):
    return {'slug': slug, 'status': status, 'progress': progress, 'error': error}


class AddonManager:
    def __init__(self, tracker, addon_dir=None, catalog_client=None, selector=None, extractor=None):
        """Initialize addon manager.

        Args:
            tracker: AddonTracker - Installed addon store and settings
            addon_dir: Optional str/Path - ESO AddOns directory; when omitted it
                is read from settings or detected per platform on each call
            catalog_client: Optional CatalogClient - Index access
            selector: Optional DownloadSourceSelector - Download strategy
            extractor: Optional ArchiveExtractor - Archive extraction
        """
        self.tracker = tracker
        self.addon_dir = Path(addon_dir) if addon_dir else None
        self.catalog_client = catalog_client or CatalogClient(tracker)
        self.selector = selector or DownloadSourceSelector()
        self.extractor = extractor or ArchiveExtractor()

    def get_addon_directory(self):
        """Get the AddOns directory.

        Returns:
            Path - Existing AddOns directory

        Raises:
            AddonDirectoryNotFoundError - Nothing configured or detected
        """
        if self.addon_dir is not None:
            if not self.addon_dir.is_dir():
                raise AddonDirectoryNotFoundError(f"Addon directory does not exist: {self.addon_dir}")
            return self.addon_dir
        path = get_addon_path_with_custom(self.tracker.get_setting('eso_addon_path'))
        if path is None:
            raise AddonDirectoryNotFoundError()
        return path

    def set_addon_directory(self, path):
        self.addon_dir = None
        return self.tracker.set_setting('eso_addon_path', str(path))

    def _handle_remove_readonly(self, func, path, exc):
        """Clear the read-only bit Windows leaves on extracted files, then retry."""
        os.chmod(path, stat.S_IWRITE)
        func(path)

    def _remove_directory_safe(self, path):
        """Remove a directory tree; a missing path is not an error.

        Raises:
            FileSystemError - Directory could not be removed
        """
        path = Path(path)
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError:
            try:
                shutil.rmtree(path, onerror=self._handle_remove_readonly)
            except OSError as e:
                raise FileSystemError(f"Could not remove {path}: {e}")

    def _target_path(self, addon_dir, folder_name):
        """Build the destination folder, refusing names that escape AddOns."""
        if not folder_name or folder_name in ('.', '..') or '/' in folder_name or '\\' in folder_name:
            raise FileSystemError(f"Invalid addon folder name: {folder_name!r}")
        return Path(addon_dir) / folder_name

    def _install_with_info(self, archive_path, addon_dir, install_info):
        """Extract straight into the folder named by the index.

        The existing folder is removed first. If extraction then fails the
        addon is left partially written; there is no rollback.

        Returns:
            Path - Installed addon folder
        """
        target_path = self._target_path(addon_dir, install_info.target_folder)
        self._remove_directory_safe(target_path)
        try:
            target_path.mkdir(parents=True)
        except OSError as e:
            raise FileSystemError(f"Could not create {target_path}: {e}")

        self.extractor.extract(archive_path, target_path, install_info)

        if not has_manifest(target_path):
            raise InvalidManifestError(
                f"No addon manifest found after extraction (target: {install_info.target_folder})"
            )
        return target_path

    def _install_legacy(self, archive_path, addon_dir, scratch_dir):
        """Install an archive that comes without index install info.

        The archive is extracted to scratch, the folder holding the manifest
        is located, and the addon is copied to a folder named after the
        manifest file, not the archive's (often version-suffixed) folder.

        Returns:
            Path - Installed addon folder
        """
        self.extractor.extract(archive_path, scratch_dir)

        addon_root = self.extractor.find_addon_root(scratch_dir)
        if addon_root is None:
            raise InvalidManifestError('No addon manifest found in archive')

        addon_name = addon_name_from_manifests(addon_root)
        target_path = self._target_path(addon_dir, addon_name)
        self._remove_directory_safe(target_path)
        try:
            shutil.copytree(addon_root, target_path)
        except (OSError, shutil.Error) as e:
            raise FileSystemError(f"Could not copy addon to {target_path}: {e}")
        return target_path

    def install_addon(self, slug, name, version, download_url, install_info=None, download_sources=None,
                      source_kind='catalog', source_repo=None, version_sort_key=None, commit_sha=None,
                      on_progress=None):
        """Download and install one addon.

        Progress events ``{slug, status, progress, error}`` go to on_progress
        as the install moves pending -> downloading -> extracting -> complete,
        or to failed from any step.

        Args:
            slug: str - Addon identifier
            name: str - Display name
            version: str - Version being installed
            download_url: str - Fallback download URL
            install_info: Optional InstallInfo/dict - Index extraction rules;
                None selects the manifest-discovery install
            download_sources: Optional list - DownloadSource alternatives
            source_kind: str - 'catalog', 'repository' or 'local'
            source_repo: Optional str - owner/repo
            version_sort_key: Optional int - Index sort key
            commit_sha: Optional str - Commit for branch installs
            on_progress: Optional callable(dict) - Progress event sink

        Returns:
            dict - Installation result with keys:
            - success: bool - whether installation succeeded
            - addon: InstalledRecord - stored record (on success)
            - message: str - success message
            - error: str - error message if failed
            - error_type: str - error kind if failed
        """
        def emit(status, progress=0.0, error=None):
            if on_progress:
                on_progress(progress_event(slug, status, progress, error))

        emit(STATUS_PENDING)
        try:
            try:
                source_kind = normalize_source_kind(source_kind)
            except ValueError as e:
                raise AddonManagerError(str(e))
            if isinstance(install_info, dict):
                install_info = InstallInfo.from_dict(install_info)
            addon_dir = self.get_addon_directory()

            logger.info("Installing %s %s", slug, version)
            with tempfile.TemporaryDirectory(prefix='eso-addon-') as temp_dir:
                staging_file = Path(temp_dir) / 'download.zip'

                emit(STATUS_DOWNLOADING)
                self.selector.select_and_fetch(
                    download_sources or [],
                    download_url,
                    staging_file,
                    lambda fraction: emit(STATUS_DOWNLOADING, fraction),
                )

                emit(STATUS_EXTRACTING)
                if install_info is not None:
                    installed_path = self._install_with_info(staging_file, addon_dir, install_info)
                else:
                    installed_path = self._install_legacy(staging_file, addon_dir, Path(temp_dir) / 'extracted')

            manifest_path = get_manifest_path(installed_path)
            if manifest_path is None:
                raise InvalidManifestError(
                    f"Could not find addon manifest after extraction. "
                    f"Check that '{installed_path}' contains a valid ESO addon."
                )

            record = self.tracker.upsert_installed(InstalledRecord(
                slug=slug,
                name=name,
                installed_version=version,
                manifest_path=str(manifest_path),
                source_kind=source_kind,
                source_repo=source_repo,
                version_sort_key=version_sort_key,
                commit_sha=commit_sha,
            ))
        except (AddonManagerError, OSError) as e:
            logger.error("Install of %s failed: %s", slug, e)
            emit(STATUS_FAILED, 0.0, str(e))
            return error_result(e)

        emit(STATUS_COMPLETE, 1.0)
        logger.info("Installed %s to %s", slug, installed_path)
        return {'success': True, 'addon': record, 'message': f'Addon "{name}" installed successfully'}

    def install_catalog_entry(self, entry, on_progress=None):
        """Install an index entry using its release, sources and install info."""
        url, version = download_target(entry)
        if url is None and not entry.download_sources:
            return error_result(AddonManagerError(f'No download available for "{entry.name}"'))

        release = entry.latest_release
        return self.install_addon(
            entry.slug,
            entry.name,
            version or (release.version if release else 'unknown'),
            url,
            install_info=entry.install_info,
            download_sources=entry.download_sources,
            source_kind='catalog',
            source_repo=entry.source_repo,
            version_sort_key=entry.version_sort_key,
            commit_sha=release.commit_sha if release else None,
            on_progress=on_progress,
        )

    def _catalog(self, catalog=None):
        if catalog is not None:
            return catalog
        catalog = self.catalog_client.get_cached_index()
        if catalog is None:
            raise AddonManagerError('No cached index available. Please refresh the index.')
        return catalog

    def resolve_addon_dependencies(self, slug, catalog=None):
        """Work out what must be installed before an addon.

        Args:
            slug: str - Addon to install
            catalog: Optional list - CatalogEntry objects; defaults to the cached index

        Returns:
            DependencyResult - Resolution result

        Raises:
            AddonManagerError - No index available
        """
        catalog = self._catalog(catalog)
        return DependencyResolver(catalog, self.tracker.get_all_installed()).resolve(slug)

    def install_with_dependencies(self, slug, catalog=None, on_progress=None):
        """Install an addon after its missing required dependencies.

        Dependencies are installed deepest first; the first failure stops
        the run. Addons installed before the failure stay installed.

        Returns:
            dict - Result with keys success, installed (slugs),
            already_installed, unresolved, and error on failure
        """
        try:
            catalog = self._catalog(catalog)
        except AddonManagerError as e:
            return error_result(e)

        resolver = DependencyResolver(catalog, self.tracker.get_all_installed())
        root = resolver.find_in_catalog(slug)
        if root is None:
            return error_result(AddonNotFoundError(slug))

        plan = resolver.resolve(root.slug)
        installed = []
        for dep in plan.resolved:
            entry = resolver.find_in_catalog(dep.slug)
            result = self.install_catalog_entry(entry, on_progress=on_progress)
            if not result['success']:
                result['error'] = f"Dependency {dep.slug} failed: {result['error']}"
                result.update(installed=installed, already_installed=plan.already_installed,
                              unresolved=plan.unresolved)
                return result
            installed.append(dep.slug)

        result = self.install_catalog_entry(root, on_progress=on_progress)
        if result['success']:
            installed.append(root.slug)
        result.update(installed=installed, already_installed=plan.already_installed,
                      unresolved=plan.unresolved)
        return result

    def uninstall_addon(self, slug):
        """Remove an installed addon's folder and its record.

        Returns:
            dict - Removal result with keys success, message or error/error_type
        """
        try:
            record = self.tracker.get_installed(slug)
            if record is None:
                raise AddonNotFoundError(slug)

            manifest_path = Path(record.manifest_path)
            addon_folder = manifest_path.parent
            if not record.manifest_path or addon_folder == Path(addon_folder.anchor):
                raise FileSystemError(f"Invalid manifest path: {record.manifest_path!r}")

            self._remove_directory_safe(addon_folder)
            self.tracker.delete_installed(slug)
        except (AddonManagerError, OSError) as e:
            return error_result(e)

        logger.info("Uninstalled %s", slug)
        return {'success': True, 'message': f'Addon "{record.name}" removed successfully'}

    def add_custom_repo(self, repo, branch=None, release_type=None):
        """Track a GitHub repository as an addon source.

        Args:
            repo: str - owner/repo
            branch: Optional str - Branch for branch installs (default 'main')
            release_type: Optional str - 'release' (default) or 'branch'

        Returns:
            dict - Result with keys success, repo (CustomRepo) and message,
            or error/error_type
        """
        token = self.tracker.get_setting('github_token')
        try:
            try:
                release_type = normalize_release_type(release_type)
            except ValueError as e:
                raise AddonManagerError(str(e))

            validate_github_repo(repo, token=token, required=True)
            if release_type != RELEASE_TYPE_BRANCH and get_github_release_url(repo, token=token) is None:
                raise AddonManagerError(f"No releases found for {repo}. Try using branch mode instead.")

            custom = self.tracker.upsert_custom_repo(repo, branch=branch or 'main', release_type=release_type)
        except AddonManagerError as e:
            return error_result(e)

        logger.info("Tracking repository %s (%s)", repo, custom.release_type)
        return {'success': True, 'repo': custom, 'message': f'Repository "{repo}" added'}

    def get_custom_repos(self):
        return self.tracker.get_all_custom_repos()

    def remove_custom_repo(self, repo):
        """Stop tracking a repository. Installed addons from it are kept."""
        try:
            if not self.tracker.delete_custom_repo(repo):
                raise AddonManagerError(f"Repository not tracked: {repo}")
        except AddonManagerError as e:
            return error_result(e)
        return {'success': True, 'message': f'Repository "{repo}" removed'}

    def get_repository_info(self, repo):
        """Look up a repository's name, default branch, stars and release status."""
        try:
            info = get_github_repo_info(repo, token=self.tracker.get_setting('github_token'))
        except AddonManagerError as e:
            return error_result(e)
        return {'success': True, 'info': info}

    def install_from_repository(self, repo, release_type=None, branch=None, on_progress=None):
        """Install an addon straight from a GitHub repository.

        The latest release asset is used in release mode, the branch archive
        in branch mode. Settings of a tracked repository apply when no mode
        or branch is given. The folder is named after the addon manifest.

        Args:
            repo: str - owner/repo
            release_type: Optional str - 'release' or 'branch'
            branch: Optional str - Branch for branch mode
            on_progress: Optional callable(dict) - Progress event sink

        Returns:
            dict - Same shape as install_addon
        """
        name = repo.rstrip('/').split('/')[-1]
        slug = name.lower().replace(' ', '-')
        custom = self.tracker.get_custom_repo(repo)

        try:
            try:
                release_type = normalize_release_type(release_type or (custom.release_type if custom else None))
            except ValueError as e:
                raise AddonManagerError(str(e))

            if release_type == RELEASE_TYPE_BRANCH:
                branch = branch or (custom.branch if custom else 'main')
                download_url = get_github_branch_url(repo, branch)
                version = f"{branch}-latest"
            else:
                release = get_github_release_info(repo, token=self.tracker.get_setting('github_token'))
                if release is None:
                    raise AddonManagerError(f"No releases found for {repo}")
                download_url = release['download_url']
                version = normalize_version(release['tag_name'])
        except AddonManagerError as e:
            if on_progress:
                on_progress(progress_event(slug, STATUS_FAILED, 0.0, str(e)))
            return error_result(e)

        return self.install_addon(
            slug,
            name,
            version,
            download_url,
            source_kind='repository',
            source_repo=repo,
            on_progress=on_progress,
        )

    def scan_local_addons(self):
        """Scan the AddOns directory for every addon manifest.

        Returns:
            list - dicts with name, path (folder), manifest_path, manifest
            (parsed fields) and has_saved_variables, sorted by name
        """
        addon_dir = self.get_addon_directory()
        saved_variables_dir = get_saved_variables_path(addon_dir)
        addons = []

        for folder in sorted(addon_dir.iterdir()):
            if not folder.is_dir() or folder.name.startswith('.'):
                continue
            for manifest_path in find_manifests(folder):
                try:
                    manifest = ManifestParser(manifest_path).parse()
                except InvalidManifestError as e:
                    logger.debug("Skipping %s: %s", manifest_path, e)
                    continue
                has_saved_variables = bool(manifest.saved_variables) and (
                    saved_variables_dir / f"{manifest.saved_variables[0]}.lua"
                ).exists()
                addons.append({
                    'name': manifest.title,
                    'path': str(folder),
                    'manifest_path': str(manifest_path),
                    'manifest': manifest.to_dict(),
                    'has_saved_variables': has_saved_variables,
                })

        addons.sort(key=lambda a: a['name'].lower())
        return addons

    def get_installed_addons(self):
        """Get tracked addons, importing untracked folders as local addons.

        Returns:
            list - InstalledRecord objects sorted by name
        """
        records = self.tracker.get_all_installed()
        try:
            scanned = self.scan_local_addons()
        except AddonDirectoryNotFoundError:
            return records

        known_manifests = {r.manifest_path for r in records}
        known_folders = {Path(r.manifest_path).parent.name.lower() for r in records if r.manifest_path}

        for addon in scanned:
            folder = Path(addon['path']).name
            if addon['manifest_path'] in known_manifests or folder.lower() in known_folders:
                continue
            record = self.tracker.upsert_installed(InstalledRecord(
                slug=folder.lower(),
                name=addon['name'],
                installed_version=addon['manifest']['version'] or 'unknown',
                manifest_path=addon['manifest_path'],
                source_kind='local',
            ))
            known_folders.add(folder.lower())
            records.append(record)

        records.sort(key=lambda r: r.name.lower())
        return records

    def _catalog_update_available(self, record, entry):
        """Decide whether an index addon is outdated.

        Branch-channel addons compare commit SHAs; others prefer the index
        sort key and fall back to version string comparison.
        """
        release = entry.latest_release
        if entry.release_channel == RELEASE_CHANNEL_BRANCH:
            if record.commit_sha and release and release.commit_sha:
                return record.commit_sha != release.commit_sha
            return False

        if record.version_sort_key is not None and entry.version_sort_key is not None:
            return entry.version_sort_key > record.version_sort_key

        if release:
            return is_update_available(record.installed_version, release.version)
        return False

    def check_updates(self, catalog=None):
        """Check every installed addon for an available update.

        Args:
            catalog: Optional list - CatalogEntry objects; defaults to the cached index

        Returns:
            list - dicts with slug, name, current_version, new_version,
            download_url, source_kind, source_repo, install_info
        """
        if catalog is None:
            catalog = self.catalog_client.get_cached_index() or []
        by_slug = {entry.slug: entry for entry in catalog}
        token = self.tracker.get_setting('github_token')
        custom_repos = {custom.repo: custom for custom in self.tracker.get_all_custom_repos()}
        updates = []

        for record in self.tracker.get_all_installed():
            if record.source_kind == 'catalog':
                entry = by_slug.get(record.slug)
                if entry is None or not entry.latest_release:
                    continue
                if self._catalog_update_available(record, entry):
                    updates.append({
                        'slug': record.slug,
                        'name': record.name,
                        'current_version': record.installed_version,
                        'new_version': entry.latest_release.version,
                        'download_url': entry.latest_release.download_url,
                        'source_kind': 'catalog',
                        'source_repo': entry.source_repo,
                        'install_info': entry.install_info,
                    })
            elif record.source_kind == 'repository' and record.source_repo:
                custom = custom_repos.get(record.source_repo)
                if custom is not None and custom.release_type == RELEASE_TYPE_BRANCH:
                    # Branch-tracked repositories have no release to compare against
                    continue
                try:
                    release = get_github_release_info(record.source_repo, token=token)
                except AddonManagerError as e:
                    logger.warning("Update check for %s failed: %s", record.slug, e)
                    continue
                if not release:
                    continue
                new_version = normalize_version(release['tag_name'])
                if is_update_available(record.installed_version, new_version):
                    updates.append({
                        'slug': record.slug,
                        'name': record.name,
                        'current_version': record.installed_version,
                        'new_version': new_version,
                        'download_url': release['download_url'],
                        'source_kind': 'repository',
                        'source_repo': record.source_repo,
                        'install_info': None,
                    })
            # Local addons have no update source

        return updates
