"""
Install Workers
Qt worker threads that run installs off the UI thread and report progress
"""

import threading

from PyQt6.QtCore import QThread, pyqtSignal

# Slugs with an install in flight; two installs of one slug would share a target folder
_ACTIVE_SLUGS = set()
_ACTIVE_LOCK = threading.Lock()


def _claim_slug(slug):
    with _ACTIVE_LOCK:
        if slug in _ACTIVE_SLUGS:
            return False
        _ACTIVE_SLUGS.add(slug)
        return True


def _release_slug(slug):
    with _ACTIVE_LOCK:
        _ACTIVE_SLUGS.discard(slug)


def is_install_running(slug):
    with _ACTIVE_LOCK:
        return slug in _ACTIVE_SLUGS


class InstallWorker(QThread):
    """Thread worker for a single addon installation.

    Signals:
        progress(event) - Progress event dict {slug, status, progress, error}
        finished(success, message) - Installation complete
    """
    progress = pyqtSignal(dict)
    finished = pyqtSignal(bool, str)

    def __init__(self, addon_manager, slug, name, version, download_url, install_info=None,
                 download_sources=None, source_kind='catalog', source_repo=None,
                 version_sort_key=None, commit_sha=None):
        """Initialize installation worker.

        Args:
            addon_manager: AddonManager - Addon manager instance
            slug: str - Addon identifier
            name: str - Display name
            version: str - Version being installed
            download_url: str - Fallback download URL
            install_info: Optional InstallInfo - Index extraction rules
            download_sources: Optional list - Alternative DownloadSources
            source_kind: str - 'catalog', 'repository' or 'local'
            source_repo: Optional str - owner/repo
            version_sort_key: Optional int - Index sort key
            commit_sha: Optional str - Commit for branch installs
        """
        super().__init__()
        self.addon_manager = addon_manager
        self.slug = slug
        self.name = name
        self.version = version
        self.download_url = download_url
        self.install_info = install_info
        self.download_sources = download_sources
        self.source_kind = source_kind
        self.source_repo = source_repo
        self.version_sort_key = version_sort_key
        self.commit_sha = commit_sha
        self.result = None

    def run(self):
        """Execute the installation.

        Emits: progress(event) during the install, then finished(success, message)
        """
        if not _claim_slug(self.slug):
            message = f'An install of "{self.name}" is already running'
            self.progress.emit({'slug': self.slug, 'status': 'failed', 'progress': 0.0, 'error': message})
            self.finished.emit(False, message)
            return

        try:
            self.result = self.addon_manager.install_addon(
                self.slug,
                self.name,
                self.version,
                self.download_url,
                install_info=self.install_info,
                download_sources=self.download_sources,
                source_kind=self.source_kind,
                source_repo=self.source_repo,
                version_sort_key=self.version_sort_key,
                commit_sha=self.commit_sha,
                on_progress=self.progress.emit,
            )
        finally:
            _release_slug(self.slug)

        if self.result['success']:
            self.finished.emit(True, self.result['message'])
        else:
            self.finished.emit(False, self.result['error'])


class PlanInstallWorker(QThread):
    """Worker thread installing an addon together with its dependencies.

    Signals:
        progress(event) - Progress event dict for whichever addon is installing
        log(message) - Human-readable step log
        finished(installed, failed) - Count of installed addons and failures
    """
    progress = pyqtSignal(dict)
    log = pyqtSignal(str)
    finished = pyqtSignal(int, int)

    def __init__(self, addon_manager, slug, catalog=None):
        """Initialize plan installation worker.

        Args:
            addon_manager: AddonManager - Addon manager instance
            slug: str - Addon to install after its dependencies
            catalog: Optional list - CatalogEntry objects; defaults to the cached index
        """
        super().__init__()
        self.addon_manager = addon_manager
        self.slug = slug
        self.catalog = catalog
        self.result = None

    def _on_progress(self, event):
        if event['status'] == 'pending':
            self.log.emit(f"Installing {event['slug']}...")
        self.progress.emit(event)

    def run(self):
        """Resolve and install the plan, deepest dependency first.

        Emits: progress(event), log(message), finished(installed, failed)
        """
        if not _claim_slug(self.slug):
            self.log.emit(f"An install of {self.slug} is already running")
            self.finished.emit(0, 1)
            return

        try:
            self.result = self.addon_manager.install_with_dependencies(
                self.slug, catalog=self.catalog, on_progress=self._on_progress
            )
        finally:
            _release_slug(self.slug)

        installed = self.result.get('installed', [])
        for dep in self.result.get('unresolved', []):
            self.log.emit(f"{dep} is not in the index, install it manually")

        if self.result['success']:
            self.log.emit(f"{self.slug} installed successfully")
            self.finished.emit(len(installed), 0)
        else:
            self.log.emit(f"{self.slug} failed: {self.result.get('error', 'Unknown error')}")
            self.finished.emit(len(installed), 1)
