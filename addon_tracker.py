"""
Addon Tracker
Manages eso-addon-manager.json: installed addons, settings and the index cache
"""

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path

from addon_paths import get_app_data_path
from catalog_models import CustomRepo, InstalledRecord
from errors import FileSystemError

logger = logging.getLogger(__name__)

TRACKER_FILENAME = 'eso-addon-manager.json'

DEFAULT_SETTINGS = {
    'eso_addon_path': None,
    'index_url': None,
    'check_updates_on_startup': True,
    'auto_update': False,
    'github_token': None,
}


class AddonTracker:
    def __init__(self, data_dir=None):
        """Initialize tracker.

        Args:
            data_dir: Optional str/Path - Directory for the tracker file;
                defaults to the platform app data directory
        """
        self.data_dir = Path(data_dir) if data_dir else get_app_data_path()
        self.tracker_file = self.data_dir / TRACKER_FILENAME
        # Held only around in-memory updates and the file write, never across I/O elsewhere
        self._lock = threading.Lock()
        self.data = self._load()

    def _load(self):
        """Load tracker data, falling back to an empty structure."""
        if self.tracker_file.exists():
            try:
                with open(self.tracker_file, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    data.setdefault('addons', {})
                    data.setdefault('settings', {})
                    data.setdefault('custom_repos', {})
                    return data
                logger.warning("Ignoring malformed tracker file %s", self.tracker_file)
            except (OSError, ValueError) as e:
                logger.warning("Could not read %s: %s", self.tracker_file, e)
        return self._create_empty_structure()

    def _create_empty_structure(self):
        return {
            'version': '1.0',
            'last_updated': datetime.now().isoformat(),
            'addons': {},
            'settings': {},
            'custom_repos': {},
            'index_cache': None,
        }

    def _save_locked(self):
        self.data['last_updated'] = datetime.now().isoformat()
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            tmp_file = self.tracker_file.with_suffix('.json.tmp')
            with open(tmp_file, 'w', encoding='utf-8') as f:
                json.dump(self.data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_file, self.tracker_file)
        except OSError as e:
            raise FileSystemError(f"Failed to save {self.tracker_file.name}: {e}")

    def save(self):
        with self._lock:
            self._save_locked()

    # Installed addons

    def get_all_installed(self):
        """Get every installed addon record, sorted by name."""
        with self._lock:
            records = [InstalledRecord.from_dict(data) for data in self.data['addons'].values()]
        records.sort(key=lambda r: r.name.lower())
        return records

    def get_installed(self, slug):
        with self._lock:
            data = self.data['addons'].get(slug)
        return InstalledRecord.from_dict(data) if data else None

    def upsert_installed(self, record):
        """Insert a record or update the existing one with the same slug.

        The original install time is kept on update.

        Args:
            record: InstalledRecord - Record to store

        Returns:
            InstalledRecord - The stored record

        Raises:
            FileSystemError - Tracker file could not be written
        """
        with self._lock:
            previous = self.data['addons'].get(record.slug)
            if previous and previous.get('installed_at'):
                record.installed_at = previous['installed_at']
            record.updated_at = datetime.now().isoformat()
            backup = dict(previous) if previous else None
            self.data['addons'][record.slug] = record.to_dict()
            try:
                self._save_locked()
            except FileSystemError:
                # Keep memory consistent with disk
                if backup is None:
                    del self.data['addons'][record.slug]
                else:
                    self.data['addons'][record.slug] = backup
                raise
        return record

    def delete_installed(self, slug):
        """Remove a record. Returns True if one was removed."""
        with self._lock:
            if slug not in self.data['addons']:
                return False
            del self.data['addons'][slug]
            self._save_locked()
        return True

    # Custom repositories

    def get_all_custom_repos(self):
        """Get every tracked GitHub repository, sorted by owner/repo."""
        with self._lock:
            repos = [CustomRepo.from_dict(data) for data in self.data['custom_repos'].values()]
        repos.sort(key=lambda r: r.repo.lower())
        return repos

    def get_custom_repo(self, repo):
        with self._lock:
            data = self.data['custom_repos'].get(repo)
        return CustomRepo.from_dict(data) if data else None

    def upsert_custom_repo(self, repo, branch='main', release_type='release'):
        """Track a repository, or update the branch and release type of a tracked one.

        Args:
            repo: str - owner/repo
            branch: str - Branch for branch installs
            release_type: str - 'release' or 'branch'

        Returns:
            CustomRepo - The stored repository

        Raises:
            FileSystemError - Tracker file could not be written
        """
        with self._lock:
            previous = self.data['custom_repos'].get(repo)
            custom = CustomRepo(
                repo,
                branch=branch,
                release_type=release_type,
                added_at=previous.get('added_at') if previous else None,
                last_checked=previous.get('last_checked') if previous else None,
            )
            self.data['custom_repos'][repo] = custom.to_dict()
            try:
                self._save_locked()
            except FileSystemError:
                if previous is None:
                    del self.data['custom_repos'][repo]
                else:
                    self.data['custom_repos'][repo] = previous
                raise
        return custom

    def delete_custom_repo(self, repo):
        """Stop tracking a repository. Returns True if it was tracked."""
        with self._lock:
            if repo not in self.data['custom_repos']:
                return False
            del self.data['custom_repos'][repo]
            self._save_locked()
        return True

    # Settings

    def get_setting(self, key, default=None):
        with self._lock:
            settings = self.data.setdefault('settings', {})
            if key in settings and settings[key] is not None:
                return settings[key]
        if default is None:
            default = DEFAULT_SETTINGS.get(key)
        if key == 'github_token' and not default:
            return os.environ.get('GITHUB_TOKEN')
        return default

    def set_setting(self, key, value):
        """Set a setting value. Returns False if it could not be saved."""
        with self._lock:
            self.data.setdefault('settings', {})[key] = value
            try:
                self._save_locked()
            except FileSystemError as e:
                logger.error("Error saving setting %s: %s", key, e)
                return False
        return True

    def get_all_settings(self):
        settings = dict(DEFAULT_SETTINGS)
        with self._lock:
            settings.update({k: v for k, v in self.data.get('settings', {}).items() if v is not None})
        return settings

    def reset_settings(self):
        with self._lock:
            self.data['settings'] = {}
            self._save_locked()
        return dict(DEFAULT_SETTINGS)

    # Index cache

    def get_cached_index(self):
        """Get the cached index.

        Returns:
            tuple - (raw json str, fetched_at ISO str, etag or None), or None
        """
        with self._lock:
            cache = self.data.get('index_cache')
        if not cache or 'data' not in cache:
            return None
        return cache['data'], cache.get('fetched_at'), cache.get('etag')

    def update_cached_index(self, data, etag=None):
        with self._lock:
            self.data['index_cache'] = {
                'data': data,
                'fetched_at': datetime.now().astimezone().isoformat(),
                'etag': etag,
            }
            self._save_locked()
