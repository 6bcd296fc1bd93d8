"""
Catalog Client
Fetches the addon index and keeps an ETag-aware cached copy
"""

import json
import logging
from collections import Counter
from datetime import datetime, timedelta

import requests

from catalog_models import CatalogEntry
from download_manager import USER_AGENT
from errors import AddonManagerError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_INDEX_URL = 'https://xop.co/eso-addon-index/'
CACHE_MAX_AGE = timedelta(hours=1)


def parse_index(raw):
    """Parse index JSON text into catalog entries.

    Args:
        raw: str - Index document ``{"addons": [...]}``

    Returns:
        list - CatalogEntry objects

    Raises:
        AddonManagerError - Document is not valid index JSON
    """
    try:
        document = json.loads(raw)
        return [CatalogEntry.from_dict(item) for item in document.get('addons', [])]
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        raise AddonManagerError(f"Failed to parse index: {e}")


class CatalogClient:
    def __init__(self, tracker, session=None):
        """Initialize catalog client.

        Args:
            tracker: AddonTracker - Holds settings and the index cache
            session: Optional requests.Session - HTTP session to use
        """
        self.tracker = tracker
        self.session = session or requests.Session()

    @property
    def index_url(self):
        return self.tracker.get_setting('index_url') or DEFAULT_INDEX_URL

    def _cache_is_fresh(self, fetched_at):
        try:
            fetched = datetime.fromisoformat(fetched_at)
        except (TypeError, ValueError):
            return False
        if fetched.tzinfo is None:
            fetched = fetched.astimezone()
        return datetime.now().astimezone() - fetched < CACHE_MAX_AGE

    def fetch_index(self, force=False):
        """Get the index, from cache when fresh, else from the network.

        Args:
            force: bool - Ignore cache freshness

        Returns:
            list - CatalogEntry objects

        Raises:
            NetworkError - Index could not be fetched
            AddonManagerError - Index could not be parsed
        """
        cached = self.tracker.get_cached_index()
        if cached and not force and self._cache_is_fresh(cached[1]):
            try:
                return parse_index(cached[0])
            except AddonManagerError:
                logger.warning("Cached index is unreadable, refetching")

        headers = {'User-Agent': USER_AGENT}
        if cached and cached[2]:
            headers['If-None-Match'] = cached[2]

        try:
            response = self.session.get(self.index_url, headers=headers, timeout=30)
        except requests.RequestException as e:
            raise NetworkError(f"Failed to fetch index: {e}")

        if response.status_code == 304 and cached:
            logger.info("Index not modified since last fetch")
            self.tracker.update_cached_index(cached[0], cached[2])
            return parse_index(cached[0])

        if response.status_code != 200:
            raise NetworkError(f"Failed to fetch index: HTTP {response.status_code}",
                               status_code=response.status_code)

        data = response.text
        entries = parse_index(data)
        self.tracker.update_cached_index(data, response.headers.get('ETag'))
        logger.info("Fetched index with %d addons", len(entries))
        return entries

    def get_cached_index(self):
        cached = self.tracker.get_cached_index()
        if not cached:
            return None
        return parse_index(cached[0])

    def get_index_stats(self):
        """Summarise the cached index.

        Returns:
            dict - total_addons, categories (list of (name, count)), fetched_at
        """
        cached = self.tracker.get_cached_index()
        if not cached:
            return {'total_addons': 0, 'categories': [], 'fetched_at': ''}

        entries = parse_index(cached[0])
        categories = Counter(entry.category for entry in entries if entry.category)
        return {
            'total_addons': len(entries),
            'categories': sorted(categories.items()),
            'fetched_at': cached[1] or '',
        }
