"""
Download Manager
Streams addon archives and picks between alternative download sources
"""

import logging
import os
from urllib.parse import urlparse

import requests

from errors import DownloadError, NetworkError, RepoNotFoundError

logger = logging.getLogger(__name__)

USER_AGENT = 'eso-addon-manager'
CHUNK_SIZE = 8192
REQUEST_TIMEOUT = 30
ARCHIVE_EXTENSION = '.zip'

# Source types that always serve a complete addon bundle, tried first in listed order
DIRECT_ARCHIVE_TYPES = ('github_archive', 'github_release', 'archive', 'zip')

PRIORITY_DIRECT = 0
PRIORITY_ARCHIVE_URL = 1
PRIORITY_LEGACY = 2


def _github_headers(token=None):
    headers = {
        'User-Agent': USER_AGENT,
        'Accept': 'application/vnd.github.v3+json',
    }
    token = token or os.environ.get('GITHUB_TOKEN')
    if token:
        headers['Authorization'] = f'token {token}'
    return headers


def stream_download(url, sink_path, on_progress=None, session=None):
    """Download a URL into a file, reporting fractional progress.

    Args:
        url: str - URL to GET
        sink_path: str/Path - File to write (truncated first)
        on_progress: Optional callable(float) - Called with downloaded/total
            while the total is known, and with 1.0 when the body is complete
        session: Optional requests.Session - HTTP session to use

    Raises:
        NetworkError - Connection failure or non-2xx response
    """
    http = session or requests
    try:
        response = http.get(url, headers={'User-Agent': USER_AGENT}, stream=True, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        raise NetworkError(f"Request to {url} failed: {e}")

    try:
        response.raise_for_status()
    except requests.HTTPError:
        # Release the pooled connection held by the unread streamed body
        response.close()
        raise NetworkError(f"HTTP {response.status_code} for {url}", status_code=response.status_code)

    try:
        total = int(response.headers.get('Content-Length') or 0)
    except ValueError:
        total = 0

    downloaded = 0
    try:
        with open(sink_path, 'wb') as f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                f.write(chunk)
                downloaded += len(chunk)
                if total > 0 and on_progress:
                    on_progress(downloaded / total)
    except requests.RequestException as e:
        raise NetworkError(f"Download of {url} interrupted: {e}")
    finally:
        response.close()

    if on_progress:
        on_progress(1.0)


def rank_sources(sources, legacy_url=None):
    """Order download candidates by the source priority table.

    Direct archive types come first in listed order. Other types are used
    only when their URL ends in .zip, since they may serve loose files. The
    legacy URL, if any, comes last. Duplicate URLs are dropped.

    Args:
        sources: list - DownloadSource objects in catalog order
        legacy_url: Optional str - Single fallback URL

    Returns:
        list - URLs to try, best first
    """
    ranked = []
    for position, source in enumerate(sources or []):
        if not source.url:
            continue
        if source.source_type in DIRECT_ARCHIVE_TYPES:
            ranked.append((PRIORITY_DIRECT, position, source.url))
        elif urlparse(source.url).path.lower().endswith(ARCHIVE_EXTENSION):
            ranked.append((PRIORITY_ARCHIVE_URL, position, source.url))
    if legacy_url:
        ranked.append((PRIORITY_LEGACY, len(ranked), legacy_url))

    urls = []
    for _, _, url in sorted(ranked):
        if url not in urls:
            urls.append(url)
    return urls


class _MonotonicProgress:
    """Clamp progress to [0, 1] and never let it move backwards."""

    def __init__(self, sink):
        self.sink = sink
        self.value = 0.0

    def __call__(self, fraction):
        fraction = min(max(float(fraction), 0.0), 1.0)
        if fraction < self.value:
            return
        self.value = fraction
        if self.sink:
            self.sink(fraction)


class DownloadSourceSelector:
    def __init__(self, fetch=None):
        """Initialize source selector.

        Args:
            fetch: Optional callable(url, sink_path, on_progress) - Byte
                fetching primitive; defaults to stream_download
        """
        self.fetch = fetch or stream_download

    def select_and_fetch(self, sources, legacy_url, sink_path, on_progress=None):
        """Try every candidate source until one downloads successfully.

        No retries or delays: each candidate is attempted once, in ranked
        order.

        Args:
            sources: list - DownloadSource objects
            legacy_url: Optional str - Fallback URL
            sink_path: str/Path - Staging file to write
            on_progress: Optional callable(float) - Progress sink

        Returns:
            str - URL that succeeded

        Raises:
            DownloadError - No candidates, or every candidate failed
        """
        candidates = rank_sources(sources, legacy_url)
        if not candidates:
            raise DownloadError('No download source available')

        last_error = None
        for url in candidates:
            # Fresh clamp per attempt; a failed attempt must not pin progress high
            progress = _MonotonicProgress(on_progress)
            try:
                self.fetch(url, sink_path, progress)
            except (NetworkError, OSError) as e:
                last_error = e
                logger.warning("Download from %s failed: %s", url, e)
                _truncate(sink_path)
                continue

            if progress.value < 1.0:
                progress(1.0)
            logger.info("Downloaded %s", url)
            return url

        raise DownloadError(f"All download sources failed: {last_error}")


def _truncate(path):
    try:
        with open(path, 'wb'):
            pass
    except OSError:
        logger.debug("Could not truncate %s", path)


def get_github_release_info(repo, token=None, session=None):
    """Fetch the latest release of a GitHub repository.

    Args:
        repo: str - owner/repo
        token: Optional str - GitHub token
        session: Optional requests.Session

    Returns:
        dict - {'tag_name': str, 'download_url': str}, or None if the
        repository has no usable release
    """
    http = session or requests
    api_url = f"https://api.github.com/repos/{repo}/releases/latest"
    try:
        response = http.get(api_url, headers=_github_headers(token), timeout=10)
    except requests.RequestException as e:
        raise NetworkError(f"GitHub request failed: {e}")

    if response.status_code == 404:
        return None
    if response.status_code == 403:
        raise NetworkError('GitHub API rate limit exceeded', status_code=403)
    if response.status_code != 200:
        raise NetworkError(f"GitHub API returned {response.status_code}", status_code=response.status_code)

    data = response.json()
    download_url = None
    for asset in data.get('assets') or []:
        if asset.get('name', '').lower().endswith(ARCHIVE_EXTENSION):
            download_url = asset.get('browser_download_url')
            break
    if not download_url:
        download_url = data.get('zipball_url')
    if not download_url:
        return None
    return {'tag_name': data.get('tag_name') or '', 'download_url': download_url}


def get_github_release_url(repo, token=None, session=None):
    info = get_github_release_info(repo, token=token, session=session)
    return info['download_url'] if info else None


def get_github_branch_url(repo, branch):
    return f"https://github.com/{repo}/archive/refs/heads/{branch}.zip"


def get_github_repo_info(repo, token=None, session=None):
    """Fetch display information about a GitHub repository.

    Args:
        repo: str - owner/repo
        token: Optional str - GitHub token
        session: Optional requests.Session

    Returns:
        dict - name, description, default_branch, stars, updated_at, has_releases

    Raises:
        RepoNotFoundError - Repository does not exist
        NetworkError - GitHub could not be reached
    """
    http = session or requests
    headers = _github_headers(token)
    try:
        response = http.get(f"https://api.github.com/repos/{repo}", headers=headers, timeout=10)
    except requests.RequestException as e:
        raise NetworkError(f"GitHub request failed: {e}")

    if response.status_code == 404:
        raise RepoNotFoundError(repo)
    if response.status_code == 403:
        raise NetworkError('GitHub API rate limit exceeded', status_code=403)
    if response.status_code != 200:
        raise NetworkError(f"GitHub API returned {response.status_code}", status_code=response.status_code)
    data = response.json()

    try:
        release = http.get(f"https://api.github.com/repos/{repo}/releases/latest", headers=headers, timeout=10)
        has_releases = release.status_code == 200
    except requests.RequestException as e:
        logger.debug("Release lookup for %s failed: %s", repo, e)
        has_releases = False

    return {
        'name': data.get('name') or '',
        'description': data.get('description'),
        'default_branch': data.get('default_branch') or 'main',
        'stars': data.get('stargazers_count') or 0,
        'updated_at': data.get('updated_at'),
        'has_releases': has_releases,
    }


def validate_github_repo(repo, token=None, session=None, required=False):
    """Check that a GitHub repository exists.

    Args:
        repo: str - owner/repo
        token: Optional str - GitHub token
        session: Optional requests.Session
        required: bool - Raise RepoNotFoundError instead of returning False

    Returns:
        bool - True if the repository answered with a 2xx status
    """
    http = session or requests
    try:
        response = http.get(f"https://api.github.com/repos/{repo}", headers=_github_headers(token), timeout=10)
    except requests.RequestException as e:
        raise NetworkError(f"GitHub request failed: {e}")

    exists = 200 <= response.status_code < 300
    if not exists and required:
        raise RepoNotFoundError(repo)
    return exists
