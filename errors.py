"""
Errors
Exception types raised by the addon manager core
"""


class AddonManagerError(Exception):
    """Base error for every failure the addon manager reports.

    The message is meant to be shown to the user as-is; ``kind`` is a short
    machine-readable tag copied into result dicts as ``error_type``.
    """
    kind = 'error'

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message


class NetworkError(AddonManagerError):
    """Remote host unreachable or HTTP request failed."""
    kind = 'network'

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ArchiveError(AddonManagerError):
    """Archive is corrupt or cannot be read."""
    kind = 'archive'


class InvalidManifestError(AddonManagerError):
    """Addon manifest is missing or cannot be parsed."""
    kind = 'invalid_manifest'


class AddonNotFoundError(AddonManagerError):
    kind = 'addon_not_found'

    def __init__(self, slug):
        super().__init__(f'Addon not found: {slug}')
        self.slug = slug


class RepoNotFoundError(AddonManagerError):
    kind = 'repo_not_found'

    def __init__(self, repo):
        super().__init__(f'Repository not found: {repo}')
        self.repo = repo


class DownloadError(AddonManagerError):
    """Every candidate download source failed."""
    kind = 'download'


class FileSystemError(AddonManagerError):
    kind = 'file_system'


class AddonDirectoryNotFoundError(AddonManagerError):
    kind = 'addon_directory_not_found'

    def __init__(self, message=None):
        super().__init__(message or 'Could not find ESO addon directory. Please set it manually in Settings.')


def error_result(error):
    """Build a failed result dict from an exception.

    Args:
        error: Exception - AddonManagerError or OSError

    Returns:
        dict - Result with keys success, error, error_type
    """
    if isinstance(error, AddonManagerError):
        kind = error.kind
    elif isinstance(error, OSError):
        kind = FileSystemError.kind
    else:
        kind = AddonManagerError.kind
    return {'success': False, 'error': str(error), 'error_type': kind}
