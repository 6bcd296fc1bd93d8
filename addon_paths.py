"""
Addon Paths
Locates the ESO AddOns directory and the manager's data directory
"""

import os
import sys
from pathlib import Path

APP_NAME = 'eso-addon-manager'
ESO_STEAM_APP_ID = '306130'


def _documents_dir():
    return Path.home() / 'Documents'


def candidate_addon_paths():
    """List the platform's usual AddOns locations, most likely first."""
    home = Path.home()
    if sys.platform.startswith('win') or sys.platform == 'darwin':
        return [_documents_dir() / 'Elder Scrolls Online' / 'live' / 'AddOns']

    eso_docs = Path('drive_c/users/steamuser/Documents/Elder Scrolls Online/live/AddOns')
    return [
        # Steam Proton prefix
        home / '.steam/steam/steamapps/compatdata' / ESO_STEAM_APP_ID / 'pfx' / eso_docs,
        # Lutris
        home / 'Games/elder-scrolls-online' / eso_docs,
    ]


def get_default_addon_path():
    for path in candidate_addon_paths():
        if path.is_dir():
            return path
    return None


def get_addon_path_with_custom(custom_path=None):
    """Resolve the AddOns directory, preferring a user-configured path.

    Args:
        custom_path: Optional str - Path from settings

    Returns:
        Path - AddOns directory, or None if nothing usable was found
    """
    if custom_path:
        custom = Path(custom_path).expanduser()
        if custom.is_dir():
            return custom
    return get_default_addon_path()


def get_app_data_path():
    if sys.platform.startswith('win'):
        base = os.environ.get('LOCALAPPDATA') or str(Path.home() / 'AppData' / 'Local')
        return Path(base) / APP_NAME
    if sys.platform == 'darwin':
        return Path.home() / 'Library' / 'Application Support' / APP_NAME
    base = os.environ.get('XDG_DATA_HOME') or str(Path.home() / '.local' / 'share')
    return Path(base) / APP_NAME


def get_saved_variables_path(addon_dir):
    """SavedVariables lives next to AddOns."""
    return Path(addon_dir).parent / 'SavedVariables'
