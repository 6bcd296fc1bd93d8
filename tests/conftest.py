"""Shared fixtures for the addon manager tests."""

import zipfile
from pathlib import Path

import pytest

from addon_tracker import AddonTracker
from catalog_models import CatalogEntry
from errors import NetworkError


def make_zip(path, entries):
    """Write a zip archive.

    Args:
        path: Path - Archive to create
        entries: dict - entry name -> bytes/str content, or None for a directory
    """
    path = Path(path)
    with zipfile.ZipFile(path, 'w') as archive:
        for name, content in entries.items():
            if content is None:
                archive.writestr(zipfile.ZipInfo(name if name.endswith('/') else name + '/'), b'')
            else:
                if isinstance(content, str):
                    content = content.encode('utf-8')
                archive.writestr(name, content)
    return path


def corrupt_first_entry(archive_path):
    """Overwrite the start of the first entry's compressed data."""
    archive_path = Path(archive_path)
    with zipfile.ZipFile(archive_path) as archive:
        offset = archive.infolist()[0].header_offset
    raw = bytearray(archive_path.read_bytes())
    name_length = int.from_bytes(raw[offset + 26:offset + 28], 'little')
    extra_length = int.from_bytes(raw[offset + 28:offset + 30], 'little')
    data_start = offset + 30 + name_length + extra_length
    # BFINAL=1, BTYPE=11 is a reserved deflate block type
    raw[data_start:data_start + 20] = b'\xff' * 20
    archive_path.write_bytes(bytes(raw))


def catalog_entry(slug, deps=(), name=None, version='1.0.0', url=None, target_folder=None,
                  source_type='github', repo='test/repo', release=True, **extra):
    data = {
        'slug': slug,
        'name': name or slug,
        'source': {'type': source_type, 'repo': repo, 'branch': 'main'},
        'compatibility': {
            'required_dependencies': list(deps),
            'optional_dependencies': [],
        },
        'install': {
            'method': 'branch',
            'extract_path': None,
            'target_folder': target_folder or slug,
            'excludes': [],
        },
    }
    if release:
        data['latest_release'] = {
            'version': version,
            'download_url': url or f'https://example.com/{slug}.zip',
        }
    data.update(extra)
    return CatalogEntry.from_dict(data)


class ArchiveFetcher:
    """Fake byte source serving prepared archives by URL."""

    def __init__(self, archives=None, fail=()):
        self.archives = dict(archives or {})
        self.fail = set(fail)
        self.calls = []

    def __call__(self, url, sink_path, on_progress):
        self.calls.append(url)
        if url in self.fail or url not in self.archives:
            raise NetworkError(f'HTTP 404 for {url}', status_code=404)
        data = Path(self.archives[url]).read_bytes()
        with open(sink_path, 'wb') as f:
            f.write(data[: len(data) // 2])
            on_progress(0.5)
            f.write(data[len(data) // 2:])
        on_progress(1.0)


@pytest.fixture
def tracker(tmp_path):
    return AddonTracker(data_dir=tmp_path / 'data')


@pytest.fixture
def addon_dir(tmp_path):
    path = tmp_path / 'live' / 'AddOns'
    path.mkdir(parents=True)
    return path
