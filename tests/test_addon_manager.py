import zipfile
from pathlib import Path

import pytest

import addon_manager as addon_manager_module
from addon_manager import AddonManager
from catalog_models import DownloadSource, InstallInfo, InstalledRecord
from download_manager import DownloadSourceSelector
from errors import NetworkError, RepoNotFoundError
from conftest import ArchiveFetcher, catalog_entry, corrupt_first_entry, make_zip

LIBFOO_URL = 'https://example.com/libfoo.zip'


def _files(folder):
    return sorted(p.relative_to(folder).as_posix() for p in Path(folder).rglob('*') if p.is_file())


def _manager(tracker, addon_dir, fetcher):
    return AddonManager(tracker, addon_dir=addon_dir, selector=DownloadSourceSelector(fetch=fetcher))


@pytest.fixture
def libfoo_zip(tmp_path):
    return make_zip(tmp_path / 'libfoo.zip', {
        'libfoo-main/': None,
        'libfoo-main/LibFoo.txt': '## Title: LibFoo\n## Version: 1.0.0\nLibFoo.lua\n',
        'libfoo-main/LibFoo.lua': 'LibFoo = {}\n',
    })


def test_install_with_install_info(tracker, addon_dir, libfoo_zip):
    fetcher = ArchiveFetcher({LIBFOO_URL: libfoo_zip})
    manager = _manager(tracker, addon_dir, fetcher)
    events = []

    result = manager.install_addon(
        'libfoo', 'LibFoo', '1.0.0', LIBFOO_URL,
        install_info={'target_folder': 'LibFoo', 'method': 'branch', 'extract_path': None, 'excludes': []},
        on_progress=events.append,
    )

    assert result['success'], result
    assert _files(addon_dir / 'LibFoo') == ['LibFoo.lua', 'LibFoo.txt']
    record = tracker.get_installed('libfoo')
    assert Path(record.manifest_path) == addon_dir / 'LibFoo' / 'LibFoo.txt'
    assert record.installed_version == '1.0.0'

    statuses = [e['status'] for e in events]
    assert statuses[0] == 'pending'
    assert statuses[-1] == 'complete'
    assert statuses.index('downloading') < statuses.index('extracting')
    assert events[-1]['progress'] == 1.0
    assert all(e['slug'] == 'libfoo' for e in events)


def test_reinstall_replaces_previous_files(tracker, addon_dir, libfoo_zip):
    stale = addon_dir / 'LibFoo'
    stale.mkdir()
    (stale / 'Removed.lua').write_text('')
    manager = _manager(tracker, addon_dir, ArchiveFetcher({LIBFOO_URL: libfoo_zip}))

    result = manager.install_addon('libfoo', 'LibFoo', '1.0.0', LIBFOO_URL, install_info=InstallInfo('LibFoo'))

    assert result['success']
    assert _files(stale) == ['LibFoo.lua', 'LibFoo.txt']


def test_legacy_install_names_folder_after_manifest(tracker, addon_dir, tmp_path):
    archive = make_zip(tmp_path / 'warmask.zip', {
        'WarMask-1.3.0/WarMask.txt': '## Title: WarMask\n## Version: 1.3.0\n',
        'WarMask-1.3.0/WarMask.lua': '',
        'WarMask-1.3.0/_Examples/Demo.txt': '## Title: Demo\n',
    })
    manager = _manager(tracker, addon_dir, ArchiveFetcher({'https://x/warmask.zip': archive}))

    result = manager.install_addon('warmask', 'WarMask', '1.3.0', 'https://x/warmask.zip')

    assert result['success'], result
    assert (addon_dir / 'WarMask' / 'WarMask.txt').exists()
    assert not (addon_dir / 'WarMask-1.3.0').exists()


def test_install_prefers_download_sources(tracker, addon_dir, libfoo_zip):
    fetcher = ArchiveFetcher({'https://mirror/libfoo.zip': libfoo_zip}, fail={'https://primary/libfoo.zip'})
    manager = _manager(tracker, addon_dir, fetcher)

    result = manager.install_addon(
        'libfoo', 'LibFoo', '1.0.0', LIBFOO_URL,
        install_info=InstallInfo('LibFoo'),
        download_sources=[
            DownloadSource('github_release', 'https://primary/libfoo.zip'),
            DownloadSource('zip', 'https://mirror/libfoo.zip'),
        ],
    )

    assert result['success']
    assert fetcher.calls == ['https://primary/libfoo.zip', 'https://mirror/libfoo.zip']


def test_download_failure_reports_failed_event(tracker, addon_dir):
    manager = _manager(tracker, addon_dir, ArchiveFetcher())
    events = []

    result = manager.install_addon('libfoo', 'LibFoo', '1.0.0', LIBFOO_URL,
                                   install_info=InstallInfo('LibFoo'), on_progress=events.append)

    assert not result['success']
    assert result['error_type'] == 'download'
    assert events[-1]['status'] == 'failed'
    assert events[-1]['error'] == result['error']
    assert tracker.get_installed('libfoo') is None


def test_corrupt_archive_reports_failed_event(tracker, addon_dir, tmp_path):
    archive = tmp_path / 'damaged.zip'
    with zipfile.ZipFile(archive, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr('libfoo-main/LibFoo.txt', '## Title: LibFoo\n' * 100)
    corrupt_first_entry(archive)
    manager = _manager(tracker, addon_dir, ArchiveFetcher({LIBFOO_URL: archive}))
    events = []

    result = manager.install_addon('libfoo', 'LibFoo', '1.0.0', LIBFOO_URL, on_progress=events.append)

    assert not result['success']
    assert result['error_type'] == 'archive'
    assert events[-1]['status'] == 'failed'
    assert tracker.get_installed('libfoo') is None


def test_unknown_source_kind_fails_before_download(tracker, addon_dir, libfoo_zip):
    fetcher = ArchiveFetcher({LIBFOO_URL: libfoo_zip})
    manager = _manager(tracker, addon_dir, fetcher)

    result = manager.install_addon('libfoo', 'LibFoo', '1.0.0', LIBFOO_URL, source_kind='bogus')

    assert not result['success']
    assert result['error_type'] == 'error'
    assert fetcher.calls == []
    assert list(addon_dir.iterdir()) == []


def test_legacy_install_keeps_folder_names_containing_test(tracker, addon_dir, tmp_path):
    archive = make_zip(tmp_path / 'hits.zip', {
        'repo-main/GreatestHits/GreatestHits.txt': '## Title: GreatestHits\n',
        'repo-main/GreatestHits/GreatestHits.lua': '',
    })
    manager = _manager(tracker, addon_dir, ArchiveFetcher({LIBFOO_URL: archive}))

    result = manager.install_addon('greatesthits', 'GreatestHits', '1.0', LIBFOO_URL)

    assert result['success'], result
    assert _files(addon_dir / 'GreatestHits') == ['GreatestHits.lua', 'GreatestHits.txt']

def test_missing_manifest_fails_install(tracker, addon_dir, tmp_path):
    archive = make_zip(tmp_path / 'nomanifest.zip', {'x-main/readme.md': 'hi'})
    manager = _manager(tracker, addon_dir, ArchiveFetcher({LIBFOO_URL: archive}))

    result = manager.install_addon('libfoo', 'LibFoo', '1.0.0', LIBFOO_URL, install_info=InstallInfo('LibFoo'))

    assert not result['success']
    assert result['error_type'] == 'invalid_manifest'


def test_install_rejects_escaping_target_folder(tracker, addon_dir, libfoo_zip):
    manager = _manager(tracker, addon_dir, ArchiveFetcher({LIBFOO_URL: libfoo_zip}))

    result = manager.install_addon('libfoo', 'LibFoo', '1.0.0', LIBFOO_URL, install_info=InstallInfo('..'))

    assert not result['success']
    assert result['error_type'] == 'file_system'


def test_missing_addon_directory(tracker, tmp_path):
    manager = AddonManager(tracker, addon_dir=tmp_path / 'missing')

    result = manager.install_addon('libfoo', 'LibFoo', '1.0.0', LIBFOO_URL)

    assert result['error_type'] == 'addon_directory_not_found'


def test_uninstall_is_idempotent(tracker, addon_dir, libfoo_zip):
    manager = _manager(tracker, addon_dir, ArchiveFetcher({LIBFOO_URL: libfoo_zip}))
    manager.install_addon('libfoo', 'LibFoo', '1.0.0', LIBFOO_URL, install_info=InstallInfo('LibFoo'))

    first = manager.uninstall_addon('libfoo')
    second = manager.uninstall_addon('libfoo')

    assert first['success']
    assert not (addon_dir / 'LibFoo').exists()
    assert tracker.get_installed('libfoo') is None
    assert not second['success']
    assert second['error_type'] == 'addon_not_found'


def test_uninstall_with_folder_already_gone(tracker, addon_dir):
    tracker.upsert_installed(InstalledRecord('ghost', 'Ghost', '1.0', str(addon_dir / 'Ghost' / 'Ghost.txt')))
    manager = AddonManager(tracker, addon_dir=addon_dir)

    assert manager.uninstall_addon('ghost')['success']
    assert tracker.get_installed('ghost') is None


def test_install_with_dependencies(tracker, addon_dir, tmp_path):
    archives = {}
    for folder in ('LibStub', 'LibFoo', 'App'):
        archives[f'https://example.com/{folder.lower()}.zip'] = make_zip(tmp_path / f'{folder}.zip', {
            f'{folder}-main/{folder}.txt': f'## Title: {folder}\n',
        })
    catalog = [
        catalog_entry('app', deps=['libfoo', 'missinglib'], target_folder='App'),
        catalog_entry('libfoo', deps=['libstub'], target_folder='LibFoo'),
        catalog_entry('libstub', target_folder='LibStub'),
    ]
    fetcher = ArchiveFetcher(archives)
    manager = _manager(tracker, addon_dir, fetcher)

    result = manager.install_with_dependencies('app', catalog=catalog)

    assert result['success'], result
    assert result['installed'] == ['libstub', 'libfoo', 'app']
    assert result['unresolved'] == ['missinglib']
    assert fetcher.calls == [
        'https://example.com/libstub.zip',
        'https://example.com/libfoo.zip',
        'https://example.com/app.zip',
    ]
    assert (addon_dir / 'LibStub' / 'LibStub.txt').exists()


def test_install_with_dependencies_stops_at_first_failure(tracker, addon_dir, tmp_path):
    app_zip = make_zip(tmp_path / 'app.zip', {'App-main/App.txt': '## Title: App\n'})
    catalog = [
        catalog_entry('app', deps=['libfoo'], target_folder='App'),
        catalog_entry('libfoo', target_folder='LibFoo'),
    ]
    fetcher = ArchiveFetcher({'https://example.com/app.zip': app_zip})
    manager = _manager(tracker, addon_dir, fetcher)

    result = manager.install_with_dependencies('app', catalog=catalog)

    assert not result['success']
    assert 'libfoo' in result['error']
    assert result['installed'] == []
    assert fetcher.calls == ['https://example.com/libfoo.zip']


def test_install_with_dependencies_unknown_addon(tracker, addon_dir):
    manager = AddonManager(tracker, addon_dir=addon_dir)

    result = manager.install_with_dependencies('nope', catalog=[catalog_entry('a')])

    assert result['error_type'] == 'addon_not_found'


def test_resolve_uses_installed_records(tracker, addon_dir):
    tracker.upsert_installed(InstalledRecord('libstub', 'LibStub', '1.0', str(addon_dir / 'LibStub' / 'LibStub.txt')))
    catalog = [catalog_entry('app', deps=['LibStub', 'libfoo']), catalog_entry('libfoo'), catalog_entry('LibStub')]
    manager = AddonManager(tracker, addon_dir=addon_dir)

    plan = manager.resolve_addon_dependencies('app', catalog=catalog)

    assert [dep.slug for dep in plan.resolved] == ['libfoo']
    assert plan.already_installed == ['LibStub']


def test_scan_and_auto_import_local_addons(tracker, addon_dir):
    folder = addon_dir / 'HandMade'
    folder.mkdir()
    (folder / 'HandMade.txt').write_text('## Title: Hand Made\n## Version: 0.4\n## SavedVariables: HandMadeSV\n')
    saved = addon_dir.parent / 'SavedVariables'
    saved.mkdir()
    (saved / 'HandMadeSV.lua').write_text('')
    (addon_dir / 'NotAnAddon').mkdir()
    manager = AddonManager(tracker, addon_dir=addon_dir)

    scanned = manager.scan_local_addons()
    assert len(scanned) == 1
    assert scanned[0]['name'] == 'Hand Made'
    assert scanned[0]['has_saved_variables']

    records = manager.get_installed_addons()
    assert [r.slug for r in records] == ['handmade']
    assert records[0].source_kind == 'local'
    assert records[0].installed_version == '0.4'

    # A second call must not duplicate the imported record
    assert len(manager.get_installed_addons()) == 1


def test_check_updates_for_catalog_addons(tracker, addon_dir):
    tracker.upsert_installed(InstalledRecord('old', 'Old', '1.0.0', '/AddOns/Old/Old.txt'))
    tracker.upsert_installed(InstalledRecord('current', 'Current', '2.0.0', '/AddOns/Current/Current.txt'))
    tracker.upsert_installed(InstalledRecord('sorted', 'Sorted', 'r5', '/AddOns/Sorted/Sorted.txt',
                                             version_sort_key=5))
    tracker.upsert_installed(InstalledRecord('mine', 'Mine', '0.1', '/AddOns/Mine/Mine.txt', source_kind='local'))
    catalog = [
        catalog_entry('old', version='1.1.0'),
        catalog_entry('current', version='2.0.0'),
        catalog_entry('sorted', version='r6', version_info={'version_sort_key': 6}),
        catalog_entry('mine', version='9.9'),
    ]
    manager = AddonManager(tracker, addon_dir=addon_dir)

    updates = manager.check_updates(catalog=catalog)

    assert sorted(u['slug'] for u in updates) == ['old', 'sorted']
    old = next(u for u in updates if u['slug'] == 'old')
    assert old['current_version'] == '1.0.0'
    assert old['new_version'] == '1.1.0'
    assert old['download_url'] == 'https://example.com/old.zip'


def test_check_updates_for_branch_channel(tracker, addon_dir):
    tracker.upsert_installed(InstalledRecord('edge', 'Edge', 'main-latest', '/AddOns/Edge/Edge.txt',
                                             commit_sha='aaa'))
    catalog = [catalog_entry(
        'edge', version='main-latest',
        latest_release={'version': 'main-latest', 'download_url': 'https://x/edge.zip', 'commit_sha': 'bbb'},
        version_info={'release_channel': 'branch'},
    )]
    manager = AddonManager(tracker, addon_dir=addon_dir)

    assert [u['slug'] for u in manager.check_updates(catalog=catalog)] == ['edge']


def test_check_updates_for_repository_addons(tracker, addon_dir, monkeypatch):
    tracker.upsert_installed(InstalledRecord('gh', 'GitHub Addon', '1.0.0', '/AddOns/Gh/Gh.txt',
                                             source_kind='repository', source_repo='someone/gh'))
    tracker.upsert_installed(InstalledRecord('broken', 'Broken', '1.0.0', '/AddOns/B/B.txt',
                                             source_kind='repository', source_repo='someone/broken'))

    def fake_release_info(repo, token=None, session=None):
        if repo == 'someone/broken':
            raise NetworkError('GitHub API rate limit exceeded', status_code=403)
        return {'tag_name': 'v1.2.0', 'download_url': 'https://x/gh.zip'}

    monkeypatch.setattr(addon_manager_module, 'get_github_release_info', fake_release_info)
    manager = AddonManager(tracker, addon_dir=addon_dir)

    updates = manager.check_updates(catalog=[])

    assert len(updates) == 1
    assert updates[0]['new_version'] == '1.2.0'
    assert updates[0]['source_kind'] == 'repository'


def test_check_updates_skips_branch_tracked_repositories(tracker, addon_dir, monkeypatch):
    tracker.upsert_installed(InstalledRecord('edge', 'Edge', 'main-latest', '/AddOns/Edge/Edge.txt',
                                             source_kind='repository', source_repo='someone/edge'))
    tracker.upsert_custom_repo('someone/edge', release_type='branch')
    looked_up = []

    def fake_release_info(repo, token=None, session=None):
        looked_up.append(repo)
        return {'tag_name': 'v9.0.0', 'download_url': 'https://x/edge.zip'}

    monkeypatch.setattr(addon_manager_module, 'get_github_release_info', fake_release_info)

    assert AddonManager(tracker, addon_dir=addon_dir).check_updates(catalog=[]) == []
    assert looked_up == []


def _fake_github(monkeypatch, repos=(), releases=None):
    releases = releases or {}

    def fake_validate(repo, token=None, session=None, required=False):
        if repo not in repos:
            if required:
                raise RepoNotFoundError(repo)
            return False
        return True

    def fake_release_info(repo, token=None, session=None):
        return releases.get(repo)

    def fake_release_url(repo, token=None, session=None):
        info = releases.get(repo)
        return info['download_url'] if info else None

    monkeypatch.setattr(addon_manager_module, 'validate_github_repo', fake_validate)
    monkeypatch.setattr(addon_manager_module, 'get_github_release_info', fake_release_info)
    monkeypatch.setattr(addon_manager_module, 'get_github_release_url', fake_release_url)


def test_add_custom_repo(tracker, addon_dir, monkeypatch):
    _fake_github(monkeypatch, repos={'someone/hits'},
                 releases={'someone/hits': {'tag_name': 'v2.0', 'download_url': 'https://x/hits.zip'}})
    manager = AddonManager(tracker, addon_dir=addon_dir)

    result = manager.add_custom_repo('someone/hits')

    assert result['success'], result
    assert result['repo'].release_type == 'release'
    assert [c.repo for c in manager.get_custom_repos()] == ['someone/hits']


def test_add_custom_repo_without_releases(tracker, addon_dir, monkeypatch):
    _fake_github(monkeypatch, repos={'someone/edge'})
    manager = AddonManager(tracker, addon_dir=addon_dir)

    result = manager.add_custom_repo('someone/edge')
    assert not result['success']
    assert 'branch mode' in result['error']
    assert manager.get_custom_repos() == []

    result = manager.add_custom_repo('someone/edge', branch='dev', release_type='branch')
    assert result['success'], result
    assert tracker.get_custom_repo('someone/edge').branch == 'dev'


def test_add_custom_repo_rejects_bad_input(tracker, addon_dir, monkeypatch):
    _fake_github(monkeypatch)
    manager = AddonManager(tracker, addon_dir=addon_dir)

    assert manager.add_custom_repo('someone/missing')['error_type'] == 'repo_not_found'
    assert manager.add_custom_repo('someone/missing', release_type='nightly')['error_type'] == 'error'
    assert manager.get_custom_repos() == []


def test_remove_custom_repo(tracker, addon_dir):
    tracker.upsert_custom_repo('someone/hits')
    manager = AddonManager(tracker, addon_dir=addon_dir)

    assert manager.remove_custom_repo('someone/hits')['success']
    assert not manager.remove_custom_repo('someone/hits')['success']
    assert manager.get_custom_repos() == []


def test_install_from_repository_release(tracker, addon_dir, libfoo_zip, monkeypatch):
    _fake_github(monkeypatch, repos={'someone/LibFoo'},
                 releases={'someone/LibFoo': {'tag_name': 'v1.4.0', 'download_url': LIBFOO_URL}})
    manager = _manager(tracker, addon_dir, ArchiveFetcher({LIBFOO_URL: libfoo_zip}))

    result = manager.install_from_repository('someone/LibFoo')

    assert result['success'], result
    record = tracker.get_installed('libfoo')
    assert record.source_kind == 'repository'
    assert record.source_repo == 'someone/LibFoo'
    assert record.installed_version == '1.4.0'
    assert (addon_dir / 'LibFoo' / 'LibFoo.txt').exists()


def test_install_from_repository_branch(tracker, addon_dir, tmp_path, monkeypatch):
    _fake_github(monkeypatch)
    archive = make_zip(tmp_path / 'hits.zip', {
        'GreatestHits-dev/GreatestHits.txt': '## Title: GreatestHits\n',
    })
    branch_url = 'https://github.com/someone/GreatestHits/archive/refs/heads/dev.zip'
    tracker.upsert_custom_repo('someone/GreatestHits', branch='dev', release_type='branch')
    fetcher = ArchiveFetcher({branch_url: archive})
    manager = _manager(tracker, addon_dir, fetcher)

    result = manager.install_from_repository('someone/GreatestHits')

    assert result['success'], result
    assert fetcher.calls == [branch_url]
    record = tracker.get_installed('greatesthits')
    assert record.installed_version == 'dev-latest'
    assert (addon_dir / 'GreatestHits' / 'GreatestHits.txt').exists()


def test_install_from_repository_without_release(tracker, addon_dir, monkeypatch):
    _fake_github(monkeypatch, repos={'someone/edge'})
    fetcher = ArchiveFetcher()
    manager = _manager(tracker, addon_dir, fetcher)
    events = []

    result = manager.install_from_repository('someone/edge', on_progress=events.append)

    assert not result['success']
    assert events[-1]['status'] == 'failed'
    assert fetcher.calls == []
