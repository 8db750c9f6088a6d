import threading
import time
import zipfile
from pathlib import Path

import pytest
import requests

from depsource_inspector import sources as sources_module
from depsource_inspector.sources import (
    MARKER_NAME,
    CallableResolver,
    GradleCacheResolver,
    LocalRepositoryResolver,
    RemoteRepositoryResolver,
    SourceProvider,
    SourcesUnavailable,
    build_resolvers,
    maven_layout_path,
)
from depsource_inspector.types import DependencyCoordinate, SourcesSettings

COORDINATE = DependencyCoordinate("com.acme", "core", "1.0")


def _sources_jar(path: Path, files: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as bundle:
        for name, content in files.items():
            bundle.writestr(name, content)
    return path


def _local_repo(tmp_path: Path) -> Path:
    root = tmp_path / "m2"
    _sources_jar(root / maven_layout_path(COORDINATE), {"com/acme/Core.java": "class Core {}\n"})
    return root


def test_local_and_gradle_resolvers(tmp_path: Path):
    local = _local_repo(tmp_path)
    assert LocalRepositoryResolver(local).resolve(COORDINATE, tmp_path) is not None

    gradle = tmp_path / "gradle"
    jar = _sources_jar(gradle / "com.acme" / "core" / "1.0" / "abc123" / "core-1.0-sources.jar", {"A.java": ""})
    assert GradleCacheResolver(gradle).resolve(COORDINATE, tmp_path) == jar
    assert GradleCacheResolver(gradle).resolve(DependencyCoordinate("com.acme", "core", "2.0"), tmp_path) is None


def test_cold_then_warm_cache_extracts_once(tmp_path: Path):
    cache = tmp_path / "cache"
    provider = SourceProvider(cache, [LocalRepositoryResolver(_local_repo(tmp_path))])

    first = provider.provide(COORDINATE)
    assert (first.path / "com" / "acme" / "Core.java").is_file()
    assert (first.path / MARKER_NAME).is_file()
    assert first.path == cache / "com.acme" / "core" / "1.0"

    second = provider.provide(COORDINATE)
    assert second.path == first.path
    assert provider.stats.extractions == 1
    assert provider.stats.hits == 1

    # A fresh provider over the same directory reuses the on-disk entry.
    rerun = SourceProvider(cache, [])
    assert rerun.provide(COORDINATE).path == first.path
    assert rerun.stats.extractions == 0


def test_directory_without_marker_is_not_a_cache_entry(tmp_path: Path):
    cache = tmp_path / "cache"
    partial = cache / COORDINATE.relative_path
    partial.mkdir(parents=True)
    (partial / "Half.java").write_text("class Half")

    provider = SourceProvider(cache, [LocalRepositoryResolver(_local_repo(tmp_path))])
    assert provider.lookup(COORDINATE) is None
    entry = provider.provide(COORDINATE)
    assert not (entry.path / "Half.java").exists()
    assert provider.stats.extractions == 1


def test_concurrent_requests_extract_once(tmp_path: Path):
    archive = _sources_jar(tmp_path / "core-sources.jar", {"Core.java": "class Core {}"})
    calls = []

    def slow_resolver(coordinate, workdir):
        calls.append(coordinate)
        time.sleep(0.05)
        return archive

    provider = SourceProvider(tmp_path / "cache", [CallableResolver(slow_resolver)])
    paths = []
    threads = [threading.Thread(target=lambda: paths.append(provider.provide(COORDINATE).path)) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(calls) == 1
    assert provider.stats.extractions == 1
    assert len(set(paths)) == 1


def test_unavailable_and_corrupt_sources(tmp_path: Path):
    provider = SourceProvider(tmp_path / "cache", [])
    with pytest.raises(SourcesUnavailable):
        provider.provide(COORDINATE)
    assert provider.stats.unavailable == 1

    corrupt = tmp_path / "corrupt.jar"
    corrupt.write_bytes(b"not a zip")
    provider = SourceProvider(tmp_path / "cache", [CallableResolver(lambda c, w: corrupt)])
    with pytest.raises(SourcesUnavailable):
        provider.provide(COORDINATE)
    assert not (tmp_path / "cache" / COORDINATE.relative_path).exists()


def test_archive_entries_cannot_escape_the_cache(tmp_path: Path):
    evil = _sources_jar(tmp_path / "evil.jar", {"../../escape.java": "class X"})
    provider = SourceProvider(tmp_path / "cache", [CallableResolver(lambda c, w: evil)])
    with pytest.raises(SourcesUnavailable):
        provider.provide(COORDINATE)
    assert not (tmp_path / "escape.java").exists()


def test_invalidate_and_clear(tmp_path: Path):
    cache = tmp_path / "cache"
    provider = SourceProvider(cache, [LocalRepositoryResolver(_local_repo(tmp_path))])
    provider.provide(COORDINATE)
    assert [str(entry.coordinate) for entry in provider.entries()] == ["com.acme:core:1.0"]

    assert provider.invalidate(COORDINATE)
    assert not provider.invalidate(COORDINATE)
    provider.provide(COORDINATE)
    assert provider.stats.extractions == 2

    provider.clear()
    assert provider.entries() == []


class _FakeResponse:
    def __init__(self, status_code: int, payload: bytes = b"") -> None:
        self.status_code = status_code
        self._payload = payload

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def iter_content(self, chunk_size=1):
        yield self._payload


def test_remote_resolver_downloads_sources_jar(tmp_path: Path, monkeypatch):
    archive = _sources_jar(tmp_path / "remote.jar", {"Core.java": "class Core {}"})
    requested = []

    def fake_get(url, stream, timeout):
        requested.append(url)
        return _FakeResponse(200, archive.read_bytes())

    monkeypatch.setattr(sources_module.requests, "get", fake_get)
    resolver = RemoteRepositoryResolver("https://repo.example.com/maven/", timeout=5)
    found = resolver.resolve(COORDINATE, tmp_path / "work")

    assert requested == ["https://repo.example.com/maven/com/acme/core/1.0/core-1.0-sources.jar"]
    assert found is not None and zipfile.is_zipfile(found)


def test_remote_resolver_handles_missing_and_network_errors(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(sources_module.requests, "get", lambda url, stream, timeout: _FakeResponse(404))
    assert RemoteRepositoryResolver("https://repo.example.com").resolve(COORDINATE, tmp_path) is None

    def offline(url, stream, timeout):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(sources_module.requests, "get", offline)
    assert RemoteRepositoryResolver("https://repo.example.com").resolve(COORDINATE, tmp_path) is None


def test_build_resolvers_follows_settings(tmp_path: Path):
    settings = SourcesSettings(
        local_repository=tmp_path / "m2",
        gradle_cache=None,
        repositories=("https://repo.example.com",),
        fallback_to_git_clone=True,
    )
    names = [resolver.name for resolver in build_resolvers(settings)]
    assert names == ["maven-local", "maven-remote"]

    names = [resolver.name for resolver in build_resolvers(settings, fallback=lambda c, w: None)]
    assert names == ["maven-local", "maven-remote", "git-fallback"]
