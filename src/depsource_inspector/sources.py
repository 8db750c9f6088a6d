"""Resolution and on-disk caching of dependency sources artifacts.

Each coordinate is extracted once into ``<cache>/<group>/<artifact>/<version>``.
Extraction happens in a staging directory that is renamed into place only after
the archive has been fully written together with its ``.depsource-entry.json``
marker, so a directory without a marker is never treated as a cache entry.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import requests  # type: ignore[import-untyped]

from .types import DependencyCoordinate, SourcesSettings

logger = logging.getLogger(__name__)

MARKER_NAME = ".depsource-entry.json"
STAGING_DIR = ".tmp"


class SourcesUnavailable(RuntimeError):
    def __init__(self, coordinate: DependencyCoordinate, reason: str) -> None:
        super().__init__(f"Sources unavailable for {coordinate}: {reason}")
        self.coordinate = coordinate
        self.reason = reason


@dataclass(frozen=True)
class CacheEntry:
    coordinate: DependencyCoordinate
    path: Path
    extracted_at: datetime

    def as_dict(self) -> dict:
        return {
            "coordinate": str(self.coordinate),
            "extracted_at": self.extracted_at.isoformat(),
        }

    @classmethod
    def from_marker(cls, directory: Path) -> "CacheEntry":
        data = json.loads((directory / MARKER_NAME).read_text(encoding="utf-8"))
        return cls(
            coordinate=DependencyCoordinate.parse(data["coordinate"]),
            path=directory,
            extracted_at=datetime.fromisoformat(data["extracted_at"]),
        )


@dataclass
class CacheStats:
    hits: int = 0
    extractions: int = 0
    unavailable: int = 0


def sources_jar_name(coordinate: DependencyCoordinate) -> str:
    return f"{coordinate.artifact}-{coordinate.version}-sources.jar"


def maven_layout_path(coordinate: DependencyCoordinate) -> str:
    group_path = coordinate.group.replace(".", "/")
    return f"{group_path}/{coordinate.artifact}/{coordinate.version}/{sources_jar_name(coordinate)}"


class SourcesResolver(ABC):
    """Locates the sources artifact (an archive or a directory) for a coordinate."""

    name: str

    @abstractmethod
    def resolve(self, coordinate: DependencyCoordinate, workdir: Path) -> Optional[Path]:
        ...


class LocalRepositoryResolver(SourcesResolver):
    name = "maven-local"

    def __init__(self, root: Path) -> None:
        self.root = root

    def resolve(self, coordinate: DependencyCoordinate, workdir: Path) -> Optional[Path]:
        candidate = self.root / maven_layout_path(coordinate)
        return candidate if candidate.is_file() else None


class GradleCacheResolver(SourcesResolver):
    name = "gradle-cache"

    def __init__(self, root: Path) -> None:
        self.root = root

    def resolve(self, coordinate: DependencyCoordinate, workdir: Path) -> Optional[Path]:
        module_dir = self.root / coordinate.group / coordinate.artifact / coordinate.version
        if not module_dir.is_dir():
            return None
        # Gradle stores each file under a directory named after its checksum.
        matches = sorted(module_dir.glob(f"*/{sources_jar_name(coordinate)}"))
        return matches[0] if matches else None


class RemoteRepositoryResolver(SourcesResolver):
    name = "maven-remote"

    def __init__(self, base_url: str, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def resolve(self, coordinate: DependencyCoordinate, workdir: Path) -> Optional[Path]:
        url = f"{self.base_url}/{maven_layout_path(coordinate)}"
        destination = workdir / coordinate.relative_path / sources_jar_name(coordinate)
        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_suffix(".part")
        try:
            with requests.get(url, stream=True, timeout=self.timeout) as response:
                if response.status_code == 404:
                    logger.debug("No sources for %s at %s", coordinate, url)
                    return None
                if response.status_code != 200:
                    logger.warning("%s returned %s for %s", self.base_url, response.status_code, coordinate)
                    return None
                with partial.open("wb") as handle:
                    for chunk in response.iter_content(chunk_size=65536):
                        if chunk:
                            handle.write(chunk)
        except requests.RequestException as exc:
            logger.warning("Unable to download sources for %s from %s: %s", coordinate, self.base_url, exc)
            partial.unlink(missing_ok=True)
            return None
        os.replace(partial, destination)
        return destination


class CallableResolver(SourcesResolver):
    """Adapts an externally supplied fallback (e.g. a source-control checkout)."""

    def __init__(self, func: Callable[[DependencyCoordinate, Path], Optional[Path]], name: str = "fallback") -> None:
        self._func = func
        self.name = name

    def resolve(self, coordinate: DependencyCoordinate, workdir: Path) -> Optional[Path]:
        return self._func(coordinate, workdir)


def build_resolvers(
    settings: SourcesSettings,
    fallback: Optional[Callable[[DependencyCoordinate, Path], Optional[Path]]] = None,
) -> List[SourcesResolver]:
    resolvers: List[SourcesResolver] = []
    if settings.local_repository is not None:
        resolvers.append(LocalRepositoryResolver(settings.local_repository))
    if settings.gradle_cache is not None:
        resolvers.append(GradleCacheResolver(settings.gradle_cache))
    for url in settings.repositories:
        resolvers.append(RemoteRepositoryResolver(url, timeout=settings.timeout))
    if settings.fallback_to_git_clone:
        if fallback is None:
            logger.warning("fallback_to_git_clone is enabled but no source-control fallback was provided")
        else:
            resolvers.append(CallableResolver(fallback, name="git-fallback"))
    return resolvers


def _extract_archive(coordinate: DependencyCoordinate, archive: Path, destination: Path) -> None:
    root = destination.resolve()
    try:
        with zipfile.ZipFile(archive) as bundle:
            for info in bundle.infolist():
                target = (destination / info.filename).resolve()
                if target != root and root not in target.parents:
                    raise SourcesUnavailable(coordinate, f"archive entry escapes extraction root: {info.filename}")
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with bundle.open(info) as source, target.open("wb") as sink:
                    shutil.copyfileobj(source, sink)
    except zipfile.BadZipFile as exc:
        raise SourcesUnavailable(coordinate, f"corrupt sources archive {archive.name}: {exc}") from exc


class SourceProvider:
    """Hands out extracted source trees, extracting each coordinate at most once."""

    def __init__(
        self,
        cache_dir: Path,
        resolvers: Iterable[SourcesResolver] = (),
        workdir: Optional[Path] = None,
    ) -> None:
        self.cache_dir = cache_dir
        self.resolvers = list(resolvers)
        self.workdir = workdir or cache_dir / STAGING_DIR
        self.stats = CacheStats()
        self._entries: dict[DependencyCoordinate, CacheEntry] = {}
        self._locks: dict[DependencyCoordinate, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, coordinate: DependencyCoordinate) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(coordinate)
            if lock is None:
                lock = self._locks[coordinate] = threading.Lock()
            return lock

    def _directory_for(self, coordinate: DependencyCoordinate) -> Path:
        return self.cache_dir / coordinate.relative_path

    def lookup(self, coordinate: DependencyCoordinate) -> Optional[CacheEntry]:
        """Return the cache entry for ``coordinate`` if its directory is still on disk."""

        with self._registry_lock:
            entry = self._entries.get(coordinate)
        if entry is not None and (entry.path / MARKER_NAME).is_file():
            return entry

        directory = self._directory_for(coordinate)
        if not (directory / MARKER_NAME).is_file():
            return None
        try:
            entry = CacheEntry.from_marker(directory)
        except (OSError, ValueError, KeyError) as exc:
            logger.warning("Ignoring unreadable cache entry %s: %s", directory, exc)
            return None
        with self._registry_lock:
            self._entries[coordinate] = entry
        return entry

    def provide(self, coordinate: DependencyCoordinate) -> CacheEntry:
        with self._lock_for(coordinate):
            entry = self.lookup(coordinate)
            if entry is not None:
                logger.debug("Using cached extraction for %s", coordinate)
                with self._registry_lock:
                    self.stats.hits += 1
                return entry

            archive = self._resolve(coordinate)
            if archive is None:
                with self._registry_lock:
                    self.stats.unavailable += 1
                raise SourcesUnavailable(coordinate, "no sources artifact could be resolved")

            entry = self._extract(coordinate, archive)
            with self._registry_lock:
                self._entries[coordinate] = entry
                self.stats.extractions += 1
            logger.info("Resolved sources for %s", coordinate)
            return entry

    def _resolve(self, coordinate: DependencyCoordinate) -> Optional[Path]:
        for resolver in self.resolvers:
            found = resolver.resolve(coordinate, self.workdir)
            if found is not None:
                logger.debug("Sources for %s found via %s: %s", coordinate, resolver.name, found)
                return found
        return None

    def _extract(self, coordinate: DependencyCoordinate, archive: Path) -> CacheEntry:
        staging_root = self.cache_dir / STAGING_DIR
        staging_root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f"{coordinate.artifact}-", dir=staging_root))
        final = self._directory_for(coordinate)
        try:
            if archive.is_dir():
                shutil.copytree(archive, staging, dirs_exist_ok=True)
            else:
                _extract_archive(coordinate, archive, staging)
            entry = CacheEntry(coordinate=coordinate, path=final, extracted_at=datetime.now(timezone.utc))
            (staging / MARKER_NAME).write_text(json.dumps(entry.as_dict()), encoding="utf-8")

            final.parent.mkdir(parents=True, exist_ok=True)
            if final.exists():
                # Left over from an interrupted run; it never received a marker.
                shutil.rmtree(final)
            os.replace(staging, final)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        return entry

    def entries(self) -> List[CacheEntry]:
        if not self.cache_dir.exists():
            return []
        found: List[CacheEntry] = []
        for marker in sorted(self.cache_dir.rglob(MARKER_NAME)):
            if STAGING_DIR in marker.relative_to(self.cache_dir).parts:
                continue
            try:
                found.append(CacheEntry.from_marker(marker.parent))
            except (OSError, ValueError, KeyError) as exc:
                logger.warning("Ignoring unreadable cache entry %s: %s", marker.parent, exc)
        return found

    def invalidate(self, coordinate: DependencyCoordinate) -> bool:
        with self._lock_for(coordinate):
            with self._registry_lock:
                self._entries.pop(coordinate, None)
            directory = self._directory_for(coordinate)
            if not directory.exists():
                return False
            shutil.rmtree(directory)
            return True

    def clear(self) -> None:
        with self._registry_lock:
            self._entries.clear()
        if self.cache_dir.exists():
            shutil.rmtree(self.cache_dir)


def build_provider(
    settings: SourcesSettings,
    workdir: Optional[Path] = None,
    cache_dir: Optional[Path] = None,
    fallback: Optional[Callable[[DependencyCoordinate, Path], Optional[Path]]] = None,
) -> SourceProvider:
    return SourceProvider(
        cache_dir=cache_dir or settings.cache_dir,
        resolvers=build_resolvers(settings, fallback=fallback),
        workdir=workdir,
    )
