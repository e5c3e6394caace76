"""
Install orchestration: resolve a package's dependencies, download every archive
that is missing, then hand the archives to the installer one at a time.

Downloads run concurrently on a bounded thread pool. Installation is strictly
sequential and follows the resolved plan, with the requested package last. The
first failed download or install ends the run. Packages installed before the
failure stay recorded on the profile, and the caller decides whether to persist.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .cache import DownloadCache, archive_key
from .client import RepositoryClient
from .config import Config
from .exceptions import ArchiveFetchError, InstallerFailure, ManifestInvalidError
from .identifiers import parse_identifier
from .installer import Installer, SubprocessInstaller
from .manifest import read_archive_manifest
from .packages import DependencyPlan, LocalArchive, PackageManifest, PackageReference, PlanEntry
from .profiles import GameDefinition, ModProfile
from .repository import ApiPackageRepository, PackageRepository
from .resolver import DependencyResolver

log = logging.getLogger(__name__)


class InstallObserver(Protocol):
    def fetch_started(self, total: int) -> None:
        ...

    def fetch_progress(self, completed: int, total: int) -> None:
        ...

    def installed(self, manifest: PackageManifest) -> None:
        ...

    def install_failed(self, manifest: PackageManifest, error: InstallerFailure) -> None:
        ...

    def warning(self, message: str) -> None:
        ...


class NullObserver:
    def fetch_started(self, total: int) -> None:
        pass

    def fetch_progress(self, completed: int, total: int) -> None:
        pass

    def installed(self, manifest: PackageManifest) -> None:
        pass

    def install_failed(self, manifest: PackageManifest, error: InstallerFailure) -> None:
        pass

    def warning(self, message: str) -> None:
        pass


@dataclass
class ModstoreContext:
    """Everything an install run needs, built once by the caller and passed in."""

    config: Config
    repository: PackageRepository
    cache: DownloadCache
    installer: Installer
    client: RepositoryClient | None = None

    @classmethod
    def from_config(cls, config: Config) -> "ModstoreContext":
        client = RepositoryClient(base_url=config.repository_url, timeout_s=config.timeout_s)
        return cls(
            config=config,
            repository=ApiPackageRepository(client),
            cache=DownloadCache(config.resolved_cache_dir(), client.download),
            installer=SubprocessInstaller(config.resolved_installer(), timeout_s=config.installer_timeout_s),
            client=client,
        )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()

    def __enter__(self) -> "ModstoreContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@dataclass(frozen=True)
class RootArchive:
    """The package the user asked for. ``path`` is set for local archives, else it is downloaded."""

    manifest: PackageManifest
    path: Path | None = None
    namespace_backup: str | None = None

    @property
    def cache_key(self) -> str:
        m = self.manifest
        return archive_key(m.namespace or "", m.name, m.version_number)


class InstallOrchestrator:
    def __init__(self, context: ModstoreContext, observer: InstallObserver | None = None) -> None:
        self.context = context
        self.observer: InstallObserver = observer or NullObserver()
        self.resolver = DependencyResolver(context.repository)

    def install(
        self,
        identifier: str,
        game: GameDefinition,
        profile: ModProfile,
        *,
        namespace_backup: str | None = None,
    ) -> int:
        """Install a package by identifier or archive path. Returns the exit status."""
        target = parse_identifier(identifier)
        if isinstance(target, LocalArchive):
            return self._install_local(Path(target.path), game, profile, namespace_backup)
        return self._install_remote(target, game, profile)

    def _install_local(
        self, path: Path, game: GameDefinition, profile: ModProfile, namespace_backup: str | None
    ) -> int:
        manifest = read_archive_manifest(path).backfill_namespace(namespace_backup)
        if manifest.namespace is None:
            raise ManifestInvalidError(
                f"{path} does not declare a namespace; pass one with --namespace to install it."
            )
        root = RootArchive(manifest=manifest, path=path, namespace_backup=namespace_backup)
        plan = self.resolver.resolve(manifest, already_installed=profile.installed_mod_versions.keys())
        return self.install_all(plan, profile, game, root)

    def _install_remote(self, ref: PackageReference, game: GameDefinition, profile: ModProfile) -> int:
        log.info("Resolving main package: %s", ref.full_name)
        repo = self.context.repository
        metadata = repo.get_package(ref.namespace, ref.name)
        if ref.version is not None:
            manifest = repo.get_package_version(ref.namespace, ref.name, ref.version)
        else:
            manifest = metadata.latest
        manifest = manifest.backfill_namespace(ref.namespace)
        community = metadata.community_listings[0] if metadata.community_listings else None

        root = RootArchive(manifest=manifest, namespace_backup=manifest.namespace)
        plan = self.resolver.resolve(
            manifest,
            already_installed=profile.installed_mod_versions.keys(),
            source_community=community,
        )
        return self.install_all(plan, profile, game, root)

    def install_all(
        self,
        plan: DependencyPlan,
        profile: ModProfile,
        game: GameDefinition,
        root: RootArchive,
    ) -> int:
        for message in plan.warnings:
            self.observer.warning(message)

        pending = [entry for entry in plan if not profile.is_installed(entry.key)]
        root_manifest = root.manifest
        if not pending and profile.installed_version(root_manifest.key) == root_manifest.version_number:
            log.info("%s is already installed", root_manifest.full_name)
            return 0

        downloads = {entry.key: self._download_job(entry) for entry in pending}
        if root.path is None:
            if not root_manifest.download_url:
                raise ArchiveFetchError(root.cache_key, "repository did not provide a download URL")
            downloads[root_manifest.key] = (root.cache_key, root_manifest.download_url)
        estimated_size = sum(entry.manifest.file_size for entry in pending)
        if root.path is None:
            estimated_size += root_manifest.file_size
        paths = self._fetch_all(downloads, estimated_size=estimated_size) if downloads else {}

        root_path = root.path if root.path is not None else paths[root_manifest.key]
        # Validates that the root archive carries a usable manifest before anything is installed.
        read_archive_manifest(root_path)

        profile.directory.mkdir(parents=True, exist_ok=True)
        for entry in pending:
            manifest = entry.manifest
            exit_code = self._install_one(
                game, profile, paths[entry.key], manifest, manifest.owner or manifest.namespace
            )
            if exit_code != 0:
                return exit_code

        return self._install_one(game, profile, root_path, root_manifest, root.namespace_backup)

    def _download_job(self, entry: PlanEntry) -> tuple[str, str]:
        manifest = entry.manifest
        key = archive_key(manifest.namespace or "", manifest.name, entry.resolved_version)
        if not manifest.download_url:
            raise ArchiveFetchError(key, "repository did not provide a download URL")
        return key, manifest.download_url

    def _fetch_all(self, downloads: dict[str, tuple[str, str]], *, estimated_size: int = 0) -> dict[str, Path]:
        total = len(downloads)
        log.info("Downloading %d archives (%d bytes estimated)", total, estimated_size)
        self.observer.fetch_started(total)

        progress_lock = threading.Lock()
        completed = 0

        def _fetch(cache_key: str, url: str) -> Path:
            nonlocal completed
            path = self.context.cache.get_or_fetch(cache_key, url)
            with progress_lock:
                completed += 1
                self.observer.fetch_progress(completed, total)
            return path

        paths: dict[str, Path] = {}
        with ThreadPoolExecutor(max_workers=max(1, self.context.config.max_workers)) as executor:
            futures = {executor.submit(_fetch, key, url): pkg for pkg, (key, url) in downloads.items()}
            try:
                for future in as_completed(futures):
                    paths[futures[future]] = future.result()
            except BaseException:
                # Queued downloads are dropped; running ones finish and stay in the cache.
                for future in futures:
                    future.cancel()
                raise
        return paths

    def _install_one(
        self,
        game: GameDefinition,
        profile: ModProfile,
        archive: Path,
        manifest: PackageManifest,
        namespace_backup: str | None,
    ) -> int:
        exit_code = self.context.installer.install(
            game.install_directory, profile.directory, archive, namespace_backup
        )
        if exit_code != 0:
            error = InstallerFailure(manifest.full_name, exit_code)
            log.error("Failed to install mod: %s", manifest.full_name)
            self.observer.install_failed(manifest, error)
            return exit_code

        profile.record_install(manifest)
        log.info("Installed mod: %s", manifest.full_name)
        self.observer.installed(manifest)
        return 0
