from __future__ import annotations

import logging
from typing import Protocol

from .client import PackageMetadata, RepositoryClient
from .packages import PackageManifest, package_key

log = logging.getLogger(__name__)


class PackageRepository(Protocol):
    def get_package(self, namespace: str, name: str) -> PackageMetadata:
        ...

    def get_package_version(self, namespace: str, name: str, version: str) -> PackageManifest:
        ...


class ApiPackageRepository:
    """Repository backed by the HTTP API, memoizing every lookup for the life of the object."""

    def __init__(self, client: RepositoryClient) -> None:
        self._client = client
        self._package_cache: dict[str, PackageMetadata] = {}
        self._version_cache: dict[tuple[str, str], PackageManifest] = {}

    def get_package(self, namespace: str, name: str) -> PackageMetadata:
        key = package_key(namespace, name)
        if key in self._package_cache:
            return self._package_cache[key]
        log.debug("Fetching package metadata for %s", key)
        metadata = self._client.get_package_metadata(namespace, name)
        self._package_cache[key] = metadata
        latest = metadata.latest
        self._version_cache.setdefault((key, latest.version_number), latest)
        return metadata

    def get_package_version(self, namespace: str, name: str, version: str) -> PackageManifest:
        cache_key = (package_key(namespace, name), version)
        if cache_key in self._version_cache:
            return self._version_cache[cache_key]
        log.debug("Fetching metadata for %s-%s", cache_key[0], version)
        manifest = self._client.get_package_version_metadata(namespace, name, version)
        self._version_cache[cache_key] = manifest
        return manifest

