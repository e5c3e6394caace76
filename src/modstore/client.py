from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from ._version import __version__
from .config import DEFAULT_REPOSITORY_URL, DEFAULT_TIMEOUT_S
from .exceptions import InvalidIdentifierError, MetadataFetchError
from .identifiers import parse_dependency_list
from .packages import PackageManifest

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageMetadata:
    latest: PackageManifest
    community_listings: tuple[str, ...] = ()


def _package_path(namespace: str, name: str) -> str:
    return f"/api/experimental/package/{quote(namespace, safe='')}/{quote(name, safe='')}/"


def _str_or_none(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_version_document(raw: Any, *, owner: str | None = None) -> PackageManifest:
    if not isinstance(raw, dict):
        raise MetadataFetchError("Package version document is not a JSON object.")
    name = _str_or_none(raw, "name")
    version = _str_or_none(raw, "version_number")
    if name is None or version is None:
        raise MetadataFetchError("Package version document is missing name or version_number.")
    deps_raw = raw.get("dependencies")
    try:
        dependencies = parse_dependency_list(deps_raw if isinstance(deps_raw, list) else [])
    except InvalidIdentifierError as e:
        raise MetadataFetchError(f"Package {name}-{version} declares an invalid dependency: {e}") from e
    file_size = raw.get("file_size")
    return PackageManifest(
        namespace=_str_or_none(raw, "namespace"),
        name=name,
        version_number=version,
        dependencies=dependencies,
        file_size=file_size if isinstance(file_size, int) else 0,
        download_url=_str_or_none(raw, "download_url"),
        owner=owner or _str_or_none(raw, "namespace"),
        description=_str_or_none(raw, "description") or "",
        website_url=_str_or_none(raw, "website_url") or "",
    )


def parse_package_document(raw: Any) -> PackageMetadata:
    if not isinstance(raw, dict):
        raise MetadataFetchError("Package document is not a JSON object.")
    owner = _str_or_none(raw, "owner")
    latest = parse_version_document(raw.get("latest"), owner=owner)

    listings: list[str] = []
    listings_raw = raw.get("community_listings")
    if isinstance(listings_raw, list):
        for item in listings_raw:
            if isinstance(item, dict) and isinstance(item.get("community"), str):
                listings.append(item["community"])
    return PackageMetadata(latest=latest, community_listings=tuple(listings))


class RepositoryClient:
    """
    Read-only client for the package repository API.

    One ``httpx.Client`` is reused for every metadata request and archive download
    issued through this object. Download workers share it across threads.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_REPOSITORY_URL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._http = httpx.Client(
            timeout=timeout_s,
            follow_redirects=True,
            transport=transport,
            headers={"User-Agent": f"modstore/{__version__}"},
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "RepositoryClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    def _get_json(self, path: str) -> Any:
        url = self._url(path)
        log.debug("GET %s", url)
        try:
            resp = self._http.get(url)
        except httpx.HTTPError as e:
            raise MetadataFetchError(f"Request to {url} failed: {e}") from e
        if resp.status_code >= 400:
            if resp.status_code == 404:
                raise MetadataFetchError(f"HTTP 404 Not Found: {url}", status_code=404)
            raise MetadataFetchError(f"HTTP {resp.status_code} from {url}: {resp.text.strip()}", status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise MetadataFetchError(f"Response from {url} is not valid JSON.") from e

    def get_package_metadata(self, namespace: str, name: str) -> PackageMetadata:
        metadata = parse_package_document(self._get_json(_package_path(namespace, name)))
        # The experimental API nests namespace under the latest version; fill it for older payloads.
        return PackageMetadata(
            latest=metadata.latest.backfill_namespace(namespace),
            community_listings=metadata.community_listings,
        )

    def get_package_version_metadata(self, namespace: str, name: str, version: str) -> PackageManifest:
        path = _package_path(namespace, name) + f"{quote(version, safe='')}/"
        return parse_version_document(self._get_json(path)).backfill_namespace(namespace)

    def download(self, url: str, dest: Path) -> None:
        url = self._url(url)
        log.debug("Downloading %s -> %s", url, dest)
        with self._http.stream("GET", url) as resp:
            resp.raise_for_status()
            with dest.open("wb") as out:
                for chunk in resp.iter_bytes():
                    out.write(chunk)
                out.flush()
                os.fsync(out.fileno())
