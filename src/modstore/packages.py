from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any

_VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")


def is_version_triple(value: str) -> bool:
    return bool(_VERSION_RE.fullmatch(value))


def parse_version(version: str) -> tuple[int, int, int]:
    m = _VERSION_RE.fullmatch(version.strip()) if isinstance(version, str) else None
    if not m:
        raise ValueError(f"Unsupported version format: {version!r}")
    return int(m.group(1)), int(m.group(2)), int(m.group(3))


def compare_versions(a: str, b: str) -> int:
    """Compare two major.minor.patch strings. Raises ValueError if either is malformed."""
    va = parse_version(a)
    vb = parse_version(b)
    if va < vb:
        return -1
    if va > vb:
        return 1
    return 0


def package_key(namespace: str, name: str) -> str:
    return f"{namespace}-{name}"


@dataclass(frozen=True)
class PackageReference:
    namespace: str
    name: str
    version: str | None = None

    @property
    def key(self) -> str:
        return package_key(self.namespace, self.name)

    @property
    def full_name(self) -> str:
        if self.version is None:
            return self.key
        return f"{self.key}-{self.version}"

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class LocalArchive:
    path: str


@dataclass(frozen=True)
class PackageManifest:
    namespace: str | None
    name: str
    version_number: str
    dependencies: tuple[PackageReference, ...] = ()
    file_size: int = 0
    download_url: str | None = None
    owner: str | None = None
    description: str = ""
    website_url: str = ""

    @property
    def key(self) -> str:
        if self.namespace is None:
            raise ValueError(f"Package {self.name} has no namespace; backfill it before use.")
        return package_key(self.namespace, self.name)

    @property
    def full_name(self) -> str:
        return f"{self.key}-{self.version_number}"

    def backfill_namespace(self, namespace: str | None) -> "PackageManifest":
        if self.namespace is not None or namespace is None:
            return self
        return replace(self, namespace=namespace)

    def to_dict(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "namespace": self.namespace,
            "name": self.name,
            "version_number": self.version_number,
            "dependencies": [dep.full_name for dep in self.dependencies],
            "file_size": self.file_size,
        }
        if self.download_url:
            item["download_url"] = self.download_url
        if self.owner:
            item["owner"] = self.owner
        if self.description:
            item["description"] = self.description
        if self.website_url:
            item["website_url"] = self.website_url
        return item


@dataclass(frozen=True)
class PlanEntry:
    manifest: PackageManifest
    resolved_version: str

    @property
    def key(self) -> str:
        return self.manifest.key


@dataclass(frozen=True)
class DependencyPlan:
    entries: tuple[PlanEntry, ...] = ()
    warnings: tuple[str, ...] = ()

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def keys(self) -> list[str]:
        return [entry.key for entry in self.entries]
