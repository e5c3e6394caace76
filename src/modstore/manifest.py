from __future__ import annotations

import json
import zipfile
from pathlib import Path
from typing import Any

from .exceptions import InvalidIdentifierError, ManifestInvalidError, ManifestMissingError
from .identifiers import parse_dependency_list
from .packages import PackageManifest

MANIFEST_FILENAME = "manifest.json"


def _field(raw: dict[str, Any], *names: str) -> str | None:
    for name in names:
        value = raw.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def parse_manifest_document(raw: Any, *, source: str) -> PackageManifest:
    if not isinstance(raw, dict):
        raise ManifestInvalidError(f"{MANIFEST_FILENAME} in {source} is not a JSON object.")

    name = _field(raw, "name")
    version = _field(raw, "version_number", "versionNumber")
    if name is None or version is None:
        raise ManifestInvalidError(f"{MANIFEST_FILENAME} in {source} needs both name and version_number.")

    deps_raw = raw.get("dependencies", [])
    if not isinstance(deps_raw, list):
        raise ManifestInvalidError(f"{MANIFEST_FILENAME} in {source}: dependencies must be a list.")
    try:
        dependencies = parse_dependency_list(deps_raw)
    except InvalidIdentifierError as e:
        raise ManifestInvalidError(f"{MANIFEST_FILENAME} in {source}: {e}") from e

    return PackageManifest(
        namespace=_field(raw, "namespace"),
        name=name,
        version_number=version,
        dependencies=dependencies,
        description=_field(raw, "description") or "",
        website_url=_field(raw, "website_url", "websiteUrl") or "",
    )


def read_archive_manifest(path: str | Path) -> PackageManifest:
    """Read the manifest.json embedded at the root of a package archive."""
    archive = Path(path)
    try:
        with zipfile.ZipFile(archive, "r") as zf:
            try:
                data = zf.read(MANIFEST_FILENAME)
            except KeyError as e:
                raise ManifestMissingError(f"Package zip needs a {MANIFEST_FILENAME}: {archive}") from e
    except (zipfile.BadZipFile, OSError) as e:
        raise ManifestInvalidError(f"Could not open package archive {archive}: {e}") from e

    try:
        raw = json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ManifestInvalidError(f"Package {MANIFEST_FILENAME} in {archive} is invalid: {e}") from e
    return parse_manifest_document(raw, source=str(archive))
