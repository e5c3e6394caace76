"""
Parsing of package identifiers.

A package is named ``namespace-name`` and optionally pinned as
``namespace-name-major.minor.patch``. Namespaces may themselves contain hyphens
and dots, names are a single word. The grammar works on hyphen-separated tokens:

1. if there are three or more tokens and the last one is a strict version
   triple, it is the version;
2. the (new) last token is the name and must be a ``\\w+`` word;
3. everything before it, joined back with hyphens, is the namespace.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable

from .exceptions import InvalidIdentifierError
from .packages import LocalArchive, PackageReference, is_version_triple

_NAME_RE = re.compile(r"\w+")
_NAMESPACE_RE = re.compile(r"[\w.-]+")


def parse_package_reference(value: str) -> PackageReference:
    raw = value.strip() if isinstance(value, str) else ""
    tokens = raw.split("-")
    version: str | None = None
    if len(tokens) >= 3 and is_version_triple(tokens[-1]):
        version = tokens.pop()

    if len(tokens) < 2:
        raise InvalidIdentifierError(
            f"Not a valid package identifier (namespace-name[-version]): {value!r}"
        )

    name = tokens[-1]
    namespace = "-".join(tokens[:-1])
    if not _NAME_RE.fullmatch(name) or not _NAMESPACE_RE.fullmatch(namespace):
        raise InvalidIdentifierError(
            f"Not a valid package identifier (namespace-name[-version]): {value!r}"
        )
    return PackageReference(namespace=namespace, name=name, version=version)


def parse_identifier(value: str) -> LocalArchive | PackageReference:
    """Classify user input as a local archive path or a repository reference."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidIdentifierError("Package identifier must not be empty.")
    if Path(value).expanduser().is_file():
        return LocalArchive(path=str(Path(value).expanduser()))
    try:
        return parse_package_reference(value)
    except InvalidIdentifierError as e:
        raise InvalidIdentifierError(
            f"Package given does not exist as a zip and is not a valid package identifier "
            f"(namespace-name): {value}"
        ) from e


def parse_dependency_list(values: Iterable[object]) -> tuple[PackageReference, ...]:
    deps: list[PackageReference] = []
    for raw in values:
        if not isinstance(raw, str):
            raise InvalidIdentifierError(f"Dependency entry must be a string, got {raw!r}")
        if not raw.strip():
            continue
        deps.append(parse_package_reference(raw))
    return tuple(deps)
