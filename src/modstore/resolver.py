"""
Dependency tree resolution.

Resolution runs in two passes over explicit work lists, never recursion, because
dependency depth is controlled by package authors:

* selection keeps one manifest per ``namespace-name`` key. Each key resolves to
  the highest version requested by the manifests currently selected (the root
  included). When a key changes version, the requests of the manifest it
  replaces are withdrawn and the affected keys are re-evaluated, so only live
  requesters decide versions. Keys nobody requests any more are dropped;
* ordering walks the selected manifests depth-first from the root and emits each
  package after everything it depends on. A package met again while it is still
  on the walk stack closes a cycle; that edge is reported and skipped.

The root package is never part of the plan.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Iterable, Iterator

from .packages import DependencyPlan, PackageManifest, PackageReference, PlanEntry, compare_versions
from .repository import PackageRepository

log = logging.getLogger(__name__)


class DependencyResolver:
    def __init__(self, repository: PackageRepository) -> None:
        self.repository = repository

    def resolve(
        self,
        root: PackageManifest,
        *,
        already_installed: Iterable[str] = (),
        source_community: str | None = None,
    ) -> DependencyPlan:
        warnings: list[str] = []
        installed = set(already_installed)
        selected = self._select(root, installed, source_community, warnings)
        entries = self._order(root, selected, installed, warnings)
        log.debug("Resolved %d dependencies for %s: %s", len(entries), root.key, [e.key for e in entries])
        return DependencyPlan(entries=tuple(entries), warnings=tuple(warnings))

    def _warn(self, warnings: list[str], message: str) -> None:
        if message in warnings:
            return
        log.info("%s", message)
        warnings.append(message)

    def _lookup(
        self,
        ref: PackageReference,
        source_community: str | None,
        latest: dict[str, PackageManifest],
        versions: dict[tuple[str, str], PackageManifest],
        warnings: list[str],
    ) -> PackageManifest:
        if ref.version is not None:
            cached = versions.get((ref.key, ref.version))
            if cached is not None:
                return cached
            manifest = self.repository.get_package_version(ref.namespace, ref.name, ref.version)
        else:
            if ref.key in latest:
                return latest[ref.key]
            metadata = self.repository.get_package(ref.namespace, ref.name)
            listings = metadata.community_listings
            if source_community and listings and source_community not in listings:
                self._warn(warnings, f"{ref.key} is not listed in community {source_community!r}")
            manifest = metadata.latest
        manifest = manifest.backfill_namespace(ref.namespace)
        versions[(ref.key, manifest.version_number)] = manifest
        if ref.version is None:
            latest[ref.key] = manifest
        return manifest

    def _is_higher(self, candidate: str, current: str, *, key: str, requester: str, warnings: list[str]) -> bool:
        try:
            return compare_versions(candidate, current) > 0
        except ValueError:
            self._warn(
                warnings,
                f"Cannot compare versions {current!r} and {candidate!r} of {key} (requested by {requester}); "
                f"keeping {current}",
            )
            return False

    def _select(
        self,
        root: PackageManifest,
        installed: set[str],
        source_community: str | None,
        warnings: list[str],
    ) -> dict[str, PackageManifest]:
        root_key = root.key
        selected: dict[str, PackageManifest] = {}
        # demands[key][requester_key] is the reference the currently selected requester declares.
        demands: dict[str, dict[str, PackageReference]] = {}
        latest: dict[str, PackageManifest] = {}
        versions: dict[tuple[str, str], PackageManifest] = {}
        dirty: deque[str] = deque()

        def add_demands(requester_key: str, manifest: PackageManifest) -> None:
            for dep in manifest.dependencies:
                if dep.key == root_key or dep.key in installed:
                    continue
                demands.setdefault(dep.key, {})[requester_key] = dep
                dirty.append(dep.key)

        def drop_demands(requester_key: str, manifest: PackageManifest) -> None:
            for dep in manifest.dependencies:
                if demands.get(dep.key, {}).pop(requester_key, None) is not None:
                    dirty.append(dep.key)

        add_demands(root_key, root)
        while dirty:
            key = dirty.popleft()
            current = selected.get(key)
            requests = demands.get(key)
            if not requests:
                if current is not None:
                    log.debug("%s is no longer required", current.full_name)
                    del selected[key]
                    drop_demands(key, current)
                continue

            manifest = self._choose(key, requests, source_community, latest, versions, warnings)
            if current is not None and current.version_number == manifest.version_number:
                continue
            if current is not None:
                log.info("%s now resolves to %s (was %s)", key, manifest.version_number, current.version_number)
                drop_demands(key, current)
            selected[key] = manifest
            add_demands(key, manifest)
        return selected

    def _choose(
        self,
        key: str,
        requests: dict[str, PackageReference],
        source_community: str | None,
        latest: dict[str, PackageManifest],
        versions: dict[tuple[str, str], PackageManifest],
        warnings: list[str],
    ) -> PackageManifest:
        """Pick the highest version any live requester asks for. Unpinned requests mean latest."""
        best: PackageManifest | None = None
        best_requester = ""
        for requester, ref in requests.items():
            candidate = self._lookup(ref, source_community, latest, versions, warnings)
            if best is None:
                best, best_requester = candidate, requester
            elif self._is_higher(
                candidate.version_number, best.version_number, key=key, requester=requester, warnings=warnings
            ):
                best, best_requester = candidate, requester
        log.debug("%s resolves to %s (requested by %s)", key, best.version_number, best_requester)
        return best

    def _order(
        self,
        root: PackageManifest,
        selected: dict[str, PackageManifest],
        installed: set[str],
        warnings: list[str],
    ) -> list[PlanEntry]:
        root_key = root.key
        entries: list[PlanEntry] = []
        emitted: set[str] = set()
        in_progress: set[str] = {root_key}
        stack: list[tuple[str, Iterator[PackageReference]]] = [(root_key, iter(root.dependencies))]

        while stack:
            key, deps = stack[-1]
            dep = next(deps, None)
            if dep is None:
                stack.pop()
                in_progress.discard(key)
                if key != root_key:
                    manifest = selected[key]
                    entries.append(PlanEntry(manifest=manifest, resolved_version=manifest.version_number))
                    emitted.add(key)
                continue

            dep_key = dep.key
            if dep_key in in_progress:
                self._warn(warnings, f"Dependency cycle: {key} -> {dep_key}; treating {dep_key} as satisfied")
                continue
            if dep_key in emitted or dep_key in installed or dep_key not in selected:
                continue
            in_progress.add(dep_key)
            stack.append((dep_key, iter(selected[dep_key].dependencies)))
        return entries
