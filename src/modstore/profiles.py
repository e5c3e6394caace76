from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .exceptions import InvalidIdentifierError, ProfileError
from .identifiers import parse_dependency_list
from .packages import PackageManifest

log = logging.getLogger(__name__)

GAMES_FILENAME = "games.json"
SCHEMA_VERSION = 1


@dataclass
class ModProfile:
    name: str
    directory: Path
    installed_mod_versions: dict[str, PackageManifest] = field(default_factory=dict)

    def is_installed(self, key: str) -> bool:
        return key in self.installed_mod_versions

    def installed_version(self, key: str) -> str | None:
        manifest = self.installed_mod_versions.get(key)
        return manifest.version_number if manifest else None

    def record_install(self, manifest: PackageManifest) -> None:
        self.installed_mod_versions[manifest.key] = manifest


@dataclass
class GameDefinition:
    identifier: str
    name: str
    install_directory: Path
    profiles: list[ModProfile] = field(default_factory=list)

    def get_profile(self, name: str) -> ModProfile | None:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        return None


def _write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)


def manifest_from_dict(raw: dict[str, Any]) -> PackageManifest:
    namespace = raw.get("namespace")
    file_size = raw.get("file_size")
    return PackageManifest(
        namespace=namespace if isinstance(namespace, str) and namespace else None,
        name=str(raw["name"]),
        version_number=str(raw["version_number"]),
        dependencies=parse_dependency_list(raw.get("dependencies") or []),
        file_size=file_size if isinstance(file_size, int) else 0,
        download_url=raw.get("download_url"),
        owner=raw.get("owner"),
        description=raw.get("description") or "",
        website_url=raw.get("website_url") or "",
    )


def _profile_from_dict(raw: dict[str, Any]) -> ModProfile:
    mods: dict[str, PackageManifest] = {}
    mods_raw = raw.get("installed_mod_versions")
    if isinstance(mods_raw, dict):
        for key, item in mods_raw.items():
            if not isinstance(item, dict):
                continue
            mods[key] = manifest_from_dict(item)
    return ModProfile(name=str(raw["name"]), directory=Path(raw["directory"]), installed_mod_versions=mods)


def _profile_to_dict(profile: ModProfile) -> dict[str, Any]:
    return {
        "name": profile.name,
        "directory": str(profile.directory),
        "installed_mod_versions": {
            key: profile.installed_mod_versions[key].to_dict() for key in sorted(profile.installed_mod_versions)
        },
    }


class GameDefinitionStore:
    """
    Every known game and its profiles, kept in ``games.json`` under the data directory.

    The in-memory copy is mutated while installing; nothing reaches disk until
    ``persist()`` is called.
    """

    def __init__(self, data_dir: Path, games: list[GameDefinition] | None = None) -> None:
        self.data_dir = Path(data_dir).expanduser()
        self.games: list[GameDefinition] = list(games or [])

    @property
    def path(self) -> Path:
        return self.data_dir / GAMES_FILENAME

    @classmethod
    def load(cls, data_dir: Path) -> "GameDefinitionStore":
        store = cls(data_dir)
        if not store.path.exists():
            return store
        try:
            raw = json.loads(store.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ProfileError(f"Could not read {store.path}: {e}") from e
        if not isinstance(raw, dict) or not isinstance(raw.get("games"), list):
            raise ProfileError(f"{store.path} is not a valid game definition file.")

        try:
            for item in raw["games"]:
                profiles = [_profile_from_dict(p) for p in item.get("profiles", []) if isinstance(p, dict)]
                store.games.append(
                    GameDefinition(
                        identifier=str(item["identifier"]),
                        name=str(item.get("name") or item["identifier"]),
                        install_directory=Path(item["install_directory"]),
                        profiles=profiles,
                    )
                )
        except (KeyError, TypeError, InvalidIdentifierError) as e:
            raise ProfileError(f"{store.path} is not a valid game definition file: {e}") from e
        return store

    def persist(self) -> Path:
        payload = {
            "schema_version": SCHEMA_VERSION,
            "updated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "games": [
                {
                    "identifier": game.identifier,
                    "name": game.name,
                    "install_directory": str(game.install_directory),
                    "profiles": [_profile_to_dict(p) for p in game.profiles],
                }
                for game in self.games
            ],
        }
        _write_json_atomic(self.path, payload)
        log.debug("Saved game definitions to %s", self.path)
        return self.path

    def get_game(self, identifier: str) -> GameDefinition:
        for game in self.games:
            if game.identifier == identifier:
                return game
        raise ProfileError(f"Not configured for the game: {identifier}")

    def add_game(self, identifier: str, install_directory: Path, *, name: str | None = None) -> GameDefinition:
        for game in self.games:
            if game.identifier == identifier:
                game.install_directory = Path(install_directory)
                if name:
                    game.name = name
                return game
        game = GameDefinition(identifier=identifier, name=name or identifier, install_directory=Path(install_directory))
        self.games.append(game)
        return game

    def default_profile_directory(self, game: GameDefinition, profile_name: str) -> Path:
        return self.data_dir / "profiles" / game.identifier / profile_name

    def get_or_create_profile(self, game: GameDefinition, profile_name: str) -> ModProfile:
        profile = game.get_profile(profile_name)
        if profile is None:
            profile = ModProfile(name=profile_name, directory=self.default_profile_directory(game, profile_name))
            game.profiles.append(profile)
            log.info("Created profile %s for %s", profile_name, game.identifier)
        return profile
