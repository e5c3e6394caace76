from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol

log = logging.getLogger(__name__)

EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127


class Installer(Protocol):
    def install(
        self,
        game_dir: Path,
        profile_dir: Path,
        archive_path: Path,
        namespace_backup: str | None = None,
    ) -> int:
        ...


def build_install_command(
    executable: str,
    game_dir: Path,
    profile_dir: Path,
    archive_path: Path,
    namespace_backup: str | None = None,
) -> list[str]:
    cmd = [executable, "install", str(game_dir), str(profile_dir), str(archive_path)]
    if namespace_backup is not None:
        cmd.extend(["--namespace-backup", namespace_backup])
    return cmd


class SubprocessInstaller:
    """
    Runs the external installer executable once per archive and waits for it.

    Whatever the installer writes to stderr is logged, as a warning when it
    succeeded and as an error when it did not. Only the exit code decides success.
    """

    def __init__(self, executable: str, *, timeout_s: float | None = None) -> None:
        self.executable = executable
        self.timeout_s = timeout_s

    def install(
        self,
        game_dir: Path,
        profile_dir: Path,
        archive_path: Path,
        namespace_backup: str | None = None,
    ) -> int:
        cmd = build_install_command(self.executable, game_dir, profile_dir, archive_path, namespace_backup)
        log.debug("Running installer: %s", cmd)
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout_s,
                check=False,
            )
        except FileNotFoundError:
            log.error("Installer executable not found: %s", self.executable)
            return EXIT_NOT_FOUND
        except subprocess.TimeoutExpired:
            log.error("Installer timed out after %ss on %s", self.timeout_s, archive_path)
            return EXIT_TIMEOUT

        errors = (proc.stderr or "").strip()
        if errors:
            if proc.returncode == 0:
                log.warning(errors)
            else:
                log.error(errors)
        return proc.returncode
