import subprocess
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

from modstore.installer import EXIT_NOT_FOUND, EXIT_TIMEOUT, SubprocessInstaller, build_install_command


class TestBuildInstallCommand(unittest.TestCase):
    def test_without_namespace_backup(self) -> None:
        cmd = build_install_command("tcli-bepinex-installer", Path("/game"), Path("/profile"), Path("/cache/a.zip"))
        self.assertEqual(cmd, ["tcli-bepinex-installer", "install", "/game", "/profile", "/cache/a.zip"])

    def test_with_namespace_backup(self) -> None:
        cmd = build_install_command("inst", Path("/game"), Path("/profile"), Path("/a.zip"), "author")
        self.assertEqual(cmd[-2:], ["--namespace-backup", "author"])


class TestSubprocessInstaller(unittest.TestCase):
    def test_returns_exit_code_and_logs_stderr(self) -> None:
        installer = SubprocessInstaller("inst", timeout_s=10)
        with (
            patch("modstore.installer.subprocess.run", return_value=SimpleNamespace(returncode=2, stderr="boom\n")) as run,
            self.assertLogs("modstore.installer", level="ERROR") as logs,
        ):
            rc = installer.install(Path("/game"), Path("/profile"), Path("/a.zip"), "author")

        self.assertEqual(rc, 2)
        self.assertEqual(run.call_args.args[0], ["inst", "install", "/game", "/profile", "/a.zip", "--namespace-backup", "author"])
        self.assertEqual(run.call_args.kwargs["timeout"], 10)
        self.assertFalse(run.call_args.kwargs["check"])
        self.assertIn("boom", logs.output[0])

    def test_stderr_on_success_is_a_warning(self) -> None:
        installer = SubprocessInstaller("inst")
        with (
            patch("modstore.installer.subprocess.run", return_value=SimpleNamespace(returncode=0, stderr="note")),
            self.assertLogs("modstore.installer", level="WARNING") as logs,
        ):
            rc = installer.install(Path("/game"), Path("/profile"), Path("/a.zip"))

        self.assertEqual(rc, 0)
        self.assertTrue(logs.records[0].levelname == "WARNING")

    def test_missing_executable(self) -> None:
        installer = SubprocessInstaller("does-not-exist")
        with patch("modstore.installer.subprocess.run", side_effect=FileNotFoundError("does-not-exist")):
            rc = installer.install(Path("/game"), Path("/profile"), Path("/a.zip"))
        self.assertEqual(rc, EXIT_NOT_FOUND)

    def test_timeout(self) -> None:
        installer = SubprocessInstaller("inst", timeout_s=0.1)
        with patch("modstore.installer.subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="inst", timeout=0.1)):
            rc = installer.install(Path("/game"), Path("/profile"), Path("/a.zip"))
        self.assertEqual(rc, EXIT_TIMEOUT)


if __name__ == "__main__":
    unittest.main()
