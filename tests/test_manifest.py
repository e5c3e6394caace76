import json
import tempfile
import unittest
import zipfile
from pathlib import Path

from modstore.exceptions import ManifestInvalidError, ManifestMissingError
from modstore.manifest import parse_manifest_document, read_archive_manifest
from modstore.packages import PackageReference


class TestReadArchiveManifest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _zip(self, name: str, entries: dict[str, bytes]) -> Path:
        path = self.root / name
        with zipfile.ZipFile(path, "w") as zf:
            for entry, data in entries.items():
                zf.writestr(entry, data)
        return path

    def test_reads_manifest_fields(self) -> None:
        doc = {
            "name": "ModA",
            "version_number": "1.2.3",
            "namespace": "author",
            "dependencies": ["other-Lib-1.0.0", "bbepis-BepInExPack-5.4.2100"],
            "website_url": "https://example.invalid",
            "description": "A mod",
        }
        path = self._zip("a.zip", {"manifest.json": json.dumps(doc).encode("utf-8")})

        m = read_archive_manifest(path)

        self.assertEqual(m.full_name, "author-ModA-1.2.3")
        self.assertEqual(
            m.dependencies,
            (PackageReference("other", "Lib", "1.0.0"), PackageReference("bbepis", "BepInExPack", "5.4.2100")),
        )
        self.assertEqual(m.website_url, "https://example.invalid")

    def test_namespace_is_optional(self) -> None:
        path = self._zip("a.zip", {"manifest.json": b'{"name": "ModA", "version_number": "1.0.0"}'})
        m = read_archive_manifest(path)
        self.assertIsNone(m.namespace)
        self.assertEqual(m.backfill_namespace("author").key, "author-ModA")

    def test_byte_order_mark_is_accepted(self) -> None:
        data = '{"name": "ModA", "version_number": "1.0.0"}'.encode("utf-8-sig")
        path = self._zip("a.zip", {"manifest.json": data})
        self.assertEqual(read_archive_manifest(path).name, "ModA")

    def test_missing_manifest(self) -> None:
        path = self._zip("a.zip", {"plugins/mod.dll": b"\x00"})
        with self.assertRaises(ManifestMissingError) as ctx:
            read_archive_manifest(path)
        self.assertIn("manifest.json", str(ctx.exception))

    def test_invalid_json(self) -> None:
        path = self._zip("a.zip", {"manifest.json": b"{not json"})
        with self.assertRaises(ManifestInvalidError):
            read_archive_manifest(path)

    def test_not_a_zip(self) -> None:
        path = self.root / "a.zip"
        path.write_bytes(b"plain text")
        with self.assertRaises(ManifestInvalidError):
            read_archive_manifest(path)


class TestParseManifestDocument(unittest.TestCase):
    def test_camel_case_keys(self) -> None:
        m = parse_manifest_document(
            {"name": "ModA", "versionNumber": "2.0.0", "websiteUrl": "https://x.invalid"}, source="test"
        )
        self.assertEqual(m.version_number, "2.0.0")
        self.assertEqual(m.website_url, "https://x.invalid")
        self.assertEqual(m.dependencies, ())

    def test_requires_name_and_version(self) -> None:
        with self.assertRaises(ManifestInvalidError):
            parse_manifest_document({"name": "ModA"}, source="test")
        with self.assertRaises(ManifestInvalidError):
            parse_manifest_document(["ModA"], source="test")

    def test_dependencies_must_be_a_list_of_identifiers(self) -> None:
        with self.assertRaises(ManifestInvalidError):
            parse_manifest_document({"name": "ModA", "version_number": "1.0.0", "dependencies": "x-Y"}, source="t")
        with self.assertRaises(ManifestInvalidError):
            parse_manifest_document({"name": "ModA", "version_number": "1.0.0", "dependencies": ["bad"]}, source="t")


if __name__ == "__main__":
    unittest.main()
