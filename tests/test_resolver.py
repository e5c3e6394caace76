import unittest

from fakes import FakeRepository, manifest

from modstore.exceptions import MetadataFetchError
from modstore.packages import PackageManifest, PackageReference
from modstore.resolver import DependencyResolver


def _assert_topological(testcase: unittest.TestCase, plan) -> None:
    position = {key: i for i, key in enumerate(plan.keys())}
    for entry in plan:
        for dep in entry.manifest.dependencies:
            if dep.key in position:
                testcase.assertLess(position[dep.key], position[entry.key], f"{dep.key} must precede {entry.key}")


class TestResolver(unittest.TestCase):
    def test_no_dependencies_gives_empty_plan(self) -> None:
        repo = FakeRepository()
        plan = DependencyResolver(repo).resolve(manifest("author-ModA-1.0.0"))
        self.assertEqual(len(plan), 0)
        self.assertEqual(plan.warnings, ())

    def test_dependencies_precede_dependents_and_root_is_excluded(self) -> None:
        repo = FakeRepository(
            manifest("other-Lib-1.0.0", ["core-Base-1.0.0"]),
            manifest("core-Base-1.0.0"),
            manifest("tools-Helper-2.0.0", ["other-Lib-1.0.0", "core-Base-1.0.0"]),
        )
        root = manifest("author-ModA-1.0.0", ["tools-Helper-2.0.0", "other-Lib-1.0.0"])

        plan = DependencyResolver(repo).resolve(root)

        self.assertEqual(plan.keys(), ["core-Base", "other-Lib", "tools-Helper"])
        self.assertNotIn("author-ModA", plan.keys())
        _assert_topological(self, plan)

    def test_shared_dependency_appears_once_and_is_looked_up_once(self) -> None:
        repo = FakeRepository(
            manifest("a-One-1.0.0", ["shared-Lib-1.0.0"]),
            manifest("b-Two-1.0.0", ["shared-Lib-1.0.0"]),
            manifest("shared-Lib-1.0.0"),
        )
        root = manifest("author-ModA-1.0.0", ["a-One-1.0.0", "b-Two-1.0.0", "shared-Lib-1.0.0"])

        plan = DependencyResolver(repo).resolve(root)

        self.assertEqual(plan.keys().count("shared-Lib"), 1)
        self.assertEqual(len(plan.keys()), len(set(plan.keys())))
        self.assertEqual(repo.version_calls.count("shared-Lib-1.0.0"), 1)

    def test_highest_requested_version_wins(self) -> None:
        repo = FakeRepository(
            manifest("a-One-1.0.0", ["shared-Lib-1.0.0"]),
            manifest("b-Two-1.0.0", ["shared-Lib-2.0.0"]),
            manifest("shared-Lib-1.0.0"),
            manifest("shared-Lib-2.0.0", ["core-Base-1.0.0"]),
            manifest("core-Base-1.0.0"),
        )
        root = manifest("author-ModA-1.0.0", ["a-One-1.0.0", "b-Two-1.0.0"])

        plan = DependencyResolver(repo).resolve(root)

        shared = [e for e in plan if e.key == "shared-Lib"]
        self.assertEqual(len(shared), 1)
        self.assertEqual(shared[0].resolved_version, "2.0.0")
        self.assertIn("core-Base", plan.keys())
        _assert_topological(self, plan)

    def test_lower_later_request_does_not_downgrade(self) -> None:
        repo = FakeRepository(
            manifest("a-One-1.0.0", ["shared-Lib-2.0.0"]),
            manifest("b-Two-1.0.0", ["shared-Lib-1.0.0"]),
            manifest("shared-Lib-1.0.0"),
            manifest("shared-Lib-2.0.0"),
        )
        root = manifest("author-ModA-1.0.0", ["a-One-1.0.0", "b-Two-1.0.0"])

        plan = DependencyResolver(repo).resolve(root)

        self.assertEqual([e.resolved_version for e in plan if e.key == "shared-Lib"], ["2.0.0"])
        self.assertNotIn("shared-Lib-1.0.0", repo.version_calls)

    def test_requests_from_superseded_version_are_withdrawn(self) -> None:
        repo = FakeRepository(
            manifest("a-One-1.0.0", ["shared-Lib-1.0.0"]),
            manifest("b-Two-1.0.0", ["shared-Lib-2.0.0", "y-Util-1.0.0"]),
            manifest("shared-Lib-1.0.0", ["y-Util-3.0.0"]),
            manifest("shared-Lib-2.0.0"),
            manifest("y-Util-1.0.0"),
            manifest("y-Util-3.0.0"),
        )
        root = manifest("author-ModA-1.0.0", ["a-One-1.0.0", "b-Two-1.0.0"])

        plan = DependencyResolver(repo).resolve(root)

        versions = {e.key: e.resolved_version for e in plan}
        self.assertEqual(versions["shared-Lib"], "2.0.0")
        self.assertEqual(versions["y-Util"], "1.0.0")
        _assert_topological(self, plan)

    def test_version_raised_by_replaced_manifest_is_lowered_again(self) -> None:
        # shared-Lib-1.0.0 is selected and pulls y-Util up to 3.0.0 before
        # c-Three's request replaces it with 2.0.0.
        repo = FakeRepository(
            manifest("a-One-1.0.0", ["shared-Lib-1.0.0"]),
            manifest("b-Two-1.0.0", ["c-Three-1.0.0", "y-Util-1.0.0"]),
            manifest("c-Three-1.0.0", ["shared-Lib-2.0.0"]),
            manifest("shared-Lib-1.0.0", ["y-Util-3.0.0", "z-Extra-1.0.0"]),
            manifest("shared-Lib-2.0.0"),
            manifest("y-Util-1.0.0"),
            manifest("y-Util-3.0.0"),
            manifest("z-Extra-1.0.0"),
        )
        root = manifest("author-ModA-1.0.0", ["a-One-1.0.0", "b-Two-1.0.0"])

        plan = DependencyResolver(repo).resolve(root)

        versions = {e.key: e.resolved_version for e in plan}
        self.assertIn("shared-Lib-1.0.0", repo.version_calls)
        self.assertEqual(versions["shared-Lib"], "2.0.0")
        self.assertEqual(versions["y-Util"], "1.0.0")
        self.assertNotIn("z-Extra", versions)
        _assert_topological(self, plan)

    def test_incomparable_versions_keep_first_and_warn(self) -> None:
        repo = FakeRepository(
            manifest("shared-Lib-1.0.0"),
            manifest("shared-Lib-2.0"),
            manifest("a-One-1.0.0", ["shared-Lib-1.0.0"]),
        )
        root = PackageManifest(
            namespace="author",
            name="ModA",
            version_number="1.0.0",
            dependencies=(PackageReference("shared", "Lib"), PackageReference("a", "One", "1.0.0")),
        )

        plan = DependencyResolver(repo).resolve(root)

        self.assertEqual([e.resolved_version for e in plan if e.key == "shared-Lib"], ["2.0"])
        self.assertEqual(len(plan.warnings), 1)
        self.assertIn("Cannot compare versions '2.0' and '1.0.0' of shared-Lib", plan.warnings[0])

    def test_already_installed_keys_are_skipped(self) -> None:
        repo = FakeRepository(manifest("other-Lib-1.0.0", ["core-Base-1.0.0"]), manifest("core-Base-1.0.0"))
        root = manifest("author-ModA-1.0.0", ["other-Lib-1.0.0"])

        plan = DependencyResolver(repo).resolve(root, already_installed={"other-Lib"})

        self.assertEqual(plan.keys(), [])
        self.assertEqual(repo.version_calls, [])

    def test_cycle_is_reported_not_fatal(self) -> None:
        repo = FakeRepository(
            manifest("x-Left-1.0.0", ["y-Right-1.0.0"]),
            manifest("y-Right-1.0.0", ["x-Left-1.0.0"]),
        )
        root = manifest("author-ModA-1.0.0", ["x-Left-1.0.0"])

        with self.assertLogs("modstore.resolver", level="INFO") as logs:
            plan = DependencyResolver(repo).resolve(root)

        cycle_records = [r for r in logs.records if "cycle" in r.getMessage()]
        self.assertEqual([r.levelname for r in cycle_records], ["INFO"])

        self.assertEqual(plan.keys(), ["y-Right", "x-Left"])
        self.assertTrue(any("cycle" in w for w in plan.warnings))

    def test_dependency_on_root_is_a_cycle_edge(self) -> None:
        repo = FakeRepository(manifest("other-Lib-1.0.0", ["author-ModA-1.0.0"]))
        root = manifest("author-ModA-1.0.0", ["other-Lib-1.0.0"])

        plan = DependencyResolver(repo).resolve(root)

        self.assertEqual(plan.keys(), ["other-Lib"])
        self.assertEqual(len(plan.warnings), 1)

    def test_unpinned_dependency_resolves_latest(self) -> None:
        repo = FakeRepository(manifest("other-Lib-1.0.0"), manifest("other-Lib-1.5.0"))
        root = PackageManifest(
            namespace="author", name="ModA", version_number="1.0.0", dependencies=(PackageReference("other", "Lib"),)
        )

        plan = DependencyResolver(repo).resolve(root)

        self.assertEqual([e.resolved_version for e in plan], ["1.5.0"])

    def test_package_missing_from_source_community_warns(self) -> None:
        repo = FakeRepository(manifest("other-Lib-1.0.0"), communities=("lethal-company",))
        root = PackageManifest(
            namespace="author", name="ModA", version_number="1.0.0", dependencies=(PackageReference("other", "Lib"),)
        )

        plan = DependencyResolver(repo).resolve(root, source_community="riskofrain2")

        self.assertEqual(plan.keys(), ["other-Lib"])
        self.assertIn("riskofrain2", plan.warnings[0])

    def test_unknown_dependency_propagates_metadata_error(self) -> None:
        repo = FakeRepository()
        root = manifest("author-ModA-1.0.0", ["ghost-Lib-1.0.0"])
        with self.assertRaises(MetadataFetchError):
            DependencyResolver(repo).resolve(root)


if __name__ == "__main__":
    unittest.main()
