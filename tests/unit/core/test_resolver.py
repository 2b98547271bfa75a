"""
Unit tests for the top-level DependencyResolver.
"""

import json
from unittest.mock import MagicMock

import pytest

from conftest import sha, write_package
from pawnctl.core.deadline import Deadline
from pawnctl.core.errors import OperationCancelled
from pawnctl.core.graph import GraphBuildError
from pawnctl.core.lockfile import LockfileSession
from pawnctl.core.manifest import PackageDefinitionError
from pawnctl.core.overrides import OverrideTable
from pawnctl.core.resolver import DependencyResolver
from pawnctl.core.specifier import parse_specifier

TAGS = {"v1.0.0": sha(1), "v1.1.0": sha(2), "v2.0.0": sha(3)}


def _resolver(project_dir, store, **kwargs):
    kwargs.setdefault("overrides", OverrideTable.empty())
    return DependencyResolver(project_dir, store=store, sleep=lambda s: None, **kwargs)


def _lock(project_dir):
    return json.loads((project_dir / "pawn.lock").read_text())["dependencies"]


class TestEnsure:

    def test_resolves_and_writes_lockfile(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=["owner/lib:^1.0"])

        result = _resolver(project_dir, fake_store).ensure()

        assert result.success
        [dep] = result.dependencies
        assert dep.commit == sha(2)
        assert dep.version == "v1.1.0"
        assert dep.from_lockfile is False
        assert dep.path == project_dir.resolve() / "dependencies" / "lib"
        assert result.lockfile_written
        entry = _lock(project_dir)["github.com/owner/lib"]
        assert entry["commit"] == sha(2)
        assert entry["constraint"] == ":^1.0"

    def test_locked_commit_takes_precedence(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=["owner/lib:^1.0"])
        session = LockfileSession.open(project_dir)
        session.record_resolution(parse_specifier("owner/lib:^1.0"), sha(1))
        session.save()

        result = _resolver(project_dir, fake_store).ensure()

        [dep] = result.dependencies
        assert dep.commit == sha(1)
        assert dep.from_lockfile is True
        assert result.lockfile_written is False

    def test_force_update_ignores_lock(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=["owner/lib:^1.0"])
        session = LockfileSession.open(project_dir)
        session.record_resolution(parse_specifier("owner/lib:^1.0"), sha(1))
        session.save()

        result = _resolver(project_dir, fake_store, force_update=True).ensure()

        assert result.dependencies[0].commit == sha(2)
        assert _lock(project_dir)["github.com/owner/lib"]["commit"] == sha(2)

    def test_changed_constraint_re_resolves(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=["owner/lib:^1.0"])
        _resolver(project_dir, fake_store).ensure()

        write_package(project_dir, repo="app", dependencies=["owner/lib:^2.0"])
        resolver = _resolver(project_dir, fake_store)
        assert [d.name for d in resolver.outdated()] == ["owner/lib"]

        result = resolver.ensure()

        assert result.dependencies[0].commit == sha(3)
        assert resolver.outdated() == []
        assert _lock(project_dir)["github.com/owner/lib"]["constraint"] == ":^2.0"

    def test_no_lock_mode(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=["owner/lib:^1.0"])

        result = _resolver(project_dir, fake_store, use_lockfile=False).ensure()

        assert result.success
        assert not (project_dir / "pawn.lock").exists()

    def test_transitive_dependencies_are_locked(self, fake_store, project_dir):
        fake_store.add("owner/a", package={"repo": "a", "dependencies": ["owner/shared:1.0.0"]})
        fake_store.add("owner/shared", tags={"1.0.0": sha(7)})
        write_package(project_dir, repo="app", dependencies=["owner/a"])

        _resolver(project_dir, fake_store).ensure()

        lock = _lock(project_dir)
        assert lock["github.com/owner/a"]["transitive"] is False
        assert lock["github.com/owner/shared"]["transitive"] is True
        assert lock["github.com/owner/shared"]["required_by"] == ["github.com/owner/a"]

    def test_removed_dependency_is_pruned(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        fake_store.add("owner/old")
        write_package(project_dir, repo="app", dependencies=["owner/lib:^1.0", "owner/old"])
        _resolver(project_dir, fake_store).ensure()

        write_package(project_dir, repo="app", dependencies=["owner/lib:^1.0"])
        result = _resolver(project_dir, fake_store).ensure()

        assert result.pruned == ["github.com/owner/old"]
        assert "github.com/owner/old" not in _lock(project_dir)

    def test_local_dependencies_are_locked(self, fake_store, project_dir):
        write_package(project_dir, repo="app", dependencies=["plugin://local/plugins/x"])

        result = _resolver(project_dir, fake_store).ensure()

        assert result.dependencies == []
        assert _lock(project_dir)["plugin://local/plugins/x"]["resolved"] == "local"


class TestFailures:

    def test_missing_package_definition(self, fake_store, project_dir):
        with pytest.raises(PackageDefinitionError):
            _resolver(project_dir, fake_store).ensure()

    def test_root_dependency_failure_is_fatal(self, fake_store, project_dir):
        write_package(project_dir, repo="app", dependencies=["owner/missing"])

        with pytest.raises(GraphBuildError):
            _resolver(project_dir, fake_store).ensure()

    def test_transient_failure_is_retried(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=["owner/lib:^1.0"])
        resolver = _resolver(project_dir, fake_store)
        graph = resolver.build_graph()
        fake_store.fail_times("owner/lib", 1)

        resolved = resolver._with_retry(graph.dependencies[0], lambda: resolver.ensure_package(graph.dependencies[0], graph))

        assert resolved.commit == sha(2)

    def test_persistent_failure_is_collected(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        fake_store.add("owner/other", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=["owner/lib:^1.0", "owner/other:^1.0"])
        resolver = _resolver(project_dir, fake_store)
        original_vendored = fake_store.ensure_vendored

        def flaky(descriptor, dest, force_update=False):
            if descriptor.repo == "lib":
                fake_store.fail_times("owner/lib", 1)
            return original_vendored(descriptor, dest, force_update)

        fake_store.ensure_vendored = flaky

        result = resolver.ensure()

        assert not result.success
        assert len(result.failures) == 1
        assert "owner/lib" in result.failures[0]
        assert [d.descriptor.repo for d in result.dependencies] == ["other"]
        assert result.pruned == []
        assert "github.com/owner/other" in _lock(project_dir)

    def test_missing_tag_is_not_retried(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=["owner/lib:^9.0"])
        sleeps = []
        resolver = DependencyResolver(
            project_dir, store=fake_store, overrides=OverrideTable.empty(), sleep=sleeps.append
        )

        result = resolver.ensure()

        assert "no tag matching '^9.0'" in result.failures[0]
        assert sleeps == []

    def test_cancellation_propagates(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=["owner/lib:^1.0"])
        deadline = Deadline()
        deadline.cancel()

        with pytest.raises(OperationCancelled):
            _resolver(project_dir, fake_store, deadline=deadline).ensure()


class TestPinTagless:

    def test_ensure_with_pin_tagless(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=["owner/lib"])

        result = _resolver(project_dir, fake_store).ensure(pin_tagless=True)

        assert result.dependencies[0].commit == sha(3)
        written = json.loads((project_dir / "pawn.json").read_text())
        assert written["dependencies"] == ["owner/lib:v2.0.0"]
        assert _lock(project_dir)["github.com/owner/lib"]["constraint"] == ":v2.0.0"


class TestInstall:

    def test_tagless_target_is_pinned_and_ensured(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=[])

        result = _resolver(project_dir, fake_store).install(["owner/lib"])

        assert result.success
        assert result.dependencies[0].commit == sha(3)
        written = json.loads((project_dir / "pawn.json").read_text())
        assert written["dependencies"] == ["owner/lib:v2.0.0"]
        assert _lock(project_dir)["github.com/owner/lib"]["commit"] == sha(3)

    def test_dev_target_keeps_its_constraint(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=[])

        _resolver(project_dir, fake_store).install(["owner/lib:^1.0"], dev=True)

        written = json.loads((project_dir / "pawn.json").read_text())
        assert written["dev_dependencies"] == ["owner/lib:^1.0"]
        assert "dependencies" not in written

    def test_declared_target_is_skipped(self, fake_store, project_dir):
        fake_store.add("owner/lib", tags=TAGS)
        write_package(project_dir, repo="app", dependencies=["owner/lib:^1.0"])
        before = (project_dir / "pawn.json").read_text()

        result = _resolver(project_dir, fake_store).install(["owner/lib:2.0.0"], dev=True)

        assert result is None
        assert (project_dir / "pawn.json").read_text() == before


class TestUninstall:

    def test_removes_any_constraint_of_the_repository(self, fake_store, project_dir):
        write_package(project_dir, repo="app", dependencies=["owner/lib:v1.0.0", "owner/other"])

        removed = _resolver(project_dir, fake_store).uninstall(["owner/lib"])

        assert removed == ["owner/lib:v1.0.0"]
        written = json.loads((project_dir / "pawn.json").read_text())
        assert written["dependencies"] == ["owner/other"]

    def test_only_searches_the_selected_list(self, fake_store, project_dir):
        write_package(project_dir, repo="app", dependencies=["owner/lib"], dev_dependencies=["owner/tool"])
        before = (project_dir / "pawn.json").read_text()

        assert _resolver(project_dir, fake_store).uninstall(["owner/lib"], dev=True) == []
        assert (project_dir / "pawn.json").read_text() == before

        assert _resolver(project_dir, fake_store).uninstall(["owner/tool"], dev=True) == ["owner/tool"]
        assert "dev_dependencies" not in json.loads((project_dir / "pawn.json").read_text())


class TestClose:

    def test_context_manager_closes_release_client(self, fake_store, project_dir):
        releases = MagicMock()

        with _resolver(project_dir, fake_store, releases=releases) as resolver:
            assert resolver.releases is releases

        releases.close.assert_called_once()

    def test_close_without_release_source(self, fake_store, project_dir):
        _resolver(project_dir, fake_store).close()
