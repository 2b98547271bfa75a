"""
Unit tests for pinning tagless dependencies.
"""

import json
from unittest.mock import MagicMock

import pytest

from conftest import sha, write_package
from pawnctl.core.errors import DependencyError
from pawnctl.core.manifest import PackageDefinition
from pawnctl.core.result import Err, Ok
from pawnctl.core.tagless import TaglessPinError, TaglessPinner


@pytest.fixture
def package(project_dir):
    write_package(
        project_dir,
        repo="app",
        dependencies=["owner/lib", "owner/pinned:1.0", "plugin://local/plugins/x"],
        dev_dependencies=["owner/dev-tool"],
    )
    return PackageDefinition.load(project_dir)


class TestTaglessPinner:

    def test_pins_to_highest_tag(self, fake_store, package, project_dir):
        fake_store.add("owner/lib", tags={"1.0.0": sha(1), "2.0.0": sha(2)})
        fake_store.add("owner/dev-tool", tags={"v0.3.0": sha(3)})

        changed = TaglessPinner(fake_store).pin_unconstrained(package)

        assert changed is True
        written = json.loads((project_dir / "pawn.json").read_text())
        assert written["dependencies"] == ["owner/lib:2.0.0", "owner/pinned:1.0", "plugin://local/plugins/x"]
        assert written["dev_dependencies"] == ["owner/dev-tool:v0.3.0"]
        assert package.dependencies[0] == "owner/lib:2.0.0"

    def test_release_api_is_preferred(self, fake_store, package):
        fake_store.add("owner/lib", tags={"1.0.0": sha(1)})
        fake_store.add("owner/dev-tool")
        releases = MagicMock()
        releases.latest_stable_tag.side_effect = lambda owner, repo: Ok("v3.0.0") if repo == "lib" else Ok(None)

        TaglessPinner(fake_store, releases=releases).pin_unconstrained(package)

        assert package.dependencies[0] == "owner/lib:v3.0.0"
        assert package.dev_dependencies == ["owner/dev-tool"]

    def test_release_api_failure_falls_back_to_tags(self, fake_store, package):
        fake_store.add("owner/lib", tags={"1.5.0": sha(1)})
        fake_store.add("owner/dev-tool")
        releases = MagicMock()
        releases.latest_stable_tag.return_value = Err("HTTP 403")

        TaglessPinner(fake_store, releases=releases).pin_unconstrained(package)

        assert package.dependencies[0] == "owner/lib:1.5.0"

    def test_nothing_to_pin(self, fake_store, project_dir):
        write_package(project_dir, repo="app", dependencies=["owner/pinned:1.0"])
        package = PackageDefinition.load(project_dir)
        before = (project_dir / "pawn.json").read_bytes()

        assert TaglessPinner(fake_store).pin_unconstrained(package) is False
        assert (project_dir / "pawn.json").read_bytes() == before

    def test_untagged_repository_is_left_alone(self, fake_store, package):
        fake_store.add("owner/lib")
        fake_store.add("owner/dev-tool", tags={"1.0.0": sha(1)})

        TaglessPinner(fake_store).pin_unconstrained(package)

        assert package.dependencies[0] == "owner/lib"
        assert package.dev_dependencies == ["owner/dev-tool:1.0.0"]

    def test_refresh_failure_rolls_back(self, fake_store, package, project_dir):
        fake_store.add("owner/lib", tags={"1.0.0": sha(1)})
        fake_store.add("owner/dev-tool", tags={"1.0.0": sha(2)})
        original = (project_dir / "pawn.json").read_bytes()
        refresh = MagicMock(side_effect=DependencyError("owner/lib", "network error"))

        with pytest.raises(TaglessPinError, match="rolled back") as exc:
            TaglessPinner(fake_store, refresh=refresh).pin_unconstrained(package)

        assert exc.value.rolled_back is True
        assert (project_dir / "pawn.json").read_bytes() == original
        assert package.dependencies[0] == "owner/lib"
        assert package.dev_dependencies == ["owner/dev-tool"]
        refresh.assert_called_once()

    def test_refresh_success_keeps_changes(self, fake_store, package, project_dir):
        fake_store.add("owner/lib", tags={"1.0.0": sha(1)})
        fake_store.add("owner/dev-tool")
        refresh = MagicMock()

        TaglessPinner(fake_store, refresh=refresh).pin_unconstrained(package)

        refresh.assert_called_once_with(package)
        assert "owner/lib:1.0.0" in (project_dir / "pawn.json").read_text()
