"""
Unit tests for dependency string parsing.
"""

import pytest

from pawnctl.core.overrides import BUILTIN_OVERRIDES, OverrideTable
from pawnctl.core.specifier import (
    ConstraintKind,
    DependencyDescriptor,
    DependencyKind,
    MalformedSpecifierError,
    SchemeKind,
    canonical_form,
    parse_specifier,
)

COMMIT = "0123456789abcdef0123456789abcdef01234567"


class TestParseGitSpecifiers:

    def test_owner_repo_with_tag(self):
        d = parse_specifier("user/repo:1.2.3")

        assert d.owner == "user"
        assert d.repo == "repo"
        assert d.site == "github.com"
        assert d.tag == "1.2.3"
        assert d.branch == "" and d.commit == ""
        assert d.kind is DependencyKind.GIT
        assert d.constraint_kind is ConstraintKind.TAG

    def test_branch(self):
        d = parse_specifier("pawn-lang/YSI-Includes@5.x")
        assert d.branch == "5.x"
        assert d.constraint == "@5.x"

    def test_commit(self):
        d = parse_specifier(f"user/repo#{COMMIT}")
        assert d.commit == COMMIT
        assert d.constraint_kind is ConstraintKind.COMMIT

    def test_sub_path(self):
        d = parse_specifier("user/repo/include/extra:v2")
        assert d.path == "include/extra"
        assert d.tag == "v2"

    def test_no_constraint(self):
        d = parse_specifier("pawn-lang/samp-stdlib")
        assert d.constraint_kind is ConstraintKind.NONE
        assert d.version == ""

    def test_site_prefix(self):
        d = parse_specifier("gitlab.com/user/repo:1.0")
        assert d.site == "gitlab.com"
        assert d.url() == "https://gitlab.com/user/repo"

    def test_https_url_strips_dot_git(self):
        d = parse_specifier("https://github.com/user/repo.git")
        assert (d.site, d.owner, d.repo) == ("github.com", "user", "repo")

    def test_ssh_shorthand(self):
        d = parse_specifier("git@github.com:user/repo:1.0")
        assert d.ssh_user == "git"
        assert d.tag == "1.0"
        assert d.url() == "git@github.com:user/repo"

    def test_whitespace_is_trimmed(self):
        assert parse_specifier("  user/repo  ").repo == "repo"


class TestParseSchemeSpecifiers:

    def test_local_scheme(self):
        d = parse_specifier("plugin://local/plugins/my-plugin")

        assert d.scheme is SchemeKind.PLUGIN
        assert d.local == "plugins/my-plugin"
        assert d.site == ""
        assert d.kind is DependencyKind.LOCAL_SCHEME
        assert d.is_local

    def test_remote_scheme(self):
        d = parse_specifier("includes://user/repo/inc:1.0")

        assert d.scheme is SchemeKind.INCLUDES
        assert d.kind is DependencyKind.REMOTE_SCHEME
        assert d.path == "inc"
        assert d.as_git().scheme is None

    def test_empty_local_path(self):
        with pytest.raises(MalformedSpecifierError):
            parse_specifier("plugin://local/")


class TestMalformedSpecifiers:

    def test_short_commit_hash(self):
        with pytest.raises(MalformedSpecifierError, match=r"incorrect length \(39\)"):
            parse_specifier("user/repo#" + COMMIT[:39])

    def test_non_hex_commit(self):
        with pytest.raises(MalformedSpecifierError, match="hexadecimal"):
            parse_specifier("user/repo#" + "z" * 40)

    def test_missing_repo(self):
        with pytest.raises(MalformedSpecifierError):
            parse_specifier("just-a-name")

    def test_empty(self):
        with pytest.raises(MalformedSpecifierError, match="empty"):
            parse_specifier("   ")

    def test_invalid_version_separator(self):
        with pytest.raises(MalformedSpecifierError, match="invalid version specifier"):
            parse_specifier("user/repo!1.0")

    def test_empty_version(self):
        with pytest.raises(MalformedSpecifierError, match="empty version"):
            parse_specifier("user/repo:")

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_specifier("nope")


class TestDescriptor:

    def test_validate_rejects_two_constraints(self):
        d = DependencyDescriptor(owner="a", repo="b", tag="1.0", branch="main")
        with pytest.raises(MalformedSpecifierError, match="only one"):
            d.validate()

    def test_validate_rejects_local_without_scheme(self):
        with pytest.raises(MalformedSpecifierError, match="URL scheme"):
            DependencyDescriptor(owner="a", repo="b", local="x").validate()

    def test_pinned_to_clears_tag_and_branch(self):
        d = parse_specifier("user/repo:1.0").pinned_to(COMMIT)
        assert (d.tag, d.branch, d.commit) == ("", "", COMMIT)

    def test_with_tag(self):
        assert parse_specifier("user/repo@dev").with_tag("2.0.0").render() == "user/repo:2.0.0"

    @pytest.mark.parametrize(
        "raw",
        [
            "user/repo",
            "user/repo:1.2.3",
            "user/repo@main",
            f"user/repo#{COMMIT}",
            "user/repo/sub:^1.0",
            "gitlab.com/user/repo",
            "plugin://local/plugins/x",
            "includes://user/repo",
        ],
    )
    def test_canonical_strings_render_unchanged(self, raw):
        assert canonical_form(raw) == raw

    def test_default_site_is_omitted(self):
        assert canonical_form("github.com/user/repo:1.0") == "user/repo:1.0"
        assert parse_specifier("user/repo").render(include_site=True) == "github.com/user/repo"


class TestOverridesApplied:

    def test_override_runs_before_parsing(self):
        table = OverrideTable(local={"old/pkg": "new/pkg:4.22"})
        d = parse_specifier("old/pkg:4.20", table)
        assert (d.owner, d.repo, d.tag) == ("new", "pkg", "4.22")

    def test_builtin_crashdetect_redirect(self):
        d = parse_specifier("Zeex/samp-plugin-crashdetect:v4.19.4", OverrideTable(builtin=BUILTIN_OVERRIDES))
        assert d.owner == "AmyrAhmady"
        assert d.tag == "v4.19.4"
