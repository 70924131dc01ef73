"""Tests for exclusion globs, file-type filtering and model parsing helpers."""

import pytest

from revloop_core.config import DEFAULT_EXCLUDE
from revloop_core.models import ChangeType, Severity
from revloop_core.utils.code import is_reviewable_file
from revloop_core.utils.patterns import compile_exclude_patterns, glob_to_regex, is_excluded
from revloop_core.utils.text import excerpt


class TestGlobToRegex:
    def test_single_star_stops_at_separator(self):
        pattern = glob_to_regex("src/*.cs")
        assert pattern.match("src/app.cs")
        assert not pattern.match("src/deep/app.cs")

    def test_double_star_crosses_separators(self):
        assert glob_to_regex("src/**").match("src/a/b/c.cs")

    def test_question_mark_is_one_character(self):
        pattern = glob_to_regex("v?.json")
        assert pattern.match("v1.json")
        assert not pattern.match("v10.json")

    def test_anchored_and_case_insensitive(self):
        pattern = glob_to_regex("*.min.js")
        assert pattern.match("APP.MIN.JS")
        assert not pattern.match("app.min.js.map")

    def test_regex_metacharacters_are_literal(self):
        assert not glob_to_regex("a+b.cs").match("aab.cs")


class TestIsExcluded:
    @pytest.mark.parametrize(
        "path",
        [
            "/src/Models/User.generated.cs",
            "/src/Forms/Main.Designer.cs",
            "/obj/App.g.cs",
            "/web/package-lock.json",
            "/yarn.lock",
            "/pnpm-lock.yaml",
            "/static/site.min.js",
            "/static/site.min.css",
        ],
    )
    def test_default_excludes(self, path):
        assert is_excluded(path, compile_exclude_patterns(DEFAULT_EXCLUDE))

    def test_regular_file_not_excluded(self):
        assert not is_excluded("/src/Program.cs", compile_exclude_patterns(DEFAULT_EXCLUDE))

    def test_full_path_match(self):
        assert is_excluded("legacy/vendor/x.py", compile_exclude_patterns(["legacy/**"]))

    def test_backslash_paths_use_basename(self):
        assert is_excluded("src\\gen\\x.g.cs", compile_exclude_patterns(["*.g.cs"]))

    def test_empty_globs_are_ignored(self):
        assert compile_exclude_patterns(["", "*.cs"])[0].pattern.endswith("$")
        assert len(compile_exclude_patterns(["", "*.cs"])) == 1


class TestIsReviewableFile:
    @pytest.mark.parametrize("name", ["a.cs", "b.TS", "dir/c.py", "d.yaml", "e.sql", "win\\f.go"])
    def test_reviewable(self, name):
        assert is_reviewable_file(name)

    @pytest.mark.parametrize("name", ["logo.png", "README.md", "Makefile", "notes.txt", "archive.tar.gz"])
    def test_not_reviewable(self, name):
        assert not is_reviewable_file(name)


class TestChangeTypeParse:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("add", ChangeType.ADD),
            ("Edit", ChangeType.EDIT),
            ("delete", ChangeType.DELETE),
            ("edit, rename", ChangeType.RENAME),
            ("delete, sourceRename", ChangeType.DELETE),
            ("encoding", ChangeType.OTHER),
            (None, ChangeType.OTHER),
        ],
    )
    def test_parse(self, raw, expected):
        assert ChangeType.parse(raw) == expected


class TestSeverityParse:
    def test_known_values_case_insensitive(self):
        assert Severity.parse("ISSUE") == Severity.ISSUE
        assert Severity.parse(" warning ") == Severity.WARNING

    def test_unknown_falls_back(self):
        assert Severity.parse("critical") == Severity.SUGGESTION
        assert Severity.parse(None) == Severity.SUGGESTION


def test_excerpt_bounds_text():
    assert excerpt("abc", limit=5) == "abc"
    assert excerpt("abcdefgh", limit=5) == "abcde..."
    assert excerpt(None) == ""
