"""Tests for the PyGithub-backed provider."""

import types
from unittest.mock import MagicMock

import pytest
import requests
from github import GithubException

from revloop_core.exceptions import ProviderError
from revloop_core.models import ChangeType
from revloop_core.providers.github import GitHubProvider


@pytest.fixture
def gh():
    client = MagicMock()
    client.get_repo.return_value.full_name = "octo/api"
    return client


@pytest.fixture
def repo(gh):
    return gh.get_repo.return_value


def make_pull(number=1, title="Add feature"):
    return types.SimpleNamespace(
        number=number,
        title=title,
        head=types.SimpleNamespace(ref="feature", sha="headsha"),
        base=types.SimpleNamespace(ref="main"),
        merge_commit_sha="mergesha",
    )


class TestListing:
    def test_open_pull_requests(self, gh, repo):
        repo.get_pulls.return_value = [make_pull(1), make_pull(2, "Fix bug")]

        prs = GitHubProvider(token="tok", client=gh).list_open_pull_requests("octo", "api")

        gh.get_repo.assert_called_once_with("octo/api")
        repo.get_pulls.assert_called_once_with(state="open")
        assert [(p.id, p.title) for p in prs] == [(1, "Add feature"), (2, "Fix bug")]
        assert prs[0].repository_id == "octo/api"
        assert prs[0].project == "octo"
        assert prs[0].source_branch == "feature"
        assert prs[0].target_branch == "main"

    def test_listing_error_maps_to_provider_error(self, gh, repo):
        repo.get_pulls.side_effect = GithubException(404, {"message": "Not Found"}, None)

        with pytest.raises(ProviderError, match="Resource not found") as exc_info:
            GitHubProvider(token="tok", client=gh).list_open_pull_requests("octo", "api")
        assert exc_info.value.status_code == 404

    def test_commits_are_iterations(self, gh, repo):
        repo.get_pull.return_value.get_commits.return_value = [
            types.SimpleNamespace(sha="c1"),
            types.SimpleNamespace(sha="c2"),
        ]

        iterations = GitHubProvider(token="tok", client=gh).list_iterations("octo", "octo/api", 5)

        assert [(it.id, it.source_revision) for it in iterations] == [(1, "c1"), (2, "c2")]

    def test_changed_files(self, gh, repo):
        repo.get_pull.return_value.get_files.return_value = [
            types.SimpleNamespace(filename="src/a.py", status="modified"),
            types.SimpleNamespace(filename="src/b.py", status="removed"),
            types.SimpleNamespace(filename="src/c.py", status="added"),
            types.SimpleNamespace(filename="src/d.py", status="renamed"),
            types.SimpleNamespace(filename="src/e.py", status="copied"),
        ]

        files = GitHubProvider(token="tok", client=gh).list_changed_files("octo", "octo/api", 5, 2)

        assert [f.change_type for f in files] == [
            ChangeType.EDIT,
            ChangeType.DELETE,
            ChangeType.ADD,
            ChangeType.RENAME,
            ChangeType.OTHER,
        ]

    def test_repository_is_fetched_once(self, gh, repo):
        repo.get_pulls.return_value = []
        provider = GitHubProvider(token="tok", client=gh)

        provider.list_open_pull_requests("octo", "api")
        provider.list_iterations("octo", "octo/api", 1)

        gh.get_repo.assert_called_once()


class TestFileContent:
    def test_decodes_content(self, gh, repo):
        repo.get_contents.return_value = types.SimpleNamespace(decoded_content="print('hi')\n".encode())

        content = GitHubProvider(token="tok", client=gh).get_file_content("octo", "octo/api", "/src/a.py", "sha1")

        repo.get_contents.assert_called_once_with("src/a.py", ref="sha1")
        assert content == "print('hi')\n"

    def test_error_returns_empty(self, gh, repo):
        repo.get_contents.side_effect = GithubException(404, {"message": "Not Found"}, None)
        assert GitHubProvider(token="tok", client=gh).get_file_content("octo", "octo/api", "a.py", "sha") == ""

    def test_directory_returns_empty(self, gh, repo):
        repo.get_contents.return_value = [MagicMock(), MagicMock()]
        assert GitHubProvider(token="tok", client=gh).get_file_content("octo", "octo/api", "src", "sha") == ""


class TestPostComment:
    def test_line_comment_is_a_review_comment_on_head(self, gh, repo):
        pull = repo.get_pull.return_value
        pull.head.sha = "headsha"

        GitHubProvider(token="tok", client=gh).post_comment("octo", "octo/api", 5, "/src/a.py", 12, "body")

        repo.get_commit.assert_called_once_with("headsha")
        pull.create_review_comment.assert_called_once_with("body", repo.get_commit.return_value, "src/a.py", line=12)

    def test_file_comment_is_an_issue_comment_naming_the_file(self, gh, repo):
        pull = repo.get_pull.return_value

        GitHubProvider(token="tok", client=gh).post_comment("octo", "octo/api", 5, "src/a.py", None, "summary")

        pull.create_issue_comment.assert_called_once_with("`src/a.py`\n\nsummary")
        pull.create_review_comment.assert_not_called()

    def test_failure_is_logged_not_raised(self, gh, repo, caplog):
        repo.get_pull.return_value.create_review_comment.side_effect = GithubException(
            422, {"message": "line must be part of the diff"}, None
        )

        GitHubProvider(token="tok", client=gh).post_comment("octo", "octo/api", 5, "a.py", 3, "x")

        assert "Failed to post comment" in caplog.text

    def test_connection_error_is_logged_not_raised(self, gh, repo, caplog):
        repo.get_pull.return_value.create_issue_comment.side_effect = requests.exceptions.ConnectionError("reset")

        GitHubProvider(token="tok", client=gh).post_comment("octo", "octo/api", 5, "a.py", None, "x")

        assert "Failed to post comment" in caplog.text
        assert "reset" in caplog.text
