"""Azure DevOps Git REST provider (api-version 7.1) over httpx."""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from revloop_core.exceptions import ProviderError
from revloop_core.models import ChangedFile, ChangeType, Iteration, PullRequest
from revloop_core.providers.base import BaseProvider
from revloop_core.utils.text import excerpt

logger = logging.getLogger(__name__)

_API_VERSION = "7.1"
_HTTP_TIMEOUT = 30.0

_ERROR_GUIDANCE = {
    401: (
        "Authentication failed. Check your PAT token has the required permissions "
        "(Code: Read, Pull Request Threads: Read & Write)"
    ),
    403: "Access denied. Your PAT may not have sufficient permissions for this operation",
    404: "Resource not found. Verify the organization URL, project name, and repository name are correct",
}

# Thread status 1 = active (not blocking); comment type 1 = text.
_THREAD_STATUS_ACTIVE = 1
_COMMENT_TYPE_TEXT = 1


class AzureDevOpsProvider(BaseProvider):
    def __init__(self, organization_url: str, token: str, client: httpx.Client | None = None):
        if not token:
            logger.warning("Azure DevOps PAT is not configured. Set the AZURE_DEVOPS_PAT environment variable.")
        if client is None:
            client = httpx.Client(
                base_url=organization_url.rstrip("/") + "/",
                auth=httpx.BasicAuth("", token or ""),
                headers={"Accept": "application/json"},
                timeout=_HTTP_TIMEOUT,
            )
        self._client = client

    def list_open_pull_requests(self, project: str, repository: str) -> list[PullRequest]:
        url = f"{_seg(project)}/_apis/git/repositories/{_seg(repository)}/pullrequests"
        data = self._get_json(url, {"searchCriteria.status": "active"})
        return [
            PullRequest(
                id=pr.get("pullRequestId", 0),
                title=pr.get("title") or "",
                project=project,
                repository=repository,
                repository_id=(pr.get("repository") or {}).get("id") or repository,
                source_branch=pr.get("sourceRefName") or "",
                target_branch=pr.get("targetRefName") or "",
                last_merge_commit=(pr.get("lastMergeSourceCommit") or {}).get("commitId") or "",
            )
            for pr in data.get("value") or []
        ]

    def list_iterations(self, project: str, repository_id: str, pull_request_id: int) -> list[Iteration]:
        url = f"{_seg(project)}/_apis/git/repositories/{_seg(repository_id)}/pullrequests/{pull_request_id}/iterations"
        data = self._get_json(url)
        return [
            Iteration(
                id=it.get("id", 0),
                source_revision=(it.get("sourceRefCommit") or {}).get("commitId") or "",
            )
            for it in data.get("value") or []
        ]

    def list_changed_files(
        self, project: str, repository_id: str, pull_request_id: int, iteration_id: int
    ) -> list[ChangedFile]:
        url = (
            f"{_seg(project)}/_apis/git/repositories/{_seg(repository_id)}"
            f"/pullrequests/{pull_request_id}/iterations/{iteration_id}/changes"
        )
        data = self._get_json(url)
        files = []
        for entry in data.get("changeEntries") or []:
            path = (entry.get("item") or {}).get("path") or ""
            if path:
                files.append(ChangedFile(path=path, change_type=ChangeType.parse(entry.get("changeType"))))
        return files

    def get_file_content(self, project: str, repository_id: str, path: str, revision: str) -> str:
        url = f"{_seg(project)}/_apis/git/repositories/{_seg(repository_id)}/items"
        params = {
            "path": path,
            "versionType": "commit",
            "version": revision,
            "$format": "text",
            "api-version": _API_VERSION,
        }
        try:
            response = self._client.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Failed to get file content for %s at commit %s: %s", path, revision, e)
            return ""
        return response.text

    def post_comment(
        self,
        project: str,
        repository_id: str,
        pull_request_id: int,
        file_path: str,
        line_number: int | None,
        text: str,
    ) -> None:
        url = f"{_seg(project)}/_apis/git/repositories/{_seg(repository_id)}/pullrequests/{pull_request_id}/threads"
        thread: dict = {
            "comments": [{"content": text, "commentType": _COMMENT_TYPE_TEXT}],
            "status": _THREAD_STATUS_ACTIVE,
        }
        if file_path:
            context: dict = {"filePath": file_path if file_path.startswith("/") else "/" + file_path}
            if line_number:
                position = {"line": line_number, "offset": 1}
                context["rightFileStart"] = position
                context["rightFileEnd"] = dict(position)
            thread["threadContext"] = context

        try:
            response = self._client.post(url, params={"api-version": _API_VERSION}, json=thread)
        except httpx.HTTPError as e:
            logger.warning("Failed to post comment on PR #%d: %s", pull_request_id, e)
            return
        if response.is_error:
            logger.warning("Failed to post comment: %d - %s", response.status_code, excerpt(response.text))

    def close(self) -> None:
        self._client.close()

    def _get_json(self, url: str, params: dict | None = None) -> dict:
        params = {**(params or {}), "api-version": _API_VERSION}
        try:
            response = self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise ProviderError(f"Azure DevOps request failed: {e}") from e

        if response.is_error:
            message = _ERROR_GUIDANCE.get(
                response.status_code, f"API request failed with status {response.status_code}"
            )
            logger.error(
                "Azure DevOps API error: %s. URL: %s, Response: %s", message, url, excerpt(response.text)
            )
            raise ProviderError(message, status_code=response.status_code)

        if response.text.lstrip().startswith("<"):
            logger.error(
                "Azure DevOps returned HTML instead of JSON. This usually means authentication failed "
                "or the URL is incorrect. URL: %s",
                url,
            )
            raise ProviderError(
                "Azure DevOps returned an HTML error page. Check your PAT and organization URL configuration."
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error("Failed to parse Azure DevOps response. URL: %s, Content: %s", url, excerpt(response.text))
            raise ProviderError(f"Failed to parse Azure DevOps response: {e}") from e
        if not isinstance(data, dict):
            raise ProviderError("Unexpected Azure DevOps response shape")
        return data


def _seg(value) -> str:
    return quote(str(value), safe="")
