import base64
import logging
import urllib.parse
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings, get_settings
from .core.github_app import get_installation_token

logger = logging.getLogger(__name__)

USER_AGENT = "Wellcode/1.0"
PER_PAGE = 100
MAX_PAGES = 30


class GitHubAPIError(Exception):
    """
    A failed GitHub API call.

    404s carry "not found" in the message so the retry controller treats
    them as permanent.
    """

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class GitHubClient:
    """
    Thin async client for the GitHub REST endpoints the pipeline needs,
    authenticated with an installation token and bound to one repository.
    """

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        api_base: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.owner = owner
        self.repo = repo
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """
        Make an authenticated request to the GitHub API.
        """
        headers = kwargs.pop("headers", {})
        headers.update({
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        })
        url = f"{self.api_base}{path}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.request(method, url, headers=headers, **kwargs)

        if response.status_code == 404:
            raise GitHubAPIError(f"GitHub resource not found: {method} {path}", status_code=404)
        if response.is_error:
            raise GitHubAPIError(
                f"GitHub API request failed ({response.status_code}): {method} {path}",
                status_code=response.status_code,
            )
        return response

    async def _get_paginated(self, path: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        for page in range(1, MAX_PAGES + 1):
            response = await self.request("GET", path, params={"per_page": PER_PAGE, "page": page})
            batch = response.json()
            items.extend(batch)
            if len(batch) < PER_PAGE:
                break
        return items

    async def get_pull_request(self, pr_number: int) -> Dict[str, Any]:
        response = await self.request("GET", f"{self.repo_path}/pulls/{pr_number}")
        return response.json()

    async def get_pull_request_files(self, pr_number: int) -> List[Dict[str, Any]]:
        """
        Files changed in a PR.

        Returns:
            List of files with: filename, status, additions, deletions, changes, patch
        """
        return await self._get_paginated(f"{self.repo_path}/pulls/{pr_number}/files")

    async def get_pull_request_commits(self, pr_number: int) -> List[Dict[str, Any]]:
        return await self._get_paginated(f"{self.repo_path}/pulls/{pr_number}/commits")

    async def create_pull_request_comment(self, pr_number: int, body: str) -> Dict[str, Any]:
        response = await self.request(
            "POST", f"{self.repo_path}/issues/{pr_number}/comments", json={"body": body}
        )
        return response.json()

    async def get_issue_labels(self, pr_number: int) -> List[Dict[str, Any]]:
        response = await self.request("GET", f"{self.repo_path}/issues/{pr_number}/labels")
        return response.json()

    async def add_label_to_pull_request(
        self,
        pr_number: int,
        name: str,
        color: str,
        description: str = "",
    ) -> bool:
        """
        Create the label on the repository if needed, then attach it to the PR.

        Returns:
            True if the label is attached
        """
        try:
            await self.request(
                "POST",
                f"{self.repo_path}/labels",
                json={"name": name, "color": color, "description": description},
            )
        except GitHubAPIError as e:
            # 422 means the label already exists on the repository
            if e.status_code != 422:
                raise
        response = await self.request(
            "POST", f"{self.repo_path}/issues/{pr_number}/labels", json={"labels": [name]}
        )
        return any(label.get("name") == name for label in response.json())

    async def remove_label_from_pull_request(self, pr_number: int, name: str) -> None:
        encoded = urllib.parse.quote(name, safe="")
        try:
            await self.request("DELETE", f"{self.repo_path}/issues/{pr_number}/labels/{encoded}")
        except GitHubAPIError as e:
            if e.status_code != 404:
                raise
            logger.info(f"Label {name!r} was not on PR #{pr_number}")

    async def get_content(self, file_path: str, ref: Optional[str] = None) -> str:
        """
        Decoded text content of a file at a branch, tag or SHA.
        """
        encoded_path = urllib.parse.quote(file_path, safe="/")
        params = {"ref": ref} if ref else {}
        response = await self.request("GET", f"{self.repo_path}/contents/{encoded_path}", params=params)
        data = response.json()
        return base64.b64decode(data.get("content", "")).decode("utf-8")


class GitHubClientFactory:
    """
    Builds a repository-bound client from an installation id.

    Returns None when no installation token can be obtained.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def __call__(self, installation_id: int, repo_full_name: str) -> Optional[GitHubClient]:
        token = await get_installation_token(installation_id, self.settings)
        if not token:
            return None
        owner, _, repo = repo_full_name.partition("/")
        return GitHubClient(
            token,
            owner,
            repo,
            api_base=self.settings.github_api_base,
            timeout=self.settings.github_timeout,
        )
