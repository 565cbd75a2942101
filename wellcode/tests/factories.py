"""Fakes for the pipeline capabilities and builders for webhook payloads."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

ACCOUNT_ID = 900
INSTALLATION_ID = 42
REPO_ID = 300
AUTHOR_ID = 501
REVIEWER_ID = 502
COMMENTER_ID = 503
PR_ID = 1001
PR_NUMBER = 7

TEST_ENCRYPTION_KEY = "test-encryption-secret"


class FakeGitHub:
    """In-memory stand-in for GitHubClient."""

    def __init__(self):
        self.pull_requests: Dict[int, Dict[str, Any]] = {}
        self.files: Dict[int, List[Dict[str, Any]]] = {}
        self.commits: Dict[int, List[Dict[str, Any]]] = {}
        self.labels: List[str] = []
        self.comments: List[tuple] = []
        self.error: Optional[Exception] = None

    async def get_pull_request(self, pr_number: int) -> Dict[str, Any]:
        if self.error is not None:
            raise self.error
        return self.pull_requests[pr_number]

    async def get_pull_request_files(self, pr_number: int) -> List[Dict[str, Any]]:
        return self.files.get(pr_number, [])

    async def get_pull_request_commits(self, pr_number: int) -> List[Dict[str, Any]]:
        return self.commits.get(pr_number, [])

    async def create_pull_request_comment(self, pr_number: int, body: str) -> Dict[str, Any]:
        self.comments.append((pr_number, body))
        return {"id": len(self.comments), "body": body}

    async def get_issue_labels(self, pr_number: int) -> List[Dict[str, Any]]:
        return [{"name": name} for name in self.labels]

    async def add_label_to_pull_request(self, pr_number: int, name: str, color: str, description: str = "") -> bool:
        self.labels.append(name)
        return True

    async def remove_label_from_pull_request(self, pr_number: int, name: str) -> None:
        if name in self.labels:
            self.labels.remove(name)


class FakeGitHubFactory:
    def __init__(self, github: Optional[FakeGitHub]):
        self.github = github
        self.calls: List[tuple] = []

    async def __call__(self, installation_id: int, repo_full_name: str):
        self.calls.append((installation_id, repo_full_name))
        return self.github


class FakeAnalyzer:
    def __init__(self, sentiment: float = 0.8, offensive: bool = False, code_score: float = 90):
        self.sentiment = sentiment
        self.offensive = offensive
        self.code_score = code_score
        self.analyzed_files: List[Dict[str, Any]] = []

    async def analyze_code(self, files, account_type):
        self.analyzed_files = list(files)
        return {"feedback": [{"type": "highlight", "message": "Clear separation of concerns"}], "score": self.code_score}

    async def generate_action_items(self, pr, metrics, user_id=None):
        return {
            "overallRecommendation": "Keep PRs small",
            "actionItems": [{"title": "Add tests", "description": "Cover the parser", "category": "quality"}],
        }

    async def analyze_sentiment(self, text: str, author_context: Optional[Dict[str, Any]] = None) -> float:
        return self.sentiment

    async def is_offensive_content(self, text: str, author_context: Optional[Dict[str, Any]] = None) -> bool:
        return self.offensive


def account_payload(account_type: str = "Organization") -> Dict[str, Any]:
    return {"id": ACCOUNT_ID, "login": "acme", "type": account_type}


def repository_payload(repo_id: int = REPO_ID, name: str = "widgets") -> Dict[str, Any]:
    return {
        "id": repo_id,
        "name": name,
        "full_name": f"acme/{name}",
        "owner": {"id": ACCOUNT_ID, "login": "acme", "type": "Organization"},
        "default_branch": "main",
    }


def installation_payload() -> Dict[str, Any]:
    return {"id": INSTALLATION_ID, "account": account_payload()}


def pull_request_data(
    pr_id: int = PR_ID,
    number: int = PR_NUMBER,
    title: str = "Add widget parser",
    body: Optional[str] = "Parses widgets from the upstream feed and adds tests for the edge cases.",
    state: str = "open",
    merged: bool = False,
    user_id: int = AUTHOR_ID,
    login: str = "octocat",
    additions: int = 120,
    deletions: int = 30,
    created_at: str = "2026-03-02T09:00:00Z",
    merged_at: Optional[str] = None,
    closed_at: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "id": pr_id,
        "number": number,
        "title": title,
        "body": body,
        "state": state,
        "merged": merged,
        "user": {"id": user_id, "login": login, "type": "User"},
        "additions": additions,
        "deletions": deletions,
        "changed_files": 2,
        "created_at": created_at,
        "merged_at": merged_at,
        "closed_at": closed_at,
    }


def merged_pull_request_data(**overrides) -> Dict[str, Any]:
    values = dict(
        state="closed",
        merged=True,
        merged_at="2026-03-03T15:00:00Z",
        closed_at="2026-03-03T15:00:00Z",
    )
    values.update(overrides)
    return pull_request_data(**values)


def pull_request_event(action: str, pr: Optional[Dict[str, Any]] = None, with_installation: bool = True) -> Dict[str, Any]:
    payload = {
        "action": action,
        "pull_request": pr or pull_request_data(),
        "repository": repository_payload(),
        "sender": {"id": AUTHOR_ID, "login": "octocat"},
    }
    if with_installation:
        payload["installation"] = installation_payload()
    return payload


def review_event(
    review_id: int = 8001,
    state: str = "approved",
    reviewer_id: int = REVIEWER_ID,
    pr: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "action": "submitted",
        "review": {
            "id": review_id,
            "user": {"id": reviewer_id, "login": "reviewer"},
            "state": state,
            "body": "Looks good",
            "submitted_at": "2026-03-02T13:00:00Z",
        },
        "pull_request": pr or pull_request_data(),
        "repository": repository_payload(),
        "installation": installation_payload(),
    }


def issue_comment_event(
    comment_id: int = 7001,
    body: str = "Thanks, great work!",
    number: int = PR_NUMBER,
    on_pull_request: bool = True,
    with_installation: bool = False,
) -> Dict[str, Any]:
    issue: Dict[str, Any] = {"number": number}
    if on_pull_request:
        issue["pull_request"] = {"url": f"https://api.github.com/repos/acme/widgets/pulls/{number}"}
    payload = {
        "action": "created",
        "issue": issue,
        "comment": {
            "id": comment_id,
            "body": body,
            "user": {"id": COMMENTER_ID, "login": "hubot"},
            "created_at": "2026-03-02T14:00:00Z",
            "updated_at": "2026-03-02T14:00:00Z",
        },
        "repository": repository_payload(),
    }
    if with_installation:
        payload["installation"] = installation_payload()
    return payload


def push_event(commits: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "ref": "refs/heads/main",
        "repository": repository_payload(),
        "installation": installation_payload(),
        "commits": commits,
    }


def installation_event(action: str, account_type: str = "Organization", **repositories) -> Dict[str, Any]:
    payload = {
        "action": action,
        "installation": {"id": INSTALLATION_ID, "account": account_payload(account_type)},
    }
    payload.update(repositories)
    return payload


def pr_commit(sha: str, date: str, author_id: Optional[int] = AUTHOR_ID, email: str = "octo@example.com", name: str = "Octo Cat") -> Dict[str, Any]:
    return {
        "sha": sha,
        "commit": {"message": f"Commit {sha}", "author": {"name": name, "email": email, "date": date}},
        "author": {"id": author_id, "login": "octocat"} if author_id is not None else None,
    }


def pr_files() -> List[Dict[str, Any]]:
    return [
        {"filename": "src/parser.py", "status": "added", "additions": 100, "deletions": 20, "changes": 120, "patch": "+def parse():"},
        {"filename": "tests/test_parser.py", "status": "added", "additions": 20, "deletions": 10, "changes": 30, "patch": "+def test_parse():"},
    ]
