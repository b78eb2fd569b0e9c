"""GitHub provider: repository events and issue/repository reactions."""

from __future__ import annotations

import logging
from typing import Any

from github import Auth, BadCredentialsException, Github

from areaflow.adapters.base import (
    ActionDescriptor,
    AuthType,
    MatchMode,
    ParameterSpec,
    ReactionDescriptor,
    ReactionHandler,
    ServiceAdapter,
    filter_param,
)
from areaflow.errors import AuthError
from areaflow.utils.retry import with_retry

logger = logging.getLogger(__name__)

DEFAULT_ISSUE_BODY = "This issue was created automatically by areaflow."
DEFAULT_REPO_DESCRIPTION = "Repository created automatically by areaflow."

_OWNER = filter_param("owner", "repository.owner", required=True, description="Repository owner")
_REPO = filter_param("repo", "repository.name", required=True, description="Repository name")


def _split(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [v.strip() for v in str(value).split(",") if v.strip()]


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _repository(payload: dict[str, Any]) -> dict[str, Any]:
    repo = payload.get("repository") or {}
    owner = (repo.get("owner") or {}).get("login", "")
    return {
        "owner": owner,
        "name": repo.get("name", ""),
        "full_name": repo.get("full_name") or f"{owner}/{repo.get('name', '')}",
        "html_url": repo.get("html_url", ""),
    }


def _user(data: dict[str, Any] | None) -> dict[str, Any]:
    data = data or {}
    return {"login": data.get("login", ""), "id": data.get("id")}


def normalize_webhook(
    event_type: str, payload: dict[str, Any]
) -> tuple[str, dict[str, Any]] | None:
    """
    Convert a GitHub webhook delivery into an action kind and event payload.

    Args:
        event_type: Value of the ``X-GitHub-Event`` header
        payload: Decoded webhook body

    Returns:
        ``(kind, payload)``, or None for deliveries no action listens to
    """
    action = payload.get("action")

    if event_type == "issues" and action == "opened":
        issue = payload["issue"]
        return "new_issue_created", {
            "repository": _repository(payload),
            "issue": {
                "number": issue.get("number"),
                "title": issue.get("title", ""),
                "body": issue.get("body") or "",
                "user": _user(issue.get("user")),
                "labels": [label.get("name") for label in issue.get("labels", [])],
                "html_url": issue.get("html_url", ""),
            },
        }

    if event_type == "pull_request" and action == "opened":
        pr = payload["pull_request"]
        return "pull_request_opened", {
            "repository": _repository(payload),
            "pull_request": {
                "number": pr.get("number"),
                "title": pr.get("title", ""),
                "body": pr.get("body") or "",
                "user": _user(pr.get("user")),
                "html_url": pr.get("html_url", ""),
                "head": {"ref": pr["head"]["ref"], "sha": pr["head"]["sha"]},
                "base": {"ref": pr["base"]["ref"], "sha": pr["base"]["sha"]},
            },
        }

    if event_type == "push":
        ref = payload.get("ref", "")
        commits = [
            {
                "id": c.get("id"),
                "message": c.get("message", ""),
                "author": {
                    "name": (c.get("author") or {}).get("name", ""),
                    "email": (c.get("author") or {}).get("email", ""),
                },
            }
            for c in payload.get("commits", [])
        ]
        head = commits[-1] if commits else {}
        return "commit_pushed", {
            "repository": _repository(payload),
            "ref": ref,
            "branch": ref.removeprefix("refs/heads/"),
            "commits": commits,
            "commit": {
                "id": head.get("id"),
                "message": head.get("message", ""),
                "author": (head.get("author") or {}).get("name", ""),
            },
            "pusher": payload.get("pusher") or {},
        }

    if event_type == "star" and action == "created":
        return "repository_starred", {
            "repository": _repository(payload),
            "user": _user(payload.get("sender")),
            "starred_at": payload.get("starred_at"),
        }

    return None


class GitHubAdapter(ServiceAdapter):
    """
    GitHub through PyGithub.

    Credentials: ``{"token": "<personal access or OAuth token>"}``.
    """

    name = "github"
    display_name = "GitHub"
    auth_type = AuthType.OAUTH2

    def __init__(self, default_token: str | None = None):
        super().__init__()
        self.default_token = default_token

    def default_credentials(self) -> dict[str, Any] | None:
        return {"token": self.default_token} if self.default_token else None

    def describe_actions(self) -> list[ActionDescriptor]:
        return [
            ActionDescriptor(
                "new_issue_created",
                "New issue created",
                "An issue is opened in a repository",
                [
                    _OWNER,
                    _REPO,
                    filter_param(
                        "labels",
                        "issue.labels",
                        MatchMode.ANY_OF,
                        description="Comma-separated labels, any of which must be present",
                    ),
                ],
            ),
            ActionDescriptor(
                "pull_request_opened",
                "Pull request opened",
                "A pull request is opened",
                [
                    _OWNER,
                    _REPO,
                    filter_param(
                        "targetBranch", "pull_request.base.ref", description="Base branch"
                    ),
                ],
            ),
            ActionDescriptor(
                "commit_pushed",
                "Commit pushed",
                "Commits are pushed to a repository",
                [_OWNER, _REPO, filter_param("branch", "branch", description="Branch name")],
            ),
            ActionDescriptor(
                "repository_starred",
                "Repository starred",
                "Someone stars a repository",
                [_OWNER, _REPO],
            ),
        ]

    def describe_reactions(self) -> list[ReactionDescriptor]:
        owner = ParameterSpec("owner", required=True, description="Repository owner")
        repo = ParameterSpec("repo", required=True, description="Repository name")
        return [
            ReactionDescriptor(
                "create_issue",
                "Create issue",
                "Open an issue in a repository",
                [
                    owner,
                    repo,
                    ParameterSpec("title", required=True),
                    ParameterSpec("body"),
                    ParameterSpec("labels", description="Comma-separated labels"),
                ],
            ),
            ReactionDescriptor(
                "comment_on_issue",
                "Comment on issue",
                "Add a comment to an issue or pull request",
                [
                    owner,
                    repo,
                    ParameterSpec("issue_number", type="integer", required=True),
                    ParameterSpec("body", required=True),
                ],
            ),
            ReactionDescriptor(
                "create_repository",
                "Create repository",
                "Create a repository for the authenticated user",
                [
                    ParameterSpec("name", required=True),
                    ParameterSpec("description"),
                    ParameterSpec("private", type="boolean", default=False),
                ],
            ),
        ]

    def _connect(self, owner_id: str, credentials: dict[str, Any]) -> Any:
        token = credentials.get("token") or credentials.get("access_token")
        if not token:
            return None
        client = Github(auth=Auth.Token(token))
        login = client.get_user().login
        logger.debug(f"GitHub token for owner {owner_id} belongs to {login}")
        return client

    def _reaction_handlers(self) -> dict[str, ReactionHandler]:
        return {
            "create_issue": self._create_issue,
            "comment_on_issue": self._comment_on_issue,
            "create_repository": self._create_repository,
        }

    def execute_reaction(self, kind, owner_id, parameters, event_payload) -> bool:
        try:
            return super().execute_reaction(kind, owner_id, parameters, event_payload)
        except BadCredentialsException as e:
            raise AuthError(
                f"GitHub rejected the token: {e}", provider=self.name, owner_id=owner_id
            ) from e

    @with_retry(max_retries=2, base_delay=1.0)
    def _create_issue(self, client: Github, params: dict[str, Any], payload: dict) -> bool:
        repo = client.get_repo(f"{params['owner']}/{params['repo']}")
        issue = repo.create_issue(
            title=params["title"],
            body=params.get("body") or DEFAULT_ISSUE_BODY,
            labels=_split(params.get("labels")),
        )
        logger.info(f"Created GitHub issue #{issue.number} in {repo.full_name}")
        return True

    @with_retry(max_retries=2, base_delay=1.0)
    def _comment_on_issue(self, client: Github, params: dict[str, Any], payload: dict) -> bool:
        repo = client.get_repo(f"{params['owner']}/{params['repo']}")
        issue = repo.get_issue(number=int(params["issue_number"]))
        issue.create_comment(params["body"])
        logger.info(f"Commented on GitHub issue #{issue.number} in {repo.full_name}")
        return True

    def _create_repository(self, client: Github, params: dict[str, Any], payload: dict) -> bool:
        created = client.get_user().create_repo(
            params["name"],
            description=params.get("description") or DEFAULT_REPO_DESCRIPTION,
            private=_truthy(params.get("private")),
        )
        logger.info(f"Created GitHub repository {created.full_name}")
        return True
