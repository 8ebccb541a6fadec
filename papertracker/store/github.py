"""Object store backed by GitHub issues.

Layout (compatible with gh-store repositories):

* one issue per object, labelled ``stored-object`` and ``UID:<key>``
  (a digest of the key when that label would be too long);
* the issue body holds the object's initial value as JSON;
* every appended event is one issue comment holding JSON.
"""

import hashlib
import json
import logging
import re
from typing import Any, Optional

import httpx

from papertracker.errors import (
    NotFoundError,
    RecordExistsError,
    RemoteUnavailableError,
    ValidationError,
)
from papertracker.store.base import ObjectStore, StoredObject

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
STORED_OBJECT_LABEL = "stored-object"
UID_LABEL_PREFIX = "UID:"
MAX_LABEL_LENGTH = 50
PAGE_SIZE = 100
REPO_RE = re.compile(r"^[\w.-]+/[\w.-]+$")


def validate_repo(repo: str) -> str:
    """Check an ``owner/name`` repository string.

    Raises:
        ValidationError: If *repo* is not in ``owner/name`` form
    """
    repo = (repo or "").strip()
    if not REPO_RE.match(repo):
        raise ValidationError("Invalid repository format. Use username/repository")
    return repo


def uid_label(key: str) -> str:
    """Return the ``UID:`` label for *key*.

    GitHub labels are limited to 50 characters; longer keys (long DOIs)
    are replaced by a prefix of their SHA-256 digest.
    """
    label = f"{UID_LABEL_PREFIX}{key}"
    if len(label) <= MAX_LABEL_LENGTH:
        return label
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return f"{UID_LABEL_PREFIX}{digest[: MAX_LABEL_LENGTH - len(UID_LABEL_PREFIX)]}"


class GitHubIssueStore(ObjectStore):
    """Service for storing paper objects as issues in a GitHub repository."""

    def __init__(
        self,
        token: str,
        repo: str,
        base_url: str = GITHUB_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 20.0,
    ):
        """Initialize GitHub store.

        Args:
            token: GitHub access token
            repo: Repository in ``owner/name`` form
            base_url: API root (override for GitHub Enterprise)
            transport: Optional httpx transport (used by tests)
            timeout: Request timeout in seconds
        """
        if not token:
            raise ValidationError("Missing GitHub token for the github store backend")
        self.repo = validate_repo(repo)
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"token {token}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": "papertracker",
            },
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteUnavailableError(f"GitHub request failed: {e}") from e
        if response.status_code >= 400:
            raise RemoteUnavailableError(
                f"GitHub returned {response.status_code} for {method} {path}"
            )
        return response

    async def _find_issue(self, key: str) -> Optional[dict[str, Any]]:
        response = await self._request(
            "GET",
            f"/repos/{self.repo}/issues",
            params={
                "labels": f"{STORED_OBJECT_LABEL},{uid_label(key)}",
                "state": "all",
                "per_page": 1,
            },
        )
        issues = response.json()
        return issues[0] if issues else None

    async def _comments(self, number: int) -> list[dict[str, Any]]:
        events: list[dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                f"/repos/{self.repo}/issues/{number}/comments",
                params={"per_page": PAGE_SIZE, "page": page},
            )
            batch = response.json()
            for comment in batch:
                try:
                    events.append(json.loads(comment.get("body") or ""))
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON comment %s on issue #%s", comment.get("id"), number)
            if len(batch) < PAGE_SIZE:
                return events
            page += 1

    async def _to_object(self, key: str, issue: dict[str, Any]) -> StoredObject:
        try:
            data = json.loads(issue.get("body") or "{}")
        except json.JSONDecodeError as e:
            raise RemoteUnavailableError(f"Issue #{issue.get('number')} body is not JSON") from e
        return StoredObject(
            key=key,
            data=data,
            events=await self._comments(issue["number"]),
            created_at=issue.get("created_at", ""),
            updated_at=issue.get("updated_at", ""),
        )

    async def get(self, key: str) -> Optional[StoredObject]:
        issue = await self._find_issue(key)
        if issue is None:
            return None
        return await self._to_object(key, issue)

    async def create(self, key: str, initial: dict[str, Any]) -> StoredObject:
        if await self._find_issue(key) is not None:
            raise RecordExistsError(f"Object already exists: {key}")
        response = await self._request(
            "POST",
            f"/repos/{self.repo}/issues",
            json={
                "title": f"Stored Object: {key}",
                "body": json.dumps(initial, indent=2),
                "labels": [STORED_OBJECT_LABEL, uid_label(key)],
            },
        )
        issue = response.json()
        logger.debug("Created issue #%s for %s", issue.get("number"), key)
        return StoredObject(
            key=key,
            data=initial,
            created_at=issue.get("created_at", ""),
            updated_at=issue.get("updated_at", ""),
        )

    async def update(self, key: str, event: dict[str, Any]) -> StoredObject:
        issue = await self._find_issue(key)
        if issue is None:
            raise NotFoundError(f"No stored object for {key}")
        await self._request(
            "POST",
            f"/repos/{self.repo}/issues/{issue['number']}/comments",
            json={"body": json.dumps(event)},
        )
        refreshed = await self._find_issue(key)
        return await self._to_object(key, refreshed or issue)

    async def close(self) -> None:
        await self._client.aclose()
