"""GitHub REST client using httpx with PAT authentication.

The client is constructed from an explicit :class:`~reviewdeck.config.Config`;
it never reads tokens or repository coordinates from the environment itself.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from reviewdeck.payloads import GitHubIssueComment, GitHubReview, GitHubUser

if TYPE_CHECKING:
    from reviewdeck.config import Config

logger = logging.getLogger(__name__)

TOKEN_CREATE_URL = "https://github.com/settings/tokens/new?scopes=repo&description=reviewdeck"  # noqa: S105
TOKEN_PREFIXES = ("ghp_", "github_pat_", "gho_", "ghu_", "ghs_")
USER_AGENT = "reviewdeck"


# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------


class GitHubError(Exception):
    """Raised when a GitHub API call fails."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(GitHubError):
    """Raised when authentication fails or the token is missing or malformed."""

    def __init__(self, detail: str = "") -> None:
        msg = f"Unauthorized - check your token.\nCreate a token (permissions pre-filled): {TOKEN_CREATE_URL}"
        if detail:
            msg = f"{detail}\n{msg}"
        super().__init__(msg, status_code=401)


class RateLimitedError(GitHubError):
    """Raised when GitHub rejects a call because of rate limiting."""

    def __init__(self, detail: str = "") -> None:
        msg = "GitHub API rate limit exceeded - try again later"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg, status_code=403)


class NotFoundError(GitHubError):
    """Raised when a repository or pull request does not exist (or is invisible to the token)."""

    def __init__(self, resource: str = "") -> None:
        msg = f"Resource not found: {resource}" if resource else "Resource not found"
        super().__init__(msg, status_code=404)


class DecodeFailureError(GitHubError):
    """Raised when a response body cannot be decoded into the expected shape."""

    def __init__(self, detail: str = "") -> None:
        msg = "Failed to decode response"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class NetworkFailureError(GitHubError):
    """Raised for transport errors and unexpected HTTP statuses."""

    def __init__(self, detail: str, status_code: int = 0) -> None:
        super().__init__(f"Network error: {detail}", status_code=status_code)
        self.detail = detail


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------


def validate_token(token: str) -> str:
    """Return the stripped token, or raise if it is empty or has an unknown prefix.

    Raises:
        UnauthorizedError: If the token cannot be a GitHub token.
    """
    token = token.strip()
    if not token:
        msg = "GitHub token not found. Set it in .reviewdeck.toml, GH_TOKEN/GITHUB_TOKEN, or run 'gh auth login'."
        raise UnauthorizedError(msg)
    if not token.startswith(TOKEN_PREFIXES):
        msg = f"GitHub token has an unrecognized format (expected one of {', '.join(TOKEN_PREFIXES)})."
        raise UnauthorizedError(msg)
    return token


def normalize_repo(owner: str, repo: str) -> tuple[str, str]:
    """Clean up owner/repo strings pasted from a browser or a mention.

    Strips whitespace, ``@`` characters and a leading ``https://github.com/``;
    a repo given as ``owner/name`` overrides *owner*.
    """
    clean_owner = owner.strip().replace("@", "")
    clean_repo = repo.strip().replace("@", "")
    for prefix in ("https://github.com/", "https://github.com"):
        clean_repo = clean_repo.removeprefix(prefix)
    clean_repo = clean_repo.strip("/")
    if "/" in clean_repo:
        clean_owner, _, clean_repo = clean_repo.partition("/")
    return clean_owner, clean_repo.removesuffix(".git")


def _repo_path(owner: str, repo: str) -> str:
    owner, repo = normalize_repo(owner, repo)
    return f"/repos/{owner}/{repo}"


_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_HTTP_TOO_MANY_REQUESTS = 429


def _request_path(response: httpx.Response) -> str:
    try:
        return response.request.url.path
    except RuntimeError:
        return ""


def _raise_for_status(response: httpx.Response) -> None:
    """Raise the matching :exc:`GitHubError` subclass for non-2xx responses."""
    if response.is_success:
        return

    status = response.status_code
    if status == _HTTP_UNAUTHORIZED:
        raise UnauthorizedError

    try:
        msg = response.json().get("message", response.text)
    except Exception:
        msg = response.text

    if status == _HTTP_TOO_MANY_REQUESTS:
        raise RateLimitedError(msg)
    if status == _HTTP_FORBIDDEN:
        if "rate limit" in msg.lower() or response.headers.get("x-ratelimit-remaining") == "0":
            raise RateLimitedError(msg)
        msg = f"GitHub API access forbidden: {msg}"
        raise UnauthorizedError(msg)
    if status == _HTTP_NOT_FOUND:
        raise NotFoundError(_request_path(response))

    raise NetworkFailureError(f"HTTP {status}: {msg}", status_code=status)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

_RAW_LIST = TypeAdapter(list[dict[str, Any]])
_M = TypeVar("_M", bound=BaseModel)


class GitHubClient:
    """Async GitHub REST client for the calls reviewdeck needs.

    Each call opens a short-lived ``httpx.AsyncClient`` unless one was passed in
    (tests pass a client bound to a mock transport).
    """

    def __init__(self, config: Config, *, http: httpx.AsyncClient | None = None) -> None:
        self._token = validate_token(config.github.token)
        self._base_url = config.github.api_url.rstrip("/")
        self._timeout = config.github.timeout_seconds
        self._http = http

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": USER_AGENT,
        }

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Send one request and return the decoded JSON body (None when empty)."""
        url = f"{self._base_url}{endpoint}"
        logger.debug("%s %s", method, endpoint)
        try:
            if self._http is not None:
                response = await self._http.request(method, url, headers=self.headers, timeout=self._timeout, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as exc:
            raise NetworkFailureError(f"{type(exc).__name__}: {exc}") from exc

        _raise_for_status(response)
        if not response.content:
            return None
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise DecodeFailureError(str(exc)) from exc

    @staticmethod
    def _decode(model: type[_M], data: Any) -> _M:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise DecodeFailureError(f"{model.__name__}: {exc.error_count()} validation error(s)") from exc

    @staticmethod
    def _decode_list(data: Any) -> list[dict[str, Any]]:
        try:
            return _RAW_LIST.validate_python(data)
        except ValidationError as exc:
            raise DecodeFailureError("expected a JSON array of objects") from exc

    # -- reads ---------------------------------------------------------------

    async def get_current_user(self) -> GitHubUser:
        """Return the account the token belongs to."""
        return self._decode(GitHubUser, await self._request("GET", "/user"))

    async def list_pull_requests(self, owner: str, repo: str, state: str = "all") -> list[dict[str, Any]]:
        """Return raw PR payloads (first page only).

        Payloads are returned undecoded so the aggregation pipeline can exclude
        individual malformed entries instead of failing the whole listing.
        """
        base = _repo_path(owner, repo)
        data = await self._request("GET", f"{base}/pulls", params={"state": state, "per_page": 100})
        prs = self._decode_list(data)
        logger.info("Fetched %d PRs from %s", len(prs), base)
        return prs

    async def list_reviews(self, owner: str, repo: str, number: int) -> list[GitHubReview]:
        data = await self._request("GET", f"{_repo_path(owner, repo)}/pulls/{number}/reviews")
        return [self._decode(GitHubReview, item) for item in self._decode_list(data)]

    async def list_issue_comments(self, owner: str, repo: str, number: int) -> list[GitHubIssueComment]:
        data = await self._request("GET", f"{_repo_path(owner, repo)}/issues/{number}/comments")
        return [self._decode(GitHubIssueComment, item) for item in self._decode_list(data)]

    # -- writes --------------------------------------------------------------

    async def create_comment(self, owner: str, repo: str, number: int, body: str) -> GitHubIssueComment:
        data = await self._request("POST", f"{_repo_path(owner, repo)}/issues/{number}/comments", json={"body": body})
        return self._decode(GitHubIssueComment, data)

    async def create_review(self, owner: str, repo: str, number: int, event: str, body: str | None = None) -> GitHubReview:
        payload: dict[str, Any] = {"event": event}
        if body:
            payload["body"] = body
        data = await self._request("POST", f"{_repo_path(owner, repo)}/pulls/{number}/reviews", json=payload)
        return self._decode(GitHubReview, data)
