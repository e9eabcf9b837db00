"""
GitLab REST API client for gitlab-search.

Lists accessible projects, their repository trees, and raw file contents.
Authentication uses a personal access token sent as PRIVATE-TOKEN.

Supports:
- Transparent pagination (X-Next-Page header)
- Status code to exception mapping (NotFound, Forbidden, ServerError)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator
from urllib.parse import quote

import requests

from . import __version__


DEFAULT_PER_PAGE = 100
DEFAULT_TIMEOUT = 30.0
GUEST_ACCESS_LEVEL = 10  # https://docs.gitlab.com/ee/api/members.html#roles


def api_url_for(hostname: str) -> str:
    """Build the v4 API base URL for a GitLab hostname."""
    hostname = hostname.rstrip("/")
    if hostname.startswith(("http://", "https://")):
        base = hostname
    else:
        base = f"https://{hostname}"
    if base.endswith("/api/v4"):
        return base
    return f"{base}/api/v4"


@dataclass
class GitLabProject:
    """Parsed GitLab project listing entry."""
    id: int
    name: str
    web_url: str
    empty_repo: bool
    import_status: str | None


@dataclass
class TreeEntry:
    """Parsed repository tree entry."""
    path: str
    name: str
    type: str  # blob, tree, commit


class GitLabAPIError(Exception):
    """Error from GitLab API."""
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(GitLabAPIError):
    """Project or path does not exist (or is hidden from this token)."""


class ForbiddenError(GitLabAPIError):
    """Token lacks access to the resource."""


class ServerError(GitLabAPIError):
    """GitLab answered with a 5xx status."""


def _error_for_status(status_code: int, message: str) -> GitLabAPIError:
    if status_code in (401, 403):
        return ForbiddenError(message, status_code)
    if status_code == 404:
        return NotFoundError(message, status_code)
    if status_code >= 500:
        return ServerError(message, status_code)
    return GitLabAPIError(message, status_code)


class GitLabClient:
    """GitLab v4 REST API client with pagination."""

    def __init__(
        self,
        hostname: str,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.hostname = hostname
        self.base_url = api_url_for(hostname)
        self.token = token
        self.timeout = timeout
        self.session = requests.Session()

        if self.token:
            self.session.headers["PRIVATE-TOKEN"] = self.token

        self.session.headers["Accept"] = "application/json"
        self.session.headers["User-Agent"] = f"gitlab-search/{__version__}"

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Make an API request, raising GitLabAPIError on failure."""
        url = f"{self.base_url}{endpoint}"
        kwargs.setdefault("timeout", self.timeout)

        try:
            response = self.session.request(method, url, params=params, **kwargs)
        except requests.RequestException as e:
            raise GitLabAPIError(f"Request failed: {e}")

        if response.status_code >= 400:
            raise _error_for_status(
                response.status_code,
                f"GitLab API error: {response.status_code} - {response.text}",
            )

        return response

    def _paginate(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Iterate through paginated API results."""
        params = dict(params or {})
        params.setdefault("per_page", DEFAULT_PER_PAGE)
        page = 1

        while True:
            params["page"] = page
            response = self._request("GET", endpoint, params=params)
            try:
                items = response.json()
            except ValueError as e:
                raise GitLabAPIError(f"Invalid JSON from {endpoint}: {e}", response.status_code)

            if not isinstance(items, list):
                raise GitLabAPIError(
                    f"Expected a JSON array from {endpoint}, got {type(items).__name__}",
                    response.status_code,
                )

            if not items:
                break

            for item in items:
                if not isinstance(item, dict):
                    raise GitLabAPIError(f"Unexpected list entry from {endpoint}: {item!r}")
                yield item

            next_page = response.headers.get("X-Next-Page")
            if next_page is not None:
                # GitLab sends an empty X-Next-Page on the last page
                if not next_page.strip():
                    break
                try:
                    page = int(next_page)
                except ValueError:
                    raise GitLabAPIError(f"Invalid X-Next-Page header: {next_page!r}")
                continue

            # Header omitted (e.g. keyset-limited listings): fall back to page size
            if len(items) < params["per_page"]:
                break

            page += 1

    def list_projects(
        self,
        per_page: int = DEFAULT_PER_PAGE,
        archived: bool = False,
        min_access_level: int = GUEST_ACCESS_LEVEL,
    ) -> Iterator[GitLabProject]:
        """
        List every project visible to the token.

        Args:
            per_page: Page size requested from the server
            archived: Whether to list archived projects
            min_access_level: Minimum membership level (10 = Guest)

        Yields:
            GitLabProject objects, following pagination transparently
        """
        params = {
            "per_page": per_page,
            "archived": str(archived).lower(),
            "min_access_level": min_access_level,
        }
        for item in self._paginate("/projects", params):
            yield self._parse_project(item)

    def list_tree(
        self,
        project_id: int,
        ref: str | None = None,
        recursive: bool = False,
        per_page: int = DEFAULT_PER_PAGE,
    ) -> list[TreeEntry]:
        """
        List a project's repository tree.

        Args:
            project_id: Numeric project id
            ref: Branch, tag or commit (server default branch when None)
            recursive: Descend into subdirectories
            per_page: Page size requested from the server

        Returns:
            List of TreeEntry objects
        """
        params: dict[str, Any] = {"per_page": per_page}
        if ref:
            params["ref"] = ref
        if recursive:
            params["recursive"] = "true"

        endpoint = f"/projects/{project_id}/repository/tree"
        return [
            TreeEntry(
                path=str(item.get("path") or ""),
                name=item.get("name", ""),
                type=item.get("type", "blob"),
            )
            for item in self._paginate(endpoint, params)
        ]

    def get_file_content(self, project_id: int, path: str, ref: str = "HEAD") -> str:
        """Fetch a file's raw content. HEAD resolves to the default branch."""
        endpoint = f"/projects/{project_id}/repository/files/{quote(path, safe='')}/raw"
        response = self._request("GET", endpoint, params={"ref": ref})
        return response.text

    def _parse_project(self, data: dict[str, Any]) -> GitLabProject:
        """Parse raw project data into GitLabProject object."""
        return GitLabProject(
            id=data.get("id", 0),
            name=data.get("name", ""),
            web_url=data.get("web_url", ""),
            empty_repo=bool(data.get("empty_repo", False)),
            import_status=data.get("import_status"),
        )
