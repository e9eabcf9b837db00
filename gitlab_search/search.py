"""
Search pipeline for gitlab-search.

Three stages, each a filter/map over the previous stage's list:

1. get_projects       - accessible, non-empty projects (cached)
2. get_project_files  - container build files per project (cached)
3. filter_by_content  - build files whose content matches (never cached)

Stages 2 and 3 isolate failures per item: one unreadable project or file
is logged and skipped, the rest of the run continues.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, TypeVar, Union

from .cache import FILES_CACHE_FILE, PROJECTS_CACHE_FILE, cached
from .config import DEFAULT_CONTENT_PATTERN, DEFAULT_FILE_PATTERN, SearchConfig
from .gitlab import DEFAULT_PER_PAGE, GUEST_ACCESS_LEVEL, GitLabAPIError, GitLabClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Project:
    """A project as stored in the project cache."""
    id: int
    name: str
    homepage: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "homepage": self.homepage}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(id=int(data["id"]), name=data["name"], homepage=data["homepage"])


@dataclass
class ProjectFileSet:
    """Paths in a project's tree that look like container build files."""
    project: Project
    paths: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"project": self.project.to_dict(), "paths": list(self.paths)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectFileSet":
        return cls(
            project=Project.from_dict(data["project"]),
            paths=[str(p) for p in data["paths"]],
        )


@dataclass
class ProjectMatch:
    """Build files of a project whose content matched."""
    project: Project
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"project": self.project.to_dict(), "files": list(self.files)}


@dataclass
class ItemFailure:
    """A project or file that could not be read."""
    project_id: int
    path: str | None
    error: str


@dataclass
class SearchResult:
    """Output of every pipeline stage for one run."""
    projects: list[Project]
    project_files: list[ProjectFileSet]
    matches: list[ProjectMatch]
    failures: list[ItemFailure] = field(default_factory=list)


def partition_results(
    outcomes: Iterable[Union[T, ItemFailure]],
) -> tuple[list[T], list[ItemFailure]]:
    """Split per-item outcomes into successes and failures, keeping order."""
    successes: list[T] = []
    failures: list[ItemFailure] = []
    for outcome in outcomes:
        if isinstance(outcome, ItemFailure):
            failures.append(outcome)
        else:
            successes.append(outcome)
    return successes, failures


# ---------------------------------------------------------------------------
# Stage 1: projects
# ---------------------------------------------------------------------------


def fetch_projects(
    client: GitLabClient,
    per_page: int = DEFAULT_PER_PAGE,
    min_access_level: int = GUEST_ACCESS_LEVEL,
) -> list[Project]:
    """List non-archived projects, skipping empty repos and failed imports."""
    return [
        Project(id=p.id, name=p.name, homepage=p.web_url)
        for p in client.list_projects(
            per_page=per_page,
            archived=False,
            min_access_level=min_access_level,
        )
        if not p.empty_repo and p.import_status != "failed"
    ]


def get_projects(
    client: GitLabClient,
    cache_dir: Path,
    force_refresh: bool = False,
    per_page: int = DEFAULT_PER_PAGE,
    min_access_level: int = GUEST_ACCESS_LEVEL,
) -> list[Project]:
    """
    Get the relevant projects, from cache when available.

    Listing errors are not caught: a failed listing aborts the run before
    anything is written.
    """
    return cached(
        Path(cache_dir) / PROJECTS_CACHE_FILE,
        compute=lambda: fetch_projects(client, per_page, min_access_level),
        dump=Project.to_dict,
        load=Project.from_dict,
        force_refresh=force_refresh,
        description="repository list",
    )


# ---------------------------------------------------------------------------
# Stage 2: build files per project
# ---------------------------------------------------------------------------


def _scan_project(
    client: GitLabClient,
    project: Project,
    pattern: re.Pattern[str],
    recursive: bool,
) -> ProjectFileSet | ItemFailure:
    try:
        tree = client.list_tree(project.id, recursive=recursive)
    except GitLabAPIError as e:
        logger.warning("Error reading files for %s: %s", project.id, e)
        return ItemFailure(project_id=project.id, path=None, error=str(e))

    paths = [entry.path for entry in tree if pattern.search(entry.path)]
    return ProjectFileSet(project=project, paths=paths)


def find_project_files(
    client: GitLabClient,
    projects: Iterable[Project],
    file_pattern: str = DEFAULT_FILE_PATTERN,
    recursive: bool = False,
) -> tuple[list[ProjectFileSet], list[ItemFailure]]:
    """
    Find build files in each project's tree.

    Returns:
        Tuple of (file sets with at least one path, per-project failures)
    """
    pattern = re.compile(file_pattern)
    file_sets, failures = partition_results(
        _scan_project(client, project, pattern, recursive) for project in projects
    )
    return [fs for fs in file_sets if fs.paths], failures


def get_project_files(
    client: GitLabClient,
    projects: Iterable[Project],
    cache_dir: Path,
    force_refresh: bool = False,
    file_pattern: str = DEFAULT_FILE_PATTERN,
    recursive: bool = False,
) -> list[ProjectFileSet]:
    """Get build file paths per project, from cache when available."""
    return cached(
        Path(cache_dir) / FILES_CACHE_FILE,
        compute=lambda: find_project_files(client, projects, file_pattern, recursive)[0],
        dump=ProjectFileSet.to_dict,
        load=ProjectFileSet.from_dict,
        force_refresh=force_refresh,
        description="files list",
    )


# ---------------------------------------------------------------------------
# Stage 3: file contents
# ---------------------------------------------------------------------------


def _file_matches(
    client: GitLabClient,
    project: Project,
    path: str,
    pattern: re.Pattern[str],
) -> bool | ItemFailure:
    try:
        content = client.get_file_content(project.id, path)
    except GitLabAPIError as e:
        logger.warning("Error reading file %s for project %s: %s", path, project.id, e)
        return ItemFailure(project_id=project.id, path=path, error=str(e))
    return pattern.search(content) is not None


def filter_by_content_with_failures(
    client: GitLabClient,
    project_file_sets: Iterable[ProjectFileSet],
    content_pattern: str = DEFAULT_CONTENT_PATTERN,
) -> tuple[list[ProjectMatch], list[ItemFailure]]:
    """
    Keep the files whose content matches, dropping projects left empty.

    An unreadable file counts as non-matching and is reported as a failure.
    """
    pattern = re.compile(content_pattern)
    matches: list[ProjectMatch] = []
    failures: list[ItemFailure] = []

    for file_set in project_file_sets:
        files: list[str] = []
        for path in file_set.paths:
            outcome = _file_matches(client, file_set.project, path, pattern)
            if isinstance(outcome, ItemFailure):
                failures.append(outcome)
            elif outcome:
                files.append(path)

        if files:
            matches.append(ProjectMatch(project=file_set.project, files=files))

    return matches, failures


def filter_by_content(
    client: GitLabClient,
    project_file_sets: Iterable[ProjectFileSet],
    content_pattern: str = DEFAULT_CONTENT_PATTERN,
) -> list[ProjectMatch]:
    """Projects with at least one build file matching ``content_pattern``."""
    matches, _ = filter_by_content_with_failures(client, project_file_sets, content_pattern)
    return matches


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


def run_search(
    client: GitLabClient,
    cache_dir: Path,
    force_refresh: bool = False,
    config: SearchConfig | None = None,
) -> SearchResult:
    """Run every stage in order and collect their outputs."""
    config = config or SearchConfig()

    projects = get_projects(
        client,
        cache_dir,
        force_refresh=force_refresh,
        per_page=config.per_page,
        min_access_level=config.min_access_level,
    )
    logger.info("Found %d projects.", len(projects))

    project_files = get_project_files(
        client,
        projects,
        cache_dir,
        force_refresh=force_refresh,
        file_pattern=config.file_pattern,
        recursive=config.recursive_tree,
    )
    logger.info("Found %d projects with *erfiles", len(project_files))

    matches, failures = filter_by_content_with_failures(
        client, project_files, config.content_pattern
    )
    logger.debug("%d files could not be read", len(failures))

    return SearchResult(
        projects=projects,
        project_files=project_files,
        matches=matches,
        failures=failures,
    )
