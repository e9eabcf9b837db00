from __future__ import annotations

import json
from unittest.mock import Mock, patch

import pytest
import requests

from gitlab_search.cache import FILES_CACHE_FILE, PROJECTS_CACHE_FILE
from gitlab_search.gitlab import (
    ForbiddenError,
    GitLabAPIError,
    GitLabClient,
    GitLabProject,
    NotFoundError,
    TreeEntry,
)
from gitlab_search.report import write_report
from gitlab_search.search import (
    ItemFailure,
    Project,
    ProjectFileSet,
    filter_by_content,
    filter_by_content_with_failures,
    find_project_files,
    get_project_files,
    get_projects,
    partition_results,
    run_search,
)


class FakeGitLab:
    """In-memory stand-in for GitLabClient."""

    def __init__(self, projects=None, trees=None, files=None):
        self.projects = projects or []
        self.trees = trees or {}
        self.files = files or {}
        self.calls = []

    def list_projects(self, per_page=100, archived=False, min_access_level=10):
        self.calls.append(("list_projects", per_page))
        return iter(self.projects)

    def list_tree(self, project_id, ref=None, recursive=False, per_page=100):
        self.calls.append(("list_tree", project_id))
        tree = self.trees.get(project_id)
        if isinstance(tree, Exception):
            raise tree
        return [TreeEntry(path=p, name=p.rsplit("/", 1)[-1], type="blob") for p in tree or []]

    def get_file_content(self, project_id, path, ref="HEAD"):
        self.calls.append(("get_file_content", project_id, path))
        content = self.files.get((project_id, path))
        if content is None:
            raise NotFoundError("404 File Not Found", 404)
        if isinstance(content, Exception):
            raise content
        return content


def _gl_project(id, name, empty_repo=False, import_status="none"):
    return GitLabProject(
        id=id,
        name=name,
        web_url=f"https://gitlab.example.com/team/{name}",
        empty_repo=empty_repo,
        import_status=import_status,
    )


def _project(id, name):
    return Project(id=id, name=name, homepage=f"https://gitlab.example.com/team/{name}")


def _server_error():
    return GitLabAPIError("GitLab API error: 500 - Internal Server Error", 500)


def test_get_projects_filters_empty_and_failed_imports(tmp_path):
    client = FakeGitLab(projects=[
        _gl_project(1, "api"),
        _gl_project(2, "empty", empty_repo=True),
        _gl_project(3, "broken", import_status="failed"),
        _gl_project(4, "empty-and-finished", empty_repo=True, import_status="finished"),
    ])

    projects = get_projects(client, tmp_path)

    assert projects == [_project(1, "api")]
    cached = json.loads((tmp_path / PROJECTS_CACHE_FILE).read_text())
    assert cached == [{"id": 1, "name": "api", "homepage": "https://gitlab.example.com/team/api"}]


def test_get_projects_uses_cache_without_calling_client(tmp_path):
    (tmp_path / PROJECTS_CACHE_FILE).write_text(json.dumps([
        {"id": 9, "name": "cached", "homepage": "https://gitlab.example.com/team/cached"},
    ]))
    client = Mock()

    projects = get_projects(client, tmp_path)

    assert projects == [_project(9, "cached")]
    client.list_projects.assert_not_called()


def test_get_projects_bust_recomputes_from_client(tmp_path):
    (tmp_path / PROJECTS_CACHE_FILE).write_text(json.dumps([
        {"id": 9, "name": "stale", "homepage": "https://gitlab.example.com/team/stale"},
    ]))
    client = FakeGitLab(projects=[_gl_project(1, "api")])

    projects = get_projects(client, tmp_path, force_refresh=True)

    assert projects == [_project(1, "api")]
    assert json.loads((tmp_path / PROJECTS_CACHE_FILE).read_text())[0]["id"] == 1


def test_get_projects_listing_error_propagates_without_cache(tmp_path):
    client = Mock()
    client.list_projects.side_effect = ForbiddenError("401 Unauthorized", 401)

    with pytest.raises(GitLabAPIError):
        get_projects(client, tmp_path)

    assert not (tmp_path / PROJECTS_CACHE_FILE).exists()


def test_find_project_files_selects_erfiles():
    client = FakeGitLab(trees={
        1: ["Dockerfile", "README.md", "Containerfile", "Dockerfile.dev"],
        2: ["setup.py"],
    })

    file_sets, failures = find_project_files(client, [_project(1, "api"), _project(2, "lib")])

    assert failures == []
    assert len(file_sets) == 1
    assert file_sets[0].project.id == 1
    assert file_sets[0].paths == ["Dockerfile", "Containerfile"]


def test_get_project_files_isolates_failing_project(tmp_path, caplog):
    projects = [_project(1, "a"), _project(2, "b"), _project(3, "c")]
    client = FakeGitLab(trees={
        1: ["Dockerfile"],
        2: _server_error(),
        3: ["Containerfile"],
    })

    with caplog.at_level("WARNING"):
        file_sets = get_project_files(client, projects, tmp_path)

    assert [fs.project.id for fs in file_sets] == [1, 3]
    assert "Error reading files for 2" in caplog.text
    cached = json.loads((tmp_path / FILES_CACHE_FILE).read_text())
    assert [entry["project"]["id"] for entry in cached] == [1, 3]
    assert cached[0]["paths"] == ["Dockerfile"]


def _tree_response(url, body):
    response = Mock()
    response.status_code = 200
    response.headers = {"X-Next-Page": ""}
    response.url = url
    if isinstance(body, str):
        response.text = body
        response.json.side_effect = requests.exceptions.JSONDecodeError("Expecting value", body, 0)
    else:
        response.text = json.dumps(body)
        response.json.return_value = body
    return response


@pytest.mark.parametrize(
    "bad_body",
    ["<html><body>Redirecting to SSO</body></html>", {"message": "maintenance"}],
)
def test_get_project_files_malformed_tree_drops_only_that_project(tmp_path, caplog, bad_body):
    client = GitLabClient("gitlab.example.com", token="t")
    bodies = {
        1: bad_body,
        2: [{"path": "Dockerfile", "name": "Dockerfile", "type": "blob"}],
        3: [{"path": "Containerfile", "name": "Containerfile", "type": "blob"}],
    }

    def fake_request(method, url, params=None, **kwargs):
        project_id = int(url.split("/projects/")[1].split("/")[0])
        return _tree_response(url, bodies[project_id])

    projects = [_project(1, "a"), _project(2, "b"), _project(3, "c")]
    with patch.object(client.session, "request", side_effect=fake_request):
        with caplog.at_level("WARNING"):
            file_sets = get_project_files(client, projects, tmp_path)

    assert [fs.project.id for fs in file_sets] == [2, 3]
    assert file_sets[0].paths == ["Dockerfile"]
    assert "Error reading files for 1" in caplog.text


def test_get_project_files_reuses_cache(tmp_path):
    (tmp_path / FILES_CACHE_FILE).write_text(json.dumps([
        {
            "project": {"id": 5, "name": "svc", "homepage": "https://gitlab.example.com/team/svc"},
            "paths": ["Dockerfile"],
        },
    ]))
    client = Mock()

    file_sets = get_project_files(client, [_project(5, "svc")], tmp_path)

    assert file_sets == [ProjectFileSet(project=_project(5, "svc"), paths=["Dockerfile"])]
    client.list_tree.assert_not_called()


def test_filter_by_content_keeps_matching_files_only():
    project = _project(1, "api")
    client = FakeGitLab(files={
        (1, "Dockerfile"): "FROM python:3.12\nARG VERSION=1\n",
        (1, "Containerfile"): "FROM alpine\nRUN echo hi\n",
    })

    matches = filter_by_content(
        client, [ProjectFileSet(project=project, paths=["Dockerfile", "Containerfile"])]
    )

    assert len(matches) == 1
    assert matches[0].project == project
    assert matches[0].files == ["Dockerfile"]


def test_filter_by_content_unreadable_file_is_non_matching(caplog):
    project = _project(1, "api")
    client = FakeGitLab(files={(1, "Containerfile"): "ARG BASE\nFROM ${BASE}\n"})

    with caplog.at_level("WARNING"):
        matches, failures = filter_by_content_with_failures(
            client, [ProjectFileSet(project=project, paths=["Dockerfile", "Containerfile"])]
        )

    assert matches[0].files == ["Containerfile"]
    assert failures == [ItemFailure(project_id=1, path="Dockerfile", error="404 File Not Found")]
    assert "Error reading file Dockerfile for project 1" in caplog.text


def test_filter_by_content_drops_project_when_only_file_fails():
    project = _project(1, "api")
    client = FakeGitLab(files={(1, "Dockerfile"): ForbiddenError("403 Forbidden", 403)})

    matches = filter_by_content(client, [ProjectFileSet(project=project, paths=["Dockerfile"])])

    assert matches == []


def test_partition_results_keeps_order():
    failure = ItemFailure(project_id=2, path=None, error="boom")
    successes, failures = partition_results(["a", failure, "b"])

    assert successes == ["a", "b"]
    assert failures == [failure]


def test_end_to_end_reports_project_with_build_args(tmp_path):
    client = FakeGitLab(
        projects=[_gl_project(1, "alpha"), _gl_project(2, "beta")],
        trees={1: ["Dockerfile", "app.py"], 2: ["README.md", "main.go"]},
        files={(1, "Dockerfile"): "FROM golang\nARG VERSION=1\n"},
    )

    result = run_search(client, tmp_path)
    report = write_report(result.matches)

    assert report.splitlines() == [
        "# There are 1 projects to check out:",
        "",
        "- [ ] https://gitlab.example.com/team/alpha/-/blob/master/Dockerfile",
    ]


def test_end_to_end_failed_fetch_excludes_project(tmp_path):
    client = FakeGitLab(
        projects=[_gl_project(1, "alpha")],
        trees={1: ["Dockerfile"]},
        files={(1, "Dockerfile"): _server_error()},
    )

    result = run_search(client, tmp_path)

    assert result.matches == []
    assert len(result.failures) == 1
    assert write_report(result.matches) == "# There are 0 projects to check out:\n\n"


def test_second_run_uses_caches_and_gives_same_report(tmp_path):
    client = FakeGitLab(
        projects=[_gl_project(1, "alpha")],
        trees={1: ["Dockerfile"]},
        files={(1, "Dockerfile"): "ARG TAG\n"},
    )

    first = write_report(run_search(client, tmp_path).matches)
    client.calls.clear()
    second = write_report(run_search(client, tmp_path).matches)

    assert first == second
    called = {call[0] for call in client.calls}
    assert called == {"get_file_content"}