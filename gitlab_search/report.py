"""
Report generator for gitlab-search.

Renders the markdown checklist of matching projects using Jinja2 templates.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

from jinja2 import Environment, FileSystemLoader

from .config import DEFAULT_REPORT_BLOB_PATH
from .search import ProjectMatch


def _template_env() -> Environment:
    template_dir = Path(__file__).resolve().parent / "templates"
    return Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def checklist_url(match: ProjectMatch, blob_path: str = DEFAULT_REPORT_BLOB_PATH) -> str:
    """URL of the file to review. Always the fixed blob path, not the matched file."""
    return f"{match.project.homepage.rstrip('/')}{blob_path}"


def write_report(
    matches: Iterable[ProjectMatch],
    blob_path: str = DEFAULT_REPORT_BLOB_PATH,
) -> str:
    """Render the checklist of projects to check out."""
    matches = list(matches)
    template = _template_env().get_template("report.md.j2")
    return template.render(
        count=len(matches),
        urls=[checklist_url(m, blob_path) for m in matches],
    )


def matches_to_json(matches: Iterable[ProjectMatch]) -> str:
    return json.dumps([m.to_dict() for m in matches], indent=2)
