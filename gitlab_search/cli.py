"""
gitlab-search CLI - Find GitLab projects whose Dockerfiles declare build args.

Lists accessible projects, finds *erfile build files, keeps the files that
contain "ARG ", and prints a markdown checklist to stdout. Progress and
warnings go to stderr.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path

import click
from dotenv import load_dotenv

# Load .env file from current directory
load_dotenv()
load_dotenv(Path.cwd() / ".env")

from . import __version__
from .config import ConfigError, SearchConfig, ensure_cache_dir
from .gitlab import GitLabClient
from .logs import setup_logging
from .report import matches_to_json, write_report
from .search import run_search


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("search_term", required=False, default="")
@click.option("--hostname", default=None, help="Gitlab server hostname")
@click.option("-p", "--pull-image", is_flag=True, help="Pull the image from the registry")
@click.option("--pat", "access_token", metavar="PERSONAL_ACCESS_TOKEN", default=None, help="Gitlab Personal Access Token")
@click.option("-b", "--bust-cache", is_flag=True, help="Overwrite any existing cached files")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ./gitlab-search.yml if present)",
)
@click.option("--json", "as_json", is_flag=True, help="Output matches as JSON")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging on stderr")
@click.version_option(version=__version__)
def main(
    search_term: str,
    hostname: str | None,
    pull_image: bool,
    access_token: str | None,
    bust_cache: bool,
    config_path: Path | None,
    as_json: bool,
    verbose: bool,
):
    """Report GitLab projects whose Dockerfiles declare build arguments.

    SEARCH_TERM and --pull-image are accepted but not used yet.

    Examples:

        gitlab-search --hostname gitlab.example.com --pat glpat-xxxx

        gitlab-search -b              # Re-list projects and files
    """
    setup_logging(verbose)

    try:
        config = SearchConfig.load(config_path).apply_env()
    except ConfigError as e:
        raise click.UsageError(str(e))

    overrides = {}
    if hostname:
        overrides["hostname"] = hostname
    if access_token:
        overrides["access_token"] = access_token
    config = dataclasses.replace(config, **overrides)

    if not config.hostname:
        raise click.UsageError("No GitLab hostname given (use --hostname or set 'hostname')")

    client = GitLabClient(config.hostname, config.access_token)
    cache_dir = ensure_cache_dir(config)

    result = run_search(client, cache_dir, force_refresh=bust_cache, config=config)

    if as_json:
        click.echo(matches_to_json(result.matches))
    else:
        click.echo(write_report(result.matches, config.report_blob_path), nl=False)


if __name__ == "__main__":
    main()
