"""
gitlab-search - Find GitLab projects whose container build files use build args.

A CLI tool that:
1. Lists every project you can access on a GitLab server
2. Finds container build files (Dockerfile, Containerfile) in each project
3. Checks which of those files declare build arguments
4. Prints a markdown checklist of projects to review

Usage:
    gitlab-search --hostname gitlab.example.com --pat <token>
    gitlab-search -b              # Ignore cached project and file lists
"""

__version__ = "0.1.0"
__author__ = "gitlab-search"
