"""Detect PRs, commits and comments the agent produced from its shell commands."""

from __future__ import annotations

import re
from collections.abc import Callable
from urllib.parse import urlsplit

_GITHUB_URL_RE = re.compile(
    r"https://github\.com/[a-zA-Z0-9-]+/[\w.-]+/(?:pull|issues)/\d+(?:#issuecomment-\d+)?"
)
# ``git commit`` prints ``[branch abc1234] message``.
_COMMIT_SHA_RE = re.compile(r"\[[\w-]+\s+([a-f0-9]{7,40})\]")

_GITHUB_HOSTS = frozenset({"github.com", "api.github.com"})


def is_github_url(url: str) -> bool:
    try:
        return urlsplit(url).hostname in _GITHUB_HOSTS
    except ValueError:
        return False


def extract_github_urls(text: str) -> list[str]:
    """Distinct PR / issue / comment URLs in order of appearance."""
    urls = dict.fromkeys(_GITHUB_URL_RE.findall(text))
    return [url for url in urls if is_github_url(url)]


def extract_commit_shas(text: str) -> list[str]:
    return list(dict.fromkeys(_COMMIT_SHA_RE.findall(text)))


def detect_artifacts(
    command: str,
    output: str,
    prs_created: list[str],
    commits_created: list[str],
    on_comment_posted: Callable[[], None],
) -> None:
    """
    Scan one completed shell command and record what it created.

    ``prs_created`` and ``commits_created`` are extended in place without
    duplicates. ``on_comment_posted`` fires at most once per command.
    """
    urls = extract_github_urls(output)

    if "gh pr create" in command:
        for url in urls:
            if "/pull/" in url and "#" not in url and url not in prs_created:
                prs_created.append(url)

    if "git commit" in command:
        for sha in extract_commit_shas(output):
            if sha not in commits_created:
                commits_created.append(sha)

    if "gh issue comment" in command or "gh pr comment" in command:
        if any("#issuecomment" in url for url in urls):
            on_comment_posted()
