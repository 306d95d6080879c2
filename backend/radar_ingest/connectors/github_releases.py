"""
GitHub releases connector, layered on the repository's releases Atom feed.

Same cursor as the rss connector. Release notes prefer the Atom content
over the summary, and normalize adds the version tag and a prerelease flag
parsed from the release title.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from radar_ingest.connectors.rss import RssConnector, RssSourceConfig
from radar_ingest.cursor import as_str, clamp_int, pick
from radar_ingest.exceptions import ConnectorConfigError
from radar_ingest.feed_parser import FeedEntry
from radar_ingest.models import ContentItemDraft, FetchParams

_VERSION_RE = re.compile(r"\b(v\d+\.\d+(?:\.\d+)?(?:[-._][a-zA-Z0-9._-]+)?)\b")
_BARE_VERSION_RE = re.compile(r"\b(\d+\.\d+(?:\.\d+)?(?:[-._][a-zA-Z0-9._-]+)?)\b")
_PRERELEASE_RE = re.compile(r"\b(alpha|beta|rc|pre|preview|canary|dev|nightly)\b", re.IGNORECASE)
_REPO_PART_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def parse_version(title: Optional[str]) -> Optional[str]:
    """``v1.2.3``-style tag from a release title, falling back to ``1.2.3``."""
    if not title:
        return None
    match = _VERSION_RE.search(title) or _BARE_VERSION_RE.search(title)
    return match.group(1) if match else None


def is_prerelease(title: Optional[str], version: Optional[str]) -> bool:
    haystack = " ".join(part for part in (title, version) if part)
    return bool(_PRERELEASE_RE.search(haystack))


@dataclass
class GithubReleasesSourceConfig(RssSourceConfig):
    owner: str = ""
    repo: str = ""

    @property
    def repo_full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "GithubReleasesSourceConfig":
        owner = as_str(config.get("owner"))
        repo = as_str(config.get("repo"))
        if not owner or not repo:
            raise ConnectorConfigError(
                'GitHub releases source config must include non-empty "owner" and "repo"'
            )
        if not _REPO_PART_RE.match(owner) or not _REPO_PART_RE.match(repo):
            raise ConnectorConfigError(f"Invalid GitHub repository: {owner}/{repo}")
        return cls(
            feed_url=f"https://github.com/{owner}/{repo}/releases.atom",
            max_item_count=clamp_int(pick(config, "max_item_count", "maxItemCount"), 1, 200, 50),
            prefer_content_encoded=True,
            owner=owner,
            repo=repo,
        )


class GithubReleasesConnector(RssConnector):
    """Release announcements for one repository."""

    source_type = "github_releases"

    def parse_config(self, config: Dict[str, Any]) -> GithubReleasesSourceConfig:
        return GithubReleasesSourceConfig.from_config(config)

    def select_content(self, entry: FeedEntry, config: RssSourceConfig):
        return entry.content_html or entry.summary, entry.summary

    def extra_meta(self, config: GithubReleasesSourceConfig) -> Dict[str, Any]:
        return {"owner": config.owner, "repo": config.repo}

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        draft = super().normalize(raw, params)

        version = parse_version(draft.title)
        repo_full_name = None
        config = params.config or {}
        owner, repo = as_str(config.get("owner")), as_str(config.get("repo"))
        if owner and repo:
            repo_full_name = f"{owner}/{repo}"

        draft.metadata.update({
            "version": version,
            "prerelease": is_prerelease(draft.title, version),
            "repo_full_name": repo_full_name,
            "release_notes": draft.body_text,
        })
        return draft
