"""Signal extraction: tool-specific raw payloads -> ActivitySignal.

Each known tool has one pure extractor returning the people on the record
and its working container. Unknown tools fall back to scanning a fixed list
of people-like field names. Malformed payloads degrade to empty signals.
"""

from __future__ import annotations

import logging
import re
import string
from collections.abc import Callable, Iterable, Mapping
from enum import StrEnum
from typing import Any

from effortmap.models import ActivityRecord, ActivitySignal

logger = logging.getLogger(__name__)


class SourceTool(StrEnum):
    """Tools with a dedicated extractor."""

    GITHUB = "github"
    JIRA = "jira"
    SLACK = "slack"
    CONFLUENCE = "confluence"
    FIGMA = "figma"
    GOOGLE_CALENDAR = "google-calendar"
    OUTLOOK = "outlook"
    GOOGLE_DRIVE = "google-drive"


# Long-lived branches are shared by unrelated work and never act as containers.
EXCLUDED_BRANCHES = frozenset({"main", "master", "develop", "development", "trunk"})
EXCLUDED_BRANCH_PREFIXES = ("release/", "hotfix/")
REMOTE_NAMES = ("origin", "upstream")

# Fields tried, in order, for payloads from tools without an extractor.
GENERIC_PEOPLE_FIELDS = (
    "author",
    "user",
    "owner",
    "creator",
    "assignee",
    "reporter",
    "organizer",
    "reviewers",
    "watchers",
    "mentions",
    "attendees",
    "participants",
    "collaborators",
    "members",
)

# Keys that identify a person when a payload nests people as objects.
_PERSON_KEYS = ("login", "username", "email", "emailAddress", "name", "displayName")


def _local_branch_name(branch: str) -> str:
    """``refs/heads/x``, ``refs/remotes/origin/x`` and ``origin/x`` -> ``x``."""
    name = branch.strip().lower()
    if name.startswith("refs/heads/"):
        return name[len("refs/heads/") :]
    if name.startswith("refs/remotes/"):
        _remote, _, rest = name[len("refs/remotes/") :].partition("/")
        return rest
    for remote in REMOTE_NAMES:
        if name.startswith(remote + "/"):
            return name[len(remote) + 1 :]
    return name


def is_excluded_branch(branch: str) -> bool:
    """True for default and release-style branches, local or remote-tracking."""
    name = _local_branch_name(branch)
    return name in EXCLUDED_BRANCHES or name.startswith(EXCLUDED_BRANCH_PREFIXES)


def normalize_identity(value: str) -> str:
    """Case-fold a person identifier and drop a leading ``@``."""
    return value.strip().lstrip("@").casefold()


# -- Field helpers -----------------------------------------------------------


def _person(value: object) -> str | None:
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, Mapping):
        for key in _PERSON_KEYS:
            inner = value.get(key)
            if isinstance(inner, str) and inner.strip():
                return inner
    return None


def _people(raw: Mapping[str, Any], *keys: str) -> list[str]:
    """Collect people from scalar or list fields, ignoring anything malformed."""
    found: list[str] = []
    for key in keys:
        value = raw.get(key)
        items = value if isinstance(value, list) else [value]
        for item in items:
            person = _person(item)
            if person is not None:
                found.append(person)
    return found


def _text(raw: Mapping[str, Any], *keys: str) -> str | None:
    """First non-empty string among *keys*."""
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


# -- Per-tool extractors -----------------------------------------------------
# Each returns (people, container).

Extraction = tuple[list[str], str | None]


def _extract_github(raw: Mapping[str, Any]) -> Extraction:
    people = _people(raw, "author", "reviewers", "requestedReviewers", "mentions", "assignees")
    container = None
    head_ref = _text(raw, "headRef", "head_ref")
    branch = _text(raw, "branch")
    if head_ref and not is_excluded_branch(head_ref):
        container = head_ref
    elif branch and not is_excluded_branch(branch):
        container = branch
    return people, container


def _extract_jira(raw: Mapping[str, Any]) -> Extraction:
    people = _people(raw, "assignee", "reporter", "watchers", "mentions")
    container = _text(raw, "epicKey")
    linked = raw.get("linkedIssues")
    if container is None and isinstance(linked, list):
        for issue in linked:
            if isinstance(issue, Mapping) and issue.get("type") == "Epic":
                key = issue.get("key")
                if isinstance(key, str) and key.strip():
                    container = key.strip()
                    break
    return people, container


def _extract_slack(raw: Mapping[str, Any]) -> Extraction:
    people = _people(raw, "author", "userId", "parentAuthor", "replyAuthor", "mentions")
    # Thread, not channel: a channel spans many unrelated efforts.
    return people, _text(raw, "threadTs", "thread_ts")


def _extract_confluence(raw: Mapping[str, Any]) -> Extraction:
    people = _people(raw, "creator", "lastModifiedBy", "watchers", "mentions")
    return people, _text(raw, "spaceKey")


def _extract_figma(raw: Mapping[str, Any]) -> Extraction:
    people = _people(raw, "owner", "creator", "commenters", "editors")
    return people, _text(raw, "fileKey")


def _extract_calendar(raw: Mapping[str, Any]) -> Extraction:
    return _people(raw, "organizer", "attendees"), None


def _extract_drive(raw: Mapping[str, Any]) -> Extraction:
    people = _people(raw, "owner", "lastModifiedBy", "editors", "commenters", "mentions")
    return people, _text(raw, "folderPath", "folder")


def _extract_generic(raw: Mapping[str, Any]) -> Extraction:
    return _people(raw, *GENERIC_PEOPLE_FIELDS), None


_EXTRACTORS: dict[SourceTool, Callable[[Mapping[str, Any]], Extraction]] = {
    SourceTool.GITHUB: _extract_github,
    SourceTool.JIRA: _extract_jira,
    SourceTool.SLACK: _extract_slack,
    SourceTool.CONFLUENCE: _extract_confluence,
    SourceTool.FIGMA: _extract_figma,
    SourceTool.GOOGLE_CALENDAR: _extract_calendar,
    SourceTool.OUTLOOK: _extract_calendar,
    SourceTool.GOOGLE_DRIVE: _extract_drive,
}


def resolve_tool(source: str) -> SourceTool | None:
    """Map a source tag (``GitHub``, ``google_calendar``) to a known tool."""
    tag = source.strip().lower().replace("_", "-")
    try:
        return SourceTool(tag)
    except ValueError:
        return None


# -- Keywords ----------------------------------------------------------------

STOPWORDS: frozenset[str] = frozenset(
    {
        "the", "and", "for", "with", "from", "into", "onto", "that", "this",
        "these", "those", "was", "were", "are", "is", "been", "being", "have",
        "has", "had", "not", "but", "all", "any", "can", "will", "would",
        "should", "could", "our", "your", "their", "its", "his", "her", "they",
        "them", "you", "out", "off", "over", "under", "about", "after",
        "before", "when", "then", "than", "also", "just", "via", "per", "new",
        "some", "more", "most", "other", "only", "what", "which", "who",
        "how", "why", "where", "there", "here", "each", "few", "too", "very",
        "now", "get", "got", "use", "used", "using", "make", "made",
        # Developer noise: describes the kind of change, not the effort.
        "fix", "fixes", "fixed", "add", "adds", "added", "update", "updates",
        "updated", "merge", "merged", "merges", "chore", "feat", "feature",
        "refactor", "wip", "bump", "remove", "removed", "revert", "cleanup",
        "tweak", "minor", "misc", "pull", "request", "branch", "commit",
        "review", "draft", "todo", "test", "tests", "docs",
    }
)

_MIN_KEYWORD_LEN = 3
_PUNCT_TO_SPACE = str.maketrans(
    {ch: " " for ch in string.punctuation + "’‘“”"}
)
_WHITESPACE_RE = re.compile(r"\s+")


def tokenize_keywords(text: str) -> list[str]:
    """Lowercase, strip punctuation, drop stopwords and short or numeric tokens.

    Order of first appearance is kept; duplicates are removed.
    """
    cleaned = _WHITESPACE_RE.sub(" ", text.lower().translate(_PUNCT_TO_SPACE))
    seen: set[str] = set()
    result: list[str] = []
    for word in cleaned.split(" "):
        if len(word) < _MIN_KEYWORD_LEN or word.isdigit():
            continue
        if word in STOPWORDS or word in seen:
            continue
        seen.add(word)
        result.append(word)
    return result


# -- Public API --------------------------------------------------------------


def _filter_self_and_dedupe(people: Iterable[str], self_set: set[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for person in people:
        normalized = normalize_identity(person)
        if not normalized or normalized in self_set or normalized in seen:
            continue
        seen.add(normalized)
        result.append(normalized)
    return result


def extract(record: ActivityRecord, self_identities: str | Iterable[str]) -> ActivitySignal:
    """Build the clustering signal for one activity.

    Args:
        record: The activity as delivered by the ingestion layer.
        self_identities: The acting user's identifier(s); never reported as
            collaborators.

    Returns:
        The activity's signal. Never raises on payload content.
    """
    if isinstance(self_identities, str):
        self_identities = [self_identities]
    self_set = {normalize_identity(s) for s in self_identities if s}

    people: list[str] = []
    container: str | None = None
    raw = record.raw
    if isinstance(raw, Mapping):
        tool = resolve_tool(record.source)
        extractor = _EXTRACTORS[tool] if tool else _extract_generic
        people, container = extractor(raw)

    refs = list(dict.fromkeys(r.strip() for r in record.refs if r and r.strip()))

    return ActivitySignal(
        id=record.id,
        source=record.source,
        timestamp=record.timestamp,
        title=record.title,
        refs=refs,
        collaborators=_filter_self_and_dedupe(people, self_set),
        container=container,
        keywords=tokenize_keywords(record.title),
        parent_id=record.parent_id,
        cluster_id=record.cluster_id,
    )


def extract_all(
    records: Iterable[ActivityRecord], self_identities: str | Iterable[str]
) -> list[ActivitySignal]:
    """Extract signals for every record, preserving input order."""
    identities = [self_identities] if isinstance(self_identities, str) else list(self_identities)
    signals = [extract(record, identities) for record in records]
    logger.debug(
        "Extracted %d signals (%d with container, %d with collaborators)",
        len(signals),
        sum(1 for s in signals if s.container),
        sum(1 for s in signals if s.collaborators),
    )
    return signals
