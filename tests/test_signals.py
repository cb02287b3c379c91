"""Tests for effortmap.signals — per-tool extraction and keyword tokenizing."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from effortmap.models import ActivityRecord
from effortmap.signals import (
    SourceTool,
    extract,
    extract_all,
    is_excluded_branch,
    normalize_identity,
    resolve_tool,
    tokenize_keywords,
)


def _make_record(
    source: str,
    raw: dict | None = None,
    *,
    id: str = "act-1",
    title: str = "",
    refs: list[str] | None = None,
) -> ActivityRecord:
    return ActivityRecord(
        id=id,
        source=source,
        timestamp=datetime(2024, 4, 1, tzinfo=UTC),
        title=title,
        refs=refs or [],
        raw=raw,
    )


class TestBranchExclusion:
    @pytest.mark.parametrize(
        "branch",
        [
            "main",
            "master",
            "develop",
            "trunk",
            "refs/heads/main",
            "release/1.2",
            "hotfix/x",
            "origin/main",
            "upstream/develop",
            "refs/remotes/origin/master",
            "refs/remotes/fork/release/2.0",
        ],
    )
    def test_excluded(self, branch: str) -> None:
        assert is_excluded_branch(branch)

    @pytest.mark.parametrize(
        "branch", ["feature/billing", "bob/fix-login", "maintenance", "origin/feature/main-nav"]
    )
    def test_allowed(self, branch: str) -> None:
        assert not is_excluded_branch(branch)


class TestResolveTool:
    def test_case_and_underscore(self) -> None:
        assert resolve_tool("GitHub") is SourceTool.GITHUB
        assert resolve_tool("google_calendar") is SourceTool.GOOGLE_CALENDAR

    def test_unknown(self) -> None:
        assert resolve_tool("linear") is None


class TestGithub:
    def test_people_and_head_ref(self) -> None:
        record = _make_record(
            "github",
            {
                "author": {"login": "Alice"},
                "reviewers": ["bob", {"login": "carol"}],
                "mentions": ["@dave"],
                "headRef": "feature/billing",
                "branch": "other",
            },
        )
        signal = extract(record, "alice")

        assert signal.collaborators == ["bob", "carol", "dave"]
        assert signal.container == "feature/billing"

    def test_default_branch_is_not_a_container(self) -> None:
        record = _make_record("github", {"headRef": "main", "branch": "master"})
        assert extract(record, "me").container is None

    def test_falls_back_to_branch(self) -> None:
        record = _make_record("github", {"headRef": "develop", "branch": "feature/x"})
        assert extract(record, "me").container == "feature/x"


class TestJira:
    def test_epic_key(self) -> None:
        record = _make_record(
            "jira", {"assignee": "bob", "reporter": "carol", "epicKey": "PROJ-100"}
        )
        signal = extract(record, [])
        assert signal.collaborators == ["bob", "carol"]
        assert signal.container == "PROJ-100"

    def test_epic_from_linked_issues(self) -> None:
        record = _make_record(
            "jira",
            {"linkedIssues": [{"type": "Blocks", "key": "P-2"}, {"type": "Epic", "key": "P-9"}]},
        )
        assert extract(record, []).container == "P-9"


class TestOtherTools:
    def test_slack_thread_not_channel(self) -> None:
        record = _make_record(
            "slack", {"author": "bob", "channel": "C123", "threadTs": "1700000000.000100"}
        )
        signal = extract(record, [])
        assert signal.container == "1700000000.000100"

    def test_slack_without_thread(self) -> None:
        record = _make_record("slack", {"author": "bob", "channel": "C123"})
        assert extract(record, []).container is None

    def test_confluence_space(self) -> None:
        record = _make_record("confluence", {"creator": "bob", "spaceKey": "ENG"})
        assert extract(record, []).container == "ENG"

    def test_figma_file(self) -> None:
        record = _make_record("figma", {"owner": "bob", "fileKey": "abc"})
        assert extract(record, []).container == "abc"

    def test_calendar_attendees(self) -> None:
        record = _make_record(
            "google-calendar",
            {"organizer": {"email": "bob@x.io"}, "attendees": [{"email": "me@x.io"}, "carol"]},
        )
        signal = extract(record, ["me@x.io"])
        assert signal.collaborators == ["bob@x.io", "carol"]
        assert signal.container is None

    def test_generic_fields_for_unknown_tool(self) -> None:
        record = _make_record("linear", {"assignee": "bob", "participants": ["carol"]})
        signal = extract(record, [])
        assert signal.collaborators == ["bob", "carol"]
        assert signal.container is None


class TestExtract:
    def test_self_excluded_case_insensitive(self) -> None:
        record = _make_record("github", {"author": "@Alice", "reviewers": ["ALICE", "bob"]})
        assert extract(record, ["alice"]).collaborators == ["bob"]

    def test_collaborators_deduplicated(self) -> None:
        record = _make_record("jira", {"assignee": "Bob", "watchers": ["bob", "carol"]})
        assert extract(record, []).collaborators == ["bob", "carol"]

    def test_missing_raw_gives_empty_signals(self) -> None:
        signal = extract(_make_record("github", None, title="Billing retries"), "me")
        assert signal.collaborators == []
        assert signal.container is None
        assert signal.keywords == ["billing", "retries"]

    def test_malformed_fields_ignored(self) -> None:
        record = _make_record(
            "github", {"author": 42, "reviewers": "bob", "mentions": [None, {}], "headRef": 7}
        )
        signal = extract(record, [])
        assert signal.collaborators == ["bob"]
        assert signal.container is None

    def test_refs_stripped_and_deduplicated(self) -> None:
        record = _make_record("github", {}, refs=["PROJ-1", " PROJ-1 ", "", "#42"])
        assert extract(record, []).refs == ["PROJ-1", "#42"]

    def test_extract_all_preserves_order(self) -> None:
        records = [_make_record("slack", {}, id=f"a{i}") for i in range(3)]
        assert [s.id for s in extract_all(records, "me")] == ["a0", "a1", "a2"]


class TestTokenizeKeywords:
    def test_stopwords_and_noise_dropped(self) -> None:
        assert tokenize_keywords("Fix the billing retry logic for PR 123") == [
            "billing",
            "retry",
            "logic",
        ]

    def test_punctuation_split(self) -> None:
        assert tokenize_keywords("billing/retry: add back-off!") == [
            "billing",
            "retry",
            "back",
        ]

    def test_duplicates_removed(self) -> None:
        assert tokenize_keywords("Billing billing BILLING") == ["billing"]


def test_normalize_identity() -> None:
    assert normalize_identity("  @Alice ") == "alice"
