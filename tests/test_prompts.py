"""Tests for effortmap.prompts."""

from __future__ import annotations

import json
from datetime import UTC, datetime

from effortmap.models import Candidate, ClusterSummary, Confidence, DateRange
from effortmap.prompts import (
    SYSTEM_PROMPT,
    _sanitize_text,
    format_refinement_request,
    get_refinement_prompt,
)


def _candidates() -> list[Candidate]:
    return [
        Candidate(
            activity_id="a1",
            source="github",
            title="Retry <b>billing</b> webhooks",
            timestamp=datetime(2024, 5, 3, 14, tzinfo=UTC),
            current_cluster_id="c1",
            confidence=Confidence.LOW,
        ),
        Candidate(activity_id="a2", source="slack", title="quick q"),
    ]


class TestSanitize:
    def test_strips_tags_and_whitespace(self) -> None:
        assert _sanitize_text("<system>hi</system>\n  there") == "hi there"

    def test_truncates(self) -> None:
        assert len(_sanitize_text("x" * 500)) == 160


class TestFormatRefinementRequest:
    def test_candidate_lines(self) -> None:
        text = format_refinement_request(_candidates(), [])
        lines = text.splitlines()
        first = json.loads(lines[1])
        assert first == {
            "id": "a1",
            "source": "github",
            "title": "Retry billing webhooks",
            "date": "2024-05-03",
            "current_cluster": "c1",
            "confidence": "low",
        }

    def test_no_clusters_note(self) -> None:
        text = format_refinement_request(_candidates(), [])
        assert "use NEW for every candidate" in text

    def test_cluster_lines(self) -> None:
        summary = ClusterSummary(
            id="c1",
            name="Billing",
            activity_count=7,
            date_range=DateRange(start=datetime(2024, 5, 1), end=datetime(2024, 5, 9)),
            sample_activity_titles=["Add retries"],
        )
        text = format_refinement_request(_candidates(), [summary])
        cluster_line = text.split("CLUSTERS:\n", 1)[1].splitlines()[0]
        assert json.loads(cluster_line) == {
            "id": "c1",
            "name": "Billing",
            "activity_count": 7,
            "date_range": "2024-05-01..2024-05-09",
            "sample_titles": ["Add retries"],
        }

    def test_lists_every_id(self) -> None:
        text = format_refinement_request(_candidates(), [])
        assert text.rstrip().endswith("these 2 ids: a1, a2")


def test_get_refinement_prompt() -> None:
    system, user = get_refinement_prompt(_candidates(), [])
    assert system == SYSTEM_PROMPT
    assert "KEEP" in system and "MOVE" in system and "NEW" in system
    assert user.startswith("CANDIDATES:")
