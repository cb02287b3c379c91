"""Prompt templates for cluster refinement."""

from __future__ import annotations

import json
import re

from effortmap.models import Candidate, ClusterSummary

# XML tag pattern for sanitization
_XML_TAG_RE = re.compile(r"</?[a-zA-Z][\w-]*(?:\s[^>]*)?>")

_MAX_TITLE_CHARS = 160


def _sanitize_text(text: str, limit: int = _MAX_TITLE_CHARS) -> str:
    """Strip XML tags, collapse whitespace, and truncate for prompt use."""
    cleaned = _XML_TAG_RE.sub("", text).strip()
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned[:limit] if len(cleaned) > limit else cleaned


SYSTEM_PROMPT = """\
You group a professional's work activities (pull requests, tickets, chat \
threads, documents, meetings) into coherent efforts. A heuristic pass has \
already grouped the obvious cases. You decide only the ambiguous activities \
listed under CANDIDATES.

For EVERY candidate id, and for no other id, return exactly one directive:
- "KEEP:<clusterId>" — leave the activity in the cluster it is already in. \
Only allowed when <clusterId> equals the candidate's current_cluster.
- "MOVE:<clusterId>" — move the activity into a different existing cluster. \
<clusterId> must be one of the ids under CLUSTERS and must differ from the \
candidate's current_cluster.
- "NEW:<name>" — start a new cluster with a short descriptive name. Give \
candidates that belong together the exact same name.

When uncertain, prefer NEW over merging into an existing cluster. An \
over-split costs the user one manual merge later; an over-merge costs them \
untangling unrelated work, which is worse.

Respond with ONLY a flat JSON object mapping candidate id to directive, \
for example:
{"act-1": "KEEP:cl-7", "act-2": "MOVE:cl-3", "act-3": "NEW:Billing retries"}
No prose, no markdown, no duplicate keys."""


def _candidate_payload(candidate: Candidate) -> dict[str, object]:
    return {
        "id": candidate.activity_id,
        "source": candidate.source,
        "title": _sanitize_text(candidate.title),
        "date": candidate.timestamp.date().isoformat() if candidate.timestamp else None,
        "current_cluster": candidate.current_cluster_id,
        "confidence": str(candidate.confidence) if candidate.confidence else None,
    }


def _summary_payload(summary: ClusterSummary) -> dict[str, object]:
    date_range = None
    if summary.date_range is not None:
        date_range = (
            f"{summary.date_range.start.date().isoformat()}"
            f"..{summary.date_range.end.date().isoformat()}"
        )
    return {
        "id": summary.id,
        "name": _sanitize_text(summary.name),
        "activity_count": summary.activity_count,
        "date_range": date_range,
        "sample_titles": [_sanitize_text(t) for t in summary.sample_activity_titles],
    }


def format_refinement_request(
    candidates: list[Candidate], summaries: list[ClusterSummary]
) -> str:
    """Render the user portion of the refinement request."""
    lines: list[str] = ["CANDIDATES:"]
    for candidate in candidates:
        lines.append(json.dumps(_candidate_payload(candidate), ensure_ascii=False))

    lines.append("")
    lines.append("CLUSTERS:")
    if summaries:
        for summary in summaries:
            lines.append(json.dumps(_summary_payload(summary), ensure_ascii=False))
    else:
        lines.append("(none — use NEW for every candidate)")

    ids = ", ".join(c.activity_id for c in candidates)
    lines.append("")
    lines.append(f"Return one directive for each of these {len(candidates)} ids: {ids}")
    return "\n".join(lines)


def get_refinement_prompt(
    candidates: list[Candidate], summaries: list[ClusterSummary]
) -> tuple[str, str]:
    """Return ``(system_prompt, user_prompt)`` for one refinement attempt."""
    return SYSTEM_PROMPT, format_refinement_request(candidates, summaries)
