"""Semantic refinement of ambiguous candidates via an external LLM.

The exchange is a small state machine::

    ATTEMPT_1 --invalid--> ATTEMPT_2 --invalid--> FALLBACK
        |                      |
        +--transport error-----+-----------------> FALLBACK
        +--valid--> DONE       +--valid--> DONE

Only the two attempt states issue requests, so at most two calls are ever
made per run.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from enum import StrEnum
from functools import partial

from effortmap.llm import LLMError, call_claude, strip_json_fences
from effortmap.models import (
    Assignment,
    AssignmentAction,
    Candidate,
    ClusterSummary,
    RefinementResult,
)
from effortmap.prompts import get_refinement_prompt

logger = logging.getLogger(__name__)

# (system_prompt, user_prompt, *, timeout) -> raw response text; raises LLMError.
Transport = Callable[..., str]


class RefinementValidationError(Exception):
    """Raised when a refinement response breaks the contract."""

    def __init__(self, reason: str, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class RefinementState(StrEnum):
    ATTEMPT_1 = "attempt-1"
    ATTEMPT_2 = "attempt-2"
    FALLBACK = "fallback"
    DONE = "done"


_ON_INVALID: dict[RefinementState, RefinementState] = {
    RefinementState.ATTEMPT_1: RefinementState.ATTEMPT_2,
    RefinementState.ATTEMPT_2: RefinementState.FALLBACK,
}
_ATTEMPT_STATES = frozenset(_ON_INVALID)


# -- Validation --------------------------------------------------------------

_DIRECTIVE_RE = re.compile(r"(KEEP|MOVE|NEW):(.*)", re.DOTALL)


def find_duplicate_keys(text: str) -> list[str]:
    """Object keys that appear more than once within one object of *text*.

    ``json.loads`` keeps the last duplicate silently, so the raw key/value
    pairs of every object, nested ones included, are inspected instead.
    Text that does not parse has no duplicates to report.
    """
    duplicates: list[str] = []

    def _collect(pairs: list[tuple[str, object]]) -> dict[str, object]:
        seen: set[str] = set()
        for key, _value in pairs:
            if key in seen and key not in duplicates:
                duplicates.append(key)
            seen.add(key)
        return dict(pairs)

    try:
        json.loads(text, object_pairs_hook=_collect)
    except json.JSONDecodeError:
        # Reported as malformed-json by the parse that follows.
        return duplicates
    return duplicates


def validate_response(
    raw: str,
    candidates: list[Candidate],
    summaries: list[ClusterSummary],
) -> dict[str, Assignment]:
    """Check a raw response against the refinement contract.

    Raises:
        RefinementValidationError: On the first rule the response breaks.
    """
    text = strip_json_fences(raw)

    duplicates = find_duplicate_keys(text)
    if duplicates:
        raise RefinementValidationError("duplicate-keys", ", ".join(duplicates))

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RefinementValidationError("malformed-json", str(exc)) from exc
    if not isinstance(parsed, dict):
        raise RefinementValidationError("not-an-object", type(parsed).__name__)

    expected = {c.activity_id for c in candidates}
    missing = expected - parsed.keys()
    extra = parsed.keys() - expected
    if missing:
        raise RefinementValidationError("missing-ids", ", ".join(sorted(missing)))
    if extra:
        raise RefinementValidationError("unexpected-ids", ", ".join(sorted(extra)))

    known_clusters = {s.id for s in summaries}
    by_id = {c.activity_id: c for c in candidates}
    assignments: dict[str, Assignment] = {}

    for candidate in candidates:
        activity_id = candidate.activity_id
        value = parsed[activity_id]
        match = _DIRECTIVE_RE.fullmatch(value) if isinstance(value, str) else None
        if match is None:
            raise RefinementValidationError("bad-directive", f"{activity_id}={value!r}")
        action = AssignmentAction(match.group(1))
        target = match.group(2).strip()
        current = by_id[activity_id].current_cluster_id

        if action is AssignmentAction.KEEP:
            if target not in known_clusters or target != current:
                raise RefinementValidationError(
                    "invalid-keep", f"{activity_id}: {target!r} (current {current!r})"
                )
        elif action is AssignmentAction.MOVE:
            if target not in known_clusters or target == current:
                raise RefinementValidationError(
                    "invalid-move", f"{activity_id}: {target!r} (current {current!r})"
                )
        elif not target:
            raise RefinementValidationError("empty-new-name", activity_id)

        assignments[activity_id] = Assignment(
            activity_id=activity_id, action=action, target=target
        )

    return assignments


# -- Client ------------------------------------------------------------------


class RefinementClient:
    """Sends candidates to the reasoning service and returns validated assignments."""

    def __init__(
        self,
        transport: Transport | None = None,
        *,
        model: str | None = None,
        timeout: float = 30.0,
        backend: str = "api",
    ) -> None:
        if transport is None:
            transport = partial(call_claude, model=model, backend=backend, label="refinement")
        self._transport = transport
        self._timeout = timeout

    def refine(
        self,
        candidates: list[Candidate],
        summaries: list[ClusterSummary],
    ) -> RefinementResult:
        """Run the attempt-1 / attempt-2 / fallback exchange.

        Never raises for transport or contract failures; those end in
        ``used_fallback=True`` with no assignments.
        """
        if not candidates:
            return RefinementResult(skipped=True)

        system_prompt, user_prompt = get_refinement_prompt(candidates, summaries)
        state = RefinementState.ATTEMPT_1
        attempts = 0
        reasons: list[str] = []
        assignments: dict[str, Assignment] = {}

        while state in _ATTEMPT_STATES:
            attempts += 1
            try:
                raw = self._transport(system_prompt, user_prompt, timeout=self._timeout)
            except LLMError as exc:
                logger.warning("Refinement transport failed on %s: %s", state, exc)
                reasons.append(f"transport: {exc}")
                state = RefinementState.FALLBACK
                break

            try:
                assignments = validate_response(raw, candidates, summaries)
            except RefinementValidationError as exc:
                logger.warning("Refinement response rejected on %s: %s", state, exc)
                logger.debug("Rejected response: %.200s", raw)
                reasons.append(str(exc))
                state = _ON_INVALID[state]
                continue

            state = RefinementState.DONE

        if state is RefinementState.FALLBACK:
            logger.warning(
                "Refinement fell back to heuristic-only after %d attempt(s)", attempts
            )
            return RefinementResult(
                used_fallback=True, attempts=attempts, failure_reasons=reasons
            )

        logger.info(
            "Refinement assigned %d candidate(s) in %d attempt(s)", len(assignments), attempts
        )
        return RefinementResult(
            assignments=assignments, attempts=attempts, failure_reasons=reasons
        )
