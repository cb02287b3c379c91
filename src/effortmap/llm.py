"""Shared LLM calling utilities.

Two backends:
1. Anthropic API (default — uses ANTHROPIC_API_KEY)
2. Subprocess ``claude -p`` (``backend="cli"`` or EFFORTMAP_USE_CLI=1)

Every failure, including a timeout, surfaces as :class:`LLMError`.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess

import anthropic

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Base error for LLM calls."""


# ---------------------------------------------------------------------------
# Model name mapping
# ---------------------------------------------------------------------------

_MODEL_MAP: dict[str, str] = {
    "sonnet": "claude-sonnet-4-5-20250929",
    "haiku": "claude-haiku-4-5-20251001",
}

# Structured short-output task: the small model is enough.
_DEFAULT_MODEL = "claude-haiku-4-5-20251001"


def _resolve_model(model: str | None) -> str:
    """Resolve a short model name to an API model ID."""
    if model is None:
        return _DEFAULT_MODEL
    return _MODEL_MAP.get(model, model)


# ---------------------------------------------------------------------------
# Internal: Anthropic API
# ---------------------------------------------------------------------------


def _call_anthropic_api(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    timeout: float = 30.0,
    label: str = "refinement",
) -> str:
    """Call Claude via the Anthropic API."""
    api_key = os.environ.get("ANTHROPIC_API_KEY", "").strip()
    if not api_key:
        raise LLMError("ANTHROPIC_API_KEY not set")

    # Retries are the caller's decision.
    client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
    resolved_model = _resolve_model(model)

    logger.debug("Calling Anthropic API model=%s (%s)", resolved_model, label)

    kwargs: dict[str, object] = {
        "model": resolved_model,
        "max_tokens": 4096,
        "messages": [{"role": "user", "content": user_prompt}],
    }
    if system_prompt.strip():
        kwargs["system"] = system_prompt

    try:
        response = client.messages.create(**kwargs)  # type: ignore[arg-type]
    except anthropic.APITimeoutError as exc:
        raise LLMError(f"Anthropic API timed out after {timeout}s (label={label})") from exc
    except anthropic.APIError as exc:
        raise LLMError(f"Anthropic API failed (label={label}): {exc}") from exc

    text_parts: list[str] = []
    for block in response.content:
        if block.type == "text":
            text_parts.append(block.text)

    result = "".join(text_parts).strip()
    if not result:
        raise LLMError(f"Anthropic API returned empty response (label={label})")
    return result


# ---------------------------------------------------------------------------
# Internal: subprocess
# ---------------------------------------------------------------------------


def _call_subprocess(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    timeout: float = 30.0,
    label: str = "refinement",
) -> str:
    """Call Claude via subprocess (``claude -p``)."""
    cmd = ["claude", "-p"]
    if model:
        cmd.extend(["--model", model])

    full_prompt = f"{system_prompt}\n\n{user_prompt}"

    # Filter CLAUDECODE env var to prevent recursive Claude invocations
    env = {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}

    logger.debug("Calling Claude CLI subprocess (%s)", label)

    try:
        result = subprocess.run(
            cmd,
            input=full_prompt,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except FileNotFoundError as exc:
        raise LLMError(
            f"Claude CLI not found — is 'claude' on the PATH? (label={label})"
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise LLMError(f"Claude CLI timed out after {timeout}s (label={label})") from exc
    except OSError as exc:
        raise LLMError(f"Failed to run Claude CLI (label={label}): {exc}") from exc

    if result.returncode != 0:
        raise LLMError(
            f"Claude CLI failed (exit {result.returncode}, label={label}): {result.stderr[:500]}"
        )

    return result.stdout.strip()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def call_claude(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str | None = None,
    timeout: float = 30.0,
    backend: str = "api",
    label: str = "refinement",
) -> str:
    """Call Claude and return the response text.

    Args:
        system_prompt: System prompt for the LLM.
        user_prompt: User/content prompt.
        model: Optional model override (e.g. "sonnet", "haiku").
        timeout: Deadline in seconds for the whole call.
        backend: ``"api"`` or ``"cli"``.
        label: Label for logging.

    Returns:
        The LLM response text (stripped).

    Raises:
        LLMError: On any failure.
    """
    use_cli = backend == "cli" or os.environ.get("EFFORTMAP_USE_CLI", "").strip() == "1"
    if use_cli:
        return _call_subprocess(
            system_prompt, user_prompt, model=model, timeout=timeout, label=label
        )
    return _call_anthropic_api(
        system_prompt, user_prompt, model=model, timeout=timeout, label=label
    )


# ---------------------------------------------------------------------------
# JSON output helpers
# ---------------------------------------------------------------------------

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


def strip_json_fences(text: str) -> str:
    """Strip markdown code fences from LLM JSON output.

    Handles Claude's tendency to wrap JSON in ```json ... ``` blocks.
    """
    text = text.strip()
    match = _JSON_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # Raw JSON after preamble: whichever delimiter appears first wins
    candidates: list[tuple[int, str, str]] = []
    for start_char, end_char in (("{", "}"), ("[", "]")):
        pos = text.find(start_char)
        if pos != -1:
            candidates.append((pos, start_char, end_char))
    candidates.sort()

    for start, _start_char, end_char in candidates:
        end = text.rfind(end_char)
        if end > start:
            return text[start : end + 1]

    return text
