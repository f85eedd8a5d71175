"""Parsing and schema validation of completion text."""

from __future__ import annotations

import json
import re
from typing import Any

from voteverse_worker.queue.errors import ParseError, SchemaValidationError
from voteverse_worker.queue.models import GeneratedPost, VoteSuggestion, VoteType

MIN_POST_TITLE_CHARS = 5
MIN_POST_OPTIONS = 3

_FENCE_MARKER = re.compile(r"```(?:json)?[ \t]*\n?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove markdown code-fence markers and surrounding whitespace."""

    return _FENCE_MARKER.sub("", text).strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse fence-stripped completion text into a JSON object."""

    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as error:
        raise ParseError(f"Completion is not valid JSON: {error}") from error
    if not isinstance(parsed, dict):
        raise ParseError("Completion must be a JSON object.")
    return parsed


def validate_vote_choice(
    payload: dict[str, Any],
    *,
    option_count: int,
    vote_type: VoteType,
) -> VoteSuggestion:
    """Check `{choice, reason}` against the vote's option range and cardinality."""

    if "choice" not in payload:
        raise SchemaValidationError("Missing required field: choice")
    reason = payload.get("reason")
    if not isinstance(reason, str):
        raise SchemaValidationError("Field reason must be a string")

    choice = payload["choice"]
    if vote_type == VoteType.SINGLE:
        index = _as_index(choice, option_count)
        if index is None:
            raise SchemaValidationError(
                f"choice must be an option index in [0, {option_count - 1}], got {choice!r}",
            )
        return VoteSuggestion(choice=index, reason=reason.strip())

    if not isinstance(choice, list) or not choice:
        raise SchemaValidationError(
            f"choice must be a non-empty list of option indices, got {choice!r}",
        )
    indices: list[int] = []
    for item in choice:
        index = _as_index(item, option_count)
        if index is None:
            raise SchemaValidationError(
                f"choice indices must be in [0, {option_count - 1}], got {choice!r}",
            )
        indices.append(index)
    if len(set(indices)) != len(indices):
        raise SchemaValidationError(f"choice indices must be distinct, got {choice!r}")
    return VoteSuggestion(choice=indices, reason=reason.strip())


def validate_generated_post(payload: dict[str, Any]) -> GeneratedPost:
    """Check `{title, description, type, options}` of an AI-generated vote."""

    title = payload.get("title")
    if not isinstance(title, str) or len(title.strip()) < MIN_POST_TITLE_CHARS:
        raise SchemaValidationError(
            f"title must be a string of at least {MIN_POST_TITLE_CHARS} characters",
        )

    options = payload.get("options")
    if not isinstance(options, list):
        raise SchemaValidationError("options must be a list")
    cleaned_options = [item.strip() for item in options if isinstance(item, str) and item.strip()]
    if len(cleaned_options) != len(options):
        raise SchemaValidationError("options must be non-blank strings")
    if len(cleaned_options) < MIN_POST_OPTIONS:
        raise SchemaValidationError(
            f"options must contain at least {MIN_POST_OPTIONS} entries, got {len(options)}",
        )

    raw_type = payload.get("type", VoteType.SINGLE.value)
    try:
        vote_type = VoteType(raw_type)
    except ValueError as error:
        raise SchemaValidationError(f"Unsupported vote type: {raw_type!r}") from error

    description = payload.get("description", "")
    if description is None:
        description = ""
    if not isinstance(description, str):
        raise SchemaValidationError("description must be a string")

    return GeneratedPost(
        title=title.strip(),
        description=description.strip(),
        vote_type=vote_type,
        options=cleaned_options,
    )


def _as_index(value: object, option_count: int) -> int | None:
    """Whole numbers only; `1.0` counts as `1`, bools never do."""

    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or not 0 <= value < option_count:
        return None
    return value
