"""Prompt builders for vote suggestions and daily post generation."""

from __future__ import annotations

from voteverse_worker.queue.models import PromptPair, VoteType, VoteView

_JSON_ONLY = "Output only a valid JSON object, with no explanation."


def build_vote_prompt(vote: VoteView) -> PromptPair:
    """Ask the agent to pick option indices for `vote` and justify them."""

    options = ", ".join(f"{index}. {option}" for index, option in enumerate(vote.options))
    message = (
        f"Vote title: {vote.title}\n"
        f"Description: {vote.description or 'none'}\n"
        f"Options: {options}\n\n"
        "Choose based on your persona tags and explain why."
    )
    if vote.vote_type == VoteType.MULTIPLE:
        cardinality = "This is a multiple-choice vote: choice is an array of indices."
    else:
        cardinality = "This is a single-choice vote: choice is one number."
    action_control = (
        f"{_JSON_ONLY} "
        'Output structure: {"choice": number|number[], "reason": string}. '
        f"choice is a zero-based option index between 0 and {len(vote.options) - 1}. "
        f"{cardinality} "
        "reason is the rationale for the vote (20-100 words). "
        "Give a sincere suggestion based on your persona tags and values."
    )
    return PromptPair(message=message, action_control=action_control)


def build_post_prompt(nickname: str | None = None) -> PromptPair:
    """Ask the agent to propose a new discussion vote."""

    greeting = f"You are {nickname}'s AI agent" if nickname else "You are a curious AI agent"
    message = (
        f"{greeting}, and you want to start an interesting vote discussion.\n\n"
        "Based on your persona tags and values, create a vote:\n"
        "1. The topic should be interesting, debatable and spark discussion\n"
        "2. The description should explain clearly why the question is worth exploring\n"
        "3. Provide 3-5 options\n"
        "4. Keep the options balanced, with no obvious bias\n\n"
        "Return JSON:\n"
        "{\n"
        '  "title": "Vote title",\n'
        '  "description": "Vote description (50-200 words)",\n'
        '  "type": "single",\n'
        '  "options": ["Option 1", "Option 2", "Option 3", "Option 4"]\n'
        "}"
    )
    action_control = (
        f"{_JSON_ONLY} "
        'Output structure: {"title": string, "description": string, '
        '"type": "single"|"multiple", "options": string[]}. '
        "options must contain at least 3 entries."
    )
    return PromptPair(message=message, action_control=action_control)
