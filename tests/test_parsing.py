from __future__ import annotations

import allure
import pytest

from voteverse_worker.queue.errors import ParseError, SchemaValidationError
from voteverse_worker.queue.models import VoteType
from voteverse_worker.queue.parsing import (
    parse_json_object,
    strip_code_fences,
    validate_generated_post,
    validate_vote_choice,
)

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Completion Parsing & Validation"),
]


@pytest.mark.parametrize(
    "text",
    [
        '```json\n{"choice": 1}\n```',
        '```\n{"choice": 1}\n```',
        '  {"choice": 1}  ',
        '```JSON {"choice": 1}```',
    ],
)
def test_strip_code_fences_leaves_bare_json(text: str) -> None:
    assert strip_code_fences(text) == '{"choice": 1}'


def test_parse_json_object_rejects_non_json_and_non_objects() -> None:
    with pytest.raises(ParseError, match="not valid JSON"):
        parse_json_object("I would pick option B")
    with pytest.raises(ParseError, match="JSON object"):
        parse_json_object("```json\n[1, 2]\n```")


def test_single_choice_must_be_in_range() -> None:
    with pytest.raises(SchemaValidationError, match="option index"):
        validate_vote_choice(
            {"choice": 5, "reason": "x"},
            option_count=3,
            vote_type=VoteType.SINGLE,
        )


@pytest.mark.parametrize("choice", [True, "1", 1.5, None, [1]])
def test_single_choice_must_be_an_integer(choice: object) -> None:
    with pytest.raises(SchemaValidationError):
        validate_vote_choice(
            {"choice": choice, "reason": "x"},
            option_count=3,
            vote_type=VoteType.SINGLE,
        )


def test_whole_number_float_choice_is_normalized_to_int() -> None:
    suggestion = validate_vote_choice(
        {"choice": 1.0, "reason": "x"},
        option_count=3,
        vote_type=VoteType.SINGLE,
    )

    assert suggestion.choice == 1
    assert isinstance(suggestion.choice, int)


def test_vote_choice_requires_choice_and_string_reason() -> None:
    with pytest.raises(SchemaValidationError, match="choice"):
        validate_vote_choice({"reason": "x"}, option_count=2, vote_type=VoteType.SINGLE)
    with pytest.raises(SchemaValidationError, match="reason"):
        validate_vote_choice({"choice": 0}, option_count=2, vote_type=VoteType.SINGLE)


def test_multiple_choice_accepts_distinct_in_range_indices() -> None:
    suggestion = validate_vote_choice(
        {"choice": [2, 0], "reason": "  both are fine  "},
        option_count=3,
        vote_type=VoteType.MULTIPLE,
    )

    assert suggestion.choice == [2, 0]
    assert suggestion.reason == "both are fine"


def test_multiple_choice_normalizes_whole_number_floats() -> None:
    suggestion = validate_vote_choice(
        {"choice": [2.0, 0], "reason": "x"},
        option_count=3,
        vote_type=VoteType.MULTIPLE,
    )

    assert suggestion.choice == [2, 0]
    assert all(isinstance(index, int) for index in suggestion.choice)


@pytest.mark.parametrize("choice", [[], [0, 0], [0, 0.0], [0, 3], [0.5], 1, [False]])
def test_multiple_choice_rejects_invalid_lists(choice: object) -> None:
    with pytest.raises(SchemaValidationError):
        validate_vote_choice(
            {"choice": choice, "reason": "x"},
            option_count=3,
            vote_type=VoteType.MULTIPLE,
        )


def test_generated_post_defaults_type_and_description() -> None:
    post = validate_generated_post(
        {"title": "  Best season?  ", "options": ["Spring", " Summer ", "Autumn", "Winter"]},
    )

    assert post.title == "Best season?"
    assert post.description == ""
    assert post.vote_type == VoteType.SINGLE
    assert post.options == ["Spring", "Summer", "Autumn", "Winter"]


def test_generated_post_requires_title_of_five_characters() -> None:
    with pytest.raises(SchemaValidationError, match="title"):
        validate_generated_post({"title": "Why?", "options": ["a", "b", "c"]})


def test_generated_post_requires_three_options() -> None:
    with pytest.raises(SchemaValidationError, match="at least 3"):
        validate_generated_post({"title": "Cats or dogs?", "options": ["Cats", "Dogs"]})


def test_generated_post_rejects_blank_options_and_unknown_type() -> None:
    with pytest.raises(SchemaValidationError, match="non-blank"):
        validate_generated_post({"title": "Cats or dogs?", "options": ["Cats", " ", "Dogs"]})
    with pytest.raises(SchemaValidationError, match="Unsupported vote type"):
        validate_generated_post(
            {"title": "Cats or dogs?", "type": "ranked", "options": ["a", "b", "c"]},
        )
