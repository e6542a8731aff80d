from __future__ import annotations

import pytest

from skillcoach.core.qbank_parser import (
    BracedQuestionParser,
    LegacyQuestionParser,
    ParsedQuestion,
    build_parsed_question,
    detect_dialect,
    get_question_parser,
    parse_questions,
)
from skillcoach.utils.errors import InvalidEntry


def test_parse_single_braced_block() -> None:
    out = parse_questions("Q1: What is 2+2? [math,arithmetic]{easy} Ans: 4")
    assert out == [
        ParsedQuestion(
            question="Q1: What is 2+2?",
            tags=["math", "arithmetic"],
            difficulty="easy",
            answer="4",
        )
    ]
    assert out[0].as_tuple() == ("Q1: What is 2+2?", ["math", "arithmetic"], "easy", "4")


def test_parse_empty_and_untagged_text_yield_nothing() -> None:
    assert parse_questions("") == []
    assert parse_questions("   \n  ") == []
    assert parse_questions("Q1: What is 2+2? Ans: 4") == []


def test_multi_line_answer_runs_until_next_question_marker() -> None:
    text = (
        "Q1: What is 2+2? [math]{easy} Ans: 4\n"
        "Q2: Name a prime. [math, primes]{hard} Ans: 7\n"
        "because it has two divisors"
    )
    out = parse_questions(text)
    assert [p.question for p in out] == ["Q1: What is 2+2?", "Q2: Name a prime."]
    assert out[0].answer == "4"
    assert out[1].answer == "7\nbecause it has two divisors"
    assert out[1].tags == ["math", "primes"]
    assert out[1].difficulty == "hard"


def test_block_boundary_without_question_marker() -> None:
    text = "What is A? [t] Ans: a\nWhat is B? [t] Ans: b"
    out = parse_questions(text)
    assert [(p.question, p.answer) for p in out] == [("What is A?", "a"), ("What is B?", "b")]


def test_multi_line_question_text() -> None:
    out = parse_questions("Q1: Consider\nthe following [lists] Ans: x")
    assert out[0].question == "Q1: Consider\nthe following"


def test_legacy_dialect_defaults_to_medium() -> None:
    out = parse_questions("What is X? [a, b] Ans: y")
    assert out == [ParsedQuestion(question="What is X?", tags=["a", "b"], difficulty="medium", answer="y")]


def test_tags_are_trimmed_and_deduplicated() -> None:
    out = parse_questions("Q1: A [ a , b, a, ] Ans: x")
    assert out[0].tags == ["a", "b"]


def test_difficulty_is_case_insensitive_and_empty_means_medium() -> None:
    out = parse_questions("Q1: A [t]{ HARD } Ans: x\nQ2: B [t]{} Ans: y")
    assert [p.difficulty for p in out] == ["hard", "medium"]


def test_unknown_difficulty_drops_only_that_block() -> None:
    out = parse_questions("Q1: A [t]{extreme} Ans: x\nQ2: B [t]{easy} Ans: y")
    assert len(out) == 1
    assert out[0].question == "Q2: B"


def test_block_with_empty_question_is_dropped() -> None:
    assert parse_questions("[t] Ans: x") == []


def test_echoed_answer_marker_is_kept() -> None:
    out = parse_questions("Q1: A [t] Ans: Ans: x")
    assert out[0].answer == "Ans: x"


def test_detect_dialect() -> None:
    assert detect_dialect("Q1: A [t]{easy} Ans: x") == "braced"
    assert detect_dialect("Q1: A [t] Ans: x") == "legacy"
    assert detect_dialect("") == "legacy"


def test_get_question_parser_by_name() -> None:
    assert isinstance(get_question_parser("legacy"), LegacyQuestionParser)
    assert isinstance(get_question_parser("BRACED"), BracedQuestionParser)
    assert isinstance(get_question_parser("auto", "Q1: A [t]{easy} Ans: x"), BracedQuestionParser)
    with pytest.raises(ValueError):
        get_question_parser("yaml")


def test_build_parsed_question_rejects_non_text() -> None:
    with pytest.raises(InvalidEntry):
        build_parsed_question(None, "t", None, "x")
    with pytest.raises(InvalidEntry):
        build_parsed_question("q", "t", None, "   ")
    with pytest.raises(InvalidEntry):
        build_parsed_question("q", "t", "impossible", "x")
    p = build_parsed_question(" q ", ["a", " a", "b"], None, " x ")
    assert p == ParsedQuestion(question="q", tags=["a", "b"], difficulty="medium", answer="x")


@pytest.mark.parametrize("dialect", ["auto", "braced", "legacy"])
def test_empty_answer_block_does_not_swallow_next_block(dialect) -> None:
    text = "Q1: What is A? [t]{easy} Ans:\nQ2: What is B? [t]{hard} Ans: b"
    if dialect == "legacy":
        text = "Q1: What is A? [t] Ans:\nQ2: What is B? [t] Ans: b"
    out = parse_questions(text, dialect=dialect)
    assert [(p.question, p.answer) for p in out] == [("Q2: What is B?", "b")]


def test_answer_may_start_on_the_line_after_the_marker() -> None:
    out = parse_questions("Q1: A [t] Ans:\n  x\nQ2: B [t] Ans:\ny")
    assert [(p.question, p.answer) for p in out] == [("Q1: A", "x"), ("Q2: B", "y")]
