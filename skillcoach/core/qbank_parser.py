"""
Question-bank text grammar.

A document is a sequence of blocks:

    <question text, may span lines> [tag1, tag2]{difficulty} Ans: <answer, may span lines>

Two dialects are accepted and both are in use by existing uploads:
- ``legacy``: no difficulty delimiter, every entry is ``medium``.
- ``braced``: an optional ``{easy|medium|hard}`` right after the tag list.

An answer runs until the next block start: one or more line breaks followed by a
``Q<n>:`` marker or by a line carrying its own ``[tags] Ans:`` pattern.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type

from skillcoach.models.schemas import Difficulty, clean_tags
from skillcoach.utils.errors import InvalidEntry
from skillcoach.utils.observability import log_event

logger = logging.getLogger(__name__)

ANSWER_MARKER = "Ans:"

_VALID_DIFFICULTIES = {d.value for d in Difficulty}

_TAG_LIST = r"\[[^\]\n]*\]"
_DIFFICULTY_TOKEN = r"\{[^}\n]*\}"

# Braced dialect marker: "]{...} Ans:" anywhere in the text.
_BRACED_MARKER = re.compile(r"\][ \t]*" + _DIFFICULTY_TOKEN + r"\s*Ans:")


def _next_block_lookahead(with_difficulty: bool) -> str:
    difficulty = r"(?:\s*" + _DIFFICULTY_TOKEN + r")?" if with_difficulty else ""
    return (
        r"(?=\n+(?:[ \t]*Q\d+\s*:|[^\n\[]*"
        + _TAG_LIST
        + difficulty
        + r"\s*Ans:)|\s*\Z)"
    )


def _compile_block_re(with_difficulty: bool) -> "re.Pattern[str]":
    difficulty = (
        r"\s*(?:\{(?P<difficulty>[^}]*)\})?" if with_difficulty else ""
    )
    return re.compile(
        r"(?P<question>[^\[]*?)"
        r"\[(?P<tags>[^\]]*)\]"
        + difficulty
        + r"\s*Ans:[ \t]*"
        r"(?P<answer>.*?)"
        + _next_block_lookahead(with_difficulty),
        re.DOTALL,
    )


@dataclass(frozen=True)
class ParsedQuestion:
    question: str
    tags: List[str] = field(default_factory=list)
    difficulty: str = Difficulty.MEDIUM.value
    answer: str = ""

    def as_tuple(self) -> Tuple[str, List[str], str, str]:
        return (self.question, list(self.tags), self.difficulty, self.answer)


def build_parsed_question(
    question: Any, raw_tags: Any, difficulty: Any, answer: Any
) -> ParsedQuestion:
    """
    Validate and normalize one block's fields.
    Raises InvalidEntry when the block must be dropped.
    """
    if not isinstance(question, str) or not question.strip():
        raise InvalidEntry("question is empty or not text")
    if not isinstance(answer, str) or not answer.strip():
        raise InvalidEntry("answer is empty or not text")

    if isinstance(raw_tags, str):
        tags = clean_tags(raw_tags.split(","))
    elif isinstance(raw_tags, (list, tuple)):
        tags = clean_tags(list(raw_tags))
    else:
        tags = []

    level = str(difficulty or "").strip().lower() or Difficulty.MEDIUM.value
    if level not in _VALID_DIFFICULTIES:
        raise InvalidEntry(f"unknown difficulty: {level!r}")

    # The opening "Ans:" marker is consumed by the grammar; an echoed one stays.
    return ParsedQuestion(
        question=question.strip(),
        tags=tags,
        difficulty=level,
        answer=answer.strip(),
    )


def detect_dialect(text: str) -> str:
    return "braced" if _BRACED_MARKER.search(text or "") else "legacy"


class QuestionParser:
    """Base parser; subclasses pin the dialect's block pattern."""

    dialect: str = ""
    block_re: "re.Pattern[str]"

    def _difficulty(self, match: "re.Match[str]") -> Optional[str]:
        return None

    def parse(self, text: str) -> List[ParsedQuestion]:
        if not isinstance(text, str) or not text.strip():
            log_event(logger, "qbank_parse_empty_text", level="warning", dialect=self.dialect)
            return []

        out: List[ParsedQuestion] = []
        dropped = 0
        for idx, m in enumerate(self.block_re.finditer(text)):
            try:
                out.append(
                    build_parsed_question(
                        m.group("question"),
                        m.group("tags"),
                        self._difficulty(m),
                        m.group("answer"),
                    )
                )
            except InvalidEntry as e:
                dropped += 1
                log_event(
                    logger,
                    "qbank_block_dropped",
                    level="warning",
                    dialect=self.dialect,
                    block_index=idx,
                    reason=str(e),
                    question_preview=(m.group("question") or "").strip()[:80],
                )

        if not out:
            log_event(
                logger,
                "qbank_no_blocks_matched",
                level="warning",
                dialect=self.dialect,
                text_chars=len(text),
                dropped=dropped,
            )
        else:
            log_event(
                logger,
                "qbank_parsed",
                dialect=self.dialect,
                blocks=len(out),
                dropped=dropped,
            )
        return out


class LegacyQuestionParser(QuestionParser):
    dialect = "legacy"
    block_re = _compile_block_re(with_difficulty=False)


class BracedQuestionParser(QuestionParser):
    dialect = "braced"
    block_re = _compile_block_re(with_difficulty=True)

    def _difficulty(self, match: "re.Match[str]") -> Optional[str]:
        return match.group("difficulty")


_PARSERS: Dict[str, Type[QuestionParser]] = {
    LegacyQuestionParser.dialect: LegacyQuestionParser,
    BracedQuestionParser.dialect: BracedQuestionParser,
}


def get_question_parser(dialect: str = "auto", text: str = "") -> QuestionParser:
    """
    Resolve a parser by name. `auto` checks `text` for the braced difficulty
    delimiter and falls back to the legacy grammar.
    """
    d = str(dialect or "auto").strip().lower()
    if d == "auto":
        d = detect_dialect(text)
    cls = _PARSERS.get(d)
    if cls is None:
        raise ValueError(f"unknown question parser dialect: {dialect!r}")
    return cls()


def parse_questions(text: str, *, dialect: str = "auto") -> List[ParsedQuestion]:
    return get_question_parser(dialect, text).parse(text)
