from __future__ import annotations

import re
from dataclasses import dataclass

from ...core import feature_flags
from ...core.models import AnswerType, Question

__all__ = ["AnswerValidator", "Verdict"]

_LENIENT_SCALE = re.compile(r"^\s*(-?\d{1,9})\s*(?:(?:/|out\s+of|of)\s*(\d{1,9}))?\s*\.?\s*$", re.IGNORECASE)
_STRICT_SCALE = re.compile(r"^\s*(-?\d{1,9})\s*$")


@dataclass(frozen=True)
class Verdict:
    accepted: bool
    # Normalised answer to persist when accepted; empty otherwise.
    content: str
    # Clarification prompt when rejected, acknowledgment when accepted.
    message: str


class AnswerValidator:
    """Structural checks only: presence, length and scale shape.

    Whether an answer is *true* or *helpful* is never judged here.
    """

    def __init__(self, *, max_chars: int = 5000) -> None:
        self.max_chars = max_chars

    def validate(self, question: Question, raw: str | None) -> Verdict:
        text = (raw or "").strip()
        if not text:
            return _clarify(_empty_prompt(question))
        if len(text) > self.max_chars:
            return _clarify(
                f"That answer is a little long. Could you summarise it in under {self.max_chars} characters?"
            )
        if question.answer_type is AnswerType.SCALE:
            return self._validate_scale(question, text)
        return Verdict(accepted=True, content=text, message="Thank you, that's helpful.")

    def _validate_scale(self, question: Question, text: str) -> Verdict:
        low, high = question.scale_min, question.scale_max
        pattern = _STRICT_SCALE if feature_flags.is_enabled(feature_flags.STRICT_SCALE) else _LENIENT_SCALE
        match = pattern.match(text)
        if match is None:
            return _clarify(f"Please answer with a whole number from {low} to {high}.")
        value = int(match.group(1))
        denominator = match.group(2) if match.lastindex and match.lastindex >= 2 else None
        if denominator is not None and int(denominator) != high:
            return _clarify(f"This question uses a {low} to {high} scale. Which number from {low} to {high} fits best?")
        if not low <= value <= high:
            return _clarify(f"{value} is outside the {low} to {high} scale. Please pick a number from {low} to {high}.")
        return Verdict(accepted=True, content=str(value), message=f"Thanks, noted {value} out of {high}.")


def _clarify(message: str) -> Verdict:
    return Verdict(accepted=False, content="", message=message)


def _empty_prompt(question: Question) -> str:
    if question.answer_type is AnswerType.SCALE:
        return f"I didn't catch a rating. Please answer with a number from {question.scale_min} to {question.scale_max}."
    return "I didn't catch an answer there. Could you share a few words on this question?"
