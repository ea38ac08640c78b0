"""Question ordering.

Required and optional questions are presented strictly in template order.
"Required" only decides review readiness: a session may enter review once
every required question has a current answer, with optional questions left
pending at the pointer.
"""

from __future__ import annotations

from collections.abc import Collection

from ...core.models import Progress, Template

__all__ = ["QuestionSequencer"]


class QuestionSequencer:
    def next_index(self, template: Template, answered: Collection[str]) -> int | None:
        """Index of the first question in template order lacking an answer."""

        for index, question in enumerate(template.questions):
            if question.key not in answered:
                return index
        return None

    def ready_for_review(self, template: Template, answered: Collection[str]) -> bool:
        return all(question.key in answered for question in template.questions if question.required)

    def progress(self, template: Template, answered: Collection[str]) -> Progress:
        count = sum(1 for key in template.keys if key in answered)
        return Progress(answered=count, total=len(template))
