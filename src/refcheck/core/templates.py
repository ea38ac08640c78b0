from __future__ import annotations

import json
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from .models import AnswerType, Question, Template

__all__ = ["TemplateRegistry", "build_template"]


def build_template(template_id: str, name: str, questions: Iterable[Question]) -> Template:
    """Validate and freeze a template schema."""

    ordered = tuple(questions)
    if not template_id.strip():
        raise ValueError("template id cannot be empty")
    if not ordered:
        raise ValueError(f"template '{template_id}' has no questions")
    seen: set[str] = set()
    for question in ordered:
        if question.key in seen:
            raise ValueError(f"template '{template_id}' repeats question key '{question.key}'")
        seen.add(question.key)
        if question.answer_type is AnswerType.SCALE and question.scale_min >= question.scale_max:
            raise ValueError(f"question '{question.key}' has an empty scale range")
    return Template(template_id=template_id, name=name, questions=ordered)


class TemplateRegistry:
    """Holds the template schemas sessions are started against.

    Templates are authored elsewhere; once registered they are immutable and a
    template id can only be registered once.
    """

    def __init__(self, templates: Iterable[Template] = ()) -> None:
        self._templates: dict[str, Template] = {}
        self._lock = threading.Lock()
        for template in templates:
            self.register(template)

    @classmethod
    def from_file(cls, path: Path) -> TemplateRegistry:
        return cls(cls._load_resource(path))

    @staticmethod
    def _load_resource(path: Path) -> list[Template]:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if isinstance(data, Mapping):
            data = data.get("templates")
        if not isinstance(data, list):
            raise ValueError("Invalid template payload")
        return [_template_from_mapping(entry) for entry in data]

    def register(self, template: Template) -> Template:
        with self._lock:
            if template.template_id in self._templates:
                raise ValueError(f"template '{template.template_id}' already registered")
            self._templates[template.template_id] = template
        return template

    def get(self, template_id: str) -> Template:
        with self._lock:
            template = self._templates.get(template_id)
        if template is None:
            raise KeyError(f"template '{template_id}' not found")
        return template

    def __contains__(self, template_id: object) -> bool:
        with self._lock:
            return template_id in self._templates

    def ids(self) -> list[str]:
        with self._lock:
            return sorted(self._templates)


def _template_from_mapping(raw: Any) -> Template:
    if not isinstance(raw, Mapping):
        raise ValueError("Invalid template entry")
    template_id = str(raw.get("id") or raw.get("template_id") or "")
    questions = [Question.from_mapping(entry) for entry in raw.get("questions") or []]
    return build_template(template_id, str(raw.get("name") or template_id), questions)
