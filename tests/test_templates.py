from __future__ import annotations

import json
from pathlib import Path

import pytest

from refcheck.core.models import AnswerType, Question
from refcheck.core.templates import TemplateRegistry, build_template

BUNDLED = Path(__file__).resolve().parents[1] / "src" / "refcheck" / "data" / "templates.json"


def test_bundled_templates_load() -> None:
    registry = TemplateRegistry.from_file(BUNDLED)
    template = registry.get("standard-reference")

    assert "standard-reference" in registry
    assert len(template) == 8
    assert template.keys[0] == "relationship"
    rating = template.question_at(template.index_of("work_quality"))
    assert rating.answer_type is AnswerType.SCALE
    assert (rating.scale_min, rating.scale_max) == (1, 5)
    assert [q.key for q in template.questions if not q.required] == ["conflict_handling", "anything_else"]


def test_question_mapping_accepts_alternate_keys() -> None:
    question = Question.from_mapping({"id": "nps", "text": " How likely? ", "type": "SCALE", "scale_min": 0, "scale_max": 10})
    assert question.key == "nps"
    assert question.text == "How likely?"
    assert question.answer_type is AnswerType.SCALE
    assert question.scale_max == 10
    assert question.required is True

    with pytest.raises(ValueError):
        Question.from_mapping({"key": "x", "text": "y", "type": "multiple_choice"})
    with pytest.raises(ValueError):
        Question.from_mapping({"key": "", "text": "y"})


def test_build_template_rejects_bad_schemas() -> None:
    with pytest.raises(ValueError):
        build_template("", "Empty id", [Question(key="a", text="A?")])
    with pytest.raises(ValueError):
        build_template("none", "No questions", [])
    with pytest.raises(ValueError):
        build_template("dup", "Duplicate", [Question(key="a", text="A?"), Question(key="a", text="Again?")])
    with pytest.raises(ValueError):
        build_template(
            "scale",
            "Empty scale",
            [Question(key="r", text="Rate", answer_type=AnswerType.SCALE, scale_min=5, scale_max=5)],
        )


def test_registry_lookup_and_duplicates(tmp_path) -> None:
    template = build_template("t1", "One", [Question(key="a", text="A?")])
    registry = TemplateRegistry([template])

    assert registry.get("t1") is template
    assert registry.ids() == ["t1"]
    with pytest.raises(ValueError):
        registry.register(template)
    with pytest.raises(KeyError):
        registry.get("t2")
    with pytest.raises(KeyError):
        template.index_of("missing")

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"templates": "nope"}), encoding="utf-8")
    with pytest.raises(ValueError):
        TemplateRegistry.from_file(bad)


def test_required_flag_parses_strings_strictly() -> None:
    base = {"key": "extra", "text": "Anything else?"}
    assert Question.from_mapping({**base, "required": "false"}).required is False
    assert Question.from_mapping({**base, "required": " No "}).required is False
    assert Question.from_mapping({**base, "required": "true"}).required is True
    assert Question.from_mapping({**base, "required": False}).required is False
    assert Question.from_mapping(base).required is True

    with pytest.raises(ValueError):
        Question.from_mapping({**base, "required": "maybe"})
    with pytest.raises(ValueError):
        Question.from_mapping({**base, "required": None})
