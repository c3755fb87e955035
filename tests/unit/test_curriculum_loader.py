"""Unit tests for the embedded curriculum database loader."""

import json

import pytest

from app.core.curriculum_loader import education_level_for_grade, get_subject_curriculum, load_curriculum_level


@pytest.mark.parametrize(
    "grade,level",
    [
        ("PP1", "pre-primary"),
        ("Grade 3", "lower-primary"),
        ("Grade 6", "upper-primary"),
        (" Grade 9 ", "junior-school"),
        ("Form 3", None),
    ],
)
def test_education_level_for_grade(grade, level):
    assert education_level_for_grade(grade) == level


def test_bundled_levels_load():
    for level in ("pre-primary", "lower-primary", "upper-primary", "junior-school"):
        assert load_curriculum_level(level), level


def test_subject_lookup():
    maths = get_subject_curriculum("lower-primary", "Mathematics")
    assert maths["strands"][0]["name"] == "Numbers"
    assert get_subject_curriculum("lower-primary", "Astronomy") is None


def test_missing_level_file_is_empty(tmp_path):
    assert load_curriculum_level("senior-school", tmp_path) == {}


def test_optional_keys_defaulted(tmp_path):
    (tmp_path / "pre-primary.json").write_text(
        json.dumps({"Art": {"subject": "Art", "level": "pre-primary", "strands": []}}), encoding="utf-8"
    )

    art = get_subject_curriculum("pre-primary", "Art", tmp_path)

    assert art["grades"] == []
    assert art["generalLearningOutcomes"] == []


def test_entry_without_strands_rejected(tmp_path):
    (tmp_path / "upper-primary.json").write_text(
        json.dumps({"Art": {"subject": "Art", "level": "upper-primary"}}), encoding="utf-8"
    )

    with pytest.raises(ValueError):
        load_curriculum_level("upper-primary", tmp_path)
