import json
import os
from typing import Optional

from app.core.config import CurriculumConfig

_cached_levels = {}

# Fixed grade -> education level table
GRADE_LEVELS = {
    "PP1": "pre-primary",
    "PP2": "pre-primary",
    "Grade 1": "lower-primary",
    "Grade 2": "lower-primary",
    "Grade 3": "lower-primary",
    "Grade 4": "upper-primary",
    "Grade 5": "upper-primary",
    "Grade 6": "upper-primary",
    "Grade 7": "junior-school",
    "Grade 8": "junior-school",
    "Grade 9": "junior-school",
}


def education_level_for_grade(grade: str) -> Optional[str]:
    """Map a grade label such as "Grade 8" to its education level, or None if unknown."""
    return GRADE_LEVELS.get(grade.strip())


def load_curriculum_level(level: str, data_dir=None) -> dict:
    """
    Load the embedded curriculum for one education level from JSON.

    - Accepts the level name (e.g. "junior-school").
    - Caches results in `_cached_levels` so each file is read once per process.
    - Expects the JSON file to map subject name -> subject curriculum with
      subject, level, grades, generalLearningOutcomes and strands.
    - Fills in empty defaults for optional keys so lookups never break.
    - Returns an empty mapping when the level has no file.
    """
    directory = str(data_dir or CurriculumConfig().data_dir)
    key = (directory, level.lower())
    if key in _cached_levels:
        return _cached_levels[key]

    file_path = os.path.join(directory, f"{level.lower()}.json")
    if not os.path.exists(file_path):
        _cached_levels[key] = {}
        return _cached_levels[key]

    with open(file_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    for subject, curriculum in data.items():
        for k in ["subject", "level", "strands"]:
            if k not in curriculum:
                raise ValueError(f"Curriculum entry '{subject}' missing key: {k}")
        curriculum.setdefault("grades", [])
        curriculum.setdefault("generalLearningOutcomes", [])

    _cached_levels[key] = data
    return data


def get_subject_curriculum(level: str, subject: str, data_dir=None) -> Optional[dict]:
    return load_curriculum_level(level, data_dir).get(subject)
