"""Test doubles and canned model output shared across the suite."""

import httpx


SCHEME_PAYLOAD = {
    "wk": "1",
    "lsn": "1",
    "strand": "FOUNDATIONS OF PRE-TECHNICAL STUDIES",
    "subStrand": "Safety on Raised Platforms",
    "specificLearningOutcomes": "Identify types of raised platforms; Explore the use of ladders and trestles",
    "keyInquiryQuestions": "Why observe safety on raised platforms?",
    "learningExperiences": "Walk around the school to explore raised platforms",
    "learningResources": "Ladders, trestles, pictures",
    "assessmentMethods": "Oral questioning; Observation",
    "refl": "Teacher to reflect on lesson effectiveness",
}

PLAN_PAYLOAD = {
    "school": "Sunshine Secondary School",
    "level": "Grade 9",
    "learningArea": "Pre-Technical Studies",
    "date": "To be set by teacher",
    "time": "40 minutes",
    "roll": "To be set by teacher",
    "strand": "Some other strand",
    "subStrand": "Some other sub-strand",
    "specificLearningOutcomes": ["Identify ladders and trestles"],
    "keyInquiryQuestions": ["How do we stay safe on a ladder?"],
    "learningResources": ["Ladder", "Video clip"],
    "organisationOfLearning": {
        "introduction": "Show a picture of a ladder.",
        "lessonDevelopment": "1. Discuss types of ladders\n2. Demonstrate safe setup",
        "conclusion": "Recap the safety rules.",
    },
    "extendedActivities": ["Sketch a ladder and label its parts"],
    "teacherSelfEvaluation": "To be completed by the teacher after lesson delivery.",
}


class ScriptedClient:
    """Stands in for CompletionClient; replays responses and records every call."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def complete(self, prompt, **kwargs):
        self.calls.append({"prompt": prompt, **kwargs})
        item = self.responses.pop(0)
        if callable(item):
            item = item()
        if isinstance(item, Exception):
            raise item
        return item


def chat_response(content, status_code=200):
    return httpx.Response(status_code, json={"choices": [{"message": {"role": "assistant", "content": content}}]})
