import pytest

from knowledge_qa.agent.intent import classify, is_meta_question, is_synthesis_task
from knowledge_qa.types import QuestionIntent


@pytest.mark.parametrize(
    ("question", "expected"),
    [
        ("Where does this information come from?", QuestionIntent.META_SOURCE),
        ("Which document mentions the refund window?", QuestionIntent.META_SOURCE),
        ("Summarize the onboarding guide", QuestionIntent.SYNTHESIS),
        ("Tell me about the Q3 roadmap", QuestionIntent.SYNTHESIS),
        ("What is this document?", QuestionIntent.SYNTHESIS),
        ("Give me an OVERVIEW of the call", QuestionIntent.SYNTHESIS),
        ("How many vacation days do new hires get?", QuestionIntent.FACTUAL),
    ],
)
def test_classify(question: str, expected: QuestionIntent) -> None:
    assert classify(question) is expected


def test_meta_source_wins_over_synthesis() -> None:
    question = "Summarize where this claim comes from"

    assert is_meta_question(question)
    assert is_synthesis_task(question)
    assert classify(question) is QuestionIntent.META_SOURCE


def test_classification_is_deterministic() -> None:
    question = "Describe the retention policy"

    assert {classify(question) for _ in range(5)} == {QuestionIntent.SYNTHESIS}
