import pytest

from knowledge_qa.agent.composer import PromptComposer
from knowledge_qa.agent.prompts import SYNTHESIS_SYSTEM_PROMPT, SYSTEM_PROMPTS
from knowledge_qa.agent.providers import ExtractiveCompletionProvider
from knowledge_qa.obs.usage import GroundednessEvaluator
from knowledge_qa.types import Chunk, QuestionIntent, RetrievalMatch, SourceType, TimeRange


@pytest.mark.parametrize("intent", list(QuestionIntent))
def test_every_prompt_contains_groundedness_constraints(intent: QuestionIntent) -> None:
    prompt = SYSTEM_PROMPTS[intent]

    assert "Do not use outside knowledge" in prompt
    assert "Cite every factual statement" in prompt
    assert "[1]" in prompt


def test_synthesis_prompt_allows_connecting_fragments() -> None:
    assert "connect and compare information across fragments" in SYNTHESIS_SYSTEM_PROMPT


def test_groundedness_evaluator_high_for_cited_supported_answer() -> None:
    evaluator = GroundednessEvaluator(min_overlap=0.3)
    answer = "All employees must encrypt customer data at rest [1]."
    sources = ["Company policy states all employees must encrypt customer data at rest."]

    assert evaluator.score(answer, sources) >= 0.95


def test_groundedness_evaluator_low_for_unsupported_answer() -> None:
    evaluator = GroundednessEvaluator()
    answer = "The office cafeteria serves pizza on Fridays [1]."
    sources = ["Company policy states all employees must encrypt customer data at rest."]

    assert evaluator.score(answer, sources) == 0.0


def test_extractive_answers_cite_the_fragments_they_quote() -> None:
    matches = [
        RetrievalMatch(
            chunk=Chunk(
                text="Customer data is encrypted at rest with AES-256 and keys rotate yearly.",
                source_name="Security.pdf",
                source_type=SourceType.DOCUMENT,
                ordinal_index=0,
                total_chunks_in_source=1,
            ),
            score=0.9,
        ),
        RetrievalMatch(
            chunk=Chunk(
                text="We agreed that access reviews happen at the start of every quarter.",
                source_name="standup.mp3",
                source_type=SourceType.AUDIO,
                ordinal_index=0,
                total_chunks_in_source=1,
                provenance=TimeRange(start_time=60.0, end_time=95.0),
            ),
            score=0.8,
        ),
    ]
    prompt = PromptComposer().compose(QuestionIntent.FACTUAL, matches, "How is data protected?")

    result = ExtractiveCompletionProvider().complete(
        "offline", prompt.system_prompt, prompt.user_prompt, prompt.temperature, 256
    )

    lines = result.text.splitlines()
    assert lines[0].endswith("[1]")
    assert lines[1].startswith("We agreed that access reviews")
    assert lines[1].endswith("[2]")
    score = GroundednessEvaluator().score(result.text, [m.text for m in matches])
    assert score == 1.0
