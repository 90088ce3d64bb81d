from __future__ import annotations

import threading
from pathlib import Path

import fitz
import pytest

from knowledge_qa.agent.providers import (
    CompletionProvider,
    ExtractiveCompletionProvider,
    ProviderBundle,
    ProviderFactory,
)
from knowledge_qa.config import Settings
from knowledge_qa.context import AppContext, StaticTokenAuthenticator, build_context
from knowledge_qa.credits.ledger import InMemoryCreditLedger
from knowledge_qa.credits.teams import InMemoryTeamDirectory
from knowledge_qa.ingest.embedder import HashingEmbedder
from knowledge_qa.retrieval.vector_store import InMemoryVectorCollection
from knowledge_qa.types import CompletionResult


class CountingEmbedder(HashingEmbedder):
    def __init__(self, fail_on: str | None = None) -> None:
        super().__init__(dimension=256)
        self.calls = 0
        self.fail_on = fail_on
        self._lock = threading.Lock()

    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.calls += 1
        if self.fail_on is not None and self.fail_on in text:
            raise RuntimeError("embedding service unavailable")
        return super().embed(text)


class CountingCompleter(CompletionProvider):
    name = "counting"

    def __init__(self) -> None:
        self.calls = 0
        self.last_system_prompt = ""
        self.last_user_prompt = ""
        self.last_temperature = 0.0
        self._delegate = ExtractiveCompletionProvider()

    def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> CompletionResult:
        self.calls += 1
        self.last_system_prompt = system_prompt
        self.last_user_prompt = user_prompt
        self.last_temperature = temperature
        return self._delegate.complete(
            model, system_prompt, user_prompt, temperature, max_tokens
        )


class CountingProviderFactory(ProviderFactory):
    def __init__(self, embedder: CountingEmbedder, completer: CountingCompleter) -> None:
        super().__init__("offline", embedding_model="hashing-256")
        self.embedder = embedder
        self.completer = completer
        self.keys: list[str] = []

    def build(self, resolved_key: str) -> ProviderBundle:
        self.keys.append(resolved_key)
        return ProviderBundle(embedder=self.embedder, completer=self.completer)


@pytest.fixture
def make_pdf(tmp_path):
    """Writes a small PDF with one text block per page and returns its path."""

    def _make(name: str, pages: list[str]) -> Path:
        path = tmp_path / name
        doc = fitz.open()
        for text in pages:
            page = doc.new_page()
            page.insert_textbox(fitz.Rect(72, 72, 540, 720), text, fontsize=11)
        doc.save(str(path))
        doc.close()
        return path

    return _make


@pytest.fixture
def embedder() -> CountingEmbedder:
    return CountingEmbedder()


@pytest.fixture
def completer() -> CountingCompleter:
    return CountingCompleter()


@pytest.fixture
def providers(embedder: CountingEmbedder, completer: CountingCompleter) -> CountingProviderFactory:
    return CountingProviderFactory(embedder, completer)


@pytest.fixture
def ledger() -> InMemoryCreditLedger:
    return InMemoryCreditLedger({"alice": 50, "bob": 2})


@pytest.fixture
def teams() -> InMemoryTeamDirectory:
    return InMemoryTeamDirectory()


@pytest.fixture
def app_context(
    providers: CountingProviderFactory,
    ledger: InMemoryCreditLedger,
    teams: InMemoryTeamDirectory,
) -> AppContext:
    settings = Settings(
        _env_file=None,
        openai_api_key="sk-server",
        llm_provider="openai",
        chat_model="gpt-4o-mini",
    )
    return build_context(
        settings,
        collection=InMemoryVectorCollection(),
        ledger=ledger,
        team_directory=teams,
        providers=providers,
        authenticator=StaticTokenAuthenticator({"token-alice": "alice", "token-bob": "bob"}),
    )
