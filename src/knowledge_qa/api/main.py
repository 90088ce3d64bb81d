"""FastAPI entrypoint for ingest/ask/credits/usage endpoints."""

from __future__ import annotations

import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Any, Literal

from fastapi import FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from knowledge_qa.context import AppContext, build_context
from knowledge_qa.errors import (
    AuthRequiredError,
    ConfigurationError,
    EmptyContentError,
    InsufficientCreditsError,
    KnowledgeBaseError,
    UpstreamProviderError,
    ValidationError,
)
from knowledge_qa.ingest.parser import extract_video_id, parse_transcript_segments
from knowledge_qa.obs.logging import setup_logger
from knowledge_qa.retrieval.retriever import RetrievalFilters
from knowledge_qa.types import IngestResult, KeySource, ParsedSource, SourceType

_STATUS_BY_ERROR: list[tuple[type[KnowledgeBaseError], int]] = [
    (ValidationError, 400),
    (EmptyContentError, 400),
    (AuthRequiredError, 401),
    (InsufficientCreditsError, 402),
    (ConfigurationError, 503),
    (UpstreamProviderError, 502),
]


class DocumentIngestRequest(BaseModel):
    source_name: str = Field(min_length=1)
    pages: list[str] = Field(default_factory=list)
    text: str | None = None
    document_id: str | None = None
    api_key: str | None = None


class WebIngestRequest(BaseModel):
    url: str = Field(min_length=1)
    html: str | None = None
    text: str | None = None
    title: str | None = None
    document_id: str | None = None
    api_key: str | None = None


class TranscriptIngestRequest(BaseModel):
    segments: list[dict[str, Any]] = Field(min_length=1)
    source_type: Literal["audio", "video"] = "video"
    source_name: str | None = None
    url: str | None = None
    document_id: str | None = None
    api_key: str | None = None


class ImageIngestRequest(BaseModel):
    source_name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    extracted_text: bool = False
    document_id: str | None = None
    api_key: str | None = None


class AskRequest(BaseModel):
    question: str = Field(min_length=1)
    sources: list[str] = Field(default_factory=list)
    document_ids: list[str] = Field(default_factory=list)
    model: str | None = None
    api_key: str | None = None


def _ingest_payload(result: IngestResult) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "source": result.source_name,
        "sourceType": result.source_type.value,
        "chunks": result.chunks_indexed,
        "mode": result.mode.value,
    }
    if result.document_id is not None:
        payload["documentId"] = result.document_id
    if result.mode is KeySource.CREDITS:
        payload["credits"] = {
            "used": result.credits_used or 0,
            "remaining": result.credits_remaining,
        }
    if result.team_name is not None:
        payload["teamName"] = result.team_name
    return payload


def _error_response(exc: KnowledgeBaseError) -> JSONResponse:
    status = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        500,
    )
    body: dict[str, Any] = {"detail": str(exc)}
    if isinstance(exc, InsufficientCreditsError):
        body["creditsNeeded"] = exc.needed
        body["currentBalance"] = exc.available
    return JSONResponse(status_code=status, content=body)


def create_app(context: AppContext | None = None) -> FastAPI:
    ctx = context or build_context()
    app = FastAPI(title="Knowledge QA", version="0.1.0")
    app.state.context = ctx

    @app.exception_handler(KnowledgeBaseError)
    async def knowledge_base_error(_: Request, exc: KnowledgeBaseError) -> JSONResponse:
        return _error_response(exc)

    def caller(authorization: str | None) -> str | None:
        return ctx.authenticator.authenticate(authorization)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "provider": ctx.providers.provider,
            "server_key_configured": bool(ctx.resolver.server_key),
            "usage_records": len(ctx.usage_store.list_recent(limit=10_000)),
        }

    @app.post("/ingest/document")
    def ingest_document(
        request: DocumentIngestRequest, authorization: str | None = Header(default=None)
    ) -> dict[str, Any]:
        parsed = ParsedSource(
            source_name=request.source_name,
            source_type=SourceType.DOCUMENT,
            text=request.text or "",
            pages=list(request.pages),
        )
        result = ctx.pipeline.ingest_document(
            parsed,
            user_id=caller(authorization),
            byok_key=request.api_key,
            document_id=request.document_id,
        )
        return _ingest_payload(result)

    @app.post("/ingest/file")
    def ingest_file(
        file: UploadFile = File(...),
        transcript_type: Literal["audio", "video"] = Form("video"),
        source_name: str | None = Form(None),
        document_id: str | None = Form(None),
        api_key: str | None = Form(None),
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        filename = Path(file.filename or "").name
        if not filename:
            raise ValidationError("Uploaded file needs a file name")
        with tempfile.TemporaryDirectory(prefix="knowledge-qa-") as workdir:
            path = Path(workdir) / filename
            path.write_bytes(file.file.read())
            result = ctx.pipeline.ingest_path(
                path,
                user_id=caller(authorization),
                byok_key=api_key,
                document_id=document_id,
                source_name=source_name,
                transcript_type=SourceType(transcript_type),
            )
        return _ingest_payload(result)

    @app.post("/ingest/web")
    def ingest_web(
        request: WebIngestRequest, authorization: str | None = Header(default=None)
    ) -> dict[str, Any]:
        result = ctx.pipeline.ingest_web(
            request.url,
            html=request.html,
            text=request.text,
            title=request.title,
            user_id=caller(authorization),
            byok_key=request.api_key,
            document_id=request.document_id,
        )
        return _ingest_payload(result)

    @app.post("/ingest/transcript")
    def ingest_transcript(
        request: TranscriptIngestRequest, authorization: str | None = Header(default=None)
    ) -> dict[str, Any]:
        source_name = request.source_name
        if not source_name and request.url:
            video_id = extract_video_id(request.url)
            source_name = f"YouTube: {video_id}" if video_id else None
        try:
            segments = parse_transcript_segments(request.segments)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed transcript segment: {exc}") from exc
        result = ctx.pipeline.ingest_transcript(
            segments,
            source_name=source_name or "",
            source_type=SourceType(request.source_type),
            user_id=caller(authorization),
            byok_key=request.api_key,
            document_id=request.document_id,
            url=request.url,
        )
        return _ingest_payload(result)

    @app.post("/ingest/image")
    def ingest_image(
        request: ImageIngestRequest, authorization: str | None = Header(default=None)
    ) -> dict[str, Any]:
        result = ctx.pipeline.ingest_image(
            request.description,
            source_name=request.source_name,
            extracted_text=request.extracted_text,
            user_id=caller(authorization),
            byok_key=request.api_key,
            document_id=request.document_id,
        )
        return _ingest_payload(result)

    @app.post("/ask")
    def ask(
        request: AskRequest, authorization: str | None = Header(default=None)
    ) -> dict[str, Any]:
        envelope = ctx.answerer.ask(
            request.question,
            user_id=caller(authorization),
            byok_key=request.api_key,
            filters=RetrievalFilters(
                source_names=list(request.sources),
                document_ids=list(request.document_ids),
            ),
            model=request.model,
        )
        return envelope.to_payload()

    @app.get("/credits/balance")
    def credits_balance(
        limit: int = 20, authorization: str | None = Header(default=None)
    ) -> dict[str, Any]:
        user_id = caller(authorization)
        if user_id is None:
            raise AuthRequiredError("Please sign in to view your credit balance.")
        history = ctx.ledger.history(user_id, limit=limit)
        return {
            "balance": ctx.ledger.get_balance(user_id),
            "transactions": [
                {
                    "delta": entry.delta,
                    "reason": entry.reason,
                    "balanceAfter": entry.balance_after,
                    "timestamp": entry.timestamp.isoformat(),
                    "metadata": entry.metadata,
                }
                for entry in history
            ],
        }

    @app.delete("/sources/{source_name}")
    def remove_source(
        source_name: str, authorization: str | None = Header(default=None)
    ) -> dict[str, Any]:
        if caller(authorization) is None:
            raise AuthRequiredError("Please sign in to remove sources.")
        removed = ctx.pipeline.remove_source(source_name)
        if removed == 0:
            raise HTTPException(status_code=404, detail=f"Source not found: {source_name}")
        return {"source": source_name, "vectorsRemoved": removed}

    @app.get("/usage")
    def usage(
        limit: int = 20, authorization: str | None = Header(default=None)
    ) -> dict[str, Any]:
        user_id = caller(authorization)
        if user_id is None:
            raise AuthRequiredError("Please sign in to view your usage.")
        records = ctx.usage_store.list_recent(limit=limit, user_id=user_id)
        return {
            "items": [asdict(record) for record in records],
            "summary": ctx.usage_store.summary(user_id=user_id),
        }

    return app


def _default_app() -> FastAPI:
    context = build_context()
    setup_logger(context.settings.log_level, context.settings.log_file)
    return create_app(context)


app = _default_app()
