"""CLI entrypoint for the adaptive retrieval engine."""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

import orjson
import typer
from pydantic import ValidationError

from adaptive_rag.core.config import get_settings
from adaptive_rag.core.errors import InputError
from adaptive_rag.core.logging import configure_logging
from adaptive_rag.core.metrics import metrics_payload
from adaptive_rag.ingest.chunker import chunk_document
from adaptive_rag.ingest.embeddings import HashingEmbedder
from adaptive_rag.ingest.metadata import extract_metadata
from adaptive_rag.ingest.pipeline import IngestPipeline
from adaptive_rag.models.dto import CandidateRecord, ChunkResult, RetrievalResponse
from adaptive_rag.retrieval.adaptive import AdaptiveRetriever
from adaptive_rag.retrieval.classifier import classify_query
from adaptive_rag.retrieval.rerank import RerankStrategy, Reranker, evaluate_reranking
from adaptive_rag.retrieval.vector_index import InMemoryChunkStore

app = typer.Typer(name="arag", help="Adaptive multi-stage retrieval command-line interface")


def _emit(payload: object) -> None:
    typer.echo(orjson.dumps(payload, option=orjson.OPT_INDENT_2, default=str).decode("utf-8"))


def _fail(message: str) -> None:
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def _read_text(text: Optional[str], file: Optional[Path]) -> str:
    if file is not None:
        return file.expanduser().read_text(encoding="utf-8")
    if text is None:
        _fail("Provide text or --file")
    return text


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, use_json=settings.log_json)


@app.command()
def chunk(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Document to chunk"),
    document_id: Optional[str] = typer.Option(None, "--document-id", help="Identifier for emitted chunks"),
    target_tokens: Optional[int] = typer.Option(None, "--target-tokens", help="Override target chunk size"),
) -> None:
    """Split a document into structure-aware chunks."""
    overrides = {"target_tokens": target_tokens} if target_tokens is not None else {}
    try:
        config = get_settings().chunking_config(**overrides)
        chunks = chunk_document(file.read_text(encoding="utf-8"), config, document_id=document_id or file.stem)
    except (InputError, ValidationError) as exc:
        _fail(str(exc))
    _emit([ChunkResult.from_chunk(item).model_dump() for item in chunks])


@app.command()
def metadata(
    text: Optional[str] = typer.Argument(None, help="Text to analyse"),
    file: Optional[Path] = typer.Option(None, "--file", help="Read text from this file"),
) -> None:
    """Extract temporal, financial and structural metadata."""
    _emit(asdict(extract_metadata(_read_text(text, file))))


@app.command()
def classify(query: str = typer.Argument(..., help="Query text")) -> None:
    """Show how a query would be classified and routed."""
    try:
        context = classify_query(query, base_threshold=get_settings().similarity_threshold)
    except InputError as exc:
        _fail(str(exc))
    _emit(asdict(context))


@app.command()
def rerank(
    query: str = typer.Argument(..., help="Query text"),
    candidates: Path = typer.Option(..., "--candidates", exists=True, dir_okay=False, help="JSON list of candidates"),
    strategy: RerankStrategy = typer.Option(RerankStrategy.HYBRID, "--strategy", help="Reranking strategy"),
    top_k: int = typer.Option(5, "--top-k", min=1, help="Number of results to keep"),
) -> None:
    """Rerank a candidate list read from JSON."""
    try:
        records = [CandidateRecord.model_validate(item) for item in orjson.loads(candidates.read_bytes())]
    except (orjson.JSONDecodeError, TypeError, ValidationError) as exc:
        _fail(f"Invalid candidates file: {exc}")
    original = [record.to_chunk() for record in records]
    settings = get_settings()
    reranked = Reranker(settings.semantic_weight, settings.keyword_weight).rerank(query, original, strategy, top_k)
    _emit(
        {
            "strategy": strategy.value,
            "results": [ChunkResult.from_chunk(item).model_dump() for item in reranked],
            "evaluation": asdict(evaluate_reranking(original, reranked, top_k)),
        }
    )


@app.command()
def retrieve(
    query: str = typer.Argument(..., help="Query text"),
    corpus: List[Path] = typer.Option(..., "--corpus", help="Files or folders to index before retrieving"),
    adjacent: Optional[bool] = typer.Option(None, "--adjacent/--no-adjacent", help="Include neighbouring chunks"),
    max_stages: Optional[int] = typer.Option(None, "--max-stages", min=1, max=3, help="Stage budget"),
) -> None:
    """Index a local corpus in memory and run adaptive retrieval against it."""
    settings = get_settings()
    overrides: dict[str, object] = {}
    if adjacent is not None:
        overrides["enable_adjacent_chunks"] = adjacent
    if max_stages is not None:
        overrides["max_stages"] = max_stages

    store = InMemoryChunkStore(settings.embedding_dim)
    embedder = HashingEmbedder(settings.embedding_dim)
    IngestPipeline(store, embedder, settings.chunking_config()).ingest_paths(corpus)
    retriever = AdaptiveRetriever(
        vector_search=store,
        embedder=embedder,
        keyword_search=store,
        chunk_fetcher=store,
        config=settings.retrieval_config(**overrides),
    )
    try:
        result = asyncio.run(retriever.retrieve(query))
    except InputError as exc:
        _fail(str(exc))
    _emit(RetrievalResponse.from_result(result).model_dump())


@app.command()
def metrics() -> None:
    """Print Prometheus metrics collected during this process."""
    payload, _ = metrics_payload()
    typer.echo(payload.decode("utf-8"))


if __name__ == "__main__":
    app()
