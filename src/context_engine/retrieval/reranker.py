"""Second-pass reranking of retrieved candidates.

A reranker only ever sees plain strings and answers with an index
permutation; this module maps that permutation back onto the original
candidates, handles candidates without text, and truncates to ``top_k``
while still reporting the full ranking.
"""

from __future__ import annotations

import inspect
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal

from context_engine.errors import RerankError
from context_engine.events import OpScope
from context_engine.models import RerankDurations, RerankMeta, RerankRankingItem, RerankResult, ScoredChunk

logger = logging.getLogger(__name__)

MissingPolicy = Literal["throw", "skip"]
TextResolver = Callable[[ScoredChunk], "str | None | Awaitable[str | None]"]


@dataclass
class RerankOutput:
    """What a reranker returns.

    ``order`` is a permutation of ``range(len(documents))``, best first.
    ``scores``, when given, is aligned with ``order``.
    """

    order: list[int]
    scores: list[float] | None = None
    model: str | None = None


class RerankerBase(ABC):
    """Backend-agnostic reranker interface (cross-encoder, Cohere Rerank …)."""

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    async def rerank(self, query: str, documents: list[str]) -> RerankOutput:
        ...


RerankFn = Callable[[str, list[str]], "RerankOutput | Awaitable[RerankOutput]"]


class CustomReranker(RerankerBase):
    """Wrap a plain (sync or async) function as a reranker."""

    def __init__(self, name: str, fn: RerankFn) -> None:
        super().__init__(name)
        self._fn = fn

    async def rerank(self, query: str, documents: list[str]) -> RerankOutput:
        result = self._fn(query, documents)
        if inspect.isawaitable(result):
            result = await result
        return result


@dataclass
class RerankInput:
    """Arguments of :func:`rerank`.

    Attributes
    ----------
    query:
        The user query the candidates were retrieved for.
    candidates:
        Retrieved chunks, in retrieval order.
    top_k:
        Chunks to keep; clamped to ``[1, len(candidates)]``.  Defaults to all.
    on_missing_reranker:
        ``"throw"`` raises :class:`RerankError` when no reranker is
        configured; ``"skip"`` returns the candidates in original order.
    on_missing_text:
        ``"throw"`` (default) raises; ``"skip"`` moves candidates without
        text to the tail of the ranking.
    resolve_text:
        Fallback used when a chunk's stored content is blank (e.g. chunk
        content storage was disabled).
    """

    query: str
    candidates: list[ScoredChunk]
    top_k: int | None = None
    on_missing_reranker: MissingPolicy = "throw"
    on_missing_text: MissingPolicy = "throw"
    resolve_text: TextResolver | None = None


def _clamp_top_k(top_k: int | None, n: int) -> int:
    if top_k is None:
        return n
    return max(1, min(top_k, n))


def _original_order(
    candidates: list[ScoredChunk],
    top_k: int,
    meta: RerankMeta,
    started: float,
    warnings: list[str],
) -> RerankResult:
    elapsed = (time.perf_counter() - started) * 1000
    return RerankResult(
        chunks=candidates[:top_k],
        ranking=[RerankRankingItem(index=i) for i in range(len(candidates))],
        meta=meta,
        durations=RerankDurations(rerank_ms=0.0, total_ms=elapsed),
        warnings=warnings,
    )


async def _resolve_text(candidate: ScoredChunk, inp: RerankInput, warnings: list[str]) -> str | None:
    if candidate.content.strip():
        return candidate.content
    if inp.resolve_text is None:
        return None
    try:
        value = inp.resolve_text(candidate)
        if inspect.isawaitable(value):
            value = await value
    except Exception as exc:
        logger.warning("resolve_text failed for chunk %s", candidate.id, exc_info=True)
        warnings.append(f"resolve_text failed for chunk {candidate.id}: {exc}")
        return None
    return value if value and value.strip() else None


async def rerank(
    reranker: RerankerBase | None,
    inp: RerankInput,
    *,
    scope: OpScope | None = None,
) -> RerankResult:
    """Rerank ``inp.candidates`` with *reranker*.

    Raises
    ------
    RerankError
        No reranker under ``on_missing_reranker="throw"``, a candidate
        without text under ``on_missing_text="throw"``, or a reranker
        answer that is not a permutation of the documents it was given.
    """
    started = time.perf_counter()
    candidates = inp.candidates
    meta = RerankMeta(reranker_name=reranker.name if reranker else "none")
    warnings: list[str] = []

    if scope:
        scope.emit("rerank:start", query=inp.query, candidate_count=len(candidates), reranker=meta.reranker_name)

    if not candidates:
        result = RerankResult(
            meta=meta,
            durations=RerankDurations(rerank_ms=0.0, total_ms=(time.perf_counter() - started) * 1000),
            warnings=["No candidates to rerank"],
        )
        _emit_complete(scope, result)
        return result

    top_k = _clamp_top_k(inp.top_k, len(candidates))

    if reranker is None:
        if inp.on_missing_reranker == "throw":
            raise RerankError("Reranking requested but no reranker is configured")
        warnings.append("No reranker configured; returning candidates in original order")
        result = _original_order(candidates, top_k, meta, started, warnings)
        _emit_complete(scope, result)
        return result

    with_text: list[int] = []
    documents: list[str] = []
    missing: list[int] = []
    for i, candidate in enumerate(candidates):
        text = await _resolve_text(candidate, inp, warnings)
        if text is None:
            if inp.on_missing_text == "throw":
                raise RerankError(f"Candidate {i} (chunk {candidate.id}) has no text to rerank")
            missing.append(i)
        else:
            with_text.append(i)
            documents.append(text)

    if missing:
        warnings.append(f"{len(missing)} candidate(s) without text were moved to the end of the ranking")

    if not documents:
        warnings.append("No candidate has text to rerank; returning candidates in original order")
        result = _original_order(candidates, top_k, meta, started, warnings)
        _emit_complete(scope, result)
        return result

    rerank_started = time.perf_counter()
    output = await reranker.rerank(inp.query, documents)
    rerank_ms = (time.perf_counter() - rerank_started) * 1000

    if sorted(output.order) != list(range(len(documents))):
        raise RerankError(
            f"Reranker {reranker.name!r} returned an order that is not a permutation of {len(documents)} documents"
        )
    if output.scores is not None and len(output.scores) != len(output.order):
        raise RerankError(
            f"Reranker {reranker.name!r} returned {len(output.scores)} scores for {len(output.order)} documents"
        )

    ranking = [
        RerankRankingItem(
            index=with_text[doc_index],
            rerank_score=output.scores[position] if output.scores is not None else None,
        )
        for position, doc_index in enumerate(output.order)
    ]
    ranking.extend(RerankRankingItem(index=i) for i in missing)

    result = RerankResult(
        chunks=[candidates[item.index] for item in ranking[:top_k]],
        ranking=ranking,
        meta=RerankMeta(reranker_name=reranker.name, model=output.model),
        durations=RerankDurations(rerank_ms=rerank_ms, total_ms=(time.perf_counter() - started) * 1000),
        warnings=warnings,
    )
    _emit_complete(scope, result)
    return result


def _emit_complete(scope: OpScope | None, result: RerankResult) -> None:
    if scope:
        scope.emit(
            "rerank:complete",
            result_count=len(result.chunks),
            warning_count=len(result.warnings),
            rerank_ms=result.durations.rerank_ms,
            total_ms=result.durations.total_ms,
        )
