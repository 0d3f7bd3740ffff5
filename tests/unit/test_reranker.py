"""Unit tests for the rerank pipeline."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from context_engine.engine import ContextEngine
from context_engine.errors import RerankError
from context_engine.models import ScoredChunk
from context_engine.retrieval.reranker import CustomReranker, RerankInput, RerankOutput, rerank


def _candidates(*contents: str) -> list[ScoredChunk]:
    return [
        ScoredChunk(id=f"c{i}", document_id="d", source_id="s", index=i, content=c, token_count=1, score=1.0 - i / 10)
        for i, c in enumerate(contents)
    ]


def reverse_reranker() -> CustomReranker:
    def fn(query: str, documents: list[str]) -> RerankOutput:
        order = list(reversed(range(len(documents))))
        return RerankOutput(order=order, scores=[float(len(documents) - p) for p in range(len(order))], model="rev-1")

    return CustomReranker("reverse", fn)


# ── Basic ordering ─────────────────────────────────────────────────────


class TestRerank:
    @pytest.mark.asyncio
    async def test_permutation_is_mapped_back(self) -> None:
        result = await rerank(reverse_reranker(), RerankInput(query="q", candidates=_candidates("a", "b", "c")))
        assert [c.content for c in result.chunks] == ["c", "b", "a"]
        assert [r.index for r in result.ranking] == [2, 1, 0]
        assert [r.rerank_score for r in result.ranking] == [3.0, 2.0, 1.0]
        assert result.meta.reranker_name == "reverse"
        assert result.meta.model == "rev-1"

    @pytest.mark.asyncio
    async def test_top_k_truncates_but_ranking_is_full(self) -> None:
        result = await rerank(
            reverse_reranker(), RerankInput(query="q", candidates=_candidates("a", "b", "c"), top_k=1)
        )
        assert [c.content for c in result.chunks] == ["c"]
        assert len(result.ranking) == 3

    @pytest.mark.asyncio
    async def test_top_k_is_clamped(self) -> None:
        candidates = _candidates("a", "b")
        high = await rerank(reverse_reranker(), RerankInput(query="q", candidates=candidates, top_k=99))
        low = await rerank(reverse_reranker(), RerankInput(query="q", candidates=candidates, top_k=0))
        assert len(high.chunks) == 2
        assert len(low.chunks) == 1

    @pytest.mark.asyncio
    async def test_async_reranker_function(self) -> None:
        async def fn(query: str, documents: list[str]) -> RerankOutput:
            return RerankOutput(order=[1, 0])

        result = await rerank(CustomReranker("async", fn), RerankInput(query="q", candidates=_candidates("a", "b")))
        assert [c.content for c in result.chunks] == ["b", "a"]
        assert result.ranking[0].rerank_score is None

    @pytest.mark.asyncio
    async def test_non_permutation_is_rejected(self) -> None:
        bad = CustomReranker("bad", lambda q, docs: RerankOutput(order=[0, 0]))
        with pytest.raises(RerankError, match="permutation"):
            await rerank(bad, RerankInput(query="q", candidates=_candidates("a", "b")))

    @pytest.mark.asyncio
    async def test_empty_candidates(self) -> None:
        result = await rerank(reverse_reranker(), RerankInput(query="q", candidates=[]))
        assert result.chunks == []
        assert result.ranking == []
        assert result.warnings


# ── Missing reranker / text ────────────────────────────────────────────


class TestMissingPolicies:
    @pytest.mark.asyncio
    async def test_missing_reranker_throws_by_default(self) -> None:
        with pytest.raises(RerankError):
            await rerank(None, RerankInput(query="q", candidates=_candidates("a")))

    @pytest.mark.asyncio
    async def test_missing_reranker_skip_keeps_order(self) -> None:
        result = await rerank(
            None,
            RerankInput(query="q", candidates=_candidates("a", "b", "c"), top_k=2, on_missing_reranker="skip"),
        )
        assert [c.content for c in result.chunks] == ["a", "b"]
        assert [r.index for r in result.ranking] == [0, 1, 2]
        assert result.meta.reranker_name == "none"
        assert result.warnings

    @pytest.mark.asyncio
    async def test_candidates_without_text_go_to_the_tail(self) -> None:
        seen: list[list[str]] = []

        def fn(query: str, documents: list[str]) -> RerankOutput:
            seen.append(documents)
            return RerankOutput(order=[1, 0])

        result = await rerank(
            CustomReranker("r", fn),
            RerankInput(query="q", candidates=_candidates("a", "", "c"), on_missing_text="skip"),
        )

        assert seen == [["a", "c"]]
        assert [r.index for r in result.ranking] == [2, 0, 1]
        assert result.ranking[-1].rerank_score is None
        assert any("without text" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_missing_text_throws_by_default(self) -> None:
        with pytest.raises(RerankError, match="no text"):
            await rerank(reverse_reranker(), RerankInput(query="q", candidates=_candidates("a", "")))

    @pytest.mark.asyncio
    async def test_resolve_text_fills_blank_content(self) -> None:
        seen: list[list[str]] = []

        def fn(query: str, documents: list[str]) -> RerankOutput:
            seen.append(documents)
            return RerankOutput(order=list(range(len(documents))))

        async def resolve(chunk: ScoredChunk) -> str:
            return f"resolved {chunk.id}"

        await rerank(
            CustomReranker("r", fn),
            RerankInput(query="q", candidates=_candidates("a", ""), resolve_text=resolve),
        )
        assert seen == [["a", "resolved c1"]]

    @pytest.mark.asyncio
    async def test_resolve_text_failure_becomes_warning(self) -> None:
        def resolve(chunk: ScoredChunk) -> str:
            raise LookupError("gone")

        result = await rerank(
            reverse_reranker(),
            RerankInput(query="q", candidates=_candidates("a", ""), on_missing_text="skip", resolve_text=resolve),
        )
        assert [r.index for r in result.ranking] == [0, 1]
        assert any("gone" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_no_text_at_all_returns_original_order(self) -> None:
        result = await rerank(reverse_reranker(), RerankInput(query="q", candidates=_candidates("", ""), on_missing_text="skip"))
        assert [r.index for r in result.ranking] == [0, 1]
        assert result.durations.rerank_ms == 0.0


# ── Engine integration ─────────────────────────────────────────────────


class TestEngineRerank:
    @pytest.mark.asyncio
    async def test_engine_uses_configured_reranker(self, make_engine: Callable[..., ContextEngine]) -> None:
        events = []
        engine = make_engine(reranker=reverse_reranker(), on_event=events.append)
        result = await engine.rerank(RerankInput(query="q", candidates=_candidates("a", "b")))
        assert [c.content for c in result.chunks] == ["b", "a"]
        assert [e.type for e in events] == ["rerank:start", "rerank:complete"]
