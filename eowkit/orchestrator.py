from __future__ import annotations

"""
RAG pipeline over the local services.

  SEARCHING -> NO_SUPPORT
            -> FETCHING_CANDIDATES -> [RERANKING] -> SELECTING
            -> PROMPT_BUILDING -> GENERATING -> CITING -> ANSWERED

Only the reranker may reorder, and only inside the pool it was given;
with reranking off the search service's relevance order is kept end to end.
"""

from typing import List, Optional, Sequence

from loguru import logger

from . import config
from .config import PipelineConfig
from .content import ContentFetcher
from .errors import ContentFetchFailed, RerankFailure
from .ollama import GenerationClient
from .pipeline_types import Answer, Candidate, Hit, PipelineState
from .rerank import Reranker, order_by_score
from .search import SearchClient


def build_prompt(system_prompt: str, articles: Sequence[Candidate], question: str) -> str:
    context = "\n\n".join(f"# {a.title}\n{a.text}" for a in articles)
    return f"{system_prompt}\n\n{config.CONTEXT_HEADER}\n{context}\n\nQuestion: {question}"


class Orchestrator:
    def __init__(
        self,
        cfg: PipelineConfig,
        search: SearchClient,
        fetcher: ContentFetcher,
        generator: GenerationClient,
        reranker: Optional[Reranker] = None,
    ) -> None:
        self.cfg = cfg
        self._search = search
        self._fetcher = fetcher
        self._generator = generator
        self._reranker = reranker

    def _enter(self, state: PipelineState) -> None:
        # shared across concurrent requests; the outcome lives on Answer.state
        logger.debug("pipeline -> {}", state.value)

    @property
    def reranking(self) -> bool:
        return self.cfg.rerank_enabled and self._reranker is not None

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------

    def fetch_candidates(self, hits: Sequence[Hit], limit: int, max_chars: Optional[int] = None) -> List[Candidate]:
        """Fetch up to `limit` hits in order, dropping the ones that fail."""
        out: List[Candidate] = []
        for h in hits[:limit]:
            try:
                text = self._fetcher.fetch(h.locator)
            except ContentFetchFailed as e:
                logger.warning("Skipping candidate {!r}: {}", h.title, e)
                continue
            if not text.strip():
                logger.debug("Skipping empty candidate {!r}", h.title)
                continue
            cand = Candidate(title=h.title, locator=h.locator, text=text)
            out.append(cand.truncated(max_chars) if max_chars is not None else cand)
        return out

    def rerank(self, question: str, pool: List[Candidate]) -> List[Candidate]:
        if not pool:
            return pool
        try:
            scores = self._reranker.score(question, [c.text for c in pool])
        except RerankFailure as e:
            logger.warning("Reranking failed; keeping search order: {}", e)
            return pool
        if sorted(s.original_index for s in scores) != list(range(len(pool))):
            logger.warning("Reranker returned {} scores for {} candidates; keeping search order", len(scores), len(pool))
            return pool
        return [pool[i] for i in order_by_score(scores)]

    # ------------------------------------------------------------------
    # main entry
    # ------------------------------------------------------------------

    def answer(self, question: str) -> Answer:
        cfg = self.cfg

        self._enter(PipelineState.SEARCHING)
        hits = self._search.search(question, cfg.k)
        logger.info("Search {!r}: {} hits", question, len(hits))
        if not hits:
            self._enter(PipelineState.NO_SUPPORT)
            return Answer(text=config.NO_SUPPORT_MESSAGE, state=PipelineState.NO_SUPPORT)

        self._enter(PipelineState.FETCHING_CANDIDATES)
        if self.reranking:
            pool = self.fetch_candidates(
                hits, min(config.RERANK_POOL_SIZE, len(hits)), config.RERANK_CANDIDATE_CHARS
            )
            self._enter(PipelineState.RERANKING)
            pool = self.rerank(question, pool)
        else:
            pool = self.fetch_candidates(hits, cfg.max_articles)

        if not pool:
            logger.warning("All {} candidates failed to fetch", len(hits))
            self._enter(PipelineState.NO_SUPPORT)
            return Answer(text=config.NO_SUPPORT_MESSAGE, state=PipelineState.NO_SUPPORT)

        self._enter(PipelineState.SELECTING)
        selected = [c.truncated(config.PROMPT_ARTICLE_CHARS) for c in pool[: cfg.max_articles]]

        self._enter(PipelineState.PROMPT_BUILDING)
        prompt = build_prompt(cfg.system_prompt, selected, question)

        self._enter(PipelineState.GENERATING)
        reply = self._generator.complete_once(
            cfg.model, prompt, cfg.context_tokens, cfg.temperature, cfg.num_threads
        )

        self._enter(PipelineState.CITING)
        answer = Answer(text=reply, sources=[c.title for c in selected])

        self._enter(PipelineState.ANSWERED)
        return answer
