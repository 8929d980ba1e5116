"""Typed containers shared across pipeline modules."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List

from .normalize import clamp_text_length


@dataclass(frozen=True)
class Hit:
    """Search result reference, in the search service's relevance order."""

    title: str
    locator: str


@dataclass(frozen=True)
class Candidate:
    """Fetched plain-text version of a Hit."""

    title: str
    locator: str
    text: str

    def truncated(self, max_chars: int) -> "Candidate":
        if len(self.text) <= max_chars:
            return self
        return replace(self, text=clamp_text_length(self.text, max_chars))


@dataclass(frozen=True)
class RerankScore:
    original_index: int
    score: float


class PipelineState(str, Enum):
    SEARCHING = "searching"
    NO_SUPPORT = "no_support"
    FETCHING_CANDIDATES = "fetching_candidates"
    RERANKING = "reranking"
    SELECTING = "selecting"
    PROMPT_BUILDING = "prompt_building"
    GENERATING = "generating"
    CITING = "citing"
    ANSWERED = "answered"


@dataclass
class Answer:
    text: str
    sources: List[str] = field(default_factory=list)
    state: PipelineState = PipelineState.ANSWERED

    @property
    def citation(self) -> str:
        return "Sources: " + "; ".join(self.sources)

    def render(self) -> str:
        if self.state is PipelineState.NO_SUPPORT:
            return self.text
        return self.text + "\n\n" + self.citation
