# eowkit/rerank.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

import numpy as np
from loguru import logger

from . import config
from .config import RerankerSettings
from .errors import ConfigurationError, RerankFailure
from .pipeline_types import RerankScore

# [CLS] query [SEP] doc [SEP]
SPECIAL_TOKEN_SLOTS = 3


# ---------------------------------------------------------------------------
# Capability
# ---------------------------------------------------------------------------

class Reranker(Protocol):  # pragma: no cover - interface
    """Re-score documents against a query.

    Returns one RerankScore per document, in input order; callers sort.
    """

    def score(self, query: str, docs: Sequence[str]) -> List[RerankScore]: ...


class NoOpReranker:
    """Keeps the original order with strictly descending scores."""

    def score(self, query: str, docs: Sequence[str]) -> List[RerankScore]:
        if not docs:
            return []
        step = 1.0 / len(docs)
        return [RerankScore(original_index=i, score=1.0 - i * step) for i in range(len(docs))]


def order_by_score(scores: Sequence[RerankScore]) -> List[int]:
    """Original indices sorted by descending score; ties keep input order."""
    ranked = sorted(scores, key=lambda s: (-s.score, s.original_index))
    return [s.original_index for s in ranked]


# ---------------------------------------------------------------------------
# Cross-encoder sequence construction
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EncodedPair:
    input_ids: List[int]
    token_type_ids: List[int]
    attention_mask: List[int]
    query_len: int
    doc_len: int


def build_pair(
    query_ids: Sequence[int],
    doc_ids: Sequence[int],
    max_seq_len: int,
    cls_id: int,
    sep_id: int,
    pad_id: int,
) -> EncodedPair:
    """
    Assemble one cross-encoder input of exactly max_seq_len positions.

    Budget: room = max_seq_len - 3; the query gets at most room // 3 tokens
    and the document everything the query left over.
    """
    if max_seq_len < SPECIAL_TOKEN_SLOTS:
        raise ConfigurationError(f"max_seq_len must be >= {SPECIAL_TOKEN_SLOTS}, got {max_seq_len}")

    room = max_seq_len - SPECIAL_TOKEN_SLOTS
    q_len = min(len(query_ids), room // 3)
    d_len = min(len(doc_ids), room - q_len)

    ids = [cls_id, *query_ids[:q_len], sep_id, *doc_ids[:d_len], sep_id]
    types = [0] * (q_len + 2) + [1] * (d_len + 1)
    used = len(ids)
    pad = max_seq_len - used

    return EncodedPair(
        input_ids=ids + [pad_id] * pad,
        token_type_ids=types + [0] * pad,
        attention_mask=[1] * used + [0] * pad,
        query_len=q_len,
        doc_len=d_len,
    )


# ---------------------------------------------------------------------------
# ONNX cross-encoder
# ---------------------------------------------------------------------------

class CrossEncoderReranker:
    """
    Scores (query, doc) pairs with a serialized BERT-style cross-encoder.

    The first output logit of each pair is its relevance score. `session`
    and `tokenizer` may be injected; otherwise they are loaded from the
    ONNX model and vocabulary paths.
    """

    def __init__(
        self,
        onnx_model: Optional[Path] = None,
        tokenizer_vocab: Optional[Path] = None,
        max_seq_len: int = config.DEFAULT_MAX_SEQ_LEN,
        batch_size: int = config.RERANK_BATCH_SIZE,
        session=None,
        tokenizer=None,
    ) -> None:
        if max_seq_len < SPECIAL_TOKEN_SLOTS:
            raise ConfigurationError(f"max_seq_len must be >= {SPECIAL_TOKEN_SLOTS}, got {max_seq_len}")
        if batch_size < 1:
            raise ConfigurationError("batch_size must be >= 1")
        self.max_seq_len = int(max_seq_len)
        self.batch_size = int(batch_size)

        if tokenizer is None:
            if tokenizer_vocab is None:
                raise ConfigurationError("tokenizer_vocab is required")
            from transformers import BertTokenizerFast

            tokenizer = BertTokenizerFast(vocab_file=str(tokenizer_vocab), do_lower_case=True)
        if session is None:
            if onnx_model is None:
                raise ConfigurationError("onnx_model is required")
            import onnxruntime as ort

            session = ort.InferenceSession(str(onnx_model), providers=ort.get_available_providers())

        self._tokenizer = tokenizer
        self._session = session
        # some exports drop token_type_ids
        self._input_names = {i.name for i in session.get_inputs()}

    def _encode(self, text: str) -> List[int]:
        return list(self._tokenizer.encode(text, add_special_tokens=False))

    def encode_batch(self, query: str, docs: Sequence[str]) -> dict[str, np.ndarray]:
        tok = self._tokenizer
        q_ids = self._encode(query)
        pairs = [
            build_pair(q_ids, self._encode(d), self.max_seq_len, tok.cls_token_id, tok.sep_token_id, tok.pad_token_id)
            for d in docs
        ]
        return {
            "input_ids": np.asarray([p.input_ids for p in pairs], dtype=np.int64),
            "attention_mask": np.asarray([p.attention_mask for p in pairs], dtype=np.int64),
            "token_type_ids": np.asarray([p.token_type_ids for p in pairs], dtype=np.int64),
        }

    def score_batch(self, query: str, docs: Sequence[str]) -> np.ndarray:
        """One model run; returns one float score per doc."""
        if not docs:
            return np.zeros((0,), dtype="float32")
        try:
            feeds = self.encode_batch(query, docs)
            feeds = {k: v for k, v in feeds.items() if k in self._input_names}
            outputs = self._session.run(None, feeds)
            logits = np.asarray(outputs[0], dtype="float32").reshape(len(docs), -1)
        except Exception as e:
            raise RerankFailure(f"cross-encoder scoring failed: {e}") from e
        return logits[:, 0]

    def score(self, query: str, docs: Sequence[str]) -> List[RerankScore]:
        results: List[RerankScore] = []
        for start in range(0, len(docs), self.batch_size):
            batch = list(docs[start:start + self.batch_size])
            scores = self.score_batch(query, batch)
            results.extend(
                RerankScore(original_index=start + j, score=float(s)) for j, s in enumerate(scores)
            )
        return results


def load_reranker(settings: RerankerSettings) -> Reranker:
    """
    NoOpReranker when reranking is off; otherwise the ONNX cross-encoder.
    Missing artifacts for an enabled reranker are a configuration error.
    """
    if not settings.enabled:
        return NoOpReranker()

    if settings.max_seq_len < SPECIAL_TOKEN_SLOTS:
        raise ConfigurationError(f"reranker max_seq_len must be >= {SPECIAL_TOKEN_SLOTS}")
    for label, path in (("onnx_model", settings.onnx_model), ("tokenizer_vocab", settings.tokenizer_vocab)):
        if not Path(path).is_file():
            raise ConfigurationError(f"reranker {label} not found: {path}")

    logger.info("Loading cross-encoder reranker: {}", settings.onnx_model)
    return CrossEncoderReranker(
        onnx_model=settings.onnx_model,
        tokenizer_vocab=settings.tokenizer_vocab,
        max_seq_len=settings.max_seq_len,
        batch_size=settings.batch_size,
    )
