from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------
# Paths
# ---------------------------

PROJECT_ROOT = Path(__file__).resolve().parents[1]

MODELS_DIR = Path(os.getenv("EOWKIT_MODELS_DIR", str(PROJECT_ROOT / "models")))
RERANKER_DIR = MODELS_DIR / "reranker"
TOOLS_DIR = MODELS_DIR / "tools"
OLLAMA_INSTALL_DIR = MODELS_DIR / "ollama"

ZIM_PATH = os.getenv("EOWKIT_ZIM", "")


# ---------------------------
# Services
# ---------------------------

KIWIX_HOST = os.getenv("EOWKIT_KIWIX_HOST", "127.0.0.1")
KIWIX_PORT = int(os.getenv("EOWKIT_KIWIX_PORT", "8080"))
KIWIX_HEALTH_PATH = "/"
KIWIX_BIN_ENV = "KIWIX_SERVE_BIN"

OLLAMA_HOST = os.getenv("EOWKIT_OLLAMA_HOST", "127.0.0.1")
OLLAMA_PORT = int(os.getenv("EOWKIT_OLLAMA_PORT", "11434"))
OLLAMA_HEALTH_PATH = "/api/tags"
OLLAMA_BIN_ENV = "OLLAMA_BIN"
OLLAMA_MODELS_ENV = "OLLAMA_MODELS"

# liveness polling while a freshly spawned service binds its port
START_POLL_INTERVAL_S = 0.5
KIWIX_START_ATTEMPTS = 60      # ~30s
OLLAMA_START_ATTEMPTS = 30     # ~15s
HEALTH_TIMEOUT_S = 2.0

# model pull
PULL_POLL_INTERVAL_S = 1.0
PULL_POLL_ATTEMPTS = 600       # ~10 min
PULL_PROGRESS_MIN_PERCENT = 1.0
PULL_PROGRESS_MIN_SECONDS = 2.0


# ---------------------------
# HTTP
# ---------------------------

HTTP_CONNECT_TIMEOUT = 3.0
SEARCH_READ_TIMEOUT = 30.0
GENERATION_READ_TIMEOUT = 300.0

HTTP_USER_AGENT = "eowkit/0.1 (offline encyclopedia assistant)"


# ---------------------------
# Retrieval & prompt policy
# ---------------------------

DEFAULT_K = 40
DEFAULT_MAX_ARTICLES = 5

RERANK_POOL_SIZE = 20          # candidates fetched for the cross-encoder
RERANK_CANDIDATE_CHARS = 2_000
PROMPT_ARTICLE_CHARS = 6_000
RERANK_BATCH_SIZE = 8

DEFAULT_MAX_SEQ_LEN = 256
DEFAULT_CONTEXT_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.2

DEFAULT_MODEL = os.getenv("EOWKIT_MODEL", "llama3.2:3b")

NO_SUPPORT_MESSAGE = "No support found in this offline snapshot."
CONTEXT_HEADER = "Retrieved context (from local Wikipedia):"
CHAT_SYSTEM_MESSAGE = "You are a concise, citation-first encyclopedia assistant."
DEFAULT_SYSTEM_PROMPT = (
    "Answer the question using only the retrieved articles below. "
    "If the articles do not contain the answer, say so plainly."
)


# ---------------------------
# Logging / observability
# ---------------------------

LOG_DIR = PROJECT_ROOT / "logs"
LOG_DIR.mkdir(exist_ok=True)
LOG_FILE = LOG_DIR / "eowkit.log"
LOG_LEVEL = os.getenv("EOWKIT_LOG_LEVEL", "INFO")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def default_num_threads() -> int:
    return max(1, (os.cpu_count() or 2) // 2)


# ---------------------------
# Pydantic models shared around the app
# ---------------------------

class ServiceEndpoint(BaseModel):
    """
    Where a bootstrapped local service listens.
    """

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(ge=1, le=65535)
    health_path: str = "/"

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def health_url(self) -> str:
        return self.base_url + self.health_path


class PipelineConfig(BaseModel):
    """
    Knobs for one Orchestrator. Frozen: a run never mutates it.
    """

    model_config = ConfigDict(frozen=True)

    k: int = Field(DEFAULT_K, ge=1)
    max_articles: int = Field(DEFAULT_MAX_ARTICLES, ge=1)
    rerank_enabled: bool = False
    context_tokens: int = Field(DEFAULT_CONTEXT_TOKENS, ge=1)
    temperature: float = Field(DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_seq_len: int = Field(DEFAULT_MAX_SEQ_LEN, ge=3)
    model: str = DEFAULT_MODEL
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    num_threads: Optional[int] = Field(None, ge=1)

    @field_validator("system_prompt")
    @classmethod
    def _strip_prompt(cls, v: str) -> str:
        return v.strip()

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(
            k=int(os.getenv("EOWKIT_K", str(DEFAULT_K))),
            max_articles=int(os.getenv("EOWKIT_MAX_ARTICLES", str(DEFAULT_MAX_ARTICLES))),
            rerank_enabled=_env_bool("EOWKIT_RERANK", False),
            context_tokens=int(os.getenv("EOWKIT_CONTEXT_TOKENS", str(DEFAULT_CONTEXT_TOKENS))),
            temperature=float(os.getenv("EOWKIT_TEMPERATURE", str(DEFAULT_TEMPERATURE))),
            max_seq_len=int(os.getenv("EOWKIT_MAX_SEQ_LEN", str(DEFAULT_MAX_SEQ_LEN))),
            model=DEFAULT_MODEL,
            num_threads=default_num_threads(),
        )


class RerankerSettings(BaseModel):
    """
    Artifacts for the ONNX cross-encoder. Paths are checked by the loader,
    not here, so a disabled reranker may point at nothing.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    onnx_model: Path = RERANKER_DIR / "model.onnx"
    tokenizer_vocab: Path = RERANKER_DIR / "vocab.txt"
    max_seq_len: int = DEFAULT_MAX_SEQ_LEN
    batch_size: int = Field(RERANK_BATCH_SIZE, ge=1)

    @classmethod
    def from_env(cls) -> "RerankerSettings":
        return cls(
            enabled=_env_bool("EOWKIT_RERANK", False),
            onnx_model=Path(os.getenv("EOWKIT_RERANKER_ONNX", str(RERANKER_DIR / "model.onnx"))),
            tokenizer_vocab=Path(os.getenv("EOWKIT_RERANKER_VOCAB", str(RERANKER_DIR / "vocab.txt"))),
            max_seq_len=int(os.getenv("EOWKIT_MAX_SEQ_LEN", str(DEFAULT_MAX_SEQ_LEN))),
        )


def kiwix_endpoint() -> ServiceEndpoint:
    return ServiceEndpoint(host=KIWIX_HOST, port=KIWIX_PORT, health_path=KIWIX_HEALTH_PATH)


def ollama_endpoint() -> ServiceEndpoint:
    return ServiceEndpoint(host=OLLAMA_HOST, port=OLLAMA_PORT, health_path=OLLAMA_HEALTH_PATH)


class AskRequest(BaseModel):
    """
    Request body for POST /ask.
    """

    question: str = Field(min_length=1)

    @field_validator("question")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("question must not be blank")
        return v


class AskResponse(BaseModel):
    """
    Response body for POST /ask.
    """

    answer: str
    sources: List[str]
    state: str


class HealthResponse(BaseModel):
    """
    Response body for GET /health.
    """

    status: str
