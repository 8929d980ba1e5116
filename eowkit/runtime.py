"""
Process-scoped resources, created once at startup and passed explicitly.

build_runtime():
  1) one long-lived httpx.Client per service
  2) ensure kiwix-serve and ollama are reachable (spawning if needed)
  3) ensure the configured model is present (pulling if needed)
  4) wire SearchClient / ContentFetcher / Reranker / GenerationClient
     into an Orchestrator
"""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
from loguru import logger

from . import config
from .config import PipelineConfig, RerankerSettings, ServiceEndpoint
from .content import ContentFetcher
from .ollama import GenerationClient, ProgressCallback
from .orchestrator import Orchestrator
from .rerank import load_reranker
from .search import SearchClient
from .supervisor import ServiceSupervisor, kiwix_descriptor, ollama_descriptor

_LOGGING_CONFIGURED = False


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    logger.remove()
    logger.add(sys.stderr, level=level)
    logger.add(config.LOG_FILE, level="DEBUG", rotation="5 MB", retention=3, enqueue=True)
    _LOGGING_CONFIGURED = True


def make_http_client(read_timeout: float) -> httpx.Client:
    return httpx.Client(
        timeout=httpx.Timeout(read_timeout, connect=config.HTTP_CONNECT_TIMEOUT),
        headers={"User-Agent": config.HTTP_USER_AGENT},
        follow_redirects=True,
    )


@dataclass
class Runtime:
    cfg: PipelineConfig
    kiwix: ServiceEndpoint
    ollama: ServiceEndpoint
    search_http: httpx.Client
    generation_http: httpx.Client
    generator: GenerationClient
    orchestrator: Orchestrator

    def close(self) -> None:
        self.search_http.close()
        self.generation_http.close()


def build_runtime(
    cfg: Optional[PipelineConfig] = None,
    reranker_settings: Optional[RerankerSettings] = None,
    zim_path: Optional[str] = None,
    models_dir: Optional[Path] = None,
    on_progress: Optional[ProgressCallback] = None,
    start_services: bool = True,
) -> Runtime:
    cfg = cfg or PipelineConfig.from_env()
    reranker_settings = reranker_settings or RerankerSettings.from_env()
    kiwix = config.kiwix_endpoint()
    ollama = config.ollama_endpoint()

    search_http = make_http_client(config.SEARCH_READ_TIMEOUT)
    generation_http = make_http_client(config.GENERATION_READ_TIMEOUT)
    try:
        if start_services:
            supervisor = ServiceSupervisor(search_http)
            supervisor.ensure_running(kiwix_descriptor(zim_path or config.ZIM_PATH, kiwix))
            if models_dir is None and os.getenv(config.OLLAMA_MODELS_ENV):
                models_dir = Path(os.environ[config.OLLAMA_MODELS_ENV])
            supervisor.ensure_running(ollama_descriptor(ollama, models_dir))

        generator = GenerationClient(generation_http, ollama)
        if start_services:
            generator.ensure_model_present(cfg.model, on_progress)

        reranker = None
        if cfg.rerank_enabled:
            reranker = load_reranker(
                reranker_settings.model_copy(update={"enabled": True, "max_seq_len": cfg.max_seq_len})
            )
        orchestrator = Orchestrator(
            cfg,
            SearchClient(search_http, kiwix),
            ContentFetcher(search_http, kiwix),
            generator,
            reranker=reranker,
        )
    except Exception:
        search_http.close()
        generation_http.close()
        raise

    logger.info("Runtime ready (model={}, rerank={})", cfg.model, orchestrator.reranking)
    return Runtime(
        cfg=cfg,
        kiwix=kiwix,
        ollama=ollama,
        search_http=search_http,
        generation_http=generation_http,
        generator=generator,
        orchestrator=orchestrator,
    )
