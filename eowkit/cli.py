# eowkit/cli.py
from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from loguru import logger

from . import config
from .config import PipelineConfig
from .errors import EowkitError, GenerationRequestFailed
from .ollama import GenerationClient, PullProgress
from .runtime import build_runtime, configure_logging, make_http_client


def _print_progress(ev: PullProgress) -> None:
    if ev.error:
        print(f"  ! {ev.error}", file=sys.stderr)
        return
    pct = ev.percent
    digest = ev.digest[:19] if ev.digest else ""
    if pct is None:
        print(f"  {ev.status} {digest}".rstrip(), file=sys.stderr)
    else:
        print(f"  {ev.status} {digest} {pct:5.1f}%", file=sys.stderr)


def _pipeline_config(args: argparse.Namespace) -> PipelineConfig:
    base = PipelineConfig.from_env()
    overrides = {
        "k": args.k,
        "max_articles": args.max_articles,
        "model": args.model,
    }
    if args.rerank:
        overrides["rerank_enabled"] = True
    merged = {**base.model_dump(), **{k: v for k, v in overrides.items() if v is not None}}
    return PipelineConfig(**merged)


def cmd_ask(args: argparse.Namespace) -> int:
    cfg = _pipeline_config(args)
    runtime = build_runtime(cfg, zim_path=args.zim, on_progress=_print_progress)
    try:
        answer = runtime.orchestrator.answer(args.question)
    finally:
        runtime.close()
    print(answer.render())
    return 0


def _reachable_generator(http) -> GenerationClient:
    endpoint = config.ollama_endpoint()
    client = GenerationClient(http, endpoint)
    if not client.ping():
        raise GenerationRequestFailed(f"ollama is not reachable at {endpoint.base_url}")
    return client


def cmd_pull(args: argparse.Namespace) -> int:
    http = make_http_client(config.GENERATION_READ_TIMEOUT)
    try:
        _reachable_generator(http).ensure_model_present(args.model, _print_progress)
    finally:
        http.close()
    print(f"{args.model} ready")
    return 0


def cmd_models(args: argparse.Namespace) -> int:
    http = make_http_client(config.GENERATION_READ_TIMEOUT)
    try:
        names = _reachable_generator(http).list_models()
    finally:
        http.close()
    for name in names:
        print(name)
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="eowkit", description="Offline encyclopedia Q&A over kiwix-serve + Ollama")
    sub = ap.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="answer one question and exit")
    ask.add_argument("question")
    ask.add_argument("--k", type=int, default=None, help="search breadth")
    ask.add_argument("--max-articles", type=int, default=None, dest="max_articles")
    ask.add_argument("--model", default=None)
    ask.add_argument("--rerank", action="store_true", help="enable the cross-encoder reranker")
    ask.add_argument("--zim", default=None, help="path to the ZIM snapshot")
    ask.set_defaults(func=cmd_ask)

    pull = sub.add_parser("pull", help="make sure a model is present in Ollama")
    pull.add_argument("model")
    pull.set_defaults(func=cmd_pull)

    models = sub.add_parser("models", help="list models installed in Ollama")
    models.set_defaults(func=cmd_models)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    try:
        return args.func(args)
    except (EowkitError, FileNotFoundError) as e:
        logger.error("{}", e)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
