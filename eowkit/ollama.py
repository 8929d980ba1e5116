from __future__ import annotations

"""
Client for the local Ollama generation service.

- model presence (POST /api/show) and streamed pulls (POST /api/pull)
- one-shot completion: /api/chat, falling back to /api/generate when the
  chat endpoint is missing (404)
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx
from loguru import logger

from . import config
from .config import ServiceEndpoint
from .errors import GenerationRequestFailed, ModelPullTimeout


@dataclass(frozen=True)
class PullProgress:
    status: str = ""
    digest: str = ""
    completed: int = 0
    total: int = 0
    error: Optional[str] = None

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> "PullProgress":
        return cls(
            status=str(event.get("status") or ""),
            digest=str(event.get("digest") or ""),
            completed=int(event.get("completed") or 0),
            total=int(event.get("total") or 0),
            error=event.get("error") or None,
        )

    @property
    def percent(self) -> Optional[float]:
        if self.total <= 0:
            return None
        return 100.0 * self.completed / self.total


ProgressCallback = Callable[[PullProgress], None]


class ProgressThrottle:
    """
    Decides which pull events reach the caller.

    An event passes when it carries an error, changes status or digest,
    moves progress by at least `min_percent` points, or arrives `min_seconds`
    after the last forwarded one. Within one digest, completed bytes never
    go backwards for the caller.
    """

    def __init__(
        self,
        min_percent: float = config.PULL_PROGRESS_MIN_PERCENT,
        min_seconds: float = config.PULL_PROGRESS_MIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_percent = min_percent
        self.min_seconds = min_seconds
        self._clock = clock
        self._last: Optional[PullProgress] = None
        self._last_at = 0.0

    def should_emit(self, ev: PullProgress) -> bool:
        now = self._clock()
        last = self._last
        if last is None or ev.error:
            emit = True
        elif ev.status != last.status or ev.digest != last.digest:
            emit = True
        elif ev.completed < last.completed:
            emit = False
        else:
            moved = False
            if ev.percent is not None and last.percent is not None:
                moved = ev.percent - last.percent >= self.min_percent
            emit = moved or (now - self._last_at) >= self.min_seconds

        if emit:
            self._last = ev
            self._last_at = now
        return emit


class GenerationClient:
    def __init__(
        self,
        client: httpx.Client,
        endpoint: ServiceEndpoint,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._base = endpoint.base_url
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # inventory
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        try:
            r = self._client.get(f"{self._base}/api/tags", timeout=config.HEALTH_TIMEOUT_S)
        except httpx.HTTPError:
            return False
        return r.is_success

    def list_models(self) -> List[str]:
        try:
            r = self._client.get(f"{self._base}/api/tags")
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise GenerationRequestFailed(f"listing models failed: {e}") from e
        return [str(m.get("name")) for m in r.json().get("models", []) if m.get("name")]

    def has_model(self, model: str) -> bool:
        try:
            r = self._client.post(f"{self._base}/api/show", json={"name": model})
        except httpx.HTTPError as e:
            raise GenerationRequestFailed(f"model check failed: {e}") from e
        if r.status_code == 404:
            return False
        if r.is_success:
            return True
        raise GenerationRequestFailed(f"model check: HTTP {r.status_code}", r.status_code)

    # ------------------------------------------------------------------
    # pull
    # ------------------------------------------------------------------

    def pull_model(self, model: str, on_progress: Optional[ProgressCallback] = None) -> None:
        throttle = ProgressThrottle(clock=self._clock)
        try:
            with self._client.stream(
                "POST",
                f"{self._base}/api/pull",
                json={"name": model, "stream": True},
                timeout=httpx.Timeout(None, connect=config.HTTP_CONNECT_TIMEOUT),
            ) as r:
                if r.status_code >= 400:
                    r.read()
                    raise GenerationRequestFailed(f"pull {model}: HTTP {r.status_code}", r.status_code)
                for line in r.iter_lines():
                    if not line.strip():
                        continue
                    try:
                        ev = PullProgress.from_event(json.loads(line))
                    except (ValueError, TypeError, AttributeError):
                        logger.debug("Skipping undecodable pull event: {!r}", line[:200])
                        continue
                    if ev.error:
                        logger.warning("Pull {} reported: {}", model, ev.error)
                    if on_progress is not None and throttle.should_emit(ev):
                        on_progress(ev)
        except httpx.HTTPError as e:
            raise GenerationRequestFailed(f"pull {model} failed: {e}") from e

    def ensure_model_present(self, model: str, on_progress: Optional[ProgressCallback] = None) -> None:
        if not model or not model.strip():
            return
        if self.has_model(model):
            logger.info("Model {} already present", model)
            return

        logger.info("Pulling model {}", model)
        self.pull_model(model, on_progress)

        for _ in range(config.PULL_POLL_ATTEMPTS):
            if self.has_model(model):
                logger.info("Model {} is ready", model)
                return
            self._sleep(config.PULL_POLL_INTERVAL_S)
        raise ModelPullTimeout(model, config.PULL_POLL_ATTEMPTS)

    # ------------------------------------------------------------------
    # completion
    # ------------------------------------------------------------------

    @staticmethod
    def _options(context_tokens: int, temperature: float, num_threads: Optional[int]) -> Dict[str, Any]:
        opts: Dict[str, Any] = {"num_ctx": int(context_tokens), "temperature": float(temperature)}
        if num_threads:
            opts["num_thread"] = int(num_threads)
        return opts

    def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            return self._client.post(f"{self._base}{path}", json=payload)
        except httpx.HTTPError as e:
            raise GenerationRequestFailed(f"{path} request failed: {e}") from e

    def complete_once(
        self,
        model: str,
        prompt: str,
        context_tokens: int,
        temperature: float,
        num_threads: Optional[int] = None,
    ) -> str:
        options = self._options(context_tokens, temperature, num_threads)
        chat = {
            "model": model,
            "options": options,
            "messages": [
                {"role": "system", "content": config.CHAT_SYSTEM_MESSAGE},
                {"role": "user", "content": prompt},
            ],
            "stream": False,
        }
        r = self._post("/api/chat", chat)
        if r.status_code == 404:
            logger.info("/api/chat unavailable; falling back to /api/generate")
            return self._generate(model, prompt, options)
        if r.status_code >= 400:
            raise GenerationRequestFailed(f"/api/chat: HTTP {r.status_code}: {r.text[:200]}", r.status_code)
        try:
            content = r.json()["message"]["content"]
        except (ValueError, KeyError, TypeError) as e:
            raise GenerationRequestFailed(f"/api/chat: malformed reply: {e}") from e
        return (content or "").strip()

    def _generate(self, model: str, prompt: str, options: Dict[str, Any]) -> str:
        payload = {
            "model": model,
            "system": config.CHAT_SYSTEM_MESSAGE,
            "prompt": prompt,
            "options": options,
            "stream": False,
        }
        r = self._post("/api/generate", payload)
        if r.status_code >= 400:
            raise GenerationRequestFailed(f"/api/generate: HTTP {r.status_code}: {r.text[:200]}", r.status_code)
        try:
            content = r.json()["response"]
        except (ValueError, KeyError, TypeError) as e:
            raise GenerationRequestFailed(f"/api/generate: malformed reply: {e}") from e
        return (content or "").strip()
