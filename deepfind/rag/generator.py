from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from openai import OpenAI, OpenAIError

from deepfind.config import require_env, settings
from deepfind.rag.errors import ModelNotReadyError
from deepfind.utils.logging import get_logger


# -----------------------------
# Result container
# -----------------------------

@dataclass(frozen=True)
class GenerateResult:
    text: str
    model: str
    latency_ms: int
    usage: Optional[Dict[str, int]]


class LanguageModel(Protocol):
    def is_ready(self) -> bool: ...

    def generate(self, system_prompt: str, user_prompt: str) -> GenerateResult: ...


# -----------------------------
# Generator
# -----------------------------

class Generator:
    def __init__(
        self,
        *,
        client: OpenAI,
        model: str,
        temperature: float = 0.2,
        max_output_tokens: int = 600,
        timeout_s: float = 30.0,
        retries: int = 2,
        sleep_base_s: float = 0.5,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.model = model
        self.temperature = float(temperature)
        self.max_output_tokens = int(max_output_tokens)
        self.timeout_s = float(timeout_s)
        self.retries = max(0, int(retries))
        self.sleep_base_s = float(sleep_base_s)
        self.log = logger or get_logger("generator")

    def _extract_text(self, resp: Any) -> str:
        txt = getattr(resp, "output_text", None)
        if txt is not None:
            return str(txt).strip()

        return str(resp).strip()

    def _extract_usage(self, resp: Any) -> Optional[Dict[str, int]]:
        u = getattr(resp, "usage", None)
        if u is None:
            return None

        input_tokens = int(getattr(u, "input_tokens", 0) or 0)
        output_tokens = int(getattr(u, "output_tokens", 0) or 0)
        total_tokens = int(getattr(u, "total_tokens", 0) or (input_tokens + output_tokens))

        if input_tokens == 0 and output_tokens == 0 and total_tokens == 0:
            return None

        return {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": total_tokens,
        }

    def is_ready(self) -> bool:
        try:
            self.client.models.retrieve(self.model, timeout=self.timeout_s)
        except OpenAIError as e:
            self.log.warning("GEN not ready | model=%s | err=%s", self.model, f"{type(e).__name__}: {e}")
            return False
        return True

    def generate(self, system_prompt: str, user_prompt: str) -> GenerateResult:
        t0 = time.perf_counter()
        last_err: Optional[Exception] = None
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        for attempt in range(1, self.retries + 2):
            try:
                resp = self.client.responses.create(
                    model=self.model,
                    input=messages,
                    temperature=self.temperature,
                    max_output_tokens=self.max_output_tokens,
                    timeout=self.timeout_s,
                )

                text = self._extract_text(resp)
                if not text:
                    raise ValueError("empty model output")

                latency_ms = int((time.perf_counter() - t0) * 1000)
                usage = self._extract_usage(resp)

                self.log.info(
                    "GEN ok | model=%s | attempt=%s | latency_ms=%s | usage=%s",
                    self.model, attempt, latency_ms, usage
                )

                return GenerateResult(
                    text=text,
                    model=self.model,
                    latency_ms=latency_ms,
                    usage=usage,
                )

            except (OpenAIError, ValueError) as e:
                last_err = e
                self.log.info(
                    "GEN error | attempt=%s | err=%s",
                    attempt, f"{type(e).__name__}: {e}"
                )
                if attempt <= self.retries:
                    time.sleep(self.sleep_base_s * attempt)
                    continue
                break

        raise ModelNotReadyError(f"LLM generation failed after retries: {last_err}") from last_err


def build_generator(logger: Optional[logging.Logger] = None) -> Generator:
    client = OpenAI(api_key=require_env("OPENAI_API_KEY"))
    return Generator(
        client=client,
        model=settings.LLM_MODEL,
        temperature=settings.LLM_TEMPERATURE,
        max_output_tokens=settings.LLM_MAX_OUTPUT_TOKENS,
        timeout_s=settings.LLM_TIMEOUT_S,
        retries=settings.LLM_RETRIES,
        logger=logger,
    )
