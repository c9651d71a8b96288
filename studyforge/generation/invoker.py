"""
Generation invoker.

``StudySetGenerator`` is the capability the pipelines depend on. The default
implementation calls Gemini through ``google-generativeai``; every call is
wrapped in the caller-side retry policy and surfaces failures as
``GenerationError``.

Usage:
    generator = GeminiStudySetGenerator()
    result = generator.generate_study_set(corpus, {"flashcardsTarget": 12})
    result.data.flashcards, result.tokens_used
"""
from __future__ import annotations

import time
from typing import Any, Callable, Protocol

from loguru import logger

from config import get_settings
from studyforge.errors import GenerationError, JobInputError
from studyforge.generation.prompts import (
    STRUCTURED_MODE_PROMPTS,
    TEXT_MODE_PROMPTS,
    build_user_message,
)
from studyforge.generation.retry import RetryConfig, retry_with_backoff
from studyforge.generation.schemas import (
    GenerationResult,
    QuizPayload,
    RevisionNotePayload,
    StudySetPayload,
    parse_structured,
)

TEXT_MODE_MAX_TOKENS = 1000


class StudySetGenerator(Protocol):
    """Generative capability consumed by the job pipelines."""

    def generate_study_set(
        self, text: str, metadata: dict[str, Any] | None = None
    ) -> GenerationResult[StudySetPayload]: ...

    def generate_quiz(
        self, text: str, metadata: dict[str, Any] | None = None
    ) -> GenerationResult[QuizPayload]: ...

    def generate_revision_note(
        self, text: str, metadata: dict[str, Any] | None = None
    ) -> GenerationResult[RevisionNotePayload]: ...

    def run_text_mode(self, mode: str, text: str) -> GenerationResult[str]: ...


class GeminiStudySetGenerator:
    """Gemini-backed study set generator."""

    def __init__(
        self,
        api_key: str | None = None,
        model_name: str | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], object] = time.sleep,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.gemini_api_key
        self.model_name = model_name or settings.ai_model
        self.temperature = settings.ai_temperature if temperature is None else temperature
        self.max_output_tokens = max_output_tokens or settings.ai_max_output_tokens
        self.retry_config = retry_config or RetryConfig.from_settings()
        self._sleep = sleep

        if not self.api_key:
            raise ValueError("Gemini API key required (set GEMINI_API_KEY)")

        self._clients: dict[str, Any] = {}
        logger.debug("GeminiStudySetGenerator initialized (model={})", self.model_name)

    def _client(self, system_prompt: str):
        """Lazy-load one Gemini model per system prompt."""
        client = self._clients.get(system_prompt)
        if client is None:
            import google.generativeai as genai

            genai.configure(api_key=self.api_key)
            client = genai.GenerativeModel(
                model_name=self.model_name,
                system_instruction=system_prompt,
            )
            self._clients[system_prompt] = client
        return client

    # =========================================================================
    # Public API
    # =========================================================================

    def generate_study_set(
        self, text: str, metadata: dict[str, Any] | None = None
    ) -> GenerationResult[StudySetPayload]:
        """Flashcards, quiz questions and summary notes from a corpus."""
        return self._run_structured("collection", text, metadata, StudySetPayload)

    def generate_quiz(
        self, text: str, metadata: dict[str, Any] | None = None
    ) -> GenerationResult[QuizPayload]:
        return self._run_structured("quiz", text, metadata, QuizPayload)

    def generate_revision_note(
        self, text: str, metadata: dict[str, Any] | None = None
    ) -> GenerationResult[RevisionNotePayload]:
        return self._run_structured("fiche", text, metadata, RevisionNotePayload)

    def run_text_mode(self, mode: str, text: str) -> GenerationResult[str]:
        """Rewrite, correct, translate or summarize text."""
        system_prompt = TEXT_MODE_PROMPTS.get(mode)
        if system_prompt is None:
            raise JobInputError(f"Unsupported text mode: {mode}")

        result = self._call(system_prompt, text, json_output=False, max_tokens=TEXT_MODE_MAX_TOKENS, label=mode)
        result.data = result.raw
        return result

    # =========================================================================
    # Internals
    # =========================================================================

    def _run_structured(self, mode: str, text: str, metadata: dict[str, Any] | None, model):
        message = build_user_message(mode, text, metadata)
        result = self._call(
            STRUCTURED_MODE_PROMPTS[mode],
            message,
            json_output=True,
            max_tokens=self.max_output_tokens,
            label=mode,
        )
        result.data = parse_structured(result.raw, model)
        return result

    def _call(
        self,
        system_prompt: str,
        message: str,
        json_output: bool,
        max_tokens: int,
        label: str,
    ) -> GenerationResult[Any]:
        generation_config: dict[str, Any] = {
            "temperature": self.temperature,
            "max_output_tokens": max_tokens,
        }
        if json_output:
            generation_config["response_mime_type"] = "application/json"

        def attempt() -> GenerationResult[Any]:
            try:
                response = self._client(system_prompt).generate_content(
                    message,
                    generation_config=generation_config,
                )
                text = (response.text or "").strip()
            except Exception as exc:
                status = getattr(exc, "code", None)
                raise GenerationError(
                    f"Gemini {label} call failed: {exc}",
                    status_code=status if isinstance(status, int) else None,
                ) from exc

            if not text:
                raise GenerationError(f"Gemini returned an empty {label} response")
            return _to_result(response, text, self.model_name)

        started = time.monotonic()
        result = retry_with_backoff(attempt, self.retry_config, sleep=self._sleep, label=f"Gemini {label}")
        logger.info(
            "Gemini {} call finished in {:.1f}s ({} tokens)",
            label,
            time.monotonic() - started,
            result.tokens_used,
        )
        return result


def _to_result(response: Any, text: str, model_name: str) -> GenerationResult[Any]:
    usage = getattr(response, "usage_metadata", None)
    prompt_tokens = getattr(usage, "prompt_token_count", None)
    completion_tokens = getattr(usage, "candidates_token_count", None)
    total = getattr(usage, "total_token_count", None) or (prompt_tokens or 0) + (completion_tokens or 0)
    return GenerationResult(
        data=text,
        tokens_used=total,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        model=model_name,
        raw=text,
    )


def generator_from_settings() -> StudySetGenerator:
    """Default generator for workers."""
    return GeminiStudySetGenerator()
