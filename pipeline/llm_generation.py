from __future__ import annotations

import json
import logging
import os
import re
import urllib.request
from typing import Any, Dict, List, Optional

from pipeline.errors import ProviderError
from pipeline.models import QuizItem, VideoCandidate, VideoSummary
from pipeline.normalize import TopicPairKey
from pipeline.retry_utils import (
    MaxRetriesExceeded,
    NonRetryableError,
    RetryConfig,
    retry_config_from_env,
    with_retry,
)
from pipeline.schema_validator import SchemaValidator


LOGGER = logging.getLogger("learnhub.llm")

SUPPORTED_PROVIDERS = {"groq", "openai", "gemini"}

_CHAT_BASE_URLS = {
    "groq": "https://api.groq.com/openai/v1",
    "openai": "https://api.openai.com/v1",
}
_API_KEY_ENV = {
    "groq": "GROQ_API_KEY",
    "openai": "OPENAI_API_KEY",
}
DEFAULT_MODELS = {
    "groq": "llama-3.1-8b-instant",
    "openai": "gpt-4o-mini",
    "gemini": "gemini-1.5-flash",
}

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def sanitize_llm_output(raw_text: str) -> Any:
    """Strip markdown code fences and control characters, then parse JSON."""
    cleaned = _CODE_FENCE.sub("", (raw_text or "").strip()).strip()
    cleaned = cleaned.replace("\u0000", "")
    try:
        return json.loads(cleaned, strict=False)
    except json.JSONDecodeError as e:
        raise ValueError(f"LLM failed to return valid JSON: {e}") from e


def _build_summary_prompt(video: VideoCandidate, key: TopicPairKey) -> str:
    return (
        f"You are curating {key.search_term} videos for {key.learning_goal} learners.\n"
        "Return STRICT JSON only, as an object with exactly these keys:\n"
        '{"summary": "<two sentences on what a student will learn>", '
        '"level": "beginner|intermediate|advanced"}\n\n'
        f"Video title: {video.title}\n"
        f"Channel: {video.channel or 'unknown'}\n"
        f"Description: {video.description[:1000]}\n"
    )


def _build_quiz_prompt(video: VideoCandidate, key: TopicPairKey, summary: str, question_count: int) -> str:
    return (
        f"Create {question_count} quiz questions for this {key.search_term} video: \"{video.title}\".\n"
        f"Target audience: {key.learning_goal} level learners.\n"
        f"Video summary: {summary}\n\n"
        "Each question must be clear, specific and have a definitive answer.\n"
        "Return STRICT JSON only, as an object:\n"
        '{"questions": [{"question": "...", "answer": "...", "difficulty": "easy|medium|hard"}]}\n'
    )


class LLMClient:
    """Summary and quiz generation against a hosted LLM.

    Every failure mode (missing credentials, transport errors after retries,
    malformed output) is raised as ``ProviderError`` so the orchestrator can
    fall back to templates.
    """

    def __init__(
        self,
        provider: str = "groq",
        model: Optional[str] = None,
        timeout: int = 90,
        question_count: int = 3,
        retry_config: Optional[RetryConfig] = None,
        validator: Optional[SchemaValidator] = None,
    ) -> None:
        provider_key = (provider or "").strip().lower()
        if provider_key not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported LLM provider: {provider}")
        self.provider = provider_key
        self.model = model or DEFAULT_MODELS[provider_key]
        self.timeout = timeout
        self.question_count = question_count
        self.retry_config = retry_config or retry_config_from_env()
        self.validator = validator or SchemaValidator()

    def _request_chat_completion(self, prompt: str, temperature: float, max_tokens: int) -> str:
        api_key = _require_env(_API_KEY_ENV[self.provider])
        base_url = os.getenv("LH_LLM_BASE_URL", _CHAT_BASE_URLS[self.provider]).rstrip("/")
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        }

        def make_request() -> Dict[str, Any]:
            req = urllib.request.Request(
                f"{base_url}/chat/completions",
                data=json.dumps(payload).encode("utf-8"),
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                method="POST",
            )
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))

        response = with_retry(
            make_request,
            config=self.retry_config,
            operation_name=f"{self.provider} chat completion",
        )
        try:
            return response["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError("Chat completion response missing message content.") from e

    def _request_gemini(self, prompt: str, temperature: float, max_tokens: int) -> str:
        try:
            import vertexai
            from vertexai.generative_models import GenerationConfig, GenerativeModel
        except Exception as exc:
            raise RuntimeError(
                "google-cloud-aiplatform is required for provider=gemini. "
                "Install with `pip install google-cloud-aiplatform`."
            ) from exc

        project_id = _require_env("GCP_PROJECT_ID")
        try:
            vertexai.init(project=project_id, location=os.getenv("GCP_LOCATION", "us-central1"))
            response = GenerativeModel(self.model).generate_content(
                prompt,
                generation_config=GenerationConfig(
                    response_mime_type="application/json",
                    temperature=temperature,
                    max_output_tokens=max_tokens,
                ),
            )
            return response.text
        except Exception as e:
            raise RuntimeError(f"Vertex AI generation failed: {e}") from e

    def _complete_json(self, prompt: str, schema_name: str, temperature: float, max_tokens: int) -> Any:
        try:
            if self.provider == "gemini":
                raw_text = self._request_gemini(prompt, temperature, max_tokens)
            else:
                raw_text = self._request_chat_completion(prompt, temperature, max_tokens)
            data = sanitize_llm_output(raw_text)
            if schema_name == "quiz_items.schema.json" and isinstance(data, list):
                data = {"questions": data}
            self.validator.validate(data, schema_name)
            return data
        except (RuntimeError, ValueError, NonRetryableError, MaxRetriesExceeded) as exc:
            LOGGER.warning(
                "llm.request_failed",
                extra={"provider": self.provider, "model": self.model, "error": str(exc)},
            )
            raise ProviderError(f"{self.provider} LLM request failed: {exc}") from exc

    def summarize(self, video: VideoCandidate, key: TopicPairKey) -> VideoSummary:
        data = self._complete_json(
            _build_summary_prompt(video, key),
            "video_summary.schema.json",
            temperature=0.3,
            max_tokens=400,
        )
        return VideoSummary(summary=data["summary"].strip(), level=data["level"].strip().capitalize())

    def quiz(self, video: VideoCandidate, key: TopicPairKey, summary: str) -> List[QuizItem]:
        data = self._complete_json(
            _build_quiz_prompt(video, key, summary, self.question_count),
            "quiz_items.schema.json",
            temperature=0.4,
            max_tokens=1000,
        )
        return [
            QuizItem(
                question=item["question"].strip(),
                answer=item["answer"].strip(),
                difficulty=item.get("difficulty") or "medium",
            )
            for item in data["questions"]
        ]
