"""Async OpenAI client wrapper and related value objects.

Classes:
    EmbeddingBatch: Collected embedding vectors plus metadata returned from the embeddings API.
    ThemeName: Name and description generated for one cluster.
    OpenAIService: Handles embeddings, theme naming, and statement synthesis with retry semantics.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from openai import AsyncOpenAI
from tenacity import retry, stop_after_attempt, wait_random_exponential

from hive_analysis.core.config import get_settings
from hive_analysis.utils.text import normalise_response_text

THEME_SYSTEM_PROMPT = "You are a helpful assistant that analyzes user feedback and identifies themes."
SYNTHESIS_SYSTEM_PROMPT = (
    "You are a helpful assistant that consolidates similar user feedback while preserving all distinct points. "
    "You never add new information or opinions."
)

_LOGGER = logging.getLogger(__name__)
_RETRY_ATTEMPTS = get_settings().external_retry_attempts


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    model: str
    dim: int
    model_revision: str | None = None
    provider: str = "openai"


@dataclass(slots=True)
class ThemeName:
    name: str
    description: str


def fallback_theme(cluster_index: int, size: int) -> ThemeName:
    return ThemeName(name=f"Theme {cluster_index + 1}", description=f"{size} related responses")


class OpenAIService:
    def __init__(self, client: Optional[AsyncOpenAI] = None) -> None:
        settings = get_settings()
        api_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
        if client is not None:
            self._client = client
        elif api_key:
            self._client = AsyncOpenAI(api_key=api_key)
        else:
            self._client = None
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    @property
    def chat_model(self) -> str:
        return self._settings.openai_chat_model

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            raise RuntimeError("OpenAI client not configured. Set OPENAI_API_KEY.")
        return self._client

    async def embed_texts(
        self,
        texts: Iterable[str],
        *,
        model: Optional[str] = None,
    ) -> EmbeddingBatch:
        docs = [normalise_response_text(text) or " " for text in texts]
        chosen_model = model or self._settings.openai_embedding_model
        if not docs:
            return EmbeddingBatch(vectors=[], model=chosen_model, dim=0)

        client = self._require_client()
        batch_size = max(1, self._settings.embedding_batch_size)
        vectors: list[list[float]] = []
        dim = 0
        model_revision: str | None = None

        for start in range(0, len(docs), batch_size):
            chunk = docs[start : start + batch_size]
            response = await _retry_embeddings(client, dict(model=chosen_model, input=chunk))
            # The API may return items out of order; index is authoritative.
            ordered = sorted(response.data, key=lambda item: item.index)
            chunk_vectors = [list(item.embedding) for item in ordered]
            vectors.extend(chunk_vectors)
            if not dim and chunk_vectors:
                dim = len(chunk_vectors[0])
            response_model = getattr(response, "model", None)
            if response_model:
                model_revision = response_model
            _LOGGER.debug("Embedded batch %s-%s of %s", start, start + len(chunk), len(docs))

        return EmbeddingBatch(
            vectors=vectors,
            model=chosen_model,
            dim=dim,
            model_revision=model_revision,
            provider="openai",
        )

    async def name_theme(self, cluster_index: int, sample_texts: Sequence[str]) -> ThemeName:
        if not sample_texts:
            return ThemeName(name="Empty Cluster", description="No responses in this cluster")

        client = self._require_client()
        numbered = "\n".join(f"{idx + 1}. {text}" for idx, text in enumerate(sample_texts))
        prompt = (
            "Analyze these user responses and create a concise theme:\n\n"
            f"Responses:\n{numbered}\n\n"
            "Generate:\n"
            "1. A short theme name (2-5 words)\n"
            "2. A brief description (1-2 sentences) explaining the common thread\n\n"
            'Respond in JSON format:\n{\n  "name": "Theme Name",\n  "description": "Brief description of the theme"\n}'
        )
        content = await self._json_chat(client, THEME_SYSTEM_PROMPT, prompt)
        data = _parse_json_object(content)
        if data is None:
            _LOGGER.warning("Theme naming returned malformed content for cluster %s", cluster_index)
            return fallback_theme(cluster_index, len(sample_texts))

        name = data.get("name")
        description = data.get("description")
        return ThemeName(
            name=name.strip() if isinstance(name, str) and name.strip() else f"Theme {cluster_index + 1}",
            description=(
                description.strip()
                if isinstance(description, str) and description.strip()
                else "A collection of related responses"
            ),
        )

    async def synthesize(self, texts: Sequence[str]) -> str:
        if not texts:
            return ""
        if len(texts) == 1:
            return texts[0]

        client = self._require_client()
        quoted = "\n".join(f'{idx + 1}. "{text}"' for idx, text in enumerate(texts))
        prompt = (
            "You are consolidating similar user feedback responses into a single statement.\n\n"
            f"These responses all express similar ideas:\n{quoted}\n\n"
            "Create a single consolidated statement that:\n"
            "1. Preserves ALL distinct points made across the responses\n"
            "2. Uses clear, neutral language\n"
            "3. Does NOT add new information, opinions, or interpretations\n"
            "4. Maintains the original sentiment and meaning\n"
            "5. Is concise but complete (1-3 sentences)\n\n"
            'Respond in JSON format:\n{\n  "statement": "The consolidated statement here"\n}'
        )
        content = await self._json_chat(client, SYNTHESIS_SYSTEM_PROMPT, prompt)
        data = _parse_json_object(content)
        statement = data.get("statement") if data else None
        if not isinstance(statement, str) or not statement.strip():
            _LOGGER.warning("Statement synthesis returned malformed content; using first response")
            return texts[0]
        return statement.strip()

    async def _json_chat(self, client: AsyncOpenAI, system_prompt: str, user_prompt: str) -> str:
        payload = dict(
            model=self._settings.openai_chat_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format={"type": "json_object"},
            temperature=0.3,
            n=1,
        )
        response = await _retry_chat(client, payload)
        return getattr(response.choices[0].message, "content", "") or ""


def _parse_json_object(content: str) -> dict[str, Any] | None:
    if not content:
        return None
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


@retry(
    wait=wait_random_exponential(multiplier=1, max=20),
    stop=stop_after_attempt(_RETRY_ATTEMPTS),
    reraise=True,
)
async def _retry_chat(client: AsyncOpenAI, payload: dict[str, Any]):
    return await client.chat.completions.create(**payload)


@retry(
    wait=wait_random_exponential(multiplier=1, max=20),
    stop=stop_after_attempt(_RETRY_ATTEMPTS),
    reraise=True,
)
async def _retry_embeddings(client: AsyncOpenAI, payload: dict[str, Any]):
    fallback_model = get_settings().openai_embedding_fallback_model
    try:
        return await client.embeddings.create(**payload)
    except Exception:
        if payload["model"] == fallback_model:
            raise
        _LOGGER.warning("Embedding model %s failed; retrying with %s", payload["model"], fallback_model)
        return await client.embeddings.create(**{**payload, "model": fallback_model})
