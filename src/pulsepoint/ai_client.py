"""OpenRouter chat-completion client for problem extraction, clustering and ideas.

The three operations never raise: provider failures and malformed output
degrade to an empty result. Model selection happens once per session.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx
from langchain_core.language_models import BaseChatModel
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI
from pydantic import ValidationError

from .budget import OperationBudget
from .config import ConfigurationError, Settings
from .http_client import create_http_client
from .logging_config import get_logger
from .models import BusinessIdea, ProblemCluster
from .prompts import (
    CLUSTER_SYSTEM_PROMPT,
    CLUSTER_USER_TEMPLATE,
    EXTRACT_SYSTEM_PROMPT,
    EXTRACT_USER_TEMPLATE,
    IDEA_SYSTEM_PROMPT,
    IDEA_USER_TEMPLATE,
)
from .retry_policy import llm_retry

logger = get_logger(__name__)

T = TypeVar("T")

# Cheap models tried in order when the catalog lists them
PREFERRED_MODELS: tuple[str, ...] = (
    "openai/gpt-4o-mini",
    "google/gemini-flash-1.5",
    "meta-llama/llama-3.1-8b-instruct",
    "anthropic/claude-3-haiku",
)
DEFAULT_MODEL = "openai/gpt-4o-mini"
MIN_CONTEXT_LENGTH = 16_000
MAX_PROMPT_COST = 1e-6  # USD per prompt token

MAX_EXTRACT_CHARS = 3000
MAX_PROBLEMS_PER_TEXT = 5

LLM_TIMEOUT = 60.0

OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://pulsepoint-ideas.pages.dev",
    "X-Title": "PulsePoint Ideas",
}

EXTRACT_PROMPT = ChatPromptTemplate.from_messages([
    ("system", EXTRACT_SYSTEM_PROMPT),
    ("user", EXTRACT_USER_TEMPLATE),
])

CLUSTER_PROMPT = ChatPromptTemplate.from_messages([
    ("system", CLUSTER_SYSTEM_PROMPT),
    ("user", CLUSTER_USER_TEMPLATE),
])

IDEA_PROMPT = ChatPromptTemplate.from_messages([
    ("system", IDEA_SYSTEM_PROMPT),
    ("user", IDEA_USER_TEMPLATE),
])

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class AIResult(Generic[T]):
    """Outcome of one AI call: ok with a value, or a failure without one."""

    ok: bool
    value: T | None = None

    @classmethod
    def success(cls, value: T) -> AIResult[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls) -> AIResult[T]:
        return cls(ok=False)


def strip_code_fences(text: str) -> str:
    """Return the body of a fenced Markdown block, or the trimmed text."""
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def parse_json_output(text: str) -> AIResult[Any]:
    """Parse model output as JSON."""
    try:
        return AIResult.success(json.loads(strip_code_fences(text)))
    except ValueError:
        return AIResult.failure()


def _prompt_cost(model: dict) -> float | None:
    try:
        return float((model.get("pricing") or {}).get("prompt"))
    except (TypeError, ValueError):
        return None


def select_model(catalog: list[dict]) -> str | None:
    """Pick a model from the provider catalog.

    Args:
        catalog: Entries of the /models response

    Returns:
        The first preferred model listed, else the cheapest model meeting the
        context and price limits, else None
    """
    available = {m.get("id") for m in catalog if isinstance(m, dict)}
    for model_id in PREFERRED_MODELS:
        if model_id in available:
            return model_id

    candidates = []
    for model in catalog:
        if not isinstance(model, dict) or not model.get("id"):
            continue
        cost = _prompt_cost(model)
        context = model.get("context_length") or 0
        if cost is None or cost > MAX_PROMPT_COST or context < MIN_CONTEXT_LENGTH:
            continue
        candidates.append((cost, model["id"]))

    if not candidates:
        return None
    return min(candidates)[1]


class OpenRouterSession:
    """Per-run AI client. Caches the selected model and the chat model."""

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        base_url: str = "https://openrouter.ai/api/v1",
        budget: OperationBudget | None = None,
        llm: BaseChatModel | None = None,
    ):
        """Initialize the session.

        Args:
            api_key: OpenRouter API key
            model: Model override; the catalog is consulted when None
            base_url: OpenAI-compatible API base URL
            budget: Run budget charged for the catalog lookup
            llm: Prebuilt chat model (skips model resolution)

        Raises:
            ConfigurationError: If no API key is given
        """
        if not api_key:
            raise ConfigurationError("OPENROUTER_API_KEY is not configured")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.budget = budget
        self._model = model
        self._llm = llm

    @classmethod
    def from_settings(cls, settings: Settings, budget: OperationBudget | None = None) -> OpenRouterSession:
        return cls(
            api_key=settings.openrouter_api_key,
            model=settings.openrouter_model,
            base_url=settings.openrouter_base_url,
            budget=budget,
        )

    @property
    def model(self) -> str | None:
        """The resolved model, None until the first call."""
        return self._model

    async def _fetch_catalog(self) -> list[dict]:
        async with create_http_client(
            extra_headers={"Authorization": f"Bearer {self.api_key}"},
        ) as client:
            response = await client.get(f"{self.base_url}/models")
            response.raise_for_status()
            data = response.json().get("data")
        return data if isinstance(data, list) else []

    async def resolve_model(self) -> str:
        """Resolve the model once; later calls return the cached choice."""
        if self._model:
            return self._model

        if self.budget is not None and not self.budget.try_consume("ai_models"):
            self._model = DEFAULT_MODEL
            logger.info("model_selected", model=self._model, source="default_budget")
            return self._model

        try:
            catalog = await self._fetch_catalog()
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning("model_catalog_failed", error=str(e))
            self._model = DEFAULT_MODEL
            source = "default"
        else:
            selected = select_model(catalog)
            self._model = selected or DEFAULT_MODEL
            source = "catalog" if selected else "default"

        logger.info("model_selected", model=self._model, source=source)
        return self._model

    async def _get_llm(self) -> BaseChatModel:
        if self._llm is None:
            model = await self.resolve_model()
            self._llm = ChatOpenAI(
                model=model,
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=LLM_TIMEOUT,
                max_retries=0,
                default_headers=OPENROUTER_HEADERS,
            )
        return self._llm

    @llm_retry
    async def _invoke(
        self,
        prompt: ChatPromptTemplate,
        variables: dict,
        temperature: float,
        max_tokens: int,
    ) -> str:
        llm = await self._get_llm()
        chain = prompt | llm.bind(temperature=temperature, max_tokens=max_tokens)
        message = await chain.ainvoke(variables)
        content = message.content
        return content if isinstance(content, str) else json.dumps(content)

    async def _complete(
        self,
        operation: str,
        prompt: ChatPromptTemplate,
        variables: dict,
        temperature: float,
        max_tokens: int,
    ) -> AIResult[Any]:
        """Run one prompt and parse its JSON output."""
        try:
            text = await self._invoke(prompt, variables, temperature, max_tokens)
        except Exception as e:
            logger.warning("ai_call_failed", operation=operation, error=str(e)[:200])
            return AIResult.failure()

        result = parse_json_output(text)
        if not result.ok:
            logger.warning("ai_output_unparseable", operation=operation, preview=text[:120])
        return result

    async def extract_problems(self, text: str, source_label: str) -> list[str]:
        """Extract up to five problem statements from a post or comment.

        Args:
            text: Content to analyze (truncated to MAX_EXTRACT_CHARS)
            source_label: Short description, e.g. "post in r/saas"

        Returns:
            Problem statements; empty on any failure
        """
        result = await self._complete(
            "extract",
            EXTRACT_PROMPT,
            {"source": source_label, "text": text[:MAX_EXTRACT_CHARS]},
            temperature=0.5,
            max_tokens=1000,
        )
        if not result.ok or not isinstance(result.value, list):
            return []

        statements = [s.strip() for s in result.value if isinstance(s, str) and s.strip()]
        logger.debug("problems_extracted", source=source_label, count=len(statements))
        return statements[:MAX_PROBLEMS_PER_TEXT]

    async def cluster_problems(self, statements: list[str]) -> list[ProblemCluster]:
        """Group statements into labeled clusters with normalized severity.

        Returns:
            Clusters; empty for empty input (no call made) or on failure
        """
        if not statements:
            return []

        result = await self._complete(
            "cluster",
            CLUSTER_PROMPT,
            {
                "count": len(statements),
                "problems": "\n".join(f"{i}. {s}" for i, s in enumerate(statements)),
            },
            temperature=0.4,
            max_tokens=2000,
        )
        payload = result.value
        if isinstance(payload, dict):
            payload = payload.get("clusters")
        if not result.ok or not isinstance(payload, list):
            return []

        clusters = []
        for item in payload:
            try:
                clusters.append(ProblemCluster.model_validate(item))
            except ValidationError as e:
                logger.debug("cluster_dropped", error=str(e)[:200])

        logger.info("problems_clustered", statements=len(statements), clusters=len(clusters))
        return clusters

    async def generate_idea(self, cluster: ProblemCluster) -> BusinessIdea | None:
        """Generate a micro-SaaS idea for one cluster, or None on failure."""
        result = await self._complete(
            "idea",
            IDEA_PROMPT,
            {
                "title": cluster.title,
                "summary": cluster.summary,
                "frequency": cluster.frequency,
                "severity": cluster.severity.value,
            },
            temperature=0.7,
            max_tokens=1500,
        )
        if not result.ok:
            return None

        try:
            return BusinessIdea.model_validate(result.value)
        except ValidationError as e:
            logger.warning("idea_invalid", cluster=cluster.title, error=str(e)[:200])
            return None
