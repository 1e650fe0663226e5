"""
Single structured generative call with retry, cost accounting and
cancellation.

A call sends a system and user prompt to the model provider, parses the
response as JSON and validates it against a pydantic schema. Malformed
output is retried immediately; rate limits are retried after a delay;
anything else fails the call at once.
"""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel

from config.settings import GenerationSettings, config_manager
from models.data_models import GenerationResult, TokenUsage
from .error_handler import (
    FatalGenerationError, GenerationCancelledError, MediaPlanError,
    RateLimitError, RetryConfig, StructuralMismatchError
)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class ProviderResponse:
    """Raw response from a model provider."""
    content: Optional[str]
    usage: TokenUsage
    model: str
    finish_reason: Optional[str] = None


class ModelProvider(ABC):
    """Boundary to the language model service."""

    @abstractmethod
    async def generate(self, system_prompt: str, user_prompt: str,
                       schema: Type[BaseModel], settings: GenerationSettings) -> ProviderResponse:
        """
        Request one structured completion.

        Raises:
            RateLimitError: When the provider throttles the request
            FatalGenerationError: For any other provider failure
        """


class OpenAIProvider(ModelProvider):
    """ModelProvider backed by the OpenAI chat completions API in JSON mode."""

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None,
                 skip_openai_init: bool = False):
        """
        Initialize the OpenAI provider.

        Args:
            api_key: API key; read from configuration when omitted
            timeout: Per-request timeout in seconds
            skip_openai_init: Skip OpenAI client initialization (for testing)
        """
        self.client = None
        self.timeout = timeout
        if not skip_openai_init:
            self._initialize_openai_client(api_key)

    def _initialize_openai_client(self, api_key: Optional[str]):
        """Initialize OpenAI client with API key."""
        try:
            api_key = api_key or config_manager.get_openai_api_key()
            if self.timeout is None:
                self.timeout = config_manager.get_request_timeout()
            self.client = AsyncOpenAI(api_key=api_key, timeout=self.timeout)
            logger.info("OpenAI client initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize OpenAI client: {str(e)}")
            raise

    @staticmethod
    def build_system_prompt(system_prompt: str, schema: Type[BaseModel]) -> str:
        """Append the JSON schema the response must satisfy."""
        return (
            f"{system_prompt}\n\n"
            "Respond with a single JSON object that validates against this JSON schema. "
            "Do not add fields that the schema does not define.\n"
            f"{json.dumps(schema.model_json_schema())}"
        )

    async def generate(self, system_prompt: str, user_prompt: str,
                       schema: Type[BaseModel], settings: GenerationSettings) -> ProviderResponse:
        if not self.client:
            raise FatalGenerationError("OpenAI client not initialized. Please check API key configuration.")

        try:
            response = await self.client.chat.completions.create(
                model=settings.model,
                messages=[
                    {"role": "system", "content": self.build_system_prompt(system_prompt, schema)},
                    {"role": "user", "content": user_prompt}
                ],
                temperature=settings.temperature,
                max_tokens=settings.max_output_tokens,
                response_format={"type": "json_object"}
            )
        except openai.RateLimitError as e:
            raise RateLimitError(f"OpenAI rate limit: {str(e)}") from e
        except openai.APIStatusError as e:
            if e.status_code == 429:
                raise RateLimitError(f"OpenAI rate limit: {str(e)}") from e
            raise FatalGenerationError(f"OpenAI API error ({e.status_code}): {str(e)}", cause=e) from e
        except openai.APITimeoutError as e:
            raise FatalGenerationError(f"OpenAI request timed out: {str(e)}", cause=e) from e
        except openai.APIConnectionError as e:
            raise FatalGenerationError(f"Failed to connect to OpenAI: {str(e)}", cause=e) from e
        except openai.OpenAIError as e:
            raise FatalGenerationError(f"OpenAI error: {str(e)}", cause=e) from e

        usage = TokenUsage()
        if getattr(response, 'usage', None):
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0
            )

        if not response.choices:
            return ProviderResponse(content=None, usage=usage, model=response.model or settings.model)

        choice = response.choices[0]
        return ProviderResponse(
            content=choice.message.content,
            usage=usage,
            model=response.model or settings.model,
            finish_reason=choice.finish_reason
        )


# --- JSON parsing -----------------------------------------------------------------

def _clean_json_string(json_str: str) -> str:
    """
    Clean common JSON formatting issues in model responses.

    Args:
        json_str: Raw JSON string

    Returns:
        Cleaned JSON string
    """
    # Remove markdown code block markers
    json_str = re.sub(r'```(?:json)?\s*', '', json_str)
    json_str = json_str.strip()

    # Fix trailing commas
    json_str = re.sub(r',(\s*[}\]])', r'\1', json_str)

    return json_str


def _extract_json_from_text(text: str) -> Optional[str]:
    """Extract the outermost JSON object from text with surrounding prose."""
    for match in re.findall(r'\{.*\}', text, re.DOTALL):
        try:
            json.loads(match)
            return match
        except json.JSONDecodeError:
            continue
    return None


def parse_json_response(content: str) -> Dict[str, Any]:
    """
    Parse a JSON object from a model response.

    Raises:
        ValueError: If no JSON object can be recovered
    """
    try:
        parsed = json.loads(_clean_json_string(content))
    except json.JSONDecodeError as e:
        extracted = _extract_json_from_text(content)
        if not extracted:
            raise ValueError(f"Invalid JSON format: {str(e)}") from e
        parsed = json.loads(extracted)

    if not isinstance(parsed, dict):
        raise ValueError("Response is not a JSON object")
    return parsed


# --- Cost accounting --------------------------------------------------------------

@dataclass
class CallRecord:
    """Accounting entry for one provider attempt."""
    section: str
    model: str
    usage: TokenUsage
    cost: float


@dataclass
class CostTracker:
    """Accumulates token usage and cost across all attempts of a run."""
    records: List[CallRecord] = field(default_factory=list)

    @staticmethod
    def calculate_cost(model: str, usage: TokenUsage) -> float:
        input_rate, output_rate, request_fee = config_manager.get_model_pricing(model)
        return (usage.input_tokens / 1_000_000 * input_rate
                + usage.output_tokens / 1_000_000 * output_rate
                + request_fee)

    def track_model_cost(self, section: str, model: str, usage: TokenUsage) -> float:
        """
        Record one attempt and return its cost.

        Args:
            section: Section the attempt belongs to
            model: Model that served it
            usage: Token counts reported by the provider

        Returns:
            Cost of the attempt in USD
        """
        cost = self.calculate_cost(model, usage)
        self.records.append(CallRecord(section=section, model=model, usage=usage, cost=cost))
        logger.debug(f"Tracked cost for {section} on {model}: ${cost:.4f} "
                     f"({usage.input_tokens} in + {usage.output_tokens} out tokens)")
        return cost

    @property
    def total_cost(self) -> float:
        return sum(r.cost for r in self.records)

    @property
    def total_tokens(self) -> int:
        return sum(r.usage.total_tokens for r in self.records)

    @property
    def models_used(self) -> List[str]:
        return sorted({r.model for r in self.records})

    def get_cost_analysis(self) -> Dict[str, Any]:
        """Cost broken down per section."""
        by_section: Dict[str, Dict[str, Any]] = {}
        for record in self.records:
            entry = by_section.setdefault(record.section, {'calls': 0, 'tokens': 0, 'cost': 0.0})
            entry['calls'] += 1
            entry['tokens'] += record.usage.total_tokens
            entry['cost'] += record.cost
        return {
            'total_cost': self.total_cost,
            'total_tokens': self.total_tokens,
            'calls': len(self.records),
            'sections': by_section,
        }


# --- Caller -------------------------------------------------------------------------

class GenerationCaller:
    """
    Runs a structured generative call under the retry policy.

    Schema mismatches (unparseable JSON, failed validation, empty or
    truncated output) are retried immediately up to
    ``schema_max_retries`` times. Rate limits are retried after
    ``retry_config.rate_limit_delay(n)`` seconds up to
    ``rate_limit_max_retries`` times. Every other failure is fatal.
    """

    def __init__(self, provider: ModelProvider, retry_config: Optional[RetryConfig] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """
        Initialize the caller.

        Args:
            provider: Model provider to call
            retry_config: Retry bounds; defaults to RetryConfig()
            sleep: Coroutine used to wait between rate-limit retries
        """
        self.provider = provider
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep

    async def _race(self, awaitable: Awaitable[Any], cancel_event: Optional[asyncio.Event],
                    section: str) -> Any:
        """Await ``awaitable`` unless the cancellation event fires first."""
        if cancel_event is None:
            return await awaitable
        if cancel_event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise GenerationCancelledError(f"Generation of {section} cancelled", section)

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        raise GenerationCancelledError(f"Generation of {section} cancelled", section)

    @staticmethod
    def _validate(response: ProviderResponse, schema: Type[BaseModel]) -> BaseModel:
        if not response.content:
            raise ValueError("Model returned empty content")
        if response.finish_reason == "length":
            raise ValueError("Model output was truncated at the token limit")
        return schema.model_validate(parse_json_response(response.content))

    async def call(self, system_prompt: str, user_prompt: str, schema: Type[BaseModel],
                   settings: GenerationSettings, section: str,
                   cost_tracker: Optional[CostTracker] = None,
                   cancel_event: Optional[asyncio.Event] = None) -> GenerationResult:
        """
        Generate one section.

        Args:
            system_prompt: Role and rules for the model
            user_prompt: Section-specific context and instructions
            schema: Pydantic model the response must validate against
            settings: Model, temperature and output token budget
            section: Section key, used for accounting and error tags
            cost_tracker: Run-level tracker; every attempt is recorded
            cancel_event: Event that aborts the call when set

        Returns:
            GenerationResult with the validated record, summed usage and cost

        Raises:
            StructuralMismatchError: Output still invalid after all schema retries
            RateLimitError: Still throttled after all rate-limit retries
            FatalGenerationError: Any other failure, including cancellation
        """
        tracker = cost_tracker if cost_tracker is not None else CostTracker()
        usage = TokenUsage()
        cost = 0.0
        attempts = 0
        schema_retries = 0
        rate_limit_retries = 0

        while True:
            attempts += 1
            try:
                response = await self._race(
                    self.provider.generate(system_prompt, user_prompt, schema, settings),
                    cancel_event, section
                )
            except RateLimitError as e:
                if rate_limit_retries >= self.retry_config.rate_limit_max_retries:
                    raise RateLimitError(
                        f"Rate limited on {section} after {rate_limit_retries} retries: {e}",
                        section, e.retry_after
                    ) from e
                rate_limit_retries += 1
                delay = self.retry_config.rate_limit_delay(rate_limit_retries)
                logger.warning(f"Rate limited on {section}, retry {rate_limit_retries}/"
                               f"{self.retry_config.rate_limit_max_retries} in {delay:.0f}s")
                await self._race(self._sleep(delay), cancel_event, section)
                continue
            except MediaPlanError as e:
                if getattr(e, 'section', None) is None:
                    e.section = section
                raise
            except Exception as e:
                raise FatalGenerationError(f"Generation of {section} failed: {str(e)}", section, e) from e

            attempt_cost = tracker.track_model_cost(section, response.model, response.usage)
            usage = TokenUsage(usage.input_tokens + response.usage.input_tokens,
                               usage.output_tokens + response.usage.output_tokens)
            cost += attempt_cost

            try:
                data = self._validate(response, schema)
            except ValueError as e:
                if schema_retries >= self.retry_config.schema_max_retries:
                    raise StructuralMismatchError(
                        f"{section} failed schema validation after {attempts} attempt(s): {e}", section
                    ) from e
                schema_retries += 1
                logger.warning(f"Schema mismatch on {section}, retry {schema_retries}/"
                               f"{self.retry_config.schema_max_retries}: {str(e)[:200]}")
                continue

            logger.info(f"Generated {section} with {response.model} in {attempts} attempt(s), "
                        f"{usage.total_tokens} tokens, ${cost:.4f}")
            return GenerationResult(data=data, usage=usage, cost=cost, model=response.model,
                                    attempts=attempts)
