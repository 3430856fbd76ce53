"""
Retrying extractor.

Runs a bounded number of attempts against an external model and returns a
schema-validated value. The retry policy is data: RetryPolicy.plans() yields
one AttemptPlan per attempt (baseline first, then strict), and exhausting
the plans is the transition to the deterministic fallback.

extract() never raises for upstream problems. Transport failures, timeouts,
unparsable text and schema mismatches each count as one failed attempt.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Generic, Iterator, List, Optional, Protocol, Tuple, Type, TypeVar

from pydantic import ValidationError

from . import repair
from .errors import ServerMisconfigured, UpstreamError, UpstreamTransportFailure
from .schemas import ExtractionSchema

logger = logging.getLogger("genledger.extractor")

T = TypeVar("T", bound=ExtractionSchema)

STRICT_DIRECTIVE = (
    "Return ONLY one JSON object that matches the schema. "
    "No markdown, no code fences, no comments, no prose."
)


class Provenance(Enum):
    """Where an extracted value came from."""
    FROM_MODEL = "from_model"
    FROM_FALLBACK = "from_fallback"


class Strictness(Enum):
    """Instruction level for one attempt."""
    BASELINE = "baseline"
    STRICT = "strict"


@dataclass(frozen=True)
class PromptContext:
    """What the caller wants extracted.

    Args:
        system: Task instructions for the model
        user: User-supplied content (question, notes, image description)
        language: Optional language hint, also used by fallbacks
    """
    system: str
    user: str
    language: Optional[str] = None


@dataclass(frozen=True)
class Prompt:
    """Fully built instruction for one model call."""
    system: str
    user: str


@dataclass(frozen=True)
class SamplingParams:
    temperature: float
    max_output_tokens: int


@dataclass(frozen=True)
class AttemptPlan:
    """Everything that differs between attempts."""
    attempt: int
    strictness: Strictness
    prompt: Prompt
    sampling: SamplingParams


class ModelClient(Protocol):
    """Generative model capability. May raise on transport or timeout."""

    def complete(
        self,
        prompt: Prompt,
        schema_hint: str,
        sampling: SamplingParams,
        timeout: float,
    ) -> str: ...


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy for extraction."""
    max_attempts: int = 3
    base_temperature: float = 0.2
    strict_temperature: float = 0.0
    timeout_seconds: float = 12.0
    max_output_tokens: int = 700
    strict_directive: str = STRICT_DIRECTIVE

    def __post_init__(self):
        """Validate policy values."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_output_tokens <= 0:
            raise ValueError("max_output_tokens must be > 0")
        for name in ("base_temperature", "strict_temperature"):
            if not 0 <= getattr(self, name) <= 2:
                raise ValueError(f"{name} must be between 0 and 2")

    def plan(self, attempt: int, context: PromptContext) -> AttemptPlan:
        """Build the plan for attempt number ``attempt`` (0-based)."""
        if attempt == 0:
            return AttemptPlan(
                attempt=0,
                strictness=Strictness.BASELINE,
                prompt=Prompt(system=context.system, user=context.user),
                sampling=SamplingParams(self.base_temperature, self.max_output_tokens),
            )
        system = "\n".join(part for part in (context.system, self.strict_directive) if part)
        return AttemptPlan(
            attempt=attempt,
            strictness=Strictness.STRICT,
            prompt=Prompt(system=system, user=context.user),
            sampling=SamplingParams(self.strict_temperature, self.max_output_tokens),
        )

    def plans(self, context: PromptContext) -> Iterator[AttemptPlan]:
        for attempt in range(self.max_attempts):
            yield self.plan(attempt, context)


@dataclass(frozen=True)
class ExtractionResult(Generic[T]):
    """A validated value tagged with its provenance."""
    value: T
    provenance: Provenance
    attempts: int
    errors: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def from_model(self) -> bool:
        return self.provenance is Provenance.FROM_MODEL


def schema_hint_for(schema: Type[ExtractionSchema]) -> str:
    """JSON Schema text handed to the model client."""
    return json.dumps(schema.model_json_schema(), ensure_ascii=False, sort_keys=True)


class RetryingExtractor:
    """Turns unreliable model output into an ExtractionResult."""

    def __init__(self, client: ModelClient, policy: Optional[RetryPolicy] = None):
        self.client = client
        self.policy = policy or RetryPolicy()

    def extract(
        self,
        context: PromptContext,
        schema: Type[T],
        max_attempts: Optional[int] = None,
    ) -> ExtractionResult[T]:
        """Extract a value of shape ``schema``.

        Args:
            context: Prompt context
            schema: Declared shape to validate against
            max_attempts: Overrides the policy's attempt budget

        Returns:
            ExtractionResult from the model, or the schema's fallback

        Raises:
            ServerMisconfigured: If the model client lacks its configuration
        """
        policy = self.policy if max_attempts is None else replace(self.policy, max_attempts=max_attempts)
        hint = schema_hint_for(schema)
        errors: List[str] = []

        for plan in policy.plans(context):
            try:
                value = self._attempt(plan, schema, hint, policy.timeout_seconds)
            except ServerMisconfigured:
                raise
            except (UpstreamError, ValidationError) as e:
                reason = f"{type(e).__name__}: {e}"
                errors.append(reason)
                logger.warning(
                    f"Extraction attempt {plan.attempt + 1}/{policy.max_attempts} "
                    f"for {schema.__name__} failed ({plan.strictness.value}): {reason}"
                )
                continue
            return ExtractionResult(
                value=value,
                provenance=Provenance.FROM_MODEL,
                attempts=plan.attempt + 1,
                errors=tuple(errors),
            )

        logger.warning(
            f"Using fallback {schema.__name__} after {policy.max_attempts} failed attempts"
        )
        return ExtractionResult(
            value=schema.fallback(context),
            provenance=Provenance.FROM_FALLBACK,
            attempts=policy.max_attempts,
            errors=tuple(errors),
        )

    def _attempt(self, plan: AttemptPlan, schema: Type[T], hint: str, timeout: float) -> T:
        try:
            raw = self.client.complete(plan.prompt, hint, plan.sampling, timeout)
        except (UpstreamError, ServerMisconfigured):
            raise
        except Exception as e:
            raise UpstreamTransportFailure(f"model call failed: {e}") from e
        return schema.model_validate(repair.parse(raw))
