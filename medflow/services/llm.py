import json
import logging
import re
from enum import Enum
from typing import Any, TypeVar

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from medflow.config import (
    ANTHROPIC_API_KEY,
    LLM_DEFAULT_TIER,
    LLM_MODEL_FAST,
    LLM_MODEL_HIGH,
    LLM_MODEL_STANDARD,
    LLM_PROVIDER,
    OPENAI_API_KEY,
)
from medflow.models.ai import (
    ComplaintClassification,
    ConsistencyReport,
    DischargeSummaryDraft,
    OrderSuggestions,
    RoundCrossCheck,
    SOAPDraft,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


_ANTHROPIC_DEFAULTS = {
    "fast": "claude-3-haiku-20240307",
    "standard": "claude-3-5-sonnet-20240620",
    "high": "claude-3-5-sonnet-20240620",
}

_OPENAI_DEFAULTS = {
    "fast": "gpt-4o-mini",
    "standard": "gpt-4o",
    "high": "gpt-4o",
}


class PromptKind(str, Enum):
    CLASSIFY_COMPLAINT = "classify_complaint"
    CONSISTENCY_CHECK = "consistency_check"
    DISCHARGE_SUMMARY = "discharge_summary"
    SUGGEST_ORDERS = "suggest_orders"
    SOAP_DRAFT = "soap_draft"
    ROUND_CROSS_CHECK = "round_cross_check"


_PROMPTS: dict[PromptKind, tuple[str, type[BaseModel], str]] = {
    PromptKind.CLASSIFY_COMPLAINT: (
        "You are a medical triage classifier. Given a chief complaint, return the most likely "
        "department, a suggested triage level (Red, Yellow or Green) and a confidence from 0 to 1.",
        ComplaintClassification,
        "fast",
    ),
    PromptKind.CONSISTENCY_CHECK: (
        "You review a clinical file for internal contradictions across history, general exam, "
        "systemic exam and vitals. Return each problem with its section, severity and a suggested fix. "
        "Return an empty list when there are none.",
        ConsistencyReport,
        "standard",
    ),
    PromptKind.DISCHARGE_SUMMARY: (
        "You draft a structured discharge summary for clinician review from the patient record.",
        DischargeSummaryDraft,
        "high",
    ),
    PromptKind.SUGGEST_ORDERS: (
        "You suggest investigations and orders supported by the clinical file. Do not prescribe.",
        OrderSuggestions,
        "standard",
    ),
    PromptKind.SOAP_DRAFT: (
        "You draft a SOAP note (subjective, objective, assessment, plan) from a ward-round transcript.",
        SOAPDraft,
        "fast",
    ),
    PromptKind.ROUND_CROSS_CHECK: (
        "You cross-check a draft round note against the patient's history and general exam. "
        "List direct contradictions and missing follow-ups. Return empty lists when there are none.",
        RoundCrossCheck,
        "standard",
    ),
}


def _strip_json(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)
    start = min((i for i in (text.find("{"), text.find("[")) if i != -1), default=-1)
    end = max(text.rfind("}"), text.rfind("]"))
    if start != -1 and end > start:
        return text[start:end + 1]
    return text


def _coerce_payload(data: object, response_model: type[T]) -> object:
    name = response_model.__name__
    if name == "ConsistencyReport":
        if isinstance(data, list):
            return {"issues": [item for item in data if isinstance(item, dict)]}
        return data
    if name == "OrderSuggestions":
        if isinstance(data, list):
            return {"orders": [item for item in data if isinstance(item, dict)]}
        return data
    if name == "RoundCrossCheck" and isinstance(data, dict):
        return {
            "contradictions": data.get("contradictions") or [],
            "missing_followups": data.get("missing_followups") or data.get("missingFollowups") or [],
        }
    return data


class LLMClient:
    """Opaque classifier/generator behind a fixed input/output contract per prompt kind."""

    def __init__(
        self,
        provider: str | None = None,
        anthropic_api_key: str | None = None,
        openai_api_key: str | None = None,
    ) -> None:
        anthropic_key = ANTHROPIC_API_KEY if anthropic_api_key is None else anthropic_api_key
        openai_key = OPENAI_API_KEY if openai_api_key is None else openai_api_key

        provider = (provider or LLM_PROVIDER or "auto").lower()
        if provider == "auto":
            if anthropic_key:
                provider = "anthropic"
            elif openai_key:
                provider = "openai"
            else:
                provider = "none"
        self.provider = provider

        self._anthropic = AsyncAnthropic(api_key=anthropic_key) if anthropic_key else None
        self._openai = AsyncOpenAI(api_key=openai_key) if openai_key else None

    def available(self) -> bool:
        if self.provider == "anthropic":
            return self._anthropic is not None
        if self.provider == "openai":
            return self._openai is not None
        return False

    def model_for_tier(self, tier: str | None) -> str:
        tier = (tier or LLM_DEFAULT_TIER or "fast").lower()
        if tier not in ("fast", "standard", "high"):
            tier = "standard"

        if tier == "fast" and LLM_MODEL_FAST:
            return LLM_MODEL_FAST
        if tier == "standard" and LLM_MODEL_STANDARD:
            return LLM_MODEL_STANDARD
        if tier == "high" and LLM_MODEL_HIGH:
            return LLM_MODEL_HIGH

        if self.provider == "anthropic":
            return _ANTHROPIC_DEFAULTS[tier]
        return _OPENAI_DEFAULTS[tier]

    async def generate(self, kind: PromptKind, payload: dict[str, Any]) -> dict[str, Any]:
        """Run one prompt kind and return its structured output as a plain dict."""
        system, response_model, tier = _PROMPTS[kind]
        user = json.dumps(payload, indent=2, default=str)
        parsed = await self.generate_json(
            system=system,
            user=user,
            response_model=response_model,
            tier=tier,
        )
        return parsed.model_dump(mode="json")

    async def generate_json(
        self,
        *,
        system: str,
        user: str,
        response_model: type[T],
        max_tokens: int = 2048,
        tier: str | None = None,
    ) -> T:
        if not self.available():
            raise RuntimeError("LLM provider unavailable")

        model = self.model_for_tier(tier)

        if self.provider == "anthropic":
            message = await self._anthropic.messages.create(
                model=model,
                max_tokens=max_tokens,
                system=system + "\nRespond with JSON only.",
                messages=[{"role": "user", "content": user}],
            )
            raw = ""
            for block in message.content:
                if hasattr(block, "text"):
                    raw += block.text
            raw = _strip_json(raw)
            try:
                return response_model.model_validate_json(raw)
            except ValidationError:
                payload = json.loads(raw)
                coerced = _coerce_payload(payload, response_model)
                return response_model.model_validate(coerced)

        response = await self._openai.beta.chat.completions.parse(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            response_format=response_model,
        )
        parsed = response.choices[0].message.parsed
        if parsed is None:
            raise RuntimeError("LLM parse returned no data")
        return parsed
