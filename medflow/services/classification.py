import logging
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel

from medflow.errors import AIGenerationError
from medflow.models.ai import (
    AITriageSuggestion,
    ComplaintClassification,
    ConsistencyIssue,
    ConsistencyReport,
    Department,
    DischargeSummaryDraft,
    OrderSuggestions,
    RoundCrossCheck,
    SOAPDraft,
    SOAPSuggestion,
    SuggestedOrder,
)
from medflow.models.patient import Patient, Round
from medflow.models.vitals import TriageLevel
from medflow.services.cache import ResultCache
from medflow.services.llm import PromptKind

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

FALLBACK_CLASSIFICATION = ComplaintClassification(
    department=Department.UNKNOWN,
    suggested_triage=TriageLevel.NONE,
    confidence=0.0,
)

SOAP_KEY_CHARS = 100


class ClassificationEndpoint(Protocol):
    async def generate(self, kind: PromptKind, payload: dict[str, Any]) -> dict[str, Any]: ...


def classification_cache_key(complaint: str) -> str:
    return f"classify:{complaint.strip().casefold()}"


def soap_cache_key(transcript: str) -> str:
    # Only the opening of the transcript is part of the key.
    return f"soap:{transcript[:SOAP_KEY_CHARS]}"


def _clinical_context(patient: Patient) -> dict[str, Any]:
    data = patient.model_dump(mode="json", exclude_none=True)
    return {
        "patient": {key: data.get(key) for key in ("id", "name", "age", "gender", "status")},
        "chief_complaints": data.get("chief_complaints", []),
        "vitals": data.get("vitals", {}),
        "triage": data.get("triage", {}),
        "clinical_file": data.get("clinical_file", {}).get("sections", {}),
    }


class ClassificationClient:
    """Front door to the AI endpoint.

    Complaint classification is soft-fail and memoized. SOAP drafts share
    the same cache but, like every other kind of generation, raise
    ``AIGenerationError`` on failure so callers can show it.
    """

    def __init__(self, endpoint: ClassificationEndpoint, cache: ResultCache[BaseModel] | None = None) -> None:
        self.endpoint = endpoint
        self.cache: ResultCache[BaseModel] = cache if cache is not None else ResultCache()

    async def classify(self, complaint: str) -> AITriageSuggestion:
        key = classification_cache_key(complaint)
        cached = self.cache.get(key)
        if cached is not None:
            return AITriageSuggestion(**cached.model_dump(), from_cache=True)

        try:
            raw = await self.endpoint.generate(PromptKind.CLASSIFY_COMPLAINT, {"complaint": complaint})
            result = ComplaintClassification.model_validate(raw)
        except Exception as exc:
            logger.error("Complaint classification failed, using default: %s", exc)
            return AITriageSuggestion(**FALLBACK_CLASSIFICATION.model_dump(), from_cache=False)

        self.cache.set(key, result)
        return AITriageSuggestion(**result.model_dump(), from_cache=False)

    async def _generate(self, kind: PromptKind, payload: dict[str, Any], response_model: type[T]) -> T:
        try:
            raw = await self.endpoint.generate(kind, payload)
            return response_model.model_validate(raw)
        except Exception as exc:
            logger.error("%s generation failed: %s", kind.value, exc)
            raise AIGenerationError(kind.value, exc) from exc

    async def cross_check_clinical_file(self, patient: Patient) -> list[ConsistencyIssue]:
        report = await self._generate(PromptKind.CONSISTENCY_CHECK, _clinical_context(patient), ConsistencyReport)
        return report.issues

    async def draft_discharge_summary(self, patient: Patient) -> DischargeSummaryDraft:
        payload = _clinical_context(patient)
        payload["orders"] = [order.model_dump(mode="json") for order in patient.orders]
        payload["rounds"] = [rnd.model_dump(mode="json") for rnd in patient.rounds if rnd.status == "signed"]
        return await self._generate(PromptKind.DISCHARGE_SUMMARY, payload, DischargeSummaryDraft)

    async def suggest_orders(self, patient: Patient) -> list[SuggestedOrder]:
        suggestions = await self._generate(PromptKind.SUGGEST_ORDERS, _clinical_context(patient), OrderSuggestions)
        return suggestions.orders

    async def draft_soap(self, transcript: str) -> SOAPSuggestion:
        key = soap_cache_key(transcript)
        cached = self.cache.get(key)
        if cached is not None:
            return SOAPSuggestion(**cached.model_dump(), from_cache=True)

        draft = await self._generate(PromptKind.SOAP_DRAFT, {"transcript": transcript}, SOAPDraft)
        self.cache.set(key, draft)
        return SOAPSuggestion(**draft.model_dump(), from_cache=False)

    async def cross_check_round(self, patient: Patient, round_draft: Round) -> RoundCrossCheck:
        payload = _clinical_context(patient)
        payload["round"] = round_draft.model_dump(mode="json")
        return await self._generate(PromptKind.ROUND_CROSS_CHECK, payload, RoundCrossCheck)
