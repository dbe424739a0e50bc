"""
Intent classifier: deterministic cascade with an LLM fallback.

Tiers 0-4 (see ``matchers``) are pure and tried in order; the first result
wins. Weak deterministic results are sent to the LLM validator. When no tier
fires, tier 5 asks the LLM interpreter. Every collaborator call is bounded by a
timeout, and any failure resolves to a conservative CLARIFY instead of raising.
"""
import asyncio
from typing import Any, Dict, List, Optional, Sequence

from sales_assistant.core.config import get_settings
from sales_assistant.core.logging import get_logger
from sales_assistant.core.metrics import (
    record_classification_fallback,
    record_intent_classification,
    record_low_confidence_validation,
)

from .entities import EntitySnapshot, find_entity_mentions, get_entity_registry
from .matchers import (
    ClassificationRequest,
    EntityMatcher,
    TierMatcher,
    analyze_patterns,
    default_matchers,
)
from .schema import (
    TERMINAL_INTENTS,
    DecisionMetadata,
    DetectionMethod,
    Intent,
    IntentClassification,
    ThreadContext,
)
from .thread_context import should_reuse

logger = get_logger(__name__)

FALLBACK_CLARIFY_MESSAGE = (
    "I'd like to help, but I want to make sure I understand. "
    "Could you tell me a bit more about what you're looking for?"
)
SAFE_DEFAULT_CONFIDENCE = 0.0
CAVEAT_CONFIDENCE_CAP = 0.5


def build_clarify_message(
    question: Optional[str],
    summary: Optional[str],
    alternatives: Sequence[str] = (),
) -> str:
    """User-facing clarification built from whatever the interpreter offered."""
    if question and question.strip():
        return question.strip()
    if summary and summary.strip():
        text = f"Just to check, did you mean: {summary.strip()}?"
        if alternatives:
            text += " Or: " + "; ".join(a.strip() for a in alternatives) + "?"
        return text
    return FALLBACK_CLARIFY_MESSAGE


class IntentClassifier:
    """
    Classify one message into exactly one Intent.

    Args:
        entity_registry: object with ``lookup_companies()`` returning EntityRecords
        interpreter: object with async ``interpret`` and ``validate_low_confidence``;
            resolved lazily so deterministic tiers never touch it
        matchers: deterministic tiers in cascade order
    """

    def __init__(
        self,
        entity_registry: Any = None,
        interpreter: Any = None,
        matchers: Optional[List[TierMatcher]] = None,
        llm_timeout_seconds: Optional[float] = None,
        interpretation_threshold: Optional[float] = None,
        low_confidence_threshold: Optional[float] = None,
    ):
        settings = get_settings()
        self._entity_registry = entity_registry
        self._interpreter = interpreter
        self.matchers = matchers if matchers is not None else default_matchers()
        self.llm_timeout_seconds = llm_timeout_seconds or settings.llm_timeout_seconds
        self.interpretation_threshold = (
            interpretation_threshold
            if interpretation_threshold is not None
            else settings.interpretation_confidence_threshold
        )
        self.low_confidence_threshold = (
            low_confidence_threshold
            if low_confidence_threshold is not None
            else settings.low_confidence_threshold
        )

    @property
    def entity_registry(self):
        if self._entity_registry is None:
            return get_entity_registry()
        return self._entity_registry

    @property
    def interpreter(self):
        if self._interpreter is None:
            from sales_assistant.services.ai.agents.interpreter import get_interpreter

            self._interpreter = get_interpreter()
        return self._interpreter

    async def classify(
        self, message: str, thread_context: Optional[ThreadContext] = None
    ) -> IntentClassification:
        if not message or not message.strip():
            result = IntentClassification(
                intent=Intent.CLARIFY,
                confidence=SAFE_DEFAULT_CONFIDENCE,
                detection_method=DetectionMethod.DEFAULT,
                reason="Empty message",
                decision_metadata=DecisionMetadata(clarify_message=FALLBACK_CLARIFY_MESSAGE),
            )
            return self._finish(result, tier="empty")

        request = ClassificationRequest(message=message, thread_context=thread_context)
        entities_loaded = False

        for matcher in self.matchers:
            if isinstance(matcher, EntityMatcher) and not entities_loaded:
                request = request.model_copy(update={"entities": self._snapshot()})
                entities_loaded = True
            result = matcher.try_match(request)
            if result is None:
                continue
            if self._needs_validation(result):
                result = await self._validate(result, message)
            return self._finish(result, tier=matcher.name)

        if not entities_loaded:
            request = request.model_copy(update={"entities": self._snapshot()})
        result = await self._interpret(request)
        return self._finish(result, tier="llm")

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _snapshot(self) -> EntitySnapshot:
        try:
            return tuple(self.entity_registry.lookup_companies())
        except Exception as exc:
            logger.warning(
                "entity_registry_unavailable",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ()

    def _finish(self, result: IntentClassification, tier: str) -> IntentClassification:
        record_intent_classification(result.intent.value, result.detection_method.value)
        logger.info(
            "intent_classified",
            intent=result.intent.value,
            confidence=result.confidence,
            detection_method=result.detection_method.value,
            tier=tier,
            reason=result.reason,
            needs_split=result.needs_split,
            signals=result.decision_metadata.matched_signals,
        )
        return result

    def _needs_validation(self, result: IntentClassification) -> bool:
        return (
            result.detection_method in (DetectionMethod.ENTITY, DetectionMethod.PATTERN)
            and result.intent not in TERMINAL_INTENTS
            and result.confidence < self.low_confidence_threshold
        )

    def _safe_default(self, reason: str, exc: Optional[BaseException] = None) -> IntentClassification:
        record_classification_fallback(reason)
        logger.warning(
            "intent_tier5_failed",
            fallback_reason=reason,
            error=str(exc) if exc else None,
            error_type=type(exc).__name__ if exc else None,
        )
        return IntentClassification(
            intent=Intent.CLARIFY,
            confidence=SAFE_DEFAULT_CONFIDENCE,
            detection_method=DetectionMethod.DEFAULT,
            reason="Could not interpret the request; asking the user to clarify",
            decision_metadata=DecisionMetadata(
                clarify_message=FALLBACK_CLARIFY_MESSAGE,
                fallback_reason=reason,
            ),
        )

    def _keep_with_caveat(self, guess: IntentClassification, caveat: str) -> IntentClassification:
        record_low_confidence_validation("failed")
        logger.warning(
            "intent_validation_caveat",
            intent=guess.intent.value,
            caveat=caveat,
        )
        metadata = guess.decision_metadata.model_copy(update={"validation_caveat": caveat})
        return guess.model_copy(update={
            "confidence": min(guess.confidence, CAVEAT_CONFIDENCE_CAP),
            "decision_metadata": metadata,
        })

    async def _validate(self, guess: IntentClassification, message: str) -> IntentClassification:
        """Confirm or override a weak deterministic guess via the LLM validator."""
        metadata = guess.decision_metadata
        try:
            validation = await asyncio.wait_for(
                self.interpreter.validate_low_confidence(
                    guess.intent,
                    guess.reason,
                    metadata.matched_signals,
                    message=message,
                ),
                timeout=self.llm_timeout_seconds,
            )
        except Exception as exc:
            logger.warning(
                "intent_validation_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return self._keep_with_caveat(guess, f"validation unavailable ({type(exc).__name__})")

        if validation is None:
            return self._keep_with_caveat(guess, "validation returned an invalid response")

        suggested = validation.suggested_intent
        if validation.confirmed or (suggested is not None and suggested == guess.intent):
            record_low_confidence_validation("confirmed")
            return guess.model_copy(update={
                "confidence": max(guess.confidence, validation.confidence),
                "decision_metadata": metadata.model_copy(update={
                    "matched_signals": metadata.matched_signals + ["llm_validation:confirmed"],
                }),
            })

        if suggested is None:
            return self._keep_with_caveat(guess, "validator rejected the guess without an alternative")

        record_low_confidence_validation("overridden")
        logger.info(
            "intent_validation_override",
            original_intent=guess.intent.value,
            suggested_intent=suggested.value,
        )
        return IntentClassification(
            intent=suggested,
            confidence=validation.confidence,
            detection_method=DetectionMethod.LLM_INTERPRETATION,
            reason=validation.reason or f"LLM validation preferred {suggested.value} over {guess.intent.value}",
            decision_metadata=metadata.model_copy(update={
                "matched_signals": metadata.matched_signals + ["llm_validation:overridden"],
                "original_intent": guess.intent,
                "proposed_contracts": [],
            }),
        )

    def _resolve_entities(
        self, request: ClassificationRequest, extracted: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Map interpreter-extracted names (or thread carryover) to registry ids."""
        names = " ".join(str(v) for v in extracted.values() if isinstance(v, (str, int, float)))
        mentions = find_entity_mentions(f"{request.message} {names}", request.entities)
        context = request.thread_context
        ids = [m.entity.id for m in mentions]
        reused = should_reuse(context, request.message, ids)
        if mentions:
            return {
                "resolved_company_id": mentions[0].entity.id,
                "resolved_meeting_id": context.prior_meeting_id if (context and reused) else None,
                "context_reused": reused,
            }
        if context is not None and reused:
            return {
                "resolved_company_id": context.prior_company_id,
                "resolved_meeting_id": context.prior_meeting_id,
                "context_reused": True,
            }
        return {}

    async def _interpret(self, request: ClassificationRequest) -> IntentClassification:
        """Tier 5: LLM interpretation, then validation of the best guess if unsure."""
        analysis = analyze_patterns(request.message)
        try:
            interpretation = await asyncio.wait_for(
                self.interpreter.interpret(request.message, request.thread_context),
                timeout=self.llm_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            return self._safe_default("llm_timeout", exc)
        except Exception as exc:
            return self._safe_default("llm_unavailable", exc)

        if interpretation is None:
            return self._safe_default("llm_invalid_response")

        metadata = DecisionMetadata(
            matched_signals=analysis.signals + [f"llm:{interpretation.intent.value.lower()}"],
            proposed_contracts=list(interpretation.proposed_contracts),
            extracted_entities=dict(interpretation.extracted_entities),
            interpretation_summary=interpretation.summary,
            alternatives=list(interpretation.alternatives),
            **self._resolve_entities(request, interpretation.extracted_entities),
        )

        if interpretation.is_ambiguous or interpretation.intent == Intent.CLARIFY:
            return IntentClassification(
                intent=Intent.CLARIFY,
                confidence=interpretation.confidence,
                detection_method=DetectionMethod.LLM_INTERPRETATION,
                reason="LLM found the request ambiguous",
                decision_metadata=metadata.model_copy(update={
                    "clarify_message": build_clarify_message(
                        interpretation.clarifying_question,
                        interpretation.summary,
                        interpretation.alternatives,
                    ),
                }),
            )

        if interpretation.confidence >= self.interpretation_threshold:
            return IntentClassification(
                intent=interpretation.intent,
                confidence=interpretation.confidence,
                detection_method=DetectionMethod.LLM_INTERPRETATION,
                reason=f"LLM interpretation: {interpretation.summary or interpretation.intent.value}",
                decision_metadata=metadata,
            )

        guess = analysis.best_guess()
        if guess is not None:
            base = IntentClassification(
                intent=guess,
                confidence=interpretation.confidence,
                detection_method=DetectionMethod.PATTERN,
                reason=f"Best deterministic guess {guess.value} (LLM confidence low)",
                # The LLM's proposal belongs to an intent that was not adopted.
                decision_metadata=metadata.model_copy(update={"proposed_contracts": []}),
            )
            return await self._validate(base, request.message)

        return IntentClassification(
            intent=Intent.CLARIFY,
            confidence=interpretation.confidence,
            detection_method=DetectionMethod.LLM_INTERPRETATION,
            reason="LLM confidence too low and no deterministic signal",
            decision_metadata=metadata.model_copy(update={
                "clarify_message": build_clarify_message(
                    interpretation.clarifying_question,
                    interpretation.summary,
                    interpretation.alternatives,
                ),
            }),
        )


_classifier: Optional[IntentClassifier] = None


def get_intent_classifier() -> IntentClassifier:
    """Global singleton accessor."""
    global _classifier
    if _classifier is None:
        _classifier = IntentClassifier()
    return _classifier
