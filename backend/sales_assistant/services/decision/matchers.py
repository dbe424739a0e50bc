"""
Deterministic classification tiers.

Each tier is a matcher object whose ``try_match`` returns an
IntentClassification or None. The classifier walks them in order and the first
result wins, so every tier is pure, cheap and testable on its own:

- Tier 0  RefuseMatcher         out-of-scope topics -> REFUSE
- Tier 1  ConversationalMatcher greetings, acknowledgments, clarification replies
- Tier 2  MultiIntentMatcher    "X and then Y" requests -> CLARIFY with split options
- Tier 3  EntityMatcher         known company/contact names -> SINGLE_MEETING
- Tier 4  PatternMatcher        per-intent phrase/keyword tables with disambiguation
"""
import re
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .entities import EntityMatch, EntityRecord, find_entity_mentions
from .schema import (
    DecisionMetadata,
    DetectionMethod,
    Intent,
    IntentClassification,
    ThreadContext,
)
from .thread_context import should_reuse

LabeledPattern = Tuple[str, Pattern[str]]


def _compile(*items: Tuple[str, str]) -> Tuple[LabeledPattern, ...]:
    return tuple((label, re.compile(rx, re.IGNORECASE)) for label, rx in items)


def _first_match(patterns: Sequence[LabeledPattern], text: str) -> Optional[str]:
    for label, pattern in patterns:
        if pattern.search(text):
            return label
    return None


def _all_matches(patterns: Sequence[LabeledPattern], text: str) -> List[str]:
    return [label for label, pattern in patterns if pattern.search(text)]


def normalize_message(message: str) -> str:
    """Lowercase, collapse whitespace, drop trailing punctuation."""
    text = re.sub(r"\s+", " ", (message or "").strip().lower())
    return re.sub(r"[\s!.?,;:]+$", "", text)


class ClassificationRequest(BaseModel):
    """Input shared by all tiers for one classification call."""
    model_config = ConfigDict(frozen=True)

    message: str
    thread_context: Optional[ThreadContext] = None
    entities: Tuple[EntityRecord, ...] = Field(default_factory=tuple)

    @property
    def normalized(self) -> str:
        return normalize_message(self.message)


class TierMatcher:
    """Base class for a deterministic tier."""

    tier: int = -1
    name: str = "tier"

    def try_match(self, request: ClassificationRequest) -> Optional[IntentClassification]:
        raise NotImplementedError


# ============================================================================
# Shared signal tables
# ============================================================================

AGGREGATE_PATTERNS = _compile(
    ("aggregate_last_n", r"\b(last|past|previous|recent)\s+(\d+|two|three|four|five|six|few|several|couple(\s+of)?)\s+(meetings|calls|demos|conversations)\b"),
    ("aggregate_recent", r"\brecent\s+(meetings|calls|demos|conversations)\b"),
    ("aggregate_all", r"\b(all|every)\s+(of\s+)?(our\s+|the\s+|my\s+)?(meetings?|calls?|customers|accounts|prospects|deals|demos)\b"),
    ("aggregate_across", r"\bacross\b"),
    ("aggregate_compare", r"\b(compare|comparison|versus)\b"),
    ("aggregate_over_time", r"\bover\s+time\b"),
    ("aggregate_which_customers", r"\b(which|how\s+many)\s+(customers|accounts|prospects|companies|deals)\b"),
)

SLACK_MARKERS = _compile(
    ("slack_in", r"\b(in|on|from|search|check|through)\s+slack\b"),
    ("slack_objects", r"\bslack\s+(messages?|channels?|threads?|conversations?|posts?)\b"),
    ("slack_channel", r"(^|\s)#[a-z0-9][\w-]*"),
)

OUR_X_PATTERNS = _compile(
    ("our_product", r"\bour\s+(product|platform|offering|solution|tool|app|api)\b"),
    ("our_pricing", r"\bour\s+(pricing|prices?|plans?|tiers?|packages?)\b"),
    ("our_features", r"\bour\s+(features?|capabilit\w+|integrations?|roadmap|security|compliance)\b"),
    ("our_value_prop", r"\bour\s+value\s+prop\w*\b"),
)

FOLLOW_UP_REFERENCE = re.compile(
    r"\b(they|them|their|he|she|his|her)\b|\b(that|this|the|same)\s+(call|meeting|demo|conversation)\b",
    re.IGNORECASE,
)


# ============================================================================
# Tier 0: out-of-scope topics
# ============================================================================

REFUSE_PATTERNS = _compile(
    ("weather", r"\bweather\b"),
    ("weather_forecast", r"\b(rain|snow|temperature)\s+(today|tomorrow|outside|this\s+week)\b"),
    ("stock_price", r"\bstocks?\s+(price|market|ticker|quote)s?\b"),
    ("share_price", r"\bshare\s+price\b"),
    ("joke", r"\b(tell\s+(me\s+)?a\s+)?jokes?\b"),
    ("creative_writing", r"\bwrite\s+(me\s+)?an?\s+(poem|story|song|haiku)\b"),
    ("personal_contact", r"\b(home|personal|private)\s+(address|phone(\s+number)?|email|cell)\b"),
    ("ssn", r"\bsocial\s+security(\s+numbers?)?\b"),
    ("current_time", r"\bwhat\s+time\s+is\s+it\b|\bwhat('s|\s+is)\s+the\s+(current\s+)?time\b|\bcurrent\s+time\b"),
    ("revenue_prediction", r"\bhow\s+much\s+(revenue|money|profit)\s+will\b"),
)


class RefuseMatcher(TierMatcher):
    tier = 0
    name = "refuse"

    def try_match(self, request: ClassificationRequest) -> Optional[IntentClassification]:
        label = _first_match(REFUSE_PATTERNS, request.message)
        if label is None:
            return None
        return IntentClassification(
            intent=Intent.REFUSE,
            confidence=1.0,
            detection_method=DetectionMethod.PATTERN,
            reason=f"Out-of-scope request ({label})",
            decision_metadata=DecisionMetadata(matched_signals=[f"refuse:{label}"]),
        )


# ============================================================================
# Tier 1: greetings, acknowledgments, replies to a clarification
# ============================================================================

SIMPLE_GREETINGS = frozenset({
    "hi", "hello", "hey", "yo", "hiya", "howdy",
    "hi there", "hello there", "hey there",
    "good morning", "good afternoon", "good evening",
    "thanks", "thank you", "thanks a lot", "thank you so much", "thx", "ty", "cheers",
    "ok", "okay", "k", "got it", "cool", "great", "awesome", "perfect", "nice",
    "sounds good", "bye", "goodbye",
})

AFFIRMATIVE_REPLIES = frozenset({
    "yes", "yep", "yeah", "yup", "y", "correct", "right", "exactly", "sure",
    "that's right", "thats right", "yes please", "please do", "go ahead", "do it",
    "ok", "okay", "sounds good", "yes that's it", "that's it",
})


class ConversationalMatcher(TierMatcher):
    tier = 1
    name = "conversational"

    def try_match(self, request: ClassificationRequest) -> Optional[IntentClassification]:
        text = request.normalized
        context = request.thread_context
        proposal = context.prior_proposed_interpretation if context else None

        if (
            context is not None
            and context.prior_awaiting_clarification
            and proposal is not None
            and proposal.intent not in (Intent.CLARIFY, Intent.REFUSE)
            and text in AFFIRMATIVE_REPLIES
        ):
            return IntentClassification(
                intent=proposal.intent,
                confidence=0.9,
                detection_method=DetectionMethod.PATTERN,
                reason="User confirmed the proposed interpretation",
                decision_metadata=DecisionMetadata(
                    matched_signals=["clarification_confirmed"],
                    proposed_contracts=[c.value for c in proposal.contracts],
                    interpretation_summary=proposal.summary,
                    resolved_company_id=context.prior_company_id,
                    resolved_meeting_id=context.prior_meeting_id,
                    context_reused=context.has_entity,
                ),
            )

        if text in SIMPLE_GREETINGS:
            return IntentClassification(
                intent=Intent.GENERAL_HELP,
                confidence=1.0,
                detection_method=DetectionMethod.PATTERN,
                reason="Greeting or acknowledgment",
                decision_metadata=DecisionMetadata(matched_signals=[f"greeting:{text}"]),
            )
        return None


# ============================================================================
# Tier 2: several distinct requests joined by a conjunction
# ============================================================================

MULTI_INTENT_PATTERNS = _compile(
    ("summarize_then_other", r"\b(summarize|summary)\b.*\b(and|then)\b.*\b(pricing|check|email|compare)\b"),
    ("answer_then_other", r"\b(answer|respond)\b.*\b(and|then)\b.*\b(email|summarize|pricing)\b"),
    ("compare_then_other", r"\bcompare\b.*\b(and|then)\b.*\b(email|summarize)\b"),
    ("research_then_email", r"\bresearch\b.*\band\s+then\b.*\b(email|summarize)\b"),
)

_SPLIT_CONNECTORS = (
    re.compile(r"\s*,?\s*\band\s+then\b\s*", re.IGNORECASE),
    re.compile(r"\s*,?\s*\bthen\b\s*", re.IGNORECASE),
    re.compile(r"\s*,?\s*\band\s+also\b\s*", re.IGNORECASE),
    re.compile(r"\s*,?\s*\band\b\s*", re.IGNORECASE),
)

GENERIC_SPLIT_OPTIONS = ("meeting content", "other request")


def split_sub_requests(message: str) -> List[str]:
    """Split at the strongest conjunction present; fall back to generic options."""
    for connector in _SPLIT_CONNECTORS:
        if connector.search(message):
            head, tail = connector.split(message, maxsplit=1)
            parts = [p.strip(" ,.;?!") for p in (head, tail)]
            parts = [p for p in parts if p]
            if len(parts) >= 2:
                return parts
    return list(GENERIC_SPLIT_OPTIONS)


class MultiIntentMatcher(TierMatcher):
    tier = 2
    name = "multi_intent"

    def try_match(self, request: ClassificationRequest) -> Optional[IntentClassification]:
        label = _first_match(MULTI_INTENT_PATTERNS, request.message)
        if label is None:
            return None
        options = split_sub_requests(request.message.strip())
        return IntentClassification(
            intent=Intent.CLARIFY,
            confidence=0.95,
            detection_method=DetectionMethod.PATTERN,
            reason="Request combines several distinct tasks",
            needs_split=True,
            split_options=options,
            decision_metadata=DecisionMetadata(
                matched_signals=[f"multi_intent:{label}"],
                clarify_message=(
                    "It looks like you're asking for a few different things. "
                    "Which should I start with: " + " or ".join(f'"{o}"' for o in options) + "?"
                ),
            ),
        )


# ============================================================================
# Tier 3: known entities
# ============================================================================

class EntityMatcher(TierMatcher):
    """
    Company/contact names from the registry imply a single-meeting question.

    Abstains when the message also carries aggregate phrasing, a Slack marker
    or several distinct entities; the pattern tier resolves those.
    """

    tier = 3
    name = "entity"

    def __init__(self, carryover_confidence: float = 0.8):
        self.carryover_confidence = carryover_confidence

    def try_match(self, request: ClassificationRequest) -> Optional[IntentClassification]:
        message = request.message
        if _first_match(SLACK_MARKERS, message) or _first_match(AGGREGATE_PATTERNS, message):
            return None

        mentions = find_entity_mentions(message, request.entities)
        if len(mentions) > 1:
            return None
        if mentions:
            return self._from_mention(request, mentions[0])
        return self._from_thread(request)

    def _from_mention(
        self, request: ClassificationRequest, mention: EntityMatch
    ) -> IntentClassification:
        context = request.thread_context
        reused = should_reuse(context, request.message, [mention.entity.id])
        meeting_id = context.prior_meeting_id if (context is not None and reused) else None
        return IntentClassification(
            intent=Intent.SINGLE_MEETING,
            confidence=mention.confidence,
            detection_method=DetectionMethod.ENTITY,
            reason=f"Mentions known {mention.entity.kind} '{mention.entity.name}'",
            decision_metadata=DecisionMetadata(
                matched_signals=[f"entity:{mention.match_type}:{mention.entity.name}"],
                resolved_company_id=mention.entity.id,
                resolved_meeting_id=meeting_id,
                context_reused=reused,
                match_type=mention.match_type,
            ),
        )

    def _from_thread(self, request: ClassificationRequest) -> Optional[IntentClassification]:
        context = request.thread_context
        if context is None or not context.has_entity:
            return None
        if not FOLLOW_UP_REFERENCE.search(request.message):
            return None
        if _first_match(OUR_X_PATTERNS, request.message):
            return None
        if not should_reuse(context, request.message):
            return None
        return IntentClassification(
            intent=Intent.SINGLE_MEETING,
            confidence=self.carryover_confidence,
            detection_method=DetectionMethod.ENTITY,
            reason="Follow-up about the entity resolved earlier in the thread",
            decision_metadata=DecisionMetadata(
                matched_signals=["entity:carryover"],
                resolved_company_id=context.prior_company_id,
                resolved_meeting_id=context.prior_meeting_id,
                context_reused=True,
                match_type="carryover",
            ),
        )


# ============================================================================
# Tier 4: per-intent pattern tables
# ============================================================================

# (strong phrase patterns, weak keywords) per intent
INTENT_PATTERN_TABLES: Dict[Intent, Tuple[Tuple[LabeledPattern, ...], Tuple[LabeledPattern, ...]]] = {
    Intent.SLACK_SEARCH: (
        SLACK_MARKERS,
        _compile(("slack", r"\bslack\b")),
    ),
    Intent.MULTI_MEETING: (
        AGGREGATE_PATTERNS + _compile(
            ("most_common", r"\bmost\s+(common|frequent)\b"),
            ("patterns", r"\b(patterns?|recurring|common\s+themes?|trends?)\b"),
        ),
        _compile(
            ("meetings_plural", r"\b(meetings|calls|demos)\b"),
            ("customers_plural", r"\b(customers|prospects|accounts)\b"),
        ),
    ),
    Intent.SINGLE_MEETING: (
        _compile(
            ("last_meeting", r"\b(last|latest|most\s+recent|previous)\s+(meeting|call|demo|conversation|sync)\b"),
            ("in_the_meeting", r"\b(in|on|from|during)\s+(the|that|this|our)\s+(meeting|call|demo|sync)\b"),
            ("what_did_they_say", r"\bwhat\s+did\s+(they|he|she|the\s+customer|the\s+client)\s+(say|mention|ask|want)\b"),
            ("who_attended", r"\bwho\s+(attended|joined|was\s+on)\b"),
            ("action_items", r"\b(action\s+items?|next\s+steps|follow[-\s]?ups?)\b"),
        ),
        _compile(
            ("meeting", r"\b(meeting|call|demo|transcript)\b"),
            ("discussed", r"\b(discussed|mentioned|talked\s+about)\b"),
        ),
    ),
    Intent.PRODUCT_KNOWLEDGE: (
        OUR_X_PATTERNS + _compile(
            ("do_we_support", r"\b(does|do|can)\s+(we|our\s+product|the\s+product)\s+(support|integrate|offer|have|handle)\b"),
            ("pricing_tiers", r"\b(pricing|price)\s+(tiers?|plans?|model|page)\b"),
            ("how_does_product_work", r"\bhow\s+does\s+(the\s+product|our\s+product|it)\s+work\b"),
        ),
        _compile(
            ("pricing", r"\bpricing\b"),
            ("features", r"\b(features?|integrations?|roadmap)\b"),
            ("security", r"\b(sso|soc\s*2|gdpr|hipaa|encryption)\b"),
        ),
    ),
    Intent.EXTERNAL_RESEARCH: (
        _compile(
            ("research", r"\bresearch\b"),
            ("public_sources", r"\b(earnings\s+calls?|public\s+statements?|press\s+releases?|10-?k|annual\s+report)\b"),
            ("their_priorities", r"\btheir\s+(priorities|strategy|initiatives)\b"),
            ("decks", r"\b(slide|sales|pitch)\s+deck\b"),
            ("news_about", r"\b(news|latest)\s+(about|on)\b"),
        ),
        _compile(
            ("competitors", r"\bcompetitors?\b"),
            ("industry", r"\b(industry|market)\b"),
        ),
    ),
    Intent.GENERAL_HELP: (
        _compile(
            ("what_can_you_do", r"\bwhat\s+can\s+you\s+do\b"),
            ("how_to_use", r"\bhow\s+(can|do)\s+(you|i\s+use\s+you)\b"),
            ("help_me_write", r"\bhelp\s+me\s+(write|draft)\b"),
            ("draft_email", r"\b(draft|write)\s+(me\s+)?(an?\s+)?(email|message|note)\b"),
            ("email_template", r"\bemail\s+template\b"),
        ),
        _compile(("help", r"\bhelp\b")),
    ),
}

# Tie-break order when several intents remain after disambiguation
INTENT_PRIORITY: Tuple[Intent, ...] = (
    Intent.SLACK_SEARCH,
    Intent.MULTI_MEETING,
    Intent.SINGLE_MEETING,
    Intent.PRODUCT_KNOWLEDGE,
    Intent.EXTERNAL_RESEARCH,
    Intent.GENERAL_HELP,
)


class PatternAnalysis(BaseModel):
    """Raw and resolved pattern-tier signals for one message."""
    model_config = ConfigDict(frozen=True)

    raw_candidates: Dict[Intent, bool] = Field(default_factory=dict)  # intent -> strong?
    resolved: Dict[Intent, bool] = Field(default_factory=dict)
    signals: List[str] = Field(default_factory=list)
    rules_applied: List[str] = Field(default_factory=list)

    @property
    def decisive(self) -> Optional[Intent]:
        if len(self.resolved) == 1:
            return next(iter(self.resolved))
        return None

    def best_guess(self) -> Optional[Intent]:
        """First intent by priority among resolved candidates, else raw ones."""
        for pool in (self.resolved, self.raw_candidates):
            for intent in INTENT_PRIORITY:
                if intent in pool:
                    return intent
        return None


def analyze_patterns(message: str) -> PatternAnalysis:
    """Collect per-intent signals and apply the disambiguation rules."""
    candidates: Dict[Intent, bool] = {}
    signals: List[str] = []
    for intent, (phrases, keywords) in INTENT_PATTERN_TABLES.items():
        strong = _all_matches(phrases, message)
        weak = _all_matches(keywords, message)
        if strong or weak:
            candidates[intent] = bool(strong)
            signals.extend(f"pattern:{intent.value.lower()}:{label}" for label in strong)
            signals.extend(f"keyword:{intent.value.lower()}:{label}" for label in weak)

    resolved = dict(candidates)
    rules: List[str] = []
    aggregate = _first_match(AGGREGATE_PATTERNS, message) is not None
    our_x = _first_match(OUR_X_PATTERNS, message) is not None

    if _first_match(SLACK_MARKERS, message):
        resolved = {Intent.SLACK_SEARCH: True}
        rules.append("slack_marker_overrides")
    else:
        if aggregate:
            resolved.pop(Intent.SINGLE_MEETING, None)
            resolved[Intent.MULTI_MEETING] = True
            rules.append("aggregate_overrides_single")
        if our_x:
            if aggregate:
                resolved.pop(Intent.PRODUCT_KNOWLEDGE, None)
                rules.append("aggregate_overrides_our_x")
            else:
                resolved.pop(Intent.SINGLE_MEETING, None)
                resolved.pop(Intent.MULTI_MEETING, None)
                resolved[Intent.PRODUCT_KNOWLEDGE] = True
                rules.append("our_x_routes_to_product")
        if Intent.EXTERNAL_RESEARCH in resolved and Intent.PRODUCT_KNOWLEDGE in resolved:
            resolved.pop(Intent.PRODUCT_KNOWLEDGE)
            rules.append("research_over_product")
        if any(resolved.values()):
            resolved = {intent: strong for intent, strong in resolved.items() if strong}
        if len(resolved) > 1:
            resolved.pop(Intent.GENERAL_HELP, None)

    return PatternAnalysis(
        raw_candidates=candidates,
        resolved=resolved,
        signals=signals,
        rules_applied=rules,
    )


class PatternMatcher(TierMatcher):
    tier = 4
    name = "pattern"

    def __init__(self, strong_confidence: float = 0.9, weak_confidence: float = 0.75):
        self.strong_confidence = strong_confidence
        self.weak_confidence = weak_confidence

    def try_match(self, request: ClassificationRequest) -> Optional[IntentClassification]:
        analysis = analyze_patterns(request.message)
        intent = analysis.decisive
        if intent is None:
            return None
        strong = analysis.resolved[intent]
        reason = f"Matched {intent.value} {'phrases' if strong else 'keywords'}"
        if analysis.rules_applied:
            reason += f" ({', '.join(analysis.rules_applied)})"
        return IntentClassification(
            intent=intent,
            confidence=self.strong_confidence if strong else self.weak_confidence,
            detection_method=DetectionMethod.PATTERN,
            reason=reason,
            decision_metadata=DecisionMetadata(matched_signals=analysis.signals),
        )


def default_matchers() -> List[TierMatcher]:
    """Tiers 0-4 in cascade order."""
    return [
        RefuseMatcher(),
        ConversationalMatcher(),
        MultiIntentMatcher(),
        EntityMatcher(),
        PatternMatcher(),
    ]
