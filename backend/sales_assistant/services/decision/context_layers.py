"""
Context layer resolution.

Maps a classified intent (plus optional capability flags) to the boolean
capability gates consumed by the execution layer. Pure and total: no I/O,
every intent yields a layer set.
"""
import re
from typing import Iterable, List, Optional

from .contracts import parse_contract, requires_product_ssot
from .schema import AnswerContract, ContextFlags, ContextLayers, Intent


class CapabilityDeniedError(PermissionError):
    """Raised when a contract runs without a context layer it requires."""

    def __init__(self, contract: AnswerContract, layer: str):
        super().__init__(f"{contract.value} requires the {layer} context layer")
        self.contract = contract
        self.layer = layer


_PRODUCT_CONNECTION = re.compile(
    r"\b(our\s+(product|platform|offering|solution|value\s+prop\w*)|"
    r"how\s+(we|our\s+product)\s+(can\s+)?(help|fit|address|solve)|"
    r"tie\s+(it\s+)?(back\s+)?to\s+(us|our))\b",
    re.IGNORECASE,
)


def resolve_context_layers(intent: Intent, flags: Optional[ContextFlags] = None) -> ContextLayers:
    """
    Resolve the capability gates for an intent.

    Product identity is always on. Meeting and Slack layers follow the intent
    one-to-one; the product SSOT layer is on for PRODUCT_KNOWLEDGE or when the
    caller flags that product knowledge is required.
    """
    flags = flags or ContextFlags()
    return ContextLayers(
        product_identity=True,
        product_ssot=intent == Intent.PRODUCT_KNOWLEDGE or flags.requires_product_knowledge,
        single_meeting=intent == Intent.SINGLE_MEETING,
        multi_meeting=intent == Intent.MULTI_MEETING,
        slack_search=intent == Intent.SLACK_SEARCH,
    )


def enabled_layer_names(layers: ContextLayers) -> List[str]:
    """Names of the enabled layers, in declaration order."""
    return [name for name, enabled in layers.model_dump().items() if enabled]


def explain_context_layers(intent: Intent, flags: Optional[ContextFlags] = None) -> str:
    flags = flags or ContextFlags()
    parts = ["product_identity always on"]
    if intent == Intent.SINGLE_MEETING:
        parts.append("single_meeting for SINGLE_MEETING")
    elif intent == Intent.MULTI_MEETING:
        parts.append("multi_meeting for MULTI_MEETING")
    elif intent == Intent.SLACK_SEARCH:
        parts.append("slack_search for SLACK_SEARCH")
    if intent == Intent.PRODUCT_KNOWLEDGE:
        parts.append("product_ssot for PRODUCT_KNOWLEDGE")
    elif flags.requires_product_knowledge:
        parts.append("product_ssot requested by flags")
    return "; ".join(parts)


def infer_context_flags(message: str, proposed_contracts: Iterable[object] = ()) -> ContextFlags:
    """Derive capability flags from product-connection phrasing or proposed contracts."""
    needs_product = bool(_PRODUCT_CONNECTION.search(message or ""))
    if not needs_product:
        for name in proposed_contracts:
            contract = parse_contract(name)
            if contract is not None and requires_product_ssot(contract):
                needs_product = True
                break
    return ContextFlags(requires_product_knowledge=needs_product)


def can_execute(contract: AnswerContract, layers: ContextLayers) -> bool:
    if requires_product_ssot(contract) and not layers.product_ssot:
        return False
    return True


def ensure_can_execute(contract: AnswerContract, layers: ContextLayers) -> None:
    """Gate used by the execution layer before running a contract."""
    if not can_execute(contract, layers):
        raise CapabilityDeniedError(contract, "product_ssot")
