"""
Entity registry: known company and contact names.

The registry is shared, read-only state. A classification call takes one
snapshot (an immutable tuple) and works on it for its whole duration, while
``CachedEntityRegistry.refresh`` swaps in new snapshots out-of-band.
"""
import asyncio
import json
import re
import time
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, TypeAdapter

from sales_assistant.core.logging import get_logger
from sales_assistant.core.metrics import update_entity_registry_size

logger = get_logger(__name__)

FULL_NAME_MULTI_WORD_CONFIDENCE = 0.9
FULL_NAME_SINGLE_WORD_CONFIDENCE = 0.85
PARTIAL_NAME_CONFIDENCE = 0.7

_STOP_TOKENS = frozenset({"the", "and", "of", "inc", "llc", "ltd", "co", "corp", "group"})


class EntityRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    kind: str = "company"


class EntityMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity: EntityRecord
    matched_text: str
    match_type: str  # full_name | acronym
    confidence: float
    start: int
    end: int


EntitySnapshot = Tuple[EntityRecord, ...]
EntityLoader = Callable[[], Awaitable[Sequence[EntityRecord]]]

_records_adapter = TypeAdapter(List[EntityRecord])


_ACRONYM_TOKEN = re.compile(r"^[A-Z]{2,5}$")
_CAPITALISED_TOKEN = re.compile(r"^[A-Z][a-z][\w']+$")
_SENTENCE_START = re.compile(r"(?:^|[.!?]\s*)$")


def _word_pattern(text: str, flags: int = re.IGNORECASE) -> "re.Pattern[str]":
    return re.compile(r"(?<![\w])" + re.escape(text) + r"(?![\w])", flags)


def _partial_forms(name: str) -> List[Tuple[str, bool]]:
    """
    Short forms of a multi-word name as ``(form, mid_sentence_only)``.

    Forms are matched case-sensitively: capitalised initials ("GC"), an
    acronym-shaped leading token ("TPI Composites"), or a capitalised leading
    token ("Discount Tire"). The last one is ignored at the start of a
    sentence, where every word is capitalised.
    """
    words = [w for w in re.split(r"[\s\-]+", name.strip()) if w]
    if len(words) < 2:
        return []
    forms: List[Tuple[str, bool]] = []
    significant = [w for w in words if w.lower() not in _STOP_TOKENS]
    if len(significant) >= 2:
        initials = "".join(w[0] for w in significant).upper()
        if len(initials) >= 2:
            forms.append((initials, False))
    first = words[0]
    if first.lower() in _STOP_TOKENS:
        return forms
    if _ACRONYM_TOKEN.match(first):
        forms.append((first, False))
    elif _CAPITALISED_TOKEN.match(first):
        forms.append((first, True))
    return forms


def _search_partial(form: str, mid_sentence_only: bool, message: str) -> Optional["re.Match[str]"]:
    for found in _word_pattern(form, 0).finditer(message):
        if mid_sentence_only and _SENTENCE_START.search(message[:found.start()]):
            continue
        return found
    return None


def find_entity_mentions(message: str, records: Iterable[EntityRecord]) -> List[EntityMatch]:
    """
    Find registry entities mentioned in a message.

    Full names match case-insensitively on word boundaries. Multi-word names
    also match by their short forms (see ``_partial_forms``), case-sensitively
    and at lower confidence. Overlapping matches keep the longest span; each entity is
    reported once, ordered by position.
    """
    if not message:
        return []

    candidates: List[EntityMatch] = []
    for record in records:
        name = record.name.strip()
        if not name:
            continue
        found = _word_pattern(name).search(message)
        if found:
            confidence = (
                FULL_NAME_MULTI_WORD_CONFIDENCE
                if len(name.split()) > 1
                else FULL_NAME_SINGLE_WORD_CONFIDENCE
            )
            candidates.append(EntityMatch(
                entity=record,
                matched_text=found.group(0),
                match_type="full_name",
                confidence=confidence,
                start=found.start(),
                end=found.end(),
            ))
            continue
        for form, mid_sentence_only in _partial_forms(name):
            found = _search_partial(form, mid_sentence_only, message)
            if found:
                candidates.append(EntityMatch(
                    entity=record,
                    matched_text=found.group(0),
                    match_type="acronym",
                    confidence=PARTIAL_NAME_CONFIDENCE,
                    start=found.start(),
                    end=found.end(),
                ))
                break

    candidates.sort(key=lambda m: (-(m.end - m.start), -m.confidence, m.start))
    kept: List[EntityMatch] = []
    seen_ids = set()
    for match in candidates:
        if match.entity.id in seen_ids:
            continue
        if any(match.start < k.end and k.start < match.end for k in kept):
            continue
        kept.append(match)
        seen_ids.add(match.entity.id)
    kept.sort(key=lambda m: m.start)
    return kept


class StaticEntityRegistry:
    """Fixed registry, mostly for tests and embedding."""

    def __init__(self, records: Iterable[EntityRecord] = ()):
        self._snapshot: EntitySnapshot = tuple(records)

    def lookup_companies(self) -> EntitySnapshot:
        return self._snapshot


class CachedEntityRegistry:
    """
    Registry backed by a loader, refreshed out-of-band.

    ``lookup_companies`` never performs I/O; it returns whatever snapshot was
    last installed (or the fallback records before the first successful load).
    """

    def __init__(
        self,
        loader: EntityLoader,
        ttl_seconds: float = 300.0,
        fallback: Iterable[EntityRecord] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot: EntitySnapshot = tuple(fallback)
        self._loaded_at: Optional[float] = None

    def lookup_companies(self) -> EntitySnapshot:
        return self._snapshot

    @property
    def size(self) -> int:
        return len(self._snapshot)

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self.ttl_seconds

    async def refresh(self) -> bool:
        """Reload from the loader. On failure the previous snapshot stays in place."""
        try:
            records = await self._loader()
        except Exception as exc:
            logger.warning(
                "entity_registry_refresh_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                kept_entities=len(self._snapshot),
            )
            return False
        self._snapshot = tuple(records)
        self._loaded_at = self._clock()
        update_entity_registry_size(len(self._snapshot))
        logger.info("entity_registry_refreshed", entities=len(self._snapshot))
        return True

    async def refresh_if_stale(self) -> bool:
        if self.is_stale():
            return await self.refresh()
        return False

    async def refresh_periodically(
        self,
        interval_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Reload the snapshot whenever it goes stale. Runs until cancelled.

        Args:
            interval_seconds: how often staleness is checked; defaults to the TTL
            sleep: awaitable delay, replaceable in tests
        """
        interval = interval_seconds or self.ttl_seconds
        logger.info("entity_registry_refresh_loop_started", interval_seconds=interval)
        while True:
            await sleep(interval)
            await self.refresh_if_stale()


def load_entities_from_file(path: str) -> List[EntityRecord]:
    """Read a JSON list of ``{"id", "name", "kind"?}`` objects."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    return _records_adapter.validate_python(payload)


def file_loader(path: str) -> EntityLoader:
    """Async loader reading the registry file off the event loop."""

    async def _load() -> List[EntityRecord]:
        return await asyncio.to_thread(load_entities_from_file, path)

    return _load


_registry = None


def get_entity_registry():
    """Process-wide registry; empty until the application installs one."""
    global _registry
    if _registry is None:
        _registry = StaticEntityRegistry()
    return _registry


def set_entity_registry(registry) -> None:
    global _registry
    _registry = registry
