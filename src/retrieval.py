"""
Product records and bounded-concurrency retrieval.

Every product in the master workbook is identified by its A2V article number.
This module validates those keys and fetches one catalog record per unique key
through an injected fetch capability (any callable ``key -> ProductRecord``):

    outcomes = fetch_all(keys, fetcher, concurrency=6)
    outcomes['A2V00001234567'].record   # ProductRecord, or None if the fetch failed
    outcomes['A2V00001234567'].error    # failure text, or None

A failing key never affects the others; its outcome simply carries the error
and the reconciliation later reports the web side as missing.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from config import InvalidProductKeyError

logger = logging.getLogger(__name__)

KEY_PREFIX = 'A2V'
PRODUCT_URL_TEMPLATE = 'https://www.mymobase.com/de/p/{key}'


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def normalize_key(raw) -> str:
    """Trim and uppercase a product key (None becomes '')."""
    if raw is None:
        return ''
    return str(raw).strip().upper()


def is_eligible_key(key: str) -> bool:
    """Only keys with the A2V prefix are fetched; everything else is ignored."""
    return bool(key) and normalize_key(key).startswith(KEY_PREFIX)


def product_url(key: str) -> str:
    """Canonical catalog URL for a product key."""
    return PRODUCT_URL_TEMPLATE.format(key=normalize_key(key))


# ---------------------------------------------------------------------------
# Records and outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProductRecord:
    """Product data as published in the catalog (raw text, '' when absent)."""

    key: str
    url: str = ''
    title: str = ''
    alternate_id: str = ''
    weight: str = ''
    dimensions: str = ''
    material: str = ''
    material_classification: str = ''

    @classmethod
    def placeholder(cls, key: str) -> 'ProductRecord':
        """Empty record for keys that were not (successfully) fetched."""
        key = normalize_key(key)
        return cls(key=key, url=product_url(key) if key else '')

    def as_dict(self) -> Dict[str, str]:
        return {
            'key': self.key,
            'url': self.url,
            'title': self.title,
            'alternate_id': self.alternate_id,
            'weight': self.weight,
            'dimensions': self.dimensions,
            'material': self.material,
            'material_classification': self.material_classification,
        }


@dataclass(frozen=True)
class RetrievalOutcome:
    """Result of fetching one key: either a record or an error message."""

    key: str
    record: Optional[ProductRecord] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.record is not None


FetchOne = Callable[[str], ProductRecord]


def outcome_record(outcomes: Dict[str, RetrievalOutcome], key: str) -> ProductRecord:
    """
    Record to reconcile against for a key.

    Ineligible keys, keys without an outcome and failed fetches all yield the
    placeholder record; none of them is an error at this point.
    """
    key = normalize_key(key)
    outcome = outcomes.get(key) if is_eligible_key(key) else None
    if outcome is None or outcome.record is None:
        return ProductRecord.placeholder(key)
    return outcome.record


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

def unique_keys(keys: Iterable[str]) -> List[str]:
    """Normalized eligible keys, first occurrence order, no duplicates."""
    seen = {}
    for raw in keys:
        key = normalize_key(raw)
        if is_eligible_key(key) and key not in seen:
            seen[key] = None
    return list(seen)


def fetch_single(raw_key, fetch_one: FetchOne) -> ProductRecord:
    """
    Fetch one product for a single-key request.

    Raises InvalidProductKeyError (without fetching) if the key lacks the
    A2V prefix. Fetch failures propagate to the caller.
    """
    key = normalize_key(raw_key)
    if not is_eligible_key(key):
        raise InvalidProductKeyError(key, KEY_PREFIX)
    return fetch_one(key)


def fetch_all(
    keys: Iterable[str],
    fetch_one: FetchOne,
    concurrency: int,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> Dict[str, RetrievalOutcome]:
    """
    Fetch every unique eligible key with at most ``concurrency`` fetches in flight.

    Returns one outcome per unique key once all fetches have finished. There is
    no retry and no timeout here; a slow fetch holds its worker until it returns.

    Args:
        keys: product keys, duplicates and ineligible values allowed
        fetch_one: callable key -> ProductRecord, may raise
        concurrency: maximum number of simultaneous fetches (>= 1)
        progress_callback: optional callable(done, total) after each finished key
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    pending = unique_keys(keys)
    total = len(pending)
    outcomes: Dict[str, RetrievalOutcome] = {}
    if not pending:
        return outcomes

    logger.info("Fetching %d product(s) with concurrency %d", total, concurrency)

    with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix='fetch') as executor:
        futures = {executor.submit(fetch_one, key): key for key in pending}
        for done, future in enumerate(as_completed(futures), start=1):
            key = futures[future]
            try:
                outcomes[key] = RetrievalOutcome(key=key, record=future.result())
            except Exception as e:
                logger.warning("Fetching %s failed: %s", key, e)
                outcomes[key] = RetrievalOutcome(key=key, error=str(e) or type(e).__name__)
            if progress_callback:
                progress_callback(done, total)

    failed = sum(1 for o in outcomes.values() if not o.ok)
    logger.info("Fetched %d product(s), %d failed", total - failed, failed)

    # Keep the input order for callers that display the map
    return {key: outcomes[key] for key in pending}
