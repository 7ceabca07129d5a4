"""Locate waybill records inside a parsed SOAP result tree.

The revenue service nests waybills under varying containers
(``WAYBILL_LIST/WAYBILL``, ``BUYER_WAYBILL`` and others) and sometimes
returns the same waybill twice, once shallow and once detailed. The tree
is walked breadth-first; every map that looks like a waybill is kept,
one per id, preferring the richer representation.
"""

import logging
from collections import deque
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

# Upper bound on visited nodes per response
MAX_NODES = 200_000

ID_KEYS = ("id", "waybillid")
AMOUNT_KEYS = (
    "fullamount", "totalamount", "grossamount", "netamount", "amountlari",
    "amount", "sum", "suma", "value", "valuelari",
)
DATE_KEYS = ("createdate", "waybilldate", "date")
CANDIDATE_KEYS = frozenset(
    ("fullamount", "totalamount", "grossamount", "netamount", "amountlari",
     "amount", "buyertin", "sellertin", "status", "createdate")
)


def normalize_key(key: str) -> str:
    """Fold a field name so ``FULL_AMOUNT`` and ``fullAmount`` compare equal."""
    return key.replace("_", "").lower()


def _folded(record: Mapping[str, Any]) -> Dict[str, Any]:
    folded: Dict[str, Any] = {}
    for key, value in record.items():
        folded.setdefault(normalize_key(key), value)
    return folded


def _non_blank(value: Any) -> bool:
    if value is None or isinstance(value, (dict, list)):
        return False
    return bool(str(value).strip())


def _first_non_blank(folded: Mapping[str, Any], keys) -> Optional[str]:
    for key in keys:
        value = folded.get(key)
        if _non_blank(value):
            return str(value).strip()
    return None


def record_id(record: Mapping[str, Any]) -> Optional[str]:
    """Return the waybill id of a record, if it has one."""
    return _first_non_blank(_folded(record), ID_KEYS)


def is_candidate(record: Mapping[str, Any]) -> bool:
    """A waybill has an id and at least one amount, party, status or date field."""
    folded = _folded(record)
    if _first_non_blank(folded, ID_KEYS) is None:
        return False
    return any(key in CANDIDATE_KEYS for key in folded)


def completeness_score(record: Mapping[str, Any]) -> int:
    """Heuristic richness of a waybill representation."""
    if not record:
        return 0
    folded = _folded(record)
    score = 0
    if _first_non_blank(folded, AMOUNT_KEYS) is not None:
        score += 20
    if _first_non_blank(folded, DATE_KEYS) is not None:
        score += 8
    if _non_blank(folded.get("buyertin")):
        score += 3
    if _non_blank(folded.get("sellertin")):
        score += 3
    if _non_blank(folded.get("status")):
        score += 1
    score += min(len(record), 50) // 5
    return score


def choose_richer(existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> Mapping[str, Any]:
    """Pick the richer of two representations of one waybill.

    Ties go to the map with more fields, then to the one seen first.
    """
    existing_score = completeness_score(existing)
    incoming_score = completeness_score(incoming)
    if incoming_score != existing_score:
        return incoming if incoming_score > existing_score else existing
    return incoming if len(incoming) > len(existing) else existing


def extract_records(tree: Mapping[str, Any], max_nodes: int = MAX_NODES) -> List[Dict[str, Any]]:
    """Collect every distinct waybill record in a result tree.

    Args:
        tree: Result tree from the SOAP parser.
        max_nodes: Stop walking after this many nodes.

    Returns:
        Records in first-seen order, one per id.
    """
    root: Any = tree
    inner = tree.get("RESULT") if isinstance(tree, Mapping) else None
    if isinstance(inner, Mapping):
        root = inner

    by_id: Dict[str, Mapping[str, Any]] = {}
    queue = deque([root])
    visited = set()
    processed = 0

    while queue:
        current = queue.popleft()
        if isinstance(current, list):
            queue.extend(item for item in current if isinstance(item, (dict, list)))
            continue
        if not isinstance(current, dict) or id(current) in visited:
            continue

        visited.add(id(current))
        processed += 1
        if processed > max_nodes:
            logger.warning(f"Stopped waybill extraction after {max_nodes} nodes")
            break

        if is_candidate(current):
            waybill_id = record_id(current)
            existing = by_id.get(waybill_id)
            by_id[waybill_id] = current if existing is None else choose_richer(existing, current)

        queue.extend(v for v in current.values() if isinstance(v, (dict, list)))

    return [dict(record) for record in by_id.values()]
