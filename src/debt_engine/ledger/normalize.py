"""Turn raw waybill records into LedgerDocument instances."""

import logging
import re
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..amounts import ZERO, parse_amount
from ..dates import parse_date
from .extraction import normalize_key
from .models import CANCELLED_STATUSES, LedgerDirection, LedgerDocument, LineItem

logger = logging.getLogger(__name__)

# First non-null, non-zero value wins
AMOUNT_PRIORITY = (
    "fullamount", "totalamount", "netamount", "grossamount", "amount",
    "sum", "value", "price", "cost",
    "amountlari", "suma", "valuelari", "totalprice", "totalcost",
)
DATE_KEYS = ("createdate", "date", "waybilldate")

GOODS_CONTAINER_KEYS = (
    "goodslist", "goodsdetails", "goods", "items", "products",
    "productlist", "waybillgoods",
)
GOODS_INNER_KEYS = ("goods", "items", "item", "product")
GOODS_NAME_KEYS = (
    "wname", "name", "goodsname", "prodname", "itemname", "productname", "description",
)
GOODS_QUANTITY_KEYS = ("quantityf", "quantity", "qty", "count", "amountkg", "weight")
GOODS_UNIT_KEYS = ("unit", "unitname")

_TIN_NOISE = re.compile(r"[\s\-_.]")


def normalize_tin(tin: Optional[str]) -> Optional[str]:
    """Strip spaces, dashes, underscores and dots from a tax id."""
    if tin is None:
        return None
    cleaned = _TIN_NOISE.sub("", str(tin))
    return cleaned or None


def _folded(record: Mapping[str, Any]) -> Dict[str, Any]:
    folded: Dict[str, Any] = {}
    for key, value in record.items():
        folded.setdefault(normalize_key(key), value)
    return folded


def _text(folded: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = folded.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _decimal(folded: Mapping[str, Any], keys: Sequence[str]) -> Optional[Decimal]:
    for key in keys:
        value = folded.get(key)
        if isinstance(value, (dict, list)):
            continue
        amount = parse_amount(value)
        if amount is not None:
            return amount
    return None


def extract_amount(record: Mapping[str, Any]) -> Decimal:
    """Pick the document amount by key priority; zero if none is usable."""
    folded = _folded(record)
    for key in AMOUNT_PRIORITY:
        value = folded.get(key)
        if isinstance(value, (dict, list)):
            continue
        amount = parse_amount(value)
        if amount is not None and amount != ZERO:
            return amount
    return ZERO


def extract_status(record: Mapping[str, Any]) -> Optional[int]:
    status = _text(_folded(record), "status")
    if status is None:
        return None
    try:
        return int(status)
    except ValueError:
        return None


def extract_line_items(record: Mapping[str, Any]) -> List[LineItem]:
    """Read goods lines from whichever container the waybill uses."""
    folded = _folded(record)
    container: Any = None
    for key in GOODS_CONTAINER_KEYS:
        if folded.get(key) is not None:
            container = folded[key]
            break
    if container is None:
        return []

    if isinstance(container, dict):
        inner = _folded(container)
        for key in GOODS_INNER_KEYS:
            if inner.get(key) is not None:
                container = inner[key]
                break

    if isinstance(container, dict):
        items: Iterable[Any] = [container]
    elif isinstance(container, list):
        items = container
    else:
        return []

    lines = []
    for item in items:
        if not isinstance(item, dict):
            continue
        fields = _folded(item)
        name = _text(fields, *GOODS_NAME_KEYS)
        if name is None:
            continue
        lines.append(LineItem(
            name=name,
            quantity=_decimal(fields, GOODS_QUANTITY_KEYS),
            unit=_text(fields, *GOODS_UNIT_KEYS),
            unit_price=_decimal(fields, ("unitprice", "price")),
            total_price=_decimal(fields, ("totalprice", "sum", "amount")),
        ))
    return lines


def normalize_document(
    record: Mapping[str, Any],
    direction: LedgerDirection,
) -> Optional[LedgerDocument]:
    """Build a LedgerDocument from a raw record.

    Args:
        record: Raw waybill map from the extractor.
        direction: SALE takes the buyer as counterparty, PURCHASE the seller.

    Returns:
        The document, or None when it is cancelled or has no id.
    """
    status = extract_status(record)
    if status in CANCELLED_STATUSES:
        return None

    folded = _folded(record)
    document_id = _text(folded, "id", "waybillid")
    if document_id is None:
        return None

    buyer_tin = normalize_tin(_text(folded, "buyertin"))
    buyer_name = _text(folded, "buyername")
    seller_tin = normalize_tin(_text(folded, "sellertin"))
    seller_name = _text(folded, "sellername")

    if direction is LedgerDirection.SALE:
        counterparty_id, counterparty_name = buyer_tin, buyer_name
    else:
        counterparty_id, counterparty_name = seller_tin, seller_name

    document_date = None
    for key in DATE_KEYS:
        value = folded.get(key)
        if isinstance(value, (dict, list)):
            continue
        document_date = parse_date(value)
        if document_date is not None:
            break

    return LedgerDocument(
        id=document_id,
        direction=direction,
        counterparty_id=counterparty_id,
        counterparty_name=counterparty_name,
        document_date=document_date,
        gross_amount=extract_amount(record),
        status_code=status,
        buyer_tin=buyer_tin,
        buyer_name=buyer_name,
        seller_tin=seller_tin,
        seller_name=seller_name,
        line_items=extract_line_items(record),
    )


def normalize_documents(
    records: Iterable[Mapping[str, Any]],
    direction: LedgerDirection,
) -> List[LedgerDocument]:
    """Normalize many records, dropping cancelled ones."""
    documents = []
    skipped = 0
    for record in records:
        document = normalize_document(record, direction)
        if document is None:
            skipped += 1
            continue
        documents.append(document)
    if skipped:
        logger.info(f"Skipped {skipped} cancelled or unidentified {direction.value} waybills")
    return documents
