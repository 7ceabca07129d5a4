"""Client for the revenue service waybill SOAP API."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..config import Settings, get_settings
from ..exceptions import ExternalServiceError, ValidationError
from .extraction import extract_records
from .models import (
    STATUS_MISSING_SELLER,
    STATUS_RANGE_TOO_LARGE,
    LedgerDirection,
    LedgerDocument,
    SoapResult,
)
from .normalize import normalize_documents
from .soap import SERVICE_NAME, build_envelope, parse_response, read_status, soap_action

logger = logging.getLogger(__name__)

DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def split_date_range(start: date, end_exclusive: date, days: int = 3) -> List[Tuple[date, date]]:
    """Split ``[start, end_exclusive)`` into consecutive windows of ``days``.

    The last window is truncated at ``end_exclusive``.
    """
    if days < 1:
        raise ValueError("days must be positive")
    windows = []
    current = start
    while current < end_exclusive:
        window_end = min(current + timedelta(days=days), end_exclusive)
        windows.append((current, window_end))
        current = window_end
    return windows


class LedgerClient:
    """Fetches sale and purchase waybills.

    Expected service faults are handled by status code: a missing seller
    context is retried once with the fallback seller id and a range that is
    too large is re-fetched as 3-day windows in parallel.
    """

    def __init__(
        self,
        endpoint: str,
        username: str,
        password: str,
        timeout: float = 120.0,
        connect_timeout: float = 30.0,
        chunk_days: int = 3,
        max_chunk_workers: int = 8,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize the client.

        Args:
            endpoint: SOAP endpoint URL.
            username: Service user, optionally ``"<user>:<seller id>"``.
            password: Service password.
            timeout: Read timeout per call in seconds.
            connect_timeout: Connect timeout per call in seconds.
            chunk_days: Window size used when a range is too large.
            max_chunk_workers: Upper bound on parallel window fetches.
            http_client: Optional preconfigured client, e.g. for tests.
        """
        self.endpoint = endpoint
        self.username = username or ""
        self._password = password or ""
        self.chunk_days = chunk_days
        self.max_chunk_workers = max(1, max_chunk_workers)
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "LedgerClient":
        """Build a client from application settings."""
        settings = settings or get_settings()
        return cls(
            endpoint=settings.ledger_endpoint,
            username=settings.ledger_username,
            password=settings.ledger_password,
            timeout=settings.ledger_timeout_seconds,
            connect_timeout=settings.ledger_connect_timeout_seconds,
            chunk_days=settings.ledger_chunk_days,
            max_chunk_workers=settings.ledger_max_chunk_workers,
        )

    @property
    def seller_id(self) -> str:
        """Seller id embedded in the username after ``:``, or blank."""
        if ":" in self.username:
            return self.username.split(":", 1)[1].strip()
        return ""

    @property
    def fallback_seller_id(self) -> str:
        """Seller id to retry with when the service reports it missing."""
        return self.username.strip()

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "LedgerClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def fetch(
        self,
        direction: LedgerDirection,
        start_date: date,
        end_date_exclusive: date,
    ) -> List[LedgerDocument]:
        """Fetch normalized, non-cancelled documents created in a date range.

        Args:
            direction: SALE or PURCHASE.
            start_date: First day to include.
            end_date_exclusive: First day to exclude.

        Returns:
            Documents in service order.

        Raises:
            ExternalServiceError: If the service is unreachable or faults
                in a way that cannot be recovered.
        """
        records = self.fetch_raw(direction, start_date, end_date_exclusive)
        documents = normalize_documents(records, direction)
        logger.info(
            f"Fetched {len(documents)} {direction.value} documents "
            f"for {start_date}..{end_date_exclusive}"
        )
        return documents

    def fetch_raw(
        self,
        direction: LedgerDirection,
        start_date: date,
        end_date_exclusive: date,
    ) -> List[Dict[str, Any]]:
        """Fetch the raw waybill records of a date range."""
        if start_date >= end_date_exclusive:
            raise ValidationError(
                f"Empty date range {start_date}..{end_date_exclusive}", field="start_date"
            )

        operation = direction.operation
        seller_id = self.seller_id
        result = self._call(operation, start_date, end_date_exclusive, seller_id)

        if result.status == STATUS_MISSING_SELLER:
            fallback = self.fallback_seller_id
            if not fallback or fallback == seller_id:
                raise ExternalServiceError(
                    SERVICE_NAME, f"{operation}: seller context missing and no fallback seller id"
                )
            logger.warning(f"{operation}: seller context missing, retrying with fallback seller id")
            seller_id = fallback
            result = self._call(operation, start_date, end_date_exclusive, seller_id)
            if result.status == STATUS_MISSING_SELLER:
                raise ExternalServiceError(
                    SERVICE_NAME, f"{operation}: seller context missing after fallback retry"
                )

        if result.status == STATUS_RANGE_TOO_LARGE:
            logger.info(f"{operation}: range {start_date}..{end_date_exclusive} too large, chunking")
            return self._fetch_chunked(operation, start_date, end_date_exclusive, seller_id)

        if not result.ok:
            logger.warning(f"{operation}: unexpected status {result.status}, treating as empty")
            return []

        return extract_records(result.payload)

    def _fetch_chunked(
        self,
        operation: str,
        start_date: date,
        end_date_exclusive: date,
        seller_id: str,
    ) -> List[Dict[str, Any]]:
        windows = split_date_range(start_date, end_date_exclusive, self.chunk_days)
        workers = min(self.max_chunk_workers, len(windows))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ledger-chunk") as pool:
            futures = [
                pool.submit(self._fetch_window, operation, window_start, window_end, seller_id)
                for window_start, window_end in windows
            ]
            # Results are gathered in window order; the first failure propagates
            results = [future.result() for future in futures]

        records = [record for window_records in results for record in window_records]
        logger.info(f"{operation}: {len(windows)} windows returned {len(records)} records")
        return records

    def _fetch_window(
        self,
        operation: str,
        window_start: date,
        window_end: date,
        seller_id: str,
    ) -> List[Dict[str, Any]]:
        result = self._call(operation, window_start, window_end, seller_id)
        if result.status == STATUS_MISSING_SELLER:
            raise ExternalServiceError(
                SERVICE_NAME, f"{operation}: seller context missing for {window_start}..{window_end}"
            )
        if result.status == STATUS_RANGE_TOO_LARGE:
            logger.warning(
                f"{operation}: window {window_start}..{window_end} still too large, keeping partial result"
            )
        elif not result.ok:
            logger.warning(
                f"{operation}: window {window_start}..{window_end} returned status {result.status}, skipping"
            )
            return []
        return extract_records(result.payload)

    def _call(
        self,
        operation: str,
        start_date: date,
        end_date_exclusive: date,
        seller_id: str,
    ) -> SoapResult:
        params = {
            "su": self.username,
            "sp": self._password,
            "seller_un_id": seller_id,
            "create_date_s": start_date.strftime(DATETIME_FORMAT),
            "create_date_e": end_date_exclusive.strftime(DATETIME_FORMAT),
        }
        envelope = build_envelope(operation, params)
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": soap_action(operation),
        }

        try:
            response = self._http.post(self.endpoint, content=envelope.encode("utf-8"), headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"{operation}: transport error: {e}")
            raise ExternalServiceError(SERVICE_NAME, f"{operation} failed: {e}") from e

        # SOAP faults arrive with HTTP 500 and are parsed below
        if response.status_code not in (200, 500):
            raise ExternalServiceError(
                SERVICE_NAME, f"{operation}: HTTP {response.status_code}"
            )

        tree = parse_response(response.text, operation)
        status = read_status(tree)
        logger.debug(f"{operation} {start_date}..{end_date_exclusive} status={status}")
        return SoapResult(status=status, payload=tree)
