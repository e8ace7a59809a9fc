"""
PRM objects API client.

Provides paginated, filtered reads against one remote collection:
- Fixed-size pages requested at increasing offsets until a short page
- Caller filter and "modified after" boundary combined with AND
- Helpers that build the remote boolean filter grammar
- Batched lookups by ID, issued sequentially
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote, urlencode

import requests

from partner_sync.api.http import (
    DEFAULT_INITIAL_RETRY_DELAY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY,
    APIClient,
    TransportError,
    describe_response,
)

DEFAULT_PRM_BASE_URL = "https://prod.impartner.live/api/objects/v1"

# Records per page when listing a collection
DEFAULT_PAGE_SIZE = 100

# Seconds before a page request times out
DEFAULT_PRM_TIMEOUT = 60.0

# IDs per "Id in (...)" lookup
DEFAULT_LOOKUP_BATCH_SIZE = 100

# Remote field that carries each record's last modification time
UPDATED_FIELD = "Updated"

ACCOUNT_COLLECTION = "Account"
CONTACT_COLLECTION = "User"
LEAD_COLLECTION = "Lead"

ACCOUNT_FIELDS = (
    "Id",
    "Name",
    "Partner_Tier__cf",
    "Account_Status__cf",
    "Account_Owner__cf",
    "Account_Owner_Email__cf",
    "Partner_Type__cf",
    "Website",
    "CrmId",
    "MailingCity",
    "MailingCountry",
    "Region",
    "ParentAccountId",
    "PrimaryUserId",
    "Updated",
)

CONTACT_FIELDS = (
    "Id",
    "Email",
    "FirstName",
    "LastName",
    "Title",
    "Phone",
    "Account",
    "AccountName",
    "Contact_Status__cf",
    "IsActive",
    "CrmId",
    "Updated",
)

LEAD_FIELDS = (
    "Id",
    "FirstName",
    "LastName",
    "Email",
    "Phone",
    "Title",
    "CompanyName",
    "PartnerAccountId",
    "Status",
    "Source",
    "Created",
    "CrmId",
    "Updated",
)

# Fields fetched when enriching accounts with their primary user
PRIMARY_USER_FIELDS = ("Id", "FirstName", "LastName", "Email")

logger = logging.getLogger(__name__)


class PRMAPIError(TransportError):
    """Raised when a PRM request fails or returns an unusable payload."""

    pass


# =============================================================================
# Filter Expression Helpers
# =============================================================================


def _quote_value(value: Any) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def format_timestamp(value: datetime) -> str:
    """
    Format a datetime for the filter grammar.

    Produces UTC ISO-8601 with milliseconds and no trailing 'Z',
    e.g. 2024-05-01T09:30:00.000. Naive values are taken to be UTC.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="milliseconds")


def eq(field: str, value: Any) -> str:
    """Field = 'value'"""
    return f"{field} = {_quote_value(value)}"


def ne(field: str, value: Any) -> str:
    """Field != 'value'"""
    return f"{field} != {_quote_value(value)}"


def gt(field: str, value: Any) -> str:
    """Field > 'value'; datetimes are formatted with format_timestamp()."""
    if isinstance(value, datetime):
        value = format_timestamp(value)
    return f"{field} > {_quote_value(value)}"


def in_(field: str, values: Iterable[Any]) -> str:
    """Field in (v1,v2,...)"""
    return f"{field} in ({','.join(str(v) for v in values)})"


def and_(*expressions: Optional[str]) -> Optional[str]:
    """Combine expressions with 'and', each parenthesized. Empty parts are skipped."""
    parts = [f"({expr})" for expr in expressions if expr]
    return " and ".join(parts) if parts else None


def or_(*expressions: Optional[str]) -> Optional[str]:
    """Combine expressions with 'or', each parenthesized. Empty parts are skipped."""
    parts = [f"({expr})" for expr in expressions if expr]
    return " or ".join(parts) if parts else None


# =============================================================================
# Client
# =============================================================================


class PRMClient(APIClient):
    """
    Read-only client for PRM object collections.

    Attributes:
        page_size: Records requested per page

    Usage:
        client = PRMClient(api_key, tenant_id)

        # Every account
        records = client.fetch_all("Account", ACCOUNT_FIELDS)

        # Accounts modified since the last completed run
        records = client.fetch_all("Account", ACCOUNT_FIELDS,
                                   modified_after=boundary)

        # Users by ID, 100 per request
        users = client.fetch_by_ids("User", PRIMARY_USER_FIELDS, ids)
    """

    error_class = PRMAPIError

    def __init__(
        self,
        api_key: str,
        tenant_id: str,
        base_url: str = DEFAULT_PRM_BASE_URL,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: float = DEFAULT_PRM_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the PRM client.

        Args:
            api_key: PRM API key
            tenant_id: PRM tenant identifier
            base_url: Objects API root
            page_size: Records per page (default 100)
            timeout: Request timeout in seconds (default 60)
            max_retries: Maximum attempts per request (default 5)
            initial_retry_delay: Initial backoff delay in seconds (default 1.0)
            max_retry_delay: Maximum backoff delay in seconds (default 60.0)
            session: Optional preconfigured requests session
        """
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        super().__init__(
            base_url,
            headers={
                "Authorization": f"prm-key {api_key}",
                "X-PRM-TenantId": str(tenant_id),
                "Accept": "application/json",
            },
            timeout=timeout,
            max_retries=max_retries,
            initial_retry_delay=initial_retry_delay,
            max_retry_delay=max_retry_delay,
            session=session,
        )
        self.page_size = page_size

    def fetch_all(
        self,
        collection: str,
        fields: Sequence[str],
        filter_expr: Optional[str] = None,
        modified_after: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        """
        Fetch every record of a collection visible at call time.

        Pages are requested until one returns fewer records than the page
        size. Records are returned in remote order.

        Args:
            collection: Remote collection name (e.g. "Account")
            fields: Field names to request
            filter_expr: Optional boolean filter expression
            modified_after: Optional boundary; only records updated after it

        Returns:
            List of raw record dictionaries

        Raises:
            PRMAPIError: On any non-success response or malformed payload.
                         No partial result is returned.
        """
        boundary = gt(UPDATED_FIELD, modified_after) if modified_after else None
        combined_filter = and_(filter_expr, boundary)

        records: list[dict[str, Any]] = []
        skip = 0
        page_number = 0

        while True:
            page_number += 1
            page = self._fetch_page(collection, fields, skip, combined_filter)
            records.extend(page)
            logger.debug(
                f"{collection} page {page_number}: {len(page)} records "
                f"(total {len(records)})"
            )
            if len(page) < self.page_size:
                break
            skip += len(page)

        logger.info(f"Fetched {len(records)} {collection} records")
        return records

    def fetch_by_ids(
        self,
        collection: str,
        fields: Sequence[str],
        ids: Iterable[Any],
        batch_size: int = DEFAULT_LOOKUP_BATCH_SIZE,
    ) -> list[dict[str, Any]]:
        """
        Fetch records by ID in fixed-size batches, one batch at a time.

        Args:
            collection: Remote collection name
            fields: Field names to request
            ids: Record IDs; duplicates are dropped
            batch_size: IDs per request

        Returns:
            List of raw record dictionaries

        Raises:
            PRMAPIError: If any batch fails
        """
        unique_ids = list(dict.fromkeys(str(i) for i in ids if i not in (None, "")))
        records: list[dict[str, Any]] = []

        for start in range(0, len(unique_ids), batch_size):
            batch = unique_ids[start : start + batch_size]
            records.extend(self.fetch_all(collection, fields, in_("Id", batch)))

        return records

    def _fetch_page(
        self,
        collection: str,
        fields: Sequence[str],
        skip: int,
        filter_expr: Optional[str],
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {
            "fields": ",".join(fields),
            "take": self.page_size,
            "skip": skip,
        }
        if filter_expr:
            params["filter"] = filter_expr
        query = urlencode(params, quote_via=quote, safe=",")
        operation = f"fetch {collection} (skip={skip})"

        response = self._request("GET", f"{collection}?{query}", operation)

        if response.status_code != 200:
            raise PRMAPIError(f"{operation} failed: {describe_response(response)}")

        return self._parse_results(response, operation)

    @staticmethod
    def _parse_results(
        response: requests.Response, operation: str
    ) -> list[dict[str, Any]]:
        """
        Extract data.results from a page response.

        Raises:
            PRMAPIError: If success is not true or the payload shape is wrong
        """
        try:
            payload = response.json()
        except ValueError as e:
            raise PRMAPIError(f"{operation} returned invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise PRMAPIError(f"{operation} returned a malformed payload")

        if payload.get("success") is not True:
            message = payload.get("message") or payload.get("errors") or "unknown error"
            raise PRMAPIError(f"{operation} was not successful: {message}")

        data = payload.get("data")
        results = data.get("results") if isinstance(data, dict) else None
        if results is None and isinstance(data, dict) and data.get("count") == 0:
            return []
        if not isinstance(results, list):
            raise PRMAPIError(f"{operation} returned a payload without data.results")

        return results
