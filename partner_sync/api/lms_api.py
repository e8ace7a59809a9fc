"""
Learning platform API client.

Covers the group membership and group deletion calls the offboarding
cascade needs. HTTP 2xx and 404 (already absent) both count as success.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from partner_sync.api.http import (
    DEFAULT_INITIAL_RETRY_DELAY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY,
    APIClient,
    TransportError,
    describe_response,
)

DEFAULT_LMS_BASE_URL = "https://api.northpass.com/v2"

# People per membership request
DEFAULT_MEMBERSHIP_BATCH_SIZE = 50

# Seconds before a request times out
DEFAULT_LMS_TIMEOUT = 30.0

logger = logging.getLogger(__name__)


class LMSAPIError(TransportError):
    """Raised when a learning platform request fails."""

    pass


@dataclass
class MembershipResult:
    """
    Outcome of a batched membership change.

    Attributes:
        succeeded: Person IDs whose membership change took effect
        failed: (person ID, error message) pairs that could not be changed
    """

    succeeded: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def membership_payload(person_ids: Iterable[Any]) -> dict[str, Any]:
    """Build the JSON:API body referencing a set of people."""
    return {"data": [{"type": "people", "id": str(pid)} for pid in person_ids]}


def _is_success(response: requests.Response) -> bool:
    return 200 <= response.status_code < 300 or response.status_code == 404


class LMSClient(APIClient):
    """
    Client for learning platform group operations.

    Usage:
        client = LMSClient(api_key)
        result = client.remove_members(group_id, ["p1", "p2"])
        deleted = client.delete_group(group_id)
    """

    error_class = LMSAPIError

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_LMS_BASE_URL,
        batch_size: int = DEFAULT_MEMBERSHIP_BATCH_SIZE,
        timeout: float = DEFAULT_LMS_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(
            base_url,
            headers={
                "X-Api-Key": api_key,
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            max_retries=max_retries,
            initial_retry_delay=initial_retry_delay,
            max_retry_delay=max_retry_delay,
            session=session,
        )
        self.batch_size = max(1, batch_size)

    def add_members(self, group_id: str, person_ids: Iterable[Any]) -> MembershipResult:
        """
        Add people to a group.

        Returns:
            MembershipResult listing added and failed person IDs
        """
        return self._change_members("POST", group_id, person_ids)

    def remove_members(
        self, group_id: str, person_ids: Iterable[Any]
    ) -> MembershipResult:
        """
        Remove people from a group. People already absent count as removed.

        Returns:
            MembershipResult listing removed and failed person IDs
        """
        return self._change_members("DELETE", group_id, person_ids)

    def delete_group(self, group_id: str) -> bool:
        """
        Delete a group.

        Returns:
            True if the group was deleted, False if it was already gone

        Raises:
            LMSAPIError: If the platform rejects the deletion
        """
        operation = f"delete group {group_id}"
        response = self._request("DELETE", f"groups/{group_id}", operation)

        if response.status_code == 404:
            logger.info(f"Group {group_id} already absent on learning platform")
            return False
        if not _is_success(response):
            raise LMSAPIError(f"{operation} failed: {describe_response(response)}")
        return True

    def _change_members(
        self, method: str, group_id: str, person_ids: Iterable[Any]
    ) -> MembershipResult:
        """
        Send membership changes in batches, falling back to one request per
        person when a batch fails.
        """
        ids = list(dict.fromkeys(str(pid) for pid in person_ids))
        result = MembershipResult()

        for start in range(0, len(ids), self.batch_size):
            batch = ids[start : start + self.batch_size]
            try:
                self._send_membership(method, group_id, batch)
                result.succeeded.extend(batch)
                continue
            except TransportError as e:
                if len(batch) == 1:
                    result.failed.append((batch[0], str(e)))
                    continue
                logger.warning(
                    f"Batch membership {method} on group {group_id} failed, "
                    f"retrying {len(batch)} people individually: {e}"
                )

            for person_id in batch:
                try:
                    self._send_membership(method, group_id, [person_id])
                    result.succeeded.append(person_id)
                except TransportError as e:
                    logger.error(
                        f"Membership {method} for person {person_id} "
                        f"on group {group_id} failed: {e}"
                    )
                    result.failed.append((person_id, str(e)))

        return result

    def _send_membership(self, method: str, group_id: str, batch: list[str]) -> None:
        operation = f"{method} {len(batch)} members on group {group_id}"
        response = self._request(
            method,
            f"groups/{group_id}/relationships/people",
            operation,
            json=membership_payload(batch),
        )
        if not _is_success(response):
            raise LMSAPIError(f"{operation} failed: {describe_response(response)}")
