"""
Eligibility filters for fetched PRM records.

Each filter partitions its input into valid records and filtered records
with a reason code, using the first rule that matches. Filters are pure:
the same record and configuration always give the same classification.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, Optional

from partner_sync.config.filter_config import (
    AccountFilterConfig,
    ContactFilterConfig,
    FilterConfig,
)
from partner_sync.sync.records import (
    RecordT,
    RemoteAccount,
    RemoteContact,
    RemoteLead,
)
from partner_sync.utils.normalization import (
    email_domain,
    email_local_part,
    is_valid_email,
)


class FilterReason(str, Enum):
    """Why a record was excluded from synchronization."""

    NO_NAME = "noName"
    INACTIVE = "inactive"
    INVALID_TIER = "invalidTier"
    EXCLUDED_NAME = "excludedName"
    NO_EMAIL = "noEmail"
    IS_ACTIVE_NO = "isActiveNo"
    CONTACT_STATUS_INACTIVE = "contactStatusInactive"
    EXCLUDED_DOMAIN = "excludedDomain"
    EXCLUDED_PATTERN = "excludedPattern"


@dataclass(frozen=True)
class FilteredRecord(Generic[RecordT]):
    """A record rejected by a filter, with the reason."""

    record: RecordT
    reason: FilterReason


@dataclass
class Classification(Generic[RecordT]):
    """
    Result of running a filter over a batch of records.

    Attributes:
        valid: Records to synchronize, in input order
        filtered: Rejected records with reasons, in input order
    """

    valid: list[RecordT] = field(default_factory=list)
    filtered: list[FilteredRecord[RecordT]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.valid) + len(self.filtered)

    def reason_counts(self) -> dict[str, int]:
        """Count filtered records per reason code."""
        counts = Counter(item.reason.value for item in self.filtered)
        return dict(sorted(counts.items()))

    def valid_ids(self) -> set[str]:
        return {record.remote_id for record in self.valid}

    def filtered_ids(self) -> set[str]:
        return {item.record.remote_id for item in self.filtered}


def _lowered(values: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(v.lower() for v in values)


class AccountFilter:
    """
    Account eligibility rules, first match wins:

    1. missing name -> noName
    2. status in the exclude list -> inactive
    3. tier not in the include list -> invalidTier
    4. name contains an excluded substring -> excludedName
    """

    def __init__(self, config: AccountFilterConfig):
        self.config = config
        self._valid_tiers = set(_lowered(config.valid_tiers))
        self._exclude_statuses = set(_lowered(config.exclude_statuses))
        self._exclude_names = _lowered(config.exclude_names)

    def reason_for(self, account: RemoteAccount) -> Optional[FilterReason]:
        """Return the first failing rule's reason, or None if the account is valid."""
        if not account.name:
            return FilterReason.NO_NAME
        if account.status and account.status.lower() in self._exclude_statuses:
            return FilterReason.INACTIVE
        if (account.tier or "").lower() not in self._valid_tiers:
            return FilterReason.INVALID_TIER
        name = account.name.lower()
        if any(excluded in name for excluded in self._exclude_names):
            return FilterReason.EXCLUDED_NAME
        return None

    def classify(self, accounts: list[RemoteAccount]) -> Classification[RemoteAccount]:
        return _classify(accounts, self.reason_for)


class ContactFilter:
    """
    Contact eligibility rules, first match wins:

    1. missing or malformed email -> noEmail
    2. explicit inactive flag -> isActiveNo
    3. status in the exclude list -> contactStatusInactive
    4. email domain excluded -> excludedDomain
    5. local part contains an excluded substring -> excludedPattern
    """

    def __init__(self, config: ContactFilterConfig):
        self.config = config
        self._exclude_statuses = set(_lowered(config.exclude_statuses))
        self._exclude_domains = set(_lowered(config.exclude_domains))
        self._exclude_patterns = _lowered(config.exclude_patterns)

    def reason_for(self, contact: RemoteContact) -> Optional[FilterReason]:
        """Return the first failing rule's reason, or None if the contact is valid."""
        if not is_valid_email(contact.email):
            return FilterReason.NO_EMAIL
        if contact.is_active is False:
            return FilterReason.IS_ACTIVE_NO
        if contact.status and contact.status.lower() in self._exclude_statuses:
            return FilterReason.CONTACT_STATUS_INACTIVE
        if email_domain(contact.email) in self._exclude_domains:
            return FilterReason.EXCLUDED_DOMAIN
        local_part = email_local_part(contact.email)
        if any(pattern in local_part for pattern in self._exclude_patterns):
            return FilterReason.EXCLUDED_PATTERN
        return None

    def classify(self, contacts: list[RemoteContact]) -> Classification[RemoteContact]:
        return _classify(contacts, self.reason_for)


class LeadFilter:
    """Leads have no eligibility rules beyond their schema."""

    def reason_for(self, lead: RemoteLead) -> Optional[FilterReason]:
        return None

    def classify(self, leads: list[RemoteLead]) -> Classification[RemoteLead]:
        return _classify(leads, self.reason_for)


def _classify(
    records: list[RecordT],
    reason_for: Callable[[RecordT], Optional[FilterReason]],
) -> Classification[RecordT]:
    result: Classification[RecordT] = Classification()
    for record in records:
        reason = reason_for(record)
        if reason is None:
            result.valid.append(record)
        else:
            result.filtered.append(FilteredRecord(record, reason))
    return result


def build_filters(
    config: FilterConfig,
) -> tuple[AccountFilter, ContactFilter, LeadFilter]:
    """Construct the three pipeline filters from one configuration value."""
    return AccountFilter(config.accounts), ContactFilter(config.contacts), LeadFilter()
