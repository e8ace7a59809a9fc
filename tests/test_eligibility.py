"""Tests for the account and contact eligibility filters."""

import pytest

from partner_sync.config.filter_config import (
    AccountFilterConfig,
    ContactFilterConfig,
    FilterConfig,
)
from partner_sync.sync.eligibility import (
    AccountFilter,
    ContactFilter,
    FilterReason,
    LeadFilter,
    build_filters,
)
from partner_sync.sync.records import RemoteAccount, RemoteContact, RemoteLead


def account(**kwargs):
    values = {
        "remote_id": "1",
        "name": "Acme Corp",
        "tier": "Premier",
        "status": "Active",
    }
    values.update(kwargs)
    return RemoteAccount(**values)


def contact(**kwargs):
    values = {"remote_id": "5", "email": "jane.doe@acme.com", "status": "Active"}
    values.update(kwargs)
    return RemoteContact(**values)


class TestAccountFilter:
    """Test account eligibility rules."""

    def setup_method(self):
        self.filter = AccountFilter(AccountFilterConfig())

    def test_valid_account(self):
        """A named, active account in a valid tier is valid."""
        assert self.filter.reason_for(account()) is None

    def test_missing_name(self):
        """An account without a name is always noName."""
        assert self.filter.reason_for(account(name=None)) == FilterReason.NO_NAME
        assert (
            self.filter.reason_for(account(name=None, status="Inactive", tier="Gold"))
            == FilterReason.NO_NAME
        )

    def test_inactive_status(self):
        """Excluded statuses are matched case-insensitively."""
        reason = self.filter.reason_for(account(status="inactive"))
        assert reason == FilterReason.INACTIVE

    def test_status_checked_before_tier(self):
        """Status rules win over tier rules."""
        reason = self.filter.reason_for(account(status="Inactive", tier=None))
        assert reason == FilterReason.INACTIVE

    def test_invalid_tier(self):
        """Tiers outside the include list are rejected."""
        assert self.filter.reason_for(account(tier="Gold")) == FilterReason.INVALID_TIER
        assert self.filter.reason_for(account(tier=None)) == FilterReason.INVALID_TIER

    def test_tier_case_insensitive(self):
        """Tier matching ignores case."""
        assert self.filter.reason_for(account(tier="premier plus")) is None

    def test_excluded_name(self):
        """Names containing an excluded substring are rejected."""
        reason = self.filter.reason_for(account(name="Nintex Internal"))
        assert reason == FilterReason.EXCLUDED_NAME

    def test_custom_config(self):
        """Substituted rule lists are honored."""
        custom = AccountFilter(AccountFilterConfig(valid_tiers=("Gold",)))
        assert custom.reason_for(account(tier="Gold")) is None
        assert custom.reason_for(account(tier="Premier")) == FilterReason.INVALID_TIER

    def test_empty_exclude_list_disables_rule(self):
        """An empty status list disables the status rule."""
        custom = AccountFilter(AccountFilterConfig(exclude_statuses=()))
        assert custom.reason_for(account(status="Inactive")) is None

    def test_classify_partitions_in_order(self):
        """Classification keeps input order in both partitions."""
        records = [
            account(remote_id="1"),
            account(remote_id="2", tier="Gold"),
            account(remote_id="3"),
            account(remote_id="4", name=None),
        ]
        result = self.filter.classify(records)

        assert [a.remote_id for a in result.valid] == ["1", "3"]
        assert [f.record.remote_id for f in result.filtered] == ["2", "4"]
        assert result.total == 4
        assert result.valid_ids() == {"1", "3"}
        assert result.filtered_ids() == {"2", "4"}
        assert result.reason_counts() == {"invalidTier": 1, "noName": 1}

    def test_deterministic(self):
        """The same input always gives the same classification."""
        records = [account(tier="Gold"), account(remote_id="2")]
        first = self.filter.classify(records)
        second = self.filter.classify(records)
        assert first == second


class TestContactFilter:
    """Test contact eligibility rules."""

    def setup_method(self):
        self.filter = ContactFilter(ContactFilterConfig())

    def test_valid_contact(self):
        """An ordinary active contact is valid."""
        assert self.filter.reason_for(contact()) is None

    @pytest.mark.parametrize("email", [None, "jane.acme.com", "jane@", "@acme.com"])
    def test_missing_or_malformed_email(self, email):
        """Missing or malformed emails are noEmail."""
        assert self.filter.reason_for(contact(email=email)) == FilterReason.NO_EMAIL

    def test_inactive_flag(self):
        """An explicit inactive flag is isActiveNo."""
        reason = self.filter.reason_for(contact(is_active=False))
        assert reason == FilterReason.IS_ACTIVE_NO

    def test_unknown_flag_is_not_inactive(self):
        """An absent active flag does not exclude the contact."""
        assert self.filter.reason_for(contact(is_active=None)) is None

    def test_inactive_status(self):
        """Excluded contact statuses are contactStatusInactive."""
        reason = self.filter.reason_for(contact(status="INACTIVE"))
        assert reason == FilterReason.CONTACT_STATUS_INACTIVE

    def test_excluded_domain(self):
        """Contacts on excluded domains are rejected."""
        reason = self.filter.reason_for(contact(email="jane@nintex.com"))
        assert reason == FilterReason.EXCLUDED_DOMAIN

    def test_excluded_pattern(self):
        """Role mailboxes are rejected by local-part pattern."""
        reason = self.filter.reason_for(contact(email="demo@acme.com"))
        assert reason == FilterReason.EXCLUDED_PATTERN

    def test_pattern_only_checks_local_part(self):
        """Patterns in the domain do not exclude a contact."""
        assert self.filter.reason_for(contact(email="jane@salesforce-demo.com")) is None

    def test_domain_checked_before_pattern(self):
        """Domain rules win over pattern rules."""
        reason = self.filter.reason_for(contact(email="support@nintex.com"))
        assert reason == FilterReason.EXCLUDED_DOMAIN


class TestLeadFilter:
    """Test lead classification."""

    def test_all_leads_valid(self):
        """Leads have no eligibility rules."""
        result = LeadFilter().classify([RemoteLead(remote_id="L1")])
        assert len(result.valid) == 1
        assert result.filtered == []


class TestBuildFilters:
    """Test building filters from one configuration value."""

    def test_build_filters(self):
        """Each filter receives its own section."""
        config = FilterConfig(
            accounts=AccountFilterConfig(valid_tiers=("Gold",)),
            contacts=ContactFilterConfig(exclude_patterns=("noreply",)),
        )
        accounts, contacts, leads = build_filters(config)
        assert accounts.config.valid_tiers == ("Gold",)
        assert contacts.config.exclude_patterns == ("noreply",)
        assert isinstance(leads, LeadFilter)
