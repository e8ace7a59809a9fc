"""Tests for identity resolution."""

from partner_sync.sync.resolver import IdentityIndex, MatchKey, PartnerLookup


def row(local_id, remote_id=None, name=None, crm_id=None, is_active=1, **extra):
    values = {
        "id": local_id,
        "remote_id": remote_id,
        "account_name": name,
        "crm_id": crm_id,
        "is_active": is_active,
    }
    values.update(extra)
    return values


def partner_index(rows):
    return IdentityIndex(rows, natural_column="account_name", natural_key=MatchKey.NAME)


class TestIdentityIndex:
    """Test candidate key priority and adoption rules."""

    def test_no_match(self):
        """Unknown records resolve to None."""
        assert partner_index([row(1, "10", "Acme")]).resolve("99") is None

    def test_remote_id_match(self):
        """An exact remote ID match is used first."""
        match = partner_index([row(1, "10", "Acme")]).resolve("10")
        assert match.local_id == 1
        assert match.key == MatchKey.REMOTE_ID

    def test_remote_id_wins_over_name(self):
        """A remote ID match beats a name match on a different row."""
        index = partner_index([row(1, None, "Acme Corp"), row(2, "10", "Other")])
        match = index.resolve("10", natural_value="Acme Corp")
        assert match.local_id == 2
        assert match.key == MatchKey.REMOTE_ID

    def test_crm_id_match(self):
        """An unbound row is adopted by exact CRM ID."""
        index = partner_index([row(1, None, "Acme", crm_id="0015g00000AbCdEAAV")])
        match = index.resolve("10", crm_id="0015g00000AbCdEAAV")
        assert match.local_id == 1
        assert match.key == MatchKey.CRM_ID

    def test_crm_id_prefix_match(self):
        """An 18-character CRM ID matches a stored 15-character ID by prefix."""
        index = partner_index([row(1, None, "Acme", crm_id="0015g00000AbCdE")])
        match = index.resolve("10", crm_id="0015g00000AbCdEAAV")
        assert match.local_id == 1
        assert match.key == MatchKey.CRM_ID_PREFIX

    def test_crm_id_prefix_never_reversed(self):
        """A 15-character CRM ID never matches a stored 18-character ID."""
        index = partner_index([row(1, None, "Acme", crm_id="0015g00000AbCdEAAV")])
        assert index.resolve("10", crm_id="0015g00000AbCdE") is None

    def test_name_match_case_insensitive(self):
        """Names match ignoring case and surrounding whitespace."""
        index = partner_index([row(1, None, "Acme Corp")])
        match = index.resolve("10", natural_value="  ACME corp ")
        assert match.local_id == 1
        assert match.key == MatchKey.NAME

    def test_bound_rows_not_adopted(self):
        """Rows bound to another remote ID are never adopted by fallback keys."""
        index = partner_index(
            [row(1, "20", "Acme Corp", crm_id="0015g00000AbCdEAAV")]
        )
        assert index.resolve("10", "0015g00000AbCdEAAV", "Acme Corp") is None

    def test_active_row_wins_over_inactive(self):
        """When rows share a remote ID the active one is chosen."""
        index = partner_index(
            [row(2, "10", "Acme", is_active=1), row(1, "10", "Acme", is_active=0)]
        )
        assert index.resolve("10").local_id == 2

    def test_inactive_remote_id_match_reports_inactive(self):
        """A soft-deleted row found by remote ID reports it was inactive."""
        match = partner_index([row(1, "10", "Acme", is_active=0)]).resolve("10")
        assert match.was_active is False

    def test_record_write_binds_row(self):
        """After a write the row is bound and no longer adoptable by name."""
        index = partner_index([row(1, None, "Acme Corp")])
        first = index.resolve("10", natural_value="Acme Corp")
        index.record_write(
            first.local_id, {"remote_id": "10", "account_name": "Acme Corp"}
        )

        assert index.resolve("10").local_id == 1
        assert index.resolve("11", natural_value="Acme Corp") is None

    def test_record_write_moves_row_to_new_keys(self):
        """A rewritten row is found by its new keys and no longer by its old ones."""
        index = partner_index(
            [
                row(2, None, "Acme Corp"),
                row(1, None, "Acme Corp", crm_id="0015g00000AbCdE"),
            ]
        )
        index.record_write(1, {"account_name": "Acme Inc", "crm_id": "0015g00000XyZaB"})

        assert index.resolve("11", natural_value="Acme Inc").local_id == 1
        assert index.resolve("11", crm_id="0015g00000XyZaB").local_id == 1
        assert index.resolve("11", crm_id="0015g00000AbCdEAAV") is None
        # the other row sharing the old name keeps its key
        assert index.resolve("11", natural_value="Acme Corp").local_id == 2

    def test_record_write_rebinds_each_adopted_row_once(self):
        """Adopting many rows by name leaves each one bound to its own remote ID."""
        index = partner_index([row(i, None, f"Partner {i}") for i in range(1, 501)])
        for i in range(1, 501):
            match = index.resolve(str(1000 + i), natural_value=f"partner {i}")
            assert match.local_id == i
            index.record_write(
                i, {"remote_id": str(1000 + i), "account_name": f"Partner {i}"}
            )

        assert index.resolve("1250").local_id == 250
        assert index.resolve("9999", natural_value="Partner 250") is None
        assert len(index) == 500

    def test_record_write_adds_new_row(self):
        """Inserted rows become resolvable within the same run."""
        index = partner_index([])
        index.record_write(5, {"remote_id": "10", "account_name": "Acme"})
        assert index.resolve("10").local_id == 5
        assert len(index) == 1

    def test_no_natural_key(self):
        """Without a natural column only ID keys are used."""
        index = IdentityIndex([row(1, None, "Acme")])
        assert index.resolve("10", natural_value="Acme") is None

    def test_email_natural_key(self):
        """Contacts are adopted by email."""
        index = IdentityIndex(
            [{"id": 1, "remote_id": None, "email": "jane@acme.com", "is_active": 1}],
            natural_column="email",
            natural_key=MatchKey.EMAIL,
        )
        match = index.resolve("5", natural_value="Jane@Acme.com")
        assert match.key == MatchKey.EMAIL


class TestPartnerLookup:
    """Test owning-partner resolution."""

    def test_by_remote_id_then_name(self):
        """Remote account IDs are tried before names."""
        lookup = PartnerLookup([row(1, "10", "Acme"), row(2, "20", "Globex")])
        assert lookup.resolve("20", "Acme") == 2
        assert lookup.resolve("99", "acme") == 1
        assert lookup.resolve(None, None) is None
        assert lookup.resolve("99", "Unknown") is None

    def test_active_partner_preferred(self):
        """Active partners win over soft-deleted ones with the same name."""
        lookup = PartnerLookup(
            [row(3, "30", "Acme", is_active=1), row(1, "10", "Acme", is_active=0)]
        )
        assert lookup.resolve(None, "Acme") == 3
