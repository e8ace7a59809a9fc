"""
Record schemas for PRM collections.

Each collection has an explicit schema with one required field (Id) and
normalized optional fields. Payloads that do not fit are rejected here,
at the fetch boundary, with RecordSchemaError.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, TypeVar, Union

from partner_sync.storage.db import to_db_timestamp
from partner_sync.utils.normalization import (
    normalize_email,
    normalize_text,
    parse_bool,
    parse_timestamp,
)


class RecordSchemaError(ValueError):
    """Raised when a remote record does not match its collection schema."""

    pass


def _fields(data: Any) -> dict[str, Any]:
    """
    Index a raw record by lowercase field name.

    The PRM echoes requested fields in camelCase (Partner_Tier__cf comes
    back as partner_Tier__cf), so lookups are case-insensitive.
    """
    if not isinstance(data, dict):
        raise RecordSchemaError(
            f"Record must be an object, got {type(data).__name__}"
        )
    return {str(key).lower(): value for key, value in data.items()}


def _remote_id(value: Any, field_name: str = "Id") -> str:
    if isinstance(value, bool) or value is None:
        raise RecordSchemaError(f"Record is missing required field {field_name}")
    if isinstance(value, (int, str)):
        text = str(value).strip()
        if text:
            return text
    raise RecordSchemaError(f"Record has invalid {field_name}: {value!r}")


def _optional_id(value: Any) -> Optional[str]:
    """Read an optional reference that may be a scalar or an {id: ...} object."""
    if isinstance(value, dict):
        value = _fields(value).get("id")
    if value is None or isinstance(value, bool):
        return None
    return normalize_text(value)


def _record_id_hint(data: Any) -> str:
    """Best-effort identifier for a record that failed to parse."""
    if isinstance(data, dict):
        for key in ("id", "Id", "ID"):
            if data.get(key) not in (None, ""):
                return str(data[key])
    return "<unknown>"


@dataclass(frozen=True)
class RemoteAccount:
    """
    A partner account as fetched from the PRM.

    Attributes:
        remote_id: PRM record ID
        name: Display name
        tier: Partner tier
        status: Account lifecycle status
        crm_id: External CRM ID (15 or 18 characters)
        region: Region, falling back to the mailing country
        parent_remote_id: Parent account's PRM ID
        primary_user_id: PRM user ID of the account's primary user
        updated_at: Last modification time on the PRM
    """

    remote_id: str
    name: Optional[str] = None
    tier: Optional[str] = None
    status: Optional[str] = None
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None
    partner_type: Optional[str] = None
    website: Optional[str] = None
    crm_id: Optional[str] = None
    mailing_city: Optional[str] = None
    mailing_country: Optional[str] = None
    region: Optional[str] = None
    parent_remote_id: Optional[str] = None
    primary_user_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RemoteAccount":
        """
        Create a RemoteAccount from an Account collection record.

        Example API record::

            {
                'id': 1042,
                'name': 'Acme Corp',
                'partner_Tier__cf': 'Premier',
                'account_Status__cf': 'Active',
                'crmId': '0015g00000AbCdEAAV',
                'mailingCountry': 'Germany',
                'updated': '2024-05-01T09:30:00Z'
            }

        Raises:
            RecordSchemaError: If the record is not an object or has no Id
        """
        f = _fields(data)
        mailing_country = normalize_text(f.get("mailingcountry"))
        return cls(
            remote_id=_remote_id(f.get("id")),
            name=normalize_text(f.get("name")),
            tier=normalize_text(f.get("partner_tier__cf")),
            status=normalize_text(f.get("account_status__cf")),
            owner_name=normalize_text(f.get("account_owner__cf")),
            owner_email=normalize_email(f.get("account_owner_email__cf")),
            partner_type=normalize_text(f.get("partner_type__cf")),
            website=normalize_text(f.get("website")),
            crm_id=normalize_text(f.get("crmid")),
            mailing_city=normalize_text(f.get("mailingcity")),
            mailing_country=mailing_country,
            region=normalize_text(f.get("region")) or mailing_country,
            parent_remote_id=_optional_id(f.get("parentaccountid")),
            primary_user_id=_optional_id(f.get("primaryuserid")),
            updated_at=parse_timestamp(f.get("updated")),
        )

    @property
    def identifier(self) -> str:
        return f"{self.name or '<no name>'} ({self.remote_id})"

    def to_columns(self) -> dict[str, Any]:
        """Remote-owned partner columns."""
        return {
            "remote_id": self.remote_id,
            "crm_id": self.crm_id,
            "account_name": self.name,
            "partner_tier": self.tier,
            "account_status": self.status,
            "partner_type": self.partner_type,
            "website": self.website,
            "region": self.region,
            "mailing_city": self.mailing_city,
            "mailing_country": self.mailing_country,
            "owner_name": self.owner_name,
            "owner_email": self.owner_email,
            "parent_remote_id": self.parent_remote_id,
            "primary_user_id": self.primary_user_id,
            "remote_updated_at": to_db_timestamp(self.updated_at),
        }


@dataclass(frozen=True)
class RemoteContact:
    """
    A partner user as fetched from the PRM User collection.

    Attributes:
        remote_id: PRM record ID
        email: Normalized (lowercase) email address
        account_remote_id: PRM ID of the owning account
        account_name: Display name of the owning account
        status: Contact status
        is_active: Explicit active flag, None when not supplied
    """

    remote_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    account_remote_id: Optional[str] = None
    account_name: Optional[str] = None
    status: Optional[str] = None
    is_active: Optional[bool] = None
    crm_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RemoteContact":
        """
        Create a RemoteContact from a User collection record.

        Raises:
            RecordSchemaError: If the record is not an object or has no Id
        """
        f = _fields(data)
        return cls(
            remote_id=_remote_id(f.get("id")),
            email=normalize_email(f.get("email")),
            first_name=normalize_text(f.get("firstname")),
            last_name=normalize_text(f.get("lastname")),
            title=normalize_text(f.get("title")),
            phone=normalize_text(f.get("phone")),
            account_remote_id=_optional_id(f.get("account")),
            account_name=normalize_text(f.get("accountname")),
            status=normalize_text(f.get("contact_status__cf")),
            is_active=parse_bool(f.get("isactive")),
            crm_id=normalize_text(f.get("crmid")),
            updated_at=parse_timestamp(f.get("updated")),
        )

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    @property
    def identifier(self) -> str:
        return f"{self.email or '<no email>'} ({self.remote_id})"

    def to_columns(self, partner_id: Optional[int]) -> dict[str, Any]:
        """Remote-owned contact columns. lms_user_id is never included."""
        return {
            "remote_id": self.remote_id,
            "partner_id": partner_id,
            "crm_id": self.crm_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "title": self.title,
            "phone": self.phone,
            "account_name": self.account_name,
            "contact_status": self.status,
            "remote_updated_at": to_db_timestamp(self.updated_at),
        }


@dataclass(frozen=True)
class RemoteLead:
    """A lead as fetched from the PRM Lead collection."""

    remote_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    title: Optional[str] = None
    company_name: Optional[str] = None
    partner_remote_id: Optional[str] = None
    status: Optional[str] = None
    source: Optional[str] = None
    created_at: Optional[datetime] = None
    crm_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RemoteLead":
        """
        Create a RemoteLead from a Lead collection record.

        Raises:
            RecordSchemaError: If the record is not an object or has no Id
        """
        f = _fields(data)
        return cls(
            remote_id=_remote_id(f.get("id")),
            first_name=normalize_text(f.get("firstname")),
            last_name=normalize_text(f.get("lastname")),
            email=normalize_email(f.get("email")),
            phone=normalize_text(f.get("phone")),
            title=normalize_text(f.get("title")),
            company_name=normalize_text(f.get("companyname")),
            partner_remote_id=_optional_id(f.get("partneraccountid")),
            status=normalize_text(f.get("status")),
            source=normalize_text(f.get("source")),
            created_at=parse_timestamp(f.get("created")),
            crm_id=normalize_text(f.get("crmid")),
            updated_at=parse_timestamp(f.get("updated")),
        )

    @property
    def identifier(self) -> str:
        return f"{self.company_name or self.email or '<lead>'} ({self.remote_id})"

    def to_columns(self, partner_id: Optional[int]) -> dict[str, Any]:
        """Remote-owned lead columns."""
        return {
            "remote_id": self.remote_id,
            "partner_id": partner_id,
            "crm_id": self.crm_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "title": self.title,
            "company_name": self.company_name,
            "status": self.status,
            "source": self.source,
            "lead_created_at": to_db_timestamp(self.created_at),
            "remote_updated_at": to_db_timestamp(self.updated_at),
        }


RemoteRecord = Union[RemoteAccount, RemoteContact, RemoteLead]
RecordT = TypeVar("RecordT", RemoteAccount, RemoteContact, RemoteLead)


def parse_records(
    raw_records: list[Any], record_type: type[RecordT]
) -> tuple[list[RecordT], list[dict[str, str]]]:
    """
    Parse raw collection records into schema objects.

    Args:
        raw_records: Records as returned by the PRM client
        record_type: Schema class to parse into

    Returns:
        Tuple of (parsed records in input order, rejects as
        {"identifier", "message"} dictionaries)
    """
    parsed: list[RecordT] = []
    rejects: list[dict[str, str]] = []
    for raw in raw_records:
        try:
            parsed.append(record_type.from_api_response(raw))
        except RecordSchemaError as e:
            rejects.append({"identifier": _record_id_hint(raw), "message": str(e)})
    return parsed, rejects
