"""Data models for the database layer."""

from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime, timezone
from typing import Optional

from travel_ledger.utils import amounts
from travel_ledger.utils.constants import (
    AMOUNT_FIELDS,
    SYNC_PENDING_PUSH,
    SYNC_SYNCED,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_date(value) -> Optional[date]:
    """Coerce a date-like value (date, datetime, ISO string) to a date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) > 10:
        return parse_datetime(text).date()
    return date.fromisoformat(text)


def parse_datetime(value) -> Optional[datetime]:
    """Coerce a datetime-like value to an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        result = datetime.fromisoformat(text.replace(" ", "T", 1))
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result.astimezone(timezone.utc)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class Trip:
    id: Optional[int] = None
    name: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    identity_value: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Sync bookkeeping (local only)
    remote_id: Optional[int] = None
    sync_status: str = SYNC_SYNCED

    @property
    def is_pending(self) -> bool:
        return self.sync_status == SYNC_PENDING_PUSH

    @property
    def is_local_only(self) -> bool:
        """Never reached the remote, so its key is a local one."""
        return self.remote_id is None

    def to_row(self) -> dict:
        row = asdict(self)
        for key in ("start_date", "end_date", "created_at", "updated_at"):
            row[key] = _iso(row[key])
        if row["id"] is None:
            del row["id"]
        return row

    @classmethod
    def from_row(cls, row) -> "Trip":
        data = dict(row)
        names = {f.name for f in fields(cls)}
        data = {k: v for k, v in data.items() if k in names}
        data["start_date"] = parse_date(data.get("start_date"))
        data["end_date"] = parse_date(data.get("end_date"))
        data["created_at"] = parse_datetime(data.get("created_at"))
        data["updated_at"] = parse_datetime(data.get("updated_at"))
        data["identity_value"] = data.get("identity_value") or ""
        return cls(**data)


@dataclass
class Expense:
    id: Optional[int] = None
    trip_id: Optional[int] = None
    date: Optional[date] = None
    destination: str = ""
    justification: str = ""
    breakfast_value: Optional[str] = None
    lunch_value: Optional[str] = None
    dinner_value: Optional[str] = None
    transport_value: Optional[str] = None
    parking_value: Optional[str] = None
    mileage: int = 0
    mileage_value: str = "0.00"
    other_value: Optional[str] = None
    other_description: str = ""
    receipt: str = ""  # data URI
    total_value: str = "0.00"
    meal_value: Optional[str] = None  # legacy breakfast + lunch + dinner
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    remote_id: Optional[int] = None
    sync_status: str = SYNC_SYNCED

    @property
    def is_pending(self) -> bool:
        return self.sync_status == SYNC_PENDING_PUSH

    @property
    def is_local_only(self) -> bool:
        return self.remote_id is None

    @property
    def amounts(self) -> dict:
        return {name: getattr(self, name) for name in AMOUNT_FIELDS}

    def recompute(self) -> "Expense":
        """Refresh every derived amount from the sub-amounts and mileage."""
        for name in AMOUNT_FIELDS:
            setattr(self, name, amounts.normalize_amount(getattr(self, name)))
        self.mileage = int(self.mileage or 0)
        self.mileage_value = amounts.mileage_value(self.mileage)
        self.meal_value = amounts.meal_total_from(self.amounts)
        self.total_value = amounts.expense_total(self.amounts, self.mileage)
        return self

    def to_row(self) -> dict:
        row = asdict(self)
        for key in ("date", "created_at", "updated_at"):
            row[key] = _iso(row[key])
        if row["id"] is None:
            del row["id"]
        return row

    @classmethod
    def from_row(cls, row) -> "Expense":
        data = dict(row)
        names = {f.name for f in fields(cls)}
        data = {k: v for k, v in data.items() if k in names}
        data["date"] = parse_date(data.get("date"))
        data["created_at"] = parse_datetime(data.get("created_at"))
        data["updated_at"] = parse_datetime(data.get("updated_at"))
        data["mileage"] = int(data.get("mileage") or 0)
        data["other_description"] = data.get("other_description") or ""
        return cls(**data)


@dataclass
class TripSummary:
    meals: str = "0.00"
    transport: str = "0.00"
    parking: str = "0.00"
    mileage: str = "0.00"
    other: str = "0.00"
    total: str = "0.00"
    expense_count: int = 0


@dataclass
class PushSummary:
    """Outcome of pushing pending records to the remote."""

    trips_pushed: int = 0
    expenses_pushed: int = 0
    conflicts: int = 0
    remaining: int = 0
    errors: list[str] = field(default_factory=list)
