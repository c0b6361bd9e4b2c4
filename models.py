from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Literal
from datetime import datetime, timezone
from uuid import UUID

Status = Literal["inUse", "retired", "maintenance", "idle"]
STATUS_VALUES: tuple[str, ...] = ("inUse", "retired", "maintenance", "idle")
STATUS_LABELS = {
    "inUse": "在用",
    "retired": "报废",
    "maintenance": "维修",
    "idle": "闲置",
}

SortOption = Literal[
    "registerDateDesc",
    "registerDateAsc",
    "priceDesc",
    "priceAsc",
    "purchaseDateDesc",
    "purchaseDateAsc",
    "updatedDesc",
]
DEFAULT_SORT: SortOption = "registerDateDesc"

OPTIONAL_TEXT_FIELDS = ("category", "location", "owner", "serial_number", "note")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    # DB には naive UTC で保存する
    if value is not None and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def strip_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class AssetIn(BaseModel):
    name: str
    price: float = Field(ge=0, allow_inf_nan=False)
    purchase_date: datetime
    registered_at: Optional[datetime] = None
    scrap_years: int = Field(default=0, ge=0)
    asset_number: Optional[str] = None
    status: Status = "inUse"
    category: Optional[str] = None
    location: Optional[str] = None
    owner: Optional[str] = None
    serial_number: Optional[str] = None
    note: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("name must not be empty")
        return v

    @field_validator("purchase_date", "registered_at")
    @classmethod
    def dates_to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc_naive(v)

    @field_validator("asset_number", *OPTIONAL_TEXT_FIELDS)
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return strip_to_none(v)


class AssetUpdate(AssetIn):
    name: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    purchase_date: Optional[datetime] = None
    scrap_years: Optional[int] = Field(default=None, ge=0)
    status: Optional[Status] = None


class Asset(AssetIn):
    id: str
    asset_number: str
    registered_at: datetime
    created_at: datetime
    updated_at: datetime


class AssetFilter(BaseModel):
    keyword: str = ""
    status: Optional[Status] = None
    category: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    sort: SortOption = DEFAULT_SORT

    @field_validator("start_date", "end_date")
    @classmethod
    def dates_to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc_naive(v)


class AssetsMeta(BaseModel):
    total: int
    limit: int
    offset: int
    total_pages: int


class AssetSummary(BaseModel):
    total: int
    in_use: int
    retired: int
    maintenance: int
    idle: int
    total_value: float


class BulkDeleteIn(BaseModel):
    asset_ids: list[str]


class BulkStatusIn(BaseModel):
    asset_ids: list[str]
    status: Status


class BulkResult(BaseModel):
    affected: int


# ---------- QR payload (wire format) ----------
class AssetDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    asset_name: str = Field(alias="assetName")
    price: float
    purchase_date_iso: str = Field(alias="purchaseDateISO")
    register_date_iso: str = Field(alias="registerDateISO")
    scrap_years: int = Field(alias="scrapYears")
    asset_number: str = Field(alias="assetNumber")
    status: Status
    category: Optional[str] = None
    location: Optional[str] = None
    owner: Optional[str] = None
    serial_number: Optional[str] = Field(default=None, alias="serialNumber")
    note: Optional[str] = None


class AssetPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schema_tag: str = Field(alias="schema")
    version: int
    asset: AssetDTO


class PayloadText(BaseModel):
    text: str


class PayloadImportResult(BaseModel):
    asset: Asset
    created: bool


ScanState = Literal["not_registered", "reconciled"]


class ScanResult(BaseModel):
    state: ScanState
    asset_id: str
    message: str
    asset: Optional[Asset] = None
