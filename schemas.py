from datetime import date, datetime
from typing import ClassVar, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from models import TransactionType


PIN_PATTERN = r"^\d{4}$"
CLOCK_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class ApiModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        str_strip_whitespace=True,
        allow_inf_nan=False,
    )


class PartialModel(ApiModel):
    """Update payload: every field optional, but required columns stay non-null."""

    required_fields: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def reject_nulls(self):
        nulls = [
            name
            for name in self.required_fields
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if nulls:
            raise ValueError(f"Fields cannot be null: {', '.join(nulls)}")
        return self

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_unset=True)


class CategoryIn(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    description: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=64)
    color: Optional[str] = Field(default=None, max_length=32)


class CategoryPatch(PartialModel):
    required_fields: ClassVar[tuple[str, ...]] = ("name", "type", "icon")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[TransactionType] = None
    description: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=64)
    color: Optional[str] = Field(default=None, max_length=32)


class CategoryOut(ApiModel):
    id: int
    name: str
    type: TransactionType
    description: Optional[str]
    icon: str
    color: Optional[str]


class TransactionIn(ApiModel):
    type: TransactionType
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=500)
    category_id: int
    date: Optional[datetime] = None


class TransactionPatch(PartialModel):
    required_fields: ClassVar[tuple[str, ...]] = (
        "type",
        "amount",
        "description",
        "category_id",
        "date",
    )

    type: Optional[TransactionType] = None
    amount: Optional[float] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    category_id: Optional[int] = None
    date: Optional[datetime] = None


class TransactionOut(ApiModel):
    id: int
    type: TransactionType
    amount: float
    description: str
    category_id: int
    date: datetime


class SettingsPatch(PartialModel):
    required_fields: ClassVar[tuple[str, ...]] = (
        "currency",
        "dark_mode",
        "fingerprint_enabled",
        "pin",
        "reminder_enabled",
        "reminder_time",
    )

    currency: Optional[str] = Field(default=None, min_length=1, max_length=8)
    dark_mode: Optional[bool] = None
    fingerprint_enabled: Optional[bool] = None
    pin: Optional[str] = Field(default=None, pattern=PIN_PATTERN)
    reminder_enabled: Optional[bool] = None
    reminder_time: Optional[str] = Field(default=None, pattern=CLOCK_PATTERN)


class SettingsOut(ApiModel):
    id: int
    currency: str
    dark_mode: bool
    fingerprint_enabled: bool
    pin: str
    reminder_enabled: bool
    reminder_time: str


class ReminderIn(ApiModel):
    title: str = Field(..., min_length=1, max_length=120)
    message: str = Field(..., min_length=1)
    time: str = Field(..., pattern=CLOCK_PATTERN)
    is_active: bool = True
    last_triggered: Optional[datetime] = None


class ReminderPatch(PartialModel):
    required_fields: ClassVar[tuple[str, ...]] = (
        "title",
        "message",
        "time",
        "is_active",
    )

    title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    message: Optional[str] = Field(default=None, min_length=1)
    time: Optional[str] = Field(default=None, pattern=CLOCK_PATTERN)
    is_active: Optional[bool] = None
    last_triggered: Optional[datetime] = None


class ReminderOut(ApiModel):
    id: int
    title: str
    message: str
    time: str
    is_active: bool
    last_triggered: Optional[datetime]


class CategoryShare(ApiModel):
    category_id: int
    name: Optional[str]
    amount: float
    percentage: int


class MonthlyPoint(ApiModel):
    year: int
    month: int
    label: str
    amount: float
    is_current_month: bool


class OverviewOut(ApiModel):
    balance: float
    monthly_income: float
    monthly_expenses: float
    top_categories: list[CategoryShare]


class StatsOut(ApiModel):
    range: Literal["month", "year"]
    income: float
    expenses: float
    savings: float
    savings_rate: float
    categories: list[CategoryShare]
    monthly_comparison: list[MonthlyPoint]


class VoiceParseIn(ApiModel):
    text: str = Field(..., min_length=1, max_length=500)


class VoiceDraftOut(ApiModel):
    type: TransactionType
    amount: float
    description: str
    category_id: Optional[int]
    date: date
    keywords: list[str]


class ImportResultOut(ApiModel):
    imported: int
    categories_created: int


class CSVRow(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    date: datetime
    type: TransactionType
    amount: float = Field(..., gt=0)
    category: str = Field(..., min_length=1)
    description: str
