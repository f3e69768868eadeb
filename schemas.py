from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import PaymentMethod, RecurringFrequency


class ExpenseIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, max_length=50)
    date: date
    tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=500)
    payment_method: Optional[PaymentMethod] = Field(default=None, alias="paymentMethod")
    is_recurring: bool = Field(default=False, alias="isRecurring")
    recurring_frequency: Optional[RecurringFrequency] = Field(
        default=None, alias="recurringFrequency"
    )

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("description must not be blank")
        return value

    @field_validator("date")
    @classmethod
    def _not_before_epoch(cls, value: date) -> date:
        if value.year < 1970:
            raise ValueError("date must be on or after 1970-01-01")
        return value

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: list[str]) -> list[str]:
        cleaned = []
        for tag in value:
            tag = tag.strip()
            if not tag:
                continue
            if len(tag) > 30:
                raise ValueError("tags must be at most 30 characters")
            if tag not in cleaned:
                cleaned.append(tag)
        return cleaned

    @model_validator(mode="after")
    def _recurrence(self) -> "ExpenseIn":
        if self.is_recurring and self.recurring_frequency is None:
            raise ValueError("recurringFrequency is required for recurring expenses")
        if not self.is_recurring:
            self.recurring_frequency = None
        return self


class RetentionSettingsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    months: int = Field(..., ge=1, le=12, strict=True)
    auto_cleanup: Optional[bool] = Field(default=None, alias="autoCleanup")


class WeekStartIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: str = Field(..., min_length=1, alias="startDate")


class ConfirmationIn(BaseModel):
    confirmation: Optional[str] = None
