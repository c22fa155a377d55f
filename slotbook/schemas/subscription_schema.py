"""Package subscription data models."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Subscription(BaseModel):
    """A student's purchased package of sessions, as reported by the backend."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    package_id: Optional[str] = Field(default=None, alias="packageId")
    package_name: Optional[str] = Field(default=None, alias="packageName")
    status: str = ""
    used_slot: int = Field(default=0, alias="usedSlot")
    remaining_slots: Optional[int] = Field(default=None, alias="remainingSlots")
    total_slots: Optional[int] = Field(default=None, alias="totalSlots")
    total_slots_snapshot: Optional[int] = Field(default=None, alias="totalSlotsSnapshot")

    @field_validator("used_slot", mode="before")
    @classmethod
    def _default_used(cls, value: object) -> object:
        return 0 if value is None else value

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value: object) -> object:
        return "" if value is None else value

    @property
    def normalized_status(self) -> str:
        return self.status.strip().upper()

    @property
    def is_active(self) -> bool:
        return self.normalized_status == "ACTIVE"
