"""
Pydantic schemas for API request/response contracts.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pricewatch.core.types import (
    CONDITION_TYPES,
    DIRECTIONS,
    NOTIFICATION_METHODS,
    PRIORITIES,
    RECURRING_INTERVALS,
    is_finite_number,
)


class RefreshPricesResponse(BaseModel):
    updated: int = Field(ge=0)


class TriggeredAlertOut(BaseModel):
    alert_id: int
    symbol: str
    condition_type: str
    direction: str
    target_value: float
    observed_value: float
    priority: str


class AlertCheckResponse(BaseModel):
    started_at: str
    alerts_checked: int = 0
    alerts_triggered: int = 0
    notifications_created: int = 0
    notifications_recovered: int = 0
    skipped: int = 0
    errors: int = 0
    triggered_alerts: List[TriggeredAlertOut] = Field(default_factory=list)


class AlertCreate(BaseModel):
    symbol: str = Field(min_length=1, max_length=20)
    name: Optional[str] = Field(default=None, max_length=100)
    condition_type: str = Field(default="price")
    direction: str
    target_value: float
    recurring: bool = False
    recurring_interval: Optional[str] = None
    next_trigger: Optional[datetime] = None
    priority: str = Field(default="medium")
    notification_methods: List[str] = Field(default_factory=lambda: ["push"])

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, value: str) -> str:
        normalized = str(value or "").strip().lower()
        if not normalized or not normalized.isalnum():
            raise ValueError("symbol must be alphanumeric")
        return normalized

    @field_validator("condition_type")
    @classmethod
    def validate_condition_type(cls, value: str) -> str:
        normalized = str(value or "").strip().lower()
        if normalized not in CONDITION_TYPES:
            raise ValueError(f"condition_type must be one of: {', '.join(sorted(CONDITION_TYPES))}")
        return normalized

    @field_validator("direction")
    @classmethod
    def validate_direction(cls, value: str) -> str:
        normalized = str(value or "").strip().lower()
        if normalized not in DIRECTIONS:
            raise ValueError(f"direction must be one of: {', '.join(sorted(DIRECTIONS))}")
        return normalized

    @field_validator("target_value")
    @classmethod
    def validate_target_value(cls, value: float) -> float:
        if not is_finite_number(value):
            raise ValueError("target_value must be a finite number")
        return float(value)

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, value: str) -> str:
        normalized = str(value or "medium").strip().lower()
        if normalized not in PRIORITIES:
            raise ValueError(f"priority must be one of: {', '.join(sorted(PRIORITIES))}")
        return normalized

    @field_validator("notification_methods")
    @classmethod
    def validate_notification_methods(cls, value: List[str]) -> List[str]:
        methods = [str(item).strip().lower() for item in value or [] if str(item).strip()]
        unknown = [item for item in methods if item not in NOTIFICATION_METHODS]
        if unknown:
            raise ValueError(f"unsupported notification methods: {', '.join(unknown)}")
        return methods or ["push"]

    @model_validator(mode="after")
    def validate_recurrence(self):
        if self.recurring:
            if self.recurring_interval not in RECURRING_INTERVALS:
                raise ValueError(
                    f"recurring alerts need recurring_interval in: {', '.join(sorted(RECURRING_INTERVALS))}"
                )
        elif self.recurring_interval:
            raise ValueError("recurring_interval is only allowed on recurring alerts")
        return self


class AlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    symbol: str
    name: Optional[str] = None
    condition_type: str
    direction: str
    target_value: float
    active: bool
    triggered_at: Optional[datetime] = None
    recurring: bool
    recurring_interval: Optional[str] = None
    next_trigger: Optional[datetime] = None
    priority: str
    notification_methods: List[str] = Field(default_factory=list)
    last_observed_value: Optional[float] = None
    created_at: Optional[datetime] = None


class AlertHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    alert_id: int
    triggered_at: datetime
    observed_value: float
    condition_met: str
    notification_sent: bool
    symbol: str
    name: Optional[str] = None


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    title: str
    message: str
    read: bool
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class JobOut(BaseModel):
    id: str
    name: str
    next_run_time: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    scheduler_running: bool = False
    alert_scheduler: str
    last_pass: Optional[Dict[str, Any]] = None
    jobs: List[JobOut] = Field(default_factory=list)
    market_data: Dict[str, Any] = Field(default_factory=dict)
