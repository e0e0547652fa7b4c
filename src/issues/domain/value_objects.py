"""
Issue Value Objects
===================

Immutable value objects and stateless domain services for the
escalation engine:

- BusinessCalendar / WorkingTimeCalculator: working-hour arithmetic
- SLAPolicy: priority thresholds and SLA buckets
- PriorityResolver: age-driven priority with the critical override
- EscalationConfig: policy loaded from YAML
- EscalationPolicy: the three services built from one config snapshot
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from src.config import (
    Priority, SLABucket, VALID_PRIORITIES, priority_rank
)
from src.core import InvalidRangeError
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class Clock(ABC):
    """Source of the current time; injected everywhere instead of reading the wall clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current timezone-aware timestamp."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


# ========== Working time ==========

@dataclass(frozen=True)
class BusinessCalendar:
    """Working window per day, working weekdays (Mon=0) and holidays."""

    start_hour: int = 9
    end_hour: int = 17
    working_weekdays: FrozenSet[int] = frozenset({0, 1, 2, 3, 4, 5})
    holidays: FrozenSet[date] = frozenset()
    tz: tzinfo = timezone.utc

    def __post_init__(self):
        if not 0 <= self.start_hour < self.end_hour <= 23:
            raise ValueError("working hours must satisfy 0 <= start < end <= 23")
        if not self.working_weekdays:
            raise ValueError("at least one working weekday is required")


class WorkingTimeCalculator:
    """
    Pure working-time arithmetic over a BusinessCalendar.

    Naive timestamps are interpreted in the calendar's timezone. Only time
    inside the daily working window on working days counts; Sundays and
    holidays contribute nothing.
    """

    def __init__(self, calendar: Optional[BusinessCalendar] = None):
        self.calendar = calendar or BusinessCalendar()

    def _localize(self, ts: datetime) -> datetime:
        if ts.tzinfo is None:
            return ts.replace(tzinfo=self.calendar.tz)
        return ts.astimezone(self.calendar.tz)

    def _window(self, day: date) -> Tuple[datetime, datetime]:
        tz = self.calendar.tz
        return (
            datetime.combine(day, time(self.calendar.start_hour), tzinfo=tz),
            datetime.combine(day, time(self.calendar.end_hour), tzinfo=tz),
        )

    @staticmethod
    def _span(start: datetime, end: datetime) -> timedelta:
        # Subtract in UTC so DST offsets are honoured.
        return end.astimezone(timezone.utc) - start.astimezone(timezone.utc)

    def is_working_day(self, day: date) -> bool:
        """Check if a calendar date is a working day."""
        if isinstance(day, datetime):
            day = self._localize(day).date()
        return day.weekday() in self.calendar.working_weekdays and day not in self.calendar.holidays

    def is_working_time(self, ts: datetime) -> bool:
        """Check if a timestamp falls inside the working window of a working day."""
        local = self._localize(ts)
        if not self.is_working_day(local.date()):
            return False
        start, end = self._window(local.date())
        return start <= local < end

    def elapsed_working_hours(self, start: datetime, end: datetime) -> timedelta:
        """
        Working time between two timestamps.

        Raises:
            InvalidRangeError: if end is before start
        """
        s = self._localize(start)
        e = self._localize(end)
        if e < s:
            raise InvalidRangeError(start, end)

        total = timedelta()
        day = s.date()
        while day <= e.date():
            if self.is_working_day(day):
                window_start, window_end = self._window(day)
                lo = max(window_start, s)
                hi = min(window_end, e)
                if hi > lo:
                    total += self._span(lo, hi)
            day += timedelta(days=1)
        return total

    def elapsed_hours(self, start: datetime, end: datetime) -> float:
        """elapsed_working_hours expressed as fractional hours."""
        return self.elapsed_working_hours(start, end).total_seconds() / 3600

    def add_working_hours(self, start: datetime, hours: float) -> datetime:
        """Timestamp reached after spending `hours` of working time from start."""
        current = self._localize(start)
        remaining = timedelta(hours=hours)
        if remaining <= timedelta():
            return current

        while True:
            day = current.date()
            if self.is_working_day(day):
                window_start, window_end = self._window(day)
                lo = max(window_start, current)
                if lo < window_end:
                    available = self._span(lo, window_end)
                    if remaining <= available:
                        return (lo.astimezone(timezone.utc) + remaining).astimezone(self.calendar.tz)
                    remaining -= available
            current = datetime.combine(day + timedelta(days=1), time(0), tzinfo=self.calendar.tz)


# ========== SLA ==========

@dataclass(frozen=True)
class SLAEvaluation:
    """SLA snapshot for one issue."""

    priority: str
    threshold_hours: float
    elapsed_hours: float
    deadline: datetime
    bucket: str


class SLAPolicy:
    """
    Maps priority to an escalation threshold in working hours and classifies
    elapsed working time into SLA buckets.

    classify() is total: it never raises for any issue.
    """

    def __init__(
        self,
        calculator: WorkingTimeCalculator,
        thresholds: Dict[str, float],
        at_risk_ratio: float = 0.8
    ):
        self.calculator = calculator
        self.thresholds = dict(thresholds)
        self.at_risk_ratio = at_risk_ratio

    def threshold(self, priority: str) -> float:
        """Threshold in working hours; unknown priorities use the high threshold."""
        if priority in self.thresholds:
            return self.thresholds[priority]
        return self.thresholds[Priority.HIGH]

    def _safe_elapsed(self, start: datetime, end: datetime) -> float:
        try:
            return self.calculator.elapsed_hours(start, end)
        except InvalidRangeError:
            logger.warning(
                "Negative SLA interval treated as zero",
                extra={"start": str(start), "end": str(end)}
            )
            return 0.0

    def classify(
        self,
        created_at: datetime,
        closed_at: Optional[datetime],
        now: datetime,
        priority: str
    ) -> str:
        threshold = self.threshold(priority)

        if closed_at is not None:
            elapsed = self._safe_elapsed(created_at, closed_at)
            return SLABucket.ON_TIME if elapsed <= threshold else SLABucket.BREACHED

        age = self._safe_elapsed(created_at, now)
        if age > threshold:
            return SLABucket.BREACHED
        if age > self.at_risk_ratio * threshold:
            return SLABucket.AT_RISK
        return SLABucket.PENDING

    def evaluate(self, issue, now: datetime) -> SLAEvaluation:
        """Full SLA view of an issue: threshold, elapsed time, deadline and bucket."""
        threshold = self.threshold(issue.priority)
        end = issue.closed_at if issue.closed_at is not None else now
        return SLAEvaluation(
            priority=issue.priority,
            threshold_hours=threshold,
            elapsed_hours=round(self._safe_elapsed(issue.created_at, end), 2),
            deadline=self.calculator.add_working_hours(issue.created_at, threshold),
            bucket=self.classify(issue.created_at, issue.closed_at, now, issue.priority),
        )


# ========== Priority ==========

class PriorityResolver:
    """
    Computes the correct priority of an issue from elapsed working time.

    Order of rules:
    1. resolved/closed issues keep their priority
    2. age >= critical_after_hours forces critical
    3. otherwise the highest ladder step whose min_hours <= age

    Values outside the priority set are clamped to high.
    """

    def __init__(
        self,
        calculator: WorkingTimeCalculator,
        ladder: Sequence[Tuple[float, str]],
        critical_after_hours: float = 16
    ):
        self.calculator = calculator
        self.ladder = sorted(ladder, key=lambda step: step[0])
        self.critical_after_hours = critical_after_hours

    @staticmethod
    def clamp(value: Optional[str]) -> str:
        if value in VALID_PRIORITIES:
            return value
        logger.warning("Priority outside valid set clamped to high", extra={"value": value})
        return Priority.HIGH

    def age_hours(self, issue, now: datetime, strict: bool = True) -> float:
        """
        Working hours since the later of creation and last assignment.

        With strict=False a reference time in the future yields zero
        instead of raising.
        """
        try:
            return self.calculator.elapsed_hours(issue.age_reference, now)
        except InvalidRangeError:
            if strict:
                raise
            logger.warning(
                "Issue age reference is after now; treating age as zero",
                extra={"issue_id": issue.id, "reference": str(issue.age_reference)}
            )
            return 0.0

    def resolve(self, issue, now: datetime, strict: bool = True) -> str:
        if issue.is_terminal:
            return self.clamp(issue.priority)

        age = self.age_hours(issue, now, strict=strict)
        if age >= self.critical_after_hours:
            return Priority.CRITICAL

        computed = None
        for min_hours, priority in self.ladder:
            if age >= min_hours:
                computed = priority
        if computed is None:
            return self.clamp(issue.priority)
        return self.clamp(computed)


# ========== Configuration ==========

class WorkingHoursConfig(BaseModel):
    """Business calendar section of the escalation policy."""
    start_hour: int = Field(default=9, ge=0, le=23)
    end_hour: int = Field(default=17, ge=1, le=23)
    working_weekdays: List[int] = Field(
        default_factory=lambda: [0, 1, 2, 3, 4, 5],
        description="Working weekdays, Monday=0"
    )
    holidays: List[date] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_window(self) -> "WorkingHoursConfig":
        if self.end_hour <= self.start_hour:
            raise ValueError("end_hour must be after start_hour")
        if not self.working_weekdays or any(d < 0 or d > 6 for d in self.working_weekdays):
            raise ValueError("working_weekdays must be a non-empty list of 0..6")
        return self


class LadderStep(BaseModel):
    """One breakpoint of the age -> priority ladder."""
    min_hours: float = Field(ge=0)
    priority: str


DEFAULT_SLA_THRESHOLDS = {
    Priority.CRITICAL: 4,
    Priority.HIGH: 24,
    Priority.MEDIUM: 72,
    Priority.LOW: 168,
}


class EscalationConfig(BaseModel):
    """
    Escalation policy loaded from YAML.

    This is a value object - immutable and defined by its attributes.
    """
    working_hours: WorkingHoursConfig = Field(default_factory=WorkingHoursConfig)
    sla_thresholds_hours: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_SLA_THRESHOLDS),
        description="SLA threshold in working hours by priority"
    )
    at_risk_ratio: float = Field(default=0.8, gt=0, le=1)
    critical_after_hours: float = Field(default=16, gt=0)
    priority_ladder: List[LadderStep] = Field(
        default_factory=lambda: [
            LadderStep(min_hours=0, priority=Priority.LOW),
            LadderStep(min_hours=4, priority=Priority.MEDIUM),
            LadderStep(min_hours=8, priority=Priority.HIGH),
        ]
    )
    escalation_targets: Dict[str, List[str]] = Field(
        default_factory=lambda: {
            Priority.MEDIUM: ["hr_admin"],
            Priority.HIGH: ["hr_admin", "super_admin"],
            Priority.CRITICAL: ["hr_admin", "super_admin"],
        },
        description="Recipients notified when the sweep escalates into a priority"
    )
    reopen_window_hours: float = Field(default=48, ge=0)
    reopen_default_recipients: List[str] = Field(default_factory=lambda: ["hr_admin"])

    @field_validator("sla_thresholds_hours")
    @classmethod
    def validate_thresholds(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Fill missing priorities with defaults and reject non-positive values."""
        for priority in VALID_PRIORITIES:
            v.setdefault(priority, DEFAULT_SLA_THRESHOLDS[priority])
        for priority, hours in v.items():
            if hours <= 0:
                raise ValueError(f"SLA threshold for {priority} must be positive")
        return v

    @field_validator("priority_ladder")
    @classmethod
    def validate_ladder(cls, v: List[LadderStep]) -> List[LadderStep]:
        """Breakpoints must be strictly increasing and never lower the priority."""
        for previous, current in zip(v, v[1:]):
            if current.min_hours <= previous.min_hours:
                raise ValueError("priority_ladder min_hours must be strictly increasing")
            if priority_rank(current.priority) < priority_rank(previous.priority):
                raise ValueError("priority_ladder must be monotonic")
        return v

    def get_escalation_targets(self, priority: str) -> List[str]:
        return list(self.escalation_targets.get(priority, []))

    def build_calendar(self, tz: tzinfo = timezone.utc) -> BusinessCalendar:
        hours = self.working_hours
        return BusinessCalendar(
            start_hour=hours.start_hour,
            end_hour=hours.end_hour,
            working_weekdays=frozenset(hours.working_weekdays),
            holidays=frozenset(hours.holidays),
            tz=tz,
        )


@dataclass(frozen=True)
class EscalationPolicy:
    """Calculator, SLA policy and resolver built from one config snapshot."""

    config: EscalationConfig
    calculator: WorkingTimeCalculator
    sla: SLAPolicy
    resolver: PriorityResolver
    reopen_window_hours: float = field(default=48)

    @classmethod
    def from_config(cls, config: EscalationConfig, tz: tzinfo = timezone.utc) -> "EscalationPolicy":
        calculator = WorkingTimeCalculator(config.build_calendar(tz))
        return cls(
            config=config,
            calculator=calculator,
            sla=SLAPolicy(calculator, config.sla_thresholds_hours, config.at_risk_ratio),
            resolver=PriorityResolver(
                calculator,
                [(step.min_hours, step.priority) for step in config.priority_ladder],
                config.critical_after_hours,
            ),
            reopen_window_hours=config.reopen_window_hours,
        )
