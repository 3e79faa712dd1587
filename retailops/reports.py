"""Report definitions, KPI queries over the stores and scheduled report exports."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable
from uuid import UUID, uuid4

from retailops.participants import Participant
from retailops.returns import ApprovalStatus, OrderBook
from retailops.scope import NotFoundError, ValidationError
from retailops.users import User

KPI_TYPES: tuple[str, ...] = (
    "participation_by_store",
    "participation_by_department",
    "award_distribution",
    "registration_conversion",
    "review_efficiency",
    "project_milestones",
)

EXPORT_FORMATS = ("xlsx", "pdf", "csv")
DEFAULT_REPORT_WINDOW = timedelta(days=30)

_DIMENSIONS: dict[str, tuple[str, ...]] = {
    "participation_by_store": ("location",),
    "participation_by_department": ("department",),
    "award_distribution": ("location",),
    "registration_conversion": ("department", "location"),
}

_FILTERS: dict[str, tuple[str, ...]] = {
    "participation_by_store": ("location", "department"),
    "participation_by_department": ("location", "department"),
    "award_distribution": ("location",),
    "registration_conversion": ("department", "location"),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _show(names: Iterable[str]) -> str:
    return "[" + ", ".join(f'"{n}"' for n in names) + "]"


def valid_dimensions_for_kpi(kpi: str) -> tuple[str, ...]:
    """Dimensions a report of this KPI type may group by; empty means unrestricted."""
    return _DIMENSIONS.get(kpi, ())


def valid_filters_for_kpi(kpi: str) -> tuple[str, ...]:
    """Filter keys a report of this KPI type accepts; empty means unrestricted."""
    return _FILTERS.get(kpi, ())


def validate_dimensions_and_filters(kpi: str, dimensions: Any, filters: Any) -> None:
    """Raise ValidationError for a dimension or filter key the KPI type does not support."""
    valid_dims = valid_dimensions_for_kpi(kpi)
    if isinstance(dimensions, list) and valid_dims:
        for dim in dimensions:
            if isinstance(dim, str) and dim not in valid_dims:
                raise ValidationError(
                    f"Unsupported dimension '{dim}' for KPI '{kpi}'. Valid: {_show(valid_dims)}"
                )
    valid_keys = valid_filters_for_kpi(kpi)
    if isinstance(filters, dict) and valid_keys:
        for key in filters:
            if key not in valid_keys:
                raise ValidationError(
                    f"Unsupported filter '{key}' for KPI '{kpi}'. Valid: {_show(valid_keys)}"
                )


def merge_filters(definition: Any, runtime: Any) -> dict[str, Any]:
    """Combine definition filters with runtime ones; runtime values win."""
    merged: dict[str, Any] = {}
    if isinstance(definition, dict):
        merged.update(definition)
    if isinstance(runtime, dict):
        merged.update(runtime)
    return merged


def validate_export_format(fmt: str) -> None:
    """Raise ValidationError unless the format is one the exporter can write."""
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Invalid export format '{fmt}'. Allowed: xlsx, pdf, csv")


def _check_kpi(kpi: str) -> None:
    if kpi not in KPI_TYPES:
        raise ValidationError(f"Invalid kpi_type '{kpi}'. Valid types: {_show(KPI_TYPES)}")


@dataclass
class DatasetVersion:
    """One version of a dataset; at most the latest is current."""

    dataset_id: UUID
    version_number: int = 1
    is_current: bool = True
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_now)


@dataclass
class ReportDefinition:
    """A saved KPI report with its dimensions, filters and chart settings."""

    name: str
    kpi_type: str
    created_by: UUID
    description: str | None = None
    dimensions: list[Any] = field(default_factory=list)
    filters: dict[str, Any] = field(default_factory=dict)
    chart_config: dict[str, Any] | None = None
    id: UUID = field(default_factory=uuid4)
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class ScheduledReport:
    """A recurring export of a report definition."""

    report_definition_id: UUID
    frequency: str
    export_format: str
    next_run_at: datetime
    created_by: UUID
    id: UUID = field(default_factory=uuid4)
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


_DEFINITION_FIELDS = frozenset(
    {"name", "description", "kpi_type", "dimensions", "filters", "chart_config", "is_active"}
)
_SCHEDULE_FIELDS = frozenset({"frequency", "export_format", "next_run_at", "is_active"})


def _check_fields(changes: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise TypeError(f"unexpected fields: {', '.join(sorted(unknown))}")


def _rate(part: int, total: int) -> float:
    return part / total * 100.0 if total > 0 else 0.0


class ReportService:
    """Report definitions and schedules, run against the records it is given."""

    def __init__(
        self,
        users: Iterable[User] = (),
        participants: Iterable[Participant] = (),
        orders: OrderBook | None = None,
        dataset_versions: Iterable[DatasetVersion] = (),
    ) -> None:
        self.users: list[User] = list(users)
        self.participants: list[Participant] = list(participants)
        self.orders = orders if orders is not None else OrderBook()
        self.dataset_versions: list[DatasetVersion] = list(dataset_versions)
        self._definitions: dict[UUID, ReportDefinition] = {}
        self._schedules: dict[UUID, ScheduledReport] = {}

    # --- definitions ---

    def create_definition(
        self,
        name: str,
        description: str | None = None,
        kpi_type: str = "",
        dimensions: list[Any] | None = None,
        filters: dict[str, Any] | None = None,
        chart_config: dict[str, Any] | None = None,
        created_by: UUID | None = None,
    ) -> ReportDefinition:
        if not name or not name.strip():
            raise ValidationError("name must not be empty")
        if created_by is None:
            raise ValidationError("created_by is required")
        dimensions = list(dimensions) if dimensions is not None else []
        filters = dict(filters) if filters is not None else {}
        _check_kpi(kpi_type)
        validate_dimensions_and_filters(kpi_type, dimensions, filters)
        report = ReportDefinition(
            name=name,
            kpi_type=kpi_type,
            created_by=created_by,
            description=description,
            dimensions=dimensions,
            filters=filters,
            chart_config=chart_config,
        )
        self._definitions[report.id] = report
        return report

    def list_definitions(self) -> list[ReportDefinition]:
        """Active definitions ordered by name."""
        return sorted(
            (d for d in self._definitions.values() if d.is_active), key=lambda d: d.name
        )

    def get_definition(self, report_id: UUID) -> ReportDefinition:
        try:
            return self._definitions[report_id]
        except KeyError:
            raise NotFoundError("Report definition not found") from None

    def update_definition(self, report_id: UUID, **kwargs: Any) -> ReportDefinition:
        """Change the given fields; fields passed as None are left alone."""
        _check_fields(kwargs, _DEFINITION_FIELDS)
        report = self.get_definition(report_id)
        name = kwargs.get("name")
        if name is not None and not name.strip():
            raise ValidationError("name must not be empty")
        kpi = kwargs.get("kpi_type")
        if kpi is not None:
            _check_kpi(kpi)
        effective_kpi = kpi if kpi is not None else report.kpi_type
        dims = kwargs.get("dimensions")
        effective_dims = dims if dims is not None else report.dimensions
        flt = kwargs.get("filters")
        effective_filters = flt if flt is not None else report.filters
        validate_dimensions_and_filters(effective_kpi, effective_dims, effective_filters)
        for key, value in kwargs.items():
            if value is not None:
                setattr(report, key, value)
        report.updated_at = _now()
        return report

    def delete_definition(self, report_id: UUID) -> None:
        """Deactivate a definition; the record itself is kept."""
        report = self._definitions.get(report_id)
        if report is not None:
            report.is_active = False
            report.updated_at = _now()

    # --- running ---

    def run_report(
        self,
        report_id: UUID,
        filters: dict[str, Any] | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Run the report's KPI query and return its data with the parameters used."""
        report = self.get_definition(report_id)
        now = now or _now()
        data = self._execute(report, filters or {}, date_from, date_to, now)
        return {
            "report_id": report_id,
            "kpi_type": report.kpi_type,
            "dimensions": report.dimensions,
            "filters_applied": filters or {},
            "date_from": date_from,
            "date_to": date_to,
            "data": data,
            "generated_at": now,
        }

    def _execute(
        self,
        report: ReportDefinition,
        runtime_filters: dict[str, Any],
        date_from: datetime | None,
        date_to: datetime | None,
        now: datetime,
    ) -> Any:
        start = date_from if date_from is not None else now - DEFAULT_REPORT_WINDOW
        end = date_to if date_to is not None else now
        merged = merge_filters(report.filters, runtime_filters)
        validate_dimensions_and_filters(report.kpi_type, report.dimensions, merged)

        location = merged.get("location")
        location = location if isinstance(location, str) else None
        department = merged.get("department")
        department = department if isinstance(department, str) else None

        def in_range(moment: datetime) -> bool:
            return start <= moment <= end

        def matches_place(rec_location: str | None, rec_department: str | None) -> bool:
            if location is not None and rec_location != location:
                return False
            if department is not None and rec_department != department:
                return False
            return True

        kpi = report.kpi_type
        if kpi == "registration_conversion":
            registered = [
                u
                for u in self.users
                if in_range(u.created_at) and matches_place(u.location, u.department)
            ]
            total = len(registered)
            active = sum(1 for u in registered if u.is_active)
            return {
                "total_registrations": total,
                "active_users": active,
                "conversion_rate_pct": _rate(active, total),
            }
        if kpi in ("participation_by_store", "participation_by_department"):
            by_store = kpi == "participation_by_store"
            key_name = "location" if by_store else "department"
            counts = Counter(
                (p.location if by_store else p.department) or "unassigned"
                for p in self.participants
                if p.is_active
                and in_range(p.created_at)
                and matches_place(p.location, p.department)
            )
            return [
                {key_name: key, "participant_count": count}
                for key, count in sorted(counts.items())
            ]
        if kpi == "project_milestones":
            created = sum(1 for v in self.dataset_versions if in_range(v.created_at))
            current = sum(1 for v in self.dataset_versions if v.is_current)
            return {"versions_created_in_period": created, "current_active_versions": current}
        if kpi == "review_efficiency":
            reviews = [a for a in self.orders.approvals.values() if in_range(a.created_at)]
            statuses = Counter(a.status for a in reviews)
            total = len(reviews)
            approved = statuses[ApprovalStatus.APPROVED]
            return {
                "total_reviews": total,
                "approved": approved,
                "rejected": statuses[ApprovalStatus.REJECTED],
                "pending": statuses[ApprovalStatus.PENDING],
                "approval_rate_pct": _rate(approved, total),
            }
        if kpi == "award_distribution":
            counts = Counter(
                o.location
                for o in self.orders.orders.values()
                if in_range(o.created_at) and (location is None or o.location == location)
            )
            return [
                {"location": loc, "order_count": count} for loc, count in sorted(counts.items())
            ]
        raise ValidationError(f"Unknown kpi_type: {kpi}")

    # --- schedules ---

    def create_schedule(
        self,
        report_definition_id: UUID,
        frequency: str,
        export_format: str,
        next_run_at: datetime,
        created_by: UUID,
    ) -> ScheduledReport:
        validate_export_format(export_format)
        self.get_definition(report_definition_id)
        schedule = ScheduledReport(
            report_definition_id=report_definition_id,
            frequency=frequency,
            export_format=export_format,
            next_run_at=next_run_at,
            created_by=created_by,
        )
        self._schedules[schedule.id] = schedule
        return schedule

    def list_schedules(self) -> list[ScheduledReport]:
        """Active schedules, soonest run first."""
        return sorted(
            (s for s in self._schedules.values() if s.is_active), key=lambda s: s.next_run_at
        )

    def get_schedule(self, schedule_id: UUID) -> ScheduledReport:
        try:
            return self._schedules[schedule_id]
        except KeyError:
            raise NotFoundError("Scheduled report not found") from None

    def update_schedule(self, schedule_id: UUID, **kwargs: Any) -> ScheduledReport:
        """Change the given fields; fields passed as None are left alone."""
        _check_fields(kwargs, _SCHEDULE_FIELDS)
        fmt = kwargs.get("export_format")
        if fmt is not None:
            validate_export_format(fmt)
        schedule = self.get_schedule(schedule_id)
        for key, value in kwargs.items():
            if value is not None:
                setattr(schedule, key, value)
        schedule.updated_at = _now()
        return schedule

    def delete_schedule(self, schedule_id: UUID) -> None:
        """Deactivate a schedule; the record itself is kept."""
        schedule = self._schedules.get(schedule_id)
        if schedule is not None:
            schedule.is_active = False
            schedule.updated_at = _now()

    def list_kpi_types(self) -> list[str]:
        return list(KPI_TYPES)