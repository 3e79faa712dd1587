from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from retailops.participants import Participant
from retailops.reports import (
    DatasetVersion,
    ReportService,
    merge_filters,
    valid_dimensions_for_kpi,
    valid_filters_for_kpi,
    validate_dimensions_and_filters,
    validate_export_format,
)
from retailops.returns import Order, OrderBook
from retailops.scope import NotFoundError, ValidationError
from retailops.users import User

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
RECENT = NOW - timedelta(days=2)
OLD = NOW - timedelta(days=90)
ACTOR = uuid4()


def _service(**kwargs):
    return ReportService(**kwargs)


def _define(service, kpi, **kwargs):
    return service.create_definition(
        name=kwargs.pop("name", f"{kpi} report"), kpi_type=kpi, created_by=ACTOR, **kwargs
    )


def test_valid_dimensions_and_filters_per_kpi():
    assert valid_dimensions_for_kpi("participation_by_store") == ("location",)
    assert valid_dimensions_for_kpi("review_efficiency") == ()
    assert valid_filters_for_kpi("award_distribution") == ("location",)
    assert set(valid_filters_for_kpi("registration_conversion")) == {"department", "location"}


def test_unsupported_dimension_and_filter_rejected():
    with pytest.raises(ValidationError, match="Unsupported dimension 'department'"):
        validate_dimensions_and_filters("participation_by_store", ["department"], {})
    with pytest.raises(ValidationError, match="Unsupported filter 'region'"):
        validate_dimensions_and_filters("award_distribution", [], {"region": "x"})


def test_kpi_without_restrictions_accepts_anything():
    validate_dimensions_and_filters("review_efficiency", ["anything"], {"any": 1})
    assert valid_filters_for_kpi("review_efficiency") == ()


def test_merge_filters_runtime_overrides():
    merged = merge_filters({"location": "A", "department": "D"}, {"location": "B"})
    assert merged == {"location": "B", "department": "D"}
    assert merge_filters(None, ["not", "a", "dict"]) == {}


def test_validate_export_format():
    for fmt in ("xlsx", "pdf", "csv"):
        validate_export_format(fmt)
    with pytest.raises(ValidationError, match="Allowed: xlsx, pdf, csv"):
        validate_export_format("docx")


def test_create_definition_rejects_unknown_kpi():
    with pytest.raises(ValidationError, match="Invalid kpi_type 'bogus'"):
        _define(_service(), "bogus")


def test_create_definition_rejects_bad_filter():
    with pytest.raises(ValidationError):
        _define(_service(), "award_distribution", filters={"department": "x"})


def test_definitions_listed_by_name_and_deleted():
    service = _service()
    b = _define(service, "review_efficiency", name="beta")
    a = _define(service, "review_efficiency", name="alpha")
    assert [d.id for d in service.list_definitions()] == [a.id, b.id]
    service.delete_definition(a.id)
    assert [d.id for d in service.list_definitions()] == [b.id]
    assert service.get_definition(a.id).is_active is False


def test_get_missing_definition():
    with pytest.raises(NotFoundError):
        _service().get_definition(uuid4())


def test_update_definition_validates_effective_values():
    service = _service()
    report = _define(service, "participation_by_store", dimensions=["location"])
    with pytest.raises(ValidationError):
        service.update_definition(report.id, kpi_type="participation_by_department")
    with pytest.raises(ValidationError):
        service.update_definition(report.id, kpi_type="nope")
    updated = service.update_definition(report.id, name="renamed", description=None)
    assert updated.name == "renamed"
    assert updated.kpi_type == "participation_by_store"


def test_registration_conversion():
    users = [
        User("a", department="D", location="L", created_at=RECENT),
        User("b", department="D", location="L", created_at=RECENT, is_active=False),
        User("c", department="E", location="L", created_at=RECENT),
        User("d", department="D", location="L", created_at=OLD),
    ]
    service = _service(users=users)
    report = _define(service, "registration_conversion", filters={"department": "D"})
    result = service.run_report(report.id, now=NOW)
    data = result["data"]
    assert data["total_registrations"] == 2
    assert data["active_users"] == 1
    assert data["conversion_rate_pct"] == pytest.approx(data["active_users"] / 2 * 100)
    assert result["kpi_type"] == "registration_conversion"
    assert result["generated_at"] == NOW


def test_registration_conversion_empty_is_zero_rate():
    service = _service()
    report = _define(service, "registration_conversion")
    data = service.run_report(report.id, now=NOW)["data"]
    assert data == {"total_registrations": 0, "active_users": 0, "conversion_rate_pct": 0.0}


def test_participation_by_store_groups_and_filters():
    people = [
        Participant("A", "One", ACTOR, location="North", created_at=RECENT),
        Participant("B", "Two", ACTOR, location="North", created_at=RECENT),
        Participant("C", "Three", ACTOR, created_at=RECENT),
        Participant("D", "Four", ACTOR, location="South", created_at=RECENT, is_active=False),
    ]
    service = _service(participants=people)
    report = _define(service, "participation_by_store", dimensions=["location"])
    data = service.run_report(report.id, now=NOW)["data"]
    assert {"location": "North", "participant_count": 2} in data
    assert {"location": "unassigned", "participant_count": 1} in data
    assert all(row["location"] != "South" for row in data)

    filtered = service.run_report(report.id, filters={"location": "North"}, now=NOW)
    assert filtered["data"] == [{"location": "North", "participant_count": 2}]
    assert filtered["filters_applied"] == {"location": "North"}


def test_participation_by_department():
    people = [Participant("A", "One", ACTOR, department="Sales", created_at=RECENT)]
    service = _service(participants=people)
    report = _define(service, "participation_by_department")
    data = service.run_report(report.id, now=NOW)["data"]
    assert data == [{"department": "Sales", "participant_count": 1}]


def test_runtime_filter_not_supported_raises():
    service = _service()
    report = _define(service, "award_distribution")
    with pytest.raises(ValidationError):
        service.run_report(report.id, filters={"department": "x"}, now=NOW)


def test_award_distribution_counts_orders():
    book = OrderBook()
    book.add_order(Order("1", ACTOR, "North", created_at=RECENT))
    book.add_order(Order("2", ACTOR, "North", created_at=RECENT))
    book.add_order(Order("3", ACTOR, "South", created_at=OLD))
    service = _service(orders=book)
    report = _define(service, "award_distribution")
    data = service.run_report(report.id, now=NOW)["data"]
    assert data == [{"location": "North", "order_count": 2}]


def test_review_efficiency():
    book = OrderBook()
    first = book.request_approval("order.reverse", ACTOR, {})
    book.request_approval("order.reverse", ACTOR, {})
    book.approve(first.id)
    service = _service(orders=book)
    report = _define(service, "review_efficiency")
    data = service.run_report(report.id)["data"]
    assert data["total_reviews"] == 2
    assert data["approved"] == 1
    assert data["pending"] == 1
    assert data["rejected"] == 0
    assert data["approval_rate_pct"] == pytest.approx(50.0)


def test_project_milestones():
    dataset = uuid4()
    versions = [
        DatasetVersion(dataset, 1, is_current=False, created_at=OLD),
        DatasetVersion(dataset, 2, is_current=True, created_at=RECENT),
    ]
    service = _service(dataset_versions=versions)
    report = _define(service, "project_milestones")
    data = service.run_report(report.id, now=NOW)["data"]
    assert data == {"versions_created_in_period": 1, "current_active_versions": 1}


def test_explicit_date_range_is_echoed():
    service = _service(users=[User("a", created_at=OLD)])
    report = _define(service, "registration_conversion")
    result = service.run_report(report.id, date_from=OLD - timedelta(days=1), date_to=NOW)
    assert result["data"]["total_registrations"] == 1
    assert result["date_from"] == OLD - timedelta(days=1)


def test_schedules_lifecycle():
    service = _service()
    report = _define(service, "review_efficiency")
    late = service.create_schedule(report.id, "weekly", "pdf", NOW + timedelta(days=7), ACTOR)
    soon = service.create_schedule(report.id, "daily", "csv", NOW + timedelta(days=1), ACTOR)
    assert [s.id for s in service.list_schedules()] == [soon.id, late.id]

    updated = service.update_schedule(late.id, export_format="xlsx", frequency=None)
    assert updated.export_format == "xlsx"
    assert updated.frequency == "weekly"
    with pytest.raises(ValidationError):
        service.update_schedule(late.id, export_format="txt")

    service.delete_schedule(soon.id)
    assert [s.id for s in service.list_schedules()] == [late.id]
    assert service.get_schedule(soon.id).is_active is False


def test_create_schedule_errors():
    service = _service()
    report = _define(service, "review_efficiency")
    with pytest.raises(ValidationError):
        service.create_schedule(report.id, "daily", "docx", NOW, ACTOR)
    with pytest.raises(NotFoundError):
        service.create_schedule(uuid4(), "daily", "csv", NOW, ACTOR)
    with pytest.raises(NotFoundError):
        service.update_schedule(uuid4(), frequency="daily")


def test_list_kpi_types():
    kinds = _service().list_kpi_types()
    assert "registration_conversion" in kinds
    assert len(kinds) == len(set(kinds)) == 6
    for kind in kinds:
        assert valid_dimensions_for_kpi(kind) is not None