from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from noos.config import settings
from noos.exceptions import NotFoundError, ValidationError
from noos.models import AlgorithmParameters
from noos.services import ParameterService
from noos.services.parameters import default_values


def test_new_version_replaces_active(db):
    service = ParameterService(db)

    first = service.create_version("summer", {"bestseller_multiplier": 1.5}, label="first")
    second = service.create_version("summer", {"consistency_threshold": 0.6}, label="second")

    versions = service.list_versions("summer")
    assert [v.version for v in versions] == [2, 1]
    assert [v.is_active for v in versions] == [True, False]
    assert service.get_active("summer").id == second.id
    assert first.version == 1

    # Unspecified fields are inherited from the previously active version
    assert second.bestseller_multiplier == 1.5
    assert second.consistency_threshold == 0.6


def test_first_version_starts_from_defaults(db):
    row = ParameterService(db).create_version("fresh", {})

    assert row.liquidation_threshold == settings.DEFAULT_LIQUIDATION_THRESHOLD
    assert row.core_duration_months == settings.DEFAULT_CORE_DURATION_MONTHS


def test_activate_and_deactivate(db):
    service = ParameterService(db)
    service.create_version("winter", {"min_volume_threshold": 10})
    service.create_version("winter", {"min_volume_threshold": 40})

    service.activate("winter", 1)
    assert service.get_active("winter").min_volume_threshold == 10
    assert len([v for v in service.list_versions("winter") if v.is_active]) == 1

    service.deactivate("winter")
    assert service.get_active("winter") is None
    assert all(not s.name == "winter" for s in service.list_active())

    with pytest.raises(NotFoundError):
        service.deactivate("winter")
    with pytest.raises(NotFoundError):
        service.activate("winter", 7)


def test_inactive_version_can_be_created(db):
    service = ParameterService(db)
    service.create_version("draft", {"bestseller_multiplier": 2.0})
    service.create_version("draft", {"bestseller_multiplier": 3.0}, activate=False)

    assert service.get_active("draft").bestseller_multiplier == 2.0


def test_two_active_rows_are_refused_at_write_time(db):
    common = dict(default_values(), name="dup", is_active=True)
    db.add(AlgorithmParameters(version=1, **common))
    db.commit()

    db.add(AlgorithmParameters(version=2, **common))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_invalid_values_are_rejected(db):
    service = ParameterService(db)

    with pytest.raises(ValidationError) as exc:
        service.create_version("bad", {"consistency_threshold": 1.5, "liquidation_threshold": -1})

    assert set(exc.value.details) == {"consistency_threshold", "liquidation_threshold"}
    assert service.list_versions("bad") == []


def test_resolve_precedence(db):
    service = ParameterService(db)
    service.create_version(settings.DEFAULT_PARAMETER_SET, {"bestseller_multiplier": 2.0, "min_volume_threshold": 5})

    params = service.resolve({"min_volume_threshold": 50})

    assert params.bestseller_multiplier == 2.0
    assert params.min_volume_threshold == 50
    assert params.consistency_threshold == settings.DEFAULT_CONSISTENCY_THRESHOLD
    assert params.parameter_set == settings.DEFAULT_PARAMETER_SET
    assert params.parameter_version == 1


def test_resolve_without_stored_sets_uses_settings(db):
    params = ParameterService(db).resolve()

    assert params.liquidation_threshold == settings.DEFAULT_LIQUIDATION_THRESHOLD
    assert params.parameter_set is None
    assert not params.has_window


def test_resolve_unknown_named_set(db):
    with pytest.raises(NotFoundError):
        ParameterService(db).resolve(parameter_set="missing")


def test_resolve_rejects_inverted_window(db):
    with pytest.raises(ValidationError):
        ParameterService(db).resolve({
            "analysis_start_date": date(2024, 2, 1),
            "analysis_end_date": date(2024, 1, 1),
        })


def test_resolve_window_uses_sales_range(db, shirts):
    service = ParameterService(db)

    params = service.resolve_window(service.resolve())

    assert params.analysis_start_date == date(2024, 1, 1)
    assert params.analysis_end_date == date(2024, 1, 30)

    open_end = service.resolve_window(service.resolve({"analysis_start_date": date(2024, 1, 10)}))
    assert (open_end.analysis_start_date, open_end.analysis_end_date) == (date(2024, 1, 10), date(2024, 1, 30))


def test_resolve_window_without_sales_stays_open(db):
    service = ParameterService(db)

    assert not service.resolve_window(service.resolve()).has_window


def test_snapshot_is_json_safe(db):
    params = ParameterService(db).resolve({
        "analysis_start_date": date(2024, 1, 1),
        "analysis_end_date": date(2024, 1, 30),
    }, label="weekly")

    data = params.to_dict()

    assert data["analysis_start_date"] == "2024-01-01"
    assert data["label"] == "weekly"
