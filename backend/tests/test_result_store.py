from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from noos.exceptions import NotFoundError
from noos.models import NoosType, TaskType
from noos.services import ClassifiedStyle, NoosResultStore, TaskService


def row(code, noos_type, contribution, category="SHIRTS"):
    return ClassifiedStyle(
        category=category,
        style_code=code,
        type=noos_type,
        style_ros=1.5,
        style_rev_contribution=contribution,
        total_quantity_sold=45,
        total_revenue=4500.0,
        days_available=30,
        days_with_sales=20,
        avg_discount=0.1,
    )


@pytest.fixture
def store(db):
    store = NoosResultStore(db)
    store.save_run(1, [
        row("SH-B", NoosType.CORE, 20.0),
        row("SH-A", NoosType.BESTSELLER, 70.0),
        row("SH-C", NoosType.FASHION, 10.0),
    ], calculated_date=datetime(2024, 2, 1, 9, 0))
    store.save_run(2, [
        row("SH-A", NoosType.BESTSELLER, 60.0),
        row("SH-B", NoosType.BESTSELLER, 40.0),
        row("JN-A", NoosType.FASHION, 100.0, category="JEANS"),
    ], calculated_date=datetime(2024, 3, 1, 9, 0))
    return store


def test_by_run_is_ordered(store):
    assert [(r.category, r.style_code) for r in store.by_run(2)] == [
        ("JEANS", "JN-A"), ("SHIRTS", "SH-A"), ("SHIRTS", "SH-B")
    ]


def test_latest_lists_newest_run_first(store):
    latest = store.latest()

    assert latest[0].algorithm_run_id == 2
    assert latest[-1].algorithm_run_id == 1
    assert len(store.latest(limit=2)) == 2


def test_category_and_type_ordered_by_contribution(store):
    assert [r.style_code for r in store.by_category("SHIRTS", run_id=1)] == ["SH-A", "SH-B", "SH-C"]
    assert [r.style_rev_contribution for r in store.by_type("bestseller")] == [70.0, 60.0, 40.0]
    assert [r.style_code for r in store.by_type("bestseller", run_id=2)] == ["SH-A", "SH-B"]


def test_counts_always_include_every_bucket(store):
    assert store.counts_by_type(2) == {"bestseller": 2, "core": 0, "fashion": 1}
    assert store.count() == 6
    assert store.count(1) == 3
    assert NoosResultStore(store.db).counts_by_type(99) == {"bestseller": 0, "core": 0, "fashion": 0}


def test_run_summaries_and_dashboard(store):
    summaries = store.run_summaries()
    assert [s["run_id"] for s in summaries] == [2, 1]
    assert summaries[0]["total"] == 3
    assert summaries[1]["counts"] == {"bestseller": 1, "core": 1, "fashion": 1}
    assert summaries[0]["calculated_date"] == datetime(2024, 3, 1, 9, 0)
    assert summaries[0]["status"] is None

    dashboard = store.dashboard()
    assert dashboard["run_id"] == 2
    assert dashboard["total"] == 3
    assert dashboard["percentages"] == {"bestseller": 66.7, "core": 0.0, "fashion": 33.3}
    assert dashboard["last_run_date"] == datetime(2024, 3, 1, 9, 0)


def test_run_summaries_carry_task_details(db):
    tasks = TaskService(db)
    task = tasks.create(
        TaskType.ALGORITHM_RUN.value,
        parameters={"label": "weekly", "bestseller_multiplier": 1.2},
    )
    tasks.mark_running(task.id, "INITIALIZING", 6, "Starting")
    tasks.mark_completed(task.id, details={"duration_seconds": 1.5})
    store = NoosResultStore(db)
    store.save_run(task.id, [row("SH-A", NoosType.CORE, 100.0)])

    summary = store.run_summaries()[0]

    assert summary["run_id"] == task.id
    assert summary["label"] == "weekly"
    assert summary["status"] == "COMPLETED"
    assert summary["duration_seconds"] == 1.5
    assert summary["parameters"]["bestseller_multiplier"] == 1.2


def test_dashboard_without_results(db):
    dashboard = NoosResultStore(db).dashboard()

    assert dashboard["run_id"] is None
    assert dashboard["total"] == 0
    assert dashboard["percentages"] == {"bestseller": 0.0, "core": 0.0, "fashion": 0.0}


def test_purge_run(store):
    assert store.purge_run(1) == 3
    assert store.by_run(1) == []
    assert store.count() == 3

    with pytest.raises(NotFoundError):
        store.purge_run(1)


def test_run_is_written_all_or_nothing(db):
    store = NoosResultStore(db)

    with pytest.raises(IntegrityError):
        store.save_run(5, [row("DUP", NoosType.CORE, 50.0), row("DUP", NoosType.FASHION, 50.0)])

    assert store.count(5) == 0


def test_tsv_export(store):
    text = store.to_tsv(store.by_run(1))
    lines = text.splitlines()

    assert lines[0].split("\t") == [
        "Category", "Style Code", "Style ROS", "Type", "Style Rev Contri",
        "Total Quantity", "Total Revenue", "Days Available", "Days With Sales",
        "Avg Discount", "Calculated Date", "Run Id",
    ]
    first = lines[1].split("\t")
    assert first[:2] == ["SHIRTS", "SH-A"]
    assert first[3] == "bestseller"
    assert first[10] == "2024-02-01 09:00:00"
    assert first[11] == "1"
    assert len(lines) == 4


def test_tsv_export_of_nothing_is_header_only(db):
    assert NoosResultStore(db).to_tsv([]).count("\n") == 1
