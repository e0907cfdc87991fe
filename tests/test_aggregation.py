import random
from dataclasses import replace
from datetime import time

import pandas as pd
import pytest

from attendance_report.errors import ConfigurationError, RowFormatError, SourceSelectionError
from attendance_report.logic import (
    SessionAggregator,
    analyze_path,
    assemble_report,
    calculate_score,
    classify,
    discover_sessions,
    generate_report,
    identity_key,
    load_attendance,
    parse_config,
    session_class_start,
)
from attendance_report.models import AttendanceStatus, StudentRecord

from .factories import event, export_csv

START = pd.Timestamp("2024-01-08 13:30:00")


def at(minutes, seconds=0):
    return START + pd.Timedelta(minutes=minutes, seconds=seconds)


@pytest.fixture
def values(raw_config):
    return parse_config(raw_config)


@pytest.mark.parametrize(
    "minutes, seconds, expected",
    [
        (-20, 0, AttendanceStatus.NORMAL),
        (0, 0, AttendanceStatus.NORMAL),
        (10, 0, AttendanceStatus.NORMAL),
        (10, 59, AttendanceStatus.NORMAL),
        (11, 0, AttendanceStatus.LATE),
        (30, 0, AttendanceStatus.LATE),
        (31, 0, AttendanceStatus.ABSENT),
        (240, 0, AttendanceStatus.ABSENT),
    ],
)
def test_classification_boundaries(values, minutes, seconds, expected):
    assert classify(event("Ada", first_join=at(minutes, seconds)), START, values) is expected


def test_late_unreachable_when_absent_threshold_is_lower(raw_config):
    values = parse_config(replace(raw_config, late_minutes="20", absent_minutes="5"))
    assert classify(event("Ada", first_join=at(15)), START, values) is AttendanceStatus.NORMAL
    assert classify(event("Ada", first_join=at(21)), START, values) is AttendanceStatus.ABSENT


def test_negative_threshold_marks_everyone(raw_config):
    values = parse_config(replace(raw_config, late_minutes="-1", absent_minutes="-1"))
    assert classify(event("Ada", first_join=at(-5)), START, values) is AttendanceStatus.ABSENT


def test_class_start_uses_date_of_earliest_join():
    events = [
        event("Late", first_join="2024-01-09 00:10:00"),
        event("Early", first_join="2024-01-08 23:50:00"),
    ]
    assert session_class_start(events, time(13, 30)) == pd.Timestamp("2024-01-08 13:30:00")


def test_score_never_negative(values):
    record = StudentRecord(name="Ada", surname="Lovelace", id="ada", email="", late=0, absent=20)
    assert calculate_score(record, values) == 0.0


def test_score_deducts_penalties(values):
    record = StudentRecord(name="Ada", surname="Lovelace", id="ada", email="", normal=3, late=3, absent=2)
    assert calculate_score(record, values) == pytest.approx(6.5)


def test_missing_student_is_backfilled_absent(values):
    agg = SessionAggregator(values)
    agg.add_session([event("Xavier", "Ng", at(0), "x@uni.edu")])
    agg.add_session([event("Yara", "Ode", at(0), "y@uni.edu")])
    x = agg.students["x"]
    assert (x.normal, x.late, x.absent) == (1, 0, 1)


def test_new_student_seeded_with_prior_sessions(values):
    agg = SessionAggregator(values)
    agg.add_session([event("Xavier", "Ng", at(0), "x@uni.edu")])
    agg.add_session([event("Xavier", "Ng", at(0), "x@uni.edu")])
    agg.add_session([event("Xavier", "Ng", at(0), "x@uni.edu"), event("Yara", "Ode", at(15), "y@uni.edu")])
    y = agg.students["y"]
    assert (y.normal, y.late, y.absent) == (0, 1, 2)


def test_empty_session_is_not_counted(values):
    agg = SessionAggregator(values)
    assert agg.add_session([event("Xavier", "Ng", at(0), "x@uni.edu")])
    assert not agg.add_session([])
    assert agg.sessions_processed == 1
    assert agg.students["x"].absent == 0


def test_duplicate_rows_in_one_session_count_once(values):
    agg = SessionAggregator(values)
    agg.add_session([event("Xavier", "Ng", at(40), "x@uni.edu"), event("Xavier", "Ng", at(2), "x@uni.edu")])
    x = agg.students["x"]
    assert (x.normal, x.late, x.absent) == (1, 0, 0)


def test_counters_always_sum_to_sessions(values):
    rng = random.Random(42)
    roster = [("Ana", "Diaz"), ("Ben", "Okafor"), ("Chen", "Wei"), ("Dana", "Scully"), ("Eli", "Roth")]
    agg = SessionAggregator(values)
    for day in range(12):
        day_start = START + pd.Timedelta(days=day)
        attendees = [p for p in roster if rng.random() < 0.6]
        agg.add_session([
            event(first, last, day_start + pd.Timedelta(minutes=rng.randint(-5, 50)))
            for first, last in attendees
        ])
    report = agg.finish()
    assert report.sessions == agg.sessions_processed
    for record in report.students:
        assert record.normal + record.late + record.absent == report.sessions


def test_report_sorted_by_surname_then_name():
    records = [
        StudentRecord(name="Zed", surname="adams", id="", email=""),
        StudentRecord(name="Bob", surname="Adams", id="", email=""),
        StudentRecord(name="Amy", surname="Adams", id="", email=""),
        StudentRecord(name="Cher", surname="", id="", email=""),
    ]
    report = assemble_report(records, 3, 10.0)
    assert [(r.surname, r.name) for r in report.students] == [
        ("", "Cher"), ("Adams", "Amy"), ("Adams", "Bob"), ("adams", "Zed"),
    ]
    assert report.sessions == 3
    assert report.total_points == 10.0


def test_generate_report_from_parsed_sessions(raw_config):
    report = generate_report(
        [[event("Xavier", "Ng", at(0), "x@uni.edu")], [], [event("Yara", "Ode", at(20), "y@uni.edu")]],
        raw_config,
    )
    assert report.sessions == 2
    assert [(r.id, r.normal, r.late, r.absent, r.score) for r in report.students] == [
        ("x", 1, 0, 1, 9.0),
        ("y", 0, 1, 1, 8.5),
    ]


def test_load_attendance_directory(session_dir, raw_config):
    report = load_attendance(session_dir, raw_config)
    assert report.sessions == 2
    assert report.total_points == 10.0
    summary = [(r.name, r.surname, r.id, r.normal, r.late, r.absent, r.score) for r in report.students]
    assert summary == [
        ("Grace", "Hopper", "grace", 1, 0, 1, 9.0),
        ("Ada", "Lovelace", "ada", 1, 0, 1, 9.0),
        ("Alan", "Mathison Turing", "alan", 0, 1, 1, 8.5),
    ]


def test_single_file_source(session_dir, raw_config):
    report = load_attendance(session_dir / "2024-01-08.csv", raw_config)
    assert report.sessions == 1
    assert {identity_key(r): (r.normal, r.late) for r in report.students} == {"ada": (1, 0), "alan": (0, 1)}


def test_file_without_first_join_is_skipped(session_dir, raw_config):
    (session_dir / "2024-01-10.csv").write_text(
        export_csv([["Ada Lovelace", "01/10/24, 01:25:00 PM"]], header=("Name", "Join Time")), encoding="utf-8"
    )
    report, meta = analyze_path(session_dir, raw_config)
    assert report.sessions == 2
    assert meta["files_seen"] == 3
    assert meta["files_skipped"] == [str(session_dir / "2024-01-10.csv")]


def test_bad_timestamp_fails_the_run(session_dir, raw_config):
    (session_dir / "2024-01-22.csv").write_text(
        export_csv([["Ada Lovelace", "22 Jan 2024 13:25", "ada@uni.edu"]]), encoding="utf-8"
    )
    with pytest.raises(RowFormatError):
        load_attendance(session_dir, raw_config)


def test_sessions_processed_in_path_order(tmp_path):
    for name in ("b.csv", "a.xlsx", "c.XLS", "z.txt"):
        (tmp_path / name).write_bytes(b"")
    (tmp_path / "d.csv").mkdir()
    assert [p.name for p in discover_sessions(tmp_path)] == ["a.xlsx", "b.csv", "c.XLS"]


def test_source_errors_are_distinct(tmp_path):
    (tmp_path / "notes.txt").write_text("x")
    (tmp_path / "empty").mkdir()
    messages = set()
    for target in (tmp_path / "missing", tmp_path / "notes.txt", tmp_path / "empty"):
        with pytest.raises(SourceSelectionError) as info:
            discover_sessions(target)
        messages.add(str(info.value))
    assert len(messages) == 3


def test_config_checked_before_any_file(raw_config, tmp_path):
    with pytest.raises(ConfigurationError):
        load_attendance(tmp_path / "missing", replace(raw_config, class_end="12:00"))
