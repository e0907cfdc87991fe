import pytest

from attendance_report.models import AttendanceConfig

from .factories import export_csv


@pytest.fixture
def raw_config():
    return AttendanceConfig(
        class_start="13:30",
        class_end="15:00",
        late_minutes="10",
        absent_minutes="30",
        total_points="10",
        late_penalty="0.5",
        absent_penalty="1",
    )


@pytest.fixture
def session_dir(tmp_path):
    (tmp_path / "2024-01-08.csv").write_text(
        export_csv([
            ["Ada Lovelace", "01/08/24, 01:25:00 PM", "ada@uni.edu"],
            ["Alan Mathison Turing", "01/08/24, 01:45:00 PM", "alan@uni.edu"],
        ]),
        encoding="utf-8",
    )
    (tmp_path / "2024-01-15.csv").write_text(
        export_csv([
            ["Ada Lovelace", "01/15/2024, 02:15:00 PM", "ada@uni.edu"],
            ["Grace Hopper", "01/15/2024, 01:30:00 PM", "grace@uni.edu"],
        ]),
        encoding="utf-8",
    )
    (tmp_path / "notes.txt").write_text("not an export", encoding="utf-8")
    return tmp_path
