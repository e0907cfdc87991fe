from dataclasses import dataclass, field
from datetime import time
from enum import Enum
from typing import Optional, Tuple

import pandas as pd


@dataclass
class AttendanceConfig:
    class_start: str
    class_end: str
    late_minutes: str
    absent_minutes: str
    total_points: str
    late_penalty: str
    absent_penalty: str


@dataclass(frozen=True)
class ConfigValues:
    class_start: time
    late_minutes: int
    absent_minutes: int
    total_points: float
    late_penalty: float
    absent_penalty: float


class AttendanceStatus(Enum):
    NORMAL = "normal"
    LATE = "late"
    ABSENT = "absent"


@dataclass(frozen=True)
class ParticipantEvent:
    name: str
    surname: str
    id: str
    email: str
    first_join: pd.Timestamp


@dataclass
class StudentRecord:
    name: str
    surname: str
    id: str
    email: str
    normal: int = 0
    late: int = 0
    absent: int = 0
    score: float = 0.0

    @property
    def sessions(self) -> int:
        return self.normal + self.late + self.absent

    @property
    def attendance_rate(self) -> float:
        """Share of sessions the student was not marked absent, 0..1."""
        if self.sessions == 0:
            return 0.0
        return (self.normal + self.late) / self.sessions


@dataclass(frozen=True)
class AttendanceReport:
    students: Tuple[StudentRecord, ...] = field(default_factory=tuple)
    sessions: int = 0
    total_points: float = 0.0
    config: Optional[ConfigValues] = None


class ReportFormat(Enum):
    CSV = "csv"
    TXT = "txt"
    PDF = "pdf"
    XLSX = "xlsx"

    @property
    def label(self) -> str:
        return {"csv": "CSV", "txt": "Text", "pdf": "PDF", "xlsx": "Excel"}[self.value]

    @property
    def extension(self) -> str:
        return "." + self.value

    @property
    def media_type(self) -> str:
        return {
            "csv": "text/csv",
            "txt": "text/plain",
            "pdf": "application/pdf",
            "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        }[self.value]

    def __str__(self) -> str:
        return self.label
