import codecs, csv, io, logging, math
from dataclasses import fields
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd

from .errors import ConfigurationError, DecodeError, RowFormatError, SourceSelectionError
from .export import render_report
from .models import (
    AttendanceConfig,
    AttendanceReport,
    AttendanceStatus,
    ConfigValues,
    ParticipantEvent,
    ReportFormat,
    StudentRecord,
)
from .settings import settings

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ("csv", "xlsx", "xls")

NAME_COLUMN = "Name"
JOIN_COLUMN = "First Join"
EMAIL_COLUMN = "Email"

JOIN_TIME_FORMATS = ("%m/%d/%y, %I:%M:%S %p", "%m/%d/%Y, %I:%M:%S %p")

LEGACY_ENCODING = "cp1252"
BOM_ENCODINGS = (
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
    (codecs.BOM_UTF8, "utf-8"),
)

# -------------------- config --------------------

def _parse_time(value: str) -> time:
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except ValueError:
        raise ConfigurationError(f"Invalid time format: {value}. Use HH:MM.") from None

def _parse_int(value: str, label: str) -> int:
    try: return int(value.strip())
    except ValueError:
        raise ConfigurationError(f"{label} must be a number.") from None

def _parse_float(value: str, label: str) -> float:
    try: return float(value.strip())
    except ValueError:
        raise ConfigurationError(f"{label} must be a number.") from None

def parse_config(config: AttendanceConfig) -> ConfigValues:
    class_start = _parse_time(config.class_start)
    class_end = _parse_time(config.class_end)
    if class_end <= class_start:
        raise ConfigurationError("Class end time must be after the start time.")
    late_minutes = _parse_int(config.late_minutes, "Late minutes")
    absent_minutes = _parse_int(config.absent_minutes, "Absent minutes")
    total_points = _parse_float(config.total_points, "Total points")
    late_penalty = _parse_float(config.late_penalty, "Late penalty")
    absent_penalty = _parse_float(config.absent_penalty, "Absent penalty")
    if absent_minutes < late_minutes:
        logger.warning(
            "Absent minutes (%d) is below late minutes (%d): the Late status cannot be reached.",
            absent_minutes, late_minutes,
        )
    return ConfigValues(
        class_start=class_start,
        late_minutes=late_minutes,
        absent_minutes=absent_minutes,
        total_points=total_points,
        late_penalty=late_penalty,
        absent_penalty=absent_penalty,
    )

# -------------------- text decoding --------------------

def detect_delimiter(text: str) -> str:
    line = next((ln for ln in text.splitlines() if ln.strip()), "")
    comma, tab, semicolon = line.count(","), line.count("\t"), line.count(";")
    if tab >= comma and tab >= semicolon: return "\t"
    if semicolon > comma: return ";"
    return ","

def _legacy_fallback(exc: UnicodeDecodeError):
    # bytes cp1252 leaves unassigned map to the matching C1 code point
    return "".join(chr(b) for b in exc.object[exc.start:exc.end]), exc.end

codecs.register_error("cp1252-c1", _legacy_fallback)

def _decode_bytes(data: bytes) -> Tuple[str, str]:
    for bom, encoding in BOM_ENCODINGS:
        if data.startswith(bom):
            return data[len(bom):].decode(encoding, errors="replace"), encoding
    try:
        return data.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        pass
    return data.decode(LEGACY_ENCODING, errors="cp1252-c1"), LEGACY_ENCODING

def decode_text(data: bytes) -> Tuple[str, str]:
    """Decode a tabular export and pick its field delimiter.

    A byte-order mark decides the encoding when present; otherwise strict
    UTF-8 is tried before the legacy single-byte fallback. Decoding never
    fails: malformed sequences after a BOM become U+FFFD.
    """
    text, encoding = _decode_bytes(data)
    delimiter = detect_delimiter(text)
    logger.debug("Decoded %d bytes as %s with delimiter %r", len(data), encoding, delimiter)
    return text, delimiter

# -------------------- row extraction --------------------

def split_rows(text: str, delimiter: str) -> List[List[str]]:
    try:
        return [row for row in csv.reader(io.StringIO(text), delimiter=delimiter)]
    except csv.Error as exc:
        raise DecodeError(f"Failed to read CSV: {exc}") from exc

def read_csv_rows(data: bytes) -> List[List[str]]:
    text, delimiter = decode_text(data)
    return split_rows(text, delimiter)

def _cell_to_str(val) -> str:
    if val is None or val is pd.NaT:
        return ""
    if isinstance(val, bool):
        return "true" if val else "false"
    if isinstance(val, datetime):
        # keeps spreadsheet join times readable by parse_join_time
        return val.strftime(JOIN_TIME_FORMATS[1])
    if isinstance(val, time):
        return val.strftime("%H:%M:%S")
    if isinstance(val, timedelta):
        return str(val)
    if isinstance(val, float):
        if math.isnan(val): return ""
        return str(int(val)) if val.is_integer() else repr(val)
    return str(val)

def read_excel_rows(data: bytes) -> List[List[str]]:
    try:
        book = pd.ExcelFile(io.BytesIO(data))
    except Exception as exc:
        raise DecodeError(f"Failed to open Excel data: {exc}") from exc
    with book:
        if not book.sheet_names:
            raise DecodeError("Excel file is missing sheets.")
        try:
            sheet = book.parse(book.sheet_names[0], header=None, dtype=object)
        except Exception as exc:
            raise DecodeError(f"Failed to read Excel sheet: {exc}") from exc
    return [[_cell_to_str(v) for v in row] for row in sheet.itertuples(index=False, name=None)]

ROW_READERS: Dict[str, Callable[[bytes], List[List[str]]]] = {
    "csv": read_csv_rows,
    "xlsx": read_excel_rows,
    "xls": read_excel_rows,
}

def rows_to_frame(rows: List[List[str]]) -> pd.DataFrame:
    """Locate the header row (first row with a ``Name`` cell) and build a string frame from the rows below it."""
    header_idx = next((i for i, row in enumerate(rows) if NAME_COLUMN in row), None)
    if header_idx is None:
        return pd.DataFrame()
    header = [c.strip() for c in rows[header_idx]]
    width = len(header)
    body = [(list(row) + [""] * width)[:width] for row in rows[header_idx + 1:]]
    return pd.DataFrame(body, columns=header, dtype=str)

# -------------------- participants --------------------

def split_name(full_name: str) -> Tuple[str, str]:
    parts = full_name.split()
    if not parts: return "", ""
    return parts[0], " ".join(parts[1:])

def extract_id(email: str) -> str:
    return email.split("@", 1)[0]

def parse_join_time(value: str) -> pd.Timestamp:
    for fmt in JOIN_TIME_FORMATS:
        try:
            return pd.to_datetime(value, format=fmt)
        except ValueError:
            continue
    raise RowFormatError(f"Invalid datetime: {value}")

def _column_index(columns: List[str], name: str) -> Optional[int]:
    return columns.index(name) if name in columns else None

def parse_participants(frame: pd.DataFrame) -> List[ParticipantEvent]:
    columns = [str(c) for c in frame.columns]
    name_idx = _column_index(columns, NAME_COLUMN)
    join_idx = _column_index(columns, JOIN_COLUMN)
    email_idx = _column_index(columns, EMAIL_COLUMN)
    if name_idx is None or join_idx is None:
        return []
    events = []
    for row in frame.itertuples(index=False, name=None):
        name = row[name_idx].strip()
        if not name or name == NAME_COLUMN: continue
        join_raw = row[join_idx].strip()
        if not join_raw: continue
        email = row[email_idx].strip() if email_idx is not None else ""
        first_join = parse_join_time(join_raw)
        first, surname = split_name(name)
        events.append(ParticipantEvent(name=first, surname=surname, id=extract_id(email), email=email, first_join=first_join))
    return events

# -------------------- identity & dedup --------------------

def identity_key(event) -> str:
    """Aggregation key: identity token, then raw email, then "name surname"."""
    if event.id: return event.id
    if event.email: return event.email
    return f"{event.name} {event.surname}"

def deduplicate(events: Iterable[ParticipantEvent]) -> List[ParticipantEvent]:
    kept: Dict[str, ParticipantEvent] = {}
    for ev in events:
        k = identity_key(ev)
        cur = kept.get(k)
        if cur is None or ev.first_join < cur.first_join:
            kept[k] = ev
    return list(kept.values())

def read_session(data: bytes, extension: str) -> List[ParticipantEvent]:
    reader = ROW_READERS.get(extension.lower().lstrip("."))
    if reader is None:
        return []
    return deduplicate(parse_participants(rows_to_frame(reader(data))))

# -------------------- classification & scoring --------------------

def session_class_start(events: List[ParticipantEvent], class_start: time) -> pd.Timestamp:
    earliest = min(ev.first_join for ev in events)
    return pd.Timestamp.combine(earliest.date(), class_start)

def minutes_after_start(event: ParticipantEvent, class_start: pd.Timestamp) -> int:
    return max(0, int((event.first_join - class_start).total_seconds() // 60))

def classify(event: ParticipantEvent, class_start: pd.Timestamp, config: ConfigValues) -> AttendanceStatus:
    minutes = minutes_after_start(event, class_start)
    if minutes <= config.late_minutes: return AttendanceStatus.NORMAL
    if minutes <= config.absent_minutes: return AttendanceStatus.LATE
    return AttendanceStatus.ABSENT

def calculate_score(record: StudentRecord, config: ConfigValues) -> float:
    deductions = record.late * config.late_penalty + record.absent * config.absent_penalty
    return max(0.0, config.total_points - deductions)

# -------------------- aggregation --------------------

class SessionAggregator:
    """Folds sessions, in order, into one running record per student."""

    def __init__(self, config: ConfigValues):
        self.config = config
        self.students: Dict[str, StudentRecord] = {}
        self.sessions_processed = 0

    def add_session(self, events: List[ParticipantEvent]) -> bool:
        events = deduplicate(events)
        if not events:
            return False
        class_start = session_class_start(events, self.config.class_start)
        seen: Set[str] = set()
        for ev in events:
            key = identity_key(ev)
            status = classify(ev, class_start, self.config)
            seen.add(key)
            record = self.students.get(key)
            if record is None:
                # a student first seen now missed every earlier session
                record = StudentRecord(name=ev.name, surname=ev.surname, id=ev.id, email=ev.email, absent=self.sessions_processed)
                self.students[key] = record
            if status is AttendanceStatus.NORMAL: record.normal += 1
            elif status is AttendanceStatus.LATE: record.late += 1
            else: record.absent += 1
        for key, record in self.students.items():
            if key not in seen:
                record.absent += 1
        self.sessions_processed += 1
        return True

    def finish(self) -> AttendanceReport:
        for record in self.students.values():
            record.score = calculate_score(record, self.config)
        return assemble_report(self.students.values(), self.sessions_processed, self.config.total_points, self.config)

def assemble_report(records: Iterable[StudentRecord], sessions: int, total_points: float, config: Optional[ConfigValues] = None) -> AttendanceReport:
    ordered = sorted(records, key=lambda r: (r.surname, r.name))
    return AttendanceReport(students=tuple(ordered), sessions=sessions, total_points=total_points, config=config)

def generate_report(sessions: Iterable[List[ParticipantEvent]], config: AttendanceConfig) -> AttendanceReport:
    values = parse_config(config)
    agg = SessionAggregator(values)
    for events in sessions:
        agg.add_session(events)
    return agg.finish()

# -------------------- sources --------------------

def is_attendance_file(path: Path) -> bool:
    return path.suffix.lower().lstrip(".") in SUPPORTED_EXTENSIONS

def discover_sessions(path) -> List[Path]:
    path = Path(path)
    if path.is_file():
        if not is_attendance_file(path):
            raise SourceSelectionError("Selected file is not a supported CSV/XLSX attendance export.")
        return [path]
    if not path.is_dir():
        raise SourceSelectionError("Please select a valid directory or attendance file.")
    try:
        files = sorted(p for p in path.iterdir() if p.is_file() and is_attendance_file(p))
    except OSError as exc:
        raise SourceSelectionError(f"Failed to read directory: {exc}") from exc
    if not files:
        raise SourceSelectionError("No attendance CSV/XLSX files found in the directory.")
    return files

def build_report(sources: Iterable[Tuple[str, bytes]], values: ConfigValues) -> Tuple[AttendanceReport, dict]:
    """Run ordered (name, bytes) sources through the pipeline; returns the report and run metadata."""
    agg = SessionAggregator(values)
    files_seen = 0; skipped: List[str] = []
    for name, data in sources:
        files_seen += 1
        events = read_session(data, Path(name).suffix)
        if not agg.add_session(events):
            logger.info("Skipping %s: no participants found", name)
            skipped.append(name)
            continue
        logger.debug("Session %d from %s: %d participants", agg.sessions_processed, name, len(events))
    report = agg.finish()
    meta = {
        "sessions": report.sessions,
        "files_seen": files_seen,
        "files_skipped": skipped,
        "students": len(report.students),
        "total_points": report.total_points,
    }
    logger.info("Processed %d sessions (%d files) for %d students", report.sessions, files_seen, len(report.students))
    return report, meta

def _read_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise DecodeError(f"Failed to read {path}: {exc}") from exc

def analyze_path(path, config: AttendanceConfig) -> Tuple[AttendanceReport, dict]:
    values = parse_config(config)
    files = discover_sessions(path)
    logger.info("Found %d attendance files under %s", len(files), path)
    return build_report(((str(f), _read_file(f)) for f in files), values)

def load_attendance(path, config: AttendanceConfig) -> AttendanceReport:
    return analyze_path(path, config)[0]

# -------------------- request adapter --------------------

def parse_format(value) -> ReportFormat:
    if isinstance(value, ReportFormat):
        return value
    try:
        return ReportFormat(str(value or "").strip().lower().lstrip("."))
    except ValueError:
        allowed = ", ".join(f.value for f in ReportFormat)
        raise ConfigurationError(f"Unsupported report format: {value}. Use one of {allowed}.") from None

def process_request(uploads: List[Tuple[str, bytes]], params: Dict, report_format) -> Tuple[bytes, dict]:
    """Uploaded (filename, bytes) pairs + raw config params -> rendered report bytes and metadata."""
    fmt = parse_format(report_format)
    values = parse_config(settings.to_config(**{f.name: params.get(f.name) for f in fields(AttendanceConfig)}))
    sources = sorted((u for u in uploads if is_attendance_file(Path(u[0]))), key=lambda u: u[0])
    if not sources:
        raise SourceSelectionError("No attendance CSV/XLSX files were uploaded.")
    report, meta = build_report(sources, values)
    meta["format"] = fmt.value
    return render_report(report, fmt), meta

def extract_participants_from_bytes(data: bytes, filename: str) -> List[dict]:
    if not is_attendance_file(Path(filename)):
        raise SourceSelectionError("Selected file is not a supported CSV/XLSX attendance export.")
    events = sorted(read_session(data, Path(filename).suffix), key=lambda ev: ev.first_join)
    return [
        dict(key=identity_key(ev), name=ev.name, surname=ev.surname, id=ev.id, email=ev.email,
             first_join=ev.first_join.strftime("%Y-%m-%d %H:%M:%S"))
        for ev in events
    ]
