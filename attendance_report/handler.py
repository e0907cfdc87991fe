from typing import List

from mangum import Mangum
from fastapi import FastAPI, File, UploadFile, Form
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response, JSONResponse
import json
from . import logic
from .errors import AttendanceError
from .logger import setup_logging
from .settings import settings

setup_logging(settings.log_level, settings.log_file)

app = FastAPI(title="Attendance Report")

@app.get("/api/health")
def health():
    return {"ok": True}

@app.post("/api/process")
async def process(
    files: List[UploadFile] = File(...),
    class_start: str = Form(settings.class_start),
    class_end: str = Form(settings.class_end),
    late_minutes: str = Form(settings.late_minutes),
    absent_minutes: str = Form(settings.absent_minutes),
    total_points: str = Form(settings.total_points),
    late_penalty: str = Form(settings.late_penalty),
    absent_penalty: str = Form(settings.absent_penalty),
    report_format: str = Form(settings.default_format),
):
    params = dict(
        class_start=class_start, class_end=class_end,
        late_minutes=late_minutes, absent_minutes=absent_minutes,
        total_points=total_points, late_penalty=late_penalty, absent_penalty=absent_penalty,
    )
    uploads = [(f.filename or "", await f.read()) for f in files]

    try:
        fmt = logic.parse_format(report_format)
        out_bytes, meta = await run_in_threadpool(logic.process_request, uploads, params, fmt)
    except AttendanceError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    headers = {
        "Content-Disposition": f"attachment; filename=attendance_report{fmt.extension}",
        "X-Attendance-Meta": json.dumps(meta),
    }
    return Response(content=out_bytes, media_type=fmt.media_type, headers=headers)


@app.post("/api/participants")
async def list_participants(file: UploadFile = File(...)):
    data = await file.read()
    try:
        items = await run_in_threadpool(logic.extract_participants_from_bytes, data, file.filename or "")
    except AttendanceError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    return items

handler = Mangum(app)
