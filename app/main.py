import logging
import os
import re
import sys
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from dotenv import load_dotenv
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    stream=sys.stdout,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
for _name in ("httpx", "httpcore"):
    logging.getLogger(_name).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from sqlalchemy import delete, select, update

from .database import Base, SessionLocal, engine
from .extract import extract_text
from .gemini import analyze_licensing, generate_legal_answer
from .models import Analysis, DailyUsage, LegalRequest, Upload
from .schemas import (
    AnalysisBrief,
    AnalysisList,
    AnalysisOut,
    FileType,
    LegalQuestionIn,
    LegalRequestEnvelope,
    LegalRequestList,
    LegalRequestOut,
    UploadBrief,
    UploadEnvelope,
    UploadList,
    UploadOut,
)
from .storage import delete_object, get_object, put_object

APP_VERSION = "1.0.0"
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

# --- Rate limiting ---
RATE_LIMIT_PER_IP = os.getenv("RATE_LIMIT_PER_IP", "5/hour")
DAILY_ANALYSIS_CAP = int(os.getenv("DAILY_ANALYSIS_CAP", "150"))

CORS_ALLOW_ORIGIN = os.getenv("CORS_ALLOW_ORIGIN", "http://localhost:5173")

limiter = Limiter(key_func=get_remote_address)


async def _check_daily_cap():
    """Raise 429 if the global daily model-call cap has been reached."""
    today = date.today()
    async with SessionLocal() as session:
        usage = await session.get(DailyUsage, today)
    if usage and usage.count >= DAILY_ANALYSIS_CAP:
        raise HTTPException(
            status_code=429,
            detail="Daily analysis limit reached. Please try again tomorrow.",
        )


async def _increment_daily_counter():
    today = date.today()
    async with SessionLocal() as session:
        usage = await session.get(DailyUsage, today)
        if usage:
            usage.count += 1
        else:
            session.add(DailyUsage(usage_date=today, count=1))
        await session.commit()


def _storage_key(upload_id: str, file_name: str) -> str:
    safe_name = re.sub(r"[^A-Za-z0-9._-]", "_", os.path.basename(file_name)) or "file"
    return f"{upload_id}-{safe_name}"


async def _latest_analyses(session, upload_ids: List[str]) -> Dict[str, Analysis]:
    """Map each upload id to its most recent analysis."""
    if not upload_ids:
        return {}
    rows = await session.scalars(
        select(Analysis)
        .where(Analysis.upload_id.in_(upload_ids))
        .order_by(Analysis.created_at)
    )
    # Later rows overwrite earlier ones, leaving the newest per upload
    return {a.upload_id: a for a in rows}


def _upload_out(upload: Upload, analysis: Optional[Analysis]) -> UploadOut:
    out = UploadOut.model_validate(upload)
    if analysis:
        out.analysis = AnalysisBrief.model_validate(analysis)
    return out


async def _request_out(session, legal_request: LegalRequest) -> LegalRequestOut:
    out = LegalRequestOut.model_validate(legal_request)
    if legal_request.upload_id:
        upload = await session.get(Upload, legal_request.upload_id)
        if upload:
            out.upload = UploadBrief.model_validate(upload)
    return out


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield


app = FastAPI(title="Digital Rights Tool API", version=APP_VERSION, lifespan=lifespan)
app.state.limiter = limiter
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in CORS_ALLOW_ORIGIN.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Please slow down and try again later."},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        logger.error("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# ---------------------------------------------------------------------------
# Meta
# ---------------------------------------------------------------------------


@app.get("/")
async def index():
    return {
        "message": "Digital Rights Tool API",
        "status": "running",
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/health")
async def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------


@app.post("/api/upload", status_code=201, response_model=UploadEnvelope)
async def upload_file(
    file: UploadFile = File(...),
    file_type: FileType = Form(..., alias="fileType"),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="File and fileType are required.")

    data = await file.read()

    if len(data) == 0:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")

    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=400,
            detail=f"File must be under {MAX_UPLOAD_BYTES // (1024 * 1024)} MB.",
        )

    upload_id = str(uuid.uuid4())
    storage_key = _storage_key(upload_id, file.filename)
    await put_object(storage_key, data)

    try:
        async with SessionLocal() as session:
            upload = Upload(
                id=upload_id,
                file_type=file_type.value,
                file_name=file.filename,
                content_type=file.content_type,
                size=len(data),
                storage_key=storage_key,
            )
            session.add(upload)
            await session.commit()
    except Exception:
        logger.exception("Failed to record upload %s; removing stored file", upload_id)
        await delete_object(storage_key)
        raise

    logger.info("Upload %s stored (%s, %d bytes)", upload_id, file.filename, len(data))
    return UploadEnvelope(upload=_upload_out(upload, None))


@app.get("/api/upload", response_model=UploadList)
async def list_uploads():
    async with SessionLocal() as session:
        uploads = list(
            await session.scalars(select(Upload).order_by(Upload.created_at.desc()))
        )
        latest = await _latest_analyses(session, [u.id for u in uploads])

    return UploadList(uploads=[_upload_out(u, latest.get(u.id)) for u in uploads])


@app.get("/api/upload/{upload_id}", response_model=UploadEnvelope)
async def get_upload(upload_id: str):
    async with SessionLocal() as session:
        upload = await session.get(Upload, upload_id)
        if not upload:
            raise HTTPException(status_code=404, detail="Upload not found.")
        latest = await _latest_analyses(session, [upload.id])

    return UploadEnvelope(upload=_upload_out(upload, latest.get(upload.id)))


@app.delete("/api/upload/{upload_id}")
async def delete_upload(upload_id: str):
    async with SessionLocal() as session:
        upload = await session.get(Upload, upload_id)
        if not upload:
            raise HTTPException(status_code=404, detail="Upload not found.")

        await session.execute(delete(Analysis).where(Analysis.upload_id == upload_id))
        await session.execute(
            update(LegalRequest)
            .where(LegalRequest.upload_id == upload_id)
            .values(upload_id=None)
        )
        await session.delete(upload)
        await session.commit()

    await delete_object(upload.storage_key)
    return {"message": "Upload deleted successfully", "id": upload_id}


# ---------------------------------------------------------------------------
# Analyses
# ---------------------------------------------------------------------------


@app.post("/api/analysis/{upload_id}", status_code=201, response_model=AnalysisOut)
@limiter.limit(RATE_LIMIT_PER_IP)
async def analyze_upload(request: Request, upload_id: str):
    await _check_daily_cap()

    async with SessionLocal() as session:
        upload = await session.get(Upload, upload_id)
    if not upload:
        raise HTTPException(status_code=404, detail="Upload not found.")

    data = await get_object(upload.storage_key)
    if data is None:
        raise HTTPException(status_code=404, detail="File not found in storage.")

    text = extract_text(data, upload.content_type, upload.file_name)
    result = await analyze_licensing(text)

    await _increment_daily_counter()

    async with SessionLocal() as session:
        analysis = Analysis(
            id=str(uuid.uuid4()),
            upload_id=upload.id,
            licensing_info=result.licensing_info,
            licensing_summary=result.licensing_summary,
            risk_score=result.risk_score,
        )
        session.add(analysis)
        await session.commit()

    logger.info("Analysis %s for upload %s: risk=%d", analysis.id, upload.id, analysis.risk_score)
    return AnalysisOut.model_validate(analysis)


@app.get("/api/analysis", response_model=AnalysisList)
async def list_analyses():
    async with SessionLocal() as session:
        analyses = await session.scalars(
            select(Analysis).order_by(Analysis.created_at.desc())
        )
        return AnalysisList(analyses=[AnalysisOut.model_validate(a) for a in analyses])


@app.get("/api/analysis/{analysis_id}", response_model=AnalysisOut)
async def get_analysis(analysis_id: str):
    async with SessionLocal() as session:
        analysis = await session.get(Analysis, analysis_id)

    if not analysis:
        raise HTTPException(status_code=404, detail="Analysis not found.")

    return AnalysisOut.model_validate(analysis)


@app.delete("/api/analysis/{analysis_id}")
async def delete_analysis(analysis_id: str):
    async with SessionLocal() as session:
        analysis = await session.get(Analysis, analysis_id)
        if not analysis:
            raise HTTPException(status_code=404, detail="Analysis not found.")
        await session.delete(analysis)
        await session.commit()

    return {"message": "Analysis deleted successfully"}


# ---------------------------------------------------------------------------
# Legal questions
# ---------------------------------------------------------------------------


@app.post("/api/requests", status_code=201, response_model=LegalRequestEnvelope)
@limiter.limit(RATE_LIMIT_PER_IP)
async def create_request(request: Request, body: LegalQuestionIn):
    await _check_daily_cap()

    context = None
    async with SessionLocal() as session:
        if body.upload_id:
            upload = await session.get(Upload, body.upload_id)
            if not upload:
                raise HTTPException(status_code=404, detail="Upload not found.")
            latest = (await _latest_analyses(session, [upload.id])).get(upload.id)
            summary = latest.licensing_summary if latest else "No analysis available"
            context = (
                f"File type: {upload.file_type}, File name: {upload.file_name}, "
                f"Analysis: {summary}"
            )

    answer = await generate_legal_answer(body.question, context)

    await _increment_daily_counter()

    async with SessionLocal() as session:
        legal_request = LegalRequest(
            id=str(uuid.uuid4()),
            upload_id=body.upload_id,
            question=body.question,
            answer=answer,
        )
        session.add(legal_request)
        await session.commit()
        out = await _request_out(session, legal_request)

    return LegalRequestEnvelope(message="Question submitted and answered", request=out)


@app.get("/api/requests", response_model=LegalRequestList)
async def list_requests():
    async with SessionLocal() as session:
        rows = list(
            await session.scalars(
                select(LegalRequest).order_by(LegalRequest.created_at.desc())
            )
        )
        return LegalRequestList(requests=[await _request_out(session, r) for r in rows])


@app.get("/api/requests/{request_id}", response_model=LegalRequestEnvelope)
async def get_request(request_id: str):
    async with SessionLocal() as session:
        legal_request = await session.get(LegalRequest, request_id)
        if not legal_request:
            raise HTTPException(status_code=404, detail="Request not found.")
        out = await _request_out(session, legal_request)

    return LegalRequestEnvelope(request=out)


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=204)
