import base64
import logging
import secrets

from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

import os  # noqa: E402
from typing import Literal, Optional, Union  # noqa: E402

from cachetools import TTLCache  # noqa: E402
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Response  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from pydantic import BaseModel, Field  # noqa: E402

from contract_pdf import (  # noqa: E402
    AssetUnavailableError,
    ContractForm,
    ContractPDFError,
    ContractPDFService,
    GeneratedPdf,
    NumberToWordsConverter,
    NumberToWordsError,
    PdfStorageError,
    RecordNotFound,
    RecordStoreError,
    Seller,
    Witness,
    create_record_store,
)
from contract_pdf.models import PersonCollection  # noqa: E402

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("contract_api")

app = FastAPI(title="Adásvételi szerződés PDF kitöltő")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8501",
        "http://127.0.0.1:8501",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

APP_PASSWORD = os.getenv("APP_PASSWORD", "user")
SESSION_TTL = int(os.getenv("SESSION_TTL", "43200"))  # 12 hours default
SESSIONS = TTLCache(maxsize=1000, ttl=SESSION_TTL)

pdf_service = ContractPDFService()
record_store = create_record_store()
number_converter = NumberToWordsConverter()

PdfType = Literal["all", "main", "kellekszavatossag", "meghatalmazas"]


# --- Session handling ----------------------------------------------------------


def _check_session(token: Optional[str]) -> str:
    if not token or token not in SESSIONS:
        raise HTTPException(status_code=401, detail="Bejelentkezés szükséges.")
    return token


def require_session(x_session_token: Optional[str] = Header(default=None)) -> str:
    return _check_session(x_session_token)


def require_link_session(
    x_session_token: Optional[str] = Header(default=None),
    session_token: Optional[str] = Query(default=None),
) -> str:
    """Also accepts ``?session_token=`` so a PDF link can be opened in a browser tab."""
    return _check_session(x_session_token or session_token)


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/login")
def login(password: str = Body(..., embed=True)):
    if not secrets.compare_digest(password.encode("utf-8"), APP_PASSWORD.encode("utf-8")):
        logger.warning("Failed login attempt")
        raise HTTPException(status_code=401, detail="Hibás jelszó!")
    token = secrets.token_urlsafe(24)
    SESSIONS[token] = True
    return {"session_token": token, "expires_in": SESSION_TTL}


@app.post("/logout")
def logout(token: str = Depends(require_session)):
    SESSIONS.pop(token, None)
    return {"ok": True}


# --- Number to words -----------------------------------------------------------


class NumberToWordsRequest(BaseModel):
    number: Union[int, float, str]


@app.post("/number-to-words", dependencies=[Depends(require_session)])
def number_to_words(req: NumberToWordsRequest):
    try:
        words = number_converter.convert(req.number)
    except NumberToWordsError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"words": words}


# --- PDF generation ------------------------------------------------------------


class PDFGenerateRequest(BaseModel):
    form_data: ContractForm = Field(default_factory=ContractForm)
    pdf_type: PdfType = "all"
    persist: bool = False


class PDFSeparateRequest(BaseModel):
    form_data: ContractForm = Field(default_factory=ContractForm)
    persist: bool = False


def _pdf_payload(result: GeneratedPdf) -> dict:
    return {
        "metadata": result.metadata,
        "filename": result.filename,
        "pdf_base64": base64.b64encode(result.pdf_bytes).decode("ascii"),
    }


def _pdf_error(exc: ContractPDFError) -> HTTPException:
    if isinstance(exc, (AssetUnavailableError, PdfStorageError)):
        logger.error("PDF asset or storage unavailable: %s", exc)
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/pdf/templates", dependencies=[Depends(require_session)])
def pdf_list_templates():
    return {"templates": pdf_service.list_templates()}


@app.get("/pdf/templates/{template_name}/fields", dependencies=[Depends(require_session)])
def pdf_template_fields(template_name: str):
    try:
        fields = pdf_service.template_fields(template_name)
    except ContractPDFError as exc:
        raise _pdf_error(exc) from exc
    return {"template": template_name, "fields": fields}


@app.post("/pdf/generate", dependencies=[Depends(require_session)])
def pdf_generate(req: PDFGenerateRequest):
    try:
        result = pdf_service.generate(req.form_data, pdf_type=req.pdf_type, persist=req.persist)
    except ContractPDFError as exc:
        raise _pdf_error(exc) from exc
    return _pdf_payload(result)


@app.post("/pdf/generate-separate", dependencies=[Depends(require_session)])
def pdf_generate_separate(req: PDFSeparateRequest):
    try:
        results = pdf_service.generate_separate(req.form_data, persist=req.persist)
    except ContractPDFError as exc:
        raise _pdf_error(exc) from exc
    return {"documents": [_pdf_payload(result) for result in results]}


@app.post("/pdf/download", dependencies=[Depends(require_session)])
def pdf_download(req: PDFGenerateRequest):
    try:
        result = pdf_service.generate(req.form_data, pdf_type=req.pdf_type, persist=req.persist)
    except ContractPDFError as exc:
        raise _pdf_error(exc) from exc
    headers = {"Content-Disposition": f'attachment; filename="{result.filename}"'}
    return Response(content=result.pdf_bytes, media_type="application/pdf", headers=headers)


@app.get("/pdf/{pdf_id}", dependencies=[Depends(require_link_session)])
def pdf_get_pdf(pdf_id: str, inline: bool = False):
    """Download (or, with ``inline``, open for printing) a generated PDF by id."""
    record = pdf_service.get_pdf(pdf_id)
    if record is None:
        raise HTTPException(status_code=404, detail="PDF not found")
    disposition = "inline" if inline else "attachment"
    headers = {"Content-Disposition": f'{disposition}; filename="{record.filename}"'}
    return Response(content=record.pdf_bytes, media_type="application/pdf", headers=headers)


# --- Saved sellers / witnesses -------------------------------------------------


def _store_error(exc: RecordStoreError) -> HTTPException:
    if isinstance(exc, RecordNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    logger.error("Record store failure: %s", exc)
    return HTTPException(status_code=503, detail=str(exc))


@app.get("/sellers", dependencies=[Depends(require_session)])
def list_sellers():
    try:
        sellers = record_store.list_sellers()
    except RecordStoreError as exc:
        raise _store_error(exc) from exc
    return {"sellers": [s.model_dump() for s in sellers]}


@app.post("/sellers", dependencies=[Depends(require_session)])
def save_seller(seller: Seller):
    try:
        seller_id = record_store.save_seller(seller)
    except RecordStoreError as exc:
        raise _store_error(exc) from exc
    return {"ok": True, "id": seller_id}


@app.get("/witnesses", dependencies=[Depends(require_session)])
def list_witnesses():
    try:
        witnesses = record_store.list_witnesses()
    except RecordStoreError as exc:
        raise _store_error(exc) from exc
    return {"witnesses": [w.model_dump() for w in witnesses]}


@app.post("/witnesses", dependencies=[Depends(require_session)])
def save_witness(witness: Witness):
    try:
        witness_id = record_store.save_witness(witness)
    except RecordStoreError as exc:
        raise _store_error(exc) from exc
    return {"ok": True, "id": witness_id}


@app.delete("/persons/{collection}/{record_id}", dependencies=[Depends(require_session)])
def delete_person(collection: PersonCollection, record_id: str):
    try:
        record_store.delete_person(collection, record_id)
    except RecordStoreError as exc:
        raise _store_error(exc) from exc
    return {"ok": True}


# --- Saved jobs ----------------------------------------------------------------


class SaveJobRequest(BaseModel):
    form_data: ContractForm


@app.get("/jobs", dependencies=[Depends(require_session)])
def list_jobs():
    try:
        jobs = record_store.list_jobs()
    except RecordStoreError as exc:
        raise _store_error(exc) from exc
    return {"jobs": [job.model_dump() for job in jobs]}


@app.post("/jobs", dependencies=[Depends(require_session)])
def save_job(req: SaveJobRequest):
    try:
        job_id = record_store.save_job(req.form_data)
    except RecordStoreError as exc:
        raise _store_error(exc) from exc
    return {"ok": True, "job_id": job_id}


@app.get("/jobs/{job_id}", dependencies=[Depends(require_session)])
def get_job(job_id: str):
    try:
        job = record_store.get_job(job_id)
    except RecordStoreError as exc:
        raise _store_error(exc) from exc
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found or expired")
    return {"job": job.model_dump()}


@app.delete("/jobs/{job_id}", dependencies=[Depends(require_session)])
def delete_job(job_id: str):
    try:
        record_store.delete_job(job_id)
    except RecordStoreError as exc:
        raise _store_error(exc) from exc
    return {"ok": True}
