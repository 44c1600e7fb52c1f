"""
High-level service that exposes contract PDF generation to the FastAPI layer.

Responsibilities
----------------
* load the PDF templates and the custom font (local directory or HTTP)
* fill one template or all of them and merge the result
* name the output after the plate number, chassis number and today's date
* optionally persist generated PDFs (S3 or a local directory) and keep a
  small in-memory cache for downloads by id
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import re
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError
from cachetools import TTLCache

from .models import ContractForm
from .pdf_utils import PDFFillError, fill_pdf_template, list_template_fields, merge_pdfs
from .templates import PDF_TYPE_ALL, ContractTemplate, TemplateRegistry, build_field_values

logger = logging.getLogger(__name__)

FONT_FILE = "fonts/DejaVuSans.ttf"
FETCH_TIMEOUT = 15


class ContractPDFError(RuntimeError):
    """Domain-specific exception for service errors."""


class AssetUnavailableError(ContractPDFError):
    """A template or the font could not be loaded."""


class PdfStorageError(ContractPDFError):
    """A generated PDF could not be persisted."""


@dataclass
class GeneratedPdf:
    pdf_bytes: bytes
    filename: str
    metadata: Dict = field(default_factory=dict)


def _sanitize(value: str, default: str) -> str:
    return re.sub(r"[^a-zA-Z0-9-]", "_", value) if value else default


def filename_base(form: ContractForm, today: Optional[dt.date] = None) -> str:
    today = today or dt.date.today()
    rendszam = _sanitize(form.rendszam, "rendszam")
    alvazszam = _sanitize(form.alvazszam, "alvazszam")
    return f"{rendszam}-{alvazszam}-{today.isoformat()}"


def output_filename(form: ContractForm, pdf_type: str, today: Optional[dt.date] = None) -> str:
    base = filename_base(form, today)
    if pdf_type == PDF_TYPE_ALL:
        return f"{base}.pdf"
    return f"{base}-{pdf_type}.pdf"


class AssetLoader:
    """Reads templates and the font from ``assets_dir`` or ``assets_url``."""

    def __init__(
        self,
        assets_dir: Optional[Path] = None,
        assets_url: Optional[str] = None,
        cache_ttl: int = 300,
        session: Optional[requests.Session] = None,
    ):
        self.assets_dir = Path(assets_dir) if assets_dir else None
        self.assets_url = assets_url.rstrip("/") if assets_url else None
        self.session = session or requests.Session()
        self._cache: Optional[TTLCache] = TTLCache(maxsize=16, ttl=cache_ttl) if cache_ttl > 0 else None
        self._lock = threading.Lock()

    def load(self, relative_path: str) -> bytes:
        if self._cache is not None:
            with self._lock:
                cached = self._cache.get(relative_path)
            if cached is not None:
                return cached

        if self.assets_dir is not None:
            data = self._read_local(relative_path)
        elif self.assets_url is not None:
            data = self._fetch(relative_path)
        else:
            raise AssetUnavailableError("No asset source configured (CONTRACT_ASSETS_DIR or CONTRACT_ASSETS_URL).")

        if not data:
            raise AssetUnavailableError(f"Asset {relative_path} is empty.")
        if self._cache is not None:
            with self._lock:
                self._cache[relative_path] = data
        return data

    def exists(self, relative_path: str) -> bool:
        if self.assets_dir is not None:
            return (self.assets_dir / relative_path).is_file()
        return self.assets_url is not None

    def _read_local(self, relative_path: str) -> bytes:
        path = self.assets_dir / relative_path
        try:
            with path.open("rb") as f:
                return f.read()
        except OSError as exc:
            raise AssetUnavailableError(f"Failed to read {path}: {exc}") from exc

    def _fetch(self, relative_path: str) -> bytes:
        url = f"{self.assets_url}/{relative_path}"
        try:
            response = self.session.get(url, timeout=FETCH_TIMEOUT, headers={"Cache-Control": "no-store"})
        except requests.RequestException as exc:
            raise AssetUnavailableError(f"Failed to fetch {url}: {exc}") from exc
        if not response.ok:
            raise AssetUnavailableError(f"Failed to fetch {url}: {response.status_code} {response.reason}")
        return response.content


class ContractPDFService:
    def __init__(
        self,
        base_dir: Optional[Path] = None,
        assets: Optional[AssetLoader] = None,
        registry: Optional[TemplateRegistry] = None,
        s3_client=None,
        today: Callable[[], dt.date] = dt.date.today,
    ):
        self.base_dir = Path(
            base_dir
            or os.getenv("CONTRACT_PDF_BASE_DIR")
            or Path(__file__).resolve().parent
        )
        self.generated_dir = self.base_dir / "generated"
        self.field_mappings_dir = self.base_dir / "field_mappings"

        if assets is None:
            assets_dir = os.getenv("CONTRACT_ASSETS_DIR")
            assets_url = os.getenv("CONTRACT_ASSETS_URL")
            if not assets_dir and not assets_url:
                assets_dir = str(self.base_dir / "assets")
            assets = AssetLoader(
                assets_dir=Path(assets_dir) if assets_dir else None,
                assets_url=assets_url,
                cache_ttl=int(os.getenv("ASSET_CACHE_TTL", "300")),
            )
        self.assets = assets
        self.registry = registry or TemplateRegistry(self.field_mappings_dir)
        self.today = today

        self._pdf_cache: TTLCache = TTLCache(maxsize=64, ttl=int(os.getenv("PDF_CACHE_TTL", "3600")))
        self._cache_lock = threading.Lock()

        self.s3_bucket = os.getenv("CONTRACT_PDF_S3_BUCKET")
        self.s3_prefix = os.getenv("CONTRACT_PDF_S3_PREFIX", "contract-pdf/")
        self.s3 = s3_client
        if self.s3_bucket and self.s3 is None:
            self.s3 = boto3.client("s3")

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------
    def list_templates(self) -> List[Dict]:
        return self.registry.describe()

    def template_fields(self, template_name: str) -> Dict[str, str]:
        template = self._get_template(template_name)
        try:
            return list_template_fields(self._load_template(template))
        except PDFFillError as exc:
            raise ContractPDFError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    def generate(self, form: ContractForm, pdf_type: str = PDF_TYPE_ALL, persist: bool = False) -> GeneratedPdf:
        """Fill the requested template(s); several templates are merged into one PDF."""
        templates = self._resolve(pdf_type)
        today = self.today()
        font_bytes = self._load_font()

        filled = [self._fill(template, form, font_bytes, today) for template in templates]
        try:
            pdf_bytes = filled[0] if len(filled) == 1 else merge_pdfs(filled)
        except PDFFillError as exc:
            raise ContractPDFError(str(exc)) from exc

        result = GeneratedPdf(
            pdf_bytes=pdf_bytes,
            filename=output_filename(form, pdf_type, today),
            metadata={"pdf_type": pdf_type, "templates": [t.name for t in templates]},
        )
        return self._register(result, persist)

    def generate_separate(self, form: ContractForm, persist: bool = False) -> List[GeneratedPdf]:
        """One PDF per template, named ``<base>-<suffix>.pdf``."""
        today = self.today()
        font_bytes = self._load_font()
        base = filename_base(form, today)

        results = []
        for template in self.registry.resolve(PDF_TYPE_ALL):
            result = GeneratedPdf(
                pdf_bytes=self._fill(template, form, font_bytes, today),
                filename=f"{base}-{template.separate_suffix}.pdf",
                metadata={"pdf_type": template.name, "templates": [template.name]},
            )
            results.append(self._register(result, persist))
        return results

    def get_pdf(self, pdf_id: str) -> Optional[GeneratedPdf]:
        with self._cache_lock:
            entry = self._pdf_cache.get(pdf_id)
        if entry is not None:
            return entry

        file_path = self.generated_dir / f"{Path(pdf_id).name}.pdf"
        if file_path.exists():
            with file_path.open("rb") as f:
                pdf_bytes = f.read()
            metadata: Dict = {}
            metadata_path = file_path.with_suffix(".json")
            if metadata_path.exists():
                with metadata_path.open("r", encoding="utf-8") as f:
                    metadata = json.load(f)
            entry = GeneratedPdf(pdf_bytes, metadata.get("filename", file_path.name), metadata)
            with self._cache_lock:
                self._pdf_cache[pdf_id] = entry
            return entry
        return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _resolve(self, pdf_type: str) -> List[ContractTemplate]:
        try:
            return self.registry.resolve(pdf_type)
        except KeyError as exc:
            raise ContractPDFError(f"Unknown PDF type '{pdf_type}'") from exc

    def _get_template(self, template_name: str) -> ContractTemplate:
        try:
            return self.registry.get(template_name)
        except KeyError as exc:
            raise ContractPDFError(f"Unknown template '{template_name}'") from exc

    def _load_template(self, template: ContractTemplate) -> bytes:
        return self.assets.load(template.template_file)

    def _load_font(self) -> Optional[bytes]:
        if not self.assets.exists(FONT_FILE):
            logger.warning("Font %s not available; falling back to Helvetica", FONT_FILE)
            return None
        return self.assets.load(FONT_FILE)

    def _fill(
        self,
        template: ContractTemplate,
        form: ContractForm,
        font_bytes: Optional[bytes],
        today: dt.date,
    ) -> bytes:
        values = build_field_values(template, form, today=today)
        template_bytes = self._load_template(template)
        try:
            return fill_pdf_template(template_bytes, values, font_bytes=font_bytes, template_name=template.name)
        except PDFFillError as exc:
            raise ContractPDFError(str(exc)) from exc

    def _register(self, result: GeneratedPdf, persist: bool) -> GeneratedPdf:
        pdf_id = uuid.uuid4().hex
        result.metadata.update(
            {
                "pdf_id": pdf_id,
                "filename": result.filename,
                "generated_at": dt.datetime.now(dt.timezone.utc).isoformat(),
                "size": len(result.pdf_bytes),
            }
        )
        if persist:
            result.metadata.update(self._store_pdf(pdf_id, result.filename, result.pdf_bytes))
        with self._cache_lock:
            self._pdf_cache[pdf_id] = result
        logger.info("Generated %s (%d bytes)", result.filename, len(result.pdf_bytes))
        return result

    def _store_pdf(self, pdf_id: str, filename: str, pdf_bytes: bytes) -> Dict:
        if self.s3_bucket:
            return self._store_pdf_s3(pdf_id, filename, pdf_bytes)

        target = self.generated_dir / f"{pdf_id}.pdf"
        try:
            self.generated_dir.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as f:
                f.write(pdf_bytes)
            with target.with_suffix(".json").open("w", encoding="utf-8") as f:
                json.dump({"filename": filename, "pdf_id": pdf_id}, f, indent=2)
        except OSError as exc:
            raise PdfStorageError(f"Failed to save {filename}: {exc}") from exc
        return {"file_path": str(target)}

    def _store_pdf_s3(self, pdf_id: str, filename: str, pdf_bytes: bytes) -> Dict:
        key = f"{self.s3_prefix}{pdf_id}/{filename}"
        try:
            self.s3.put_object(Bucket=self.s3_bucket, Key=key, Body=pdf_bytes, ContentType="application/pdf")
            url = self.s3.generate_presigned_url(
                "get_object",
                Params={
                    "Bucket": self.s3_bucket,
                    "Key": key,
                    "ResponseContentDisposition": f'attachment; filename="{filename}"',
                },
                ExpiresIn=int(os.getenv("CONTRACT_PDF_URL_TTL", "3600")),
            )
        except (BotoCoreError, ClientError) as exc:
            raise PdfStorageError(f"Failed to upload {filename} to s3://{self.s3_bucket}: {exc}") from exc
        return {"s3_bucket": self.s3_bucket, "s3_key": key, "url": url}
