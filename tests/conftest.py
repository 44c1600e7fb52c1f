import os
import tempfile

# Keep the API module's default stores out of the source tree.
_TMP = tempfile.mkdtemp(prefix="contract-pdf-tests-")
os.environ["RECORD_STORE"] = "local"
os.environ["RECORD_STORE_DIR"] = os.path.join(_TMP, "records")
os.environ["CONTRACT_PDF_BASE_DIR"] = _TMP
os.environ.pop("CONTRACT_PDF_S3_BUCKET", None)
os.environ.pop("CONTRACT_ASSETS_URL", None)
os.environ.pop("OPENAI_API_KEY", None)

import datetime as dt  # noqa: E402
from pathlib import Path  # noqa: E402

import fitz  # noqa: E402
import pytest  # noqa: E402

from contract_pdf.service import AssetLoader, ContractPDFService  # noqa: E402
from contract_pdf.templates import default_templates  # noqa: E402

FIXED_TODAY = dt.date(2024, 5, 6)


def build_template(field_names, extra_text=None, checkboxes=()) -> bytes:
    """An A4 page with one text widget per field name, stacked vertically, then any checkboxes."""
    doc = fitz.open()
    page = doc.new_page()
    if extra_text:
        page.insert_text(fitz.Point(72, 40), extra_text, fontsize=10)
    for i, name in enumerate(field_names):
        widget = fitz.Widget()
        widget.field_type = fitz.PDF_WIDGET_TYPE_TEXT
        widget.field_name = name
        widget.field_value = ""
        widget.rect = fitz.Rect(72, 60 + i * 18, 500, 76 + i * 18)
        page.add_widget(widget)
    for i, name in enumerate(checkboxes):
        widget = fitz.Widget()
        widget.field_type = fitz.PDF_WIDGET_TYPE_CHECKBOX
        widget.field_name = name
        widget.rect = fitz.Rect(520, 60 + i * 18, 534, 74 + i * 18)
        page.add_widget(widget)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def assets_dir(tmp_path) -> Path:
    """Asset directory holding the three contract templates (no font)."""
    target = tmp_path / "assets"
    target.mkdir()
    for template in default_templates().values():
        (target / template.template_file).write_bytes(
            build_template(template.field_mapping, extra_text=template.name)
        )
    return target


@pytest.fixture
def pdf_service(tmp_path, assets_dir) -> ContractPDFService:
    return ContractPDFService(
        base_dir=tmp_path / "service",
        assets=AssetLoader(assets_dir=assets_dir, cache_ttl=0),
        today=lambda: FIXED_TODAY,
    )


@pytest.fixture
def contract_form_data() -> dict:
    return {
        "rendszam": "abc-123",
        "alvazszam": "wvwzzz1jz3w386752",
        "gyartmany_tipus": "Volkswagen Golf",
        "ceg_neve": "Pomaz Auto Kft",
        "szekhely": "Pomaz, Fo utca 1",
        "vevo_nev": "Kiss Janos",
        "vevo_lakcim": "Budapest, Petofi utca 2",
        "tanu1_nev": "Nagy Peter",
        "vetelar_szam": "1500000",
        "vetelar_betukkel": "Egymillio-otszazezer",
        "fizetesi_mod": "egyéb",
        "egyeb_fizetesi_mod": "Bankkartya",
        "kell_tovabbi_info": "Hibak nelkul",
    }


FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/TTF/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/usr/share/fonts/liberation-sans/LiberationSans-Regular.ttf",
    "/Library/Fonts/Arial.ttf",
    "C:/Windows/Fonts/arial.ttf",
)


def _covers_hungarian(font_bytes: bytes) -> bool:
    font = fitz.Font(fontbuffer=font_bytes)
    return all(font.has_glyph(ord(ch)) for ch in "őŐűŰ")


@pytest.fixture(scope="session")
def hungarian_font() -> bytes:
    """A font buffer with ő and ű glyphs: a system TrueType font, else PyMuPDF's built-in Nimbus Sans."""
    for candidate in FONT_CANDIDATES:
        path = Path(candidate)
        if path.is_file():
            data = path.read_bytes()
            if _covers_hungarian(data):
                return data
    data = fitz.Font("helv").buffer
    if data and _covers_hungarian(data):
        return data
    pytest.skip("no font with Hungarian double-acute letters available")
