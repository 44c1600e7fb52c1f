import fitz
import pytest

from contract_pdf.pdf_utils import (
    CUSTOM_FONT_NAME,
    PDFFillError,
    bind_fields,
    fill_pdf_template,
    list_template_fields,
    merge_pdfs,
    page_count,
)

from conftest import build_template


def _page_texts(pdf_bytes):
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return [page.get_text() for page in doc]


def _widget_count(pdf_bytes):
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return sum(len(list(page.widgets())) for page in doc)


def test_list_template_fields():
    fields = list_template_fields(build_template(["rendszam", "vevo_nev"]))

    assert set(fields) == {"rendszam", "vevo_nev"}
    assert fields["rendszam"] == "/Tx"


def test_bind_fields_skips_unknown_fields(caplog):
    template = build_template(["rendszam"])

    bound, skipped = bind_fields(template, {"rendszam": "ABC123", "nincs_ilyen": "x", "ures": ""}, "main")

    assert bound == {"rendszam": "ABC123"}
    assert skipped == ["nincs_ilyen"]
    assert "nincs_ilyen" in caplog.text


def test_fill_draws_values_and_flattens():
    template = build_template(["rendszam", "vevo_nev", "ures_mezo"])

    result = fill_pdf_template(template, {"rendszam": "ABC-123", "vevo_nev": "Kiss Janos"})

    text = _page_texts(result)[0]
    assert "ABC-123" in text
    assert "Kiss Janos" in text
    assert _widget_count(result) == 0


def test_fill_shrinks_long_values_instead_of_failing():
    template = build_template(["kell_tovabbi_info"])
    long_value = "Karosszéria javítva " * 12

    result = fill_pdf_template(template, {"kell_tovabbi_info": long_value})

    assert page_count(result) == 1
    assert _widget_count(result) == 0


def test_fill_with_missing_field_still_succeeds(caplog):
    template = build_template(["rendszam"])

    result = fill_pdf_template(template, {"rendszam": "XYZ-999", "kell_datum": "2024. május 6."}, template_name="main")

    assert "XYZ-999" in _page_texts(result)[0]
    assert "kell_datum" in caplog.text


def test_fill_rejects_empty_template():
    with pytest.raises(PDFFillError):
        fill_pdf_template(b"", {"rendszam": "ABC123"})


def test_fill_rejects_empty_font():
    with pytest.raises(PDFFillError):
        fill_pdf_template(build_template(["rendszam"]), {"rendszam": "ABC123"}, font_bytes=b"")


def test_fill_rejects_garbage_template():
    with pytest.raises(PDFFillError):
        fill_pdf_template(b"definitely not a pdf", {})


def test_merge_keeps_document_order():
    first = fill_pdf_template(build_template(["a"]), {"a": "ELSO"})
    second = fill_pdf_template(build_template(["b"]), {"b": "MASODIK"})
    third = fill_pdf_template(build_template(["c"]), {"c": "HARMADIK"})

    merged = merge_pdfs([first, second, third])

    texts = _page_texts(merged)
    assert len(texts) == 3
    assert "ELSO" in texts[0]
    assert "MASODIK" in texts[1]
    assert "HARMADIK" in texts[2]


def test_merge_rejects_empty_input():
    with pytest.raises(PDFFillError):
        merge_pdfs([])


def test_fill_with_custom_font_renders_double_acute_letters(hungarian_font):
    template = build_template(["vevo_nev"])

    result = fill_pdf_template(template, {"vevo_nev": "Kőrösi Űrhajós"}, font_bytes=hungarian_font)

    assert "Kőrösi Űrhajós" in _page_texts(result)[0]
    with fitz.open(stream=result, filetype="pdf") as doc:
        font_names = [f"{font[3]} {font[4]}" for font in doc[0].get_fonts()]
    assert any(CUSTOM_FONT_NAME in name for name in font_names)


def test_custom_font_is_subset_in_merged_output(hungarian_font):
    if hungarian_font[:4] not in (b"\x00\x01\x00\x00", b"true"):
        pytest.skip("subset size check needs a TrueType font")
    filled = [
        fill_pdf_template(build_template([name]), {name: "Őz Űr"}, font_bytes=hungarian_font)
        for name in ("a", "b", "c")
    ]

    merged = merge_pdfs(filled)

    assert len(merged) < len(hungarian_font)


def test_non_text_widgets_become_read_only():
    template = build_template(["rendszam"], checkboxes=["kell_elfogadva"])

    result = fill_pdf_template(template, {"rendszam": "ABC-123"})

    with fitz.open(stream=result, filetype="pdf") as doc:
        widgets = list(doc[0].widgets())
        assert [w.field_name for w in widgets] == ["kell_elfogadva"]
        assert widgets[0].field_type == fitz.PDF_WIDGET_TYPE_CHECKBOX
        assert widgets[0].field_flags & fitz.PDF_FIELD_IS_READ_ONLY
    assert "ABC-123" in _page_texts(result)[0]
