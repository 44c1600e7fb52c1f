from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

# app.py
import base64
import os
import re

import pandas as pd
import requests
import streamlit as st
from pydantic import ValidationError

from contract_pdf.models import ContractForm, Seller, Witness

st.set_page_config(page_title="Adásvételi PDF kitöltő", layout="wide")

BACKEND = os.getenv("BACKEND_URL", "http://127.0.0.1:8000")
# URL the browser uses for print links (differs from BACKEND behind a proxy)
PUBLIC_BACKEND = os.getenv("BACKEND_PUBLIC_URL", BACKEND)

UPPERCASE_FIELDS = {"rendszam", "alvazszam", "motorszam", "torzskonyv_szam", "forgalmi_szam", "gyartmany_tipus"}
PAYMENT_METHODS = ["készpénz", "átutalás", "egyéb"]

VEHICLE_FIELDS = [
    ("rendszam", "Rendszám:"),
    ("alvazszam", "Alvázszám:"),
    ("motorszam", "Motorszám:"),
    ("km_allas", "Km állás:"),
    ("torzskonyv_szam", "Törzskönyv szám:"),
    ("forgalmi_szam", "Forgalmi szám:"),
    ("gyartmany_tipus", "Gyártmány/típus:"),
    ("km_idopont", "Km állásfelvétel időpontja:"),
]
SELLER_FIELDS = [
    ("ceg_neve", "Név / Cégnév:"),
    ("ceg_kepviselo", "Képviselő neve:"),
    ("cegjegyzekszam", "Cégjegyzékszám / Szem. ig. sz.:"),
    ("szekhely", "Székhely / Lakcím:"),
]
BUYER_FIELDS = [
    ("vevo_nev", "Név:"),
    ("vevo_szul_hely_ido", "Születési hely, idő:"),
    ("vevo_anyja_neve", "Anyja neve:"),
    ("vevo_okmany_szam", "Okmány száma:"),
    ("vevo_lakcim", "Lakcím:"),
]
DATE_GROUPS = [
    ("Átadás", ["atadas_ev", "atadas_ho", "atadas_nap"]),
    ("Hatályba lépés", ["hataly_ev", "hataly_ho", "hataly_nap"]),
    ("Birtokba adás", ["birtok_ev", "birtok_ho", "birtok_nap", "birtok_ora", "birtok_perc"]),
    ("Szerződés kelte", ["szerzodes_ev", "szerzodes_ho", "szerrzodes_nap"]),
]
DATE_LABELS = {"ev": "Év", "ho": "Hó", "nap": "Nap", "ora": "Óra", "perc": "Perc"}

ALL_FIELDS = (
    [k for k, _ in VEHICLE_FIELDS]
    + [k for k, _ in SELLER_FIELDS]
    + [k for k, _ in BUYER_FIELDS]
    + [k for _, keys in DATE_GROUPS for k in keys]
    + [f"tanu{n}_{s}" for n in (1, 2) for s in ("nev", "lakcim", "szig")]
    + [
        "meghatalmazott_adatok",
        "kell_tovabbi_info",
        "vetelar_szam",
        "vetelar_betukkel",
        "fizetesi_mod",
        "egyeb_fizetesi_mod",
        "fizetesi_datum",
    ]
)


# ------------- Backend helpers -------------

def api(method: str, path: str, **kwargs) -> requests.Response:
    headers = kwargs.pop("headers", {})
    timeout = kwargs.pop("timeout", 60)
    token = st.session_state.get("session_token")
    if token:
        headers["X-Session-Token"] = token
    r = requests.request(method, f"{BACKEND}{path}", headers=headers, timeout=timeout, **kwargs)
    if r.status_code == 401 and path != "/login":
        st.session_state.pop("session_token", None)
    return r


def error_detail(r: requests.Response) -> str:
    try:
        return str(r.json().get("detail", r.text))
    except ValueError:
        return r.text


def form_values() -> dict:
    return {k: st.session_state.get(f"f_{k}", "") for k in ALL_FIELDS}


def set_form_values(values: dict):
    for k in ALL_FIELDS:
        if k in values and values[k] is not None:
            st.session_state[f"f_{k}"] = values[k]


def uppercase_field(key: str):
    st.session_state[f"f_{key}"] = st.session_state.get(f"f_{key}", "").upper()


def text_field(container, key: str, label: str):
    on_change = (lambda k=key: uppercase_field(k)) if key in UPPERCASE_FIELDS else None
    container.text_input(label, key=f"f_{key}", on_change=on_change)


@st.cache_data(ttl=30, show_spinner=False)
def load_saved(kind: str, token: str) -> list:
    r = requests.get(f"{BACKEND}/{kind}", headers={"X-Session-Token": token}, timeout=30)
    if not r.ok:
        raise RuntimeError(error_detail(r))
    return r.json().get(kind, [])


def refresh_saved():
    load_saved.clear()


def update_price_words():
    raw = st.session_state.get("f_vetelar_szam", "")
    digits = re.sub(r"[\s.]", "", raw)
    if not digits.isdigit() or int(digits) <= 0:
        st.session_state["f_vetelar_betukkel"] = ""
        if raw:
            st.session_state["flash_error"] = "A vételár csak pozitív egész szám lehet."
        return
    r = api("POST", "/number-to-words", json={"number": digits}, timeout=30)
    if r.ok:
        st.session_state["f_vetelar_betukkel"] = r.json().get("words", "")
    else:
        st.session_state["flash_error"] = f"A vételár betűvel való átírása sikertelen: {error_detail(r)}"


def validate_km():
    km = st.session_state.get("f_km_allas", "")
    if km and not re.fullmatch(r"\d+", km.replace(" ", "")):
        st.session_state["flash_error"] = "A km állás csak szám lehet."


def offer_download(label: str, payload: dict, key: str):
    left, right = st.columns([3, 1])
    left.download_button(
        label,
        data=base64.b64decode(payload["pdf_base64"]),
        file_name=payload["filename"],
        mime="application/pdf",
        key=key,
    )
    pdf_id = payload.get("metadata", {}).get("pdf_id")
    if pdf_id:
        token = st.session_state.get("session_token", "")
        right.link_button("Megnyitás / nyomtatás", f"{PUBLIC_BACKEND}/pdf/{pdf_id}?inline=true&session_token={token}")


def generate(pdf_type: str):
    with st.spinner("PDF generálása..."):
        r = api("POST", "/pdf/generate", json={"form_data": form_values(), "pdf_type": pdf_type}, timeout=120)
    if r.ok:
        st.session_state["generated"] = [r.json()]
    else:
        st.error(f"Hiba a PDF feldolgozása közben: {error_detail(r)}")


def generate_separate():
    with st.spinner("PDF-ek generálása..."):
        r = api("POST", "/pdf/generate-separate", json={"form_data": form_values()}, timeout=120)
    if r.ok:
        st.session_state["generated"] = r.json().get("documents", [])
    else:
        st.error(f"Hiba a PDF feldolgozása közben: {error_detail(r)}")


# ------------- Login -------------

if "session_token" not in st.session_state:
    st.title("Bejelentkezés")
    with st.form("login"):
        password = st.text_input("Jelszó", type="password")
        submitted = st.form_submit_button("Belépés")
    if submitted:
        r = api("POST", "/login", json={"password": password}, timeout=15)
        if r.ok:
            st.session_state["session_token"] = r.json()["session_token"]
            st.rerun()
        else:
            st.error("Hibás jelszó! Kérjük, próbálja újra a helyes jelszóval.")
    st.stop()

token = st.session_state["session_token"]
st.session_state.setdefault("f_fizetesi_mod", PAYMENT_METHODS[0])
if "pending_form" in st.session_state:
    set_form_values(st.session_state.pop("pending_form"))

if st.sidebar.button("Kijelentkezés"):
    api("POST", "/logout", timeout=15)
    st.session_state.clear()
    st.rerun()

if st.session_state.get("flash_error"):
    st.error(st.session_state.pop("flash_error"))
if st.session_state.get("flash_success"):
    st.success(st.session_state.pop("flash_success"))

tab_form, tab_saved, tab_jobs = st.tabs(["Adásvételi szerződés", "Mentett adatok", "Mentett munkák"])

try:
    sellers = load_saved("sellers", token)
    witnesses = load_saved("witnesses", token)
except (RuntimeError, requests.RequestException) as exc:
    sellers, witnesses = [], []
    st.error(f"Hiba a mentett adatok betöltésekor: {exc}")


def current_form() -> ContractForm:
    return ContractForm(**form_values())


def save_person(kind: str, extract, success: str):
    try:
        person = extract(current_form())
    except ValidationError:
        st.session_state["flash_error"] = "Hiányzó adat: a név megadása kötelező."
        return
    r = api("POST", f"/{kind}", json=person.model_dump(exclude={"id", "created_at"}), timeout=30)
    if r.ok:
        st.session_state["flash_success"] = success
        refresh_saved()
    else:
        st.session_state["flash_error"] = f"Hiba mentés közben: {error_detail(r)}"


def load_seller():
    choice = st.session_state.get("seller_choice")
    seller = next((s for s in sellers if s["id"] == choice), None)
    if seller:
        set_form_values(current_form().with_seller(Seller(**seller)).model_dump())


def load_witness(slot: int):
    choice = st.session_state.get(f"witness{slot}_choice")
    witness = next((w for w in witnesses if w["id"] == choice), None)
    if witness:
        set_form_values(current_form().with_witness(slot, Witness(**witness)).model_dump())


# ------------- Form -------------

with tab_form:
    st.subheader("Jármű adatok")
    cols = st.columns(3)
    for i, (key, label) in enumerate(VEHICLE_FIELDS):
        if key == "km_allas":
            cols[i % 3].text_input(label, key="f_km_allas", on_change=validate_km)
        else:
            text_field(cols[i % 3], key, label)

    st.subheader("Eladó adatok")
    seller_ids = [""] + [s["id"] for s in sellers]
    seller_names = {s["id"]: s["name"] for s in sellers}
    st.selectbox(
        "Mentett eladók",
        seller_ids,
        format_func=lambda i: seller_names.get(i, "Válasszon mentett eladót..."),
        key="seller_choice",
        on_change=load_seller,
    )
    cols = st.columns(2)
    for i, (key, label) in enumerate(SELLER_FIELDS):
        text_field(cols[i % 2], key, label)
    if st.button("Eladó mentése"):
        save_person("sellers", ContractForm.seller, "Eladó adatok mentve.")
        st.rerun()

    st.subheader("Vevő adatok")
    cols = st.columns(2)
    for i, (key, label) in enumerate(BUYER_FIELDS):
        text_field(cols[i % 2], key, label)

    st.subheader("Dátumok")
    for title, keys in DATE_GROUPS:
        cols = st.columns(len(keys))
        for col, key in zip(cols, keys):
            col.text_input(f"{title} ({DATE_LABELS[key.rsplit('_', 1)[1]]})", key=f"f_{key}")

    st.subheader("Tanúk")
    witness_ids = [""] + [w["id"] for w in witnesses]
    witness_names = {w["id"]: w["name"] for w in witnesses}
    for slot, col in zip((1, 2), st.columns(2)):
        col.markdown(f"**{slot}. tanú**")
        col.selectbox(
            "Mentett tanúk",
            witness_ids,
            format_func=lambda i: witness_names.get(i, "Válasszon mentett tanút..."),
            key=f"witness{slot}_choice",
            on_change=load_witness,
            args=(slot,),
        )
        text_field(col, f"tanu{slot}_nev", "Név:")
        text_field(col, f"tanu{slot}_lakcim", "Lakcím:")
        text_field(col, f"tanu{slot}_szig", "Szem. ig. szám:")
        if col.button(f"{slot}. tanú mentése", key=f"save_witness{slot}"):
            save_person("witnesses", lambda form, s=slot: form.witness(s), f"{slot}. tanú adatok mentve.")
            st.rerun()

    st.subheader("További adatok")
    text_field(st, "meghatalmazott_adatok", "Meghatalmazott neve, címe:")
    text_field(st, "kell_tovabbi_info", "Kellékszavatossági nyilatkozat további információ:")

    st.subheader("Vételár és fizetés")
    cols = st.columns(2)
    cols[0].text_input("Vételár (Ft):", key="f_vetelar_szam", on_change=update_price_words)
    cols[1].text_input("Vételár betűvel:", key="f_vetelar_betukkel")
    cols = st.columns(3)
    cols[0].selectbox("Fizetési mód:", PAYMENT_METHODS, key="f_fizetesi_mod")
    if st.session_state.get("f_fizetesi_mod") == "egyéb":
        cols[1].text_input("Egyéb fizetési mód:", key="f_egyeb_fizetesi_mod")
    cols[2].text_input("Fizetés dátuma:", key="f_fizetesi_datum")

    st.divider()
    c1, c2, c3, c4, c5, c6 = st.columns(6)
    if c1.button("Összes PDF (egyben)"):
        generate("all")
    if c2.button("Összes PDF (külön)"):
        generate_separate()
    if c3.button("Adásvételi"):
        generate("main")
    if c4.button("Kellékszavatossági"):
        generate("kellekszavatossag")
    if c5.button("Meghatalmazás"):
        generate("meghatalmazas")
    if c6.button("Munka mentése"):
        r = api("POST", "/jobs", json={"form_data": form_values()}, timeout=30)
        if r.ok:
            st.success("A munka elmentve (48 óráig érhető el).")
        else:
            st.error(f"Hiba mentés közben: {error_detail(r)}")

    for i, payload in enumerate(st.session_state.get("generated", [])):
        offer_download(f"Letöltés: {payload['filename']}", payload, key=f"dl_{i}_{payload['filename']}")


# ------------- Saved sellers / witnesses -------------

def delete_person(collection: str, record_id: str):
    r = api("DELETE", f"/persons/{collection}/{record_id}", timeout=30)
    if r.ok:
        st.session_state["flash_success"] = "Sikeres törlés: az adat eltávolítva."
        refresh_saved()
    else:
        st.session_state["flash_error"] = f"Hiba a törlés során: {error_detail(r)}"


with tab_saved:
    for title, collection, items, columns in (
        ("Eladók", "sellers", sellers, ["name", "kepviselo_name", "document_number", "address", "created_at"]),
        ("Tanúk", "witnesses", witnesses, ["name", "address", "id_number", "created_at"]),
    ):
        st.subheader(title)
        if not items:
            st.info("Nincs mentett adat.")
            continue
        st.dataframe(pd.DataFrame(items)[columns], use_container_width=True, hide_index=True)
        names = {item["id"]: item["name"] for item in items}
        chosen = st.selectbox("Törlendő", list(names), format_func=names.get, key=f"del_{collection}")
        if st.button("Törlés", key=f"del_btn_{collection}"):
            delete_person(collection, chosen)
            st.rerun()


# ------------- Saved jobs -------------

with tab_jobs:
    r = api("GET", "/jobs", timeout=30)
    jobs = r.json().get("jobs", []) if r.ok else []
    if not r.ok:
        st.error(f"Hiba a mentett munkák betöltésekor: {error_detail(r)}")
    if not jobs:
        st.info("Nincs mentett munka. A mentett munkák 48 óra után törlődnek.")
    for job in jobs:
        cols = st.columns([3, 2, 1, 1, 1])
        cols[0].markdown(f"**{job['rendszam']}**")
        cols[1].caption(job["created_at"])
        if cols[2].button("Betöltés", key=f"load_{job['id']}"):
            st.session_state["pending_form"] = job["form_data"]
            st.session_state["flash_success"] = "Mentett munka betöltve az űrlapba."
            st.rerun()
        if cols[3].button("PDF", key=f"pdf_{job['id']}"):
            rr = api("POST", "/pdf/generate", json={"form_data": job["form_data"], "pdf_type": "all"}, timeout=120)
            if rr.ok:
                offer_download("Letöltés", rr.json(), key=f"dl_job_{job['id']}")
            else:
                st.error(f"Hiba a PDF feldolgozása közben: {error_detail(rr)}")
        if cols[4].button("Törlés", key=f"del_job_{job['id']}"):
            rr = api("DELETE", f"/jobs/{job['id']}", timeout=30)
            if rr.ok:
                st.session_state["flash_success"] = "Sikeres törlés: a mentett munka eltávolítva."
            else:
                st.session_state["flash_error"] = f"Hiba a törlés során: {error_detail(rr)}"
            st.rerun()
