"""
Data models for the vehicle sale contract form and the reusable records.

Field names follow the PDF templates (Hungarian), so a form value can be
copied onto a template field without renaming.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

OTHER_PAYMENT_METHOD = "egyéb"
DEFAULT_PAYMENT_METHOD = "készpénz"
UNKNOWN_JOB_NAME = "Ismeretlen Munka"

UPPERCASE_FIELDS = (
    "rendszam",
    "alvazszam",
    "motorszam",
    "torzskonyv_szam",
    "forgalmi_szam",
    "gyartmany_tipus",
)

PersonCollection = Literal["sellers", "witnesses"]


class ContractForm(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Vehicle
    rendszam: str = ""
    alvazszam: str = ""
    motorszam: str = ""
    km_allas: str = ""
    torzskonyv_szam: str = ""
    forgalmi_szam: str = ""
    gyartmany_tipus: str = ""
    km_idopont: str = ""

    # Seller
    ceg_neve: str = ""
    ceg_kepviselo: str = ""
    cegjegyzekszam: str = ""
    szekhely: str = ""

    # Buyer
    vevo_nev: str = ""
    vevo_szul_hely_ido: str = ""
    vevo_anyja_neve: str = ""
    vevo_okmany_szam: str = ""
    vevo_lakcim: str = ""

    # Additional
    meghatalmazott_adatok: str = ""
    kell_tovabbi_info: str = ""

    # Dates
    atadas_ev: str = ""
    atadas_ho: str = ""
    atadas_nap: str = ""
    hataly_ev: str = ""
    hataly_ho: str = ""
    hataly_nap: str = ""
    birtok_ev: str = ""
    birtok_ho: str = ""
    birtok_nap: str = ""
    birtok_ora: str = ""
    birtok_perc: str = ""
    szerzodes_ev: str = ""
    szerzodes_ho: str = ""
    szerrzodes_nap: str = ""  # misspelt in the templates too

    # Witnesses
    tanu1_nev: str = ""
    tanu1_lakcim: str = ""
    tanu1_szig: str = ""
    tanu2_nev: str = ""
    tanu2_lakcim: str = ""
    tanu2_szig: str = ""

    # Price
    vetelar_szam: str = ""
    vetelar_betukkel: str = ""
    fizetesi_mod: str = DEFAULT_PAYMENT_METHOD
    egyeb_fizetesi_mod: str = ""
    fizetesi_datum: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator(*UPPERCASE_FIELDS)
    @classmethod
    def _uppercase_identifiers(cls, value: str) -> str:
        return value.strip().upper()

    def resolved_payment_method(self) -> str:
        if self.fizetesi_mod == OTHER_PAYMENT_METHOD:
            return self.egyeb_fizetesi_mod
        return self.fizetesi_mod

    def job_display_name(self) -> str:
        return self.rendszam or self.alvazszam or UNKNOWN_JOB_NAME

    # ------------------------------------------------------------------
    # Saved person <-> form helpers
    # ------------------------------------------------------------------
    def seller(self) -> "Seller":
        return Seller(
            name=self.ceg_neve,
            kepviselo_name=self.ceg_kepviselo,
            document_number=self.cegjegyzekszam,
            address=self.szekhely,
        )

    def witness(self, slot: int) -> "Witness":
        _check_slot(slot)
        return Witness(
            name=getattr(self, f"tanu{slot}_nev"),
            address=getattr(self, f"tanu{slot}_lakcim"),
            id_number=getattr(self, f"tanu{slot}_szig"),
        )

    def with_seller(self, seller: "Seller") -> "ContractForm":
        return self.model_copy(
            update={
                "ceg_neve": seller.name,
                "ceg_kepviselo": seller.kepviselo_name or "",
                "cegjegyzekszam": seller.document_number or "",
                "szekhely": seller.address or "",
            }
        )

    def with_witness(self, slot: int, witness: "Witness") -> "ContractForm":
        _check_slot(slot)
        return self.model_copy(
            update={
                f"tanu{slot}_nev": witness.name,
                f"tanu{slot}_lakcim": witness.address or "",
                f"tanu{slot}_szig": witness.id_number or "",
            }
        )


def _check_slot(slot: int) -> None:
    if slot not in (1, 2):
        raise ValueError(f"Witness slot must be 1 or 2, got {slot}")


class Seller(BaseModel):
    id: Optional[str] = None
    name: str
    kepviselo_name: str = ""
    document_number: str = ""
    address: str = ""
    created_at: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_required(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("A név megadása kötelező.")
        return value


class Witness(BaseModel):
    id: Optional[str] = None
    name: str
    address: str = ""
    id_number: str = ""
    created_at: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_required(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("A név megadása kötelező.")
        return value


class SavedJob(BaseModel):
    id: str
    form_data: ContractForm = Field(default_factory=ContractForm)
    created_at: str
    rendszam: str = ""
