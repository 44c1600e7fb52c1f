"""
Field maps for the three contract templates.

Each map is ``PDF field name -> data key``. Data keys are ContractForm field
names plus a few derived keys computed in :func:`build_data`.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .models import ContractForm

logger = logging.getLogger(__name__)

HUNGARIAN_MONTHS = [
    "január",
    "február",
    "március",
    "április",
    "május",
    "június",
    "július",
    "augusztus",
    "szeptember",
    "október",
    "november",
    "december",
]

# Derived data keys
PAYMENT_METHOD_KEY = "_fizetesi_mod"
TODAY_TEXT_KEY = "_mai_datum"

PDF_TYPE_ALL = "all"


@dataclass
class ContractTemplate:
    name: str
    template_file: str
    description: str
    separate_suffix: str
    field_mapping: Dict[str, str] = field(default_factory=dict)


MAIN_FIELDS: Dict[str, str] = {
    "rendszam": "rendszam",
    "gyartmany_tipus": "gyartmany_tipus",
    "alvazszam": "alvazszam",
    "motorszam": "motorszam",
    "km_allas": "km_allas",
    "torzskonyv_szam": "torzskonyv_szam",
    "forgalmi_szam": "forgalmi_szam",
    "km_idopont": "km_idopont",
    "ceg_neve": "ceg_neve",
    "ceg_kepviselo": "ceg_kepviselo",
    "cegjegyzekszam": "cegjegyzekszam",
    "ceg_szekhely": "szekhely",
    "vevo_nev": "vevo_nev",
    "vevo_szul_hely_ido": "vevo_szul_hely_ido",
    "vevo_anyja_neve": "vevo_anyja_neve",
    "vevo_okmany_szam": "vevo_okmany_szam",
    "vevo_lakcim": "vevo_lakcim",
    "atadas_ev": "atadas_ev",
    "atadas_ho": "atadas_ho",
    "atadas_nap": "atadas_nap",
    "hataly_ev": "hataly_ev",
    "hataly_ho": "hataly_ho",
    "hataly_nap": "hataly_nap",
    "birtok_ev": "birtok_ev",
    "birtok_ho": "birtok_ho",
    "birtok_nap": "birtok_nap",
    "birtok_ora": "birtok_ora",
    "birtok_perc": "birtok_perc",
    "szerzodes_ev": "szerzodes_ev",
    "szerzodes_ho": "szerzodes_ho",
    "szerrzodes_nap": "szerrzodes_nap",
    "tanu1_nev": "tanu1_nev",
    "tanu1_lakcim": "tanu1_lakcim",
    "tanu1_szig": "tanu1_szig",
    "tanu2_nev": "tanu2_nev",
    "tanu2_lakcim": "tanu2_lakcim",
    "tanu2_szig": "tanu2_szig",
    "vetelar_szam": "vetelar_szam",
    "vetelar_betukkel": "vetelar_betukkel",
    "fizetesi_mod": PAYMENT_METHOD_KEY,
    "fizetesi_datum": "fizetesi_datum",
}

# The warranty declaration identifies the vehicle by chassis number.
WARRANTY_FIELDS: Dict[str, str] = {
    "kell_rendszam": "alvazszam",
    "kell_tovabbi_info": "kell_tovabbi_info",
    "kell_datum": TODAY_TEXT_KEY,
}

AUTHORIZATION_FIELDS: Dict[str, str] = {
    "meghatalmazo_nev_megh": "vevo_nev",
    "meghatalmazo_lakcim_megh": "vevo_lakcim",
    "meghatalmazo_szig_szam_megh": "vevo_okmany_szam",
    "meghatalmazo_anyja_neve_megh": "vevo_anyja_neve",
    "meghatalmazo_szul_hely_ido_megh": "vevo_szul_hely_ido",
    "meghatalmazott_nev_cim_megh": "meghatalmazott_adatok",
    "meghatalmazas_rendszam_megh": "rendszam",
    "meghatalmazas_gyartmany_megh": "gyartmany_tipus",
    "meghatalmazas_alvazszam_megh": "alvazszam",
    "meghatalmazas_datum_ev": "szerzodes_ev",
    "meghatalmazas_datum_ho": "szerzodes_ho",
    "meghatalmazas_datum_nap": "szerrzodes_nap",
    "tanu1_nev_megh": "tanu1_nev",
    "tanu1_lakcim_megh": "tanu1_lakcim",
    "tanu2_nev_megh": "tanu2_nev",
    "tanu2_lakcim_megh": "tanu2_lakcim",
    "tanu1_szemelyi_megh": "tanu1_szig",
    "tanu2_szemelyi_megh": "tanu2_szig",
}


def default_templates() -> Dict[str, ContractTemplate]:
    templates = [
        ContractTemplate(
            name="main",
            template_file="sablon.pdf",
            description="Gépjármű adásvételi szerződés",
            separate_suffix="adasveteli",
            field_mapping=dict(MAIN_FIELDS),
        ),
        ContractTemplate(
            name="kellekszavatossag",
            template_file="kellekszavatossagi_nyilatkozat.pdf",
            description="Kellékszavatossági nyilatkozat",
            separate_suffix="kellekszavatossagi",
            field_mapping=dict(WARRANTY_FIELDS),
        ),
        ContractTemplate(
            name="meghatalmazas",
            template_file="meghatalmazas_okmanyiroda.pdf",
            description="Meghatalmazás okmányirodai ügyintézéshez",
            separate_suffix="meghatalmazas",
            field_mapping=dict(AUTHORIZATION_FIELDS),
        ),
    ]
    return {t.name: t for t in templates}


class TemplateRegistry:
    """Built-in templates, optionally overridden by ``<name>.json`` mapping files."""

    def __init__(self, field_mappings_dir: Optional[Path] = None):
        self.field_mappings_dir = Path(field_mappings_dir) if field_mappings_dir else None
        self.templates: Dict[str, ContractTemplate] = {}
        self.load()

    def load(self) -> None:
        self.templates = default_templates()
        if not self.field_mappings_dir or not self.field_mappings_dir.exists():
            return
        for mapping_file in sorted(self.field_mappings_dir.glob("*.json")):
            name = mapping_file.stem
            template = self.templates.get(name)
            if template is None:
                logger.warning("Ignoring mapping override for unknown template %s", name)
                continue
            try:
                with mapping_file.open("r", encoding="utf-8") as f:
                    config = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                logger.error("Malformed mapping file %s: %s", mapping_file, exc)
                continue
            mapping = config.get("field_mapping")
            if isinstance(mapping, dict) and mapping:
                template.field_mapping = {str(k): str(v) for k, v in mapping.items()}
            if config.get("template_file"):
                template.template_file = str(config["template_file"])
            logger.info("Loaded mapping override for %s (%d fields)", name, len(template.field_mapping))

    def names(self) -> List[str]:
        return list(self.templates)

    def get(self, name: str) -> ContractTemplate:
        try:
            return self.templates[name]
        except KeyError:
            raise KeyError(f"Unknown template '{name}'") from None

    def resolve(self, pdf_type: str) -> List[ContractTemplate]:
        """Expand a requested PDF type into the templates to fill, in output order."""
        if pdf_type == PDF_TYPE_ALL:
            return list(self.templates.values())
        return [self.get(pdf_type)]

    def describe(self) -> List[Dict]:
        return [
            {
                "name": t.name,
                "description": t.description,
                "template_file": t.template_file,
                "field_count": len(t.field_mapping),
            }
            for t in self.templates.values()
        ]


def format_hungarian_date(day: dt.date) -> str:
    """``2024. március 5.`` style date used in running text."""
    return f"{day.year}. {HUNGARIAN_MONTHS[day.month - 1]} {day.day}."


def build_data(form: ContractForm, today: Optional[dt.date] = None) -> Dict[str, str]:
    data = form.model_dump()
    data[PAYMENT_METHOD_KEY] = form.resolved_payment_method()
    data[TODAY_TEXT_KEY] = format_hungarian_date(today or dt.date.today())
    return data


def build_field_values(
    template: ContractTemplate,
    form: ContractForm,
    today: Optional[dt.date] = None,
) -> Dict[str, str]:
    """Map the form onto one template's fields, dropping empty values."""
    data = build_data(form, today=today)
    values: Dict[str, str] = {}
    for pdf_field, data_key in template.field_mapping.items():
        value = data.get(data_key)
        if value is None:
            logger.debug("No data key %s for field %s", data_key, pdf_field)
            continue
        value = str(value).strip()
        if value:
            values[pdf_field] = value
    return values
