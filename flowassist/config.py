from __future__ import annotations
import json
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

# --- Chemins de base ---
ROOT_DIR = Path(__file__).resolve().parents[1]  # racine du dépôt


def _dir_from_env(env_key: str, default: Path) -> Path:
    val = os.environ.get(env_key)
    return Path(val).expanduser() if val else default


DATA_DIR = _dir_from_env("FLOWASSIST_DATA_DIR", ROOT_DIR / "data")
TEMPLATES_DIR = _dir_from_env("FLOWASSIST_TEMPLATES_DIR", ROOT_DIR / "templates" / "pdf")
EXPORTS_DIR = _dir_from_env("FLOWASSIST_EXPORTS_DIR", ROOT_DIR / "exports")

SETTINGS_JSON = DATA_DIR / "settings.json"


# ---------- Utils JSON ----------
def load_json(path: os.PathLike | str) -> Any:
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None


def dump_json(path: os.PathLike | str, data: Any) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


# ---------- Réglages applicatifs ----------
class CompanyInfo(BaseModel):
    name: str = "Mon Cabinet"
    email: str = ""
    address: str = ""
    phone: str = ""
    siret: str = ""


class PdfSettings(BaseModel):
    wkhtmltopdf_path: Optional[str] = None


class AppSettings(BaseModel):
    """Contenu de data/settings.json (tout est optionnel)."""
    company: CompanyInfo = Field(default_factory=CompanyInfo)
    pdf: PdfSettings = Field(default_factory=PdfSettings)
    currency_label: str = "MAD"
    csv_delimiter: str = ";"

    class Config:
        extra = "ignore"


def load_app_settings(path: os.PathLike | str | None = None) -> AppSettings:
    raw = load_json(path or SETTINGS_JSON)
    if not isinstance(raw, dict):
        return AppSettings()
    # ancien format: wkhtmltopdf_path à la racine
    if raw.get("wkhtmltopdf_path") and not (raw.get("pdf") or {}).get("wkhtmltopdf_path"):
        raw = {**raw, "pdf": {**(raw.get("pdf") or {}), "wkhtmltopdf_path": raw["wkhtmltopdf_path"]}}
    try:
        return AppSettings(**raw)
    except ValidationError:
        return AppSettings()
