from __future__ import annotations
import logging
import os
import re
from pathlib import Path
from shutil import which
from typing import Any, Dict, Optional

import pdfkit  # utilisé si wkhtmltopdf dispo
from jinja2 import Environment, FileSystemLoader, select_autoescape

from flowassist.config import EXPORTS_DIR, TEMPLATES_DIR, AppSettings, load_app_settings
from flowassist.errors import DocumentExportError, RecordNotFoundError
from flowassist.models.invoice import CreditNote, Invoice
from flowassist.services.money import format_amount, format_minutes
from flowassist.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

STATUS_LABELS = {"draft": "BROUILLON", "issued": "FACTURE", "cancelled": "FACTURE ANNULÉE"}


def _slug(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r'[\\/:*?"<>|\n\r\t]', "_", text)
    text = re.sub(r"\s+", " ", text)
    return text or "Client"


# ---------- PDF helpers ----------
def _clean_path(p: str) -> str:
    """Corrige 'C\\:\\Program Files\\...' -> 'C:\\Program Files\\...' et normalise."""
    if not p:
        return ""
    p = p.strip().strip('"').strip("'")
    p = p.replace("\\:", ":")
    return os.path.normpath(p)


def _find_wkhtmltopdf(settings: AppSettings) -> Optional[str]:
    """
    Localise wkhtmltopdf :
    - Variables d'env (WKHTMLTOPDF, WKHTMLTOPDF_CMD)
    - data/settings.json -> pdf.wkhtmltopdf_path
    - chemins Windows connus
    - PATH
    """
    for env_key in ("WKHTMLTOPDF", "WKHTMLTOPDF_CMD"):
        val = os.environ.get(env_key)
        if val:
            path = _clean_path(val)
            if Path(path).is_file():
                return path

    if settings.pdf.wkhtmltopdf_path:
        path = _clean_path(settings.pdf.wkhtmltopdf_path)
        if Path(path).is_file():
            return path

    candidates = [
        r"C:\Program Files\wkhtmltopdf\bin\wkhtmltopdf.exe",
        r"C:\Program Files (x86)\wkhtmltopdf\bin\wkhtmltopdf.exe",
    ]
    for c in candidates:
        if Path(c).is_file():
            return c

    found = which("wkhtmltopdf")
    return _clean_path(found) if found else None


class DocumentService:
    """Rendu des factures et avoirs: HTML (Jinja2), PDF et Word."""

    def __init__(
        self,
        store: RecordStore,
        settings: Optional[AppSettings] = None,
        templates_dir: Path = TEMPLATES_DIR,
        exports_dir: Path = EXPORTS_DIR,
    ):
        self.store = store
        self.settings = settings or load_app_settings()
        self.templates_dir = Path(templates_dir)
        self.exports_dir = Path(exports_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self.env.filters["amount"] = lambda c: format_amount(c, self.settings.currency_label)
        self.env.filters["duration"] = format_minutes

    # ---------- contexte ----------
    def _common_ctx(self, invoice: Invoice) -> Dict[str, Any]:
        cabinet = self.store.get_cabinet_settings()
        try:
            client = self.store.get_client(invoice.client_id)
        except RecordNotFoundError:
            client = None
        try:
            matter = self.store.get_matter(invoice.matter_id)
        except RecordNotFoundError:
            matter = None
        company = self.settings.company
        return {
            "cabinet": {
                "name": cabinet.name or company.name,
                "address": cabinet.address or company.address,
                "email": company.email,
                "phone": company.phone,
                "siret": company.siret,
                "iban": cabinet.iban or "",
                "mentions": cabinet.mentions or "",
            },
            "client": {
                "name": client.name if client else "Client",
                "code": client.code if client else "",
                "address": (client.address or "") if client else "",
                "vat_number": (client.vat_number or "") if client else "",
            },
            "matter": {
                "code": matter.code if matter else "",
                "label": matter.label if matter else "",
            },
        }

    def render_invoice_html(self, invoice: Invoice) -> str:
        tpl = self.env.get_template("invoice.html")
        ctx = self._common_ctx(invoice)
        ctx["title"] = STATUS_LABELS.get(invoice.status, "FACTURE")
        ctx["invoice"] = invoice
        ctx["vat_rates"] = sorted({ln.vat_rate for ln in invoice.lines})
        return tpl.render(**ctx)

    def render_credit_note_html(self, note: CreditNote) -> str:
        invoice = self.store.get_invoice(note.invoice_id)
        tpl = self.env.get_template("credit_note.html")
        ctx = self._common_ctx(invoice)
        ctx["invoice"] = invoice
        ctx["note"] = note
        return tpl.render(**ctx)

    # ---------- export PDF ----------
    def _out_path(self, sub: str, number: str, client_id: str, ext: str, out_dir: Optional[str]) -> Path:
        folder = Path(out_dir) if out_dir else (self.exports_dir / sub)
        folder.mkdir(parents=True, exist_ok=True)
        try:
            cname = self.store.get_client(client_id).name
        except RecordNotFoundError:
            cname = "Client"
        return folder / f"{number} ({_slug(cname)}).{ext}"

    def _render_pdf(self, html: str, out_path: Path) -> str:
        """wkhtmltopdf (pdfkit) en priorité, sinon fallback WeasyPrint."""
        css_file = self.templates_dir / "stylesheet.css"
        wkhtml = _find_wkhtmltopdf(self.settings)
        if wkhtml:
            try:
                config = pdfkit.configuration(wkhtmltopdf=wkhtml)
                options = {"enable-local-file-access": None, "quiet": "", "encoding": "UTF-8"}
                css = str(css_file.resolve()) if css_file.exists() else None
                pdfkit.from_string(html, str(out_path), options=options, configuration=config, css=css)
                return str(out_path)
            except OSError as e:
                logger.warning("Échec wkhtmltopdf (%s). Fallback WeasyPrint...", e)

        try:
            from weasyprint import CSS, HTML
        except (ImportError, OSError) as e:
            raise DocumentExportError(
                "Aucun wkhtmltopdf trouvé et WeasyPrint n'est pas utilisable. "
                "Installer WeasyPrint ou configurer pdf.wkhtmltopdf_path.\n"
                f"Détails: {e}"
            ) from e
        styles = [CSS(filename=str(css_file))] if css_file.exists() else None
        HTML(string=html, base_url=str(self.templates_dir.resolve())).write_pdf(str(out_path), stylesheets=styles)
        return str(out_path)

    def export_invoice_pdf(self, invoice: Invoice, out_dir: Optional[str] = None) -> str:
        number = invoice.number or f"BROUILLON-{invoice.id[:8]}"
        out_path = self._out_path("factures", number, invoice.client_id, "pdf", out_dir)
        path = self._render_pdf(self.render_invoice_html(invoice), out_path)
        logger.info("PDF facture %s -> %s", number, path)
        return path

    def export_credit_note_pdf(self, note: CreditNote, out_dir: Optional[str] = None) -> str:
        invoice = self.store.get_invoice(note.invoice_id)
        out_path = self._out_path("avoirs", note.number, invoice.client_id, "pdf", out_dir)
        path = self._render_pdf(self.render_credit_note_html(note), out_path)
        logger.info("PDF avoir %s -> %s", note.number, path)
        return path

    # ---------- export Word ----------
    def export_invoice_docx(self, invoice: Invoice, out_dir: Optional[str] = None) -> str:
        try:
            from docx import Document
            from docx.enum.text import WD_ALIGN_PARAGRAPH
        except ImportError as e:
            raise DocumentExportError(f"python-docx n'est pas installé: {e}") from e

        ctx = self._common_ctx(invoice)
        cur = self.settings.currency_label
        number = invoice.number or f"BROUILLON-{invoice.id[:8]}"

        doc = Document()
        doc.add_heading(ctx["cabinet"]["name"], level=1)
        if ctx["cabinet"]["address"]:
            doc.add_paragraph(ctx["cabinet"]["address"])

        title = doc.add_heading(f"{STATUS_LABELS.get(invoice.status, 'FACTURE')} {invoice.number or ''}".strip(), level=2)
        title.alignment = WD_ALIGN_PARAGRAPH.RIGHT

        doc.add_paragraph(f"Client : {ctx['client']['name']}")
        doc.add_paragraph(f"Dossier : {ctx['matter']['code']} - {ctx['matter']['label']}")
        doc.add_paragraph(f"Période : du {invoice.period_from:%d/%m/%Y} au {invoice.period_to:%d/%m/%Y}")
        if invoice.issue_date:
            doc.add_paragraph(f"Date d'émission : {invoice.issue_date:%d/%m/%Y}")

        table = doc.add_table(rows=1, cols=5)
        table.style = "Table Grid"
        for cell, text in zip(table.rows[0].cells, ("Désignation", "Durée", "HT", "TVA", "TTC")):
            cell.text = text
        for ln in invoice.lines:
            cells = table.add_row().cells
            cells[0].text = ln.label
            cells[1].text = format_minutes(ln.minutes) if ln.kind != "expense" and ln.minutes else ""
            cells[2].text = format_amount(ln.amount_ht_cents, cur)
            cells[3].text = f"{ln.vat_rate} %"
            cells[4].text = format_amount(ln.amount_ttc_cents, cur)

        for label, cents in (
            ("Total HT", invoice.total_ht_cents),
            ("TVA", invoice.total_vat_cents),
            ("Total TTC", invoice.total_ttc_cents),
        ):
            p = doc.add_paragraph(f"{label} : {format_amount(cents, cur)}")
            p.alignment = WD_ALIGN_PARAGRAPH.RIGHT

        if ctx["cabinet"]["iban"]:
            doc.add_paragraph(f"IBAN : {ctx['cabinet']['iban']}")
        if ctx["cabinet"]["mentions"]:
            doc.add_paragraph(ctx["cabinet"]["mentions"])

        out_path = self._out_path("factures", number, invoice.client_id, "docx", out_dir)
        doc.save(str(out_path))
        logger.info("Word facture %s -> %s", number, out_path)
        return str(out_path)
