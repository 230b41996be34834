import json

from flowassist.config import AppSettings, load_app_settings


class TestAppSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        s = load_app_settings(tmp_path / "absent.json")
        assert s == AppSettings()
        assert (s.currency_label, s.csv_delimiter) == ("MAD", ";")

    def test_reads_company_and_pdf(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({
            "company": {"name": "Cabinet Benali", "email": "contact@benali.ma"},
            "pdf": {"wkhtmltopdf_path": "/usr/bin/wkhtmltopdf"},
            "currency_label": "EUR",
            "unknown_key": 1,
        }), encoding="utf-8")
        s = load_app_settings(path)
        assert s.company.name == "Cabinet Benali"
        assert s.pdf.wkhtmltopdf_path == "/usr/bin/wkhtmltopdf"
        assert s.currency_label == "EUR"

    def test_legacy_root_wkhtmltopdf_path(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"wkhtmltopdf_path": "C:/wk/bin/wkhtmltopdf.exe"}), encoding="utf-8")
        assert load_app_settings(path).pdf.wkhtmltopdf_path == "C:/wk/bin/wkhtmltopdf.exe"

    def test_corrupt_file_gives_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{oops", encoding="utf-8")
        assert load_app_settings(path) == AppSettings()
