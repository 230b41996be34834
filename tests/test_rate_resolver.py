from datetime import date

from flowassist.models.matter import Matter
from flowassist.models.profile import Profile
from flowassist.models.settings import CabinetSettings
from flowassist.models.timesheet import TimesheetEntry
from flowassist.services.rate_resolver import RateResolver

SETTINGS = CabinetSettings(rate_cabinet_cents=15000)
MATTER = Matter(code="D1", label="Dossier", client_id="c1", rate_cents=16000)
PLAIN_MATTER = Matter(code="D2", label="Sans taux", client_id="c1")
ALICE = Profile(id="alice", name="Alice", rate_cents=20000)
BOB = Profile(id="bob", name="Bob")


class TestPrecedence:
    """Surcharge > collaborateur > dossier > cabinet, un seul taux retenu."""

    def test_override_wins(self):
        r = RateResolver(SETTINGS)
        assert r.resolve(MATTER, ALICE, override=9000) == 9000

    def test_zero_override_is_honoured(self):
        r = RateResolver(SETTINGS)
        assert r.resolve(MATTER, ALICE, override=0) == 0

    def test_profile_before_matter(self):
        assert RateResolver(SETTINGS).resolve(MATTER, ALICE) == 20000

    def test_matter_when_profile_has_no_rate(self):
        assert RateResolver(SETTINGS).resolve(MATTER, BOB) == 16000

    def test_zero_profile_rate_falls_through(self):
        zero = Profile(name="Zéro", rate_cents=0)
        assert RateResolver(SETTINGS).resolve(MATTER, zero) == 16000

    def test_cabinet_default(self):
        assert RateResolver(SETTINGS).resolve(PLAIN_MATTER, BOB) == 15000
        assert RateResolver(SETTINGS).resolve(None, None) == 15000


class TestRateFor:
    def test_looks_up_profile_from_entry(self):
        r = RateResolver(SETTINGS, {"alice": ALICE, "bob": BOB})
        entry = TimesheetEntry(user_id="alice", matter_id=MATTER.id, date=date(2025, 1, 2), minutes_rounded=15)
        assert r.rate_for(entry, MATTER) == 20000

    def test_unknown_collaborator_uses_matter(self):
        r = RateResolver(SETTINGS, {"alice": ALICE})
        entry = TimesheetEntry(user_id="ghost", matter_id=MATTER.id, date=date(2025, 1, 2), minutes_rounded=15)
        assert r.rate_for(entry, MATTER) == 16000
