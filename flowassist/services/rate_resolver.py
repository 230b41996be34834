from __future__ import annotations
from typing import Mapping, Optional

from flowassist.models.matter import Matter
from flowassist.models.profile import Profile
from flowassist.models.settings import CabinetSettings
from flowassist.models.timesheet import TimesheetEntry


class RateResolver:
    """
    Taux horaire applicable à un temps, par ordre de priorité:
      1. surcharge saisie à la création de la facture
      2. taux personnel du collaborateur
      3. taux du dossier
      4. taux par défaut du cabinet
    Un seul taux est retenu, jamais de cumul.
    """

    def __init__(self, settings: CabinetSettings, profiles: Optional[Mapping[str, Profile]] = None):
        self.settings = settings
        self.profiles = dict(profiles or {})

    def resolve(
        self,
        matter: Optional[Matter],
        profile: Optional[Profile],
        override: Optional[int] = None,
    ) -> int:
        # une surcharge à 0 est un choix explicite (temps offert)
        if override is not None:
            return int(override)
        if profile is not None and profile.rate_cents:
            return profile.rate_cents
        if matter is not None and matter.rate_cents:
            return matter.rate_cents
        return self.settings.rate_cabinet_cents

    def rate_for(self, entry: TimesheetEntry, matter: Optional[Matter], override: Optional[int] = None) -> int:
        return self.resolve(matter, self.profiles.get(entry.user_id), override)
