from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from flowassist.config import DATA_DIR
from flowassist.errors import ConcurrentUpdateError, LockingError, RecordNotFoundError
from flowassist.models.audit import AuditLog
from flowassist.models.client import Client
from flowassist.models.invoice import CreditNote, Invoice
from flowassist.models.matter import Matter
from flowassist.models.profile import Profile
from flowassist.models.settings import CabinetSettings
from flowassist.models.timesheet import Expense, TimesheetEntry
from flowassist.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class RecordStore(ABC):
    """Contrat de persistance utilisé par le moteur de facturation."""

    # ----- temps / frais -----
    @abstractmethod
    def list_timesheet_entries(
        self, matter_id: Optional[str] = None, date_from: Optional[date] = None, date_to: Optional[date] = None
    ) -> List[TimesheetEntry]: ...

    @abstractmethod
    def save_timesheet_entry(self, entry: TimesheetEntry) -> TimesheetEntry: ...

    @abstractmethod
    def list_expenses(self, matter_id: Optional[str] = None) -> List[Expense]: ...

    @abstractmethod
    def save_expense(self, expense: Expense) -> Expense: ...

    @abstractmethod
    def lock_entries(self, ids: Iterable[str], invoice_id: str) -> int: ...

    @abstractmethod
    def unlock_entries(self, ids: Iterable[str]) -> int: ...

    @abstractmethod
    def lock_expenses(self, ids: Iterable[str], invoice_id: str) -> int: ...

    @abstractmethod
    def unlock_expenses(self, ids: Iterable[str]) -> int: ...

    # ----- référentiels -----
    @abstractmethod
    def get_matter(self, matter_id: str) -> Matter: ...

    @abstractmethod
    def list_matters(self) -> List[Matter]: ...

    @abstractmethod
    def save_matter(self, matter: Matter) -> Matter: ...

    @abstractmethod
    def get_profile(self, profile_id: str) -> Profile: ...

    @abstractmethod
    def list_profiles(self) -> List[Profile]: ...

    @abstractmethod
    def save_profile(self, profile: Profile) -> Profile: ...

    @abstractmethod
    def get_client(self, client_id: str) -> Client: ...

    @abstractmethod
    def list_clients(self) -> List[Client]: ...

    @abstractmethod
    def save_client(self, client: Client) -> Client: ...

    # ----- réglages / compteurs -----
    @abstractmethod
    def get_cabinet_settings(self) -> CabinetSettings: ...

    @abstractmethod
    def compare_and_swap_settings(self, settings: CabinetSettings, expected_version: int) -> CabinetSettings: ...

    # ----- pièces -----
    @abstractmethod
    def save_invoice(self, invoice: Invoice) -> Invoice: ...

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> Invoice: ...

    @abstractmethod
    def list_invoices(self, matter_id: Optional[str] = None, status: Optional[str] = None) -> List[Invoice]: ...

    @abstractmethod
    def delete_invoice(self, invoice_id: str) -> bool: ...

    @abstractmethod
    def save_credit_note(self, note: CreditNote) -> CreditNote: ...

    @abstractmethod
    def list_credit_notes(self, invoice_id: Optional[str] = None) -> List[CreditNote]: ...

    # ----- journal d'audit -----
    @abstractmethod
    def add_audit_log(self, log: AuditLog) -> AuditLog: ...

    @abstractmethod
    def list_audit_logs(
        self, entity_type: Optional[str] = None, entity_id: Optional[str] = None, limit: Optional[int] = None
    ) -> List[AuditLog]: ...

    @abstractmethod
    def transaction(self) -> Any:
        """Contexte tout-ou-rien: en cas d'exception, toutes les tables sont restaurées."""


@dataclass
class _DirState:
    lock: threading.RLock
    depth: int = 0


_dir_states: Dict[str, _DirState] = {}
_dir_states_lock = threading.Lock()


def _state_for(data_dir: Path) -> _DirState:
    key = str(data_dir.resolve())
    with _dir_states_lock:
        if key not in _dir_states:
            _dir_states[key] = _DirState(lock=threading.RLock())
        return _dir_states[key]


class JsonRecordStore(RecordStore):
    """Un fichier JSON par table dans data_dir."""

    TABLES = {
        "timesheet": "timesheet_entries.json",
        "expenses": "expenses.json",
        "matters": "matters.json",
        "clients": "clients.json",
        "profiles": "profiles.json",
        "settings": "cabinet_settings.json",
        "invoices": "invoices.json",
        "credit_notes": "credit_notes.json",
        "audit_logs": "audit_logs.json",
    }

    def __init__(self, data_dir: Union[str, Path, None] = None, *, backup_enabled: bool = True) -> None:
        self.data_dir = Path(data_dir) if data_dir else DATA_DIR
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._state = _state_for(self.data_dir)
        self.repos: Dict[str, JsonRepository] = {
            name: JsonRepository(self.data_dir / filename, entity_name=name, key="id", backup_enabled=backup_enabled)
            for name, filename in self.TABLES.items()
        }

    # ---------------- helpers ---------------- #

    @staticmethod
    def _parse_all(model: Type[M], rows: Iterable[Dict[str, Any]]) -> List[M]:
        out: List[M] = []
        for d in rows:
            try:
                out.append(model(**d))
            except ValidationError:
                logger.warning("%s invalide ignoré: %s", model.__name__, d.get("id"))
                continue
        return out

    def _get(self, table: str, model: Type[M], obj_id: str, entity: str) -> M:
        d = self.repos[table].get_by_id(obj_id)
        if d is None:
            raise RecordNotFoundError(entity, obj_id)
        try:
            return model(**d)
        except ValidationError as e:
            raise RecordNotFoundError(entity, obj_id) from e

    def _save(self, table: str, item: M) -> M:
        with self._state.lock:
            self.repos[table].upsert(item)
        return item

    @contextmanager
    def transaction(self) -> Iterator["JsonRecordStore"]:
        with self._state.lock:
            outermost = self._state.depth == 0
            snapshots = {name: repo.snapshot() for name, repo in self.repos.items()} if outermost else {}
            self._state.depth += 1
            try:
                yield self
            except BaseException:
                if outermost:
                    logger.warning("Transaction annulée, restauration de %s", self.data_dir)
                    for name, rows in snapshots.items():
                        self.repos[name].restore(rows)
                raise
            finally:
                self._state.depth -= 1

    # ---------------- temps / frais ---------------- #

    def list_timesheet_entries(
        self, matter_id: Optional[str] = None, date_from: Optional[date] = None, date_to: Optional[date] = None
    ) -> List[TimesheetEntry]:
        entries = self._parse_all(TimesheetEntry, self.repos["timesheet"].list_all())
        return [
            e for e in entries
            if (matter_id is None or e.matter_id == matter_id)
            and (date_from is None or e.date >= date_from)
            and (date_to is None or e.date <= date_to)
        ]

    def get_timesheet_entry(self, entry_id: str) -> TimesheetEntry:
        return self._get("timesheet", TimesheetEntry, entry_id, "Temps")

    def save_timesheet_entry(self, entry: TimesheetEntry) -> TimesheetEntry:
        with self._state.lock:
            current = self.repos["timesheet"].get_by_id(entry.id)
            if current and current.get("locked"):
                raise LockingError(f"Le temps {entry.id} est verrouillé (déjà facturé)")
            return self._save("timesheet", entry)

    def delete_timesheet_entry(self, entry_id: str) -> bool:
        with self._state.lock:
            current = self.repos["timesheet"].get_by_id(entry_id)
            if current and current.get("locked"):
                raise LockingError(f"Le temps {entry_id} est verrouillé (déjà facturé)")
            return self.repos["timesheet"].delete(entry_id)

    def list_expenses(self, matter_id: Optional[str] = None) -> List[Expense]:
        expenses = self._parse_all(Expense, self.repos["expenses"].list_all())
        return [x for x in expenses if matter_id is None or x.matter_id == matter_id]

    def get_expense(self, expense_id: str) -> Expense:
        return self._get("expenses", Expense, expense_id, "Frais")

    def save_expense(self, expense: Expense) -> Expense:
        with self._state.lock:
            current = self.repos["expenses"].get_by_id(expense.id)
            if current and current.get("locked"):
                raise LockingError(f"Le frais {expense.id} est verrouillé (déjà facturé)")
            return self._save("expenses", expense)

    def lock_entries(self, ids: Iterable[str], invoice_id: str) -> int:
        with self._state.lock:
            return self.repos["timesheet"].update_many(ids, {"locked": True, "invoice_id": invoice_id})

    def unlock_entries(self, ids: Iterable[str]) -> int:
        with self._state.lock:
            return self.repos["timesheet"].update_many(ids, {"locked": False, "invoice_id": None})

    def lock_expenses(self, ids: Iterable[str], invoice_id: str) -> int:
        with self._state.lock:
            return self.repos["expenses"].update_many(ids, {"locked": True, "invoice_id": invoice_id})

    def unlock_expenses(self, ids: Iterable[str]) -> int:
        with self._state.lock:
            return self.repos["expenses"].update_many(ids, {"locked": False, "invoice_id": None})

    # ---------------- référentiels ---------------- #

    def get_matter(self, matter_id: str) -> Matter:
        return self._get("matters", Matter, matter_id, "Dossier")

    def list_matters(self) -> List[Matter]:
        return self._parse_all(Matter, self.repos["matters"].list_all())

    def save_matter(self, matter: Matter) -> Matter:
        return self._save("matters", matter)

    def get_profile(self, profile_id: str) -> Profile:
        return self._get("profiles", Profile, profile_id, "Collaborateur")

    def list_profiles(self) -> List[Profile]:
        return self._parse_all(Profile, self.repos["profiles"].list_all())

    def save_profile(self, profile: Profile) -> Profile:
        return self._save("profiles", profile)

    def get_client(self, client_id: str) -> Client:
        return self._get("clients", Client, client_id, "Client")

    def list_clients(self) -> List[Client]:
        return self._parse_all(Client, self.repos["clients"].list_all())

    def save_client(self, client: Client) -> Client:
        return self._save("clients", client)

    # ---------------- réglages ---------------- #

    def get_cabinet_settings(self) -> CabinetSettings:
        d = self.repos["settings"].get_by_id("default")
        if d is None:
            return CabinetSettings()
        return CabinetSettings(**d)

    def compare_and_swap_settings(self, settings: CabinetSettings, expected_version: int) -> CabinetSettings:
        with self._state.lock:
            current = self.repos["settings"].get_by_id("default")
            actual = int(current.get("version", 0)) if current else 0
            if actual != expected_version:
                raise ConcurrentUpdateError("cabinet_settings", expected_version, actual)
            saved = settings.model_copy(update={"id": "default", "version": actual + 1})
            self.repos["settings"].upsert(saved)
            return saved

    def save_cabinet_settings(self, settings: CabinetSettings) -> CabinetSettings:
        """Écriture administrateur (écrase la version courante)."""
        with self._state.lock:
            current = self.get_cabinet_settings()
            return self.compare_and_swap_settings(settings, current.version)

    # ---------------- pièces ---------------- #

    def save_invoice(self, invoice: Invoice) -> Invoice:
        invoice.touch()
        return self._save("invoices", invoice)

    def get_invoice(self, invoice_id: str) -> Invoice:
        return self._get("invoices", Invoice, invoice_id, "Facture")

    def list_invoices(self, matter_id: Optional[str] = None, status: Optional[str] = None) -> List[Invoice]:
        invoices = self._parse_all(Invoice, self.repos["invoices"].list_all())
        return [
            i for i in invoices
            if (matter_id is None or i.matter_id == matter_id) and (status is None or i.status == status)
        ]

    def delete_invoice(self, invoice_id: str) -> bool:
        with self._state.lock:
            return self.repos["invoices"].delete(invoice_id)

    def save_credit_note(self, note: CreditNote) -> CreditNote:
        return self._save("credit_notes", note)

    def list_credit_notes(self, invoice_id: Optional[str] = None) -> List[CreditNote]:
        rows = self.repos["credit_notes"].find(lambda r: invoice_id is None or r.get("invoice_id") == invoice_id)
        return self._parse_all(CreditNote, rows)

    # ---------------- audit ---------------- #

    def add_audit_log(self, log: AuditLog) -> AuditLog:
        with self._state.lock:
            self.repos["audit_logs"].add(log)
        return log

    def list_audit_logs(
        self, entity_type: Optional[str] = None, entity_id: Optional[str] = None, limit: Optional[int] = None
    ) -> List[AuditLog]:
        """Plus récents d'abord."""
        rows = self.repos["audit_logs"].find(
            lambda r: (entity_type is None or r.get("entity_type") == entity_type)
            and (entity_id is None or r.get("entity_id") == entity_id)
        )
        logs = sorted(self._parse_all(AuditLog, rows), key=lambda a: a.created_at, reverse=True)
        return logs[:limit] if limit is not None else logs
