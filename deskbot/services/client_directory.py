from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Protocol

from sqlalchemy.orm import Session as DbSession

from deskbot.models import Client
from deskbot.services.cuit import clean_cuit

PAYMENT_TYPES = ("honorarios", "monotributo", "deuda_generica")


@dataclass(frozen=True)
class ClientRecord:
    cuit: str
    name: Optional[str] = None
    fee_debt: Optional[Decimal] = None
    monotributo_amount: Optional[Decimal] = None
    debt: Optional[Decimal] = None

    def amount_for(self, payment_type: str) -> Decimal:
        """Amount to report for a payment question; first non-null source wins."""
        if payment_type == "honorarios":
            candidates = (self.fee_debt,)
        elif payment_type == "monotributo":
            candidates = (self.debt, self.monotributo_amount)
        else:
            candidates = (self.fee_debt, self.debt, self.monotributo_amount)
        for value in candidates:
            if value is not None:
                return Decimal(value)
        return Decimal("0")


class ClientDirectory(Protocol):
    def get_client(self, cuit: str) -> Optional[ClientRecord]: ...


class InMemoryClientDirectory:
    def __init__(self, records: Optional[list[ClientRecord]] = None):
        self._records = {record.cuit: record for record in records or []}

    def add(self, record: ClientRecord) -> None:
        self._records[record.cuit] = record

    def get_client(self, cuit: str) -> Optional[ClientRecord]:
        return self._records.get(clean_cuit(cuit))


class SqlClientDirectory:
    """Reads the ``clients`` table with a short-lived session per lookup."""

    def __init__(self, session_factory: Callable[[], DbSession]):
        self.session_factory = session_factory

    def get_client(self, cuit: str) -> Optional[ClientRecord]:
        db = self.session_factory()
        try:
            row = db.get(Client, clean_cuit(cuit))
            if row is None:
                return None
            return ClientRecord(
                cuit=row.cuit,
                name=row.name,
                fee_debt=row.fee_debt,
                monotributo_amount=row.monotributo_amount,
                debt=row.debt,
            )
        finally:
            db.close()
