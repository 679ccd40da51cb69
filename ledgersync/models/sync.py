"""
Sync Records

The state the reconciliation engine keeps between passes:
- which accounts are two views of the same money (AccountLink, CompanyAccountLink)
- which transaction mirrors which (TransactionMapping)
- which independent entries are one real transfer (LinkedTransaction)
- how far each ledger has been consumed (SyncWatermark)
- monthly conversion rates (ExchangeRate)

DESIGN DECISION: A TransactionMapping has two fixed slots, "personal" and
"company". For organization-to-organization links the link's first ledger
takes the personal slot. Every mapping carries both budget ids so a mapping
can always be tied back to the ledger pair that owns it.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


MAX_LINK_REASON_LENGTH = 500


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SourceBudget(str, Enum):
    """Mapping slot. Also records which slot held the source transaction."""
    PERSONAL = "personal"
    COMPANY = "company"

    @property
    def other(self) -> "SourceBudget":
        return SourceBudget.COMPANY if self is SourceBudget.PERSONAL else SourceBudget.PERSONAL


class SyncStatus(str, Enum):
    """Lifecycle of a TransactionMapping."""
    ACTIVE = "active"
    DELETED = "deleted"   # terminal
    ERROR = "error"


class RunStatus(str, Enum):
    """Outcome of the last sub-run for a watermark stream."""
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class LinkType(str, Enum):
    """Why two independent entries were linked."""
    BANK_TRANSFER = "bank_transfer"
    MANUAL = "manual"


class AccountLink(BaseModel):
    """
    A personal account and an organization account that are two views of
    one loan relationship. Read-only to the engine.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    company_budget_id: str = Field(..., min_length=1)
    company_name: str = Field(..., min_length=1)
    personal_account_id: str = Field(..., min_length=1)
    company_account_id: str = Field(..., min_length=1)
    active: bool = True


class CompanyAccountLink(BaseModel):
    """
    Two organization accounts in the same currency that mirror each other.
    Symmetric; no conversion.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    budget_id_1: str = Field(..., min_length=1)
    account_id_1: str = Field(..., min_length=1)
    name_1: str = ""
    budget_id_2: str = Field(..., min_length=1)
    account_id_2: str = Field(..., min_length=1)
    name_2: str = ""
    active: bool = True

    @model_validator(mode='after')
    def validate_distinct_budgets(self) -> 'CompanyAccountLink':
        if self.budget_id_1 == self.budget_id_2:
            raise ValueError("A company link must join two different budgets")
        return self

    def oriented(self, first_budget_id: str) -> 'CompanyAccountLink':
        """The same link with `first_budget_id` on side 1."""
        if self.budget_id_1 == first_budget_id:
            return self
        return self.model_copy(update={
            "budget_id_1": self.budget_id_2,
            "account_id_1": self.account_id_2,
            "name_1": self.name_2,
            "budget_id_2": self.budget_id_1,
            "account_id_2": self.account_id_1,
            "name_2": self.name_1,
        })


class TransactionMapping(BaseModel):
    """
    The single source of truth that one transaction mirrors another.

    Exactly one active mapping per economic event. Created on first mirror,
    mutated on drift, soft-deleted once both sides are gone.
    """

    id: UUID = Field(default_factory=uuid4)
    personal_budget_id: str = Field(..., description="Budget holding personal_tx_id")
    company_budget_id: str = Field(..., description="Budget holding company_tx_id")
    personal_tx_id: str
    company_tx_id: str
    personal_amount: int = Field(..., description="Milliunits")
    company_amount: int = Field(..., description="Milliunits")
    exchange_rate: Decimal = Field(
        ...,
        gt=0,
        description="Personal-slot currency to company-slot currency multiplier"
    )
    transaction_date: date
    source_budget: SourceBudget
    sync_status: SyncStatus = SyncStatus.ACTIVE
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_offsetting_amounts(self) -> 'TransactionMapping':
        """Stored amounts must offset each other."""
        if self.personal_amount * self.company_amount > 0:
            raise ValueError("personal_amount and company_amount must have opposite signs")
        return self

    @property
    def is_active(self) -> bool:
        return self.sync_status == SyncStatus.ACTIVE

    def tx_id_for(self, slot: SourceBudget) -> str:
        return self.personal_tx_id if slot is SourceBudget.PERSONAL else self.company_tx_id

    def amount_for(self, slot: SourceBudget) -> int:
        return self.personal_amount if slot is SourceBudget.PERSONAL else self.company_amount

    def budget_for(self, slot: SourceBudget) -> str:
        return self.personal_budget_id if slot is SourceBudget.PERSONAL else self.company_budget_id

    def joins(self, budget_a: str, budget_b: str) -> bool:
        """True if this mapping belongs to the given ledger pair (either order)."""
        return {self.personal_budget_id, self.company_budget_id} == {budget_a, budget_b}


class LinkedTransaction(BaseModel):
    """
    Two independently existing entries recognised as one real transfer.
    No mirror should exist for either side.
    """

    id: UUID = Field(default_factory=uuid4)
    budget_id_a: str
    tx_id_a: str
    budget_id_b: str
    tx_id_b: str
    amount: int = Field(..., ge=0, description="Absolute amount in milliunits")
    transaction_date: date
    link_type: LinkType = LinkType.BANK_TRANSFER
    link_reason: Optional[str] = Field(default=None, max_length=MAX_LINK_REASON_LENGTH)
    is_auto_matched: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_distinct_sides(self) -> 'LinkedTransaction':
        if self.tx_id_a == self.tx_id_b:
            raise ValueError("A transaction cannot be linked to itself")
        return self

    def involves(self, tx_id: str) -> bool:
        return tx_id in (self.tx_id_a, self.tx_id_b)


class SyncWatermark(BaseModel):
    """
    How far one ledger has been consumed for one stream.

    A stream names the counterpart the sub-run syncs towards, so a ledger
    taking part in several link sets keeps one cursor per set.
    """

    budget_id: str
    stream: str = Field(..., min_length=1)
    last_watermark: Optional[int] = Field(default=None, ge=0)
    last_run_at: Optional[datetime] = None
    last_status: Optional[RunStatus] = None
    last_error: Optional[str] = None
    total_synced: int = Field(default=0, ge=0)


class ExchangeRate(BaseModel):
    """Monthly multiplier: 1 base = rate quote."""

    model_config = ConfigDict(str_strip_whitespace=True)

    month: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$", description="YYYY-MM")
    base_currency: str = Field(..., min_length=3, max_length=3)
    quote_currency: str = Field(..., min_length=3, max_length=3)
    rate: Decimal = Field(..., gt=0)
    source: Optional[str] = None
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('base_currency', 'quote_currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()
