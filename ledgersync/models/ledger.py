"""
Ledger-side Models

What the ledger service hands us and what we hand back.

DESIGN DECISION: Amounts are integer milliunits (1000 = 1.00) end to end.
Floating point never touches a stored amount; conversion math happens in
Decimal inside the Rate Table and comes back as an int.
"""

import datetime as dt
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


MAX_IMPORT_ID_LENGTH = 36
MAX_MEMO_LENGTH = 500


class ClearedStatus(str, Enum):
    """Clearing state of a ledger transaction."""
    CLEARED = "cleared"
    UNCLEARED = "uncleared"
    RECONCILED = "reconciled"


class LedgerTransaction(BaseModel):
    """
    A transaction as observed on a ledger.

    Deleted transactions arrive as tombstones: same id, `deleted=True`,
    the last known field values.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Ledger transaction id")
    date: dt.date
    amount: int = Field(..., description="Signed amount in milliunits")
    account_id: str
    account_name: Optional[str] = None
    payee_id: Optional[str] = None
    payee_name: Optional[str] = None
    memo: Optional[str] = None
    cleared: ClearedStatus = ClearedStatus.UNCLEARED
    approved: bool = False
    import_id: Optional[str] = Field(
        default=None,
        description="External-reference tag (idempotency tag for mirrors)"
    )
    transfer_account_id: Optional[str] = None
    deleted: bool = False

    @property
    def month(self) -> str:
        """YYYY-MM of the transaction date."""
        return self.date.strftime("%Y-%m")

    def has_tag_prefix(self, prefixes: tuple[str, ...]) -> bool:
        """True if the import id sits in one of the given tag namespaces."""
        if not self.import_id:
            return False
        return any(self.import_id.startswith(f"{prefix}:") for prefix in prefixes)


class NewTransaction(BaseModel):
    """Payload for creating a transaction."""

    account_id: str
    date: dt.date
    amount: int
    payee_name: Optional[str] = Field(default=None, max_length=200)
    memo: Optional[str] = None
    cleared: ClearedStatus = ClearedStatus.CLEARED
    approved: bool = True
    import_id: str = Field(..., min_length=1, max_length=MAX_IMPORT_ID_LENGTH)

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", exclude_none=True)
        if self.memo:
            payload["memo"] = self.memo[:MAX_MEMO_LENGTH]
        return payload


class TransactionUpdate(BaseModel):
    """Mutable fields of a transaction. Unset fields are left alone."""

    date: Optional[dt.date] = None
    amount: Optional[int] = None
    memo: Optional[str] = None
    payee_name: Optional[str] = None
    cleared: Optional[ClearedStatus] = None
    approved: Optional[bool] = None

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", exclude_none=True)
        if self.memo:
            payload["memo"] = self.memo[:MAX_MEMO_LENGTH]
        return payload


class TransactionPage(BaseModel):
    """A delta fetch: the changed transactions plus the cursor to resume from."""

    transactions: list[LedgerTransaction] = Field(default_factory=list)
    watermark: int = Field(..., ge=0, description="Server knowledge after this fetch")
