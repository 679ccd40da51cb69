"""
Sync directions.

One sub-run reads one source ledger and writes to one target ledger through
a set of account pairs. Personal/organization links and
organization/organization links both reduce to this shape.
"""

from dataclasses import dataclass
from typing import Optional

from ledgersync.config import BudgetConfig
from ledgersync.models.sync import (
    AccountLink,
    CompanyAccountLink,
    SourceBudget,
    TransactionMapping,
)


@dataclass(frozen=True)
class AccountPair:
    """An account on the source ledger and its counterpart on the target ledger."""
    source_account_id: str
    target_account_id: str
    name: str


@dataclass(frozen=True)
class SyncDirection:
    source: BudgetConfig
    target: BudgetConfig
    source_slot: SourceBudget
    tag_prefix: str
    # Discriminators for (personal slot, company slot) sources
    tag_codes: tuple[str, str]
    pairs: tuple[AccountPair, ...]

    @property
    def target_slot(self) -> SourceBudget:
        return self.source_slot.other

    @property
    def stream(self) -> str:
        """Watermark key, one per source ledger and counterpart."""
        return f"{self.tag_prefix.lower()}:{self.target.id}"

    @property
    def label(self) -> str:
        return f"{self.source.name} -> {self.target.name}"

    @property
    def tag_code(self) -> str:
        return self.tag_code_for(self.source_slot)

    def tag_code_for(self, slot: SourceBudget) -> str:
        return self.tag_codes[0] if slot is SourceBudget.PERSONAL else self.tag_codes[1]

    def budget_for(self, slot: SourceBudget) -> BudgetConfig:
        return self.source if slot is self.source_slot else self.target

    @property
    def personal_budget(self) -> BudgetConfig:
        return self.budget_for(SourceBudget.PERSONAL)

    @property
    def company_budget(self) -> BudgetConfig:
        return self.budget_for(SourceBudget.COMPANY)

    def owns(self, mapping: TransactionMapping) -> bool:
        """True if the mapping belongs to this ledger pair with the same slot layout."""
        return (
            mapping.personal_budget_id == self.personal_budget.id
            and mapping.company_budget_id == self.company_budget.id
        )

    def pair_for_source_account(self, account_id: str) -> Optional[AccountPair]:
        for pair in self.pairs:
            if pair.source_account_id == account_id:
                return pair
        return None

    def pair_for_target_account(self, account_id: str) -> Optional[AccountPair]:
        for pair in self.pairs:
            if pair.target_account_id == account_id:
                return pair
        return None


def loan_directions(
    personal: BudgetConfig,
    company: BudgetConfig,
    links: list[AccountLink],
    tag_prefix: str,
) -> list[SyncDirection]:
    """Personal -> organization, then organization -> personal."""
    own = [l for l in links if l.active and l.company_budget_id == company.id]
    outbound = tuple(
        AccountPair(l.personal_account_id, l.company_account_id, l.company_name) for l in own
    )
    inbound = tuple(
        AccountPair(l.company_account_id, l.personal_account_id, l.company_name) for l in own
    )
    return [
        SyncDirection(personal, company, SourceBudget.PERSONAL, tag_prefix, ("P", "C"), outbound),
        SyncDirection(company, personal, SourceBudget.COMPANY, tag_prefix, ("P", "C"), inbound),
    ]


def company_directions(
    first: BudgetConfig,
    second: BudgetConfig,
    links: list[CompanyAccountLink],
    tag_prefix: str,
) -> list[SyncDirection]:
    """First -> second, then second -> first. The first ledger takes the personal slot."""
    own = [
        l for l in links
        if l.active and l.budget_id_1 == first.id and l.budget_id_2 == second.id
    ]
    forward = tuple(
        AccountPair(l.account_id_1, l.account_id_2, f"{l.name_1} / {l.name_2}") for l in own
    )
    backward = tuple(
        AccountPair(l.account_id_2, l.account_id_1, f"{l.name_2} / {l.name_1}") for l in own
    )
    return [
        SyncDirection(first, second, SourceBudget.PERSONAL, tag_prefix, ("A", "B"), forward),
        SyncDirection(second, first, SourceBudget.COMPANY, tag_prefix, ("A", "B"), backward),
    ]
