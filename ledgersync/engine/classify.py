"""
Transaction classification.

Every transaction fetched from a source ledger falls into exactly one of
five variants, checked in this order:

1. Deleted      - tombstone on the source ledger
2. MirrorDrift  - carries a mirror tag: it is one of our mirrors
3. SourceDrift  - an active mapping already holds it as the source
4. NewCandidate - lives in a linked account and is not tracked yet
5. Ignored      - anything else
"""

from dataclasses import dataclass
from typing import Optional, Union

from ledgersync.engine.directions import AccountPair, SyncDirection
from ledgersync.models.ledger import LedgerTransaction
from ledgersync.models.sync import SourceBudget, TransactionMapping
from ledgersync.services.storage import MappingStoreInterface


@dataclass(frozen=True)
class Deleted:
    transaction: LedgerTransaction
    is_mirror: bool


@dataclass(frozen=True)
class MirrorDrift:
    transaction: LedgerTransaction
    mapping: TransactionMapping


@dataclass(frozen=True)
class SourceDrift:
    transaction: LedgerTransaction
    mapping: TransactionMapping


@dataclass(frozen=True)
class NewCandidate:
    transaction: LedgerTransaction
    pair: AccountPair


@dataclass(frozen=True)
class Ignored:
    transaction: LedgerTransaction
    reason: str


Classification = Union[Deleted, MirrorDrift, SourceDrift, NewCandidate, Ignored]


async def find_mapping(
    store: MappingStoreInterface,
    slot: SourceBudget,
    tx_id: str,
) -> Optional[TransactionMapping]:
    """Active mapping holding `tx_id` in the given slot."""
    if slot is SourceBudget.PERSONAL:
        return await store.get_mapping_by_personal_tx(tx_id)
    return await store.get_mapping_by_company_tx(tx_id)


async def classify(
    transaction: LedgerTransaction,
    direction: SyncDirection,
    store: MappingStoreInterface,
    mirror_prefixes: tuple[str, ...],
) -> Classification:
    """
    Decide which handler a source-ledger transaction goes to.

    Raises:
        StorageError: If a mapping lookup fails
    """
    is_mirror = transaction.has_tag_prefix(mirror_prefixes)

    if transaction.deleted:
        return Deleted(transaction, is_mirror)

    # Mapping lookups use the source slot: on this ledger the transaction
    # can only ever sit in that column.
    mapping = await find_mapping(store, direction.source_slot, transaction.id)
    if mapping is not None and not direction.owns(mapping):
        mapping = None

    if is_mirror:
        if mapping is None or mapping.source_budget is not direction.target_slot:
            return Ignored(transaction, "untracked_mirror")
        return MirrorDrift(transaction, mapping)

    if mapping is not None:
        if mapping.source_budget is direction.source_slot:
            return SourceDrift(transaction, mapping)
        return Ignored(transaction, "tracked_as_mirror")

    pair = direction.pair_for_source_account(transaction.account_id)
    if pair is None:
        return Ignored(transaction, "unlinked_account")
    if transaction.amount == 0:
        return Ignored(transaction, "zero_amount")
    return NewCandidate(transaction, pair)
