"""
Idempotency tags for mirrors.

A mirror carries an import id derived from its source transaction, so the
target ledger itself refuses a second mirror for the same source.

    LOAN:P:<24 hex of sha256(source id)>           normal creation
    LOAN:P:<12 hex>:<6 base36 of recreation time>  recreation after deletion
"""

import hashlib
import string
from datetime import datetime
from typing import Optional

_BASE36 = string.digits + string.ascii_lowercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def mirror_tag(
    source_tx_id: str,
    prefix: str,
    discriminator: str,
    max_length: int = 36,
    recreated_at: Optional[datetime] = None,
) -> str:
    """
    Build the import id of a mirror.

    Pure: the same arguments always give the same tag. Without
    `recreated_at` the tag depends only on the source id and direction,
    which is what makes a re-run after a crash collide instead of
    duplicating.
    """
    digest = hashlib.sha256(source_tx_id.encode("utf-8")).hexdigest()
    if recreated_at is None:
        tag = f"{prefix}:{discriminator}:{digest[:24]}"
    else:
        stamp = _base36(int(recreated_at.timestamp() * 1000))[-6:]
        tag = f"{prefix}:{discriminator}:{digest[:12]}:{stamp}"
    return tag[:max_length]

