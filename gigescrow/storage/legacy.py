"""Import and export of the legacy single-document data file.

The original service kept everything in one JSON document holding an array
per entity type (``{"users": [...], "gigs": [...], "escrows": [...]}``).
These helpers move that document in and out of a record store without
changing entity shapes or ids.
"""

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Union

from gigescrow.disputes.models import Dispute
from gigescrow.errors import ConflictError
from gigescrow.escrow.models import Escrow
from gigescrow.storage.base import DISPUTES, ENTITY_GROUPS, ESCROWS, RecordStore
from gigescrow.utils import to_decimal

logger = logging.getLogger(__name__)

# Groups whose records must parse into their model before they are stored
VALIDATORS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    ESCROWS: Escrow.from_dict,
    DISPUTES: Dispute.from_dict,
}


def _is_valid(group: str, record: Dict[str, Any]) -> bool:
    validate = VALIDATORS.get(group)
    if validate is None:
        return True
    try:
        validate(record)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Skipping invalid {group} record {record['id']}: {e}")
        return False
    return True


def import_document(
    store: RecordStore, document: Dict[str, Any], overwrite: bool = False
) -> Dict[str, int]:
    """Load every known entity group from a legacy document.

    Escrow and dispute records that fail validation are skipped.

    Args:
        store: Destination record store
        document: Parsed legacy document
        overwrite: Replace records whose id already exists instead of skipping

    Returns:
        Number of records imported per entity group
    """
    counts: Dict[str, int] = {}
    for group, records in document.items():
        if group not in ENTITY_GROUPS:
            logger.warning(f"Skipping unknown entity group in legacy data: {group}")
            continue
        if not isinstance(records, list):
            raise ValueError(f"Entity group {group} must be a list")
        imported = 0
        for record in records:
            if not isinstance(record, dict) or not record.get("id"):
                logger.warning(f"Skipping {group} record without id")
                continue
            if not _is_valid(group, record):
                continue
            try:
                store.insert(group, record)
            except ConflictError:
                if not overwrite:
                    logger.info(f"Skipping existing {group} record {record['id']}")
                    continue
                store.delete(group, record["id"])
                store.insert(group, record)
            imported += 1
        counts[group] = imported
    return counts


def _json_amount(value: Any) -> Union[int, float]:
    amount = to_decimal(value)
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def export_document(store: RecordStore) -> Dict[str, Any]:
    """Dump every entity group into a legacy-shaped document.

    Escrow amounts are stored as decimal strings and exported as JSON
    numbers, which is how the legacy document holds them.
    """
    document = {group: store.all(group) for group in ENTITY_GROUPS}
    for record in document[ESCROWS]:
        if isinstance(record.get("amount"), (str, Decimal)):
            record["amount"] = _json_amount(record["amount"])
    return document


def load_file(store: RecordStore, path: Union[str, Path], overwrite: bool = False) -> Dict[str, int]:
    """Import a legacy data file from disk."""
    with open(path, "r", encoding="utf-8") as f:
        document = json.load(f)
    if not isinstance(document, dict):
        raise ValueError("Legacy data file must hold a JSON object")
    return import_document(store, document, overwrite=overwrite)


def dump_file(store: RecordStore, path: Union[str, Path]) -> Dict[str, int]:
    """Export the store into a legacy data file on disk."""
    document = export_document(store)
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2, default=str)
    return {group: len(records) for group, records in document.items()}
