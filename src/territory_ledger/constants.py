"""Enumerations and fixed-format constants shared across the ledger modules.

Centralises the transaction type codes and the balance file record layout so
that the codec, the attribution engine and the CLI rely on a single source of
truth.
"""

from __future__ import annotations

from enum import Enum, IntEnum


# Sentinel values carried by a representative slot until the balance file
# provides a record for it.
UNSET_TERRITORY_ID = -1
UNSET_AMOUNT = -1

FIELD_SEPARATOR = ","

# Zero-padded widths of the rewritten representative record.
REPRESENTATIVE_ID_WIDTH = 4
TERRITORY_ID_WIDTH = 5
AMOUNT_WIDTH = 7


class TransactionType(IntEnum):
    """Enumerate the transaction codes found in the transaction file."""

    SALE = 1
    VALUE_ADDED = 2
    CREDIT = 3
    CANCEL = 4
    PROMO = 5
    DISCOUNT = 6
    INTER_TERRITORY = 7


class Direction(IntEnum):
    """Sign applied to an attributed amount."""

    INCREASE = 1
    DECREASE = -1


class SheetName(str, Enum):
    """Enumerate the worksheet names written by the balance report."""

    REPRESENTATIVES = "Representatives"
    TERRITORIES = "Territories"


__all__ = [
    "UNSET_TERRITORY_ID",
    "UNSET_AMOUNT",
    "FIELD_SEPARATOR",
    "REPRESENTATIVE_ID_WIDTH",
    "TERRITORY_ID_WIDTH",
    "AMOUNT_WIDTH",
    "TransactionType",
    "Direction",
    "SheetName",
]
