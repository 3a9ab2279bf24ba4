"""Business logic layer for the territory ledger.

This module contains the attribution rule table, the in-memory registry of
representatives and territories, the accumulation pass that folds the
transaction stream into running balances, and the transactional write-back
of those balances. All file access goes through the data access layer.
"""

from __future__ import annotations

import copy
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from . import data_manager, log
from .constants import UNSET_AMOUNT, UNSET_TERRITORY_ID, Direction, TransactionType
from .errors import (
    ConfigurationError,
    EncodingOverflow,
    MalformedRecord,
    NotFoundError,
    UnknownRepresentative,
    UnknownTerritory,
)


@dataclass(frozen=True)
class Attribution:
    """Share of a transaction amount credited to the territory and the representative."""

    territory_percent: int
    representative_percent: int
    direction: Direction

    def territory_delta(self, amount: int) -> int:
        return attributed_amount(self.territory_percent, amount, self.direction)

    def representative_delta(self, amount: int) -> int:
        return attributed_amount(self.representative_percent, amount, self.direction)


RULE_TABLE: Mapping[TransactionType, Attribution] = {
    TransactionType.SALE: Attribution(100, 100, Direction.INCREASE),
    TransactionType.VALUE_ADDED: Attribution(100, 110, Direction.INCREASE),
    TransactionType.CREDIT: Attribution(100, 100, Direction.DECREASE),
    TransactionType.CANCEL: Attribution(100, 125, Direction.DECREASE),
    TransactionType.PROMO: Attribution(100, 0, Direction.DECREASE),
    TransactionType.DISCOUNT: Attribution(100, 110, Direction.DECREASE),
    # Counted by the selling territory as a SALE elsewhere.
    TransactionType.INTER_TERRITORY: Attribution(0, 75, Direction.INCREASE),
}


def attributed_amount(percent: int, amount: int, direction: Direction) -> int:
    """Apply ``percent`` to ``amount`` with floor division, then the sign.

    The sign is applied after the division so that decreases mirror increases
    exactly: 125% of 3 is 3 either way.
    """

    return int(direction) * ((percent * amount) // 100)


def attribution(transaction_type: Union[TransactionType, int]) -> Attribution:
    """Return the attribution rule for a transaction type.

    Args:
        transaction_type (TransactionType | int): Enum member or its backing
            integer code.

    Returns:
        Attribution: Territory percent, representative percent and direction.

    Raises:
        MalformedRecord: If ``transaction_type`` is not a supported code.
    """

    try:
        member = TransactionType(transaction_type)
    except ValueError as exc:
        log.error("Unsupported transaction type: %s", transaction_type)
        raise MalformedRecord(f"unsupported transaction type {transaction_type}") from exc
    return RULE_TABLE[member]


@dataclass
class Representative:
    """Running balance of one sales representative."""

    representative_id: int
    territory_id: int = UNSET_TERRITORY_ID
    amount: int = UNSET_AMOUNT
    source_offset: Optional[int] = None
    source_length: Optional[int] = None

    @property
    def is_loaded(self) -> bool:
        return self.territory_id != UNSET_TERRITORY_ID

    def to_row(self) -> data_manager.RepresentativeRow:
        return data_manager.RepresentativeRow(
            representative_id=self.representative_id,
            territory_id=self.territory_id,
            amount=self.amount,
        )


@dataclass
class Territory:
    """Running total of one territory."""

    territory_id: int
    amount: int = 0

    def to_row(self) -> data_manager.TerritoryRow:
        return data_manager.TerritoryRow(territory_id=self.territory_id, amount=self.amount)


@dataclass
class Registry:
    """Owns every representative and territory slot of a single run.

    Both collections are keyed by id and pre-allocated for ids ``1..count``;
    nothing is created lazily.
    """

    representatives: Dict[int, Representative] = field(default_factory=dict)
    territories: Dict[int, Territory] = field(default_factory=dict)

    @classmethod
    def initialize(cls, count: int) -> "Registry":
        """Pre-allocate ``count`` sentinel representatives and zeroed territories.

        Raises:
            ConfigurationError: If ``count`` is lower than one.
        """

        if count < 1:
            log.error("Entity count must be at least 1, got %d", count)
            raise ConfigurationError(f"Entity count must be at least 1, got {count}")
        registry = cls(
            representatives={entity_id: Representative(entity_id) for entity_id in range(1, count + 1)},
            territories={entity_id: Territory(entity_id) for entity_id in range(1, count + 1)},
        )
        log.debug("Initialized registry with %d slots", count)
        return registry

    @property
    def count(self) -> int:
        return len(self.representatives)

    def find(self, representative_id: int) -> Representative:
        """Return the representative slot for ``representative_id``.

        Raises:
            NotFoundError: If the id was never allocated.
        """

        try:
            return self.representatives[representative_id]
        except KeyError as exc:
            raise NotFoundError(f"Representative id {representative_id} is outside 1..{self.count}") from exc

    def territory(self, territory_id: int) -> Territory:
        """Return the territory slot for ``territory_id``.

        Raises:
            NotFoundError: If the id was never allocated.
        """

        try:
            return self.territories[territory_id]
        except KeyError as exc:
            raise NotFoundError(f"Territory id {territory_id} is outside 1..{len(self.territories)}") from exc

    def representative_of(self, representative_id: int) -> int:
        """Return the territory id owning ``representative_id``."""

        return self.find(representative_id).territory_id

    def loaded_representatives(self) -> List[Representative]:
        """Representatives populated from the balance file, in id order."""

        return [rep for _, rep in sorted(self.representatives.items()) if rep.is_loaded]

    def ordered_territories(self) -> List[Territory]:
        return [territory for _, territory in sorted(self.territories.items())]

    def clone(self) -> "Registry":
        """Deep copy, so balances can be changed without touching this registry."""

        return copy.deepcopy(self)


@dataclass(frozen=True)
class AccumulationSummary:
    """Counters describing one accumulation pass."""

    transactions_applied: int
    by_type: Mapping[TransactionType, int]


@dataclass(frozen=True)
class BatchResult:
    """Outcome of :func:`run_batch`."""

    settings: data_manager.ConfigSettings
    registry: Registry
    representatives_loaded: int
    summary: AccumulationSummary


def load_representatives(registry: Registry, handle: BinaryIO, *, source: Optional[str] = None) -> int:
    """Populate registry slots from an open balance file.

    Every record replaces the sentinel of the slot with the same id and
    remembers the byte offset and length it was read from.

    Args:
        registry (Registry): Freshly initialized registry.
        handle (BinaryIO): Balance file opened in binary mode.
        source (str | None): Name used in error messages.

    Returns:
        int: Number of representatives loaded.

    Raises:
        MalformedRecord: If a record cannot be decoded, names an id outside
            the registry, or repeats an id already loaded.
    """

    loaded = 0
    for record in data_manager.iter_balance_records(handle, source=source):
        row = record.row
        try:
            representative = registry.find(row.representative_id)
        except NotFoundError as exc:
            raise MalformedRecord(str(exc), source=source, line_number=record.line_number) from exc
        if representative.source_offset is not None:
            raise MalformedRecord(
                f"duplicate record for representative {row.representative_id}",
                source=source,
                line_number=record.line_number,
            )
        representative.territory_id = row.territory_id
        representative.amount = row.amount
        representative.source_offset = record.offset
        representative.source_length = record.length
        loaded += 1
        log.debug(
            "Loaded representative %d (territory %d, amount %d) at offset %d",
            row.representative_id,
            row.territory_id,
            row.amount,
            record.offset,
        )
    return loaded


def resolve_representative(registry: Registry, representative_id: int) -> Representative:
    """Return a representative that was actually loaded from the balance file.

    Raises:
        UnknownRepresentative: If the id is outside the registry or its slot
            still holds the sentinel.
    """

    try:
        representative = registry.find(representative_id)
    except NotFoundError as exc:
        log.warning("Representative lookup failed for id %d", representative_id)
        raise UnknownRepresentative(f"Unknown representative id: {representative_id}") from exc
    if not representative.is_loaded:
        log.warning("Representative %d has no balance record", representative_id)
        raise UnknownRepresentative(f"Unknown representative id: {representative_id}")
    return representative


def resolve_territory(registry: Registry, representative: Representative) -> Territory:
    """Return the territory owning ``representative``.

    Raises:
        UnknownTerritory: If the representative's territory id is outside the
            registry.
    """

    try:
        return registry.territory(representative.territory_id)
    except NotFoundError as exc:
        log.warning(
            "Territory lookup failed for id %d (representative %d)",
            representative.territory_id,
            representative.representative_id,
        )
        raise UnknownTerritory(
            f"Representative {representative.representative_id} belongs to unknown territory "
            f"{representative.territory_id}"
        ) from exc


def compute_deltas(transaction: data_manager.TransactionRow) -> Tuple[int, int]:
    """Return ``(territory_delta, representative_delta)`` for a transaction."""

    rule = attribution(transaction.transaction_type)
    return rule.territory_delta(transaction.amount), rule.representative_delta(transaction.amount)


def apply_transaction(registry: Registry, transaction: data_manager.TransactionRow) -> Tuple[int, int]:
    """Apply one transaction to the registry balances.

    Both the representative and its territory are resolved, and the deltas
    computed, before either balance changes, so a failed lookup leaves the
    registry exactly as it was.

    Returns:
        tuple[int, int]: The territory and representative deltas applied.
    """

    representative = resolve_representative(registry, transaction.representative_id)
    territory = resolve_territory(registry, representative)
    territory_delta, representative_delta = compute_deltas(transaction)

    territory.amount += territory_delta
    representative.amount += representative_delta
    log.debug(
        "Applied %s transaction %d: territory %d %+d, representative %d %+d",
        transaction.transaction_type.name,
        transaction.transaction_id,
        territory.territory_id,
        territory_delta,
        representative.representative_id,
        representative_delta,
    )
    return territory_delta, representative_delta


def accumulate(registry: Registry, transactions: Iterable[data_manager.TransactionRow]) -> AccumulationSummary:
    """Fold a transaction stream into the registry in a single forward pass.

    The first failing transaction aborts the pass; its error propagates
    unchanged.
    """

    by_type: Counter = Counter()
    applied = 0
    for transaction in transactions:
        apply_transaction(registry, transaction)
        by_type[transaction.transaction_type] += 1
        applied += 1
    log.info("Applied %d transactions", applied)
    return AccumulationSummary(transactions_applied=applied, by_type=dict(by_type))


def rank_representatives(registry: Registry) -> List[Representative]:
    """Loaded representatives ordered by ascending amount, ties broken by id."""

    return sorted(
        registry.loaded_representatives(),
        key=lambda rep: (rep.amount, rep.representative_id),
    )


def encode_representatives(registry: Registry) -> List[data_manager.RecordPatch]:
    """Encode every loaded representative into a positional patch.

    Raises:
        EncodingOverflow: If a value outgrows its fixed width, or the encoded
            record would not fill exactly the bytes it was read from.
    """

    patches: List[data_manager.RecordPatch] = []
    for representative in registry.loaded_representatives():
        payload = data_manager.serialize_representative(representative.to_row()).encode(
            data_manager.RECORD_ENCODING
        )
        if representative.source_length is not None and len(payload) != representative.source_length:
            log.error(
                "Representative %d record is %d bytes, its slot holds %d",
                representative.representative_id,
                len(payload),
                representative.source_length,
            )
            raise EncodingOverflow(
                f"Representative {representative.representative_id} record is {len(payload)} bytes "
                f"but its slot in the balance file holds {representative.source_length}"
            )
        patches.append(data_manager.RecordPatch(offset=representative.source_offset, payload=payload))
    return patches


def flush_representatives(
    registry: Registry,
    handle: BinaryIO,
    *,
    patches: Optional[List[data_manager.RecordPatch]] = None,
) -> int:
    """Rewrite every loaded representative at the offset it was read from.

    All records are encoded before the first byte is written. Callers that
    already encoded the registry pass ``patches`` to skip a second pass.

    Returns:
        int: Number of records written.
    """

    if patches is None:
        patches = encode_representatives(registry)
    data_manager.overwrite_records(handle, patches)
    log.info("Rewrote %d representative records", len(patches))
    return len(patches)


def _territory_rows(registry: Registry) -> List[data_manager.TerritoryRow]:
    return [territory.to_row() for territory in registry.ordered_territories()]


def write_territories(registry: Registry, territory_file: Path) -> int:
    """Write one line per territory id, ascending, including idle territories."""

    rows = _territory_rows(registry)
    data_manager.write_territories(territory_file, rows)
    log.info("Wrote %d territory records to '%s'", len(rows), territory_file)
    return len(rows)


def persist_registry(registry: Registry, handle: BinaryIO, territory_file: Path) -> None:
    """Flush representatives and territories only once both encode cleanly.

    Territories are staged next to ``territory_file`` and moved into place
    after the balance file has been patched; if patching fails the staged
    file is discarded and the previous territory output is left as it was.
    """

    patches = encode_representatives(registry)
    rows = _territory_rows(registry)
    staged = data_manager.stage_territories(territory_file, rows)
    try:
        flush_representatives(registry, handle, patches=patches)
    except BaseException:
        data_manager.discard_territories(staged)
        raise
    data_manager.commit_territories(staged, territory_file)
    log.info("Persisted %d representatives and %d territories", len(patches), len(rows))


def ensure_runnable(settings: data_manager.ConfigSettings) -> None:
    """Validate settings before anything is read or written.

    Raises:
        ConfigurationError: If the count is below one or an input file is
            missing or not a regular file.
    """

    if settings.entity_count < 1:
        log.error("Entity count must be at least 1, got %d", settings.entity_count)
        raise ConfigurationError(f"Entity count must be at least 1, got {settings.entity_count}")

    for label, path in (
        ("Balance file", settings.balance_file),
        ("Transaction file", settings.transaction_file),
    ):
        if not Path(path).is_file():
            log.error("%s not found: %s", label, path)
            raise ConfigurationError(f"{label} not found: {path}")


def run_batch(settings: data_manager.ConfigSettings) -> BatchResult:
    """Run one full batch: load balances, apply transactions, write back.

    The balance file stays open from load to write-back. Every transaction is
    applied in memory and every record encoded before any file is modified,
    so a failure at any step leaves the balance and territory files as they
    were.

    Args:
        settings (ConfigSettings): Entity count and the file locations.

    Returns:
        BatchResult: The final registry and run counters.
    """

    ensure_runnable(settings)
    registry = Registry.initialize(settings.entity_count)
    source = str(settings.balance_file)

    try:
        handle = data_manager.open_balance_file(settings.balance_file)
    except OSError as exc:
        raise ConfigurationError(f"Unable to open balance file {source}: {exc}") from exc

    with handle:
        loaded = load_representatives(registry, handle, source=source)
        log.info("Loaded %d representatives from '%s'", loaded, source)
        summary = accumulate(registry, data_manager.iter_transactions(settings.transaction_file))
        persist_registry(registry, handle, settings.territory_file)

    log.info("Batch complete for '%s'", settings.transaction_file)
    return BatchResult(
        settings=settings,
        registry=registry,
        representatives_loaded=loaded,
        summary=summary,
    )
