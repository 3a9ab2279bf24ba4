"""Data access layer for the territory ledger.

This module provides the low-level helpers that read from and write to the
three flat files of a batch run. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Record codec: decoding and encoding the comma separated transaction,
   representative and territory records.
3. File operations: streaming records out of the input files, rewriting
   representative records at their original byte offset, and writing the
   territory output file.
"""


from __future__ import annotations

import configparser
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, List, Optional, Sequence, Tuple

from . import log
from .constants import (
    AMOUNT_WIDTH,
    FIELD_SEPARATOR,
    REPRESENTATIVE_ID_WIDTH,
    TERRITORY_ID_WIDTH,
    TransactionType,
)
from .errors import ConfigurationError, EncodingOverflow, MalformedRecord


CONFIG_FILE_NAME = "config.ini"
RECORD_ENCODING = "ascii"
LINE_TERMINATORS = "\r\n"
INTEGER_FIELD = re.compile(r"-?[0-9]+")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    entity_count: int
    balance_file: Path
    transaction_file: Path
    territory_file: Path
    report_file: Optional[Path] = None


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of one line of the transaction file."""

    transaction_id: int
    representative_id: int
    transaction_type: TransactionType
    amount: int


@dataclass(frozen=True)
class RepresentativeRow:
    """In-memory view of one line of the representative balance file."""

    representative_id: int
    territory_id: int
    amount: int


@dataclass(frozen=True)
class TerritoryRow:
    """In-memory view of one line of the territory output file."""

    territory_id: int
    amount: int


@dataclass(frozen=True)
class BalanceRecord:
    """A decoded balance line together with where it lives in the file."""

    offset: int
    length: int
    line_number: int
    row: RepresentativeRow


@dataclass(frozen=True)
class RecordPatch:
    """Encoded bytes destined for ``offset`` (``None`` appends to the file)."""

    offset: Optional[int]
    payload: bytes


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls a batch run.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the working
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _resolve_path(raw: str, base_path: Path) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative file entries are anchored to ``base_path`` when provided, or to
    the current working directory as a fallback. The ``Report`` entry is
    optional; every other entry is required.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative paths.

    Returns:
        ConfigSettings: Immutable settings with resolved paths.

    Raises:
        ConfigurationError: If a required entry is missing or ``EntityCount``
            is not an integer.
    """

    try:
        count_raw = parser.get("Ledger", "EntityCount")
        balances_raw = parser.get("Files", "Balances")
        transactions_raw = parser.get("Files", "Transactions")
        territories_raw = parser.get("Files", "Territories")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise ConfigurationError(f"Missing required configuration entry: {exc}") from exc

    try:
        entity_count = int(count_raw)
    except ValueError as exc:
        raise ConfigurationError(f"EntityCount must be an integer, got {count_raw!r}") from exc

    if base_path is None:
        base_path = Path.cwd()

    report_raw = parser.get("Files", "Report", fallback="").strip()

    return ConfigSettings(
        entity_count=entity_count,
        balance_file=_resolve_path(balances_raw, base_path),
        transaction_file=_resolve_path(transactions_raw, base_path),
        territory_file=_resolve_path(territories_raw, base_path),
        report_file=_resolve_path(report_raw, base_path) if report_raw else None,
    )


def split_record(
    line: str,
    field_count: int,
    *,
    source: Optional[str] = None,
    line_number: Optional[int] = None,
) -> List[int]:
    """Split a comma separated record into exactly ``field_count`` integers.

    A trailing ``\\n`` or ``\\r\\n`` is dropped before splitting so it never
    leaks into the last field.

    Raises:
        MalformedRecord: If the field count differs or a field is not an
            integer.
    """

    text = line.rstrip(LINE_TERMINATORS)
    fields = text.split(FIELD_SEPARATOR)
    if len(fields) != field_count:
        raise MalformedRecord(
            f"expected {field_count} fields, found {len(fields)}",
            source=source,
            line_number=line_number,
            line=text,
        )

    values: List[int] = []
    for position, field in enumerate(fields, start=1):
        # Plain ASCII digits only: no blanks, "+" or "_" separators.
        if not INTEGER_FIELD.fullmatch(field):
            raise MalformedRecord(
                f"field {position} is not an integer: {field!r}",
                source=source,
                line_number=line_number,
                line=text,
            )
        values.append(int(field))
    return values


def deserialize_transaction(
    line: str,
    *,
    source: Optional[str] = None,
    line_number: Optional[int] = None,
) -> TransactionRow:
    """Decode ``trxid,salerepid,type,amount`` into a :class:`TransactionRow`.

    The type code must belong to :class:`TransactionType`; an unsupported code
    is reported as a malformed record rather than skipped.
    """

    transaction_id, representative_id, type_code, amount = split_record(
        line, 4, source=source, line_number=line_number
    )
    try:
        transaction_type = TransactionType(type_code)
    except ValueError as exc:
        raise MalformedRecord(
            f"unsupported transaction type {type_code}",
            source=source,
            line_number=line_number,
            line=line.rstrip(LINE_TERMINATORS),
        ) from exc

    return TransactionRow(
        transaction_id=transaction_id,
        representative_id=representative_id,
        transaction_type=transaction_type,
        amount=amount,
    )


def deserialize_representative(
    line: str,
    *,
    source: Optional[str] = None,
    line_number: Optional[int] = None,
) -> RepresentativeRow:
    """Decode ``salerepid,territoryid,amount`` into a :class:`RepresentativeRow`."""

    representative_id, territory_id, amount = split_record(
        line, 3, source=source, line_number=line_number
    )
    return RepresentativeRow(
        representative_id=representative_id,
        territory_id=territory_id,
        amount=amount,
    )


def deserialize_territory(
    line: str,
    *,
    source: Optional[str] = None,
    line_number: Optional[int] = None,
) -> TerritoryRow:
    """Decode ``territoryid,amount`` into a :class:`TerritoryRow`."""

    territory_id, amount = split_record(line, 2, source=source, line_number=line_number)
    return TerritoryRow(territory_id=territory_id, amount=amount)


def _format_fixed(value: int, width: int, field: str) -> str:
    text = f"{value:0{width}d}"
    if len(text) > width:
        log.error("Value %d for %s does not fit in %d characters", value, field, width)
        raise EncodingOverflow(
            f"{field} {value} does not fit the {width}-character record field")
    return text


def serialize_representative(record: RepresentativeRow) -> str:
    """Encode a representative into its fixed-width balance file layout.

    The result is ``IIII,TTTTT,AAAAAAA`` (zero padded, sign included in the
    amount width) with no line terminator, so it can overwrite the original
    record in place.

    Raises:
        EncodingOverflow: If any field is wider than its padded width.
    """

    return FIELD_SEPARATOR.join(
        [
            _format_fixed(record.representative_id, REPRESENTATIVE_ID_WIDTH, "representative id"),
            _format_fixed(record.territory_id, TERRITORY_ID_WIDTH, "territory id"),
            _format_fixed(record.amount, AMOUNT_WIDTH, "amount"),
        ]
    )


def serialize_territory(record: TerritoryRow) -> str:
    """Encode a territory as ``territoryid,amount`` without a terminator."""

    return f"{record.territory_id}{FIELD_SEPARATOR}{record.amount}"


def open_balance_file(balance_file: Path) -> BinaryIO:
    """Open the representative balance file for read-then-rewrite.

    The handle is binary so that ``tell`` reports true byte offsets for each
    record. Callers own the handle and must close it.

    Raises:
        FileNotFoundError: If ``balance_file`` does not exist.
    """

    path = Path(balance_file).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Balance file not found: {path}")
    return open(path, "r+b")


def _iter_record_lines(handle: BinaryIO, *, source: Optional[str] = None) -> Iterator[Tuple[int, int, int, str]]:
    """Yield ``(offset, length, line_number, text)`` for every non-blank line.

    Offsets are taken before each line is consumed and lengths exclude the
    terminator.

    Raises:
        MalformedRecord: If a line holds bytes outside plain ASCII.
    """

    line_number = 0
    while True:
        offset = handle.tell()
        raw = handle.readline()
        if not raw:
            break
        line_number += 1
        body = raw.rstrip(b"\r\n")
        try:
            text = body.decode(RECORD_ENCODING)
        except UnicodeDecodeError as exc:
            raise MalformedRecord(
                "record is not plain ASCII",
                source=source,
                line_number=line_number,
                line=body.decode(RECORD_ENCODING, errors="replace"),
            ) from exc
        if not text.strip():
            continue
        yield offset, len(body), line_number, text


def iter_balance_records(handle: BinaryIO, *, source: Optional[str] = None) -> Iterator[BalanceRecord]:
    """Stream representative records from an open balance file.

    Blank lines are skipped and leave no record behind.

    Args:
        handle (BinaryIO): Balance file positioned where reading should start.
        source (str | None): Name used in error messages.

    Yields:
        BalanceRecord: The decoded row plus its location in the file.
    """

    for offset, length, line_number, text in _iter_record_lines(handle, source=source):
        row = deserialize_representative(text, source=source, line_number=line_number)
        yield BalanceRecord(offset=offset, length=length, line_number=line_number, row=row)


def iter_transactions(transaction_file: Path) -> Iterator[TransactionRow]:
    """Stream decoded transactions from the transaction file, one per line.

    Blank lines are ignored. Decoding happens lazily, so a malformed line
    surfaces when the iteration reaches it.
    """

    path = Path(transaction_file).expanduser().resolve()
    source = str(path)
    with open(path, "rb") as handle:
        for _, _, line_number, text in _iter_record_lines(handle, source=source):
            yield deserialize_transaction(text, source=source, line_number=line_number)


def overwrite_records(handle: BinaryIO, patches: Sequence[RecordPatch]) -> None:
    """Write each patch at its offset, or at the end of the file when unset.

    An appended record always starts on a fresh line. The handle is flushed
    once every patch has been written.
    """

    for patch in patches:
        if patch.offset is not None:
            handle.seek(patch.offset, os.SEEK_SET)
        else:
            end = handle.seek(0, os.SEEK_END)
            if end > 0:
                handle.seek(end - 1, os.SEEK_SET)
                if handle.read(1) != b"\n":
                    handle.write(b"\n")
        handle.write(patch.payload)
    handle.flush()


def stage_territories(territory_file: Path, records: Iterable[TerritoryRow]) -> Path:
    """Write every territory record to a temporary file beside ``territory_file``.

    Parent directories are created on demand. The staged file only becomes
    the territory output through :func:`commit_territories`.

    Returns:
        Path: Location of the staged file.
    """

    dest = Path(territory_file).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding=RECORD_ENCODING,
        newline="\n",
        dir=dest.parent,
        prefix=f".{dest.name}.",
        suffix=".tmp",
        delete=False,
    ) as handle:
        staged = Path(handle.name)
        try:
            for record in records:
                handle.write(serialize_territory(record))
                handle.write("\n")
        except BaseException:
            handle.close()
            staged.unlink(missing_ok=True)
            raise
    return staged


def commit_territories(staged: Path, territory_file: Path) -> None:
    """Atomically replace ``territory_file`` with a staged territory file."""

    os.replace(staged, Path(territory_file).expanduser().resolve())


def discard_territories(staged: Path) -> None:
    """Remove a staged territory file that will not be committed."""

    staged.unlink(missing_ok=True)


def write_territories(territory_file: Path, records: Iterable[TerritoryRow]) -> None:
    """Create or truncate the territory output file and write every record."""

    commit_territories(stage_territories(territory_file, records), territory_file)
