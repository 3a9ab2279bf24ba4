"""Excel export of representative and territory balances.

The workbook is a read-only snapshot for people: the flat files stay the
system of record. Representatives are ranked by ascending balance, ties
broken by id; territories are listed in id order.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import core_logic, log
from .constants import SheetName

SHEET_COLUMNS: Mapping[SheetName, Sequence[str]] = {
    SheetName.REPRESENTATIVES: [
        "RepresentativeID",
        "TerritoryID",
        "Amount",
    ],
    SheetName.TERRITORIES: [
        "TerritoryID",
        "Amount",
    ],
}


def _write_header(worksheet, columns: Sequence[str]) -> None:
    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(columns, start=1):
        cell = worksheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font


def write_balance_report(
    registry: core_logic.Registry,
    destination: Path,
    *,
    include_territories: bool = True,
) -> Path:
    """Write the balance workbook for ``registry`` to ``destination``.

    Parent directories are created on demand and an existing file is
    replaced.

    Args:
        registry (Registry): Registry holding the balances to export.
        destination (Path): Target ``.xlsx`` path.
        include_territories (bool): Add the ``Territories`` sheet. Disabled
            when the territory totals were not computed for this snapshot.

    Returns:
        Path: The resolved destination.
    """

    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    representatives = workbook.create_sheet(title=SheetName.REPRESENTATIVES.value)
    _write_header(representatives, SHEET_COLUMNS[SheetName.REPRESENTATIVES])
    ranked = core_logic.rank_representatives(registry)
    for representative in ranked:
        representatives.append(
            [
                representative.representative_id,
                representative.territory_id,
                representative.amount,
            ]
        )

    if include_territories:
        territories = workbook.create_sheet(title=SheetName.TERRITORIES.value)
        _write_header(territories, SHEET_COLUMNS[SheetName.TERRITORIES])
        for territory in registry.ordered_territories():
            territories.append([territory.territory_id, territory.amount])

    workbook.save(destination)
    log.info("Wrote balance report for %d representatives to '%s'", len(ranked), destination)
    return destination


def load_balance_snapshot(count: int, balance_file: Path) -> core_logic.Registry:
    """Load the current balance file into a registry without applying transactions."""

    registry = core_logic.Registry.initialize(count)
    source = str(balance_file)
    with open(Path(balance_file).expanduser().resolve(), "rb") as handle:
        core_logic.load_representatives(registry, handle, source=source)
    return registry
