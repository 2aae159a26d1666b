"""Bootstrap an empty quota ledger workbook.

Run as ``quota-setup`` (or ``python -m quota_ledger.setup_workbook``) to build
the workbook named in ``config.ini``. The test suite calls
:func:`create_ledger_workbook` directly, so hand-made and test workbooks share
one layout.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import log
from .constants import DEFAULT_QUARTER, SheetName
from .data_manager import (
    CONFIG_FILE_NAME,
    SETTING_ARCHIVED_QUARTERS,
    SETTING_AVAILABLE_QUARTERS,
    SETTING_CURRENT_QUARTER,
    SHEET_COLUMNS,
    ConfigSettings,
    parse_settings,
    read_config,
    replace_sheet_rows,
)

HEADER_FONT = Font(bold=True)


def create_ledger_workbook(
    destination: Path,
    *,
    initial_quarter: str = DEFAULT_QUARTER,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty ledger workbook at ``destination``.

    Every sheet in ``sheet_columns`` gets a bold header row. The ``Settings``
    sheet starts with ``initial_quarter`` as the current and only available
    quarter and no archived quarters.

    Raises:
        FileExistsError: If the target exists and ``overwrite`` is ``False``.
    """

    target = Path(destination).expanduser().resolve()
    if target.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing ledger workbook: {target}")

    workbook = openpyxl.Workbook()
    placeholder = workbook.active
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        worksheet.append(list(columns))
        for cell in worksheet[1]:
            cell.font = HEADER_FONT
    if placeholder is not None:
        workbook.remove(placeholder)

    replace_sheet_rows(
        workbook,
        SheetName.SETTINGS.value,
        [
            (SETTING_CURRENT_QUARTER, initial_quarter),
            (SETTING_AVAILABLE_QUARTERS, initial_quarter),
            (SETTING_ARCHIVED_QUARTERS, ""),
        ],
    )

    target.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(target)
    log.info("Created ledger workbook at %s starting in %s", target, initial_quarter)
    return target


def load_settings(config_path: Path) -> ConfigSettings:
    """Read ``config.ini`` with relative paths anchored at its directory."""

    resolved = Path(config_path).expanduser().resolve()
    return parse_settings(read_config(resolved), base_path=resolved.parent)


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    settings = load_settings(config_path)
    return create_ledger_workbook(settings.data_file, initial_quarter=settings.initial_quarter, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="quota-setup", description="Create an empty quota ledger workbook.")
    parser.add_argument("--config", type=Path, default=Path(CONFIG_FILE_NAME), help="Path to config.ini.")
    parser.add_argument("--force", action="store_true", help="Replace the workbook if it already exists.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Create the configured workbook; returns 0 on success and 1 otherwise."""

    args = parse_args(argv)
    try:
        output_path = run_from_config(args.config, overwrite=args.force)
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Run with --force to replace it.")
        return 1
    except (OSError, KeyError, ValueError) as exc:
        log.error("Workbook setup from '%s' failed: %s", args.config, exc)
        print(f"[ERROR] {exc}")
        return 1

    print(f"Created ledger workbook '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
