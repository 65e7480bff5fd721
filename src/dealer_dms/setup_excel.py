"""Bootstrap a fresh dealership workbook and its ``config.ini``."""

from __future__ import annotations

import argparse
import configparser
from pathlib import Path
from typing import Sequence

from . import data_manager, log
from .constants import (
    DEFAULT_DEALERSHIP_NAME,
    DEFAULT_DISCOUNT_PERK_TEXT,
    DEFAULT_DISCOUNT_THRESHOLD_USD,
    EXPECTED_SCHEMA_VERSION,
)


DATA_FILE = "dealership.xlsx"


def create_master_workbook(destination: Path, *, force: bool = False) -> Path:
    """Create an empty workbook with every sheet and header in place.

    Raises:
        FileExistsError: If ``destination`` exists and ``force`` is false.
    """

    dest = Path(destination).expanduser().resolve()
    if dest.exists() and not force:
        raise FileExistsError(f"'{dest}' already exists. Remove it or pass --force to re-initialize.")

    workbook = data_manager.build_workbook(data_manager.empty_snapshot())
    data_manager.save_workbook(workbook, dest)
    log.info("Created dealership workbook '%s'", dest)
    return dest


def write_default_config(config_path: Path, data_file: str = DATA_FILE, *, force: bool = False) -> Path:
    """Write a ``config.ini`` pointing at ``data_file``.

    Raises:
        FileExistsError: If ``config_path`` exists and ``force`` is false.
    """

    path = Path(config_path).expanduser().resolve()
    if path.exists() and not force:
        raise FileExistsError(f"'{path}' already exists. Remove it or pass --force to overwrite.")

    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str  # keep CamelCase option names
    parser["System"] = {
        "DataFile": data_file,
        "DealershipName": DEFAULT_DEALERSHIP_NAME,
        "SchemaVersion": EXPECTED_SCHEMA_VERSION,
    }
    parser["Defaults"] = {
        "DiscountThresholdUSD": str(DEFAULT_DISCOUNT_THRESHOLD_USD),
        "DiscountPerkText": DEFAULT_DISCOUNT_PERK_TEXT,
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        parser.write(handle)
    log.info("Wrote configuration file '%s'", path)
    return path


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="dms-setup",
        description="Initialize a new dealership workbook and config.ini.",
    )
    parser.add_argument("--directory", type=Path, default=Path.cwd(), help="Where to create the files.")
    parser.add_argument("--data-file", default=DATA_FILE, help="Workbook file name (default: %(default)s).")
    parser.add_argument("--force", action="store_true", help="Overwrite existing files.")
    args = parser.parse_args(argv)

    directory = args.directory
    try:
        workbook_path = create_master_workbook(directory / args.data_file, force=args.force)
        config_path = write_default_config(directory / data_manager.CONFIG_FILE_NAME, args.data_file, force=args.force)
    except FileExistsError as error:
        log.error("%s", error)
        return 1

    print(f"Created '{workbook_path}'.")
    print(f"Created '{config_path}'.")
    print("You can now run 'dms-cli' to manage the dealership.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
