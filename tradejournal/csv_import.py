"""CSV trade import.

Accepts two layouts, detected from the header row:

- Broker export: Open, Symbol, Open Price, Volume, Action
  (optional Close, Close Price, Profit, Notes, Tags).
- Journal template: market, market_category, symbol, type, entry_price,
  quantity, entry_date plus any other trade field (see write_template()).

Rows are validated independently; a bad row is reported and skipped while
the rest of the file is imported.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pandas as pd

from .models import MarketCategory, Trade, TradeType, parse_datetime
from .storage import BackendError, JournalStore
from .trade_log import (
    TRADES_TABLE,
    TradeValidationError,
    fill_derived_fields,
    validate_trade,
)

logger = logging.getLogger(__name__)

BATCH_SIZE = 100

BROKER_REQUIRED = ["Open", "Symbol", "Open Price", "Volume", "Action"]
BROKER_OPTIONAL = ["Close", "Close Price", "Profit", "Notes", "Tags"]

TEMPLATE_REQUIRED = [
    "market",
    "market_category",
    "symbol",
    "type",
    "entry_price",
    "quantity",
    "entry_date",
]

TEMPLATE_COLUMNS = [
    "market",
    "market_category",
    "symbol",
    "type",
    "status",
    "entry_price",
    "exit_price",
    "quantity",
    "entry_date",
    "exit_date",
    "pnl",
    "pnl_percentage",
    "risk",
    "reward",
    "strategy",
    "tags",
    "notes",
    "stop_loss",
    "take_profit",
    "commission",
    "fees",
]

NUMERIC_FIELDS = [
    "entry_price",
    "exit_price",
    "quantity",
    "pnl",
    "pnl_percentage",
    "risk",
    "reward",
    "stop_loss",
    "take_profit",
    "commission",
    "fees",
]

SAMPLE_TRADES = [
    {
        "market": "EUREX",
        "market_category": "Futures",
        "symbol": "GER40",
        "type": "Long",
        "status": "Open",
        "entry_price": 18250.25,
        "quantity": 1,
        "entry_date": "2024-03-20T10:00:00Z",
        "strategy": "Swing Trading",
        "tags": "index;futures",
        "notes": "Entered on support level",
        "stop_loss": 18150.00,
        "take_profit": 18400.00,
    },
    {
        "market": "NYSE",
        "market_category": "Equities",
        "symbol": "AAPL",
        "type": "Long",
        "status": "Open",
        "entry_price": 150.25,
        "quantity": 10,
        "entry_date": "2024-03-20T10:00:00Z",
        "strategy": "Swing Trading",
        "tags": "tech;blue-chip",
        "notes": "Entered on support level",
        "stop_loss": 145.00,
        "take_profit": 160.00,
    },
    {
        "market": "NASDAQ",
        "market_category": "Equities",
        "symbol": "MSFT",
        "type": "Short",
        "status": "Closed",
        "entry_price": 380.50,
        "exit_price": 375.25,
        "quantity": 5,
        "entry_date": "2024-03-19T14:30:00Z",
        "exit_date": "2024-03-20T11:15:00Z",
        "pnl": 26.25,
        "pnl_percentage": 1.38,
        "strategy": "Day Trading",
        "tags": "tech;momentum",
        "notes": "Exited on resistance",
        "commission": 5.00,
        "fees": 2.50,
    },
]


class CSVImportError(Exception):
    """Raised when a CSV file cannot be imported at all."""


@dataclass
class ImportResult:
    """Outcome of a CSV import."""
    success: bool = True
    total: int = 0
    imported: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def message(self) -> str:
        lines = [
            f"Successfully imported {self.imported} trades.",
            f"Skipped {self.skipped} empty rows.",
        ]
        if self.failed:
            lines.append(f"Failed to import {self.failed} rows:")
            lines.extend(self.errors)
        elif self.errors:
            lines.extend(self.errors)
        return "\n".join(lines)


def _parse_number(value: str, field_name: str) -> float:
    cleaned = value.replace("$", "").replace(",", "").strip()
    try:
        return float(cleaned)
    except ValueError:
        raise ValueError(f"Invalid {field_name}: {value}. Must be a valid number.")


def _parse_date(value: str, field_name: str) -> str:
    try:
        return parse_datetime(value).isoformat()
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {field_name}: {value}. Must be a valid date.")


def _split_tags(value: str) -> list[str]:
    return [tag.strip() for tag in value.split(";") if tag.strip()]


def _finish_record(record: dict) -> dict:
    """Run trade-level validation and fill derived fields."""
    try:
        trade = Trade.from_record(record)
        validate_trade(trade)
    except TradeValidationError as e:
        raise ValueError(str(e))
    return fill_derived_fields(trade).to_record()


def _broker_row(row: dict) -> dict:
    missing = [name for name in BROKER_REQUIRED if not row.get(name)]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")

    action = row["Action"].lower()
    if action not in ("buy", "sell"):
        raise ValueError(f"Invalid Action: {row['Action']}. Must be either 'buy' or 'sell'")

    close_price = row.get("Close Price")
    record = {
        "symbol": row["Symbol"].upper(),
        "market": "Other",
        "market_category": MarketCategory.OTHER.value,
        "type": TradeType.LONG.value if action == "buy" else TradeType.SHORT.value,
        "status": "Closed" if close_price else "Open",
        "entry_price": _parse_number(row["Open Price"], "Open Price"),
        "exit_price": _parse_number(close_price, "Close Price") if close_price else None,
        "quantity": _parse_number(row["Volume"], "Volume"),
        "entry_date": _parse_date(row["Open"], "Open Date"),
        "exit_date": _parse_date(row["Close"], "Close Date") if row.get("Close") else None,
        "pnl": _parse_number(row["Profit"], "Profit") if row.get("Profit") else None,
        "notes": row.get("Notes") or None,
        "tags": _split_tags(row["Tags"]) if row.get("Tags") else [],
    }
    return _finish_record(record)


def _template_row(row: dict) -> dict:
    errors = []

    for name in TEMPLATE_REQUIRED:
        if not row.get(name):
            errors.append(f"{name} is required")

    category = row.get("market_category")
    if category and category not in [c.value for c in MarketCategory]:
        errors.append("Invalid market category")

    trade_type = row.get("type")
    if trade_type and trade_type not in [t.value for t in TradeType]:
        errors.append("Invalid trade type")

    record = {}
    for date_field in ("entry_date", "exit_date"):
        if row.get(date_field):
            try:
                record[date_field] = _parse_date(row[date_field], date_field)
            except ValueError:
                errors.append(f"Invalid {date_field} format")

    for name in NUMERIC_FIELDS:
        if row.get(name):
            try:
                record[name] = _parse_number(row[name], name)
            except ValueError:
                errors.append(f"{name} must be a number")

    if errors:
        raise ValueError("; ".join(errors))

    record.update({
        "market": row["market"],
        "market_category": category,
        "symbol": row["symbol"].upper(),
        "type": trade_type,
        "status": row.get("status") or "Open",
        "strategy": row.get("strategy") or None,
        "notes": row.get("notes") or None,
        "tags": _split_tags(row["tags"]) if row.get("tags") else [],
    })
    return _finish_record(record)


def _read_rows(csv_path: Path) -> pd.DataFrame:
    if not csv_path.exists():
        raise CSVImportError(f"CSV file not found: {csv_path}")

    try:
        df = pd.read_csv(
            csv_path,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
        )
    except pd.errors.EmptyDataError:
        raise CSVImportError(f"CSV file is empty: {csv_path}")
    except pd.errors.ParserError as e:
        raise CSVImportError(f"Could not parse CSV: {e}")

    df.columns = [str(col).strip() for col in df.columns]
    return df.fillna("")


def _detect_layout(columns: list[str]) -> tuple[str, dict[str, str]]:
    """Return layout name and a mapping from canonical to actual header."""
    lookup = {col.lower(): col for col in columns}

    if "action" in lookup or "open price" in lookup:
        missing = [name for name in BROKER_REQUIRED if name.lower() not in lookup]
        if missing:
            raise CSVImportError(f"Missing required columns: {', '.join(missing)}")
        names = BROKER_REQUIRED + BROKER_OPTIONAL
        return "broker", {name: lookup[name.lower()] for name in names if name.lower() in lookup}

    missing = [name for name in TEMPLATE_REQUIRED if name not in lookup]
    if missing:
        raise CSVImportError(f"Missing required columns: {', '.join(missing)}")
    return "template", {name: lookup[name] for name in TEMPLATE_COLUMNS if name in lookup}


def parse_trades_csv(csv_path: str) -> tuple[list[dict], ImportResult]:
    """Parse and validate a trade CSV without storing anything.

    Args:
        csv_path: Path to the CSV file.

    Returns:
        Tuple of (valid trade records, ImportResult with counts and errors).

    Raises:
        CSVImportError: If required columns are missing or no row is valid.
    """
    df = _read_rows(Path(csv_path))
    layout, header_map = _detect_layout(list(df.columns))
    convert = _broker_row if layout == "broker" else _template_row
    logger.info(f"Importing {csv_path} as {layout} layout ({len(df)} rows)")

    result = ImportResult(total=len(df))
    records = []

    for i, raw in enumerate(df.to_dict("records")):
        row = {name: str(raw[actual]).strip() for name, actual in header_map.items()}
        if not any(str(value).strip() for value in raw.values()):
            result.skipped += 1
            continue

        # Header is line 1
        line_number = i + 2
        try:
            records.append(convert(row))
        except ValueError as e:
            result.failed += 1
            result.errors.append(f"Row {line_number}: {e}")

    result.total -= result.skipped

    if not records:
        logger.warning(f"No valid trades in {csv_path}")
        detail = f": {result.errors[0]}" if result.errors else ""
        raise CSVImportError(f"No valid trades found in the CSV file{detail}")

    return records, result


def import_trades(
    csv_path: str,
    store: JournalStore,
    user_id: str,
    batch_size: int = BATCH_SIZE,
) -> ImportResult:
    """Import trades from CSV into the store.

    Args:
        csv_path: Path to the CSV file.
        store: Storage backend.
        user_id: Owner of the imported trades.
        batch_size: Rows per insert call.

    Returns:
        ImportResult. success is False if the backend rejected a batch.

    Raises:
        CSVImportError: If the file is unusable.
    """
    records, result = parse_trades_csv(csv_path)

    for record in records:
        record["user_id"] = user_id

    for start in range(0, len(records), batch_size):
        batch = records[start:start + batch_size]
        try:
            store.insert(TRADES_TABLE, batch)
        except BackendError as e:
            logger.error(f"Import stopped after {result.imported} trades: {e}")
            result.success = False
            result.errors.append(f"Database error: {e}")
            break
        result.imported += len(batch)

    logger.info(
        f"Imported {result.imported}/{result.total} trades "
        f"({result.failed} failed, {result.skipped} empty)"
    )
    return result


def write_template(output_path: str, trades: Optional[list[dict]] = None) -> Path:
    """Write the journal template CSV.

    Args:
        output_path: Destination file.
        trades: Rows to write (defaults to three sample trades).

    Returns:
        Path to written file.
    """
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    df = pd.DataFrame(trades if trades is not None else SAMPLE_TRADES, columns=TEMPLATE_COLUMNS)
    df.to_csv(path, index=False)

    logger.info(f"Template written to {path}")
    return path
