# services/imports/csv_connector.py
from __future__ import annotations

import csv
import io
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from config.import_config import ImportConfig
from schemas.imports import CsvPreviewRequest, PreviewResult, RawPosition
from services.imports.enrichment import PriceRegistry
from services.imports.field_aliases import clean_text, parse_number, resolve_header_indexes, sanitize_symbol
from services.imports.filters import FilterOptions
from services.imports.pipeline import normalize_positions
from services.imports.types import ImportConnector

logger = logging.getLogger(__name__)

DELIMITERS = (",", ";", "\t")


def detect_delimiter(header_line: str) -> str:
    """Pick the delimiter that splits the header the most; comma on ties."""
    best, best_count = ",", header_line.count(",")
    for d in DELIMITERS[1:]:
        n = header_line.count(d)
        if n > best_count:
            best, best_count = d, n
    return best


def parse_csv_rows(text: str) -> List[List[str]]:
    """Rows with trimmed cells; blank lines dropped. Quotes are escaped by doubling ("")."""
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return []
    reader = csv.reader(io.StringIO("\n".join(lines)), delimiter=detect_delimiter(lines[0]), quotechar='"')
    return [[cell.strip() for cell in row] for row in reader if any(cell.strip() for cell in row)]


def _cell(row: List[str], idx: Optional[int]) -> Optional[str]:
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def parse_csv_to_raw_positions(csv_text: str) -> List[RawPosition]:
    rows = parse_csv_rows(csv_text)
    if not rows:
        return []
    header_map = resolve_header_indexes(rows[0])

    out: List[RawPosition] = []
    for row in rows[1:]:
        symbol = sanitize_symbol(_cell(row, header_map.get("symbol")))
        if not symbol:
            continue
        quantity = parse_number(_cell(row, header_map.get("quantity")))
        price_usd = parse_number(_cell(row, header_map.get("price_usd")))
        value_usd = parse_number(_cell(row, header_map.get("value_usd")))
        if value_usd is None and quantity is not None and price_usd is not None:
            value_usd = quantity * price_usd
        out.append(
            RawPosition(
                symbol=symbol,
                name=clean_text(_cell(row, header_map.get("name"))) or symbol,
                quantity=quantity,
                price_usd=price_usd,
                value_usd=value_usd,
                currency=clean_text(_cell(row, header_map.get("currency"))),
                role=clean_text(_cell(row, header_map.get("role"))),
                meta={"source": "csv_v1", "header_map": dict(header_map)},
            )
        )
    return out


class CsvConnector(ImportConnector):
    id = "csv_v1"
    version = "v1"
    display_name = "CSV (Brokerage Export)"

    def __init__(self, config: ImportConfig, *, price_registry: Optional[PriceRegistry] = None):
        self.config = config
        self.price_registry = price_registry

    async def _preview(self, payload: Dict[str, Any]) -> PreviewResult:
        try:
            req = CsvPreviewRequest.model_validate(payload)
        except ValidationError:
            return PreviewResult.failure("Invalid request.", ["Payload must include 'csv_text' as a string."])

        if not req.csv_text.strip():
            return PreviewResult.failure("CSV text is empty.", ["CSV text is empty."])

        try:
            raw_positions = parse_csv_to_raw_positions(req.csv_text)
        except csv.Error as exc:
            return PreviewResult.failure("Invalid CSV.", [f"Could not parse CSV: {exc}"])

        logger.info("imports.csv_parsed rows=%s", len(raw_positions))
        return await normalize_positions(
            raw_positions,
            registry=self.price_registry,
            filter_options=FilterOptions.for_tabular(self.config),
            summary="Parsed {count} position(s) from CSV.",
            empty_error="No positions could be parsed from the CSV.",
        )
