# services/imports/json_connector.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from config.import_config import ImportConfig
from schemas.imports import JsonPreviewRequest, PreviewResult, RawPosition
from services.imports.enrichment import PriceRegistry
from services.imports.field_aliases import clean_text, parse_number, pick_field, sanitize_symbol
from services.imports.filters import FilterOptions
from services.imports.pipeline import normalize_positions
from services.imports.types import ImportConnector

logger = logging.getLogger(__name__)

ARRAY_KEYS = ("positions", "rows", "assets", "data", "holdings")


def _extract_rows(parsed: Any) -> List[Any]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in ARRAY_KEYS:
            maybe = parsed.get(key)
            if isinstance(maybe, list):
                return maybe
    return []


def parse_json_to_raw_positions(json_text: str) -> List[RawPosition]:
    """Raises json.JSONDecodeError on malformed input."""
    out: List[RawPosition] = []
    for row in _extract_rows(json.loads(json_text)):
        if not isinstance(row, dict):
            continue
        symbol = sanitize_symbol(pick_field(row, "symbol"))
        if not symbol:
            continue
        quantity = parse_number(pick_field(row, "quantity"))
        price_usd = parse_number(pick_field(row, "price_usd"))
        value_usd = parse_number(pick_field(row, "value_usd"))
        if value_usd is None and quantity is not None and price_usd is not None:
            value_usd = quantity * price_usd
        out.append(
            RawPosition(
                symbol=symbol,
                name=clean_text(pick_field(row, "name")) or symbol,
                quantity=quantity,
                price_usd=price_usd,
                value_usd=value_usd,
                currency=clean_text(pick_field(row, "currency")),
                role=clean_text(pick_field(row, "role")),
                meta={"source": "json_v1"},
            )
        )
    return out


class JsonConnector(ImportConnector):
    id = "json_v1"
    version = "v1"
    display_name = "JSON (Positions)"

    def __init__(self, config: ImportConfig, *, price_registry: Optional[PriceRegistry] = None):
        self.config = config
        self.price_registry = price_registry

    async def _preview(self, payload: Dict[str, Any]) -> PreviewResult:
        try:
            req = JsonPreviewRequest.model_validate(payload)
        except ValidationError:
            return PreviewResult.failure("Invalid request.", ["Payload must include 'json_text' as a string."])

        if not req.json_text.strip():
            return PreviewResult.failure("JSON text is empty.", ["JSON text is empty."])

        try:
            raw_positions = parse_json_to_raw_positions(req.json_text)
        except json.JSONDecodeError as exc:
            return PreviewResult.failure("Invalid JSON.", [f"Invalid JSON: {exc}"])

        logger.info("imports.json_parsed rows=%s", len(raw_positions))
        return await normalize_positions(
            raw_positions,
            registry=self.price_registry,
            filter_options=FilterOptions.for_tabular(self.config),
            summary="Parsed {count} position(s) from JSON.",
            empty_error="No positions could be parsed from the JSON.",
        )
