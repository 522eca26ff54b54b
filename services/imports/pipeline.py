# services/imports/pipeline.py
from __future__ import annotations

import logging
from typing import List, Optional

from schemas.imports import PreviewResult, PreviewWarning, RawPosition
from services.imports.assembler import build_preview_from_raw
from services.imports.enrichment import PriceRegistry, enrich_positions
from services.imports.filters import FilterOptions, filter_positions

logger = logging.getLogger(__name__)


async def normalize_positions(
    raw_positions: List[RawPosition],
    *,
    registry: Optional[PriceRegistry],
    filter_options: FilterOptions,
    summary: str,
    warnings: Optional[List[PreviewWarning]] = None,
    empty_error: str = "No positions could be parsed.",
) -> PreviewResult:
    """
    enrich -> filter -> assemble.
    `summary` may contain "{count}", filled with the number of surviving positions.
    """
    out_warnings: List[PreviewWarning] = list(warnings or [])
    if not raw_positions:
        return PreviewResult.failure("No positions found.", [empty_error], out_warnings)

    report = await enrich_positions(raw_positions, registry)
    out_warnings.extend(report.warnings())

    outcome = filter_positions(raw_positions, filter_options)
    out_warnings.extend(outcome.warnings())

    if not outcome.kept:
        logger.info("imports.all_filtered input=%s reasons=%s", len(raw_positions), outcome.counts)
        return PreviewResult.failure(
            "All positions were filtered out.",
            [f"None of the {len(raw_positions)} position(s) passed validation; see warnings for reasons."],
            out_warnings,
        )

    return build_preview_from_raw(
        outcome.kept,
        summary=summary.format(count=len(outcome.kept)),
        warnings=out_warnings,
        empty_error=empty_error,
    )
