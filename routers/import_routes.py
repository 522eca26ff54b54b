# routers/import_routes.py
import json
import logging
from functools import lru_cache
from typing import List

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from config.import_config import ImportConfig
from middleware.rate_limit import IMPORT_PREVIEW_RATE_LIMIT, limiter
from schemas.imports import ConnectorInfo, ImportPreviewRequest, PreviewResult
from services.imports.registry import ConnectorRegistry, build_connector_registry

logger = logging.getLogger(__name__)
router = APIRouter(tags=["imports"])


@lru_cache(maxsize=1)
def get_connector_registry() -> ConnectorRegistry:
    """Built once per process so the token-balance cache is shared across requests."""
    return build_connector_registry(ImportConfig.from_env())


def _error_response(status_code: int, summary: str, errors: List[str]) -> JSONResponse:
    body = PreviewResult.failure(summary, errors)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@router.get("/connectors", response_model=List[ConnectorInfo])
async def list_connectors():
    return get_connector_registry().list_connectors()


@router.post("/preview", response_model=PreviewResult, response_model_exclude_none=True)
@limiter.limit(IMPORT_PREVIEW_RATE_LIMIT)
async def preview_import(request: Request):
    try:
        body = ImportPreviewRequest.model_validate(await request.json())
    except (json.JSONDecodeError, ValidationError):
        return _error_response(
            400, "Invalid request.", ["Body must be {\"connector_id\": str, \"payload\": object}."]
        )

    try:
        registry = get_connector_registry()
    except Exception:
        logger.exception("imports.registry_unavailable")
        return _error_response(500, "Import service unavailable.", ["Import service is misconfigured."])

    connector = registry.get_connector(body.connector_id)
    if connector is None:
        return _error_response(400, "Unknown connector.", [f"Unknown connector_id '{body.connector_id}'."])

    result = await connector.preview(body.payload)
    logger.info(
        "imports.preview request_id=%s connector=%s ok=%s assets=%s warnings=%s",
        getattr(request.state, "request_id", None),
        connector.id,
        result.ok,
        len(result.proposed_assets or []),
        [w.code for w in result.warnings],
    )
    return result
