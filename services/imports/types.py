# services/imports/types.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from schemas.imports import ConnectorId, ConnectorInfo, PreviewResult

logger = logging.getLogger(__name__)


class ImportConnector(ABC):
    """
    One import source. `preview` never raises: every failure comes back as
    PreviewResult(ok=False, errors=[...]).
    """

    id: ConnectorId
    version: str = "v1"
    display_name: str = ""

    def info(self) -> ConnectorInfo:
        return ConnectorInfo(id=self.id, version=self.version, display_name=self.display_name)

    async def preview(self, payload: Optional[Dict[str, Any]]) -> PreviewResult:
        try:
            return await self._preview(payload if isinstance(payload, dict) else {})
        except Exception as exc:
            logger.exception("imports.preview_crashed connector=%s", self.id)
            return PreviewResult.failure("Preview failed.", [f"{type(exc).__name__}: {exc}"])

    @abstractmethod
    async def _preview(self, payload: Dict[str, Any]) -> PreviewResult:
        ...
