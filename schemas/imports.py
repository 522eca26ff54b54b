# schemas/imports.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

ConnectorId = Literal["csv_v1", "json_v1", "wallet_evm_v1"]


class RawPosition(BaseModel):
    """One parsed/discovered holding before enrichment and filtering."""

    symbol: str
    name: Optional[str] = None
    quantity: Optional[float] = None
    price_usd: Optional[float] = None
    value_usd: Optional[float] = None
    currency: Optional[str] = None
    role: Optional[str] = None          # free-form hint, normalized by the assembler
    meta: Dict[str, Any] = Field(default_factory=dict)


class ProposedAsset(BaseModel):
    id: str
    name: str
    risk_class: str
    role: str
    current_weight: float
    expected_return: float
    volatility: float
    source_value_usd: Optional[float] = None


class PreviewWarning(BaseModel):
    code: str
    detail: Optional[str] = None
    count: Optional[int] = None
    samples: Optional[List[str]] = None


class PreviewResult(BaseModel):
    ok: bool
    summary: str
    warnings: List[PreviewWarning] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    raw_positions: Optional[List[RawPosition]] = None
    proposed_assets: Optional[List[ProposedAsset]] = None

    @classmethod
    def failure(
        cls,
        summary: str,
        errors: List[str],
        warnings: Optional[List[PreviewWarning]] = None,
    ) -> "PreviewResult":
        return cls(ok=False, summary=summary, warnings=list(warnings or []), errors=list(errors))


# ── Request payloads ───────────────────────────────────────────────────

class CsvPreviewRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    csv_text: str = ""
    provider_hint: Optional[str] = None


class JsonPreviewRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    json_text: str = ""
    provider_hint: Optional[str] = None


class WalletPreviewRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address: str = ""
    # a chain key, "auto", "all", a comma-separated list, or a list of keys
    chain: Optional[Union[str, List[str]]] = None


class ImportPreviewRequest(BaseModel):
    connector_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class ConnectorInfo(BaseModel):
    id: ConnectorId
    version: str
    display_name: str
