"""Mapping from warning codes to skip/fail decisions.

Whether a warning aborts ingest is a pure function of its code and the
asset-processing policy, never of the call site that produced it.
"""

from __future__ import annotations

from typing import Literal

from context_engine.errors import AssetProcessingError, IngestError, UnsupportedAssetError
from context_engine.ingestion.asset_config import AssetProcessingConfig
from context_engine.models import IngestWarning, WarningCode

PolicyField = Literal["on_unsupported_asset", "on_error"]

# ``None`` means the warning is always recoverable.
GOVERNING_POLICY: dict[WarningCode, PolicyField | None] = {
    WarningCode.UNSUPPORTED_KIND: "on_unsupported_asset",
    WarningCode.EXTRACTION_DISABLED: "on_unsupported_asset",
    WarningCode.PDF_LLM_EXTRACTION_DISABLED: "on_unsupported_asset",
    WarningCode.IMAGE_NO_MULTIMODAL_AND_NO_CAPTION: "on_unsupported_asset",
    WarningCode.PROCESSING_ERROR: "on_error",
    WarningCode.EXTRACTION_EMPTY: None,
    WarningCode.PDF_EMPTY_EXTRACTION: None,
}


def warning_is_fatal(code: WarningCode, policy: AssetProcessingConfig) -> bool:
    """Return ``True`` when *code* must abort ingest under *policy*."""
    field = GOVERNING_POLICY[code]
    return field is not None and getattr(policy, field) == "fail"


def error_for(warning: IngestWarning) -> IngestError:
    """Build the exception raised for a fatal *warning*."""
    if warning.code is WarningCode.PROCESSING_ERROR:
        return AssetProcessingError(warning)
    return UnsupportedAssetError(warning)


def enforce(warning: IngestWarning, policy: AssetProcessingConfig) -> IngestWarning:
    """Raise for a fatal *warning*, otherwise hand it back for accumulation."""
    if warning_is_fatal(warning.code, policy):
        raise error_for(warning)
    return warning
