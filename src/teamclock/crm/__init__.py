"""CRM directory integration -- HTTP client and payload normalization.

- DirectoryClient: current-generation API with legacy fallback, tenacity retries
- classify_payload / normalize_record: pure shape detection and record cleanup
"""

from src.teamclock.crm.client import ApiGeneration, DirectoryClient, DirectoryFetch
from src.teamclock.crm.payloads import (
    PayloadShape,
    SkipReason,
    classify_payload,
    normalize_record,
)

__all__ = [
    "ApiGeneration",
    "DirectoryClient",
    "DirectoryFetch",
    "PayloadShape",
    "SkipReason",
    "classify_payload",
    "normalize_record",
]
