from redcap_export.redcap_metadata import (
    MetadataFetcher,
    MetadataResult,
    RedcapValidationError,
    fetch_metadata,
    sanitize_token,
)

__all__ = [
    "MetadataFetcher",
    "MetadataResult",
    "RedcapValidationError",
    "fetch_metadata",
    "sanitize_token",
]
