# property_import/errors.py
from __future__ import annotations


class PropertyImportError(Exception):
    """Base class for everything the import pipeline raises on purpose."""


# -----------------------------
# Infrastructure (fatal to a run)
# -----------------------------
class ConfigurationError(PropertyImportError):
    pass


class FeedUnavailableError(PropertyImportError):
    pass


class StoreUnavailableError(PropertyImportError):
    pass


# -----------------------------
# Completion service
# -----------------------------
class ModelCallError(PropertyImportError):
    def __init__(self, context: str, cause: BaseException | None = None):
        super().__init__(f"completion call failed for {context}: {cause}")
        self.context = context
        self.cause = cause


class ModelParseError(PropertyImportError):
    def __init__(self, message: str, raw: str | None = None):
        super().__init__(message)
        self.raw = raw


# -----------------------------
# Per-listing failures
# -----------------------------
class ListingValidationError(PropertyImportError):
    def __init__(self, missing_fields: list[str]):
        super().__init__(f"Missing required fields: {', '.join(missing_fields)}")
        self.missing_fields = list(missing_fields)


class ImageStageError(PropertyImportError):
    def __init__(self, url: str, stage: str, reason: str):
        super().__init__(f"{stage} failed for {url}: {reason}")
        self.url = url
        self.stage = stage
        self.reason = reason


class TransientImageError(ImageStageError):
    """5xx, timeouts, dropped connections. Worth another attempt."""


class PermanentImageError(ImageStageError):
    """404/403, non-image content, unsupported formats. Never retried."""


# -----------------------------
# Scheduling
# -----------------------------
class ImportAlreadyRunningError(PropertyImportError):
    def __init__(self) -> None:
        super().__init__("Import job is already running")
