"""Creator Vetting Pipeline - Errors
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Exception taxonomy shared by the pipeline components.
"""


class VettingError(Exception):
    """Base class for pipeline errors."""


class FetchError(VettingError):
    """A platform fetch failed or returned nothing usable."""

    def __init__(self, platform: str, message: str):
        super().__init__(f"{platform}: {message}")
        self.platform = platform


class AnalysisError(VettingError):
    """An analysis tier's external call failed after its retry budget."""


class ConfigError(VettingError):
    """A required credential or endpoint is missing or malformed."""


class RecoveryError(VettingError):
    """Reconciliation could not locate or parse a provider result."""
