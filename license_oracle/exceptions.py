"""
Custom exception hierarchy for the license oracle.

Each exception type maps to a specific category of failure, enabling
precise error handling at the seams where failures are allowed to surface.
Only RecognitionFailure and ConfigurationError ever escape a core component;
everything else is converted to a sentinel value at the component boundary.
"""

from __future__ import annotations


class LicenseOracleError(Exception):
    """Base exception for all license oracle failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(LicenseOracleError):
    """Required configuration is missing or malformed. Fatal at startup."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("CONFIGURATION_INVALID", message, details)


class RecognitionFailure(LicenseOracleError):
    """The image could not be decoded or the OCR engine failed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("RECOGNITION_FAILED", message, details)


class AgentPlatformError(LicenseOracleError):
    """A call to the remote agent platform failed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("AGENT_PLATFORM_ERROR", message, details)


class LedgerError(LicenseOracleError):
    """A ledger RPC or wallet operation failed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("LEDGER_ERROR", message, details)


class TransportError(LicenseOracleError):
    """The chat transport rejected a request."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("TRANSPORT_ERROR", message, details)
