"""
aiswitch.core.errors — Exception taxonomy for the completion layer.

Two families:

* **Preconditions** (``ValidationError``, ``ConfigurationError``) are raised
  synchronously before any network activity and must be handled by the caller.
* **Call failures** (``TransportError``, ``VendorError``, ``ParseError``) are
  always caught at the adapter boundary and folded into
  ``CompletionResult.error``; they never reach the caller of ``complete()``.

Every error carries a symbolic ``code`` that ends up verbatim in the
normalised error result.
"""

from __future__ import annotations


class AISwitchError(Exception):
    """Base exception for all aiswitch errors."""

    code: str = "unknown_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(AISwitchError):
    """The submitted conversation is malformed (empty, or same-role adjacent turns)."""

    code = "invalid_messages"


class ConfigurationError(AISwitchError):
    """The adapter or service is not configured well enough to make a call."""

    code = "missing_api_key"


class NoActiveClientError(ConfigurationError):
    """The orchestration service could not resolve an adapter for the active vendor."""

    code = "no_active_client"


class UnknownVendorError(ConfigurationError):
    """A vendor id outside the registry was requested."""

    code = "unknown_vendor"


class TransportError(AISwitchError):
    """Network or connection failure talking to the vendor."""

    code = "network_error"


class VendorError(AISwitchError):
    """Non-success HTTP status or a vendor-reported error envelope."""

    code = "vendor_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code


class ParseError(AISwitchError):
    """Response or stream payload did not have the expected shape."""

    code = "invalid_response"


class CredentialStoreError(AISwitchError):
    """The hosted credential backend rejected or failed a request."""

    code = "credential_store_error"
