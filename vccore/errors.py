from __future__ import annotations


class CredentialProtocolError(Exception):
    """Base class for every failure raised by the credential protocol."""


class CanonicalizationError(CredentialProtocolError, ValueError):
    """A value cannot be serialized canonically (caller bug, never retried)."""

    def __init__(self, message: str, path: str = "$") -> None:
        super().__init__(f"{message} at {path}")
        self.path = path


class ProofGenerationError(CredentialProtocolError):
    pass


class SigningError(CredentialProtocolError):
    """The delegated signer refused or could not be reached.

    ``reason`` is one of ``key_unavailable``, ``unauthorized`` or
    ``secret_store``.  ``transient`` errors may be retried by the caller
    before anything has been persisted.
    """

    def __init__(self, message: str, *, reason: str = "key_unavailable", transient: bool = False) -> None:
        super().__init__(message)
        self.reason = reason
        self.transient = transient


class AnchorError(CredentialProtocolError):
    """An anchor write was reverted or the anchor could not be reached.

    ``code`` carries the revert reason verbatim (``ALREADY_ISSUED``,
    ``ALREADY_REVOKED``, ``NOT_FOUND``, ``UNAUTHORIZED``, ``PAUSED``,
    ``UNAVAILABLE``).
    """

    def __init__(self, message: str, *, code: str = "UNAVAILABLE", retryable: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable


class ContentStoreError(CredentialProtocolError):
    pass


class DuplicateIssuanceError(CredentialProtocolError):
    def __init__(self, subject_id: str, credential_id: str | None = None) -> None:
        detail = f"A credential has already been issued for subject {subject_id}"
        if credential_id:
            detail += f" (credential_id={credential_id})"
        super().__init__(detail)
        self.subject_id = subject_id
        self.credential_id = credential_id


class IssuanceStateError(CredentialProtocolError):
    pass


class ApplicationNotFoundError(CredentialProtocolError):
    pass


class CredentialNotFoundError(CredentialProtocolError):
    pass


class RegistryPersistenceError(CredentialProtocolError):
    """The registry could not record a step the anchor already accepted.

    Retrying the same operation is safe and restores the registry row.
    """
