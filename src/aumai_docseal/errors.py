"""Error taxonomy for aumai-docseal.

Every failure raised by the library derives from :class:`DocsealError`.  The
intermediate classes group errors by how a caller should react:

* :class:`MalformedInputError`: untrusted bytes could not be decoded.  Always
  recoverable; the message names the field and byte offset but never echoes
  document contents.
* :class:`TrustChainError`: the document does not chain to a trusted root.
  Report verification failure; do not retry blindly.
* :class:`TransientError`: network or ledger hiccup.  Safe to retry with
  backoff at the networking layer.
"""

from __future__ import annotations


class DocsealError(Exception):
    """Base class for every error raised by aumai-docseal."""


# ---------------------------------------------------------------------------
# Untrusted-input decoding failures
# ---------------------------------------------------------------------------


class MalformedInputError(DocsealError):
    """Untrusted input could not be decoded.

    Args:
        message: Human readable description.
        field: Name of the structure or field being decoded.
        offset: Byte offset within the decoded buffer, when known.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        offset: int | None = None,
    ) -> None:
        self.field = field
        self.offset = offset
        details = []
        if field is not None:
            details.append(f"field={field}")
        if offset is not None:
            details.append(f"offset={offset}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class MalformedCertificate(MalformedInputError):
    """An X.509 certificate could not be decoded."""


class MalformedSOD(MalformedInputError):
    """The Security Object Document could not be decoded."""


class MalformedDocument(MalformedInputError):
    """Document data-group or identity-record bytes could not be decoded."""


# ---------------------------------------------------------------------------
# Algorithm selection
# ---------------------------------------------------------------------------


class UnsupportedKeyAlgorithm(DocsealError):
    """The key or signature algorithm has no circuit dispatcher."""


# ---------------------------------------------------------------------------
# Trust chain failures
# ---------------------------------------------------------------------------


class TrustChainError(DocsealError):
    """The document does not chain to a trusted root."""


class NotFound(TrustChainError):
    """The requested certificate is absent from the trust tree."""


class UntrustedIssuer(TrustChainError):
    """The signing certificate's issuer is not trusted by the ledger state."""


# ---------------------------------------------------------------------------
# Transient network failures
# ---------------------------------------------------------------------------


class TransientError(DocsealError):
    """A transient ledger or relayer failure; the caller may retry."""


class ProofFetchFailed(TransientError):
    """The SMT proof could not be fetched or was malformed."""


class RegistrationSubmissionFailed(TransientError):
    """The relayer rejected or did not acknowledge a transaction."""


# ---------------------------------------------------------------------------
# Registration flow
# ---------------------------------------------------------------------------


class IdentityAlreadyRegisteredWithAnotherKey(DocsealError):
    """The passport is already bound to a different identity key.

    Callers offer revocation for this case only, so it never shares a base
    class with the other registration failures.
    """

    def __init__(self, message: str, *, active_identity: str | None = None) -> None:
        super().__init__(message)
        self.active_identity = active_identity


class RegistrationInProgress(DocsealError):
    """A registration attempt is already running for this session."""


class RegistrationCancelled(DocsealError):
    """The attempt was cancelled at a stage boundary."""


class QueryBoundsViolation(DocsealError):
    """The identity cannot satisfy the bounds of a query proof."""


__all__ = [
    "DocsealError",
    "IdentityAlreadyRegisteredWithAnotherKey",
    "MalformedCertificate",
    "MalformedDocument",
    "MalformedInputError",
    "MalformedSOD",
    "NotFound",
    "ProofFetchFailed",
    "QueryBoundsViolation",
    "RegistrationCancelled",
    "RegistrationInProgress",
    "RegistrationSubmissionFailed",
    "TransientError",
    "TrustChainError",
    "UnsupportedKeyAlgorithm",
    "UntrustedIssuer",
]
