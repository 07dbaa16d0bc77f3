# msgbox/core/errors.py
"""
Exception hierarchy for message-box operations.

Crypto failures carry a fixed message only; the underlying library error is
never chained (raise ... from None) so callers cannot tell padding errors from
tag mismatches.
"""


class MessageBoxError(Exception):
    """Root of every error raised by msgbox."""


# ── Crypto ──────────────────────────────────────────────────────────────

class DecryptionFailed(MessageBoxError):
    def __init__(self, message: str = "Decryption failed"):
        super().__init__(message)


class EncryptionFailed(MessageBoxError):
    def __init__(self, message: str = "Encryption failed"):
        super().__init__(message)


class UnsupportedCurve(MessageBoxError):
    pass


class UnsupportedEncryptionFormat(MessageBoxError):
    pass


class MalformedKeyContainer(MessageBoxError):
    pass


class MalformedSignature(MessageBoxError):
    pass


# ── Binary codec ────────────────────────────────────────────────────────

class CBORDecodeError(MessageBoxError, ValueError):
    pass


class CBORTruncated(CBORDecodeError):
    pass


class CBORUnsupportedTag(CBORDecodeError):
    pass


# ── Protocol ────────────────────────────────────────────────────────────

class SecurityViolation(MessageBoxError):
    """A box's first entry failed ownership verification. Never retried."""

    category = "security"

    def __init__(self, box_id: str, detail: str):
        self.box_id = box_id
        self.detail = detail
        super().__init__(f"Security violation in message box {box_id}: {detail}")


class MissingStructure(SecurityViolation):
    category = "structure"


class AccountMismatch(SecurityViolation):
    category = "account"


class SignerMismatch(SecurityViolation):
    category = "signer"


class InvalidSignature(SecurityViolation):
    category = "signature"


class ChunkIncomplete(MessageBoxError):
    """Raised for a partial chunk group; caught inside reassembly only."""

    def __init__(self, group_key: str, reason: str):
        self.group_key = group_key
        self.reason = reason
        super().__init__(f"Incomplete chunked message (transaction {group_key}): {reason}")


class BoxNotFound(MessageBoxError):
    pass


class AccountNotFound(MessageBoxError):
    pass


class SetupAborted(MessageBoxError):
    pass


class LedgerError(MessageBoxError):
    """A ledger or read-replica call failed."""
