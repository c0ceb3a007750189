"""Exception hierarchy for the Squads v4 client."""

from typing import Optional


class SquadsError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(SquadsError, ValueError):
    """Caller-supplied arguments violate a documented precondition."""


class InvalidArgument(ValidationError):
    """An instruction or derivation argument is out of range."""


class NotAMember(ValidationError):
    """The voter is not in the multisig's member list."""


class InsufficientPermission(ValidationError):
    """The member lacks the permission the operation needs."""


class AlreadyVoted(ValidationError):
    """The voter already appears in one of the proposal's vote sets."""


class MissingSigner(ValidationError):
    """A required transaction signer is not available to the signer."""


class CodecError(SquadsError):
    """Account bytes could not be decoded."""

    def __init__(self, message: str, address: Optional[str] = None):
        self.address = address
        if address:
            message = f"{message} (account {address})"
        super().__init__(message)


class DiscriminatorMismatch(CodecError):
    """The leading 8 bytes do not identify the expected account type."""


class TruncatedData(CodecError):
    """The data ends before the declared structure does."""


class InvalidEnumTag(CodecError):
    """A variant tag or option flag is outside the known range."""


class DerivationExhausted(SquadsError):
    """No bump seed produced an off-curve address."""


class NotFound(SquadsError):
    """The account does not exist on the ledger."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Account not found: {address}")


class TransportError(SquadsError):
    """Network or RPC failure."""


class TransactionFailed(TransportError):
    """The ledger processed the transaction and reported an error."""

    def __init__(self, signature: str, err):
        self.signature = signature
        self.err = err
        super().__init__(f"Transaction {signature} failed: {err}")


class ConfirmationTimeout(SquadsError):
    """The transaction was submitted but its confirmation was not observed in time."""

    def __init__(self, signature: str, attempts: int):
        self.signature = signature
        self.attempts = attempts
        super().__init__(f"Confirmation of {signature} not observed after {attempts} attempts")


class OperationCancelled(SquadsError):
    """The caller's deadline expired or the operation was cancelled."""

    def __init__(self, message: str, signature: Optional[str] = None):
        self.signature = signature
        super().__init__(message)


class StateError(SquadsError):
    """The proposal's status does not allow the requested vote or transition."""


class WrongState(StateError):
    """The transition is not legal from the proposal's current status."""


class StaleProposal(StateError):
    """The proposal's transaction index is at or below the multisig's stale index."""
