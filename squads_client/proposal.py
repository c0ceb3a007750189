"""
Proposal voting lifecycle.

States and legal moves:

    Draft -> Active -> Approved -> Executing -> Executed
                    -> Rejected
                    -> Cancelled

Rejected, Executed and Cancelled are terminal. A proposal whose transaction
index is at or below the multisig's stale transaction index is void whatever
its stored status says.

Everything here is pure: votes return a new Proposal snapshot that the caller
turns into an instruction; the ledger applies the authoritative change.
"""

from dataclasses import replace
from enum import Enum
from typing import Optional

from solders.pubkey import Pubkey

from .errors import AlreadyVoted, InsufficientPermission, NotAMember, StaleProposal, WrongState
from .types import Multisig, Permission, Proposal, ProposalState, ProposalStatus


class ProposalEvent(Enum):
    ACTIVATE = "activate"
    APPROVAL_THRESHOLD = "approval_threshold"
    REJECTION_CUTOFF = "rejection_cutoff"
    CANCEL_THRESHOLD = "cancel_threshold"
    BEGIN_EXECUTION = "begin_execution"
    EXECUTE = "execute"


class Vote(Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


TERMINAL_STATES = frozenset({ProposalState.REJECTED, ProposalState.EXECUTED, ProposalState.CANCELLED})

_TRANSITIONS = {
    (ProposalState.DRAFT, ProposalEvent.ACTIVATE): ProposalState.ACTIVE,
    (ProposalState.ACTIVE, ProposalEvent.APPROVAL_THRESHOLD): ProposalState.APPROVED,
    (ProposalState.ACTIVE, ProposalEvent.REJECTION_CUTOFF): ProposalState.REJECTED,
    (ProposalState.ACTIVE, ProposalEvent.CANCEL_THRESHOLD): ProposalState.CANCELLED,
    (ProposalState.APPROVED, ProposalEvent.BEGIN_EXECUTION): ProposalState.EXECUTING,
    (ProposalState.EXECUTING, ProposalEvent.EXECUTE): ProposalState.EXECUTED,
    # execution is atomic from the caller's side
    (ProposalState.APPROVED, ProposalEvent.EXECUTE): ProposalState.EXECUTED,
}

_VOTE_EVENTS = {
    Vote.APPROVE: ProposalEvent.APPROVAL_THRESHOLD,
    Vote.REJECT: ProposalEvent.REJECTION_CUTOFF,
    Vote.CANCEL: ProposalEvent.CANCEL_THRESHOLD,
}


def transition(state: ProposalState, event: ProposalEvent) -> ProposalState:
    """Return the state ``event`` leads to from ``state``, or raise WrongState."""
    try:
        return _TRANSITIONS[(ProposalState(state), event)]
    except KeyError:
        raise WrongState(f"Cannot {event.value} a proposal in state {ProposalState(state).name}") from None


def is_terminal(state: ProposalState) -> bool:
    return state in TERMINAL_STATES


def is_stale(proposal: Proposal, multisig: Multisig) -> bool:
    return proposal.transaction_index <= multisig.stale_transaction_index


def _votes_needed(vote: Vote, multisig: Multisig) -> int:
    if vote is Vote.REJECT:
        return multisig.cutoff()
    return multisig.threshold


def check_vote(proposal: Proposal, multisig: Multisig, voter: Pubkey, vote: Vote) -> None:
    """Raise if ``voter`` may not cast ``vote`` on ``proposal``."""
    member = multisig.member(voter)
    if member is None:
        raise NotAMember(f"{voter} is not a member of the multisig")
    if not member.has(Permission.VOTE):
        raise InsufficientPermission(f"{voter} does not have the Vote permission")
    if proposal.has_voted(voter):
        raise AlreadyVoted(f"{voter} already voted on proposal {proposal.transaction_index}")
    if is_stale(proposal, multisig):
        raise StaleProposal(
            f"Proposal {proposal.transaction_index} is stale "
            f"(stale index {multisig.stale_transaction_index})"
        )
    if proposal.state is not ProposalState.ACTIVE:
        raise WrongState(f"Cannot {vote.value} a proposal in state {proposal.state.name}")


def cast_vote(
    proposal: Proposal,
    multisig: Multisig,
    voter: Pubkey,
    vote: Vote,
    now: Optional[int] = None,
) -> Proposal:
    """
    Record ``vote`` and advance the status once its threshold is reached.

    Approval needs ``threshold`` votes, rejection needs ``cutoff()`` votes
    (voters - threshold + 1), cancellation needs ``threshold`` votes.
    ``now`` stamps a status change; without it the previous timestamp is kept.
    """
    check_vote(proposal, multisig, voter, vote)

    if vote is Vote.APPROVE:
        proposal = replace(proposal, approved=proposal.approved + (voter,))
        count = len(proposal.approved)
    elif vote is Vote.REJECT:
        proposal = replace(proposal, rejected=proposal.rejected + (voter,))
        count = len(proposal.rejected)
    else:
        proposal = replace(proposal, cancelled=proposal.cancelled + (voter,))
        count = len(proposal.cancelled)

    if count >= _votes_needed(vote, multisig):
        new_state = transition(proposal.state, _VOTE_EVENTS[vote])
        proposal = replace(proposal, status=_stamp(new_state, proposal.status, now))
    return proposal


def activate(proposal: Proposal, now: Optional[int] = None) -> Proposal:
    new_state = transition(proposal.state, ProposalEvent.ACTIVATE)
    return replace(proposal, status=_stamp(new_state, proposal.status, now))


def can_execute(proposal: Proposal, multisig: Multisig, now: int) -> bool:
    """Approved, not stale, and the multisig's time lock has passed since approval."""
    if proposal.state is not ProposalState.APPROVED or is_stale(proposal, multisig):
        return False
    return now - (proposal.status.timestamp or 0) >= multisig.time_lock


def check_execute(proposal: Proposal, multisig: Multisig, executor: Pubkey) -> None:
    member = multisig.member(executor)
    if member is None:
        raise NotAMember(f"{executor} is not a member of the multisig")
    if not member.has(Permission.EXECUTE):
        raise InsufficientPermission(f"{executor} does not have the Execute permission")
    if is_stale(proposal, multisig):
        raise StaleProposal(f"Proposal {proposal.transaction_index} is stale")
    transition(proposal.state, ProposalEvent.EXECUTE)


def execute(proposal: Proposal, now: Optional[int] = None) -> Proposal:
    new_state = transition(proposal.state, ProposalEvent.EXECUTE)
    return replace(proposal, status=_stamp(new_state, proposal.status, now))


def _stamp(state: ProposalState, previous: ProposalStatus, now: Optional[int]) -> ProposalStatus:
    if state is ProposalState.EXECUTING:
        return ProposalStatus(state)
    return ProposalStatus(state, now if now is not None else previous.timestamp)


def effective_state(proposal: Proposal, multisig: Multisig) -> Optional[ProposalState]:
    """Stored state, or None for a stale proposal that has not already reached a terminal state."""
    if is_stale(proposal, multisig) and not is_terminal(proposal.state):
        return None
    return proposal.state
