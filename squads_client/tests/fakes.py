"""In-memory stand-ins for the ledger used across the test modules."""

from typing import Optional

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from squads_client.codec import encode
from squads_client.pda import get_proposal_pda
from squads_client.transport import SignatureStatus, Transport
from squads_client.types import (
    ALL_PERMISSIONS,
    Member,
    Multisig,
    Permission,
    Proposal,
    ProposalState,
    ProposalStatus,
)


def key(n: int) -> Pubkey:
    """Deterministic test address."""
    return Pubkey.from_bytes(bytes([n]) * 32)


def make_multisig(members, threshold: int = 2, stale_transaction_index: int = 0,
                  transaction_index: int = 1, time_lock: int = 0, config_authority=None) -> Multisig:
    return Multisig(
        create_key=key(200),
        config_authority=config_authority,
        threshold=threshold,
        time_lock=time_lock,
        transaction_index=transaction_index,
        stale_transaction_index=stale_transaction_index,
        rent_collector=None,
        bump=254,
        members=[m if isinstance(m, Member) else Member(m, ALL_PERMISSIONS) for m in members],
    )


def make_proposal(multisig: Pubkey, transaction_index: int = 1, state: ProposalState = ProposalState.ACTIVE,
                  timestamp: int = 1_700_000_000, approved=(), rejected=(), cancelled=()) -> Proposal:
    return Proposal(
        multisig=multisig,
        transaction_index=transaction_index,
        status=ProposalStatus(state, None if state is ProposalState.EXECUTING else timestamp),
        bump=253,
        approved=approved,
        rejected=rejected,
        cancelled=cancelled,
    )


VOTE_ONLY = int(Permission.VOTE)


class FakeTransport(Transport):
    """
    Ledger double. Accounts are served from ``accounts``; ``failures`` lists
    exceptions raised by the next calls to ``method`` before succeeding.
    ``confirm_after`` is the number of None polls before a status is reported.
    """

    def __init__(self, accounts: Optional[dict] = None, confirm_after: int = 0):
        self.accounts = dict(accounts or {})
        self.confirm_after = confirm_after
        self.failures = {}
        self.calls = []
        self.submitted = []

    def put(self, address: Pubkey, account) -> None:
        self.accounts[address] = encode(account)

    def put_proposal(self, multisig: Pubkey, proposal: Proposal) -> None:
        self.put(get_proposal_pda(multisig, proposal.transaction_index)[0], proposal)

    def fail(self, method: str, *errors: Exception) -> None:
        self.failures.setdefault(method, []).extend(errors)

    def _record(self, method: str) -> None:
        self.calls.append(method)
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def latest_blockhash(self) -> Hash:
        self._record("latest_blockhash")
        return Hash.new_unique()

    def submit(self, transaction: Transaction) -> Signature:
        self._record("submit")
        self.submitted.append(transaction)
        return transaction.signatures[0]

    def confirm(self, signature: Signature, commitment: str = "confirmed") -> Optional[SignatureStatus]:
        self._record("confirm")
        if self.calls.count("confirm") <= self.confirm_after:
            return None
        return SignatureStatus(slot=1, confirmation_status=commitment)

    def fetch_account(self, address: Pubkey) -> Optional[bytes]:
        self._record("fetch_account")
        return self.accounts.get(address)