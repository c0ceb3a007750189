"""
High-level Squads v4 operations against a ledger transport.

Write operations derive their addresses, build the instruction, sign, submit
and wait for confirmation. Read operations fetch raw account bytes and decode
them, raising NotFound for a missing account and a CodecError for a corrupt one.

Only this layer retries, and only transport failures: validation and codec
errors surface immediately, and a transaction the ledger rejected is never
resubmitted.
"""

import logging
import threading
import time
from typing import Callable, Optional, Sequence, Type, TypeVar

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from tenacity import (
    RetryError,
    Retrying,
    retry_any,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from . import instructions as ix
from . import pda
from . import proposal as lifecycle
from .codec import decode
from .config import ClientConfig
from .errors import (
    ConfirmationTimeout,
    InsufficientPermission,
    InvalidArgument,
    MissingSigner,
    NotAMember,
    NotFound,
    OperationCancelled,
    TransactionFailed,
    TransportError,
    WrongState,
)
from .message import compile_transaction_message
from .signing import TransactionSigner
from .transport import RpcTransport, Transport
from .types import (
    ConfigAction,
    ConfigTransaction,
    Member,
    Multisig,
    Period,
    Permission,
    ProgramConfig,
    Proposal,
    ProposalState,
    SpendingLimit,
    VaultTransaction,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Deadline:
    """Time budget and cancellation flag for one client call. ``seconds=None`` never expires."""

    def __init__(
        self,
        seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        cancelled: Optional[threading.Event] = None,
    ):
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds
        self.cancelled = cancelled if cancelled is not None else threading.Event()

    def cancel(self) -> None:
        self.cancelled.set()

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        if self.cancelled.is_set():
            return True
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self, what: str, signature: Optional[str] = None) -> None:
        if self.expired():
            raise OperationCancelled(f"{what} cancelled before completion", signature)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TransportError) and not isinstance(exc, TransactionFailed)


class SquadsClient:
    def __init__(
        self,
        transport: Transport,
        signer: Optional[TransactionSigner] = None,
        config: Optional[ClientConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.transport = transport
        self.signer = signer
        self.config = config or ClientConfig()
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, config: ClientConfig, signer: Optional[TransactionSigner] = None) -> "SquadsClient":
        transport = RpcTransport(config.endpoint, config.commitment, config.request_timeout)
        return cls(transport, signer, config)

    @property
    def program_id(self) -> Pubkey:
        return self.config.program_id

    def _now(self) -> int:
        return int(self._clock())

    # -- retry plumbing --

    def _stop(self, deadline: Deadline):
        return stop_any(
            stop_after_attempt(self.config.max_attempts),
            lambda retry_state: deadline.expired(),
        )

    def _wait(self, deadline: Deadline):
        backoff = wait_exponential(multiplier=self.config.backoff_initial, max=self.config.backoff_max)

        def wait(retry_state) -> float:
            # never sleep past the deadline
            remaining = deadline.remaining()
            delay = backoff(retry_state)
            return delay if remaining is None else min(delay, remaining)

        return wait

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception()
        if exc is not None:
            logger.warning(f"Transport failure on attempt {retry_state.attempt_number}, retrying: {exc}")

    def _with_retry(self, what: str, fn: Callable[..., T], *args, deadline: Deadline,
                    signature: Optional[str] = None) -> T:
        def attempt() -> T:
            deadline.check(what, signature)
            return fn(*args)

        retrying = Retrying(
            stop=self._stop(deadline),
            wait=self._wait(deadline),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            return retrying(attempt)
        except TransportError as e:
            if _is_retryable(e) and deadline.expired():
                raise OperationCancelled(f"{what} cancelled after transport failure: {e}", signature) from e
            raise

    def _await_confirmation(self, signature: Signature, deadline: Deadline) -> None:
        polls = 0

        def poll():
            nonlocal polls
            if deadline.expired():
                raise ConfirmationTimeout(str(signature), polls)
            polls += 1
            return self.transport.confirm(signature, self.config.commitment)

        poller = Retrying(
            stop=self._stop(deadline),
            wait=self._wait(deadline),
            retry=retry_any(retry_if_result(lambda status: status is None), retry_if_exception(_is_retryable)),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )
        try:
            poller(poll)
        except RetryError:
            raise ConfirmationTimeout(str(signature), polls) from None

    def _send(self, action: str, instructions: Sequence[Instruction], deadline: Optional[Deadline] = None,
              extra_signers: Sequence[Keypair] = ()) -> Signature:
        signer = self._require_signer()
        deadline = deadline or Deadline()

        blockhash: Hash = self._with_retry(f"{action} blockhash", self.transport.latest_blockhash,
                                           deadline=deadline)
        message = Message.new_with_blockhash(list(instructions), signer.pubkey, blockhash)
        transaction = signer.sign(message, blockhash, extra_signers)
        pending = str(transaction.signatures[0])

        signature = self._with_retry(action, self.transport.submit, transaction,
                                     deadline=deadline, signature=pending)
        logger.info(f"{action}: submitted {signature}")
        self._await_confirmation(signature, deadline)
        logger.info(f"{action}: confirmed {signature} ({self.config.commitment})")
        return signature

    def _require_signer(self) -> TransactionSigner:
        if self.signer is None:
            raise MissingSigner("This operation needs a signer")
        return self.signer

    def _require_member(self, multisig: Multisig, key: Pubkey, permission: Permission) -> Member:
        member = multisig.member(key)
        if member is None:
            raise NotAMember(f"{key} is not a member of the multisig")
        if not member.has(permission):
            raise InsufficientPermission(f"{key} does not have the {permission.name.title()} permission")
        return member

    # -- reads --

    def _fetch(self, account_type: Type[T], address: Pubkey, deadline: Optional[Deadline] = None) -> T:
        deadline = deadline or Deadline()
        data = self._with_retry(f"fetch {address}", self.transport.fetch_account, address, deadline=deadline)
        if data is None:
            raise NotFound(str(address))
        return decode(account_type, data, str(address))

    def get_multisig(self, multisig: Pubkey, deadline: Optional[Deadline] = None) -> Multisig:
        return self._fetch(Multisig, multisig, deadline)

    def get_proposal(self, multisig: Pubkey, transaction_index: int,
                     deadline: Optional[Deadline] = None) -> Proposal:
        address, _ = pda.get_proposal_pda(multisig, transaction_index, self.program_id)
        return self._fetch(Proposal, address, deadline)

    def get_vault_transaction(self, multisig: Pubkey, transaction_index: int,
                              deadline: Optional[Deadline] = None) -> VaultTransaction:
        address, _ = pda.get_transaction_pda(multisig, transaction_index, self.program_id)
        return self._fetch(VaultTransaction, address, deadline)

    def get_config_transaction(self, multisig: Pubkey, transaction_index: int,
                               deadline: Optional[Deadline] = None) -> ConfigTransaction:
        address, _ = pda.get_transaction_pda(multisig, transaction_index, self.program_id)
        return self._fetch(ConfigTransaction, address, deadline)

    def get_spending_limit(self, spending_limit: Pubkey, deadline: Optional[Deadline] = None) -> SpendingLimit:
        return self._fetch(SpendingLimit, spending_limit, deadline)

    def get_program_config(self, deadline: Optional[Deadline] = None) -> ProgramConfig:
        address, _ = pda.get_program_config_pda(self.program_id)
        return self._fetch(ProgramConfig, address, deadline)

    def pending_proposals(self, multisig: Pubkey, member: Pubkey,
                          deadline: Optional[Deadline] = None) -> list[Proposal]:
        """Active, non-stale proposals ``member`` has not voted on, oldest first."""
        deadline = deadline or Deadline()
        ms = self.get_multisig(multisig, deadline)
        pending = []
        for index in range(ms.stale_transaction_index + 1, ms.transaction_index + 1):
            try:
                p = self.get_proposal(multisig, index, deadline)
            except NotFound:
                continue
            if p.state is ProposalState.ACTIVE and not p.has_voted(member):
                pending.append(p)
        return pending

    # -- writes --

    def create_multisig(
        self,
        create_key: Keypair,
        members: Sequence[Member],
        threshold: int,
        time_lock: int = 0,
        config_authority: Optional[Pubkey] = None,
        rent_collector: Optional[Pubkey] = None,
        memo: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> tuple[Pubkey, Signature]:
        """Create a multisig and return its address with the confirmed signature."""
        signer = self._require_signer()
        ix.validate_members(members, threshold)
        deadline = deadline or Deadline()
        program_config_address, _ = pda.get_program_config_pda(self.program_id)
        program_config = self._fetch(ProgramConfig, program_config_address, deadline)

        instruction = ix.multisig_create_v2(
            program_config=program_config_address,
            treasury=program_config.treasury,
            create_key=create_key.pubkey(),
            creator=signer.pubkey,
            threshold=threshold,
            members=members,
            time_lock=time_lock,
            config_authority=config_authority,
            rent_collector=rent_collector,
            memo=memo,
            program_id=self.program_id,
        )
        multisig, _ = pda.get_multisig_pda(create_key.pubkey(), self.program_id)
        signature = self._send("create multisig", [instruction], deadline, extra_signers=[create_key])
        return multisig, signature

    def create_vault_transaction(
        self,
        multisig: Pubkey,
        instructions: Sequence[Instruction],
        vault_index: int = 0,
        ephemeral_signers: int = 0,
        memo: Optional[str] = None,
        create_proposal: bool = True,
        draft: bool = False,
        deadline: Optional[Deadline] = None,
    ) -> tuple[int, Signature]:
        """
        Store ``instructions`` as the multisig's next vault transaction.

        With ``create_proposal`` the proposal is created in the same ledger
        transaction. Returns the new transaction index and the signature.
        """
        signer = self._require_signer()
        deadline = deadline or Deadline()
        ms = self.get_multisig(multisig, deadline)
        self._require_member(ms, signer.pubkey, Permission.INITIATE)
        index = ms.transaction_index + 1
        vault, _ = pda.get_vault_pda(multisig, vault_index, self.program_id)

        built = [
            ix.vault_transaction_create(
                multisig,
                signer.pubkey,
                index,
                compile_transaction_message(vault, instructions),
                vault_index=vault_index,
                ephemeral_signers=ephemeral_signers,
                memo=memo,
                program_id=self.program_id,
            )
        ]
        if create_proposal:
            built.append(ix.proposal_create(multisig, signer.pubkey, index, draft=draft,
                                            program_id=self.program_id))
        return index, self._send(f"create vault transaction {index}", built, deadline)

    def create_config_transaction(
        self,
        multisig: Pubkey,
        actions: Sequence[ConfigAction],
        memo: Optional[str] = None,
        create_proposal: bool = True,
        draft: bool = False,
        deadline: Optional[Deadline] = None,
    ) -> tuple[int, Signature]:
        signer = self._require_signer()
        deadline = deadline or Deadline()
        ms = self.get_multisig(multisig, deadline)
        if not ms.is_autonomous:
            raise InvalidArgument(
                f"Multisig {multisig} is controlled by {ms.config_authority}; config transactions need an autonomous multisig"
            )
        self._require_member(ms, signer.pubkey, Permission.INITIATE)
        index = ms.transaction_index + 1

        built = [ix.config_transaction_create(multisig, signer.pubkey, index, actions, memo=memo,
                                              program_id=self.program_id)]
        if create_proposal:
            built.append(ix.proposal_create(multisig, signer.pubkey, index, draft=draft,
                                            program_id=self.program_id))
        return index, self._send(f"create config transaction {index}", built, deadline)

    def create_proposal(self, multisig: Pubkey, transaction_index: int, draft: bool = False,
                        deadline: Optional[Deadline] = None) -> Signature:
        signer = self._require_signer()
        deadline = deadline or Deadline()
        ms = self.get_multisig(multisig, deadline)
        self._require_member(ms, signer.pubkey, Permission.INITIATE)
        if not ms.stale_transaction_index < transaction_index <= ms.transaction_index:
            raise InvalidArgument(
                f"Transaction index {transaction_index} is outside the open range "
                f"({ms.stale_transaction_index}, {ms.transaction_index}]"
            )
        instruction = ix.proposal_create(multisig, signer.pubkey, transaction_index, draft=draft,
                                         program_id=self.program_id)
        return self._send(f"create proposal {transaction_index}", [instruction], deadline)

    def activate_proposal(self, multisig: Pubkey, transaction_index: int,
                          deadline: Optional[Deadline] = None) -> Signature:
        signer = self._require_signer()
        deadline = deadline or Deadline()
        ms = self.get_multisig(multisig, deadline)
        self._require_member(ms, signer.pubkey, Permission.INITIATE)
        lifecycle.activate(self.get_proposal(multisig, transaction_index, deadline))
        instruction = ix.proposal_activate(multisig, signer.pubkey, transaction_index, program_id=self.program_id)
        return self._send(f"activate proposal {transaction_index}", [instruction], deadline)

    def _vote(self, vote: lifecycle.Vote, build: Callable[..., Instruction], multisig: Pubkey,
              transaction_index: int, memo: Optional[str], deadline: Optional[Deadline]) -> Signature:
        signer = self._require_signer()
        deadline = deadline or Deadline()
        ms = self.get_multisig(multisig, deadline)
        p = self.get_proposal(multisig, transaction_index, deadline)
        after = lifecycle.cast_vote(p, ms, signer.pubkey, vote)
        if after.state is not p.state:
            logger.info(f"Vote moves proposal {transaction_index} to {after.state.name}")
        instruction = build(multisig, signer.pubkey, transaction_index, memo=memo, program_id=self.program_id)
        return self._send(f"{vote.value} proposal {transaction_index}", [instruction], deadline)

    def approve_proposal(self, multisig: Pubkey, transaction_index: int, memo: Optional[str] = None,
                         deadline: Optional[Deadline] = None) -> Signature:
        return self._vote(lifecycle.Vote.APPROVE, ix.proposal_approve, multisig, transaction_index, memo, deadline)

    def reject_proposal(self, multisig: Pubkey, transaction_index: int, memo: Optional[str] = None,
                        deadline: Optional[Deadline] = None) -> Signature:
        return self._vote(lifecycle.Vote.REJECT, ix.proposal_reject, multisig, transaction_index, memo, deadline)

    def cancel_proposal(self, multisig: Pubkey, transaction_index: int, memo: Optional[str] = None,
                        deadline: Optional[Deadline] = None) -> Signature:
        return self._vote(lifecycle.Vote.CANCEL, ix.proposal_cancel, multisig, transaction_index, memo, deadline)

    def _check_executable(self, ms: Multisig, p: Proposal, executor: Pubkey) -> None:
        lifecycle.check_execute(p, ms, executor)
        if not lifecycle.can_execute(p, ms, self._now()):
            raise WrongState(
                f"Proposal {p.transaction_index} is time locked for {ms.time_lock}s after approval"
            )

    def execute_vault_transaction(self, multisig: Pubkey, transaction_index: int,
                                  deadline: Optional[Deadline] = None) -> Signature:
        signer = self._require_signer()
        deadline = deadline or Deadline()
        ms = self.get_multisig(multisig, deadline)
        p = self.get_proposal(multisig, transaction_index, deadline)
        self._check_executable(ms, p, signer.pubkey)
        vault_transaction = self.get_vault_transaction(multisig, transaction_index, deadline)

        remaining = ix.vault_transaction_execute_accounts(vault_transaction, self.program_id)
        instruction = ix.vault_transaction_execute(multisig, signer.pubkey, transaction_index, remaining,
                                                   program_id=self.program_id)
        return self._send(f"execute vault transaction {transaction_index}", [instruction], deadline)

    def execute_config_transaction(self, multisig: Pubkey, transaction_index: int,
                                   deadline: Optional[Deadline] = None) -> Signature:
        signer = self._require_signer()
        deadline = deadline or Deadline()
        ms = self.get_multisig(multisig, deadline)
        p = self.get_proposal(multisig, transaction_index, deadline)
        self._check_executable(ms, p, signer.pubkey)
        config_transaction = self.get_config_transaction(multisig, transaction_index, deadline)

        instruction = ix.config_transaction_execute(
            multisig,
            signer.pubkey,
            transaction_index,
            rent_payer=signer.pubkey,
            spending_limits=ix.config_action_spending_limits(multisig, config_transaction.actions, self.program_id),
            program_id=self.program_id,
        )
        return self._send(f"execute config transaction {transaction_index}", [instruction], deadline)

    def add_spending_limit(
        self,
        multisig: Pubkey,
        create_key: Pubkey,
        mint: Pubkey,
        amount: int,
        period: Period,
        members: Sequence[Pubkey],
        destinations: Sequence[Pubkey] = (),
        vault_index: int = 0,
        memo: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> tuple[Pubkey, Signature]:
        """
        Add a spending limit directly as the config authority of a controlled multisig.

        Autonomous multisigs add limits through a config transaction carrying
        an ``AddSpendingLimit`` action instead.
        """
        signer = self._require_signer()
        deadline = deadline or Deadline()
        ms = self.get_multisig(multisig, deadline)
        if ms.config_authority is None or ms.config_authority != signer.pubkey:
            raise InsufficientPermission(f"{signer.pubkey} is not the config authority of {multisig}")

        instruction = ix.multisig_add_spending_limit(
            multisig, signer.pubkey, create_key, mint, amount, period, members,
            destinations=destinations, vault_index=vault_index, memo=memo, program_id=self.program_id,
        )
        spending_limit, _ = pda.get_spending_limit_pda(multisig, create_key, self.program_id)
        return spending_limit, self._send("add spending limit", [instruction], deadline)

    def use_spending_limit(
        self,
        multisig: Pubkey,
        spending_limit: Pubkey,
        destination: Pubkey,
        amount: int,
        decimals: int = 9,
        vault_token_account: Optional[Pubkey] = None,
        destination_token_account: Optional[Pubkey] = None,
        token_program: Optional[Pubkey] = None,
        memo: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> Signature:
        """Spend from the vault under ``spending_limit``. The limit is checked before anything is built."""
        signer = self._require_signer()
        deadline = deadline or Deadline()
        limit = self.get_spending_limit(spending_limit, deadline)
        if limit.multisig != multisig:
            raise InvalidArgument(f"Spending limit {spending_limit} belongs to {limit.multisig}, not {multisig}")
        mint = None if limit.mint == Pubkey.default() else limit.mint

        instruction = ix.spending_limit_use(
            multisig,
            signer.pubkey,
            spending_limit,
            destination,
            amount,
            decimals,
            vault_index=limit.vault_index,
            mint=mint,
            vault_token_account=vault_token_account,
            destination_token_account=destination_token_account,
            token_program=token_program,
            memo=memo,
            limit=limit,
            now=self._now(),
            program_id=self.program_id,
        )
        return self._send("use spending limit", [instruction], deadline)

