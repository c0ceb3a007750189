"""Transaction signing."""

from abc import ABC, abstractmethod
from typing import Sequence

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .errors import MissingSigner


def required_signers(message: Message) -> list[Pubkey]:
    return list(message.account_keys[:message.header.num_required_signatures])


class TransactionSigner(ABC):
    @property
    @abstractmethod
    def pubkey(self) -> Pubkey:
        """Fee payer and default member identity"""
        pass

    @abstractmethod
    def sign(self, message: Message, blockhash: Hash, extra_signers: Sequence[Keypair] = ()) -> Transaction:
        """Sign ``message`` for every required signer, raising MissingSigner otherwise"""
        pass


class KeypairSigner(TransactionSigner):
    """Signs with in-memory keypairs. The first keypair pays fees."""

    def __init__(self, payer: Keypair, *others: Keypair):
        self._keypairs = {kp.pubkey(): kp for kp in (payer, *others)}
        self._payer = payer.pubkey()

    @property
    def pubkey(self) -> Pubkey:
        return self._payer

    def sign(self, message: Message, blockhash: Hash, extra_signers: Sequence[Keypair] = ()) -> Transaction:
        """``extra_signers`` cover one-off keys such as a multisig create key."""
        keypairs = {**self._keypairs, **{kp.pubkey(): kp for kp in extra_signers}}
        signers = required_signers(message)
        missing = [str(key) for key in signers if key not in keypairs]
        if missing:
            raise MissingSigner(f"No keypair for required signer(s): {', '.join(missing)}")
        return Transaction([keypairs[key] for key in signers], message, blockhash)
