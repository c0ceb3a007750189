"""Ledger access: submitting transactions, polling signatures and fetching accounts."""

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from .errors import InvalidArgument, TransactionFailed, TransportError

logger = logging.getLogger(__name__)

COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")

# JSON-RPC error code for a failed preflight simulation
SEND_TRANSACTION_PREFLIGHT_FAILURE = -32002


def check_commitment(commitment: str) -> str:
    if commitment not in COMMITMENT_LEVELS:
        raise InvalidArgument(f"Unknown commitment {commitment!r}, expected one of {', '.join(COMMITMENT_LEVELS)}")
    return commitment


@dataclass(frozen=True)
class SignatureStatus:
    """Confirmation status reported for a submitted signature."""
    slot: int
    confirmation_status: Optional[str] = None
    confirmations: Optional[int] = None

    def reached(self, commitment: str) -> bool:
        if self.confirmation_status is None:
            # nodes without confirmationStatus report None confirmations once rooted
            return self.confirmations is None
        return COMMITMENT_LEVELS.index(self.confirmation_status) >= COMMITMENT_LEVELS.index(commitment)


class Transport(ABC):
    @abstractmethod
    def latest_blockhash(self) -> Hash:
        """Recent blockhash to bind a transaction to"""
        pass

    @abstractmethod
    def submit(self, transaction: Transaction) -> Signature:
        """Send a signed transaction, returning its signature"""
        pass

    @abstractmethod
    def confirm(self, signature: Signature, commitment: str = "confirmed") -> Optional[SignatureStatus]:
        """Status once ``signature`` reached ``commitment``, None before that"""
        pass

    @abstractmethod
    def fetch_account(self, address: Pubkey) -> Optional[bytes]:
        """Raw account data, None when the account does not exist"""
        pass


class RpcTransport(Transport):
    """Solana JSON-RPC over HTTP."""

    def __init__(
        self,
        endpoint: str,
        commitment: str = "confirmed",
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint
        self.commitment = check_commitment(commitment)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "squads-client/1.0"})

    def _post(self, method: str, params: list) -> dict:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params,
        }
        logger.debug(f"RPC {method} {params}")
        try:
            response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TransportError(f"RPC {method} failed: {e}") from e
        return result

    def _request(self, method: str, params: list):
        result = self._post(method, params)
        if "error" in result:
            raise TransportError(f"RPC error: {result['error']}")
        return result.get("result")

    def latest_blockhash(self) -> Hash:
        result = self._request("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            return Hash.from_string(result["value"]["blockhash"])
        except (TypeError, KeyError, ValueError) as e:
            raise TransportError(f"Malformed getLatestBlockhash response: {result}") from e

    def submit(self, transaction: Transaction) -> Signature:
        encoded = base64.b64encode(bytes(transaction)).decode()
        response = self._post("sendTransaction", [
            encoded,
            {"encoding": "base64", "preflightCommitment": self.commitment}
        ])
        if "error" in response:
            error = response["error"]
            if isinstance(error, dict) and error.get("code") == SEND_TRANSACTION_PREFLIGHT_FAILURE:
                raise TransactionFailed(str(transaction.signatures[0]), error.get("message"))
            raise TransportError(f"RPC error: {error}")
        result = response.get("result")
        try:
            return Signature.from_string(result)
        except (TypeError, ValueError) as e:
            raise TransportError(f"Malformed sendTransaction response: {result}") from e

    def confirm(self, signature: Signature, commitment: str = "confirmed") -> Optional[SignatureStatus]:
        check_commitment(commitment)
        result = self._request("getSignatureStatuses", [[str(signature)]])
        statuses = (result or {}).get("value") or [None]
        status = statuses[0]
        if status is None:
            return None
        if status.get("err") is not None:
            raise TransactionFailed(str(signature), status["err"])

        reported = SignatureStatus(
            slot=status.get("slot", 0),
            confirmation_status=status.get("confirmationStatus"),
            confirmations=status.get("confirmations"),
        )
        return reported if reported.reached(commitment) else None

    def fetch_account(self, address: Pubkey) -> Optional[bytes]:
        result = self._request("getAccountInfo", [
            str(address),
            {"encoding": "base64", "commitment": self.commitment}
        ])
        value = result.get("value") if result else None
        if value is None:
            return None
        data = value.get("data")
        if not isinstance(data, list) or not data:
            raise TransportError(f"Unexpected account data encoding for {address}: {data!r}")
        try:
            return base64.b64decode(data[0])
        except ValueError as e:
            raise TransportError(f"Account data for {address} is not valid base64") from e
