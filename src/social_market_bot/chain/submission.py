"""Submit validated market requests to the prediction market contract."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.logs import DISCARD

from ..config import Settings, normalize_private_key
from ..exceptions import ChainError, SubmissionTimeoutError
from ..models import ParsedMarketRequest, SubmissionResult
from .abi import MARKET_CREATED_EVENT, abi_has_event, load_abi

# Errors web3 surfaces for RPC transport and node-side failures. The HTTP
# provider raises requests exceptions, which are OSError subclasses.
_RPC_ERRORS = (Web3Exception, ValueError, OSError)

_SIGNER_LOCKS: dict[str, threading.Lock] = {}
_SIGNER_LOCKS_GUARD = threading.Lock()


def signer_lock(address: str) -> threading.Lock:
    """Return the process-wide submission lock for one signing identity."""
    key = address.lower()
    with _SIGNER_LOCKS_GUARD:
        lock = _SIGNER_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _SIGNER_LOCKS[key] = lock
        return lock


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(bytes(value))
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


class MarketSubmissionService:
    """Broadcast one createMarket transaction per request and resolve the market id.

    Submissions from the same signer are serialized from nonce lookup through
    market id resolution, so the legacy ``marketCount() - 1`` fallback is only
    racy against *other* processes or other creation paths on the contract.
    No retries are made; a failed submission is reported to the caller once.
    """

    def __init__(
        self,
        settings: Settings,
        logger: logging.Logger,
        *,
        web3: Any | None = None,
        account: Any | None = None,
        abi: list[dict[str, Any]] | None = None,
    ) -> None:
        self.settings = settings
        self.logger = logger
        self.abi = abi if abi is not None else load_abi(settings.market_contract_abi_file)
        self.market_id_strategy = settings.market_id_strategy
        self._web3 = web3 or Web3(
            Web3.HTTPProvider(
                str(settings.chain_rpc_url),
                request_kwargs={"timeout": settings.chain_rpc_timeout_seconds},
            )
        )
        if account is None:
            try:
                account = Account.from_key(normalize_private_key(settings.private_key))
            except (ValueError, TypeError) as exc:
                # Never include the exception text: it can echo key material.
                raise ChainError(
                    "Failed to initialize wallet with provided private key",
                    category="wallet",
                ) from exc
        self._account = account
        self._contract = self._web3.eth.contract(
            address=Web3.to_checksum_address(settings.prediction_market_address),
            abi=self.abi,
        )
        self._lock = signer_lock(self.signer_address)

    @property
    def signer_address(self) -> str:
        return str(self._account.address)

    def submit(
        self,
        request: ParsedMarketRequest,
        *,
        on_broadcast: Callable[[str], None] | None = None,
    ) -> SubmissionResult:
        """Broadcast, await confirmation, and resolve the created market id.

        ``on_broadcast`` receives the transaction hash as soon as the node
        accepts the signed transaction, before confirmation is awaited.
        """
        with self._lock:
            transaction_hash = self._broadcast(request)
            if on_broadcast is not None:
                on_broadcast(transaction_hash)
            receipt = self._await_receipt(transaction_hash)
            market_id, source = self._resolve_market_id(receipt, transaction_hash)

        block_number = receipt.get("blockNumber")
        self.logger.info(
            "Market %s created in transaction %s (id via %s)",
            market_id,
            transaction_hash,
            source,
        )
        return SubmissionResult(
            market_id=market_id,
            transaction_hash=transaction_hash,
            block_number=int(block_number) if block_number is not None else None,
            market_id_source=source,
        )

    def _broadcast(self, request: ParsedMarketRequest) -> str:
        eth = self._web3.eth
        try:
            tx_params: dict[str, Any] = {
                "from": self.signer_address,
                "nonce": eth.get_transaction_count(self.signer_address, "pending"),
                "chainId": self.settings.chain_id or eth.chain_id,
            }
            transaction = self._contract.functions.createMarket(
                *request.contract_args()
            ).build_transaction(tx_params)
            signed = self._account.sign_transaction(transaction)
            raw_hash = eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as exc:
            raise ChainError(
                f"createMarket reverted before broadcast: {exc}",
                category="revert",
            ) from exc
        except _RPC_ERRORS as exc:
            raise ChainError(
                f"createMarket broadcast failed: {type(exc).__name__}: {exc}",
                category="rpc",
            ) from exc

        transaction_hash = _to_hex(raw_hash)
        self.logger.info("Transaction sent: %s", transaction_hash)
        return transaction_hash

    def _await_receipt(self, transaction_hash: str) -> Any:
        timeout = self.settings.tx_confirmation_timeout_seconds
        try:
            receipt = self._web3.eth.wait_for_transaction_receipt(
                transaction_hash,
                timeout=timeout,
                poll_latency=self.settings.tx_poll_interval_seconds,
            )
        except TimeExhausted as exc:
            raise SubmissionTimeoutError(
                f"Transaction {transaction_hash} not confirmed within {timeout:g}s",
                transaction_hash=transaction_hash,
                timeout_seconds=timeout,
            ) from exc
        except _RPC_ERRORS as exc:
            raise ChainError(
                f"Waiting for receipt failed: {type(exc).__name__}: {exc}",
                category="rpc",
                transaction_hash=transaction_hash,
            ) from exc

        if receipt.get("status") != 1:
            raise ChainError(
                f"createMarket transaction {transaction_hash} reverted",
                category="revert",
                transaction_hash=transaction_hash,
            )
        self.logger.info("Transaction confirmed: %s", transaction_hash)
        return receipt

    def _resolve_market_id(self, receipt: Any, transaction_hash: str) -> tuple[int, str]:
        if self.market_id_strategy == "event" and abi_has_event(self.abi, MARKET_CREATED_EVENT):
            market_id = self._market_id_from_event(receipt)
            if market_id is not None:
                return market_id, "event"
            self.logger.warning(
                "No %s log in receipt %s; falling back to marketCount() - 1, "
                "which is unsafe if markets are created concurrently elsewhere.",
                MARKET_CREATED_EVENT,
                transaction_hash,
            )

        try:
            count = int(self._contract.functions.marketCount().call())
        except _RPC_ERRORS as exc:
            raise ChainError(
                f"Market confirmed but marketCount() read failed: {exc}",
                category="market_id_unresolved",
                transaction_hash=transaction_hash,
            ) from exc
        if count <= 0:
            raise ChainError(
                f"Market confirmed but marketCount() returned {count}",
                category="market_id_unresolved",
                transaction_hash=transaction_hash,
            )
        return count - 1, "counter"

    def _market_id_from_event(self, receipt: Any) -> int | None:
        event = getattr(self._contract.events, MARKET_CREATED_EVENT)
        try:
            logs = event().process_receipt(receipt, errors=DISCARD)
        except _RPC_ERRORS as exc:
            self.logger.warning("Failed decoding %s logs: %s", MARKET_CREATED_EVENT, exc)
            return None
        for log in logs:
            market_id = log["args"].get("marketId")
            if market_id is not None:
                return int(market_id)
        return None
