"""Tests for on-chain market submission with a fake web3 stack."""

from __future__ import annotations

import logging
import threading
import time
from types import SimpleNamespace
from typing import Any

import pytest
from web3.exceptions import ContractLogicError, TimeExhausted

from social_market_bot.chain.abi import PREDICTION_MARKET_ABI
from social_market_bot.chain.submission import MarketSubmissionService, signer_lock
from social_market_bot.config import normalize_private_key
from social_market_bot.exceptions import ChainError, SubmissionTimeoutError
from social_market_bot.models import ParsedMarketRequest

CONTRACT_ADDRESS = "0x" + "ab" * 20
TX_HASH_BYTES = bytes.fromhex("12" * 32)
TX_HASH = "0x" + "12" * 32


def _settings(**overrides: Any) -> SimpleNamespace:
    payload: dict[str, Any] = {
        "chain_rpc_url": "http://localhost:8545",
        "chain_rpc_timeout_seconds": 5.0,
        "private_key": "11" * 32,
        "prediction_market_address": CONTRACT_ADDRESS,
        "chain_id": 31337,
        "tx_confirmation_timeout_seconds": 30.0,
        "tx_poll_interval_seconds": 0.1,
        "market_id_strategy": "event",
        "market_contract_abi_file": None,
    }
    payload.update(overrides)
    return SimpleNamespace(**payload)


def _request() -> ParsedMarketRequest:
    return ParsedMarketRequest(
        question="Will it rain tomorrow?",
        option_a="Yes",
        option_b="No",
        duration_seconds=604800,
    )


class _FakeCall:
    def __init__(self, contract: _FakeContract, name: str, args: tuple[Any, ...]) -> None:
        self.contract = contract
        self.name = name
        self.args = args

    def build_transaction(self, params: dict[str, Any]) -> dict[str, Any]:
        if self.contract.build_error is not None:
            raise self.contract.build_error
        self.contract.built.append((self.args, params))
        return {**params, "data": "0xdeadbeef", "to": CONTRACT_ADDRESS}

    def call(self) -> int:
        if self.contract.count_error is not None:
            raise self.contract.count_error
        return self.contract.market_count


class _FakeFunctions:
    def __init__(self, contract: _FakeContract) -> None:
        self._contract = contract

    def createMarket(self, *args: Any) -> _FakeCall:  # noqa: N802 - contract ABI name
        return _FakeCall(self._contract, "createMarket", args)

    def marketCount(self) -> _FakeCall:  # noqa: N802 - contract ABI name
        return _FakeCall(self._contract, "marketCount", ())


class _FakeEvent:
    def __init__(self, contract: _FakeContract) -> None:
        self._contract = contract

    def process_receipt(self, receipt: dict[str, Any], errors: Any = None) -> list[Any]:
        del errors
        return [{"args": {"marketId": market_id}} for market_id in receipt.get("event_ids", [])]


class _FakeEvents:
    def __init__(self, contract: _FakeContract) -> None:
        self.MarketCreated = lambda: _FakeEvent(contract)  # noqa: N815 - event name


class _FakeContract:
    def __init__(self) -> None:
        self.market_count = 8
        self.count_error: Exception | None = None
        self.build_error: Exception | None = None
        self.built: list[tuple[tuple[Any, ...], dict[str, Any]]] = []
        self.functions = _FakeFunctions(self)
        self.events = _FakeEvents(self)


class _FakeEth:
    def __init__(self, contract: _FakeContract) -> None:
        self._contract = contract
        self.chain_id = 999
        self.nonce = 4
        self.receipt: dict[str, Any] = {"status": 1, "blockNumber": 77, "event_ids": [7]}
        self.wait_error: Exception | None = None
        self.send_error: Exception | None = None
        self.sent: list[bytes] = []
        self.wait_calls: list[dict[str, Any]] = []

    def contract(self, address: str, abi: list[dict[str, Any]]) -> _FakeContract:
        del address, abi
        return self._contract

    def get_transaction_count(self, address: str, block: str) -> int:
        del address
        assert block == "pending"
        return self.nonce

    def send_raw_transaction(self, raw: bytes) -> bytes:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(raw)
        return TX_HASH_BYTES

    def wait_for_transaction_receipt(
        self, tx_hash: str, timeout: float, poll_latency: float
    ) -> dict[str, Any]:
        self.wait_calls.append(
            {"tx_hash": tx_hash, "timeout": timeout, "poll_latency": poll_latency}
        )
        if self.wait_error is not None:
            raise self.wait_error
        return self.receipt


class _FakeAccount:
    address = "0x" + "cd" * 20

    def __init__(self) -> None:
        self.signed: list[dict[str, Any]] = []

    def sign_transaction(self, transaction: dict[str, Any]) -> SimpleNamespace:
        self.signed.append(transaction)
        return SimpleNamespace(raw_transaction=b"\x01signed")


def _service(
    **setting_overrides: Any,
) -> tuple[MarketSubmissionService, _FakeEth, _FakeContract, _FakeAccount]:
    contract = _FakeContract()
    eth = _FakeEth(contract)
    account = _FakeAccount()
    service = MarketSubmissionService(
        _settings(**setting_overrides),
        logging.getLogger("test.submission"),
        web3=SimpleNamespace(eth=eth),
        account=account,
        abi=PREDICTION_MARKET_ABI,
    )
    return service, eth, contract, account


def test_submit_passes_seven_positional_args_and_reads_event_id() -> None:
    service, eth, contract, account = _service()
    broadcasts: list[str] = []

    result = service.submit(_request(), on_broadcast=broadcasts.append)

    args, params = contract.built[0]
    assert args == ("Will it rain tomorrow?", "Yes", "No", 604800, "SOCIAL", [], 100)
    assert params["nonce"] == 4
    assert params["chainId"] == 31337
    assert params["from"] == account.address
    assert eth.sent == [b"\x01signed"]
    assert broadcasts == [TX_HASH]
    assert eth.wait_calls[0]["timeout"] == 30.0
    assert result.market_id == 7
    assert result.transaction_hash == TX_HASH
    assert result.block_number == 77
    assert result.market_id_source == "event"


def test_chain_id_falls_back_to_node_value() -> None:
    service, _, contract, _ = _service(chain_id=None)
    service.submit(_request())
    assert contract.built[0][1]["chainId"] == 999


def test_missing_event_falls_back_to_counter() -> None:
    service, eth, _, _ = _service()
    eth.receipt = {"status": 1, "blockNumber": 78}
    result = service.submit(_request())
    assert result.market_id == 7
    assert result.market_id_source == "counter"


def test_counter_strategy_uses_market_count_minus_one() -> None:
    service, eth, contract, _ = _service(market_id_strategy="counter")
    contract.market_count = 42
    result = service.submit(_request())
    assert eth.receipt["event_ids"] == [7]
    assert result.market_id == 41
    assert result.market_id_source == "counter"


def test_reverted_receipt_raises_chain_error_with_hash() -> None:
    service, eth, _, _ = _service()
    eth.receipt = {"status": 0, "blockNumber": 79}
    with pytest.raises(ChainError) as excinfo:
        service.submit(_request())
    assert excinfo.value.category == "revert"
    assert excinfo.value.transaction_hash == TX_HASH


def test_revert_during_build_is_not_broadcast() -> None:
    service, eth, contract, _ = _service()
    contract.build_error = ContractLogicError("execution reverted: fee too high")
    broadcasts: list[str] = []
    with pytest.raises(ChainError) as excinfo:
        service.submit(_request(), on_broadcast=broadcasts.append)
    assert excinfo.value.category == "revert"
    assert eth.sent == []
    assert broadcasts == []


def test_rpc_failure_on_send_is_chain_error() -> None:
    service, eth, _, _ = _service()
    eth.send_error = ConnectionError("connection refused")
    with pytest.raises(ChainError) as excinfo:
        service.submit(_request())
    assert excinfo.value.category == "rpc"
    assert excinfo.value.transaction_hash is None


def test_confirmation_timeout_is_distinct_failure() -> None:
    service, eth, _, _ = _service()
    eth.wait_error = TimeExhausted("not mined")
    with pytest.raises(SubmissionTimeoutError) as excinfo:
        service.submit(_request())
    assert excinfo.value.category == "timeout"
    assert excinfo.value.transaction_hash == TX_HASH
    assert excinfo.value.timeout_seconds == 30.0


def test_unreadable_counter_after_confirmation_keeps_hash() -> None:
    service, eth, contract, _ = _service(market_id_strategy="counter")
    contract.count_error = ValueError("rpc down")
    with pytest.raises(ChainError) as excinfo:
        service.submit(_request())
    assert excinfo.value.category == "market_id_unresolved"
    assert excinfo.value.transaction_hash == TX_HASH


def test_bad_private_key_is_wallet_error() -> None:
    contract = _FakeContract()
    with pytest.raises(ChainError) as excinfo:
        MarketSubmissionService(
            _settings(private_key="not-a-key"),
            logging.getLogger("test.submission"),
            web3=SimpleNamespace(eth=_FakeEth(contract)),
            abi=PREDICTION_MARKET_ABI,
        )
    assert excinfo.value.category == "wallet"
    assert "not-a-key" not in str(excinfo.value)


def test_normalize_private_key_adds_prefix_once() -> None:
    assert normalize_private_key("ab" * 32) == "0x" + "ab" * 32
    assert normalize_private_key(" 0X" + "ab" * 32) == "0x" + "ab" * 32


def test_signer_lock_is_shared_per_address() -> None:
    first = signer_lock("0x" + "AA" * 20)
    second = signer_lock("0x" + "aa" * 20)
    assert first is second
    assert signer_lock("0x" + "bb" * 20) is not first


def test_submissions_from_same_signer_are_serialized() -> None:
    service, eth, _, _ = _service()
    active = 0
    max_active = 0
    guard = threading.Lock()
    original_wait = eth.wait_for_transaction_receipt

    def slow_wait(tx_hash: str, timeout: float, poll_latency: float) -> dict[str, Any]:
        nonlocal active, max_active
        with guard:
            active += 1
            max_active = max(max_active, active)
        time.sleep(0.05)
        with guard:
            active -= 1
        return original_wait(tx_hash, timeout=timeout, poll_latency=poll_latency)

    eth.wait_for_transaction_receipt = slow_wait  # type: ignore[method-assign]
    threads = [threading.Thread(target=service.submit, args=(_request(),)) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(eth.sent) == 3
    assert max_active == 1
