"""web3 client for the escrow contract."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Final

from eth_account import Account
from eth_utils import keccak
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from milesbridge.domain.errors import BackendNotConfiguredError, ExternalCallError
from milesbridge.domain.ports import DepositEvent, EscrowState, EscrowStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from eth_account.signers.local import LocalAccount

    from milesbridge.config import LedgerConfig

log = logging.getLogger(__name__)

RELEASE_GAS_LIMIT: Final[int] = 200_000

_DEPOSIT_FIELDS: Final[list[dict[str, Any]]] = [
    {"name": "buyer", "type": "address", "indexed": False},
    {"name": "seller", "type": "address", "indexed": False},
    {"name": "amount", "type": "uint256", "indexed": False},
    {"name": "departure", "type": "string", "indexed": False},
    {"name": "destination", "type": "string", "indexed": False},
]

_DEPOSIT_FIELDS_OUT: Final[list[dict[str, Any]]] = [
    {"name": param["name"], "type": param["type"]} for param in _DEPOSIT_FIELDS
]

ESCROW_ABI: Final[list[dict[str, Any]]] = [
    {
        "type": "event",
        "name": "Deposited",
        "anonymous": False,
        "inputs": [{"name": "orderId", "type": "string", "indexed": True}, *_DEPOSIT_FIELDS],
    },
    # emitted by contracts that also carry the plaintext id as plain log data
    {
        "type": "event",
        "name": "DepositedWithRef",
        "anonymous": False,
        "inputs": [
            {"name": "orderId", "type": "string", "indexed": True},
            {"name": "orderRef", "type": "string", "indexed": False},
            *_DEPOSIT_FIELDS,
        ],
    },
    {
        "type": "function",
        "name": "release",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "orderId", "type": "string"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "refund",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "orderId", "type": "string"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getEscrow",
        "stateMutability": "view",
        "inputs": [{"name": "orderId", "type": "string"}],
        "outputs": [*_DEPOSIT_FIELDS_OUT, {"name": "status", "type": "uint8"}],
    },
]


def order_id_digest(order_id: str) -> bytes:
    """keccak256 of the id, as stored in the indexed topic of a deposit log."""

    return keccak(text=order_id)


def _classify(exc: BaseException, what: str) -> ExternalCallError:
    if isinstance(exc, ContractLogicError):
        return ExternalCallError(f"{what} reverted: {exc}", retryable=False)
    if isinstance(exc, TimeExhausted | TimeoutError | OSError):
        return ExternalCallError(f"{what} failed: {exc}", retryable=True)
    return ExternalCallError(f"{what} failed: {exc}", retryable=isinstance(exc, Web3Exception))


class Web3EscrowLedger:
    """Blocking client; callers bound each call with a timeout."""

    def __init__(self, config: LedgerConfig, *, web3: Web3 | None = None) -> None:
        if config.escrow_contract is None:
            raise BackendNotConfiguredError("ESCROW_CONTRACT is not configured")
        self._config = config
        self._web3 = web3 or Web3(
            Web3.HTTPProvider(
                config.rpc_url, request_kwargs={"timeout": config.call_timeout_seconds}
            )
        )
        self._contract = self._web3.eth.contract(
            address=Web3.to_checksum_address(config.escrow_contract), abi=ESCROW_ABI
        )
        self._scale = Decimal(10) ** config.token_decimals
        self._admin: LocalAccount | None = (
            Account.from_key(config.admin_private_key) if config.admin_private_key else None
        )

    def current_block(self) -> int:
        try:
            return int(self._web3.eth.block_number)
        except (Web3Exception, OSError, ValueError) as exc:
            raise _classify(exc, "block number") from exc

    def deposits(self, from_block: int, to_block: int) -> Sequence[DepositEvent]:
        events: list[DepositEvent] = []
        for name in ("Deposited", "DepositedWithRef"):
            event = getattr(self._contract.events, name)
            try:
                logs = event.get_logs(from_block=from_block, to_block=to_block)
            except (Web3Exception, OSError, ValueError) as exc:
                raise _classify(exc, f"{name} logs {from_block}..{to_block}") from exc
            events.extend(self._to_event(entry) for entry in logs)
        return events

    def order_id_digest(self, order_id: str) -> bytes:
        return order_id_digest(order_id)

    def release(self, order_id: str) -> str:
        return self._transact("release", order_id)

    def refund(self, order_id: str) -> str:
        return self._transact("refund", order_id)

    def get_escrow(self, order_id: str) -> EscrowState:
        try:
            buyer, seller, amount, _departure, _destination, status = (
                self._contract.functions.getEscrow(order_id).call()
            )
        except (Web3Exception, OSError, ValueError) as exc:
            raise _classify(exc, f"getEscrow({order_id})") from exc
        try:
            escrow_status = EscrowStatus(int(status))
        except ValueError as exc:
            raise ExternalCallError(
                f"getEscrow({order_id}) returned unknown status {status!r}", retryable=False
            ) from exc
        return EscrowState(
            order_id=order_id,
            status=escrow_status,
            buyer=str(buyer),
            seller=str(seller),
            amount=Decimal(int(amount)) / self._scale,
        )

    def _to_event(self, entry: Mapping[str, Any]) -> DepositEvent:
        args: Mapping[str, Any] = entry["args"]
        return DepositEvent(
            order_id_hash=Web3.to_bytes(args["orderId"]),
            buyer=str(args["buyer"]),
            seller=str(args["seller"]),
            amount=Decimal(int(args["amount"])) / self._scale,
            departure=str(args["departure"]),
            destination=str(args["destination"]),
            tx_hash=Web3.to_hex(entry["transactionHash"]),
            block_number=int(entry["blockNumber"]),
            log_index=int(entry.get("logIndex", 0)),
            order_ref=args.get("orderRef"),
        )

    def _transact(self, function_name: str, order_id: str) -> str:
        if self._admin is None:
            raise ExternalCallError(
                f"ADMIN_PRIVATE_KEY is not configured; cannot {function_name}", retryable=False
            )
        what = f"{function_name}({order_id})"
        function: Callable[..., Any] = getattr(self._contract.functions, function_name)
        try:
            tx = function(order_id).build_transaction(
                {
                    "from": self._admin.address,
                    "nonce": self._web3.eth.get_transaction_count(self._admin.address),
                    "gas": RELEASE_GAS_LIMIT,
                }
            )
            signed = self._admin.sign_transaction(tx)
            tx_hash = self._web3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self._web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._config.call_timeout_seconds
            )
        except (Web3Exception, OSError, ValueError) as exc:
            raise _classify(exc, what) from exc

        tx_hex = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            raise ExternalCallError(f"{what} reverted in {tx_hex}", retryable=False)
        log.info("%s confirmed in %s", what, tx_hex)
        return tx_hex
