"""
CareBridge Backend — Ledger Service
=====================================

What:  The token ledger and settlement record, reached over JSON-RPC.
       - balance_of(address): ERC-20 balance in base units
       - transfer(wallet, to, amount): ERC-20 transfer signed by `wallet`
       - record_settlement(matching_id, elderly, nurse): writes the signed
         matching to the settlement contract with the platform wallet
How:   web3.py AsyncWeb3 over HTTP. Every call passes the circuit breaker and
       is bounded by EXTERNAL_CALL_TIMEOUT_SECONDS. Only the read-only balance
       query is retried (tenacity, exponential backoff with jitter); transfers
       and settlement writes are attempted exactly once.
Who:   TransactionService (payments, refunds), ContractService (settlement).

Error contract:
    CircuitBreakerOpenError  → circuit open, nothing was sent
    ExternalServiceError     → call failed, timed out or the receipt reverted
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    before_sleep_log,
    retry,
    stop_after_attempt,
    wait_exponential_jitter,
)
from web3 import AsyncHTTPProvider, AsyncWeb3

from carebridge.config import settings
from carebridge.exceptions import ExternalServiceError
from carebridge.services.circuit_breaker import CircuitBreaker
from carebridge.services.profile_service import LedgerWallet, decrypt_ledger_key

logger = logging.getLogger(__name__)

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

SETTLEMENT_ABI = [
    {
        "inputs": [
            {"name": "matchingId", "type": "bytes32"},
            {"name": "elderly", "type": "address"},
            {"name": "nurse", "type": "address"},
        ],
        "name": "recordSettlement",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def to_base_units(tokens: int) -> int:
    """Whole platform tokens → smallest on-chain unit."""
    return tokens * (10 ** settings.token_decimals)


@dataclass(frozen=True)
class LedgerReceipt:
    tx_hash: str


class LedgerService(ABC):
    @abstractmethod
    async def balance_of(self, address: str) -> int:
        ...

    @abstractmethod
    async def transfer(self, wallet: LedgerWallet, to_address: str, amount: int) -> LedgerReceipt:
        ...

    @abstractmethod
    async def record_settlement(
        self, matching_id: uuid.UUID, elderly_address: str, nurse_address: str
    ) -> LedgerReceipt:
        ...

    def platform_wallet(self) -> LedgerWallet:
        """Platform-controlled wallet used for refunds and settlement writes."""
        if not settings.platform_ledger_address or not settings.platform_ledger_key:
            raise ExternalServiceError(
                message="The platform ledger wallet is not configured",
                service="ledger",
            )
        return LedgerWallet(
            address=settings.platform_ledger_address,
            signing_key=decrypt_ledger_key(settings.platform_ledger_key),
        )


class Web3LedgerService(LedgerService):
    def __init__(self, provider_url: Optional[str] = None):
        self.provider_url = provider_url or settings.web3_provider_url
        self.w3 = AsyncWeb3(
            AsyncHTTPProvider(
                self.provider_url,
                request_kwargs={"timeout": settings.external_call_timeout_seconds},
            )
        )
        self.circuit_breaker = CircuitBreaker(
            name="ledger",
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        logger.info("Web3LedgerService initialized with provider=%s", self.provider_url)

    # ── Helpers ───────────────────────────────────────────────────────────

    def _token(self):
        if not settings.token_address:
            raise ExternalServiceError(message="The token ledger is not configured", service="ledger")
        return self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(settings.token_address),
            abi=ERC20_ABI,
        )

    def _settlement_contract(self):
        if not settings.settlement_contract_address:
            raise ExternalServiceError(
                message="The settlement contract is not configured", service="ledger"
            )
        return self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(settings.settlement_contract_address),
            abi=SETTLEMENT_ABI,
        )

    async def _guarded(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Runs one ledger call through the circuit breaker and the timeout."""
        self.circuit_breaker.can_execute()
        try:
            result = await asyncio.wait_for(call(), timeout=settings.external_call_timeout_seconds)
        except asyncio.TimeoutError:
            self.circuit_breaker.record_failure()
            logger.error("Ledger %s timed out", operation)
            raise ExternalServiceError(
                message=f"Ledger {operation} timed out",
                service="ledger",
            )
        except ExternalServiceError:
            self.circuit_breaker.record_failure()
            raise
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error("Ledger %s failed: %s", operation, str(e))
            raise ExternalServiceError(
                message=f"Ledger {operation} failed",
                service="ledger",
                context={"error_type": type(e).__name__},
            )
        self.circuit_breaker.record_success()
        return result

    async def _send_signed(self, wallet: LedgerWallet, contract_call) -> LedgerReceipt:
        account = self.w3.eth.account.from_key(wallet.signing_key)
        nonce = await self.w3.eth.get_transaction_count(account.address)
        tx = await contract_call.build_transaction({"from": account.address, "nonce": nonce})
        signed = account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = await self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=settings.external_call_timeout_seconds
        )
        hex_hash = AsyncWeb3.to_hex(tx_hash)
        if receipt["status"] != 1:
            raise ExternalServiceError(
                message="Ledger transaction reverted",
                service="ledger",
                context={"tx_hash": hex_hash},
            )
        return LedgerReceipt(tx_hash=hex_hash)

    # ── Operations ────────────────────────────────────────────────────────

    @retry(
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _read_balance(self, address: str) -> int:
        token = self._token()
        return await token.functions.balanceOf(AsyncWeb3.to_checksum_address(address)).call()

    async def balance_of(self, address: str) -> int:
        balance = await self._guarded("balance query", lambda: self._read_balance(address))
        return int(balance)

    async def transfer(self, wallet: LedgerWallet, to_address: str, amount: int) -> LedgerReceipt:
        # Sent once; a resend after a timeout could pay twice
        token = self._token()
        call = token.functions.transfer(AsyncWeb3.to_checksum_address(to_address), amount)
        receipt = await self._guarded("transfer", lambda: self._send_signed(wallet, call))
        logger.info(
            "Ledger transfer of %d units %s → %s confirmed: %s",
            amount, wallet.address, to_address, receipt.tx_hash,
        )
        return receipt

    async def record_settlement(
        self, matching_id: uuid.UUID, elderly_address: str, nurse_address: str
    ) -> LedgerReceipt:
        contract = self._settlement_contract()
        wallet = self.platform_wallet()
        call = contract.functions.recordSettlement(
            # bytes32 key: the 16 UUID bytes, zero-padded
            matching_id.bytes.ljust(32, b"\0"),
            AsyncWeb3.to_checksum_address(elderly_address),
            AsyncWeb3.to_checksum_address(nurse_address),
        )
        receipt = await self._guarded("settlement record", lambda: self._send_signed(wallet, call))
        logger.info("Matching %s settled on ledger: %s", matching_id, receipt.tx_hash)
        return receipt


ledger_service = Web3LedgerService()
