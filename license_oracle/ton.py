"""
TON collaborators: the toncenter v2 HTTP client and a tonsdk-backed wallet.

The recorder in ledger.py only sees the LedgerClient / LedgerWallet contracts;
everything network- or chain-specific lives here.

tonsdk is imported lazily — it is only needed once a mnemonic is configured,
and deriving the key is slow enough that callers run it in a worker thread.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from .exceptions import LedgerError
from .ledger import VerificationPayload
from .models import LedgerTransaction

logger = logging.getLogger(__name__)

# 1023-bit cell: 32 op + 256 digest + 8 verdict + 64 millis leaves 663 bits.
MAX_REQUESTER_BYTES = 82


class ToncenterClient:
    """Async client for the toncenter v2 JSON API."""

    def __init__(
        self,
        base_url: str = "https://testnet.toncenter.com/api/v2",
        api_key: str | None = None,
        timeout: float = 30.0,
        http: httpx.AsyncClient | None = None,
    ):
        headers = {"X-API-Key": api_key} if api_key else {}
        self._http = http or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )
        logger.info("TON client configured (API key: %s)", "yes" if api_key else "no")

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _call(self, method: str, *, params: dict | None = None, json: dict | None = None) -> Any:
        try:
            if json is not None:
                response = await self._http.post(f"/{method}", json=json)
            else:
                response = await self._http.get(f"/{method}", params=params)
        except httpx.HTTPError as e:
            raise LedgerError(f"toncenter {method} request failed: {e}", details={"method": method}) from e

        if response.status_code != 200:
            raise LedgerError(
                f"toncenter {method} returned HTTP {response.status_code}",
                details={
                    "method": method,
                    "status_code": response.status_code,
                    "body": response.text[:200],
                },
            )

        body = response.json()
        if not body.get("ok", False):
            raise LedgerError(
                f"toncenter {method} failed: {body.get('error', 'unknown error')}",
                details={"method": method},
            )
        return body.get("result")

    async def get_sequence(self, address: str) -> int:
        result = await self._call("getWalletInformation", params={"address": address})
        return int(result.get("seqno") or 0)

    async def submit(self, boc: str) -> None:
        await self._call("sendBoc", json={"boc": boc})

    async def list_recent_transactions(self, address: str, limit: int = 10) -> list[LedgerTransaction]:
        result = await self._call("getTransactions", params={"address": address, "limit": limit})
        return [_parse_transaction(tx) for tx in result or []]

    async def get_balance(self, address: str) -> int:
        result = await self._call("getAddressBalance", params={"address": address})
        return int(result)

    async def is_deployed(self, address: str) -> bool:
        result = await self._call("getAddressState", params={"address": address})
        return result == "active"


def _parse_transaction(tx: dict) -> LedgerTransaction:
    """toncenter reports hashes as base64; we hand out hex like the explorers."""
    tx_id = tx.get("transaction_id", {})
    in_msg = tx.get("in_msg") or {}
    return LedgerTransaction(
        hash=base64.b64decode(tx_id.get("hash", "")).hex(),
        lt=int(tx_id.get("lt", 0)),
        internal=bool(in_msg.get("source")),
    )


# ─── Wallet ──────────────────────────────────────────────────────────


def encode_payload(payload: VerificationPayload):
    """Serialise the payload into a tonsdk Cell."""
    from tonsdk.boc import begin_cell

    requester = payload.requester_id.encode("utf-8")[:MAX_REQUESTER_BYTES]
    return (
        begin_cell()
        .store_uint(payload.op, 32)
        .store_bytes(payload.fingerprint)
        .store_uint(payload.verdict_code, 8)
        .store_uint(payload.timestamp_ms, 64)
        .store_bytes(requester)
        .end_cell()
    )


class TonWallet:
    """A v4r2 wallet derived once from the configured mnemonic."""

    def __init__(self, wallet: Any, testnet: bool = True):
        self._wallet = wallet
        self.address: str = wallet.address.to_string(True, True, False, testnet)

    @classmethod
    def from_mnemonic(cls, mnemonic: str, testnet: bool = True) -> TonWallet:
        """Derive the signing key and wallet contract. CPU-heavy (PBKDF2)."""
        from tonsdk.contract.wallet import Wallets, WalletVersionEnum

        words = mnemonic.split()
        _mnemonics, _public_key, _private_key, wallet = Wallets.from_mnemonics(
            words, WalletVersionEnum.v4r2, 0
        )
        instance = cls(wallet, testnet=testnet)
        logger.info("TON wallet initialised: %s", instance.address)
        return instance

    def build_transfer(
        self, *, destination: str, amount_nano: int, seqno: int, payload: VerificationPayload
    ) -> str:
        """Sign an external message carrying one transfer; returns base64 BOC."""
        from tonsdk.utils import bytes_to_b64str

        query = self._wallet.create_transfer_message(
            to_addr=destination,
            amount=amount_nano,
            seqno=seqno,
            payload=encode_payload(payload),
        )
        return bytes_to_b64str(query["message"].to_boc(False))
