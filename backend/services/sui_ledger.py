"""
Sui Ledger Client
Marketplace and treasury calls over Sui JSON-RPC (httpx)

Write path:
1. unsafe_moveCall          - node builds TransactionData bytes
2. Ed25519 intent signature - signed locally, key never leaves the process
3. sui_executeTransactionBlock (WaitForLocalExecution)
4. sui_getTransactionBlock  - poll until the digest is indexed

Writes are never retried; a failed submission surfaces as LedgerError.
"""

import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from infrastructure.config import NetworkConfig
from infrastructure.errors import ConfigurationError, LedgerError

from .keypair import SuiKeypair
from .ledger import (
    CreatedListing,
    LedgerClient,
    Listing,
    Marketplace,
    PurchaseEvent,
    TreasuryState,
    TxReceipt,
    decode_bytes_field,
)

logger = logging.getLogger("SuiLedger")

SUI_COIN_TYPE = "0x2::sui::SUI"


def _u8_vector(text: str) -> List[int]:
    return list(text.encode("utf-8"))


def find_created_object(result: Dict[str, Any], type_fragment: str) -> Optional[str]:
    for change in result.get("objectChanges") or []:
        if change.get("type") == "created" and type_fragment in (change.get("objectType") or ""):
            return change.get("objectId")
    return None


class SuiLedgerClient(LedgerClient):
    def __init__(
        self,
        config: NetworkConfig,
        keypair: Optional[SuiKeypair] = None,
        client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = 1.0,
    ):
        self.config = config
        self.keypair = keypair
        self.client = client or httpx.AsyncClient(timeout=config.request_timeout)
        self.poll_interval = poll_interval
        self._request_id = 0

    @property
    def address(self) -> str:
        return self._signer().address

    def _signer(self) -> SuiKeypair:
        if self.keypair is None:
            raise ConfigurationError("No keypair configured for ledger writes")
        return self.keypair

    def _target(self, module: str, function: str) -> str:
        return f"{self.config.package_id}::{module}::{function}"

    # ------------------------------------------------------------
    # JSON-RPC plumbing
    # ------------------------------------------------------------

    async def rpc(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            response = await self.client.post(self.config.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise LedgerError(f"{method} failed: {e}")

        if response.status_code != 200:
            raise LedgerError(f"{method} failed: HTTP {response.status_code} {response.text[:200]}")

        data = response.json()
        if data.get("error"):
            raise LedgerError(f"{method} error: {data['error'].get('message', data['error'])}")
        return data.get("result")

    async def _move_call(self, module: str, function: str, arguments: List[Any], sender: str = None) -> str:
        """Build a move call; returns base64 TransactionData bytes"""
        result = await self.rpc("unsafe_moveCall", [
            sender or self.address,
            self.config.package_id,
            module,
            function,
            [],
            arguments,
            None,
            str(self.config.gas_budget),
        ])
        return result["txBytes"]

    async def execute(self, tx_bytes: str, label: str = "") -> Dict[str, Any]:
        signature = self._signer().sign_transaction(base64.b64decode(tx_bytes))
        result = await self.rpc("sui_executeTransactionBlock", [
            tx_bytes,
            [signature],
            {"showEffects": True, "showEvents": True, "showObjectChanges": True},
            "WaitForLocalExecution",
        ])

        digest = result.get("digest", "")
        status = ((result.get("effects") or {}).get("status") or {})
        if status.get("status") != "success":
            raise LedgerError(f"{label or 'Transaction'} failed: {status.get('error', 'unknown')}", digest)

        await self.wait_for_transaction(digest)
        logger.info(f"⛓️ {label or 'Transaction'} confirmed: {digest}")
        return result

    async def wait_for_transaction(self, digest: str):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.confirm_timeout
        while True:
            try:
                await self.rpc("sui_getTransactionBlock", [digest, {"showEffects": True}])
                return
            except LedgerError:
                if loop.time() >= deadline:
                    raise LedgerError(f"Transaction not indexed within {self.config.confirm_timeout}s", digest)
                await asyncio.sleep(self.poll_interval)

    async def get_object_fields(self, object_id: str) -> Dict[str, Any]:
        result = await self.rpc("sui_getObject", [object_id, {"showContent": True}])
        fields = (((result or {}).get("data") or {}).get("content") or {}).get("fields")
        if fields is None:
            raise LedgerError(f"Object {object_id} not found or has no content")
        return fields

    # ------------------------------------------------------------
    # Marketplace
    # ------------------------------------------------------------

    async def create_listing(self, title: str, description: str, theme: str, price_mist: int) -> CreatedListing:
        tx_bytes = await self._move_call(self.config.module, "create_listing", [
            self.config.marketplace_id,
            _u8_vector(title),
            _u8_vector(description),
            _u8_vector(theme),
            str(price_mist),
            self.config.clock_object_id,
        ])
        result = await self.execute(tx_bytes, "create_listing")

        listing_id = find_created_object(result, "ContentListing")
        cap_id = find_created_object(result, "ListingCap")
        if not listing_id or not cap_id:
            raise LedgerError("Failed to create listing: no ContentListing/ListingCap in object changes", result.get("digest"))
        return CreatedListing(listing_id=listing_id, cap_id=cap_id, digest=result["digest"])

    async def update_content_address(self, cap_id: str, listing_id: str, blob_id: str) -> TxReceipt:
        tx_bytes = await self._move_call(self.config.module, "update_blob_id", [
            cap_id,
            listing_id,
            _u8_vector(blob_id),
        ])
        result = await self.execute(tx_bytes, "update_blob_id")
        return TxReceipt(digest=result["digest"], events=result.get("events") or [])

    async def _payment_coin(self, amount_mist: int) -> str:
        """Split `amount_mist` off the sender's largest SUI coin"""
        coins = await self.rpc("suix_getCoins", [self.address, SUI_COIN_TYPE, None, 50])
        candidates = sorted(
            (coins or {}).get("data") or [],
            key=lambda c: int(c.get("balance", 0)),
            reverse=True,
        )
        if not candidates or int(candidates[0]["balance"]) <= amount_mist:
            raise LedgerError(f"Insufficient SUI balance to pay {amount_mist} MIST")

        result = await self.rpc("unsafe_splitCoin", [
            self.address,
            candidates[0]["coinObjectId"],
            [str(amount_mist)],
            None,
            str(self.config.gas_budget),
        ])
        split = await self.execute(result["txBytes"], "split_coin")
        coin_id = find_created_object(split, "0x2::coin::Coin")
        if not coin_id:
            raise LedgerError("Split coin not found in object changes", split.get("digest"))
        return coin_id

    async def purchase(self, listing_id: str) -> TxReceipt:
        listing = await self.get_listing(listing_id)
        logger.info(f"Listing price: {listing.price_mist} MIST ({listing.price_sui} SUI)")

        coin_id = await self._payment_coin(listing.price_mist)
        tx_bytes = await self._move_call(self.config.module, "purchase", [
            self.config.marketplace_id,
            listing_id,
            coin_id,
            self.config.clock_object_id,
        ])
        result = await self.execute(tx_bytes, "purchase")
        return TxReceipt(digest=result["digest"], events=result.get("events") or [])

    async def get_listing(self, listing_id: str) -> Listing:
        return Listing.from_fields(listing_id, await self.get_object_fields(listing_id))

    async def get_marketplace(self) -> Marketplace:
        fields = await self.get_object_fields(self.config.marketplace_id)
        return Marketplace(
            object_id=self.config.marketplace_id,
            listings=list(fields.get("listings") or []),
            total_listings=int(fields.get("total_listings") or 0),
            total_sales=int(fields.get("total_sales") or 0),
        )

    async def evaluate_admission(self, identifier: bytes, listing_id: str, sender: str) -> bool:
        """Dry-run seal_approve as `sender`; success means admitted"""
        try:
            tx_bytes = await self._move_call(
                self.config.module, "seal_approve", [list(identifier), listing_id], sender=sender
            )
            result = await self.rpc("sui_dryRunTransactionBlock", [tx_bytes])
        except LedgerError as e:
            logger.warning(f"seal_approve simulation failed for {sender[:10]}...: {e}")
            return False
        status = ((result or {}).get("effects") or {}).get("status") or {}
        return status.get("status") == "success"

    async def list_purchase_events(self, limit: int = 50) -> List[PurchaseEvent]:
        result = await self.rpc("suix_queryEvents", [
            {"MoveEventType": self._target(self.config.module, "ContentPurchased")},
            None,
            limit,
            False,
        ])
        events = []
        for event in (result or {}).get("data") or []:
            parsed = event.get("parsedJson") or {}
            events.append(PurchaseEvent(
                listing_id=parsed.get("listing_id", "unknown"),
                buyer=parsed.get("buyer", ""),
                amount_mist=int(parsed.get("amount") or parsed.get("price") or 0),
                digest=(event.get("id") or {}).get("txDigest", ""),
            ))
        return events

    # ------------------------------------------------------------
    # Treasury
    # ------------------------------------------------------------

    def _treasury_id(self) -> str:
        if not self.config.treasury_id:
            raise LedgerError("No treasuryId in deployed.json")
        return self.config.treasury_id

    async def _treasury_call(self, function: str, arguments: List[Any]) -> TxReceipt:
        tx_bytes = await self._move_call(self.config.treasury_module, function, [
            self._treasury_id(),
            *arguments,
            self.config.clock_object_id,
        ])
        result = await self.execute(tx_bytes, function)
        return TxReceipt(digest=result["digest"])

    async def record_content_created(self, title: str) -> TxReceipt:
        return await self._treasury_call("record_content_created", [_u8_vector(title)])

    async def record_earning(self, description: str, amount_mist: int) -> TxReceipt:
        return await self._treasury_call("record_earning", [_u8_vector(description), str(amount_mist)])

    async def record_spending(self, description: str, amount_mist: int) -> TxReceipt:
        return await self._treasury_call("record_spending", [_u8_vector(description), str(amount_mist)])

    async def get_treasury(self) -> Optional[TreasuryState]:
        if not self.config.treasury_id:
            return None
        fields = await self.get_object_fields(self.config.treasury_id)
        return TreasuryState(
            object_id=self.config.treasury_id,
            agent_name=decode_bytes_field(fields.get("agent_name")),
            total_earned=int(fields.get("total_earned") or 0),
            total_spent=int(fields.get("total_spent") or 0),
            total_content_created=int(fields.get("total_content_created") or 0),
            total_sales=int(fields.get("total_sales") or 0),
        )

    async def close(self):
        await self.client.aclose()
