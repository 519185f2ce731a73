"""
Account lookups run through the resilient executor.

Each query returns "data unavailable" (None or an empty list) once the executor gives up;
callers decide what that means for them.
"""

from __future__ import annotations

import logging
from typing import Any

from src.domain.models import TokenAccount
from src.rpc.client import SolanaRpcConnection
from src.rpc.executor import ResilientRequestExecutor

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


class SolanaService:
    def __init__(self, executor: ResilientRequestExecutor[SolanaRpcConnection]):
        self.executor = executor

    async def _call(self, method: str, params: list[Any], *, commitment: bool = True) -> Any:
        async def _action(conn: SolanaRpcConnection) -> Any:
            p = list(params)
            if commitment:
                p.append({"commitment": conn.commitment})
            return await conn.call(method, p)

        return await self.executor.execute(_action)

    async def get_balance(self, pubkey: str) -> int | None:
        """Wallet balance in lamports."""
        try:
            result = await self._call("getBalance", [pubkey])
            return int((result or {}).get("value") or 0)
        except Exception as e:
            logger.error("Failed to get balance for %s after all retries: %s", pubkey, e)
            return None

    async def get_account_info(self, pubkey: str, *, encoding: str = "jsonParsed") -> dict | None:
        try:
            result = await self._call("getAccountInfo", [pubkey], commitment=False)
        except Exception as e:
            logger.error("Failed to get account info for %s after all retries: %s", pubkey, e)
            return None
        # Unknown accounts come back as value=null; that is an answer, not an RPC failure.
        value = (result or {}).get("value")
        if value is not None and encoding == "jsonParsed":
            data = value.get("data")
            if not isinstance(data, dict) or "parsed" not in data:
                logger.warning("Account data for %s does not look like parsed account data", pubkey)
        return value

    async def get_token_supply(self, mint: str) -> float | None:
        try:
            result = await self._call("getTokenSupply", [mint])
            return ((result or {}).get("value") or {}).get("uiAmount")
        except Exception as e:
            logger.error("Failed to get token supply for %s after all retries: %s", mint, e)
            return None

    async def get_token_account_balance(self, token_account: str) -> float | None:
        try:
            result = await self._call("getTokenAccountBalance", [token_account])
            return ((result or {}).get("value") or {}).get("uiAmount")
        except Exception as e:
            logger.error("Failed to get token account balance for %s after all retries: %s", token_account, e)
            return None

    async def get_token_accounts_by_owner(self, owner: str) -> list[TokenAccount]:
        try:
            result = await self._call(
                "getTokenAccountsByOwner",
                [owner, {"programId": TOKEN_PROGRAM_ID}, {"encoding": "jsonParsed"}],
                commitment=False,
            )
        except Exception as e:
            logger.error("Failed to get token accounts for owner %s after all retries: %s", owner, e)
            return []

        accounts: list[TokenAccount] = []
        for acc in (result or {}).get("value") or []:
            info = ((((acc.get("account") or {}).get("data") or {}).get("parsed") or {}).get("info")) or {}
            amount = info.get("tokenAmount") or {}
            ui_amount = amount.get("uiAmount")
            if not ui_amount or ui_amount <= 0:
                continue
            accounts.append(
                TokenAccount(
                    pubkey=str(acc.get("pubkey") or ""),
                    mint=str(info.get("mint") or ""),
                    ui_amount=float(ui_amount),
                    decimals=int(amount.get("decimals") or 0),
                )
            )
        logger.debug("Found %s token accounts with balance for owner %s", len(accounts), owner)
        return accounts
