from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SubscriptionDescriptor:
    topic: str
    sid: str
    # Whether matching data frames are decoded and handed to consumers.
    dispatch: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"topic": self.topic, "sid": self.sid, "dispatch": bool(self.dispatch)}


@dataclass(frozen=True)
class DecodedEvent:
    subject: str
    sid: str
    identifier: str
    payload: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "sid": self.sid,
            "identifier": self.identifier,
            "payload": self.payload,
        }


@dataclass(frozen=True)
class TokenAccount:
    pubkey: str
    mint: str
    ui_amount: float | None
    decimals: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "pubkey": self.pubkey,
            "mint": self.mint,
            "ui_amount": self.ui_amount,
            "decimals": int(self.decimals),
        }
