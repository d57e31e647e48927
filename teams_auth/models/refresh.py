"""Outcome of a single refresh strategy, as seen by the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Tuple

from teams_auth.core.errors import AuthError
from teams_auth.models.tokens import RefreshMethod


class StrategyStatus(str, Enum):
    SUCCESS = "success"
    # Try the next strategy.
    ESCALATE = "escalate"
    # Stop; no later strategy can help.
    FAILED = "failed"


@dataclass(frozen=True)
class StrategyResult:
    status: StrategyStatus
    method: RefreshMethod
    error: Optional[AuthError] = None
    tokens_refreshed: int = 0
    tokens_attempted: int = 0
    skype_token_refreshed: bool = False
    refresh_token_rotated: bool = False
    failed_resources: Tuple[str, ...] = ()


class RefreshStrategy(Protocol):
    name: RefreshMethod

    async def attempt(self) -> StrategyResult:
        ...


__all__ = ["RefreshStrategy", "StrategyResult", "StrategyStatus"]
