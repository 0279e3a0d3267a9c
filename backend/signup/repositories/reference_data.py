"""
Reference-data repository: policy types and agents.

The lists are read-only, process-wide data.  The wizard receives a
repository instead of reaching for globals, so tests can inject fixed
lists through StaticReferenceData.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

from signup.core.constants import APIRequestMethod, Endpoint
from signup.core.logging import get_logger
from signup.submission.transport import Transport

logger = get_logger(__name__)

FAMILY_PLAN_RATE = Decimal("0.015")
STANDARD_RATE = Decimal("0.025")
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class PolicyType:
    id: int
    name: str
    description: str = ""
    base_premium: Decimal | None = None
    cover_amount: Decimal | None = None
    min_age: int | None = None
    max_age: int | None = None
    premium_rate: Decimal | None = None

    @property
    def rate(self) -> Decimal:
        """Premium as a fraction of cover amount."""
        if self.premium_rate is not None:
            return self.premium_rate
        return FAMILY_PLAN_RATE if self.name.strip().lower() == "family plan" else STANDARD_RATE


@dataclass(frozen=True)
class Agent:
    id: int
    name: str


def quote_premium(policy_type: PolicyType, cover_amount: Decimal | None = None) -> Decimal | None:
    """
    Simple rate lookup: ``cover_amount * rate`` rounded to cents.

    Falls back to the type's own cover amount, then to its base premium.
    Returns None when there is nothing to price.
    """
    amount = cover_amount if cover_amount is not None else policy_type.cover_amount
    if amount is None:
        return policy_type.base_premium
    return (Decimal(amount) * policy_type.rate).quantize(CENTS, rounding=ROUND_HALF_UP)


class ReferenceDataRepository(Protocol):
    def policy_types(self) -> tuple[PolicyType, ...]:
        ...

    def agents(self) -> tuple[Agent, ...]:
        ...

    def get_policy_type(self, policy_type_id: int) -> PolicyType | None:
        ...

    def get_agent(self, agent_id: int) -> Agent | None:
        ...


class StaticReferenceData:
    """Fixed in-memory lists."""

    def __init__(
        self,
        policy_types: list[PolicyType] | tuple[PolicyType, ...] = (),
        agents: list[Agent] | tuple[Agent, ...] = (),
    ) -> None:
        self._policy_types = tuple(policy_types)
        self._agents = tuple(agents)

    def policy_types(self) -> tuple[PolicyType, ...]:
        return self._policy_types

    def agents(self) -> tuple[Agent, ...]:
        return self._agents

    def get_policy_type(self, policy_type_id: int) -> PolicyType | None:
        return next((pt for pt in self._policy_types if pt.id == policy_type_id), None)

    def get_agent(self, agent_id: int) -> Agent | None:
        return next((a for a in self._agents if a.id == agent_id), None)


class RemoteReferenceData(StaticReferenceData):
    """
    Lists fetched once from the backend, then served from memory.

    ``load()`` must be awaited before the lookups are used; later calls
    are no-ops.
    """

    def __init__(self, transport: Transport) -> None:
        super().__init__()
        self.transport = transport
        self._loaded = False
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> RemoteReferenceData:
        async with self._lock:
            if self._loaded:
                return self
            raw_types = await self.transport.request(str(APIRequestMethod.GET), str(Endpoint.POLICY_TYPES))
            raw_agents = await self.transport.request(str(APIRequestMethod.GET), str(Endpoint.AGENTS))
            self._policy_types = tuple(parse_policy_type(item) for item in _items(raw_types))
            self._agents = tuple(parse_agent(item) for item in _items(raw_agents))
            self._loaded = True
            logger.info(
                "Reference data loaded",
                policy_types=len(self._policy_types),
                agents=len(self._agents),
            )
        return self


def _items(response: Any) -> list[dict[str, Any]]:
    if isinstance(response, list):
        return response
    if isinstance(response, dict) and isinstance(response.get("data"), list):
        return response["data"]
    return []


def _decimal(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def parse_policy_type(item: dict[str, Any]) -> PolicyType:
    """Backend (camelCase) policy type to PolicyType."""
    eligibility = item.get("eligibilityRules") or {}
    return PolicyType(
        id=int(item["id"]),
        name=item.get("name", ""),
        description=item.get("description") or "",
        base_premium=_decimal(item.get("basePremium", item.get("baseRate"))),
        cover_amount=_decimal(item.get("coverAmount", item.get("coverageAmount"))),
        min_age=item.get("minAge", eligibility.get("minAge")),
        max_age=item.get("maxAge", eligibility.get("maxAge")),
        premium_rate=_decimal(item.get("premiumRate")),
    )


def parse_agent(item: dict[str, Any]) -> Agent:
    name = item.get("name") or " ".join(
        part for part in (item.get("firstName"), item.get("lastName")) if part
    )
    return Agent(id=int(item["id"]), name=name)
