"""Infrastructure overage pricing (database, storage, bandwidth, auth, edge functions).

Each plan includes a free allowance per resource; only the amount above it is
charged. Sizes are point-in-time snapshots reported by the hosting layer, so a
newer snapshot replaces the previous one instead of adding to it.
"""

from __future__ import annotations

from dataclasses import dataclass

from craftmeter.billing.plans import normalize_plan
from craftmeter.types import PlanName

# USD per unit above the free tier
DATABASE_PER_GB = 0.25
STORAGE_PER_GB = 0.04
BANDWIDTH_PER_GB = 0.12
AUTH_PER_MAU = 0.008
EDGE_FUNCTIONS_PER_MILLION = 0.5


@dataclass(frozen=True, slots=True)
class InfrastructureUsage:
    database_size_gb: float = 0.0
    storage_size_gb: float = 0.0
    bandwidth_gb: float = 0.0
    auth_mau: int = 0
    edge_function_invocations: int = 0


@dataclass(frozen=True, slots=True)
class InfrastructureCosts:
    database_cost: float
    storage_cost: float
    bandwidth_cost: float
    auth_cost: float
    edge_function_cost: float

    @property
    def total(self) -> float:
        return (
            self.database_cost
            + self.storage_cost
            + self.bandwidth_cost
            + self.auth_cost
            + self.edge_function_cost
        )


FREE_TIERS: dict[PlanName, InfrastructureUsage] = {
    PlanName.HOBBY: InfrastructureUsage(
        database_size_gb=0.5,
        storage_size_gb=1,
        bandwidth_gb=100,
        auth_mau=1_000,
        edge_function_invocations=100_000,
    ),
    PlanName.PRO: InfrastructureUsage(
        database_size_gb=5,
        storage_size_gb=10,
        bandwidth_gb=500,
        auth_mau=10_000,
        edge_function_invocations=1_000_000,
    ),
    PlanName.ENTERPRISE: InfrastructureUsage(
        database_size_gb=999_999,
        storage_size_gb=999_999,
        bandwidth_gb=999_999,
        auth_mau=999_999,
        edge_function_invocations=999_999_999,
    ),
}


def calculate_infrastructure_costs(
    plan: str | None, usage: InfrastructureUsage
) -> InfrastructureCosts:
    """Price the overage of ``usage`` above the plan's free tier."""
    free = FREE_TIERS[normalize_plan(plan)]

    database_overage = max(0.0, usage.database_size_gb - free.database_size_gb)
    storage_overage = max(0.0, usage.storage_size_gb - free.storage_size_gb)
    bandwidth_overage = max(0.0, usage.bandwidth_gb - free.bandwidth_gb)
    auth_overage = max(0, usage.auth_mau - free.auth_mau)
    edge_overage = max(0, usage.edge_function_invocations - free.edge_function_invocations)

    return InfrastructureCosts(
        database_cost=database_overage * DATABASE_PER_GB,
        storage_cost=storage_overage * STORAGE_PER_GB,
        bandwidth_cost=bandwidth_overage * BANDWIDTH_PER_GB,
        auth_cost=auth_overage * AUTH_PER_MAU,
        edge_function_cost=(edge_overage / 1_000_000) * EDGE_FUNCTIONS_PER_MILLION,
    )
