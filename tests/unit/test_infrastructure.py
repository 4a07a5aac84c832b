"""Unit tests for infrastructure overage pricing."""

from __future__ import annotations

import pytest

from craftmeter.billing.infrastructure import (
    InfrastructureUsage,
    calculate_infrastructure_costs,
)


@pytest.mark.unit
class TestInfrastructureCosts:
    def test_within_free_tier_costs_nothing(self) -> None:
        usage = InfrastructureUsage(
            database_size_gb=0.4, storage_size_gb=1, bandwidth_gb=50, auth_mau=900
        )
        assert calculate_infrastructure_costs("HOBBY", usage).total == 0.0

    def test_only_overage_is_charged(self) -> None:
        usage = InfrastructureUsage(
            database_size_gb=1.5,
            storage_size_gb=11,
            bandwidth_gb=100,
            auth_mau=1_500,
            edge_function_invocations=2_100_000,
        )
        costs = calculate_infrastructure_costs("HOBBY", usage)
        assert costs.database_cost == pytest.approx(0.25)
        assert costs.storage_cost == pytest.approx(0.40)
        assert costs.bandwidth_cost == 0.0
        assert costs.auth_cost == pytest.approx(4.0)
        assert costs.edge_function_cost == pytest.approx(1.0)
        assert costs.total == pytest.approx(5.65)

    def test_pro_free_tier_is_larger(self) -> None:
        usage = InfrastructureUsage(database_size_gb=4, bandwidth_gb=400)
        assert calculate_infrastructure_costs("PRO", usage).total == 0.0
        assert calculate_infrastructure_costs("HOBBY", usage).total > 0.0

    def test_unknown_plan_priced_as_hobby(self) -> None:
        usage = InfrastructureUsage(database_size_gb=2.5)
        assert calculate_infrastructure_costs("legacy", usage) == calculate_infrastructure_costs(
            "HOBBY", usage
        )
