"""
Unit tests for the deterministic performance model.
"""

import unittest

from business_logic.performance_model import (
    EFFECTIVE_BUDGET_RATIO, build_resolved_targets, compute_cac_model, compute_roas,
    compute_three_scenario_cac, estimate_retention_multiplier, resolve_cac_inputs, round_half_up
)
from models.data_models import CACModelInput
from models.plan_schemas import KPIResearch, KPITarget
from plan_factory import make_intake, make_research


class TestCACModel(unittest.TestCase):
    """Test cases for compute_cac_model."""

    def setUp(self):
        self.cac_input = CACModelInput(
            monthly_budget=5000, target_cpl=75, lead_to_sql_rate=15,
            sql_to_customer_rate=25, offer_price=100, retention_multiplier=12
        )

    def test_reference_example(self):
        model = compute_cac_model(self.cac_input)

        self.assertEqual(model.expected_monthly_leads, 53)
        self.assertEqual(model.expected_monthly_sqls, 8)
        self.assertEqual(model.expected_monthly_customers, 2)
        self.assertEqual(model.target_cac, 2500)
        self.assertEqual(model.estimated_ltv, 1200)
        self.assertEqual(model.ltv_to_cac_ratio, "0.5:1 (Unsustainable)")

    def test_leads_use_effective_budget(self):
        model = compute_cac_model(self.cac_input)
        self.assertEqual(model.expected_monthly_leads,
                         round_half_up(5000 * EFFECTIVE_BUDGET_RATIO / 75))

    def test_at_least_one_customer(self):
        tiny = CACModelInput(monthly_budget=500, target_cpl=200, lead_to_sql_rate=10,
                             sql_to_customer_rate=10, offer_price=50, retention_multiplier=1)
        model = compute_cac_model(tiny)
        self.assertEqual(model.expected_monthly_customers, 1)
        self.assertEqual(model.target_cac, 500)

    def test_healthy_ratio_label(self):
        rich = CACModelInput(monthly_budget=5000, target_cpl=75, lead_to_sql_rate=15,
                             sql_to_customer_rate=25, offer_price=1000, retention_multiplier=12)
        self.assertEqual(compute_cac_model(rich).ltv_to_cac_ratio, "4.8:1 (Healthy)")

    def test_non_positive_cpl_rejected(self):
        bad = CACModelInput(monthly_budget=5000, target_cpl=0, lead_to_sql_rate=15,
                            sql_to_customer_rate=25, offer_price=100, retention_multiplier=12)
        with self.assertRaises(ValueError):
            compute_cac_model(bad)

    def test_round_half_up(self):
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(7.95), 8)
        self.assertEqual(round_half_up(53.33), 53)


class TestScenarios(unittest.TestCase):
    """Test cases for the three-scenario CAC model."""

    def test_scenarios_are_floored_and_ordered(self):
        sensitivity = make_research().sensitivity_analysis
        scenarios = compute_three_scenario_cac(5000, 100, 12, sensitivity)

        self.assertEqual([s.label for s in scenarios], ['best', 'base', 'worst'])
        base = scenarios[1]
        self.assertEqual(base.expected_monthly_leads, 53)
        self.assertEqual(base.expected_monthly_sqls, 7)
        self.assertEqual(base.expected_monthly_customers, 1)
        self.assertEqual(base.resulting_cac, 5000)
        self.assertLessEqual(scenarios[0].resulting_cac, scenarios[2].resulting_cac)


class TestRetentionAndInputs(unittest.TestCase):
    """Test cases for retention and input resolution."""

    def test_retention_priority_order(self):
        self.assertEqual(estimate_retention_multiplier(["Monthly subscription"]), 12)
        self.assertEqual(estimate_retention_multiplier(["annual contract", "per seat"]), 2.5)
        self.assertEqual(estimate_retention_multiplier(["usage-based"]), 10)
        self.assertEqual(estimate_retention_multiplier(["one-time purchase"]), 1)
        self.assertEqual(estimate_retention_multiplier([]), 8)

    def test_intake_values_win_over_research(self):
        research = KPIResearch(
            kpi_targets=[KPITarget(metric="CPL", target="$90", timeframe="monthly",
                                   measurement_method="CRM", type="primary")],
            benchmark_cpl=90, lead_to_sql_rate=20, sql_to_customer_rate=30
        )
        cac_input = resolve_cac_inputs(make_intake(), 5000, research)
        self.assertEqual(cac_input.target_cpl, 75)
        self.assertEqual(cac_input.lead_to_sql_rate, 15)
        self.assertEqual(cac_input.retention_multiplier, 12)

    def test_research_then_defaults(self):
        intake = make_intake(target_cpl=None, lead_to_sql_rate=None, sql_to_customer_rate=None)
        research = KPIResearch(
            kpi_targets=[KPITarget(metric="CPL", target="$90", timeframe="monthly",
                                   measurement_method="CRM", type="primary")],
            benchmark_cpl=90
        )
        cac_input = resolve_cac_inputs(intake, 5000, research)
        self.assertEqual(cac_input.target_cpl, 90)
        self.assertEqual(cac_input.lead_to_sql_rate, 15)
        self.assertEqual(cac_input.sql_to_customer_rate, 25)

    def test_resolved_targets_and_roas(self):
        cac_input = CACModelInput(monthly_budget=5000, target_cpl=75, lead_to_sql_rate=15,
                                  sql_to_customer_rate=25, offer_price=100, retention_multiplier=12)
        model = compute_cac_model(cac_input)
        roas = compute_roas(model, 100, 5000)
        targets = build_resolved_targets(model, 5000, roas)

        self.assertEqual(roas, 0.04)
        self.assertEqual(targets.cac, 2500)
        self.assertEqual(targets.customers_per_month, 2)
        self.assertEqual(targets.roas, 0.04)


if __name__ == '__main__':
    unittest.main()
