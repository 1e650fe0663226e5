"""
Unit tests for KPI reconciliation and the stale-reference sweep.
"""

import unittest

from business_logic.kpi_reconciler import (
    classify_kpi_metric, format_kpi_target, parse_kpi_number, reconcile_kpi_targets,
    sweep_stale_references
)
from models.plan_schemas import KPITarget


def kpi(metric, target):
    return KPITarget(metric=metric, target=target, timeframe="monthly",
                     measurement_method="CRM", type="primary")


COMPUTED = {'cpl': 75.0, 'cac': 2500.0, 'leads': 53.0, 'sqls': 8.0, 'roas': 0.04}


class TestClassifyMetric(unittest.TestCase):
    """Test cases for metric classification."""

    def test_known_metrics(self):
        self.assertEqual(classify_kpi_metric("Cost per Lead (CPL)"), 'cpl')
        self.assertEqual(classify_kpi_metric("Customer Acquisition Cost"), 'cac')
        self.assertEqual(classify_kpi_metric("Monthly Leads"), 'leads')
        self.assertEqual(classify_kpi_metric("Sales Qualified Leads"), 'sqls')
        self.assertEqual(classify_kpi_metric("ROAS"), 'roas')

    def test_rates_and_ratios_are_not_reconciled(self):
        self.assertIsNone(classify_kpi_metric("LTV:CAC ratio"))
        self.assertIsNone(classify_kpi_metric("Lead to SQL conversion rate"))
        self.assertIsNone(classify_kpi_metric("Cost per click"))

    def test_payback_period_is_not_a_cost(self):
        self.assertIsNone(classify_kpi_metric("CAC payback period"))
        self.assertIsNone(classify_kpi_metric("Customer acquisition cost payback (months)"))

    def test_marketing_qualified_leads_are_not_sqls(self):
        self.assertIsNone(classify_kpi_metric("Marketing Qualified Leads (MQLs)"))
        self.assertIsNone(classify_kpi_metric("MQLs"))


class TestParseAndFormat(unittest.TestCase):
    """Test cases for number parsing and target formatting."""

    def test_parse_kpi_number(self):
        self.assertEqual(parse_kpi_number("<$2,500"), 2500)
        self.assertEqual(parse_kpi_number("$2.5k per customer"), 2500)
        self.assertEqual(parse_kpi_number("300% ROAS", 'roas'), 3.0)
        self.assertIsNone(parse_kpi_number("as low as possible"))

    def test_format_kpi_target(self):
        self.assertEqual(format_kpi_target('cpl', 75), "$75")
        self.assertEqual(format_kpi_target('cac', 2500), "<$2,500")
        self.assertEqual(format_kpi_target('roas', 0.04), "0.04x")
        self.assertEqual(format_kpi_target('leads', 53), "53/month")


class TestReconcileKpiTargets(unittest.TestCase):
    """Test cases for KPI overrides."""

    def test_drifting_cac_overridden(self):
        kpis, adjustments = reconcile_kpi_targets([kpi("CAC", "$4000")], COMPUTED)

        self.assertEqual(kpis[0].target, "<$2,500")
        self.assertEqual(len(adjustments), 1)
        self.assertEqual(adjustments[0].rule, "KPI_CAC_Override")
        self.assertEqual(adjustments[0].original_value, "$4000")

    def test_value_within_ten_percent_untouched(self):
        original = [kpi("CAC", "$2,700"), kpi("Cost per Lead", "$80")]
        kpis, adjustments = reconcile_kpi_targets(original, COMPUTED)

        self.assertEqual(kpis, original)
        self.assertEqual(adjustments, [])

    def test_cpl_uses_tighter_tolerance(self):
        kpis, adjustments = reconcile_kpi_targets([kpi("CPL", "$90")], COMPUTED)
        self.assertEqual(kpis[0].target, "$75")
        self.assertEqual(adjustments[0].rule, "KPI_CPL_Override")

    def test_volume_and_roas_overrides(self):
        original = [kpi("Monthly Leads", "120/month"), kpi("Sales Qualified Leads", "20 per month"),
                    kpi("ROAS", "300%")]

        kpis, adjustments = reconcile_kpi_targets(original, COMPUTED)

        self.assertEqual([k.target for k in kpis], ["53/month", "8/month", "0.04x"])
        self.assertEqual([a.rule for a in adjustments],
                         ["KPI_Leads_Override", "KPI_SQL_Override", "KPI_ROAS_Override"])
        self.assertEqual(adjustments[2].original_value, "300%")

    def test_volumes_within_tolerance_untouched(self):
        original = [kpi("Monthly Leads", "60/month"), kpi("SQLs", "9/month")]
        kpis, adjustments = reconcile_kpi_targets(original, COMPUTED)
        self.assertEqual(kpis, original)
        self.assertEqual(adjustments, [])

    def test_payback_and_mql_targets_left_alone(self):
        original = [kpi("CAC payback period", "6 months"), kpi("Marketing Qualified Leads (MQLs)", "40/month")]

        kpis, adjustments = reconcile_kpi_targets(original, COMPUTED)

        self.assertEqual([k.target for k in kpis], ["6 months", "40/month"])
        self.assertEqual(adjustments, [])

    def test_unparseable_target_left_alone(self):
        kpis, adjustments = reconcile_kpi_targets([kpi("CAC", "TBD")], COMPUTED)
        self.assertEqual(kpis[0].target, "TBD")
        self.assertEqual(adjustments, [])


class TestSweepStaleReferences(unittest.TestCase):
    """Test cases for the free-text sweep."""

    def setUp(self):
        self.values = {'cac': 2500.0, 'cpl': 75.0, 'budget': 5000.0,
                       'leads': 53.0, 'sqls': 8.0, 'customers': 2.0}

    def test_stale_numbers_rewritten(self):
        text, replacements = sweep_stale_references(
            "We expect 120 leads per month at a CPL of $40.", self.values)

        self.assertEqual(text, "We expect 53 leads per month at a CPL of $75.")
        self.assertEqual({kind for kind, _, _ in replacements}, {'leads', 'cpl'})

    def test_thresholds_not_rewritten(self):
        text = "Escalate if CAC exceeds $4,000."
        swept, replacements = sweep_stale_references(text, self.values)
        self.assertEqual(swept, text)
        self.assertEqual(replacements, [])

    def test_values_within_tolerance_kept(self):
        text = "Target CAC: $2,600"
        swept, _ = sweep_stale_references(text, self.values)
        self.assertEqual(swept, text)

    def test_k_suffix_replaced(self):
        swept, _ = sweep_stale_references("A monthly budget of $8k.", self.values)
        self.assertEqual(swept, "A monthly budget of $5,000.")

    def test_total_budget_rewritten(self):
        swept, replacements = sweep_stale_references("Total budget of $8,000 across platforms.", self.values)
        self.assertEqual(swept, "Total budget of $5,000 across platforms.")
        self.assertEqual([kind for kind, _, _ in replacements], ['budget'])

    def test_phase_and_platform_budgets_not_rewritten(self):
        for text in ("Spend the full phase budget of $1,500 with CPL under target.",
                     "Keep the testing budget of $800 for new creatives.",
                     "The monthly budget per platform of $2,000 is reviewed weekly."):
            swept, replacements = sweep_stale_references(text, self.values)
            self.assertEqual(swept, text)
            self.assertEqual(replacements, [])


if __name__ == '__main__':
    unittest.main()
