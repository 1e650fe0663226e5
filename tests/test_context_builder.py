"""
Unit tests for the prompt context builders.
"""

import dataclasses
import unittest

from business_logic.context_builder import (
    CONTEXT_LIMITS, TRUNCATION_MARKER, build_budget_context, build_campaign_structure_context,
    build_client_brief, build_kpi_context, build_platform_strategy_context, build_risk_context,
    estimate_tokens, truncate_context
)
from business_logic.performance_model import (
    build_performance_model, build_resolved_targets, compute_cac_model, compute_roas
)
from models.data_models import CACModelInput
from models.plan_schemas import PlanDraft
from plan_factory import make_draft, make_intake, make_monitoring, make_research

CAC_INPUT = CACModelInput(monthly_budget=5000, target_cpl=75, lead_to_sql_rate=15,
                          sql_to_customer_rate=25, offer_price=100, retention_multiplier=12)


def resolved_targets():
    model = compute_cac_model(CAC_INPUT)
    return build_resolved_targets(model, 5000, compute_roas(model, 100, 5000))


class TestTruncation(unittest.TestCase):
    """Test cases for token estimation and truncation."""

    def test_estimate_tokens_rounds_up(self):
        self.assertEqual(estimate_tokens(""), 0)
        self.assertEqual(estimate_tokens("abcd"), 1)
        self.assertEqual(estimate_tokens("abcde"), 2)

    def test_short_text_unchanged(self):
        self.assertEqual(truncate_context("line one\nline two", 100), "line one\nline two")

    def test_cut_at_line_boundary_with_marker(self):
        text = "\n".join(f"line {i:03d}" for i in range(100))

        truncated = truncate_context(text, 120)

        self.assertLessEqual(len(truncated), 120)
        self.assertTrue(truncated.endswith(TRUNCATION_MARKER))
        body = truncated[:-len(TRUNCATION_MARKER)]
        for line in body.split("\n"):
            self.assertRegex(line, r"^line \d{3}$")


class TestClientBrief(unittest.TestCase):
    """Test cases for the client brief."""

    def test_brief_header_and_facts(self):
        brief = build_client_brief(make_intake())

        self.assertTrue(brief.startswith("## Client Brief"))
        self.assertIn("- Monthly ad budget: $5,000", brief)
        self.assertIn("- Target CPL: $75", brief)
        self.assertIn("- Existing paid traffic: yes", brief)

    def test_missing_optional_values_dropped(self):
        brief = build_client_brief(make_intake(target_cpl=None, compliance_constraints=[]))
        self.assertNotIn("Target CPL", brief)
        self.assertNotIn("Compliance constraints", brief)

    def test_fractional_cpl_keeps_cents(self):
        brief = build_client_brief(make_intake(target_cpl=62.5))
        self.assertIn("- Target CPL: $62.50", brief)


class TestSectionContexts(unittest.TestCase):
    """Test cases for the per-section context blocks."""

    def setUp(self):
        self.intake = make_intake()
        self.research = make_research()
        self.draft = make_draft()

    def test_every_context_starts_with_brief(self):
        contexts = [
            build_platform_strategy_context(self.intake, self.research),
            build_kpi_context(self.intake, self.research),
            build_budget_context(self.intake, self.draft),
            build_risk_context(self.intake, self.research, self.draft, resolved_targets()),
        ]
        for context in contexts:
            self.assertTrue(context.startswith("## Client Brief"))

    def test_missing_keyword_research_skips_section(self):
        research = self.research.model_copy(update={'keyword_intelligence': None})

        with_keywords = build_platform_strategy_context(self.intake, self.research)
        without_keywords = build_platform_strategy_context(self.intake, research)

        self.assertIn("## Keyword Intelligence", with_keywords)
        self.assertIn("freight analytics software (880/mo, $14.50 CPC)", with_keywords)
        self.assertNotIn("## Keyword Intelligence", without_keywords)

    def test_structure_context_carries_year_and_platforms(self):
        context = build_campaign_structure_context(self.intake, self.research, self.draft, 2026)

        self.assertIn("Use 2026 for any year token", context)
        self.assertIn("- Google Ads (primary): 60% = $3,000/month", context)

    def test_structure_context_without_research_phase_output(self):
        context = build_campaign_structure_context(self.intake, self.research, PlanDraft(), 2026)
        self.assertNotIn("## Validated Platform Strategy", context)
        self.assertNotIn("## Audience Segments", context)

    def test_budget_context_lists_constraints_and_campaigns(self):
        context = build_budget_context(self.intake, self.draft)

        self.assertIn("Total monthly budget must equal $5,000", context)
        self.assertIn("Daily ceiling must not exceed $167", context)
        self.assertIn("## Validated Campaign Structure", context)

    def test_risk_context_inlines_resolved_targets(self):
        model = build_performance_model(CAC_INPUT, make_monitoring(), self.research.sensitivity_analysis)
        draft = make_draft(performance_model=model)

        context = build_risk_context(self.intake, self.research, draft, resolved_targets())

        self.assertIn("- Target CAC: $2,500", context)
        self.assertIn("- Leads per month: 53", context)
        self.assertIn("## CAC Scenarios", context)

    def test_risk_context_fractional_targets_keep_cents(self):
        targets = dataclasses.replace(resolved_targets(), cpl=62.5)

        context = build_risk_context(self.intake, self.research, self.draft, targets)

        self.assertIn("- Target CPL: $62.50", context)
        self.assertIn("- Monthly budget: $5,000", context)

    def test_contexts_respect_limits(self):
        long_brief = make_intake(icp_description="x " * 20000)
        context = build_kpi_context(long_brief, self.research)

        self.assertLessEqual(len(context), CONTEXT_LIMITS['kpi_targets'])
        self.assertTrue(context.endswith(TRUNCATION_MARKER))


if __name__ == '__main__':
    unittest.main()
