"""
Deterministic unit-economics model for a media plan.

The CAC model is the one plan section built by arithmetic alone. It is never
requested from the language model; the monitoring schedule is the only
generated input that ends up inside the PerformanceModel.
"""

import math
from typing import List, Optional

from models.data_models import CACModelInput, ResolvedTargets
from models.input_documents import ClientIntake, SensitivityAnalysis
from models.plan_schemas import (
    CACModel, KPIResearch, MonitoringSchedule, PerformanceModel, ScenarioCAC
)

# Share of the monthly budget assumed to reach lead-generating spend; the rest
# is held back for testing and overhead.
EFFECTIVE_BUDGET_RATIO = 0.80

DEFAULT_TARGET_CPL = 75.0
DEFAULT_LEAD_TO_SQL_RATE = 15.0
DEFAULT_SQL_TO_CUSTOMER_RATE = 25.0

HEALTHY_LTV_CAC_RATIO = 3.0


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up."""
    return int(math.floor(value + 0.5))


def classify_ltv_cac_ratio(ratio: float) -> str:
    """
    Label an LTV:CAC ratio.

    Args:
        ratio: LTV divided by CAC

    Returns:
        Human-readable health label
    """
    if ratio >= HEALTHY_LTV_CAC_RATIO:
        return "Healthy"
    if ratio >= 1:
        return "Below ideal (target >3:1)"
    return "Unsustainable"


def format_ltv_cac_ratio(ratio: float) -> str:
    return f"{ratio:.1f}:1 ({classify_ltv_cac_ratio(ratio)})"


def compute_cac_model(cac_input: CACModelInput) -> CACModel:
    """
    Compute the CAC model from budget, CPL and funnel conversion rates.

    Leads are estimated from the effective budget, while CAC divides the full
    budget because that is what is actually spent.

    Args:
        cac_input: Budget, CPL, conversion rates, offer price and retention

    Returns:
        CACModel with expected funnel volumes, CAC, LTV and the ratio label

    Raises:
        ValueError: If the target CPL is not positive
    """
    if cac_input.target_cpl <= 0:
        raise ValueError(f"target_cpl must be positive, got {cac_input.target_cpl}")

    effective_budget = cac_input.monthly_budget * EFFECTIVE_BUDGET_RATIO
    leads = round_half_up(effective_budget / cac_input.target_cpl)
    sqls = round_half_up(leads * cac_input.lead_to_sql_rate / 100)
    customers = max(1, round_half_up(sqls * cac_input.sql_to_customer_rate / 100))
    cac = round_half_up(cac_input.monthly_budget / customers)
    ltv = round_half_up(cac_input.offer_price * cac_input.retention_multiplier)
    ratio = ltv / cac if cac > 0 else 0.0

    return CACModel(
        target_cpl=cac_input.target_cpl,
        lead_to_sql_rate=cac_input.lead_to_sql_rate,
        sql_to_customer_rate=cac_input.sql_to_customer_rate,
        expected_monthly_leads=leads,
        expected_monthly_sqls=sqls,
        expected_monthly_customers=customers,
        target_cac=cac,
        estimated_ltv=ltv,
        ltv_to_cac_ratio=format_ltv_cac_ratio(ratio)
    )


def compute_three_scenario_cac(monthly_budget: float, offer_price: float,
                               retention_multiplier: float,
                               sensitivity: SensitivityAnalysis) -> List[ScenarioCAC]:
    """
    Compute best, base and worst case CAC from a sensitivity analysis.

    Scenario volumes are floored rather than rounded so each case stays
    conservative.
    """
    scenarios = []
    cases = (
        ('best', sensitivity.best_case),
        ('base', sensitivity.base_case),
        ('worst', sensitivity.worst_case),
    )
    effective_budget = monthly_budget * EFFECTIVE_BUDGET_RATIO
    ltv = offer_price * retention_multiplier

    for label, case in cases:
        leads = math.floor(effective_budget / case.assumed_cpl)
        sqls = math.floor(leads * case.assumed_lead_to_sql_rate / 100)
        customers = max(1, math.floor(sqls * case.assumed_sql_to_customer_rate / 100))
        cac = round_half_up(monthly_budget / customers)
        ratio = ltv / cac if cac > 0 else 0.0

        scenarios.append(ScenarioCAC(
            label=label,
            assumed_cpl=case.assumed_cpl,
            lead_to_sql_rate=case.assumed_lead_to_sql_rate,
            sql_to_customer_rate=case.assumed_sql_to_customer_rate,
            resulting_cac=cac,
            expected_monthly_leads=leads,
            expected_monthly_sqls=sqls,
            expected_monthly_customers=customers,
            estimated_ltv=ltv,
            ltv_cac_ratio=f"{ratio:.1f}:1",
            conditions=case.conditions
        ))

    return scenarios


def estimate_retention_multiplier(pricing_models: List[str]) -> float:
    """
    Estimate how many billing periods a customer stays, for LTV.

    Checked in priority order: monthly/subscription, annual, seat/usage,
    one-time. Anything else is treated as loosely recurring.
    """
    normalized = [p.lower().replace('_', '').replace('-', '') for p in pricing_models]
    if any('monthly' in p or 'subscription' in p for p in normalized):
        return 12.0
    if any('annual' in p for p in normalized):
        return 2.5
    if any('seat' in p or 'usage' in p for p in normalized):
        return 10.0
    if any('onetime' in p or 'one time' in p for p in normalized):
        return 1.0
    return 8.0


def resolve_cac_inputs(intake: ClientIntake, monthly_budget: float,
                       kpi_research: Optional[KPIResearch] = None) -> CACModelInput:
    """
    Pick CAC model inputs, preferring client-stated values over research
    benchmarks over defaults.

    Args:
        intake: Client intake document
        monthly_budget: Validated total monthly budget
        kpi_research: KPI research output with benchmark CPL and rates

    Returns:
        CACModelInput for compute_cac_model
    """
    research_cpl = kpi_research.benchmark_cpl if kpi_research else None
    research_sql_rate = kpi_research.lead_to_sql_rate if kpi_research else None
    research_close_rate = kpi_research.sql_to_customer_rate if kpi_research else None

    return CACModelInput(
        monthly_budget=monthly_budget,
        target_cpl=intake.target_cpl or research_cpl or DEFAULT_TARGET_CPL,
        lead_to_sql_rate=intake.lead_to_sql_rate or research_sql_rate or DEFAULT_LEAD_TO_SQL_RATE,
        sql_to_customer_rate=(intake.sql_to_customer_rate or research_close_rate
                              or DEFAULT_SQL_TO_CUSTOMER_RATE),
        offer_price=intake.offer_price,
        retention_multiplier=estimate_retention_multiplier(intake.pricing_models)
    )


def build_performance_model(cac_input: CACModelInput, monitoring_schedule: MonitoringSchedule,
                            sensitivity: Optional[SensitivityAnalysis] = None) -> PerformanceModel:
    """Build the PerformanceModel from CAC inputs and the generated monitoring schedule."""
    scenarios = []
    if sensitivity is not None:
        scenarios = compute_three_scenario_cac(
            cac_input.monthly_budget, cac_input.offer_price,
            cac_input.retention_multiplier, sensitivity
        )
    return PerformanceModel(
        cac_model=compute_cac_model(cac_input),
        monitoring_schedule=monitoring_schedule,
        scenarios=scenarios
    )


def compute_roas(cac_model: CACModel, offer_price: float, monthly_budget: float) -> float:
    """First-month return on ad spend: customer revenue divided by budget."""
    if monthly_budget <= 0:
        return 0.0
    return round(cac_model.expected_monthly_customers * offer_price / monthly_budget, 2)


def build_resolved_targets(cac_model: CACModel, monthly_budget: float,
                           roas: float = 0.0) -> ResolvedTargets:
    """Flatten the CAC model into the ground-truth targets for final synthesis."""
    return ResolvedTargets(
        monthly_budget=monthly_budget,
        cpl=cac_model.target_cpl,
        cac=cac_model.target_cac,
        leads_per_month=cac_model.expected_monthly_leads,
        sqls_per_month=cac_model.expected_monthly_sqls,
        customers_per_month=cac_model.expected_monthly_customers,
        lead_to_sql_rate=cac_model.lead_to_sql_rate,
        sql_to_customer_rate=cac_model.sql_to_customer_rate,
        ltv_cac_ratio=cac_model.ltv_to_cac_ratio,
        estimated_ltv=cac_model.estimated_ltv,
        roas=roas
    )
