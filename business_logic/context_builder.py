"""
Context blocks for the generative calls.

Each builder turns a slice of the intake, the research document and any
already validated plan sections into a bounded markdown block. Builders are
pure: missing optional data just drops its section.
"""

from typing import Iterable, List, Optional

from models.data_models import ResolvedTargets
from models.input_documents import ClientIntake, ResearchDocument
from models.plan_schemas import (
    CampaignStructure, ICPTargeting, KPITarget, PlanDraft, PlatformStrategy
)
from .kpi_reconciler import format_money

# Character limit per call site
CONTEXT_LIMITS = {
    'platform_strategy': 8000,
    'icp_targeting': 8000,
    'kpi_targets': 6000,
    'campaign_structure': 10000,
    'creative_strategy': 9000,
    'campaign_phases': 7000,
    'budget_allocation': 8000,
    'executive_summary': 6000,
    'risk_monitoring': 6000,
}

TRUNCATION_MARKER = "\n[... context truncated ...]"
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token count at about four characters per token."""
    return (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN


def truncate_context(text: str, max_chars: int) -> str:
    """
    Cut text to at most max_chars, breaking at a line boundary.

    Args:
        text: Context block
        max_chars: Character limit, including the truncation marker

    Returns:
        The text unchanged if it fits, otherwise its leading lines plus a marker
    """
    if len(text) <= max_chars:
        return text

    budget = max(0, max_chars - len(TRUNCATION_MARKER))
    cut = text.rfind("\n", 0, budget + 1)
    if cut <= 0:
        cut = budget
    return text[:cut].rstrip() + TRUNCATION_MARKER


def _section(title: str, lines: Iterable[Optional[str]]) -> str:
    body = [line for line in lines if line]
    if not body:
        return ""
    return f"## {title}\n" + "\n".join(body)


def _bullets(items: Iterable[str]) -> List[str]:
    return [f"- {item}" for item in items if item]


def _field(label: str, value) -> Optional[str]:
    if value is None or value == "" or value == []:
        return None
    if isinstance(value, list):
        value = ", ".join(str(v) for v in value)
    return f"- {label}: {value}"


def _join(*sections: str, limit: int) -> str:
    return truncate_context("\n\n".join(s for s in sections if s), limit)


def build_client_brief(intake: ClientIntake) -> str:
    """Client facts every generative call starts from."""
    return _section("Client Brief", [
        _field("Company", intake.company_name),
        _field("Industry", intake.industry),
        _field("Offer", f"{intake.offer_name} (${intake.offer_price:,.0f})"),
        _field("Pricing models", intake.pricing_models),
        _field("Monthly ad budget", f"${intake.monthly_budget:,.0f}"),
        _field("Primary goal", intake.primary_goal),
        _field("Campaign duration", f"{intake.campaign_duration_months} months"),
        _field("Ideal customer", intake.icp_description),
        _field("Target locations", intake.target_locations),
        _field("Current platforms", intake.current_platforms),
        _field("Compliance constraints", intake.compliance_constraints),
        _field("Target CPL", f"${format_money(intake.target_cpl)}" if intake.target_cpl else None),
        _field("Existing paid traffic", "yes" if intake.has_existing_paid_traffic else "no"),
        _field("Organic keyword rankings", "yes" if intake.has_organic_keywords else "no"),
    ])


def _industry(research: ResearchDocument) -> str:
    overview = research.industry_overview
    return _section("Industry Overview", [
        overview.market_summary,
        _field("Trends", overview.trends),
        _field("Seasonality", overview.seasonality),
        _field("Pain points", overview.pain_points),
    ])


def _icp_analysis(research: ResearchDocument) -> str:
    icp = research.icp_analysis
    return _section("ICP Analysis", [
        icp.summary,
        _field("Segments", icp.segments),
        _field("Buying triggers", icp.buying_triggers),
        _field("Objections", icp.objections),
    ])


def _offer(research: ResearchDocument) -> str:
    offer = research.offer_analysis
    return _section("Offer Analysis", [
        offer.summary,
        _field("Strengths", offer.strengths),
        _field("Weaknesses", offer.weaknesses),
        _field("Offer score", f"{offer.offer_score:g}/10" if offer.offer_score is not None else None),
    ])


def _competitors(research: ResearchDocument) -> str:
    analysis = research.competitor_analysis
    lines = [
        f"- {c.name}: {c.positioning}" + (f" (advertises on {', '.join(c.ad_platforms)})" if c.ad_platforms else "")
        for c in analysis.competitors
    ]
    lines.append(_field("White space", analysis.white_space))
    return _section("Competitor Landscape", lines)


def _keywords(research: ResearchDocument, limit: int = 20) -> str:
    if research.keyword_intelligence is None:
        return ""
    lines = []
    for keyword in research.keyword_intelligence.keywords[:limit]:
        details = []
        if keyword.monthly_volume is not None:
            details.append(f"{keyword.monthly_volume:,}/mo")
        if keyword.cpc is not None:
            details.append(f"${keyword.cpc:.2f} CPC")
        lines.append(f"- {keyword.term}" + (f" ({', '.join(details)})" if details else ""))
    return _section("Keyword Intelligence", lines)


def _synthesis(research: ResearchDocument) -> str:
    synthesis = research.strategic_synthesis
    return _section("Strategic Synthesis", [
        synthesis.positioning,
        _field("Key messages", synthesis.key_messages),
        _field("Recommended platforms", synthesis.recommended_platforms),
        _field("Recommended angles", synthesis.recommended_angles),
    ])


def _platforms(platforms: Optional[List[PlatformStrategy]]) -> str:
    if not platforms:
        return ""
    return _section("Validated Platform Strategy", [
        f"- {p.platform} ({p.priority}): {p.budget_percentage:g}% = ${p.monthly_spend:,.0f}/month, "
        f"CPL ${p.expected_cpl_range.min:,.0f}-${p.expected_cpl_range.max:,.0f}"
        for p in platforms
    ])


def _segments(icp: Optional[ICPTargeting]) -> str:
    if icp is None:
        return ""
    return _section("Audience Segments", [
        f"- {s.name} [{s.funnel_position}, priority {s.priority_score}]: {s.description}"
        for s in icp.segments
    ])


def _campaigns(structure: Optional[CampaignStructure]) -> str:
    if structure is None:
        return ""
    lines = [
        f"- {c.name} | {c.platform} | {c.funnel_stage} | ${c.daily_budget:,.0f}/day | {c.objective}"
        for c in structure.campaigns
    ]
    return _section("Validated Campaign Structure", lines)


def _kpis(kpis: Optional[List[KPITarget]]) -> str:
    if not kpis:
        return ""
    return _section("KPI Targets", [f"- {k.metric}: {k.target} ({k.timeframe})" for k in kpis])


def _resolved(targets: ResolvedTargets) -> str:
    return _section("Resolved Targets (use these exact numbers)", [
        _field("Monthly budget", f"${format_money(targets.monthly_budget)}"),
        _field("Target CPL", f"${format_money(targets.cpl)}"),
        _field("Target CAC", f"${targets.cac:,}"),
        _field("Leads per month", targets.leads_per_month),
        _field("SQLs per month", targets.sqls_per_month),
        _field("Customers per month", targets.customers_per_month),
        _field("Lead to SQL rate", f"{targets.lead_to_sql_rate:g}%"),
        _field("SQL to customer rate", f"{targets.sql_to_customer_rate:g}%"),
        _field("Estimated LTV", f"${targets.estimated_ltv:,}"),
        _field("LTV:CAC", targets.ltv_cac_ratio),
        _field("First-month ROAS", f"{targets.roas:.2f}x" if targets.roas else None),
    ])


def build_platform_strategy_context(intake: ClientIntake, research: ResearchDocument) -> str:
    return _join(
        build_client_brief(intake), _synthesis(research), _competitors(research), _keywords(research),
        limit=CONTEXT_LIMITS['platform_strategy']
    )


def build_icp_context(intake: ClientIntake, research: ResearchDocument) -> str:
    return _join(
        build_client_brief(intake), _icp_analysis(research), _industry(research), _synthesis(research),
        limit=CONTEXT_LIMITS['icp_targeting']
    )


def build_kpi_context(intake: ClientIntake, research: ResearchDocument) -> str:
    funnel = _section("Stated Funnel Rates", [
        _field("Lead to SQL rate", f"{intake.lead_to_sql_rate:g}%" if intake.lead_to_sql_rate else None),
        _field("SQL to customer rate",
               f"{intake.sql_to_customer_rate:g}%" if intake.sql_to_customer_rate else None),
    ])
    return _join(
        build_client_brief(intake), funnel, _industry(research), _offer(research),
        limit=CONTEXT_LIMITS['kpi_targets']
    )


def build_campaign_structure_context(intake: ClientIntake, research: ResearchDocument,
                                     draft: PlanDraft, generation_year: int) -> str:
    """Research-phase output plus the year campaign names must carry."""
    naming = _section("Naming", [f"- Use {generation_year} for any year token in names and patterns"])
    return _join(
        build_client_brief(intake), naming, _platforms(draft.platform_strategy),
        _segments(draft.icp_targeting), _keywords(research),
        limit=CONTEXT_LIMITS['campaign_structure']
    )


def build_creative_context(intake: ClientIntake, research: ResearchDocument, draft: PlanDraft) -> str:
    return _join(
        build_client_brief(intake), _synthesis(research), _offer(research),
        _segments(draft.icp_targeting), _platforms(draft.platform_strategy),
        limit=CONTEXT_LIMITS['creative_strategy']
    )


def build_campaign_phases_context(intake: ClientIntake, draft: PlanDraft) -> str:
    return _join(
        build_client_brief(intake), _platforms(draft.platform_strategy), _campaigns(draft.campaign_structure),
        _kpis(draft.kpi_targets),
        limit=CONTEXT_LIMITS['campaign_phases']
    )


def build_budget_context(intake: ClientIntake, draft: PlanDraft) -> str:
    """
    Context for the budget call.

    Receives the campaign structure after structure validation, so budgets
    are planned against corrected campaigns.
    """
    constraints = _section("Budget Constraints", [
        f"- Total monthly budget must equal ${intake.monthly_budget:,.0f}",
        f"- Daily ceiling must not exceed ${intake.monthly_budget / 30:,.0f}",
        "- Platform and funnel percentages must each sum to 100",
    ])
    return _join(
        build_client_brief(intake), constraints, _platforms(draft.platform_strategy),
        _campaigns(draft.campaign_structure),
        limit=CONTEXT_LIMITS['budget_allocation']
    )


def build_executive_summary_context(intake: ClientIntake, research: ResearchDocument,
                                    draft: PlanDraft, targets: ResolvedTargets) -> str:
    phases = ""
    if draft.campaign_phases:
        phases = _section("Campaign Phases", [
            f"- Phase {p.phase}: {p.name}, {p.duration_weeks:g} weeks, ${p.estimated_budget:,.0f}"
            for p in draft.campaign_phases
        ])
    return _join(
        build_client_brief(intake), _resolved(targets), _platforms(draft.platform_strategy), phases,
        _synthesis(research),
        limit=CONTEXT_LIMITS['executive_summary']
    )


def build_risk_context(intake: ClientIntake, research: ResearchDocument,
                       draft: PlanDraft, targets: ResolvedTargets) -> str:
    scenarios = ""
    if draft.performance_model is not None and draft.performance_model.scenarios:
        scenarios = _section("CAC Scenarios", [
            f"- {s.label}: CAC ${s.resulting_cac:,} at CPL ${s.assumed_cpl:,.0f}"
            for s in draft.performance_model.scenarios
        ])
    return _join(
        build_client_brief(intake), _resolved(targets), scenarios, _platforms(draft.platform_strategy),
        _competitors(research),
        limit=CONTEXT_LIMITS['risk_monitoring']
    )
