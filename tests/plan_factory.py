"""
Builders for plan sections, documents and a scripted model provider.

The default draft is internally consistent for a $5,000/month budget in
2026: running the validation engine over it produces no corrections.
"""

import json
from typing import Dict, Iterable, Optional, Set, Type

from pydantic import BaseModel

from business_logic.error_handler import FatalGenerationError
from business_logic.generation_caller import ModelProvider, ProviderResponse
from business_logic.performance_model import build_performance_model
from business_logic.plan_validator import ValidationContext
from config.settings import GenerationSettings
from models.data_models import CACModelInput, TokenUsage
from models.input_documents import (
    ClientIntake, Competitor, CompetitorAnalysis, IcpAnalysis, IndustryOverview, Keyword,
    KeywordIntelligence, OfferAnalysis, ResearchDocument, SensitivityAnalysis, SensitivityScenario,
    StrategicSynthesis
)
from models.plan_schemas import (
    AdSetTemplate, AudienceSegment, BudgetAllocation, BudgetMonitoringOutput, CampaignPhase,
    CampaignPhasesOutput, CampaignStructure, CampaignTemplate, CplRange, CreativeAngle,
    CreativeStrategy, FormatSpec, FunnelSplit, ICPTargeting, KPIResearch, KPITarget,
    MediaPlanExecutiveSummary, MonitoringSchedule, NamingConvention, PlanDraft, PlatformBudget,
    PlatformStrategy, PlatformStrategyResearch, PlatformTargeting, Risk, RiskMonitoring, UtmStructure
)

YEAR = 2026


def make_intake(**overrides) -> ClientIntake:
    data = dict(
        company_name="Acme Analytics",
        industry="B2B SaaS",
        monthly_budget=5000,
        offer_name="Analytics Pro",
        offer_price=100,
        pricing_models=["monthly subscription"],
        target_cpl=75,
        lead_to_sql_rate=15,
        sql_to_customer_rate=25,
        icp_description="Operations leaders at mid-market logistics companies",
        target_locations=["United States"],
        current_platforms=["Google Ads"],
        has_existing_paid_traffic=True,
        has_organic_keywords=False,
    )
    data.update(overrides)
    return ClientIntake(**data)


def make_research(with_sensitivity: bool = True) -> ResearchDocument:
    sensitivity = None
    if with_sensitivity:
        sensitivity = SensitivityAnalysis(
            best_case=SensitivityScenario(assumed_cpl=60, assumed_lead_to_sql_rate=20,
                                          assumed_sql_to_customer_rate=30),
            base_case=SensitivityScenario(assumed_cpl=75, assumed_lead_to_sql_rate=15,
                                          assumed_sql_to_customer_rate=25),
            worst_case=SensitivityScenario(assumed_cpl=110, assumed_lead_to_sql_rate=10,
                                           assumed_sql_to_customer_rate=20),
        )
    return ResearchDocument(
        industry_overview=IndustryOverview(market_summary="Logistics software spend is growing.",
                                           trends=["AI route planning"]),
        icp_analysis=IcpAnalysis(summary="Ops leaders who own carrier costs.",
                                 buying_triggers=["Peak season overruns"]),
        offer_analysis=OfferAnalysis(summary="Self-serve analytics with a 14-day trial.", offer_score=7),
        competitor_analysis=CompetitorAnalysis(competitors=[
            Competitor(name="FreightIQ", positioning="Enterprise suite", ad_platforms=["LinkedIn", "Google Ads"]),
        ]),
        keyword_intelligence=KeywordIntelligence(keywords=[
            Keyword(term="freight analytics software", monthly_volume=880, cpc=14.5),
        ]),
        strategic_synthesis=StrategicSynthesis(positioning="Fastest time to insight for mid-market shippers.",
                                               recommended_platforms=["Google Ads", "Meta"]),
        sensitivity_analysis=sensitivity,
    )


def make_context(**overrides) -> ValidationContext:
    data = dict(target_budget=5000, generation_year=YEAR, has_paid_traffic=True,
                has_organic_keywords=False, offer_price=100)
    data.update(overrides)
    return ValidationContext(**data)


def make_platform_strategy(percentages: Iterable[float] = (60, 40),
                           spends: Iterable[float] = (3000, 2000)):
    names = ["Google Ads", "Meta"]
    return [
        PlatformStrategy(
            platform=name,
            rationale=f"{name} reaches in-market operations buyers",
            budget_percentage=pct,
            monthly_spend=spend,
            expected_cpl_range=CplRange(min=50, max=110),
            priority="primary" if i == 0 else "secondary",
        )
        for i, (name, pct, spend) in enumerate(zip(names, percentages, spends))
    ]


def make_icp() -> ICPTargeting:
    return ICPTargeting(
        segments=[
            AudienceSegment(name="Ops Leaders", description="VP and director of operations",
                            funnel_position="cold", priority_score=9),
            AudienceSegment(name="Site Visitors", description="Visited pricing page",
                            funnel_position="warm", priority_score=7),
        ],
        platform_targeting=[
            PlatformTargeting(platform="Google Ads", segment_name="Ops Leaders"),
            PlatformTargeting(platform="Meta", segment_name="Site Visitors"),
        ],
    )


def make_kpis(cac_target: str = "<$2,500"):
    return [
        KPITarget(metric="Cost per Lead", target="$75", timeframe="monthly",
                  measurement_method="CRM", type="primary"),
        KPITarget(metric="Customer Acquisition Cost", target=cac_target, timeframe="monthly",
                  measurement_method="CRM", type="primary"),
        KPITarget(metric="Monthly Leads", target="53/month", timeframe="monthly",
                  measurement_method="CRM", type="secondary"),
        KPITarget(metric="Sales Qualified Leads (SQLs)", target="8/month", timeframe="monthly",
                  measurement_method="CRM", type="secondary"),
        KPITarget(metric="LTV:CAC ratio", target="3:1", timeframe="quarterly",
                  measurement_method="Finance model", type="secondary"),
    ]


def make_campaign(name: str, platform: str, funnel_stage: str, daily_budget: float,
                  objective: str = "Lead generation") -> CampaignTemplate:
    return CampaignTemplate(
        name=name, platform=platform, objective=objective, funnel_stage=funnel_stage,
        daily_budget=daily_budget,
        ad_sets=[AdSetTemplate(name=f"{name}_AdSet1", targeting="Core audience", ads_to_test=3)],
    )


def make_campaign_structure(daily_budgets: Iterable[float] = (100, 45, 21), year: int = YEAR,
                            campaigns=None) -> CampaignStructure:
    google, meta_cold, meta_warm = daily_budgets
    if campaigns is None:
        campaigns = [
            make_campaign(f"Google_Search_Cold_{year}", "Google Ads", "cold", google),
            make_campaign(f"Meta_Prospecting_Cold_{year}", "Meta", "cold", meta_cold),
            make_campaign(f"Meta_Retargeting_Warm_{year}", "Meta", "warm", meta_warm,
                          objective="Retarget pricing page visitors"),
        ]
    return CampaignStructure(
        campaigns=campaigns,
        naming_conventions=NamingConvention(
            campaign_pattern=f"{{Platform}}_{{Objective}}_{{Funnel}}_{year}",
            ad_set_pattern="{Campaign}_{Audience}",
            ad_pattern="{AdSet}_{Angle}_v{N}",
            utm_structure=UtmStructure(source="{platform}", medium="paid", campaign="{campaign_name}"),
        ),
    )


def make_creative() -> CreativeStrategy:
    return CreativeStrategy(
        angles=[CreativeAngle(name="Cost control", hook="Cut carrier spend 12%",
                              message="See every lane's margin", target_segment="Ops Leaders")],
        format_specs=[
            FormatSpec(platform="Meta", format="Single image", dimensions="1080x1080"),
            FormatSpec(platform="Google Ads", format="Responsive search ad", dimensions="n/a"),
        ],
    )


def make_budget(total: float = 5000, breakdown=(("Google Ads", 3000, 60), ("Meta", 2000, 40)),
                daily_ceiling: float = 166, funnel=(("cold", 70), ("warm", 20), ("hot", 10))) -> BudgetAllocation:
    return BudgetAllocation(
        total_monthly_budget=total,
        platform_breakdown=[PlatformBudget(platform=p, monthly_budget=b, percentage=pct) for p, b, pct in breakdown],
        daily_ceiling=daily_ceiling,
        funnel_split=[FunnelSplit(stage=stage, percentage=pct) for stage, pct in funnel],
    )


def make_monitoring() -> MonitoringSchedule:
    return MonitoringSchedule(daily=["Check spend pacing"], weekly=["Review CPL by campaign"],
                              monthly=["Reforecast CAC"])


def make_phases(budgets: Iterable[float] = (2300, 4600, 6950), weeks: Iterable[float] = (2, 4, 6)):
    return [
        CampaignPhase(name=name, phase=i + 1, duration_weeks=w, estimated_budget=b,
                      success_criteria=["CPL under $90"])
        for i, (name, w, b) in enumerate(zip(["Launch", "Optimize", "Scale"], weeks, budgets))
    ]


def make_performance_model():
    cac_input = CACModelInput(monthly_budget=5000, target_cpl=75, lead_to_sql_rate=15,
                              sql_to_customer_rate=25, offer_price=100, retention_multiplier=12)
    return build_performance_model(cac_input, make_monitoring())


def make_summary(recommended: float = 5000, timeline: str = "8 weeks",
                 overview: str = "Launch Google Ads and Meta with a monthly budget of $5,000 "
                                 "targeting a CAC of $2,500.") -> MediaPlanExecutiveSummary:
    return MediaPlanExecutiveSummary(
        overview=overview,
        primary_objective="Generate qualified demo requests",
        recommended_monthly_budget=recommended,
        timeline_to_results=timeline,
        top_priorities=["Prove search intent converts"],
    )


def make_risk(risk: str, probability: Optional[int], impact: Optional[int],
              score: Optional[int] = None, classification: Optional[str] = None) -> Risk:
    return Risk(
        risk=risk, category="budget", severity="high", likelihood="medium",
        probability=probability, impact=impact, score=score, classification=classification,
        mitigation="Pause campaigns if CPL rises above $120", contingency="Shift budget to search",
    )


def make_risks(risks=None) -> RiskMonitoring:
    if risks is None:
        risks = [
            make_risk("CPL inflation in peak season", 4, 5, 20, "critical"),
            make_risk("Creative fatigue on Meta", 2, 3, 6, "low"),
        ]
    return RiskMonitoring(risks=risks, assumptions=["Lead to SQL rate holds at 15%"])


def make_draft(**overrides) -> PlanDraft:
    sections = dict(
        platform_strategy=make_platform_strategy(),
        icp_targeting=make_icp(),
        kpi_targets=make_kpis(),
        campaign_structure=make_campaign_structure(),
        creative_strategy=make_creative(),
        campaign_phases=make_phases(),
        budget_allocation=make_budget(),
        performance_model=make_performance_model(),
        executive_summary=make_summary(),
        risk_monitoring=make_risks(),
    )
    sections.update(overrides)
    return PlanDraft(**sections)


def section_payloads() -> Dict[Type[BaseModel], Dict]:
    """JSON payloads a well-behaved model would return, keyed by response schema."""
    dump = lambda record: record.model_dump(mode="json")  # noqa: E731
    return {
        PlatformStrategyResearch: {'platforms': [dump(p) for p in make_platform_strategy()]},
        ICPTargeting: dump(make_icp()),
        KPIResearch: {'kpi_targets': [dump(k) for k in make_kpis()], 'benchmark_cpl': 75.0},
        CampaignStructure: dump(make_campaign_structure()),
        CreativeStrategy: dump(make_creative()),
        CampaignPhasesOutput: {'phases': [dump(p) for p in make_phases()]},
        BudgetMonitoringOutput: {'budget_allocation': dump(make_budget()),
                                 'monitoring_schedule': dump(make_monitoring())},
        MediaPlanExecutiveSummary: dump(make_summary()),
        RiskMonitoring: dump(make_risks()),
    }


class ScriptedProvider(ModelProvider):
    """Returns canned payloads per schema and fails on request."""

    def __init__(self, payloads: Optional[Dict[Type[BaseModel], Dict]] = None,
                 fail_schemas: Optional[Set[Type[BaseModel]]] = None,
                 usage: TokenUsage = TokenUsage(1000, 500)):
        self.payloads = payloads or section_payloads()
        self.fail_schemas = fail_schemas or set()
        self.usage = usage
        self.calls = []

    async def generate(self, system_prompt: str, user_prompt: str,
                       schema: Type[BaseModel], settings: GenerationSettings) -> ProviderResponse:
        self.calls.append((schema, user_prompt))
        if schema in self.fail_schemas:
            raise FatalGenerationError(f"Provider refused {schema.__name__}")
        return ProviderResponse(content=json.dumps(self.payloads[schema]), usage=self.usage,
                                model=settings.model, finish_reason="stop")
