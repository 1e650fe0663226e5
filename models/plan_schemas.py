"""
Structured records for every media plan section.

These models double as the response contracts for the generative calls:
the caller validates each JSON response against the matching schema before
anything downstream reads it. Records are frozen; corrections produce new
instances via ``model_copy``.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.data_models import ValidationAdjustment

FunnelStage = Literal["cold", "warm", "hot"]
Level = Literal["low", "medium", "high"]


class PlanRecord(BaseModel):
    """Base for all plan records: unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)


# --- Platform strategy -------------------------------------------------------

class CplRange(PlanRecord):
    min: float = Field(ge=0)
    max: float = Field(ge=0)


class PlatformStrategy(PlanRecord):
    platform: str
    rationale: str
    budget_percentage: float = Field(ge=0, le=100)
    monthly_spend: float = Field(ge=0)
    expected_cpl_range: CplRange
    priority: Literal["primary", "secondary", "testing"]
    ad_formats: List[str] = []
    placements: List[str] = []
    synergies: str = ""


class PlatformStrategyResearch(PlanRecord):
    """Research-phase response for the platform strategy call."""
    platforms: List[PlatformStrategy] = Field(min_length=1)


# --- ICP targeting -----------------------------------------------------------

class AudienceSegment(PlanRecord):
    name: str
    description: str
    funnel_position: FunnelStage
    priority_score: int = Field(ge=1, le=10)
    estimated_reach: str = ""
    targeting_notes: str = ""


class PlatformTargeting(PlanRecord):
    platform: str
    segment_name: str
    interests: List[str] = []
    job_titles: List[str] = []
    custom_audiences: List[str] = []
    lookalike_audiences: List[str] = []
    exclusions: List[str] = []
    expected_reach: str = ""


class ICPTargeting(PlanRecord):
    segments: List[AudienceSegment] = Field(min_length=1)
    platform_targeting: List[PlatformTargeting] = []
    demographics: str = ""
    psychographics: str = ""


# --- KPIs --------------------------------------------------------------------

class KPITarget(PlanRecord):
    metric: str
    target: str
    timeframe: str
    measurement_method: str
    type: Literal["primary", "secondary"]
    benchmark: str = ""


class KPIResearch(PlanRecord):
    """Research-phase response for the KPI benchmark call."""
    kpi_targets: List[KPITarget] = Field(min_length=1)
    benchmark_cpl: Optional[float] = Field(default=None, gt=0)
    lead_to_sql_rate: Optional[float] = Field(default=None, gt=0, le=100)
    sql_to_customer_rate: Optional[float] = Field(default=None, gt=0, le=100)


# --- Campaign structure ------------------------------------------------------

class AdSetTemplate(PlanRecord):
    name: str
    targeting: str
    ads_to_test: int = Field(ge=1)
    placements: List[str] = []


class CampaignTemplate(PlanRecord):
    name: str
    platform: str
    objective: str
    funnel_stage: FunnelStage
    daily_budget: float = Field(ge=0)
    ad_sets: List[AdSetTemplate] = []
    notes: str = ""


class UtmStructure(PlanRecord):
    source: str
    medium: str
    campaign: str
    content: str = ""


class NamingConvention(PlanRecord):
    campaign_pattern: str
    ad_set_pattern: str
    ad_pattern: str
    utm_structure: UtmStructure


class RetargetingSegment(PlanRecord):
    name: str
    source: str
    lookback_days: int = Field(ge=1)
    messaging_approach: str


class NegativeKeyword(PlanRecord):
    keyword: str
    match_type: Literal["exact", "phrase", "broad"]
    reason: str


class CampaignStructure(PlanRecord):
    campaigns: List[CampaignTemplate] = Field(min_length=1)
    naming_conventions: NamingConvention
    retargeting_segments: List[RetargetingSegment] = []
    negative_keywords: List[NegativeKeyword] = []


# --- Creative strategy -------------------------------------------------------

class CreativeAngle(PlanRecord):
    name: str
    hook: str
    message: str
    target_segment: str
    example_headlines: List[str] = []


class FormatSpec(PlanRecord):
    platform: str
    format: str
    dimensions: str
    copy_guidelines: str = ""


class CreativeTestingPhase(PlanRecord):
    phase: str
    duration_weeks: float = Field(gt=0)
    variables_tested: List[str] = []
    success_metric: str


class CreativeRefreshCadence(PlanRecord):
    platform: str
    refresh_interval_days: int = Field(ge=1)
    fatigue_signals: List[str] = []


class BrandGuideline(PlanRecord):
    category: str
    guideline: str


class CreativeStrategy(PlanRecord):
    angles: List[CreativeAngle] = Field(min_length=1)
    format_specs: List[FormatSpec] = []
    testing_plan: List[CreativeTestingPhase] = []
    refresh_cadence: List[CreativeRefreshCadence] = []
    brand_guidelines: List[BrandGuideline] = []


# --- Budget ------------------------------------------------------------------

class PlatformBudget(PlanRecord):
    platform: str
    monthly_budget: float = Field(ge=0)
    percentage: float = Field(ge=0, le=100)


class FunnelSplit(PlanRecord):
    stage: FunnelStage
    percentage: float = Field(ge=0, le=100)
    rationale: str = ""


class MonthlyRoadmap(PlanRecord):
    month: int = Field(ge=1)
    budget: float = Field(ge=0)
    focus: str
    scaling_triggers: List[str] = []


class BudgetAllocation(PlanRecord):
    total_monthly_budget: float = Field(gt=0)
    platform_breakdown: List[PlatformBudget] = Field(min_length=1)
    daily_ceiling: float = Field(ge=0)
    ramp_up_strategy: str = ""
    funnel_split: List[FunnelSplit] = []
    monthly_roadmap: List[MonthlyRoadmap] = []


class MonitoringSchedule(PlanRecord):
    daily: List[str] = []
    weekly: List[str] = []
    monthly: List[str] = []


class BudgetMonitoringOutput(PlanRecord):
    """Wave-two response for the combined budget and monitoring call."""
    budget_allocation: BudgetAllocation
    monitoring_schedule: MonitoringSchedule


# --- Campaign phases ---------------------------------------------------------

class CampaignPhase(PlanRecord):
    name: str
    phase: int = Field(ge=1)
    duration_weeks: float = Field(gt=0)
    objectives: List[str] = []
    activities: List[str] = []
    success_criteria: List[str] = []
    estimated_budget: float = Field(ge=0)
    go_no_go_criteria: str = ""

    @property
    def duration_days(self) -> float:
        return self.duration_weeks * 7


class CampaignPhasesOutput(PlanRecord):
    phases: List[CampaignPhase] = Field(min_length=1)


# --- Performance model -------------------------------------------------------

class CACModel(PlanRecord):
    target_cpl: float
    lead_to_sql_rate: float
    sql_to_customer_rate: float
    expected_monthly_leads: int
    expected_monthly_sqls: int
    expected_monthly_customers: int
    target_cac: int
    estimated_ltv: int
    ltv_to_cac_ratio: str


class ScenarioCAC(PlanRecord):
    label: Literal["best", "base", "worst"]
    assumed_cpl: float
    lead_to_sql_rate: float
    sql_to_customer_rate: float
    resulting_cac: int
    expected_monthly_leads: int
    expected_monthly_sqls: int
    expected_monthly_customers: int
    estimated_ltv: float
    ltv_cac_ratio: str
    conditions: str = ""


class PerformanceModel(PlanRecord):
    cac_model: CACModel
    monitoring_schedule: MonitoringSchedule
    scenarios: List[ScenarioCAC] = []


# --- Risks -------------------------------------------------------------------

class Risk(PlanRecord):
    risk: str
    category: Literal["budget", "creative", "audience", "platform", "compliance", "market"]
    severity: Level
    likelihood: Level
    probability: Optional[int] = Field(default=None, ge=1, le=5)
    impact: Optional[int] = Field(default=None, ge=1, le=5)
    # Always recomputed by the validation engine
    score: Optional[int] = None
    classification: Optional[Literal["low", "medium", "high", "critical"]] = None
    mitigation: str
    contingency: str
    early_warning_indicator: Optional[str] = None
    monitoring_frequency: Optional[Literal["daily", "weekly", "monthly"]] = None


class RiskMonitoring(PlanRecord):
    risks: List[Risk] = Field(min_length=1)
    assumptions: List[str] = []


# --- Executive summary and aggregate -----------------------------------------

class MediaPlanExecutiveSummary(PlanRecord):
    overview: str
    primary_objective: str
    recommended_monthly_budget: float = Field(ge=0)
    timeline_to_results: str
    top_priorities: List[str] = []


class MediaPlanMetadata(PlanRecord):
    generated_at: datetime
    version: str
    processing_time_ms: int
    total_cost: float
    models_used: List[str]
    validation_adjustments: List[ValidationAdjustment] = []
    validation_warnings: List[str] = []


class PlanDraft(PlanRecord):
    """Partially assembled plan that the validation engine operates on."""
    platform_strategy: Optional[List[PlatformStrategy]] = None
    icp_targeting: Optional[ICPTargeting] = None
    kpi_targets: Optional[List[KPITarget]] = None
    campaign_structure: Optional[CampaignStructure] = None
    creative_strategy: Optional[CreativeStrategy] = None
    campaign_phases: Optional[List[CampaignPhase]] = None
    budget_allocation: Optional[BudgetAllocation] = None
    performance_model: Optional[PerformanceModel] = None
    executive_summary: Optional[MediaPlanExecutiveSummary] = None
    risk_monitoring: Optional[RiskMonitoring] = None


class MediaPlanOutput(PlanRecord):
    """Aggregate root of a completed generation run."""
    executive_summary: MediaPlanExecutiveSummary
    platform_strategy: List[PlatformStrategy]
    icp_targeting: ICPTargeting
    campaign_structure: CampaignStructure
    creative_strategy: CreativeStrategy
    budget_allocation: BudgetAllocation
    campaign_phases: List[CampaignPhase]
    kpi_targets: List[KPITarget]
    performance_model: PerformanceModel
    risk_monitoring: RiskMonitoring
    metadata: MediaPlanMetadata

    @classmethod
    def from_draft(cls, draft: PlanDraft, metadata: MediaPlanMetadata) -> "MediaPlanOutput":
        """
        Build the aggregate from a fully validated draft.

        Raises:
            ValueError: If any section is still missing
        """
        missing = [name for name, value in draft if value is None]
        if missing:
            raise ValueError(f"Cannot assemble media plan, missing sections: {', '.join(missing)}")
        return cls(**dict(draft), metadata=metadata)


SECTION_LABELS = {
    'executive_summary': 'Executive Summary',
    'platform_strategy': 'Platform Strategy',
    'icp_targeting': 'ICP Targeting',
    'campaign_structure': 'Campaign Structure',
    'creative_strategy': 'Creative Strategy',
    'budget_allocation': 'Budget Allocation',
    'campaign_phases': 'Campaign Phases',
    'kpi_targets': 'KPI Targets',
    'performance_model': 'Performance Model',
    'risk_monitoring': 'Risk & Monitoring',
}
