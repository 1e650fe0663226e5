"""
Inbound documents consumed by the pipeline: the client intake and the
upstream research document. Both are owned elsewhere and never mutated here.

Only the current shape (schema_version 2) is modelled. Older stored shapes
are converted by the migration functions in ``data.parsers``.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

CURRENT_SCHEMA_VERSION = 2


class InputRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ClientIntake(InputRecord):
    """Validated client onboarding data."""
    schema_version: Literal[2] = 2
    company_name: str
    industry: str
    monthly_budget: float = Field(gt=0)
    offer_name: str
    offer_price: float = Field(ge=0)
    pricing_models: List[str] = []
    target_cpl: Optional[float] = Field(default=None, gt=0)
    lead_to_sql_rate: Optional[float] = Field(default=None, gt=0, le=100)
    sql_to_customer_rate: Optional[float] = Field(default=None, gt=0, le=100)
    icp_description: str
    target_locations: List[str] = []
    compliance_constraints: List[str] = []
    current_platforms: List[str] = []
    has_existing_paid_traffic: bool = False
    has_organic_keywords: bool = False
    campaign_duration_months: int = Field(default=3, ge=1, le=24)
    primary_goal: str = "lead generation"


class IndustryOverview(InputRecord):
    market_summary: str
    trends: List[str] = []
    seasonality: str = ""
    pain_points: List[str] = []


class IcpAnalysis(InputRecord):
    summary: str
    segments: List[str] = []
    buying_triggers: List[str] = []
    objections: List[str] = []


class OfferAnalysis(InputRecord):
    summary: str
    strengths: List[str] = []
    weaknesses: List[str] = []
    offer_score: Optional[float] = Field(default=None, ge=0, le=10)


class Competitor(InputRecord):
    name: str
    positioning: str = ""
    ad_platforms: List[str] = []
    strengths: List[str] = []
    weaknesses: List[str] = []


class CompetitorAnalysis(InputRecord):
    competitors: List[Competitor] = []
    white_space: List[str] = []


class Keyword(InputRecord):
    term: str
    monthly_volume: Optional[int] = Field(default=None, ge=0)
    cpc: Optional[float] = Field(default=None, ge=0)


class KeywordIntelligence(InputRecord):
    keywords: List[Keyword] = []


class StrategicSynthesis(InputRecord):
    positioning: str
    key_messages: List[str] = []
    recommended_platforms: List[str] = []
    recommended_angles: List[str] = []


class SensitivityScenario(InputRecord):
    assumed_cpl: float = Field(gt=0)
    assumed_lead_to_sql_rate: float = Field(gt=0, le=100)
    assumed_sql_to_customer_rate: float = Field(gt=0, le=100)
    conditions: str = ""


class SensitivityAnalysis(InputRecord):
    best_case: SensitivityScenario
    base_case: SensitivityScenario
    worst_case: SensitivityScenario


class ResearchDocument(InputRecord):
    """Validated upstream business research for one client."""
    schema_version: Literal[2] = 2
    industry_overview: IndustryOverview
    icp_analysis: IcpAnalysis
    offer_analysis: OfferAnalysis
    competitor_analysis: CompetitorAnalysis
    keyword_intelligence: Optional[KeywordIntelligence] = None
    strategic_synthesis: StrategicSynthesis
    sensitivity_analysis: Optional[SensitivityAnalysis] = None
