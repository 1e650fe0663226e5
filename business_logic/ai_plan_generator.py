"""
AI Plan Generator for the sections of a performance media plan.

Each public method pairs one plan section with its system prompt, context
block, response schema and generation settings, and hands the call to the
GenerationCaller. Numbers in the responses are untrusted until the
validation engine has run over them.
"""

import asyncio
import logging
from typing import Optional, Type

from pydantic import BaseModel

from config.settings import config_manager
from models.data_models import GenerationResult, ResolvedTargets
from models.input_documents import ClientIntake, ResearchDocument
from models.plan_schemas import (
    BudgetMonitoringOutput, CampaignPhasesOutput, CampaignStructure, CreativeStrategy,
    ICPTargeting, KPIResearch, MediaPlanExecutiveSummary, PlanDraft,
    PlatformStrategyResearch, RiskMonitoring
)
from . import context_builder
from .error_handler import RetryConfig
from .generation_caller import CostTracker, GenerationCaller, OpenAIProvider

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ROLE = ("You are a senior performance marketing strategist building a paid media plan "
        "for a B2B or high-consideration B2C offer. Be specific and quantitative.")

SYSTEM_PROMPTS = {
    'platform_strategy': (
        f"{ROLE} Recommend the advertising platforms for this client. Give each platform a budget "
        "percentage (all percentages sum to 100), its monthly spend, an expected CPL range and a priority."
    ),
    'icp_targeting': (
        f"{ROLE} Define the audience segments for this client and how to target each segment on every "
        "recommended platform, including interests, job titles, custom and lookalike audiences and exclusions."
    ),
    'kpi_targets': (
        f"{ROLE} Set primary and secondary KPI targets with measurement methods and industry benchmarks. "
        "Also estimate a benchmark CPL and the lead-to-SQL and SQL-to-customer conversion rates in percent."
    ),
    'campaign_structure': (
        f"{ROLE} Design the campaign structure: campaigns with platform, funnel stage (cold, warm or hot), "
        "daily budget and ad sets, plus naming conventions, UTM structure, retargeting segments and "
        "negative keywords. Campaign names must include the platform and funnel stage."
    ),
    'creative_strategy': (
        f"{ROLE} Write the creative strategy: messaging angles with hooks and headlines, format specs per "
        "platform, a creative testing plan, refresh cadence and brand guidelines."
    ),
    'campaign_phases': (
        f"{ROLE} Lay out the phased rollout with durations in weeks, objectives, activities, success "
        "criteria, estimated budget per phase and go/no-go criteria."
    ),
    'budget_allocation': (
        f"{ROLE} Allocate the monthly budget across platforms and funnel stages, set the daily ceiling, "
        "describe the ramp-up and monthly roadmap, and define the daily, weekly and monthly monitoring schedule."
    ),
    'executive_summary': (
        f"{ROLE} Write the executive summary of the plan. Quote only the resolved targets provided; "
        "do not invent other budget, CPL, CAC or volume figures."
    ),
    'risk_monitoring': (
        f"{ROLE} Build the risk register. Rate each risk's probability and impact from 1 to 5 and give a "
        "mitigation, contingency and early warning indicator. Use the resolved targets as the baseline."
    ),
}


class AIPlanGenerator:
    """
    Generates plan sections with the configured language model.

    One instance serves a whole run; per-run state (cost tracker,
    cancellation) is passed into every call.
    """

    def __init__(self, caller: Optional[GenerationCaller] = None, config=None,
                 skip_openai_init: bool = False):
        """
        Initialize the AI Plan Generator.

        Args:
            caller: GenerationCaller to use; built from configuration when omitted
            config: Configuration manager; defaults to the global config_manager
            skip_openai_init: Skip OpenAI client initialization (for testing)
        """
        self.config = config or config_manager
        if caller is None:
            caller = GenerationCaller(
                OpenAIProvider(skip_openai_init=skip_openai_init),
                RetryConfig(**self.config.get_retry_settings())
            )
        self.caller = caller

    async def _generate(self, section: str, user_prompt: str, schema: Type[BaseModel],
                        cost_tracker: CostTracker, cancel_event: Optional[asyncio.Event],
                        research: bool = False) -> GenerationResult:
        settings = self.config.get_generation_settings(section, research=research)
        logger.info(f"Requesting {section} from {settings.model} "
                    f"(~{context_builder.estimate_tokens(user_prompt)} context tokens)")
        return await self.caller.call(
            SYSTEM_PROMPTS[section], user_prompt, schema, settings,
            section=section, cost_tracker=cost_tracker, cancel_event=cancel_event
        )

    async def generate_platform_strategy(self, intake: ClientIntake, research: ResearchDocument,
                                         cost_tracker: CostTracker,
                                         cancel_event: Optional[asyncio.Event] = None) -> GenerationResult:
        """Research phase: platform mix and spend split."""
        context = context_builder.build_platform_strategy_context(intake, research)
        return await self._generate('platform_strategy', context, PlatformStrategyResearch,
                                    cost_tracker, cancel_event, research=True)

    async def generate_icp_targeting(self, intake: ClientIntake, research: ResearchDocument,
                                     cost_tracker: CostTracker,
                                     cancel_event: Optional[asyncio.Event] = None) -> GenerationResult:
        """Research phase: audience segments and per-platform targeting."""
        context = context_builder.build_icp_context(intake, research)
        return await self._generate('icp_targeting', context, ICPTargeting,
                                    cost_tracker, cancel_event, research=True)

    async def generate_kpi_targets(self, intake: ClientIntake, research: ResearchDocument,
                                   cost_tracker: CostTracker,
                                   cancel_event: Optional[asyncio.Event] = None) -> GenerationResult:
        """Research phase: KPI targets plus CPL and funnel-rate benchmarks."""
        context = context_builder.build_kpi_context(intake, research)
        return await self._generate('kpi_targets', context, KPIResearch,
                                    cost_tracker, cancel_event, research=True)

    async def generate_campaign_structure(self, intake: ClientIntake, research: ResearchDocument,
                                          draft: PlanDraft, generation_year: int, cost_tracker: CostTracker,
                                          cancel_event: Optional[asyncio.Event] = None) -> GenerationResult:
        context = context_builder.build_campaign_structure_context(intake, research, draft, generation_year)
        return await self._generate('campaign_structure', context, CampaignStructure, cost_tracker, cancel_event)

    async def generate_creative_strategy(self, intake: ClientIntake, research: ResearchDocument,
                                         draft: PlanDraft, cost_tracker: CostTracker,
                                         cancel_event: Optional[asyncio.Event] = None) -> GenerationResult:
        context = context_builder.build_creative_context(intake, research, draft)
        return await self._generate('creative_strategy', context, CreativeStrategy, cost_tracker, cancel_event)

    async def generate_campaign_phases(self, intake: ClientIntake, draft: PlanDraft, cost_tracker: CostTracker,
                                       cancel_event: Optional[asyncio.Event] = None) -> GenerationResult:
        context = context_builder.build_campaign_phases_context(intake, draft)
        return await self._generate('campaign_phases', context, CampaignPhasesOutput, cost_tracker, cancel_event)

    async def generate_budget_allocation(self, intake: ClientIntake, draft: PlanDraft, cost_tracker: CostTracker,
                                         cancel_event: Optional[asyncio.Event] = None) -> GenerationResult:
        """
        Budget allocation and monitoring schedule in one call.

        Args:
            intake: Client intake
            draft: Draft holding the validated campaign structure
            cost_tracker: Run-level cost tracker
            cancel_event: Optional cancellation event

        Returns:
            GenerationResult whose data is a BudgetMonitoringOutput
        """
        context = context_builder.build_budget_context(intake, draft)
        return await self._generate('budget_allocation', context, BudgetMonitoringOutput,
                                    cost_tracker, cancel_event)

    async def generate_executive_summary(self, intake: ClientIntake, research: ResearchDocument,
                                         draft: PlanDraft, targets: ResolvedTargets, cost_tracker: CostTracker,
                                         cancel_event: Optional[asyncio.Event] = None) -> GenerationResult:
        context = context_builder.build_executive_summary_context(intake, research, draft, targets)
        return await self._generate('executive_summary', context, MediaPlanExecutiveSummary,
                                    cost_tracker, cancel_event)

    async def generate_risk_monitoring(self, intake: ClientIntake, research: ResearchDocument,
                                       draft: PlanDraft, targets: ResolvedTargets, cost_tracker: CostTracker,
                                       cancel_event: Optional[asyncio.Event] = None) -> GenerationResult:
        context = context_builder.build_risk_context(intake, research, draft, targets)
        return await self._generate('risk_monitoring', context, RiskMonitoring, cost_tracker, cancel_event)
