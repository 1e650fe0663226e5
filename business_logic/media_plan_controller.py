"""
Media Plan Controller - orchestrates the multi-phase generation pipeline.

A run moves through a fixed sequence of phases. Research and synthesis
phases fan out generative calls as waves; after each phase that produces
numbers the validation engine corrects the draft before any later phase
sees it. The controller owns progress reporting, cost and timing
accounting, and turns any failure into a failed PipelineResult.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from config.settings import config_manager
from models.data_models import (
    PipelineResult, SectionEvent, SectionPhase, SectionStatus, ValidationAdjustment
)
from models.input_documents import ClientIntake, ResearchDocument
from models.plan_schemas import (
    KPIResearch, MediaPlanMetadata, MediaPlanOutput, MonitoringSchedule, PlanDraft, SECTION_LABELS
)
from .ai_plan_generator import AIPlanGenerator
from .error_handler import PipelineError, error_handler
from .generation_caller import CostTracker
from .performance_model import (
    build_performance_model, build_resolved_targets, compute_roas, resolve_cac_inputs
)
from .plan_validator import PlanValidator, ValidationContext, ValidationStage
from .wave_executor import Clock, WaveTask, execute_wave

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PLAN_VERSION = "2.0"

EventCallback = Callable[[SectionEvent], None]
ProgressCallback = Callable[[str, int], None]


class PipelineState(Enum):
    """Phases of a generation run."""
    RESEARCH = "research"
    SYNTHESIS_WAVE_1 = "synthesis_wave_1"
    SYNTHESIS_WAVE_2 = "synthesis_wave_2"
    BUDGET_VALIDATION = "budget_validation"
    CROSS_SECTION_VALIDATION = "cross_section_validation"
    FINAL_SYNTHESIS = "final_synthesis"
    ASSEMBLED = "assembled"
    FAILED = "failed"


_TRANSITIONS = {
    None: {PipelineState.RESEARCH},
    PipelineState.RESEARCH: {PipelineState.SYNTHESIS_WAVE_1, PipelineState.FAILED},
    PipelineState.SYNTHESIS_WAVE_1: {PipelineState.SYNTHESIS_WAVE_2, PipelineState.FAILED},
    PipelineState.SYNTHESIS_WAVE_2: {PipelineState.BUDGET_VALIDATION, PipelineState.FAILED},
    PipelineState.BUDGET_VALIDATION: {PipelineState.CROSS_SECTION_VALIDATION, PipelineState.FAILED},
    PipelineState.CROSS_SECTION_VALIDATION: {PipelineState.FINAL_SYNTHESIS, PipelineState.FAILED},
    PipelineState.FINAL_SYNTHESIS: {PipelineState.ASSEMBLED, PipelineState.FAILED},
    PipelineState.ASSEMBLED: {PipelineState.FAILED},
    PipelineState.FAILED: set(),
}


@dataclass
class PipelineRun:
    """Mutable bookkeeping for one run; the plan draft itself is immutable."""
    intake: ClientIntake
    research: ResearchDocument
    context: ValidationContext
    cost_tracker: CostTracker = field(default_factory=CostTracker)
    draft: PlanDraft = field(default_factory=PlanDraft)
    state: Optional[PipelineState] = None
    state_started: float = 0.0
    phase_timings: Dict[str, int] = field(default_factory=dict)
    adjustments: List[ValidationAdjustment] = field(default_factory=list)
    kpi_research: Optional[KPIResearch] = None
    monitoring_schedule: Optional[MonitoringSchedule] = None
    on_event: Optional[EventCallback] = None
    on_progress: Optional[ProgressCallback] = None
    cancel_event: Optional[asyncio.Event] = None


class MediaPlanController:
    """
    Runs the media plan pipeline end to end.

    research -> synthesis_wave_1 -> synthesis_wave_2 -> budget_validation
    -> cross_section_validation -> final_synthesis -> assembled
    """

    def __init__(self, generator: Optional[AIPlanGenerator] = None,
                 validator: Optional[PlanValidator] = None,
                 clock: Optional[Clock] = None,
                 stagger_delay: Optional[float] = None,
                 generation_year: Optional[int] = None,
                 testing_mode: bool = False):
        """
        Initialize the media plan controller.

        Args:
            generator: Section generator; built from configuration when omitted
            validator: Validation engine; defaults to the full rule catalog
            clock: Clock for wave scheduling; real time when omitted
            stagger_delay: Seconds between staggered task starts; from configuration when omitted
            generation_year: Year stamped into campaign names; the current year when omitted
            testing_mode: Skip OpenAI initialization for testing
        """
        self.generator = generator or AIPlanGenerator(skip_openai_init=testing_mode)
        self.validator = validator or PlanValidator()
        self.clock = clock
        self.stagger_delay = stagger_delay
        self.generation_year = generation_year

        logger.info("MediaPlanController initialized")

    # --- run bookkeeping ---------------------------------------------------------

    def _transition(self, run: PipelineRun, new_state: PipelineState):
        if new_state not in _TRANSITIONS[run.state]:
            raise PipelineError(
                f"Invalid pipeline transition {run.state.value if run.state else 'start'} -> {new_state.value}",
                phase=run.state.value if run.state else None
            )

        now = time.perf_counter()
        if run.state is not None:
            elapsed = int((now - run.state_started) * 1000)
            run.phase_timings[run.state.value] = elapsed
            logger.info(f"Phase {run.state.value} finished in {elapsed}ms")

        run.state = new_state
        run.state_started = now
        logger.info(f"Entering phase {new_state.value}")

    @staticmethod
    def _emit(run: PipelineRun, section: str, phase: SectionPhase, status: SectionStatus, data: Any = None):
        if run.on_event:
            run.on_event(SectionEvent(
                section=section,
                phase=phase,
                status=status,
                label=SECTION_LABELS.get(section, section),
                data=data
            ))

    @staticmethod
    def _progress(run: PipelineRun, message: str, percent: int):
        logger.info(f"[{percent}%] {message}")
        if run.on_progress:
            run.on_progress(message, percent)

    def _section_task(self, run: PipelineRun, section: str, phase: SectionPhase,
                      execute: Callable[[], Awaitable[Any]]) -> WaveTask:
        return WaveTask(
            id=section,
            execute=execute,
            on_start=lambda: self._emit(run, section, phase, SectionStatus.START),
            on_complete=lambda result: self._emit(run, section, phase, SectionStatus.COMPLETE, result.data),
        )

    async def _run_wave(self, tasks: Sequence[WaveTask], stagger: float) -> Dict[str, Any]:
        result = await execute_wave(tasks, stagger, self.clock)
        return result.results

    def _resolve_stagger(self) -> float:
        if self.stagger_delay is not None:
            return self.stagger_delay
        return config_manager.get_stagger_delay()

    def _validate(self, run: PipelineRun, stage: ValidationStage):
        report = self.validator.validate(run.draft, run.context, stage)
        run.draft = report.draft
        run.adjustments.extend(report.adjustments)

        logger.info(f"Validation stage {stage.value}: {len(report.corrections)} correction(s), "
                    f"{len(report.warnings)} warning(s)")
        for adjustment in report.adjustments:
            if adjustment.is_correction:
                logger.info(f"[{adjustment.rule}] {adjustment.field}: {adjustment.reason}")
            else:
                logger.warning(f"[{adjustment.rule}] {adjustment.field}: {adjustment.reason}")

        self._emit(run, stage.value, SectionPhase.VALIDATION, SectionStatus.COMPLETE,
                   [a.to_dict() for a in report.adjustments])

    # --- phases --------------------------------------------------------------------

    async def _research(self, run: PipelineRun):
        gen, intake, research = self.generator, run.intake, run.research
        tracker, cancel = run.cost_tracker, run.cancel_event
        phase = SectionPhase.RESEARCH

        results = await self._run_wave([
            self._section_task(run, 'platform_strategy', phase,
                               lambda: gen.generate_platform_strategy(intake, research, tracker, cancel)),
            self._section_task(run, 'icp_targeting', phase,
                               lambda: gen.generate_icp_targeting(intake, research, tracker, cancel)),
            self._section_task(run, 'kpi_targets', phase,
                               lambda: gen.generate_kpi_targets(intake, research, tracker, cancel)),
        ], stagger=0)

        run.kpi_research = results['kpi_targets'].data
        run.draft = run.draft.model_copy(update={
            'platform_strategy': results['platform_strategy'].data.platforms,
            'icp_targeting': results['icp_targeting'].data,
            'kpi_targets': run.kpi_research.kpi_targets,
        })

    async def _synthesis_wave_1(self, run: PipelineRun, stagger: float):
        gen, intake, research, draft = self.generator, run.intake, run.research, run.draft
        tracker, cancel = run.cost_tracker, run.cancel_event
        year = run.context.generation_year
        phase = SectionPhase.SYNTHESIS

        results = await self._run_wave([
            self._section_task(run, 'campaign_structure', phase,
                               lambda: gen.generate_campaign_structure(intake, research, draft, year, tracker,
                                                                       cancel)),
            self._section_task(run, 'creative_strategy', phase,
                               lambda: gen.generate_creative_strategy(intake, research, draft, tracker, cancel)),
        ], stagger=stagger)

        run.draft = run.draft.model_copy(update={
            'campaign_structure': results['campaign_structure'].data,
            'creative_strategy': results['creative_strategy'].data,
        })

    async def _synthesis_wave_2(self, run: PipelineRun, stagger: float):
        gen, intake, draft = self.generator, run.intake, run.draft
        tracker, cancel = run.cost_tracker, run.cancel_event
        phase = SectionPhase.SYNTHESIS

        results = await self._run_wave([
            self._section_task(run, 'campaign_phases', phase,
                               lambda: gen.generate_campaign_phases(intake, draft, tracker, cancel)),
            self._section_task(run, 'budget_allocation', phase,
                               lambda: gen.generate_budget_allocation(intake, draft, tracker, cancel)),
        ], stagger=stagger)

        budget_output = results['budget_allocation'].data
        run.monitoring_schedule = budget_output.monitoring_schedule
        run.draft = run.draft.model_copy(update={
            'campaign_phases': results['campaign_phases'].data.phases,
            'budget_allocation': budget_output.budget_allocation,
        })

    def _build_performance_model(self, run: PipelineRun):
        total = run.draft.budget_allocation.total_monthly_budget
        cac_input = resolve_cac_inputs(run.intake, total, run.kpi_research)
        performance = build_performance_model(cac_input, run.monitoring_schedule,
                                              run.research.sensitivity_analysis)
        run.draft = run.draft.model_copy(update={'performance_model': performance})

        cac = performance.cac_model
        logger.info(f"CAC model: {cac.expected_monthly_leads} leads, {cac.expected_monthly_sqls} SQLs, "
                    f"{cac.expected_monthly_customers} customers, CAC ${cac.target_cac:,}, "
                    f"LTV:CAC {cac.ltv_to_cac_ratio}")
        self._emit(run, 'performance_model', SectionPhase.VALIDATION, SectionStatus.DATA, performance)

    async def _final_synthesis(self, run: PipelineRun):
        gen, intake, research, draft = self.generator, run.intake, run.research, run.draft
        tracker, cancel = run.cost_tracker, run.cancel_event
        phase = SectionPhase.FINAL

        cac_model = draft.performance_model.cac_model
        total = draft.budget_allocation.total_monthly_budget
        targets = build_resolved_targets(cac_model, total, compute_roas(cac_model, intake.offer_price, total))

        results = await self._run_wave([
            self._section_task(run, 'executive_summary', phase,
                               lambda: gen.generate_executive_summary(intake, research, draft, targets, tracker,
                                                                      cancel)),
            self._section_task(run, 'risk_monitoring', phase,
                               lambda: gen.generate_risk_monitoring(intake, research, draft, targets, tracker,
                                                                    cancel)),
        ], stagger=0)

        run.draft = run.draft.model_copy(update={
            'executive_summary': results['executive_summary'].data,
            'risk_monitoring': results['risk_monitoring'].data,
        })

    def _assemble(self, run: PipelineRun, started: float) -> MediaPlanOutput:
        corrections = [a for a in run.adjustments if a.is_correction]
        warnings = [a.reason for a in run.adjustments if not a.is_correction]
        metadata = MediaPlanMetadata(
            generated_at=datetime.now(),
            version=PLAN_VERSION,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            total_cost=run.cost_tracker.total_cost,
            models_used=run.cost_tracker.models_used,
            validation_adjustments=corrections,
            validation_warnings=warnings
        )
        return MediaPlanOutput.from_draft(run.draft, metadata)

    # --- entry point -----------------------------------------------------------------

    async def generate_media_plan(self, intake: ClientIntake, research: ResearchDocument,
                                  on_event: Optional[EventCallback] = None,
                                  on_progress: Optional[ProgressCallback] = None,
                                  cancel_event: Optional[asyncio.Event] = None) -> PipelineResult:
        """
        Generate a complete, validated media plan.

        Args:
            intake: Validated client intake
            research: Validated research document
            on_event: Receives a SectionEvent per section start, completion and validation stage
            on_progress: Receives (message, percent) at each phase boundary
            cancel_event: Aborts in-flight generative calls when set

        Returns:
            PipelineResult; on failure media_plan is None and total_cost is the partial spend
        """
        started = time.perf_counter()
        year = self.generation_year or datetime.now().year
        run = PipelineRun(
            intake=intake,
            research=research,
            context=ValidationContext.from_intake(intake, year),
            on_event=on_event,
            on_progress=on_progress,
            cancel_event=cancel_event
        )
        logger.info(f"Starting media plan generation for {intake.company_name}")

        try:
            stagger = self._resolve_stagger()

            self._transition(run, PipelineState.RESEARCH)
            self._progress(run, "Researching platforms, audiences and KPI benchmarks", 5)
            await self._research(run)
            self._progress(run, "Research complete", 30)
            self._validate(run, ValidationStage.RESEARCH)

            self._transition(run, PipelineState.SYNTHESIS_WAVE_1)
            self._progress(run, "Designing campaign structure and creative strategy", 38)
            await self._synthesis_wave_1(run, stagger)
            self._validate(run, ValidationStage.STRUCTURE)

            self._transition(run, PipelineState.SYNTHESIS_WAVE_2)
            self._progress(run, "Planning phases, budget and monitoring", 45)
            await self._synthesis_wave_2(run, stagger)
            self._progress(run, "Synthesis complete", 52)

            self._transition(run, PipelineState.BUDGET_VALIDATION)
            self._progress(run, "Validating budget", 60)
            self._validate(run, ValidationStage.BUDGET)
            self._build_performance_model(run)

            self._transition(run, PipelineState.CROSS_SECTION_VALIDATION)
            self._progress(run, "Reconciling sections", 65)
            self._validate(run, ValidationStage.CROSS_SECTION)
            self._progress(run, "Cross-section validation complete", 70)

            self._transition(run, PipelineState.FINAL_SYNTHESIS)
            self._progress(run, "Writing executive summary and risk register", 75)
            await self._final_synthesis(run)
            self._progress(run, "Final synthesis complete", 90)

            self._transition(run, PipelineState.ASSEMBLED)
            self._validate(run, ValidationStage.FINAL)
            media_plan = self._assemble(run, started)
            run.phase_timings[PipelineState.ASSEMBLED.value] = int((time.perf_counter() - run.state_started) * 1000)
            self._progress(run, "Media plan ready", 100)

        except Exception as e:
            failed_phase = run.state.value if run.state else None
            if run.state is not None and run.state != PipelineState.FAILED:
                self._transition(run, PipelineState.FAILED)

            error = e if isinstance(e, PipelineError) else PipelineError(str(e), failed_phase, e)
            error_info = error_handler.classify_error(error, failed_phase or "")
            error_handler.log_error(error_info, "Media plan generation")
            notification = error_handler.create_user_notification(error_info)
            stats = error_handler.get_error_statistics()
            logger.info(f"Errors in the last 24h: {stats['recent_errors_24h']} ({stats['code_breakdown']})")

            return PipelineResult(
                success=False,
                error=notification['message'],
                error_code=notification['code'],
                failed_phase=failed_phase,
                total_cost=run.cost_tracker.total_cost,
                total_time_ms=int((time.perf_counter() - started) * 1000),
                phase_timings=dict(run.phase_timings),
                adjustments=[a for a in run.adjustments if a.is_correction],
                warnings=[a.reason for a in run.adjustments if not a.is_correction],
                cost_breakdown=run.cost_tracker.get_cost_analysis()['sections']
            )

        total_ms = int((time.perf_counter() - started) * 1000)
        cost_analysis = run.cost_tracker.get_cost_analysis()
        logger.info(f"Media plan for {intake.company_name} generated in {total_ms}ms, "
                    f"cost ${run.cost_tracker.total_cost:.4f}, "
                    f"{len(media_plan.metadata.validation_adjustments)} correction(s)")
        for section, entry in cost_analysis['sections'].items():
            logger.info(f"  {section}: {entry['calls']} call(s), {entry['tokens']} tokens, ${entry['cost']:.4f}")

        return PipelineResult(
            success=True,
            media_plan=media_plan,
            total_cost=run.cost_tracker.total_cost,
            total_time_ms=total_ms,
            phase_timings=dict(run.phase_timings),
            adjustments=list(media_plan.metadata.validation_adjustments),
            warnings=list(media_plan.metadata.validation_warnings),
            cost_breakdown=cost_analysis['sections']
        )
