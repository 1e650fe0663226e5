"""
Deterministic validation and reconciliation of generated media plan sections.

The validator is a catalog of small rules. Each rule takes the current plan
draft and returns a possibly corrected draft plus the adjustments it made,
so every correction is visible in the audit trail and nothing is fixed
silently. Rules are pure: they never log, never mutate their input and give
the same result for the same draft. Running a rule on its own output yields
no further corrections.

Rules are grouped by the pipeline stage after which they run, so later
generation phases only ever see validated numbers.
"""

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from models.data_models import AdjustmentSeverity, ValidationAdjustment
from models.input_documents import ClientIntake
from models.plan_schemas import CampaignTemplate, PlanDraft
from .kpi_reconciler import (
    reconcile_kpi_targets, resolved_reference_values, sweep_stale_references
)
from .performance_model import build_resolved_targets, compute_roas, round_half_up

PERCENT_TOLERANCE = 0.01
BUDGET_DRIFT_TOLERANCE = 0.10
DAILY_BUDGET_TOLERANCE = 0.10
PHASE_TOTAL_TOLERANCE = 0.02
DAYS_PER_MONTH = 30

RETARGETING_NOTE = (" | Note: Activates once cold campaigns generate sufficient traffic pool "
                    "(estimated Week 3-4)")

PLATFORM_ALIASES: Dict[str, List[str]] = {
    'meta': ['meta', 'facebook', 'instagram', 'fb'],
    'google': ['google', 'google ads', 'adwords'],
    'linkedin': ['linkedin'],
    'tiktok': ['tiktok'],
    'youtube': ['youtube'],
    'twitter': ['twitter', 'x'],
    'microsoft': ['microsoft', 'bing'],
    'reddit': ['reddit'],
}

FUNNEL_ALIASES: Dict[str, List[str]] = {
    'cold': ['cold', 'prospecting', 'tof', 'awareness'],
    'warm': ['warm', 'retargeting', 'remarketing', 'mof'],
    'hot': ['hot', 'conversion', 'bof'],
}

RISK_LEVEL_LIMITS: Tuple[Tuple[int, str], ...] = ((6, 'low'), (12, 'medium'), (19, 'high'))

_YEAR_TOKEN = re.compile(r"(?<!\d)(20\d{2})(?!\d)")
_TIMELINE = re.compile(r"(\d+(?:\.\d+)?)\s*(day|week|month)s?", re.IGNORECASE)


class ValidationStage(Enum):
    """Pipeline point after which a group of rules runs."""
    RESEARCH = "research"
    STRUCTURE = "structure"
    BUDGET = "budget"
    CROSS_SECTION = "cross_section"
    FINAL = "final"


@dataclass(frozen=True)
class ValidationContext:
    """Externally supplied facts the rules validate against."""
    target_budget: float
    generation_year: int
    has_paid_traffic: bool = False
    has_organic_keywords: bool = False
    offer_price: float = 0.0

    @classmethod
    def from_intake(cls, intake: ClientIntake, generation_year: int) -> "ValidationContext":
        return cls(
            target_budget=intake.monthly_budget,
            generation_year=generation_year,
            has_paid_traffic=intake.has_existing_paid_traffic,
            has_organic_keywords=intake.has_organic_keywords,
            offer_price=intake.offer_price
        )


@dataclass(frozen=True)
class RuleOutcome:
    """Result of applying one rule."""
    draft: PlanDraft
    adjustments: Tuple[ValidationAdjustment, ...] = ()


RuleFunction = Callable[[PlanDraft, ValidationContext], RuleOutcome]


@dataclass(frozen=True)
class ValidationRule:
    """A named rule and the stages it runs in."""
    name: str
    stages: Tuple[ValidationStage, ...]
    apply: RuleFunction


@dataclass
class ValidationReport:
    """Validated draft plus everything the rules recorded."""
    draft: PlanDraft
    adjustments: List[ValidationAdjustment] = field(default_factory=list)

    @property
    def corrections(self) -> List[ValidationAdjustment]:
        return [a for a in self.adjustments if a.is_correction]

    @property
    def warnings(self) -> List[str]:
        return [a.reason for a in self.adjustments if not a.is_correction]


# --- Helpers ------------------------------------------------------------------

def _tokens(text: str) -> str:
    return " " + " ".join(re.findall(r"[a-z0-9]+", text.lower())) + " "


def canonical_platform(name: str) -> str:
    """
    Normalize a platform name to its alias key, e.g. "Facebook Ads" -> "meta".

    When several platforms are mentioned the earliest one wins. Unknown
    platforms are returned lowercased with a trailing "ads" dropped.
    """
    tokens = _tokens(name)
    best_key, best_pos = None, None
    for key, aliases in PLATFORM_ALIASES.items():
        for alias in aliases:
            pos = tokens.find(f" {' '.join(alias.split())} ")
            if pos >= 0 and (best_pos is None or pos < best_pos):
                best_key, best_pos = key, pos
    if best_key:
        return best_key
    words = tokens.split()
    if len(words) > 1 and words[-1] == 'ads':
        words = words[:-1]
    return " ".join(words)


def _mentions(name: str, aliases: Sequence[str]) -> bool:
    tokens = _tokens(name)
    return any(f" {' '.join(alias.split())} " in tokens for alias in aliases)


def normalize_percentages(values: List[float], tolerance: float = PERCENT_TOLERANCE) -> Optional[List[float]]:
    """
    Rescale percentages to sum to exactly 100.

    Entries are scaled proportionally and rounded to one decimal, then the
    largest entry absorbs the rounding residual.

    Returns:
        The corrected list, or None if the sum is already within tolerance
    """
    if not values:
        return None
    total = sum(values)
    if abs(total - 100) <= tolerance:
        return None

    if total <= 0:
        scaled = [round(100 / len(values), 1)] * len(values)
    else:
        scaled = [round(v * 100 / total, 1) for v in values]

    residual = round(100 - sum(scaled), 1)
    largest = scaled.index(max(scaled))
    scaled[largest] = round(scaled[largest] + residual, 1)
    return scaled


def _fix_stale_years(text: str, year: int) -> str:
    return _YEAR_TOKEN.sub(lambda m: str(year) if int(m.group(1)) < year else m.group(1), text)


def _is_retargeting(campaign: CampaignTemplate) -> bool:
    if campaign.funnel_stage == 'warm':
        return True
    text = f"{campaign.name} {campaign.objective}".lower()
    return 'retarget' in text or 'remarket' in text


def classify_risk_score(score: int) -> str:
    for limit, label in RISK_LEVEL_LIMITS:
        if score <= limit:
            return label
    return 'critical'


def _warning(field_path: str, value, rule: str, reason: str) -> ValidationAdjustment:
    return ValidationAdjustment(
        field=field_path,
        original_value=value,
        adjusted_value=value,
        rule=rule,
        reason=reason,
        severity=AdjustmentSeverity.WARNING
    )


# --- Platform strategy ----------------------------------------------------------

def platform_strategy_pct_sum(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Platform strategy budget percentages must sum to 100."""
    platforms = draft.platform_strategy
    if not platforms:
        return RuleOutcome(draft)

    original = [p.budget_percentage for p in platforms]
    corrected = normalize_percentages(original)
    if corrected is None:
        return RuleOutcome(draft)

    updated = [p.model_copy(update={'budget_percentage': pct}) for p, pct in zip(platforms, corrected)]
    return RuleOutcome(
        draft.model_copy(update={'platform_strategy': updated}),
        (ValidationAdjustment(
            field="platform_strategy[*].budget_percentage",
            original_value=original,
            adjusted_value=corrected,
            rule="PlatformStrategy_PctSum",
            reason=f"Platform percentages summed to {sum(original):.2f}%, rescaled to 100%"
        ),)
    )


def platform_strategy_spend_recalc(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Platform monthly spend is always derived from the total and its percentage."""
    platforms = draft.platform_strategy
    if not platforms:
        return RuleOutcome(draft)

    if draft.budget_allocation is not None:
        total = draft.budget_allocation.total_monthly_budget
    else:
        total = context.target_budget

    updated = []
    adjustments = []
    for index, platform in enumerate(platforms):
        spend = float(round_half_up(total * platform.budget_percentage / 100))
        if platform.monthly_spend != spend:
            adjustments.append(ValidationAdjustment(
                field=f"platform_strategy[{index}].monthly_spend",
                original_value=platform.monthly_spend,
                adjusted_value=spend,
                rule="PlatformStrategy_SpendRecalc",
                reason=f"{platform.platform} spend recomputed as {platform.budget_percentage}% of ${total:,.0f}"
            ))
            platform = platform.model_copy(update={'monthly_spend': spend})
        updated.append(platform)

    if not adjustments:
        return RuleOutcome(draft)
    return RuleOutcome(draft.model_copy(update={'platform_strategy': updated}), tuple(adjustments))


# --- Budget allocation ------------------------------------------------------------

def budget_target_match(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Total monthly budget must stay within 10% of the client's stated budget."""
    budget = draft.budget_allocation
    if budget is None or context.target_budget <= 0:
        return RuleOutcome(draft)

    drift = abs(budget.total_monthly_budget - context.target_budget) / context.target_budget
    if drift <= BUDGET_DRIFT_TOLERANCE:
        return RuleOutcome(draft)

    updated = budget.model_copy(update={'total_monthly_budget': context.target_budget})
    return RuleOutcome(
        draft.model_copy(update={'budget_allocation': updated}),
        (ValidationAdjustment(
            field="budget_allocation.total_monthly_budget",
            original_value=budget.total_monthly_budget,
            adjusted_value=context.target_budget,
            rule="Budget_TargetMatch",
            reason=f"Generated total drifted {drift:.0%} from the client budget of ${context.target_budget:,.0f}"
        ),)
    )


def budget_platform_pct_sum(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Budget breakdown percentages must sum to 100."""
    budget = draft.budget_allocation
    if budget is None:
        return RuleOutcome(draft)

    original = [p.percentage for p in budget.platform_breakdown]
    corrected = normalize_percentages(original)
    if corrected is None:
        return RuleOutcome(draft)

    breakdown = [p.model_copy(update={'percentage': pct}) for p, pct in zip(budget.platform_breakdown, corrected)]
    updated = budget.model_copy(update={'platform_breakdown': breakdown})
    return RuleOutcome(
        draft.model_copy(update={'budget_allocation': updated}),
        (ValidationAdjustment(
            field="budget_allocation.platform_breakdown[*].percentage",
            original_value=original,
            adjusted_value=corrected,
            rule="Budget_PlatformPctSum",
            reason=f"Platform percentages summed to {sum(original):.2f}%, rescaled to 100%"
        ),)
    )


def budget_platform_recalc(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Platform monthly budgets are always recomputed from total and percentage."""
    budget = draft.budget_allocation
    if budget is None:
        return RuleOutcome(draft)

    total = budget.total_monthly_budget
    breakdown = []
    adjustments = []
    for index, line in enumerate(budget.platform_breakdown):
        amount = float(round_half_up(total * line.percentage / 100))
        if line.monthly_budget != amount:
            adjustments.append(ValidationAdjustment(
                field=f"budget_allocation.platform_breakdown[{index}].monthly_budget",
                original_value=line.monthly_budget,
                adjusted_value=amount,
                rule="Budget_PlatformRecalc",
                reason=f"{line.platform} budget recomputed as {line.percentage}% of ${total:,.0f}"
            ))
            line = line.model_copy(update={'monthly_budget': amount})
        breakdown.append(line)

    if not adjustments:
        return RuleOutcome(draft)
    updated = budget.model_copy(update={'platform_breakdown': breakdown})
    return RuleOutcome(draft.model_copy(update={'budget_allocation': updated}), tuple(adjustments))


def budget_funnel_pct_sum(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Funnel split percentages must sum to 100."""
    budget = draft.budget_allocation
    if budget is None or not budget.funnel_split:
        return RuleOutcome(draft)

    original = [s.percentage for s in budget.funnel_split]
    corrected = normalize_percentages(original)
    if corrected is None:
        return RuleOutcome(draft)

    split = [s.model_copy(update={'percentage': pct}) for s, pct in zip(budget.funnel_split, corrected)]
    updated = budget.model_copy(update={'funnel_split': split})
    return RuleOutcome(
        draft.model_copy(update={'budget_allocation': updated}),
        (ValidationAdjustment(
            field="budget_allocation.funnel_split[*].percentage",
            original_value=original,
            adjusted_value=corrected,
            rule="Budget_FunnelPctSum",
            reason=f"Funnel split summed to {sum(original):.2f}%, rescaled to 100%"
        ),)
    )


def budget_daily_ceiling(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Daily ceiling cannot exceed the monthly budget spread over 30 days."""
    budget = draft.budget_allocation
    if budget is None:
        return RuleOutcome(draft)

    cap = float(math.floor(budget.total_monthly_budget / DAYS_PER_MONTH))
    if budget.daily_ceiling <= cap:
        return RuleOutcome(draft)

    updated = budget.model_copy(update={'daily_ceiling': cap})
    return RuleOutcome(
        draft.model_copy(update={'budget_allocation': updated}),
        (ValidationAdjustment(
            field="budget_allocation.daily_ceiling",
            original_value=budget.daily_ceiling,
            adjusted_value=cap,
            rule="Budget_DailyCeiling",
            reason=f"Daily ceiling capped at monthly budget / {DAYS_PER_MONTH}"
        ),)
    )


# --- Campaign structure -------------------------------------------------------------

def campaign_naming_year_fix(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Replace stale year tokens in campaign names and naming patterns."""
    structure = draft.campaign_structure
    if structure is None:
        return RuleOutcome(draft)

    year = context.generation_year
    adjustments = []
    campaigns = []
    for index, campaign in enumerate(structure.campaigns):
        fixed = _fix_stale_years(campaign.name, year)
        if fixed != campaign.name:
            adjustments.append(ValidationAdjustment(
                field=f"campaign_structure.campaigns[{index}].name",
                original_value=campaign.name,
                adjusted_value=fixed,
                rule="CampaignNaming_YearFix",
                reason=f"Stale year in campaign name replaced with {year}"
            ))
            campaign = campaign.model_copy(update={'name': fixed})
        campaigns.append(campaign)

    naming = structure.naming_conventions
    pattern_updates = {}
    for attr in ('campaign_pattern', 'ad_set_pattern', 'ad_pattern'):
        value = getattr(naming, attr)
        fixed = _fix_stale_years(value, year)
        if fixed != value:
            pattern_updates[attr] = fixed
            adjustments.append(ValidationAdjustment(
                field=f"campaign_structure.naming_conventions.{attr}",
                original_value=value,
                adjusted_value=fixed,
                rule="CampaignNaming_YearFix",
                reason=f"Stale year in naming pattern replaced with {year}"
            ))

    if not adjustments:
        return RuleOutcome(draft)
    updated = structure.model_copy(update={
        'campaigns': campaigns,
        'naming_conventions': naming.model_copy(update=pattern_updates),
    })
    return RuleOutcome(draft.model_copy(update={'campaign_structure': updated}), tuple(adjustments))


def campaign_naming_tokens(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Flag campaign names that omit their platform or funnel stage."""
    structure = draft.campaign_structure
    if structure is None:
        return RuleOutcome(draft)

    adjustments = []
    for index, campaign in enumerate(structure.campaigns):
        path = f"campaign_structure.campaigns[{index}].name"
        platform_key = canonical_platform(campaign.platform)
        if not _mentions(campaign.name, PLATFORM_ALIASES.get(platform_key, [platform_key])):
            adjustments.append(_warning(
                path, campaign.name, "CampaignNaming_PlatformWarn",
                f"Campaign '{campaign.name}' does not mention its platform ({campaign.platform})"
            ))
        if not _mentions(campaign.name, FUNNEL_ALIASES[campaign.funnel_stage]):
            adjustments.append(_warning(
                path, campaign.name, "CampaignNaming_FunnelWarn",
                f"Campaign '{campaign.name}' does not mention its funnel stage ({campaign.funnel_stage})"
            ))

    return RuleOutcome(draft, tuple(adjustments))


def platform_references(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Every platform used elsewhere in the plan must exist in the platform strategy."""
    if not draft.platform_strategy:
        return RuleOutcome(draft)

    known = {canonical_platform(p.platform) for p in draft.platform_strategy}
    references = []
    if draft.campaign_structure is not None:
        references += [(f"campaign_structure.campaigns[{i}].platform", c.platform, f"Campaign '{c.name}'")
                       for i, c in enumerate(draft.campaign_structure.campaigns)]
    if draft.icp_targeting is not None:
        references += [(f"icp_targeting.platform_targeting[{i}].platform", t.platform,
                        f"Targeting for '{t.segment_name}'")
                       for i, t in enumerate(draft.icp_targeting.platform_targeting)]
    if draft.creative_strategy is not None:
        references += [(f"creative_strategy.format_specs[{i}].platform", s.platform, f"Format '{s.format}'")
                       for i, s in enumerate(draft.creative_strategy.format_specs)]
    if draft.budget_allocation is not None:
        references += [(f"budget_allocation.platform_breakdown[{i}].platform", b.platform, "Budget line")
                       for i, b in enumerate(draft.budget_allocation.platform_breakdown)]

    adjustments = tuple(
        _warning(path, platform, "CrossSection_PlatformRefs",
                 f"{owner} uses platform '{platform}' which is not in the platform strategy")
        for path, platform, owner in references
        if canonical_platform(platform) not in known
    )
    return RuleOutcome(draft, adjustments)


def campaign_daily_budget_scale(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Combined campaign daily budgets must fit under the daily ceiling (+10%)."""
    structure, budget = draft.campaign_structure, draft.budget_allocation
    if structure is None or budget is None or budget.daily_ceiling <= 0:
        return RuleOutcome(draft)

    original = [c.daily_budget for c in structure.campaigns]
    total = sum(original)
    if total <= budget.daily_ceiling * (1 + DAILY_BUDGET_TOLERANCE):
        return RuleOutcome(draft)

    factor = budget.daily_ceiling / total
    scaled = [float(math.floor(value * factor)) for value in original]
    campaigns = [c.model_copy(update={'daily_budget': v}) for c, v in zip(structure.campaigns, scaled)]
    return RuleOutcome(
        draft.model_copy(update={'campaign_structure': structure.model_copy(update={'campaigns': campaigns})}),
        (ValidationAdjustment(
            field="campaign_structure.campaigns[*].daily_budget",
            original_value=original,
            adjusted_value=scaled,
            rule="CampaignBudget_DailyScale",
            reason=(f"Campaign daily budgets summed to ${total:,.0f}, above the ${budget.daily_ceiling:,.0f} "
                    f"ceiling; scaled by {factor:.2f}")
        ),)
    )


def campaign_platform_budget_scale(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Campaigns on one platform must fit that platform's monthly budget (+10%)."""
    structure, budget = draft.campaign_structure, draft.budget_allocation
    if structure is None or budget is None:
        return RuleOutcome(draft)

    allowances: Dict[str, float] = {}
    for line in budget.platform_breakdown:
        key = canonical_platform(line.platform)
        allowances[key] = allowances.get(key, 0.0) + line.monthly_budget / DAYS_PER_MONTH

    by_platform: Dict[str, List[int]] = {}
    for index, campaign in enumerate(structure.campaigns):
        by_platform.setdefault(canonical_platform(campaign.platform), []).append(index)

    daily = [c.daily_budget for c in structure.campaigns]
    adjustments = []
    for key, indexes in by_platform.items():
        allowance = allowances.get(key)
        if not allowance:
            continue
        platform_total = sum(daily[i] for i in indexes)
        if platform_total <= allowance * (1 + DAILY_BUDGET_TOLERANCE):
            continue

        factor = allowance / platform_total
        original = [daily[i] for i in indexes]
        for i in indexes:
            daily[i] = float(math.floor(daily[i] * factor))
        adjustments.append(ValidationAdjustment(
            field=f"campaign_structure.campaigns[platform={key}].daily_budget",
            original_value=original,
            adjusted_value=[daily[i] for i in indexes],
            rule="CampaignBudget_PlatformScale",
            reason=(f"{key} campaigns total ${platform_total:,.0f}/day against a ${allowance:,.0f}/day "
                    f"platform allowance; scaled by {factor:.2f}")
        ))

    if not adjustments:
        return RuleOutcome(draft)
    campaigns = [c.model_copy(update={'daily_budget': v}) if c.daily_budget != v else c
                 for c, v in zip(structure.campaigns, daily)]
    return RuleOutcome(
        draft.model_copy(update={'campaign_structure': structure.model_copy(update={'campaigns': campaigns})}),
        tuple(adjustments)
    )


# --- Campaign phases --------------------------------------------------------------

def _phase_rate_cap(draft: PlanDraft) -> Tuple[float, str]:
    """Daily spend rate phases may not exceed, and the rule that enforces it."""
    ceiling = draft.budget_allocation.daily_ceiling
    if draft.campaign_structure is not None:
        campaign_total = sum(c.daily_budget for c in draft.campaign_structure.campaigns)
        if 0 < campaign_total < ceiling:
            return campaign_total, "PhaseBudget_CampaignRateCap"
    return ceiling, "PhaseBudget_DailyCeilCap"


def _phase_caps(draft: PlanDraft, rate: float) -> List[float]:
    return [float(math.floor(rate * phase.duration_days)) for phase in draft.campaign_phases]


def phase_budget_cap(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """A phase's implied daily spend cannot exceed the daily spend rate."""
    phases, budget = draft.campaign_phases, draft.budget_allocation
    if not phases or budget is None:
        return RuleOutcome(draft)

    rate, rule = _phase_rate_cap(draft)
    if rate <= 0:
        return RuleOutcome(draft)

    updated = []
    adjustments = []
    for index, (phase, cap) in enumerate(zip(phases, _phase_caps(draft, rate))):
        if phase.estimated_budget > cap:
            adjustments.append(ValidationAdjustment(
                field=f"campaign_phases[{index}].estimated_budget",
                original_value=phase.estimated_budget,
                adjusted_value=cap,
                rule=rule,
                reason=(f"Phase '{phase.name}' implies ${phase.estimated_budget / phase.duration_days:,.0f}/day, "
                        f"above the ${rate:,.0f}/day limit")
            ))
            phase = phase.model_copy(update={'estimated_budget': cap})
        updated.append(phase)

    if not adjustments:
        return RuleOutcome(draft)
    return RuleOutcome(draft.model_copy(update={'campaign_phases': updated}), tuple(adjustments))


def _water_fill(values: List[float], caps: List[float], target: float) -> List[float]:
    """Scale values proportionally toward target without pushing any past its cap."""
    result: List[Optional[float]] = [None] * len(values)
    free = list(range(len(values)))
    remaining = target

    while free:
        free_total = sum(values[i] for i in free)
        if free_total <= 0:
            break
        factor = remaining / free_total
        capped = [i for i in free if values[i] * factor >= caps[i]]
        if not capped:
            for i in free:
                result[i] = values[i] * factor
            break
        for i in capped:
            result[i] = caps[i]
            remaining -= caps[i]
            free.remove(i)

    return [
        min(caps[i], float(round_half_up(result[i]))) if result[i] is not None else values[i]
        for i in range(len(values))
    ]


def phase_budget_normalize(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Summed phase budgets must match the monthly budget over the elapsed months (±2%)."""
    phases, budget = draft.campaign_phases, draft.budget_allocation
    if not phases or budget is None:
        return RuleOutcome(draft)

    total_days = sum(p.duration_days for p in phases)
    target = float(round_half_up(budget.total_monthly_budget * total_days / DAYS_PER_MONTH))
    original = [p.estimated_budget for p in phases]
    current = sum(original)
    if target <= 0 or current <= 0 or abs(current - target) / target <= PHASE_TOTAL_TOLERANCE:
        return RuleOutcome(draft)

    rate, _ = _phase_rate_cap(draft)
    caps = _phase_caps(draft, rate) if rate > 0 else [math.inf] * len(phases)
    normalized = _water_fill(original, caps, target)
    if normalized == original:
        return RuleOutcome(draft)

    updated = [p.model_copy(update={'estimated_budget': v}) for p, v in zip(phases, normalized)]
    return RuleOutcome(
        draft.model_copy(update={'campaign_phases': updated}),
        (ValidationAdjustment(
            field="campaign_phases[*].estimated_budget",
            original_value=original,
            adjusted_value=normalized,
            rule="PhaseBudget_TotalNormalize",
            reason=(f"Phase budgets totalled ${current:,.0f} against ${target:,.0f} expected for "
                    f"{total_days:g} days of spend")
        ),)
    )


# --- KPIs and realism -------------------------------------------------------------

def kpi_reconciliation(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """KPI targets for CPL, CAC, volumes and ROAS must agree with the performance model."""
    if not draft.kpi_targets or draft.performance_model is None or draft.budget_allocation is None:
        return RuleOutcome(draft)

    cac_model = draft.performance_model.cac_model
    computed = {
        'cpl': cac_model.target_cpl,
        'cac': float(cac_model.target_cac),
        'leads': float(cac_model.expected_monthly_leads),
        'sqls': float(cac_model.expected_monthly_sqls),
        'roas': compute_roas(cac_model, context.offer_price, draft.budget_allocation.total_monthly_budget),
    }
    kpis, adjustments = reconcile_kpi_targets(draft.kpi_targets, computed)
    if not adjustments:
        return RuleOutcome(draft)
    return RuleOutcome(draft.model_copy(update={'kpi_targets': kpis}), tuple(adjustments))


def retargeting_pool_realism(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Retargeting needs an existing audience pool; annotate when there is none."""
    structure = draft.campaign_structure
    if structure is None or context.has_paid_traffic or context.has_organic_keywords:
        return RuleOutcome(draft)

    retargeting = [i for i, c in enumerate(structure.campaigns) if _is_retargeting(c)]
    if not retargeting and not structure.retargeting_segments:
        return RuleOutcome(draft)

    adjustments = []
    campaigns = list(structure.campaigns)
    for index in retargeting:
        campaign = campaigns[index]
        if RETARGETING_NOTE.strip() in campaign.objective:
            continue
        annotated = campaign.objective + RETARGETING_NOTE
        adjustments.append(ValidationAdjustment(
            field=f"campaign_structure.campaigns[{index}].objective",
            original_value=campaign.objective,
            adjusted_value=annotated,
            rule="Retargeting_PoolRealism",
            reason=f"Campaign '{campaign.name}' depends on a traffic pool that does not exist yet"
        ))
        campaigns[index] = campaign.model_copy(update={'objective': annotated})

    adjustments.append(_warning(
        "campaign_structure.retargeting_segments", len(structure.retargeting_segments),
        "Retargeting_PoolRealism",
        "No existing paid traffic or organic keyword footprint: retargeting audiences will be "
        "too small to deliver until cold campaigns have run for several weeks"
    ))

    if len(adjustments) == 1:
        return RuleOutcome(draft, tuple(adjustments))
    updated = structure.model_copy(update={'campaigns': campaigns})
    return RuleOutcome(draft.model_copy(update={'campaign_structure': updated}), tuple(adjustments))


# --- Final synthesis --------------------------------------------------------------

def risk_scoring(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """
    Score risks as probability x impact, classify and sort by score.

    Risks without both numbers are left unscored and sorted last.
    """
    monitoring = draft.risk_monitoring
    if monitoring is None:
        return RuleOutcome(draft)

    adjustments = []
    scored = []
    for index, risk in enumerate(monitoring.risks):
        if risk.probability is not None and risk.impact is not None:
            score = risk.probability * risk.impact
            classification = classify_risk_score(score)
        else:
            score, classification = None, None

        if (risk.score, risk.classification) != (score, classification):
            adjustments.append(ValidationAdjustment(
                field=f"risk_monitoring.risks[{index}].score",
                original_value={'score': risk.score, 'classification': risk.classification},
                adjusted_value={'score': score, 'classification': classification},
                rule="Risk_Scoring",
                reason=f"Risk score computed from probability x impact for '{risk.risk}'"
            ))
            risk = risk.model_copy(update={'score': score, 'classification': classification})
        scored.append(risk)

    ordered = sorted(scored, key=lambda r: (r.score is None, -(r.score or 0)))
    if [id(r) for r in ordered] != [id(r) for r in scored]:
        adjustments.append(ValidationAdjustment(
            field="risk_monitoring.risks",
            original_value=[r.risk for r in scored],
            adjusted_value=[r.risk for r in ordered],
            rule="Risk_SortByScore",
            reason="Risks sorted by score, highest first"
        ))

    if not adjustments:
        return RuleOutcome(draft)
    updated = monitoring.model_copy(update={'risks': ordered})
    return RuleOutcome(draft.model_copy(update={'risk_monitoring': updated}), tuple(adjustments))


def executive_summary_budget_sync(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """The executive summary always quotes the validated monthly budget."""
    summary, budget = draft.executive_summary, draft.budget_allocation
    if summary is None or budget is None:
        return RuleOutcome(draft)
    if summary.recommended_monthly_budget == budget.total_monthly_budget:
        return RuleOutcome(draft)

    updated = summary.model_copy(update={'recommended_monthly_budget': budget.total_monthly_budget})
    return RuleOutcome(
        draft.model_copy(update={'executive_summary': updated}),
        (ValidationAdjustment(
            field="executive_summary.recommended_monthly_budget",
            original_value=summary.recommended_monthly_budget,
            adjusted_value=budget.total_monthly_budget,
            rule="ExecSummary_BudgetSync",
            reason="Recommended budget replaced with the validated total"
        ),)
    )


def stale_reference_sweep(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Rewrite stale CAC, CPL, budget and volume numbers in free-text fields."""
    if draft.performance_model is None or draft.budget_allocation is None:
        return RuleOutcome(draft)

    cac_model = draft.performance_model.cac_model
    total = draft.budget_allocation.total_monthly_budget
    targets = build_resolved_targets(cac_model, total, compute_roas(cac_model, context.offer_price, total))
    values = resolved_reference_values(targets)
    adjustments = []

    def sweep(path: str, text: str) -> str:
        rewritten, replacements = sweep_stale_references(text, values)
        if replacements:
            adjustments.append(ValidationAdjustment(
                field=path,
                original_value=text,
                adjusted_value=rewritten,
                rule="SweepStaleRef",
                reason="Stale " + ", ".join(sorted({kind for kind, _, _ in replacements})) + " reference rewritten"
            ))
        return rewritten

    updates = {}
    summary = draft.executive_summary
    if summary is not None:
        new_summary = summary.model_copy(update={
            'overview': sweep("executive_summary.overview", summary.overview),
            'primary_objective': sweep("executive_summary.primary_objective", summary.primary_objective),
            'timeline_to_results': sweep("executive_summary.timeline_to_results", summary.timeline_to_results),
            'top_priorities': [sweep(f"executive_summary.top_priorities[{i}]", p)
                               for i, p in enumerate(summary.top_priorities)],
        })
        updates['executive_summary'] = new_summary

    monitoring = draft.risk_monitoring
    if monitoring is not None:
        risks = [r.model_copy(update={
            'risk': sweep(f"risk_monitoring.risks[{i}].risk", r.risk),
            'mitigation': sweep(f"risk_monitoring.risks[{i}].mitigation", r.mitigation),
        }) for i, r in enumerate(monitoring.risks)]
        assumptions = [sweep(f"risk_monitoring.assumptions[{i}]", a) for i, a in enumerate(monitoring.assumptions)]
        updates['risk_monitoring'] = monitoring.model_copy(update={'risks': risks, 'assumptions': assumptions})

    if draft.campaign_phases:
        updates['campaign_phases'] = [p.model_copy(update={
            'success_criteria': [sweep(f"campaign_phases[{i}].success_criteria[{j}]", c)
                                 for j, c in enumerate(p.success_criteria)]
        }) for i, p in enumerate(draft.campaign_phases)]

    if not adjustments:
        return RuleOutcome(draft)
    return RuleOutcome(draft.model_copy(update=updates), tuple(adjustments))


def timeline_reconciliation(draft: PlanDraft, context: ValidationContext) -> RuleOutcome:
    """Warn when the promised timeline is longer than the phased rollout."""
    summary, phases = draft.executive_summary, draft.campaign_phases
    if summary is None or not phases:
        return RuleOutcome(draft)

    match = _TIMELINE.search(summary.timeline_to_results)
    if not match:
        return RuleOutcome(draft)

    amount = float(match.group(1))
    unit_days = {'day': 1, 'week': 7, 'month': DAYS_PER_MONTH}[match.group(2).lower()]
    stated_days = amount * unit_days
    plan_days = sum(p.duration_days for p in phases)
    if stated_days <= plan_days:
        return RuleOutcome(draft)

    return RuleOutcome(draft, (_warning(
        "executive_summary.timeline_to_results", summary.timeline_to_results, "Timeline_Mismatch",
        f"Timeline to results ({match.group(0)}) runs past the {plan_days:g}-day phased rollout"
    ),))


# --- Engine -----------------------------------------------------------------------

_RESEARCH = ValidationStage.RESEARCH
_STRUCTURE = ValidationStage.STRUCTURE
_BUDGET = ValidationStage.BUDGET
_CROSS = ValidationStage.CROSS_SECTION
_FINAL = ValidationStage.FINAL

DEFAULT_RULES: Tuple[ValidationRule, ...] = (
    ValidationRule("platform_strategy_pct_sum", (_RESEARCH, _BUDGET), platform_strategy_pct_sum),
    ValidationRule("campaign_naming_year_fix", (_STRUCTURE,), campaign_naming_year_fix),
    ValidationRule("campaign_naming_tokens", (_STRUCTURE,), campaign_naming_tokens),
    ValidationRule("budget_target_match", (_BUDGET,), budget_target_match),
    ValidationRule("budget_platform_pct_sum", (_BUDGET,), budget_platform_pct_sum),
    ValidationRule("budget_platform_recalc", (_BUDGET,), budget_platform_recalc),
    ValidationRule("budget_funnel_pct_sum", (_BUDGET,), budget_funnel_pct_sum),
    ValidationRule("budget_daily_ceiling", (_BUDGET,), budget_daily_ceiling),
    ValidationRule("platform_strategy_spend_recalc", (_RESEARCH, _BUDGET), platform_strategy_spend_recalc),
    ValidationRule("campaign_daily_budget_scale", (_CROSS,), campaign_daily_budget_scale),
    ValidationRule("campaign_platform_budget_scale", (_CROSS,), campaign_platform_budget_scale),
    ValidationRule("phase_budget_cap", (_CROSS,), phase_budget_cap),
    ValidationRule("phase_budget_normalize", (_CROSS,), phase_budget_normalize),
    ValidationRule("kpi_reconciliation", (_CROSS,), kpi_reconciliation),
    ValidationRule("retargeting_pool_realism", (_CROSS,), retargeting_pool_realism),
    ValidationRule("platform_references", (_CROSS,), platform_references),
    ValidationRule("risk_scoring", (_FINAL,), risk_scoring),
    ValidationRule("executive_summary_budget_sync", (_FINAL,), executive_summary_budget_sync),
    ValidationRule("stale_reference_sweep", (_FINAL,), stale_reference_sweep),
    ValidationRule("timeline_reconciliation", (_FINAL,), timeline_reconciliation),
)

STAGE_ORDER: Tuple[ValidationStage, ...] = (_RESEARCH, _STRUCTURE, _BUDGET, _CROSS, _FINAL)


class PlanValidator:
    """
    Applies the rule catalog to a plan draft.

    Rules run in catalog order within a stage, each one seeing the draft as
    corrected by the rules before it.
    """

    def __init__(self, rules: Optional[Sequence[ValidationRule]] = None):
        """
        Initialize the plan validator.

        Args:
            rules: Rule catalog to apply; defaults to DEFAULT_RULES
        """
        self.rules = tuple(rules) if rules is not None else DEFAULT_RULES

    def rules_for(self, stage: ValidationStage) -> List[ValidationRule]:
        return [rule for rule in self.rules if stage in rule.stages]

    def validate(self, draft: PlanDraft, context: ValidationContext,
                 stage: ValidationStage) -> ValidationReport:
        """
        Run every rule registered for a stage.

        Args:
            draft: Current plan draft
            context: External facts such as the client budget
            stage: Which stage's rules to run

        Returns:
            ValidationReport with the corrected draft and all adjustments
        """
        report = ValidationReport(draft=draft)
        for rule in self.rules_for(stage):
            outcome = rule.apply(report.draft, context)
            report.draft = outcome.draft
            report.adjustments.extend(outcome.adjustments)
        return report

    def validate_all(self, draft: PlanDraft, context: ValidationContext) -> ValidationReport:
        """Run every stage in pipeline order."""
        report = ValidationReport(draft=draft)
        for stage in STAGE_ORDER:
            stage_report = self.validate(report.draft, context, stage)
            report.draft = stage_report.draft
            report.adjustments.extend(stage_report.adjustments)
        return report
