"""
Run-level records for the media plan pipeline: audit entries, progress
events, token usage and the terminal pipeline result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Any


class AdjustmentSeverity(Enum):
    """Whether an adjustment changed content or only flagged it."""
    CORRECTION = "correction"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationAdjustment:
    """Audit record of a single deterministic correction or warning."""
    field: str
    original_value: Any
    adjusted_value: Any
    rule: str
    reason: str
    severity: AdjustmentSeverity = AdjustmentSeverity.CORRECTION

    @property
    def is_correction(self) -> bool:
        return self.severity == AdjustmentSeverity.CORRECTION

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field': self.field,
            'original_value': self.original_value,
            'adjusted_value': self.adjusted_value,
            'rule': self.rule,
            'reason': self.reason,
            'severity': self.severity.value,
        }


class SectionPhase(Enum):
    """Pipeline phase a section event belongs to."""
    RESEARCH = "research"
    SYNTHESIS = "synthesis"
    VALIDATION = "validation"
    FINAL = "final"


class SectionStatus(Enum):
    """Lifecycle status carried by a section event."""
    START = "start"
    COMPLETE = "complete"
    DATA = "data"


@dataclass
class SectionEvent:
    """Progress event emitted to the caller during a run."""
    section: str
    phase: SectionPhase
    status: SectionStatus
    label: str = ""
    data: Any = None


@dataclass
class TokenUsage:
    """Token counts reported by the model provider for one call."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class GenerationResult:
    """Validated output of one generative call plus its accounting."""
    data: Any
    usage: TokenUsage
    cost: float
    model: str
    attempts: int = 1


@dataclass
class CACModelInput:
    """Inputs for the deterministic CAC model."""
    monthly_budget: float
    target_cpl: float
    lead_to_sql_rate: float
    sql_to_customer_rate: float
    offer_price: float
    retention_multiplier: float


@dataclass
class ResolvedTargets:
    """Validated numeric ground truth inlined into final-phase prompts."""
    monthly_budget: float
    cpl: float
    cac: int
    leads_per_month: int
    sqls_per_month: int
    customers_per_month: int
    lead_to_sql_rate: float
    sql_to_customer_rate: float
    ltv_cac_ratio: str
    estimated_ltv: int
    roas: float = 0.0


@dataclass
class PipelineResult:
    """Terminal result of a generation run."""
    success: bool
    media_plan: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    failed_phase: Optional[str] = None
    total_cost: float = 0.0
    total_time_ms: int = 0
    phase_timings: Dict[str, int] = field(default_factory=dict)
    adjustments: List[ValidationAdjustment] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cost_breakdown: Dict[str, Any] = field(default_factory=dict)
