"""
Numeric reconciliation of KPI targets and free-text references against the
computed performance model.

KPI targets and summary prose are written by the language model and often
quote numbers that drifted from the deterministic CAC model. These helpers
find such numbers and replace them with the computed value when the drift
exceeds the metric's tolerance. All functions are pure and return the
adjustments they made.
"""

import re
from typing import Dict, List, Optional, Tuple

from models.data_models import ValidationAdjustment, ResolvedTargets
from models.plan_schemas import KPITarget

# Allowed relative drift before a stated value is replaced. CPL is the
# most arithmetic-sensitive input, so it gets the tightest band.
KPI_TOLERANCES: Dict[str, float] = {
    'cpl': 0.15,
    'cac': 0.20,
    'leads': 0.25,
    'sqls': 0.25,
    'roas': 0.25,
}

KPI_RULES: Dict[str, str] = {
    'cpl': 'KPI_CPL_Override',
    'cac': 'KPI_CAC_Override',
    'leads': 'KPI_Leads_Override',
    'sqls': 'KPI_SQL_Override',
    'roas': 'KPI_ROAS_Override',
}

SWEEP_TOLERANCES: Dict[str, float] = {
    'cac': 0.20,
    'cpl': 0.15,
    'budget': 0.10,
    'leads': 0.25,
    'sqls': 0.25,
    'customers': 0.25,
}

_NUMBER = re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*(?:([kK])(?![A-Za-z])|(%))?")

_ROAS = re.compile(r"\broas\b|return on ad spend")
_NOT_A_TARGET = re.compile(r"\brate\b|\bratio\b|%|conversion|\bltv\b|lifetime value")
_CAC = re.compile(r"\bcac\b|customer acquisition cost|cost per (customer|acquisition)")
_NOT_A_COST = re.compile(r"payback|period|\bdays?\b|\bmonths?\b|\bweeks?\b")
_MQLS = re.compile(r"marketing[- ]qualified|\bmqls?\b")
_CPL = re.compile(r"\bcpl\b|cost per lead")
_OTHER_COST = re.compile(r"cost|spend|budget|\bcp[a-z]\b")
_SQLS = re.compile(r"\bsqls?\b|sales[- ]qualified|qualified leads?")
_LEADS = re.compile(r"\bleads?\b")

_NUM = r"(?P<num>\d[\d,]*(?:\.\d+)?)(?P<k>\s?[kK](?![A-Za-z]))?"
_GAP = r"(?P<gap>[^$\d\n;]{0,30})"
_MONTHLY = r"\s*(?:per month|/\s?mo(?:nth)?\b|a month|each month|monthly)"

_SWEEP_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ('cac', re.compile(r"\b(?:CAC|customer acquisition cost)\b" + _GAP + r"\$\s?" + _NUM, re.IGNORECASE)),
    ('cac', re.compile(r"\$\s?" + _NUM + r"\s*(?:CAC)\b", re.IGNORECASE)),
    ('cpl', re.compile(r"\b(?:CPL|cost per lead)\b" + _GAP + r"\$\s?" + _NUM, re.IGNORECASE)),
    ('cpl', re.compile(r"\$\s?" + _NUM + r"\s*(?:CPL|per lead)\b", re.IGNORECASE)),
    ('budget', re.compile(r"\b(?:monthly budget|monthly ad spend|monthly spend|total (?:monthly )?budget|total ad spend)\b"
                          + _GAP + r"\$\s?" + _NUM, re.IGNORECASE)),
    ('sqls', re.compile(_NUM + r"\s*(?:SQLs?|sales[- ]qualified leads|qualified leads)" + _MONTHLY, re.IGNORECASE)),
    ('leads', re.compile(_NUM + r"\s*(?:new\s+)?leads" + _MONTHLY, re.IGNORECASE)),
    ('customers', re.compile(_NUM + r"\s*(?:new\s+)?customers" + _MONTHLY, re.IGNORECASE)),
]

# Budget wording scoped to part of the plan, not the monthly total
_SCOPED_BUDGET = re.compile(r"\b(phase|test(ing)?|pilot|platform|campaign|per)\b", re.IGNORECASE)

# Text between a label and a number that marks a threshold, not a claim
_THRESHOLD_WORDS = re.compile(
    r"\b(above|below|exceed\w*|over|under|than|rises?|drops?|falls?|increases?|"
    r"decreases?|threshold|beyond|max(imum)?|min(imum)?|cap)\b|[<>]",
    re.IGNORECASE
)


def classify_kpi_metric(metric: str) -> Optional[str]:
    """
    Map a KPI metric name onto a reconcilable kind.

    Args:
        metric: Metric name as written by the model, e.g. "Cost per Lead"

    Returns:
        One of 'cpl', 'cac', 'leads', 'sqls', 'roas', or None when the metric
        has no computed counterpart (rates, ratios, other costs)
    """
    name = metric.lower()
    if _ROAS.search(name):
        return 'roas'
    if _NOT_A_TARGET.search(name):
        return None
    if _CAC.search(name):
        return None if _NOT_A_COST.search(name) else 'cac'
    if _CPL.search(name):
        return 'cpl'
    if _OTHER_COST.search(name):
        return None
    if _MQLS.search(name):
        return None
    if _SQLS.search(name):
        return 'sqls'
    if _LEADS.search(name):
        return 'leads'
    return None


def parse_kpi_number(target: str, kind: Optional[str] = None) -> Optional[float]:
    """
    Extract the first number from a KPI target string.

    Handles thousands separators, a trailing "k", and percentages for ROAS
    ("300%" reads as 3.0).
    """
    match = _NUMBER.search(target)
    if not match:
        return None
    value = float(match.group(1).replace(',', ''))
    if match.group(2):
        value *= 1000
    elif match.group(3) and kind == 'roas':
        value /= 100
    return value


def format_money(value: float) -> str:
    """Whole amounts without decimals, anything else to the cent."""
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def format_kpi_target(kind: str, value: float) -> str:
    """Render a computed value in the canonical target format for its kind."""
    if kind == 'cpl':
        return f"${format_money(value)}"
    if kind == 'cac':
        return f"<${format_money(value)}"
    if kind == 'roas':
        return f"{value:.2f}x"
    return f"{int(value):,}/month"


def _drift(stated: float, computed: float) -> float:
    return abs(stated - computed) / computed


def reconcile_kpi_targets(kpis: List[KPITarget],
                          computed: Dict[str, float]) -> Tuple[List[KPITarget], List[ValidationAdjustment]]:
    """
    Override KPI targets that drift from the computed performance model.

    Args:
        kpis: KPI targets as generated
        computed: Authoritative values keyed by kind ('cpl', 'cac', 'leads',
            'sqls', 'roas')

    Returns:
        Tuple of (reconciled KPI list, adjustments)
    """
    reconciled = []
    adjustments = []

    for index, kpi in enumerate(kpis):
        kind = classify_kpi_metric(kpi.metric)
        expected = computed.get(kind) if kind else None
        stated = parse_kpi_number(kpi.target, kind) if expected else None

        if expected is None or expected <= 0 or stated is None:
            reconciled.append(kpi)
            continue

        drift = _drift(stated, expected)
        tolerance = KPI_TOLERANCES[kind]
        if drift <= tolerance:
            reconciled.append(kpi)
            continue

        new_target = format_kpi_target(kind, expected)
        reconciled.append(kpi.model_copy(update={'target': new_target}))
        adjustments.append(ValidationAdjustment(
            field=f"kpi_targets[{index}].target",
            original_value=kpi.target,
            adjusted_value=new_target,
            rule=KPI_RULES[kind],
            reason=(f"{kpi.metric} target {stated:g} drifts {drift:.0%} from computed "
                    f"{expected:g} (tolerance {tolerance:.0%})")
        ))

    return reconciled, adjustments


def resolved_reference_values(targets: ResolvedTargets) -> Dict[str, float]:
    """Authoritative values for the free-text sweep, keyed by reference kind."""
    return {
        'cac': float(targets.cac),
        'cpl': float(targets.cpl),
        'budget': float(targets.monthly_budget),
        'leads': float(targets.leads_per_month),
        'sqls': float(targets.sqls_per_month),
        'customers': float(targets.customers_per_month),
    }


def sweep_stale_references(text: str, values: Dict[str, float]) -> Tuple[str, List[Tuple[str, str, str]]]:
    """
    Rewrite stale numeric references inside a block of free text.

    Numbers that follow threshold wording ("CPL above $120") are left alone,
    since those are alert levels rather than claims about the plan.

    Args:
        text: Free text written by the model
        values: Output of resolved_reference_values

    Returns:
        Tuple of (rewritten text, list of (kind, old snippet, new snippet))
    """
    replacements = []

    for kind, pattern in _SWEEP_PATTERNS:
        expected = values.get(kind)
        if not expected or expected <= 0:
            continue

        def _rewrite(match: re.Match) -> str:
            snippet = match.group(0)
            gap = match.groupdict().get('gap') or ''
            if _THRESHOLD_WORDS.search(gap):
                return snippet
            if kind == 'budget' and _SCOPED_BUDGET.search(gap):
                return snippet

            stated = float(match.group('num').replace(',', ''))
            if match.group('k'):
                stated *= 1000
            if _drift(stated, expected) <= SWEEP_TOLERANCES[kind]:
                return snippet

            number_end = match.end('k') if match.group('k') else match.end('num')
            formatted = format_money(expected) if kind in ('cac', 'cpl', 'budget') else f"{int(expected):,}"
            rewritten = (snippet[:match.start('num') - match.start()] + formatted
                         + snippet[number_end - match.start():])
            replacements.append((kind, snippet, rewritten))
            return rewritten

        text = pattern.sub(_rewrite, text)

    return text, replacements
