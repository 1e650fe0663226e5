"""
Parsers for the inbound intake and research documents.

Stored documents come in two shapes. Version 1 is the legacy onboarding
export (free-text budget, single pricing model, yes/no flags); version 2 is
the current strict shape. Every document passes through one migration
function here, so nothing downstream reads legacy field names.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from models.input_documents import ClientIntake, ResearchDocument, CURRENT_SCHEMA_VERSION

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MAX_INPUT_LENGTH = 5000

_INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|context)", re.IGNORECASE),
    re.compile(r"disregard\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|context)", re.IGNORECASE),
    re.compile(r"forget\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|context)", re.IGNORECASE),
    re.compile(r"\b(system|assistant|user)\s*:\s*", re.IGNORECASE),
    re.compile(r"\[\s*/?INST\s*\]", re.IGNORECASE),
    re.compile(r"<\|im_(start|end)\|>", re.IGNORECASE),
    re.compile(r"```\s*(json|javascript|python|bash|sh|cmd)", re.IGNORECASE),
]
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_MONEY_PATTERN = re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*([kKmM])?")

_INTAKE_TEXT_FIELDS = ('company_name', 'industry', 'offer_name', 'icp_description', 'primary_goal')
_INTAKE_LIST_FIELDS = ('pricing_models', 'target_locations', 'compliance_constraints', 'current_platforms')


class DocumentParseError(ValueError):
    """Raised when a stored document cannot be read or migrated."""


def sanitize_input(text: Optional[str]) -> str:
    """
    Strip prompt-injection markers and control characters from free text.

    Args:
        text: Raw user-supplied text

    Returns:
        Sanitized text capped at MAX_INPUT_LENGTH characters
    """
    if not text:
        return ""

    sanitized = str(text)[:MAX_INPUT_LENGTH]
    for pattern in _INJECTION_PATTERNS:
        sanitized = pattern.sub("[FILTERED]", sanitized)
    sanitized = sanitized.replace("```", "'''")
    sanitized = _CONTROL_CHARS.sub("", sanitized)
    return sanitized.strip()


def parse_money(value: Union[str, int, float, None]) -> Optional[float]:
    """
    Parse a money amount such as "$5,000/mo" or "12k".

    Returns:
        The amount as a float, or None when no number is present
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)

    match = _MONEY_PATTERN.search(str(value))
    if not match:
        return None
    amount = float(match.group(1).replace(',', ''))
    suffix = (match.group(2) or '').lower()
    if suffix == 'k':
        amount *= 1_000
    elif suffix == 'm':
        amount *= 1_000_000
    return amount


def _split_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in re.split(r"[,;\n]", value) if item.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


def _parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ('yes', 'y', 'true', '1')


def detect_schema_version(raw: Dict[str, Any]) -> int:
    """Schema version of a stored document; unversioned documents are legacy."""
    version = raw.get('schema_version', 1)
    try:
        return int(version)
    except (TypeError, ValueError):
        raise DocumentParseError(f"Invalid schema_version: {version!r}")


def _upgrade_intake_v1(raw: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(raw)
    data.pop('schema_version', None)

    if 'budget' in data:
        budget = parse_money(data.pop('budget'))
        if budget is None:
            raise DocumentParseError("Legacy intake budget has no numeric amount")
        data['monthly_budget'] = budget
    if 'offer_price' in data and not isinstance(data['offer_price'], (int, float)):
        data['offer_price'] = parse_money(data['offer_price']) or 0.0
    if 'target_cpl' in data and isinstance(data['target_cpl'], str):
        data['target_cpl'] = parse_money(data['target_cpl'])
    if 'pricing_model' in data:
        data['pricing_models'] = _split_list(data.pop('pricing_model'))
    if 'compliance' in data:
        data['compliance_constraints'] = _split_list(data.pop('compliance'))
    if 'paid_traffic' in data:
        data['has_existing_paid_traffic'] = _parse_flag(data.pop('paid_traffic'))
    if 'organic_keywords' in data:
        data['has_organic_keywords'] = _parse_flag(data.pop('organic_keywords'))

    data['schema_version'] = 2
    return data


def _upgrade_research_v1(raw: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(raw)
    data.pop('schema_version', None)

    icp = dict(data.get('icp_analysis') or {})
    if 'sensitivity_analysis' in icp:
        data.setdefault('sensitivity_analysis', icp.pop('sensitivity_analysis'))
        data['icp_analysis'] = icp
    if 'cross_analysis_synthesis' in data:
        data['strategic_synthesis'] = data.pop('cross_analysis_synthesis')

    competitor_analysis = data.get('competitor_analysis')
    if competitor_analysis and competitor_analysis.get('competitors'):
        competitors = []
        for competitor in competitor_analysis['competitors']:
            competitor = dict(competitor)
            if 'platforms' in competitor:
                competitor['ad_platforms'] = _split_list(competitor.pop('platforms'))
            competitors.append(competitor)
        data['competitor_analysis'] = {**competitor_analysis, 'competitors': competitors}

    data['schema_version'] = 2
    return data


def migrate_client_intake(raw: Dict[str, Any]) -> ClientIntake:
    """
    Convert a stored intake document of any known version to ClientIntake.

    Free-text fields are sanitized on the way in.

    Args:
        raw: Decoded JSON document

    Returns:
        Validated ClientIntake

    Raises:
        DocumentParseError: For unknown versions or unparseable legacy values
        pydantic.ValidationError: If the migrated document is invalid
    """
    version = detect_schema_version(raw)
    if version == 1:
        logger.info("Migrating legacy v1 client intake")
        data = _upgrade_intake_v1(raw)
    elif version == CURRENT_SCHEMA_VERSION:
        data = dict(raw)
    else:
        raise DocumentParseError(f"Unsupported intake schema_version: {version}")

    for key in _INTAKE_TEXT_FIELDS:
        if key in data and isinstance(data[key], str):
            data[key] = sanitize_input(data[key])
    for key in _INTAKE_LIST_FIELDS:
        if key in data:
            data[key] = [sanitize_input(item) for item in _split_list(data[key])]

    return ClientIntake.model_validate(data)


def migrate_research_document(raw: Dict[str, Any]) -> ResearchDocument:
    """
    Convert a stored research document of any known version to ResearchDocument.

    Args:
        raw: Decoded JSON document

    Returns:
        Validated ResearchDocument
    """
    version = detect_schema_version(raw)
    if version == 1:
        logger.info("Migrating legacy v1 research document")
        data = _upgrade_research_v1(raw)
    elif version == CURRENT_SCHEMA_VERSION:
        data = raw
    else:
        raise DocumentParseError(f"Unsupported research schema_version: {version}")

    return ResearchDocument.model_validate(data)


class DocumentParser:
    """Reads an intake or research document from a JSON file."""

    def __init__(self, file_path: str):
        """
        Initialize parser with a document path.

        Args:
            file_path: Path to the JSON document
        """
        self.file_path = Path(file_path)
        self._raw: Optional[Dict[str, Any]] = None

    def _load_raw(self) -> Dict[str, Any]:
        if self._raw is None:
            if not self.file_path.exists():
                raise DocumentParseError(f"Document not found: {self.file_path}")
            try:
                with open(self.file_path, 'r', encoding='utf-8') as f:
                    raw = json.load(f)
            except json.JSONDecodeError as e:
                raise DocumentParseError(f"Invalid JSON in {self.file_path}: {e}") from e
            if not isinstance(raw, dict):
                raise DocumentParseError(f"{self.file_path} must contain a JSON object")
            self._raw = raw
        return self._raw

    def parse_client_intake(self) -> ClientIntake:
        """Parse the file as a client intake document."""
        return migrate_client_intake(self._load_raw())

    def parse_research_document(self) -> ResearchDocument:
        """Parse the file as a research document."""
        return migrate_research_document(self._load_raw())
