# Data layer for the media plan pipeline

from .parsers import DocumentParser, migrate_client_intake, migrate_research_document, sanitize_input
from .manager import DocumentManager

__all__ = [
    'DocumentParser',
    'DocumentManager',
    'migrate_client_intake',
    'migrate_research_document',
    'sanitize_input',
]
