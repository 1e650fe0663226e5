"""
Access layer for the inbound intake and research documents.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

from models.input_documents import ClientIntake, ResearchDocument
from .parsers import DocumentParser

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class DocumentCacheEntry:
    """A parsed document with the hash of the file it came from."""
    document: Any
    file_path: str
    file_hash: str
    last_loaded: datetime


class DocumentManager:
    """
    Loads and caches the inbound documents for a generation run.

    Documents are re-parsed only when the underlying file changes.
    """

    def __init__(self):
        self._cache: Dict[Tuple[str, str], DocumentCacheEntry] = {}

    def _get_file_hash(self, file_path: str) -> str:
        """
        Calculate MD5 hash of a file for change detection.

        Args:
            file_path: Path to the file

        Returns:
            MD5 hash string
        """
        file_hash = hashlib.md5()
        with open(file_path, 'rb') as f:
            for chunk in iter(lambda: f.read(4096), b""):
                file_hash.update(chunk)
        return file_hash.hexdigest()

    def _load(self, file_path: str, kind: str) -> Any:
        resolved = str(Path(file_path).resolve())
        current_hash = self._get_file_hash(resolved)
        key = (kind, resolved)

        cached = self._cache.get(key)
        if cached and cached.file_hash == current_hash:
            logger.info(f"Using cached {kind} from {file_path}")
            return cached.document

        parser = DocumentParser(resolved)
        if kind == 'intake':
            document = parser.parse_client_intake()
        else:
            document = parser.parse_research_document()

        self._cache[key] = DocumentCacheEntry(
            document=document,
            file_path=resolved,
            file_hash=current_hash,
            last_loaded=datetime.now()
        )
        logger.info(f"Loaded {kind} from {file_path}")
        return document

    def load_client_intake(self, file_path: str) -> ClientIntake:
        """Load and migrate a client intake JSON file."""
        return self._load(file_path, 'intake')

    def load_research_document(self, file_path: str) -> ResearchDocument:
        """Load and migrate a research JSON file."""
        return self._load(file_path, 'research')

    def clear_cache(self):
        """Clear all cached documents."""
        self._cache.clear()
        logger.info("Document cache cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        """
        Get statistics about cached documents.

        Returns:
            Dictionary containing cache statistics
        """
        return {
            'entries': len(self._cache),
            'documents': [
                {
                    'kind': kind,
                    'file_path': entry.file_path,
                    'last_loaded': entry.last_loaded.isoformat()
                }
                for (kind, _), entry in self._cache.items()
            ]
        }
