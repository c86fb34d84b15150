"""Loading of the bundled knowledge base and emergency phrase list.

Both documents are plain JSON validated with pydantic.  Any problem
(missing file, malformed JSON, schema violation) is raised as
:class:`~src.services.errors.KnowledgeBaseError`, which aborts startup.
"""

from __future__ import annotations

from pathlib import Path

import orjson
import structlog
from pydantic import ValidationError

from src.models.knowledge import EmergencyPhrase, EmergencyPhraseList, KnowledgeBaseDocument
from src.services.errors import KnowledgeBaseError

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_DATA_DIR: Path = Path(__file__).resolve().parent
DEFAULT_KNOWLEDGE_BASE_PATH: Path = _DATA_DIR / "knowledge_base.json"
DEFAULT_EMERGENCY_PHRASES_PATH: Path = _DATA_DIR / "emergency_phrases.json"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _read_json(path: Path) -> object:
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise KnowledgeBaseError(f"cannot read {path}: {exc}") from exc
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise KnowledgeBaseError(f"malformed JSON in {path}: {exc}") from exc


def load_knowledge_document(path: Path | str | None = None) -> KnowledgeBaseDocument:
    """Load and validate a knowledge base document.

    Parameters
    ----------
    path:
        JSON file to read.  Defaults to the bundled
        ``knowledge_base.json``.

    Raises
    ------
    KnowledgeBaseError
        If the file is missing, is not valid JSON or fails validation.
    """
    file_path = Path(path) if path is not None else DEFAULT_KNOWLEDGE_BASE_PATH
    payload = _read_json(file_path)
    try:
        document = KnowledgeBaseDocument.model_validate(payload)
    except ValidationError as exc:
        raise KnowledgeBaseError(f"invalid knowledge base {file_path}: {exc}") from exc

    logger.info("kb.document_loaded", entries=len(document.entries), source=str(file_path))
    return document


def load_emergency_phrases(path: Path | str | None = None) -> tuple[EmergencyPhrase, ...]:
    """Load the ordered emergency phrase list (order is match priority)."""
    file_path = Path(path) if path is not None else DEFAULT_EMERGENCY_PHRASES_PATH
    payload = _read_json(file_path)
    try:
        phrase_list = EmergencyPhraseList.model_validate(payload)
    except ValidationError as exc:
        raise KnowledgeBaseError(f"invalid emergency phrase list {file_path}: {exc}") from exc

    logger.info("kb.emergency_phrases_loaded", count=len(phrase_list.phrases), source=str(file_path))
    return phrase_list.phrases
