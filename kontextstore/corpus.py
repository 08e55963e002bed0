"""Loading an external knowledge corpus into a context service.

The corpus is a JSON file holding either a list of context payloads or an
object with a ``contexts`` list. It is ingested once at startup by whichever
front end builds the service; nothing here holds global state.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from kontextstore.config import Config
from kontextstore.errors import ValidationError
from kontextstore.service import BatchResult, ContextService
from kontextstore.storage.factory import create_storage

logger = logging.getLogger(__name__)


def load_corpus(path: Path) -> list[dict]:
    """Read corpus payloads from a JSON file. Raises ValidationError on bad shape."""
    try:
        data = json.loads(Path(path).read_text())
    except json.JSONDecodeError as e:
        raise ValidationError(f"Corpus file {path} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("contexts")
    if not isinstance(data, list):
        raise ValidationError(
            f"Corpus file {path} must contain a list of contexts or an object with a 'contexts' list"
        )
    return data


async def ingest_corpus(service: ContextService, payloads: list[dict]) -> BatchResult:
    """Bulk-ingest corpus payloads, logging each entry that fails validation."""
    result = await service.ingest_all(payloads)
    logger.info(
        f"Corpus ingestion complete: {result.succeeded} contexts loaded, {result.failed} failed"
    )
    return result


async def build_service(config: Config) -> ContextService:
    """Composition root: backend from config, then the configured corpus."""
    service = ContextService(create_storage(config))
    if config.corpus_path is not None:
        await ingest_corpus(service, load_corpus(config.corpus_path))
    return service
