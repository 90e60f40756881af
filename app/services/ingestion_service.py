"""
Knowledge ingestion: text -> cleaned chunks -> tenant-scoped vector rows.

Responsibility: the ingest(tenant_id, text, filename) contract used by bot
registration and uploads. Called by the API layer; no HTTP or FastAPI here.
"""

import logging

from app.core.config import CHUNK_OVERLAP, CHUNK_SIZE
from app.services import vector_store
from app.services.text_processing import chunk_text, clean_text

logger = logging.getLogger(__name__)


def build_chunks(text: str, filename: str) -> list[dict]:
    cleaned = clean_text(text)
    return [
        {"text": chunk, "metadata": {"source": filename, "chunk_id": i}}
        for i, chunk in enumerate(chunk_text(cleaned, chunk_size=CHUNK_SIZE, overlap=CHUNK_OVERLAP))
    ]


def ingest(tenant_id: str, text: str, filename: str = "document.pdf", replace: bool = False) -> bool:
    """
    Chunk, embed and index text for one tenant. When replace is set the tenant's
    existing chunks are removed first. Returns False (and logs) on any failure.
    """
    logger.info("[ingestion:ingest] IN  tenant_id=%s filename=%s text_len=%d replace=%s", tenant_id, filename, len(text or ""), replace)
    if not text or not text.strip():
        logger.error("[ingestion:ingest] empty or invalid text input")
        return False
    chunks = build_chunks(text, filename)
    if not chunks:
        logger.error("[ingestion:ingest] no chunks generated from %s", filename)
        return False
    try:
        if replace:
            vector_store.delete_tenant_chunks(tenant_id)
        stored = vector_store.store_chunks(tenant_id, chunks)
    except Exception:
        logger.exception("[ingestion:ingest] indexing failed for tenant_id=%s", tenant_id)
        return False
    logger.info("[ingestion:ingest] OUT tenant_id=%s chunks=%d", tenant_id, stored)
    return True
