"""
Knowledge retrieval: tenant-scoped semantic search behind a uniform retrieve() call.

Responsibility: Query the vector store for one tenant and return ranked chunks.
A tenant with nothing indexed yields an empty list; the orchestrator decides what
that means for the turn. No retries here.
"""

import logging
from dataclasses import dataclass

import httpx
from pymilvus import MilvusException

from app.core.config import RETRIEVAL_MIN_SCORE, RETRIEVAL_TOP_K
from app.core.errors import RetrievalUnavailable
from app.services import vector_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedChunk:
    text: str
    relevance_score: float
    source_filename: str
    source_chunk_index: int


class KnowledgeRetriever:
    """Milvus-backed retriever. Scores below min_score are dropped."""

    def __init__(self, min_score: float = RETRIEVAL_MIN_SCORE) -> None:
        self.min_score = min_score

    def retrieve(self, tenant_id: str, query_text: str, k: int = RETRIEVAL_TOP_K) -> list[RetrievedChunk]:
        logger.info("[retrieval:retrieve] IN  tenant_id=%s k=%d query_len=%d", tenant_id, k, len(query_text or ""))
        query = (query_text or "").strip()
        if not query:
            return []
        try:
            hits = vector_store.search_tenant(tenant_id, query, limit=k)
        except (ValueError, RuntimeError, httpx.HTTPError, MilvusException) as e:
            logger.warning("[retrieval:retrieve] vector search unavailable: %s", e)
            raise RetrievalUnavailable("Knowledge search is unavailable") from e

        chunks = [
            RetrievedChunk(
                text=h["text"],
                relevance_score=h["score"],
                source_filename=h["source"],
                source_chunk_index=int(h["chunk_id"] or 0),
            )
            for h in hits
            if h.get("text") and h["score"] >= self.min_score
        ]
        chunks.sort(key=lambda c: c.relevance_score, reverse=True)
        logger.info(
            "[retrieval:retrieve] OUT chunks=%d sources=%s scores=%s",
            len(chunks),
            [c.source_filename for c in chunks],
            [round(c.relevance_score, 4) for c in chunks],
        )
        return chunks
