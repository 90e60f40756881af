"""
Vector store client: Milvus Cloud connection, embeddings (HF Inference API), and chunk storage.

Responsibility: Connect to Milvus, embed texts via all-MiniLM-L6-v2, store and
remove chunks per tenant. Every row carries tenant_id so searches stay scoped.
"""

import json
import logging
from typing import Any

import httpx

from app.core.config import (
    COLLECTION_NAME,
    EMBED_API_TIMEOUT,
    EMBED_BATCH_SIZE,
    HF_API_KEY,
    HF_EMBED_MODEL,
    MILVUS_TOKEN,
    MILVUS_URI,
    VECTOR_DIM,
)

logger = logging.getLogger(__name__)

HF_EMBED_URL = (
    "https://router.huggingface.co/hf-inference/models/"
    f"{HF_EMBED_MODEL}/pipeline/feature-extraction"
)


def _normalize(vec: list[float]) -> list[float]:
    norm = sum(x * x for x in vec) ** 0.5
    if norm == 0:
        norm = 1.0
    return [x / norm for x in vec]


def embed_texts(texts: list[str], batch_size: int | None = None) -> list[list[float]]:
    """
    Batch embed texts using Hugging Face Inference API (all-MiniLM-L6-v2).
    Returns 384-dim vectors normalized for cosine similarity.
    """
    batch_size = batch_size if batch_size is not None else EMBED_BATCH_SIZE
    if not texts:
        return []
    if not HF_API_KEY:
        raise ValueError("HF_API_KEY must be set in .env")

    headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
    embeddings: list[list[float]] = []
    with httpx.Client(timeout=EMBED_API_TIMEOUT) as client:
        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            response = client.post(
                HF_EMBED_URL,
                json={"inputs": batch, "options": {"wait_for_model": True}},
                headers=headers,
            )
            if response.status_code == 401:
                raise ValueError("Invalid HF API key. Check HF_API_KEY")
            if response.status_code != 200:
                raise RuntimeError(f"HF embedding API error {response.status_code}: {response.text[:200]}")
            result = response.json()
            if not (isinstance(result, list) and result and isinstance(result[0], list)):
                raise RuntimeError("HF embedding API returned an unexpected shape")
            embeddings.extend(_normalize(vec) for vec in result)
    logger.info("[vector_store:embed_texts] OUT vectors=%d", len(embeddings))
    return embeddings


def get_milvus_client() -> Any:
    """
    Connect to Milvus Cloud and return a client. Creates the chunk collection
    if it does not exist (dim 384, COSINE, dynamic fields for metadata).
    """
    if not MILVUS_URI or not MILVUS_TOKEN:
        raise ValueError("MILVUS_URI and MILVUS_TOKEN must be set in .env")

    from pymilvus import MilvusClient

    client = MilvusClient(uri=MILVUS_URI, token=MILVUS_TOKEN)
    if not client.has_collection(COLLECTION_NAME):
        client.create_collection(
            collection_name=COLLECTION_NAME,
            dimension=VECTOR_DIM,
            primary_field_name="id",
            vector_field_name="vector",
            metric_type="COSINE",
            auto_id=True,
        )
        logger.info("Collection %s created (dim=%s)", COLLECTION_NAME, VECTOR_DIM)
    return client


def tenant_filter(tenant_id: str) -> str:
    """Milvus boolean expression selecting one tenant's rows."""
    return f"tenant_id == {json.dumps(tenant_id)}"


def store_chunks(tenant_id: str, chunks: list[dict]) -> int:
    """
    Embed each chunk and insert it with metadata (tenant_id, text, source, chunk_id),
    then flush the collection. Returns the number of rows inserted.
    """
    if not chunks:
        return 0
    embeddings = embed_texts([c["text"] for c in chunks])
    rows = []
    for c, emb in zip(chunks, embeddings):
        meta = c.get("metadata", {})
        rows.append({
            "vector": emb,
            "tenant_id": tenant_id,
            "text": c["text"],
            "source": meta.get("source", ""),
            "chunk_id": meta.get("chunk_id", 0),
        })
    client = get_milvus_client()
    client.insert(collection_name=COLLECTION_NAME, data=rows)
    client.flush(collection_name=COLLECTION_NAME)
    logger.info("[vector_store:store_chunks] tenant_id=%s stored=%d", tenant_id, len(rows))
    return len(rows)


def delete_tenant_chunks(tenant_id: str) -> None:
    """Remove every indexed chunk of one tenant (used before re-ingesting a replacement document)."""
    client = get_milvus_client()
    client.delete(collection_name=COLLECTION_NAME, filter=tenant_filter(tenant_id))
    logger.info("[vector_store:delete_tenant_chunks] tenant_id=%s", tenant_id)


def search_tenant(tenant_id: str, query: str, limit: int) -> list[dict]:
    """Embed the query and return raw Milvus hits for one tenant: [{text, score, source, chunk_id}]."""
    query_vec = embed_texts([query])
    client = get_milvus_client()
    results = client.search(
        collection_name=COLLECTION_NAME,
        data=query_vec,
        filter=tenant_filter(tenant_id),
        limit=limit,
        output_fields=["text", "source", "chunk_id"],
    )
    hits = results[0] if results else []
    out = []
    for h in hits:
        e = h.get("entity") or h
        out.append({
            "text": e.get("text", ""),
            "score": float(h.get("distance", h.get("score", 0.0))),
            "source": e.get("source", ""),
            "chunk_id": e.get("chunk_id", 0),
        })
    return out
