"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Tenant (bot) registry
TENANT_DB_PATH: str = os.getenv("TENANT_DB_PATH", "data/tenants.db").strip() or "data/tenants.db"
TENANT_ID_PREFIX: str = "bot-"

# Allowed knowledge-base file extensions
ALLOWED_EXTENSIONS: frozenset[str] = frozenset({".txt", ".pdf", ".xlsx", ".xls"})
MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

# Chunking defaults (tuning these affects retrieval quality)
CHUNK_SIZE: int = 1000
CHUNK_OVERLAP: int = 100

# Milvus Cloud (from env)
MILVUS_URI: str = os.getenv("MILVUS_URI", "").strip()
MILVUS_TOKEN: str = os.getenv("MILVUS_TOKEN", "").strip()

# Hugging Face (embeddings / inference)
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()

# Vector collection: sentence-transformers/all-MiniLM-L6-v2 = 384
VECTOR_DIM: int = 384
COLLECTION_NAME: str = os.getenv("COLLECTION_NAME", "knowledge_chunks").strip() or "knowledge_chunks"
HF_EMBED_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"
EMBED_BATCH_SIZE: int = 32

# Retrieval
RETRIEVAL_TOP_K: int = int(os.getenv("RETRIEVAL_TOP_K", "5"))
RETRIEVAL_MIN_SCORE: float = float(os.getenv("RETRIEVAL_MIN_SCORE", "0.0"))

# API timeouts (seconds)
EMBED_API_TIMEOUT: float = 30.0
LLM_API_TIMEOUT: float = 60.0
ACTION_HTTP_TIMEOUT: float = float(os.getenv("ACTION_HTTP_TIMEOUT", "15.0"))
JWKS_HTTP_TIMEOUT: float = 10.0
# Minimum gap between key-set refetches for one issuer when an unknown kid shows up
JWKS_REFETCH_INTERVAL_SECONDS: float = float(os.getenv("JWKS_REFETCH_INTERVAL_SECONDS", "60"))

# Decision engine (structured output must be machine-parsed, keep temperature low)
DECISION_TEMPERATURE: float = 0.3
DECISION_MAX_TOKENS: int = 1024

# Hugging Face chat (used when no OpenAI key is configured)
HF_CHAT_URL: str = "https://router.huggingface.co/v1/chat/completions"

# OpenAI (decision LLM). When set, decisions use OpenAI instead of Hugging Face.
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)
HF_LLM_MODEL: str = (
    os.getenv("HF_LLM_MODEL", "meta-llama/Llama-3.2-3B-Instruct").strip()
    or "meta-llama/Llama-3.2-3B-Instruct"
)

# Response cache
RESPONSE_CACHE_TTL_SECONDS: float = float(os.getenv("RESPONSE_CACHE_TTL_SECONDS", "600"))
# 0 means unbounded (TTL-only expiry)
RESPONSE_CACHE_MAX_ENTRIES: int = int(os.getenv("RESPONSE_CACHE_MAX_ENTRIES", "0"))

# Token verification
TOKEN_ALGORITHMS: tuple[str, ...] = tuple(
    a.strip() for a in os.getenv("TOKEN_ALGORITHMS", "RS256").split(",") if a.strip()
)
TOKEN_LEEWAY_SECONDS: int = int(os.getenv("TOKEN_LEEWAY_SECONDS", "0"))

# Max characters of an upstream error body echoed back in a composed answer
ACTION_CAVEAT_BODY_LIMIT: int = 500
