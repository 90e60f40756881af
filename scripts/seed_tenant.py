#!/usr/bin/env python3
"""
Register a demo bot (tenant) for local runs.

Reads a JSON tenant config, validates and stores it in the tenant DB, and
optionally indexes a knowledge file for it. Run from project root:

    python scripts/seed_tenant.py --config demo_tenant.json
    python scripts/seed_tenant.py --config demo_tenant.json --knowledge data/handbook.pdf

The config uses TenantConfig field names, e.g.:

    {
      "display_name": "Acme Support",
      "persona": "friendly support agent",
      "upstream_base_url": "https://api.acme.test",
      "identity_issuer": "acme.eu.auth0.com",
      "identity_audience": "https://api.acme.test",
      "roles_claim_path": "https://acme.test/roles",
      "endpoint_policies": [{"endpoint": "/refund", "method": "POST", "roles": ["admin"]}]
    }
"""

import argparse
import json
import sys
from pathlib import Path

# Project root on path so "app" resolves
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from app.core.errors import AppError
from app.core.tenant_db import TenantStore
from app.ingest.loader import bytes_to_text
from app.services.ingestion_service import ingest


def main() -> int:
    parser = argparse.ArgumentParser(description="Register a demo bot and optionally index its knowledge.")
    parser.add_argument("--config", required=True, type=Path, help="Path to a JSON tenant config.")
    parser.add_argument("--knowledge", type=Path, help="Optional .pdf/.txt/.xlsx file to index for the bot.")
    args = parser.parse_args()

    store = TenantStore()
    try:
        config = store.create(json.loads(args.config.read_text(encoding="utf-8")))
    except AppError as e:
        print(f"Invalid tenant config: {e.message}")
        return 1
    print(f"Registered bot {config.tenant_id} ({config.display_name})")

    if args.knowledge:
        text = bytes_to_text(args.knowledge.read_bytes(), args.knowledge.name)
        ok = ingest(config.tenant_id, text, args.knowledge.name)
        store.set_embedding_status(config.tenant_id, "complete" if ok else "failed")
        print(f"  knowledge {args.knowledge.name}: {'indexed' if ok else 'FAILED'}")
        return 0 if ok else 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
