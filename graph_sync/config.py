import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables in priority order:
# 1. <cwd>/.env
# 2. <cwd>/.env.local (overrides .env)
env_file = Path.cwd() / ".env"
env_local = Path.cwd() / ".env.local"

if env_file.exists():
    load_dotenv(dotenv_path=env_file, override=False)
if env_local.exists():
    load_dotenv(dotenv_path=env_local, override=True)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


# Graph store configuration
# GRAPH_STORE_BACKEND: "file" (durable JSON snapshot) or "memory"
GRAPH_STORE_BACKEND = os.getenv("GRAPH_STORE_BACKEND", "file").lower()
GRAPH_STORE_PATH = os.getenv("GRAPH_STORE_PATH", "data/graph.json")
GRAPH_STORE_PERSIST_INTERVAL_MS = int(os.getenv("GRAPH_STORE_PERSIST_INTERVAL_MS", "500"))
GRAPH_STORE_ENABLE_BACKUP = _env_bool("GRAPH_STORE_ENABLE_BACKUP", "true")

# Provenance configuration
# PROVENANCE_BACKEND: "sqlite" (durable) or "memory"
PROVENANCE_BACKEND = os.getenv("PROVENANCE_BACKEND", "sqlite").lower()
PROVENANCE_SQLITE_PATH = os.getenv("PROVENANCE_SQLITE_PATH", "data/provenance.db")

# Connector configuration
RSS_REQUEST_TIMEOUT = int(os.getenv("RSS_REQUEST_TIMEOUT", "30"))
RSS_USER_AGENT = os.getenv("RSS_USER_AGENT", "graph-sync/0.1 (+feed ingestion)")

# GITHUB_TOKEN is optional; unauthenticated requests are heavily rate limited
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")
GITHUB_API_BASE_URL = os.getenv("GITHUB_API_BASE_URL", "https://api.github.com").rstrip("/")
GITHUB_REQUEST_TIMEOUT = int(os.getenv("GITHUB_REQUEST_TIMEOUT", "30"))
GITHUB_USER_AGENT = os.getenv("GITHUB_USER_AGENT", "graph-sync/0.1")

# Logging
GRAPH_SYNC_LOG_LEVEL = os.getenv("GRAPH_SYNC_LOG_LEVEL", "INFO").upper()
