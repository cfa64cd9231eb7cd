from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List

RECALL_SCOPES = {"transitive", "direct"}


@dataclass(frozen=True)
class Settings:
    database_url: str
    base_url: str
    log_level: str
    recall_scope: str
    cors_origins: List[str]


def load_settings() -> Settings:
    recall_scope = os.getenv("RECALL_SCOPE", "transitive").lower()
    if recall_scope not in RECALL_SCOPES:
        raise RuntimeError("RECALL_SCOPE must be one of: transitive, direct")

    origins = os.getenv("CORS_ORIGINS", "*")
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:////tmp/ayusetu.db"),
        base_url=os.getenv("BASE_URL", "http://localhost:8000"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        recall_scope=recall_scope,
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )
