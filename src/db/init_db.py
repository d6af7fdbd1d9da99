from __future__ import annotations

from pathlib import Path

from src.db.models import Base
from src.db.session import get_database_url, get_engine


def init_db() -> None:
    url = get_database_url()
    if url.startswith("sqlite:///./"):
        Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=get_engine())
