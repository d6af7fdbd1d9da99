from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    page_size: int = Field(default=100, ge=1, le=1000)
    max_pages: int = Field(default=20, ge=1)
    timeout_s: float = 30.0
    max_retries: int = 2


class ClassifierConfig(BaseModel):
    # Added to the built-in router list; lowercase hex.
    extra_dex_routers: list[str] = Field(default_factory=list)


class NotificationConfig(BaseModel):
    max_review_messages: int = Field(default=3, ge=0)


class LotConfig(BaseModel):
    acquisition_labels: list[str] = Field(
        default_factory=lambda: ["swap", "airdrop", "reward", "interest", "income", "nft_mint", "nft_sale", "vesting"]
    )
    disposal_labels: list[str] = Field(default_factory=lambda: ["swap", "nft_sale", "expense", "liquidation"])


class AppConfig(BaseModel):
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    lots: LotConfig = Field(default_factory=LotConfig)


def _candidate_paths() -> list[Path]:
    paths: list[Path] = []
    env = (os.environ.get("CHAINTAX_CONFIG") or "").strip()
    if env:
        paths.append(Path(os.path.expanduser(env)))
    paths.append(Path("chaintax.yaml"))
    home = Path(os.path.expanduser("~"))
    paths.append(home / ".chaintax" / "chaintax.yaml")
    return paths


def load_config(path: Optional[Path] = None) -> tuple[AppConfig, Optional[str]]:
    candidates = [path] if path is not None else _candidate_paths()
    for p in candidates:
        if p.exists():
            data = yaml.safe_load(p.read_text()) or {}
            return AppConfig.model_validate(data), str(p)
    return AppConfig(), None


def alchemy_api_key() -> Optional[str]:
    v = (os.environ.get("ALCHEMY_API_KEY") or "").strip()
    return v or None


def telegram_bot_token() -> Optional[str]:
    v = (os.environ.get("TELEGRAM_BOT_TOKEN") or "").strip()
    return v or None
