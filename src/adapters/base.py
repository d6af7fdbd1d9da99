from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from src.core.types import RawTransfer, TransferDirection


class ProviderError(Exception):
    pass


class ProviderNotConfiguredError(ProviderError):
    pass


class UnsupportedChainError(ProviderError):
    def __init__(self, chain: str, supported: list[str]):
        self.chain = chain
        self.supported = list(supported)
        super().__init__(
            f"Chain {chain} is not supported for syncing yet. Supported chains: {', '.join(self.supported)}"
        )


class TransferProvider(ABC):
    """Upstream source of raw asset transfers for a wallet."""

    @abstractmethod
    def supported_chains(self) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    def fetch_transfers(
        self,
        address: str,
        chain: str,
        direction: TransferDirection,
        page_key: Optional[str] = None,
    ) -> tuple[list[RawTransfer], Optional[str]]:
        """Return one page of transfers plus the key for the next page (None when exhausted)."""
        raise NotImplementedError

    def check_ready(self) -> None:
        """Raise ProviderNotConfiguredError when credentials are missing."""
        return None

    def check_chain(self, chain: str) -> None:
        supported = self.supported_chains()
        if (chain or "").strip().lower() not in supported:
            raise UnsupportedChainError(chain, supported)


class Notifier(ABC):
    @abstractmethod
    def is_configured(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def send_message(self, chat_id: str, text: str, reply_markup: Optional[dict[str, Any]] = None) -> bool:
        raise NotImplementedError

    @abstractmethod
    def send_review(self, chat_id: str, transaction: Any) -> bool:
        raise NotImplementedError
