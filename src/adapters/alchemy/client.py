from __future__ import annotations

import logging
from typing import Any, Optional

from src.adapters.base import ProviderError, ProviderNotConfiguredError, TransferProvider
from src.core.config import ProviderConfig, alchemy_api_key
from src.core.net import http_post_json
from src.core.types import RawTransfer, TransferDirection
from src.utils.locks import mask_secret
from src.utils.money import _to_decimal
from src.utils.time import parse_datetime


log = logging.getLogger(__name__)

NETWORKS = {
    "ethereum": "eth-mainnet",
    "polygon": "polygon-mainnet",
    "arbitrum": "arb-mainnet",
    "optimism": "opt-mainnet",
    "base": "base-mainnet",
}

CATEGORIES = ["external", "internal", "erc20", "erc721", "erc1155"]


def _as_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _hex_int(v: Any) -> Optional[int]:
    s = _as_str(v)
    if s is None:
        return None
    try:
        return int(s, 16) if s.lower().startswith("0x") else int(s)
    except ValueError:
        return None


def parse_transfer(item: dict[str, Any]) -> RawTransfer:
    raw_contract = item.get("rawContract") or {}
    metadata = item.get("metadata") or {}
    return RawTransfer(
        hash=str(item.get("hash") or ""),
        block_number=_hex_int(item.get("blockNum")),
        from_address=str(item.get("from") or ""),
        to_address=_as_str(item.get("to")),
        asset_address=_as_str(raw_contract.get("address")),
        symbol=_as_str(item.get("asset")),
        amount=_to_decimal(item.get("value")),
        category=str(item.get("category") or "").lower(),
        timestamp=parse_datetime(metadata.get("blockTimestamp")),
        unique_id=_as_str(item.get("uniqueId")),
    )


class AlchemyClient(TransferProvider):
    """`alchemy_getAssetTransfers` over JSON-RPC. The API key is part of the URL and never logged."""

    def __init__(self, *, api_key: Optional[str] = None, config: Optional[ProviderConfig] = None) -> None:
        self.api_key = api_key if api_key is not None else alchemy_api_key()
        self.config = config or ProviderConfig()

    def supported_chains(self) -> list[str]:
        return list(NETWORKS)

    def check_ready(self) -> None:
        if not self.api_key:
            raise ProviderNotConfiguredError("Alchemy API key not configured. Add ALCHEMY_API_KEY to your secrets.")

    def _url(self, chain: str) -> str:
        return f"https://{NETWORKS[chain]}.g.alchemy.com/v2/{self.api_key}"

    def fetch_transfers(
        self,
        address: str,
        chain: str,
        direction: TransferDirection,
        page_key: Optional[str] = None,
    ) -> tuple[list[RawTransfer], Optional[str]]:
        self.check_ready()
        chain = (chain or "").strip().lower()
        self.check_chain(chain)

        params: dict[str, Any] = {
            "category": CATEGORIES,
            "withMetadata": True,
            "order": "desc",
            "maxCount": hex(int(self.config.page_size)),
        }
        params["fromAddress" if direction == "out" else "toAddress"] = address
        if page_key:
            params["pageKey"] = page_key
        payload = {"id": 1, "jsonrpc": "2.0", "method": "alchemy_getAssetTransfers", "params": [params]}

        log.debug("alchemy_getAssetTransfers chain=%s dir=%s key=%s", chain, direction, mask_secret(self.api_key))
        resp = http_post_json(
            self._url(chain),
            payload,
            timeout_s=self.config.timeout_s,
            max_retries=self.config.max_retries,
        )
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError(f"Alchemy response was not JSON: {e}") from None
        if not isinstance(data, dict):
            raise ProviderError("Alchemy response was not a JSON object.")
        if data.get("error"):
            err = data["error"]
            msg = err.get("message") if isinstance(err, dict) else str(err)
            raise ProviderError(f"Alchemy API error: {msg}")

        result = data.get("result") or {}
        items = result.get("transfers") or []
        transfers = [parse_transfer(i) for i in items if isinstance(i, dict) and i.get("hash")]
        return transfers, _as_str(result.get("pageKey"))
