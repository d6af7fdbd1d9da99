from __future__ import annotations

import json
import logging
import os
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Optional

from src.adapters.base import ProviderError


log = logging.getLogger(__name__)

DEFAULT_ALLOWED_HOSTS = frozenset(
    {
        "eth-mainnet.g.alchemy.com",
        "polygon-mainnet.g.alchemy.com",
        "arb-mainnet.g.alchemy.com",
        "opt-mainnet.g.alchemy.com",
        "base-mainnet.g.alchemy.com",
        "api.telegram.org",
    }
)


def network_enabled() -> bool:
    v = (os.environ.get("NETWORK_ENABLED") or "1").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def _normalize_host(raw: str) -> str:
    s = raw.strip().lower()
    if "://" in s:
        s = urllib.parse.urlparse(s).hostname or ""
    s = s.split("/", 1)[0]
    return s.split(":", 1)[0]


def allowed_outbound_hosts() -> set[str]:
    raw = (os.environ.get("ALLOWED_OUTBOUND_HOSTS") or "").strip()
    if raw:
        hosts = {_normalize_host(h) for h in raw.split(",") if h.strip()}
        return {h for h in hosts if h}
    return set(DEFAULT_ALLOWED_HOSTS)


def assert_url_allowed(url: str) -> None:
    u = urllib.parse.urlparse(url)
    if (u.scheme or "").lower() != "https":
        raise ProviderError("Blocked network request: only https:// is allowed.")
    host = (u.hostname or "").lower()
    if not host:
        raise ProviderError("Blocked network request: missing hostname.")
    if host not in allowed_outbound_hosts():
        hint = " (ALLOWED_OUTBOUND_HOSTS overrides defaults)" if os.environ.get("ALLOWED_OUTBOUND_HOSTS") else ""
        raise ProviderError(f"Blocked network request: host not allowlisted ({host}){hint}.")


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    content: bytes
    content_type: Optional[str] = None

    def json(self) -> Any:
        return json.loads(self.content.decode("utf-8") or "null")


class _AllowlistRedirectHandler(urllib.request.HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):  # type: ignore[override]
        # Enforce allowlist on redirects as well.
        assert_url_allowed(str(newurl))
        return super().redirect_request(req, fp, code, msg, headers, newurl)


def _host(url: str) -> str:
    return (urllib.parse.urlparse(url).hostname or "").lower()


def http_request(
    url: str,
    *,
    method: str = "GET",
    body: Optional[bytes] = None,
    headers: Optional[dict[str, str]] = None,
    timeout_s: float = 30.0,
    max_retries: int = 2,
    backoff_s: float = 0.5,
) -> HttpResponse:
    """
    Minimal HTTP helper with:
      - NETWORK_ENABLED gate
      - outbound host allowlist
      - timeouts + limited retries (5xx / 429 / connection errors)

    URLs may embed API keys, so raised errors only ever mention the host.
    """
    if not network_enabled():
        raise ProviderError("Network disabled; set NETWORK_ENABLED=1 to enable live providers.")
    assert_url_allowed(url)
    host = _host(url)

    attempt = 0
    last_err: Exception | None = None
    while attempt <= max_retries:
        try:
            opener = urllib.request.build_opener(_AllowlistRedirectHandler())
            req = urllib.request.Request(url, data=body, method=method, headers=dict(headers or {}))
            with opener.open(req, timeout=timeout_s) as resp:
                status = int(getattr(resp, "status", 200))
                return HttpResponse(status_code=status, content=resp.read(), content_type=resp.headers.get("Content-Type"))
        except urllib.error.HTTPError as e:
            # Treat 5xx as retryable, 4xx as hard fail (except 429).
            last_err = e
            status = int(getattr(e, "code", 0) or 0)
            if status == 429 or status >= 500:
                log.debug("Retryable HTTP %s from %s (attempt %s)", status, host, attempt + 1)
                time.sleep(min(8.0, backoff_s * (2**attempt)))
                attempt += 1
                continue
            raise ProviderError(f"HTTP error status={status} host={host}") from None
        except urllib.error.URLError as e:
            last_err = e
            time.sleep(min(8.0, backoff_s * (2**attempt)))
            attempt += 1
            continue
        except (TimeoutError, OSError) as e:
            last_err = e
            time.sleep(min(8.0, backoff_s * (2**attempt)))
            attempt += 1
            continue

    reason = getattr(last_err, "reason", None) or last_err
    raise ProviderError(f"Network request failed after retries: {type(last_err).__name__}: {reason} host={host}")


def http_post_json(url: str, payload: Any, **kwargs: Any) -> HttpResponse:
    body = json.dumps(payload).encode("utf-8")
    return http_request(
        url,
        method="POST",
        body=body,
        headers={"Content-Type": "application/json", "Accept": "application/json"},
        **kwargs,
    )
