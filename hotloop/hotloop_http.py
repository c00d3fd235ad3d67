import asyncio
import logging
import re
from typing import Optional

import httpx

from hotloop.hotloop_config import HotloopConfig
from hotloop.hotloop_errors import ResourceNotFoundError

logger = logging.getLogger(__name__)

NOT_FOUND_STATUSES = (404, 410)


def encoding_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = re.search(r'charset\s*=\s*([^\s;]+)', content_type, re.IGNORECASE)
    if m:
        return m.group(1).strip('"').strip("'")
    return None


def decode_body(content: bytes, content_type: Optional[str], default_encoding: str = "utf-8") -> str:
    enc = encoding_from_content_type(content_type) or default_encoding
    try:
        return content.decode(enc, errors="replace")
    except LookupError:
        # Unknown charset label in the header
        return content.decode(default_encoding, errors="replace")


async def http_get_text(url: str, config: Optional[HotloopConfig] = None) -> str:
    """
    Fetch source text over HTTP(S).

    Transport errors and 5xx answers are retried with exponential backoff.
    404/410 raise ResourceNotFoundError immediately, other non-2xx answers
    raise RuntimeError once retries are exhausted.
    """
    cfg = config or HotloopConfig()
    retries = int(cfg.http_retries)
    backoff = float(cfg.http_backoff)

    async with httpx.AsyncClient(timeout=float(cfg.http_timeout), follow_redirects=True) as client:
        last_exc: Optional[Exception] = None
        for attempt in range(retries + 1):
            try:
                resp = await client.request("GET", url)
                if resp.status_code in NOT_FOUND_STATUSES:
                    raise ResourceNotFoundError(url, f"HTTP {resp.status_code}")
                if 200 <= resp.status_code < 300:
                    return decode_body(resp.content, resp.headers.get("Content-Type"), cfg.encoding)
                preview = (resp.text or "")[:200]
                raise RuntimeError(f"HTTP {resp.status_code} for {url}: {preview}")
            except ResourceNotFoundError:
                raise
            except Exception as e:
                last_exc = e
                if attempt < retries:
                    logger.debug("GET %s failed (%s), retry %d/%d", url, e, attempt + 1, retries)
                    await asyncio.sleep(backoff * (2 ** attempt))
                    continue
                raise last_exc
    raise RuntimeError(f"GET {url} made no attempt")  # pragma: no cover
