from dataclasses import dataclass
from typing import Any

import httpx


@dataclass
class DeliveryResult:
    success: bool
    status_code: int | None = None
    data: Any = None
    error: str | None = None


async def post_json(
    url: str,
    payload: dict,
    *,
    timeout: float,
    headers: dict | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DeliveryResult:
    """
    POST a JSON body once, without retrying.

    Network errors, timeouts and non-2xx answers come back as an unsuccessful
    DeliveryResult instead of raising.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            r = await client.post(url, json=payload, headers=headers)
            r.raise_for_status()
    except httpx.HTTPStatusError as e:
        error = f"HTTP {e.response.status_code}: {e.response.reason_phrase}"
        return DeliveryResult(success=False, status_code=e.response.status_code, error=error)
    except httpx.TimeoutException:
        return DeliveryResult(success=False, error=f"Timeout after {timeout}s")
    except httpx.HTTPError as e:
        return DeliveryResult(success=False, error=str(e) or e.__class__.__name__)

    try:
        data = r.json()
    except ValueError:
        data = r.text
    return DeliveryResult(success=True, status_code=r.status_code, data=data)
