"""fal.ai API access.

Each submission builds its own ``fal_client.AsyncClient`` around the caller's
key, so concurrent calls with different credentials never share a client or
touch ``os.environ``.
"""

import logging
from typing import Any, Dict

import fal_client
import httpx

logger = logging.getLogger(__name__)


def describe_error(e: Exception) -> str:
    """Format upstream errors consistently."""
    if isinstance(e, httpx.HTTPStatusError):
        status = e.response.status_code
        if status == 401:
            return "Authentication failed. Check your FAL_KEY."
        elif status == 403:
            return "Access forbidden. Check API permissions."
        elif status == 404:
            return "Endpoint not found."
        elif status == 429:
            return "Rate limit exceeded. Please wait before retrying."
        elif status == 402:
            return "Insufficient credits. Please add funds to your account."
        return f"API request failed (HTTP {status})"

    elif isinstance(e, httpx.TimeoutException):
        return "Request timed out."

    return f"{type(e).__name__} - {e}"


class FalGateway:
    """Submits jobs to the fal.ai queue and waits for their result."""

    async def submit(self, endpoint: str, arguments: Dict[str, Any], key: str) -> Dict[str, Any]:
        client = fal_client.AsyncClient(key=key)

        def on_queue_update(update):
            logger.info("[fal.ai] %s queue update: %s", endpoint, type(update).__name__)
            for log in getattr(update, "logs", None) or []:
                message = log.get("message") if isinstance(log, dict) else log
                logger.debug("[fal.ai] %s: %s", endpoint, message)

        logger.info("Submitting job to %s", endpoint)
        result = await client.subscribe(
            endpoint,
            arguments=arguments,
            with_logs=True,
            on_queue_update=on_queue_update,
        )
        logger.info("Job on %s completed", endpoint)
        return result
