"""Example script demonstrating the resilient API client."""

import asyncio
import logging

from resilient_client import ApiClient, ApiError, RequestConfig, format_error_response
from resilient_client.monitoring import generate_metrics

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    """Fetch a few resources, falling back to cached data on failure."""

    async with ApiClient(
        "https://jsonplaceholder.typicode.com",
        retry={"max_attempts": 3, "base_delay": 0.5, "max_delay": 4.0},
        circuit_breaker={"failure_threshold": 3, "recovery_timeout": 30.0},
        timeout={"request_timeout": 5.0},
    ) as client:
        client.set_fallback_data("posts", [])

        response = await client.request_detailed("/posts", config=RequestConfig(fallback_key="posts"))
        logger.info(f"Fetched {len(response.value)} posts ({response.source})")

        try:
            await client.get("/does-not-exist")
        except ApiError as e:
            logger.info(f"Request failed: {format_error_response(e).to_dict()}")

        for route, status in client.get_all_route_statuses().items():
            logger.info(f"{route}: {status['state']} ({status['failure_count']} failures)")

    print(generate_metrics())


if __name__ == "__main__":
    asyncio.run(main())
