"""Branch catalog adapter over HTTP (httpx).

Reads ``GET /restaurants/{restaurant_id}/catalog?branchId=...`` from the
catalog service. The per-call timeout is the smaller of the configured
timeout and what is left of the request's deadline.

Requests run on a small worker pool while the caller waits on its deadline,
so cancelling the deadline releases the caller at once. The worker streams
the body and stops reading, closing the connection, when it sees the
cancellation.
"""

import json
from concurrent.futures import ThreadPoolExecutor

import httpx
import structlog

from ordering.pricing.catalog import BranchCatalog, CatalogUnavailable, Deadline, DeadlineExceeded, RestaurantCatalog

logger = structlog.get_logger(__name__)


class HttpBranchCatalog(BranchCatalog):
    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 7.0,
        transport: httpx.BaseTransport | None = None,
        max_concurrent_requests: int = 8,
    ):
        self.timeout_seconds = timeout_seconds
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self._requests = ThreadPoolExecutor(max_workers=max_concurrent_requests, thread_name_prefix="catalog-fetch")

    def fetch(self, restaurant_id: str, branch_id: str | None, deadline: Deadline) -> RestaurantCatalog:
        timeout = min(self.timeout_seconds, deadline.check())
        params = {"branchId": branch_id} if branch_id else None

        in_flight = self._requests.submit(self._get, restaurant_id, params, timeout, deadline)
        try:
            payload = deadline.wait(in_flight)
        except DeadlineExceeded:
            logger.info("catalog_request_abandoned", restaurant_id=restaurant_id, cancelled=deadline.cancelled)
            raise

        return RestaurantCatalog.from_payload(payload)

    def _get(self, restaurant_id: str, params: dict | None, timeout: float, deadline: Deadline):
        try:
            with self._client.stream(
                "GET",
                f"/restaurants/{restaurant_id}/catalog",
                params=params,
                timeout=timeout,
            ) as response:
                response.raise_for_status()
                body = bytearray()
                for chunk in response.iter_bytes():
                    if deadline.cancelled:
                        raise DeadlineExceeded("Pricing request was cancelled")
                    body.extend(chunk)
            return json.loads(bytes(body))
        except httpx.TimeoutException as exc:
            logger.warning("catalog_request_timed_out", restaurant_id=restaurant_id, timeout=timeout)
            raise CatalogUnavailable(f"Catalog request timed out after {timeout:.2f}s") from exc
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "catalog_request_rejected",
                restaurant_id=restaurant_id,
                status_code=exc.response.status_code,
            )
            raise CatalogUnavailable(f"Catalog responded with {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.warning("catalog_request_failed", restaurant_id=restaurant_id, error=str(exc))
            raise CatalogUnavailable(str(exc)) from exc
        except ValueError as exc:
            raise CatalogUnavailable("Catalog response was not valid JSON") from exc

    def close(self) -> None:
        self._requests.shutdown(wait=False, cancel_futures=True)
        self._client.close()
