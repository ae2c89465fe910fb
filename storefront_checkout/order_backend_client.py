"""
Order backend client

Creates orders on the storefront backend once checkout has a resolved payment.
Every request carries an Idempotency-Key so a replayed submission can never
create a second order.
"""

import httpx
import json
import shlex
from typing import Dict, Optional, Any

from .config import config
from .protocol.errors import PersistenceError
from .utils.logger import get_logger

logger = get_logger(__name__)

ORDERS_ENDPOINT = "/api/orders"


class OrderBackendClient:
    """Client for the storefront order creation API"""

    def __init__(self, base_url: str = None, timeout: float = None, debug_curl: bool = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the order backend client

        Args:
            base_url: Base URL of the backend (e.g., http://localhost:5000)
            timeout: Request timeout in seconds
            debug_curl: Enable CURL command logging for debugging
            transport: Optional httpx transport, used by tests
        """
        self.base_url = (base_url or config.api.backend_endpoint or "").rstrip('/')
        if not self.base_url:
            raise ValueError("BACKEND_ENDPOINT environment variable or base_url parameter is required")
        self.debug_curl = debug_curl if debug_curl is not None else config.api.debug_curl

        # Accept either the site root or the /api root
        if self.base_url.endswith('/api'):
            self.base_url = self.base_url[:-4]

        self.timeout = httpx.Timeout(timeout if timeout is not None else config.api.timeout)
        self.limits = httpx.Limits(max_keepalive_connections=5, max_connections=10)
        self.transport = transport

        logger.info(f"OrderBackendClient initialized with base_url: {self.base_url}")
        if self.debug_curl:
            logger.info("CURL logging enabled for API calls")

    def _generate_curl_command(self, method: str, url: str, headers: Dict,
                               json_data: Optional[Dict]) -> str:
        """Generate curl command for debugging"""
        curl_parts = ['curl', '-X', method.upper()]

        for key, value in headers.items():
            if key.lower() == 'authorization':
                value = 'Bearer ***'
            curl_parts.extend(['-H', shlex.quote(f'{key}: {value}')])

        if json_data:
            curl_parts.extend(['-d', shlex.quote(json.dumps(json_data, separators=(',', ':')))])

        curl_parts.append(shlex.quote(url))
        return ' '.join(curl_parts)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Dict] = None,
        headers: Optional[Dict] = None,
        auth_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Make HTTP request to the order backend

        Raises:
            PersistenceError: transport failure, non-2xx status or undecodable body
        """
        url = f"{self.base_url}{endpoint}"

        request_headers = dict(config.api.default_headers)
        if headers:
            request_headers.update(headers)
        if auth_token:
            request_headers["Authorization"] = f"Bearer {auth_token}"

        if self.debug_curl:
            curl_cmd = self._generate_curl_command(method, url, request_headers, json_data)
            logger.info(f"CURL: {curl_cmd}")

        logger.info(f"[REQUEST] {method.upper()} {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, limits=self.limits,
                                         transport=self.transport) as client:
                response = await client.request(
                    method=method.upper(),
                    url=url,
                    json=json_data,
                    headers=request_headers
                )
        except httpx.HTTPError as e:
            logger.error(f"Network/connection error for {endpoint}: {e}. Check backend availability.")
            raise PersistenceError(f"Could not reach the order service: {e}") from e

        logger.debug(f"{method.upper()} {url} -> {response.status_code}")

        if self.debug_curl:
            logger.info(f"[CURL RESPONSE] Status: {response.status_code}")
            logger.info(f"[CURL RESPONSE] Body:\n{response.text[:1000]}")

        try:
            body = response.json()
        except ValueError:
            body = None

        if 200 <= response.status_code < 300:
            if not isinstance(body, dict):
                logger.error(f"Undecodable response from {endpoint}: {response.text[:200]}")
                raise PersistenceError("Order service returned an unreadable response",
                                       status_code=response.status_code, payload=response.text[:1000])
            return body

        message = None
        if isinstance(body, dict):
            message = body.get('message') or body.get('error')
        if response.status_code == 401:
            logger.error(f"Unauthorized access to {endpoint}. Check the auth token.")
            message = message or "Please log in again to place your order"
        elif response.status_code == 400:
            logger.error(f"HTTP 400 Bad Request for {endpoint}. Backend response: {response.text}")
        else:
            logger.error(f"HTTP {response.status_code} for {endpoint}: {response.text}")

        raise PersistenceError(
            message or f"Failed to create order (HTTP {response.status_code})",
            status_code=response.status_code,
            payload=body if body is not None else response.text[:1000]
        )

    # ================================
    # ORDER APIs
    # ================================

    async def create_order(self, payload: Dict[str, Any], idempotency_key: str,
                           auth_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Create an order

        Args:
            payload: Body with items, customerDetails, orderSummary and paymentDetails
            idempotency_key: Stable key for this payment; replays return the same order
            auth_token: Customer bearer token

        Returns:
            Created order, at least `_id` and `orderNumber`

        Raises:
            PersistenceError: the order was not created
        """
        status = payload.get('paymentDetails', {}).get('status')
        logger.info(f"[Orders] Creating order (key={idempotency_key}, payment status={status})")

        body = await self._make_request(
            "POST",
            ORDERS_ENDPOINT,
            json_data=payload,
            headers={"Idempotency-Key": idempotency_key},
            auth_token=auth_token
        )

        order = body.get('order') if isinstance(body.get('order'), dict) else body
        if not order.get('_id'):
            raise PersistenceError("Order service response is missing the order id",
                                   status_code=200, payload=body)
        order.setdefault('orderNumber', order['_id'])

        logger.info(f"[Orders] Order created: {order['orderNumber']}")
        return order


_order_client: Optional[OrderBackendClient] = None


def get_order_backend_client() -> OrderBackendClient:
    """Get the global OrderBackendClient instance"""
    global _order_client
    if _order_client is None:
        _order_client = OrderBackendClient()
    return _order_client
