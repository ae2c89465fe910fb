import json
import unittest

import httpx

from storefront_checkout.order_backend_client import OrderBackendClient
from storefront_checkout.protocol.errors import PersistenceError

PAYLOAD = {
    'items': [{'productId': "prod_led_9w", 'name': "LED Bulb 9W", 'price': 499, 'quantity': 1}],
    'customerDetails': {'firstName': "Ravi", 'lastName': "Kumar"},
    'orderSummary': {'total': 499},
    'paymentDetails': {'method': "razorpay", 'status': "completed", 'amount': 499},
}


class TestOrderBackendClient(unittest.IsolatedAsyncioTestCase):
    """Order creation over a mocked transport"""

    def client_for(self, handler, base_url="http://backend.test"):
        self.requests = []

        def record(request):
            self.requests.append(request)
            return handler(request)

        return OrderBackendClient(base_url=base_url, debug_curl=False,
                                  transport=httpx.MockTransport(record))

    async def test_create_order_posts_with_idempotency_key(self):
        client = self.client_for(lambda request: httpx.Response(
            201, json={'_id': "665f", 'orderNumber': "ORD-1001"}
        ))

        order = await client.create_order(PAYLOAD, "pay_123", auth_token="tok_abc")

        self.assertEqual(order['orderNumber'], "ORD-1001")
        request = self.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/api/orders")
        self.assertEqual(request.headers['Idempotency-Key'], "pay_123")
        self.assertEqual(request.headers['Authorization'], "Bearer tok_abc")
        self.assertEqual(json.loads(request.content)['paymentDetails']['status'], "completed")

    async def test_wrapped_order_and_missing_number(self):
        client = self.client_for(lambda request: httpx.Response(200, json={'order': {'_id': "665f"}}))

        order = await client.create_order(PAYLOAD, "attempt_1")

        self.assertEqual(order['_id'], "665f")
        self.assertEqual(order['orderNumber'], "665f")
        self.assertNotIn('Authorization', self.requests[0].headers)

    async def test_api_suffix_in_base_url(self):
        client = self.client_for(lambda request: httpx.Response(200, json={'_id': "1"}),
                                 base_url="http://backend.test/api/")
        await client.create_order(PAYLOAD, "attempt_1")
        self.assertEqual(str(self.requests[0].url), "http://backend.test/api/orders")

    async def test_server_error_raises_with_backend_message(self):
        client = self.client_for(lambda request: httpx.Response(500, json={'message': "Database unavailable"}))

        with self.assertRaises(PersistenceError) as ctx:
            await client.create_order(PAYLOAD, "pay_123")

        self.assertEqual(ctx.exception.message, "Database unavailable")
        self.assertEqual(ctx.exception.status_code, 500)

    async def test_unauthorized_has_login_message(self):
        client = self.client_for(lambda request: httpx.Response(401, text="Unauthorized"))

        with self.assertRaises(PersistenceError) as ctx:
            await client.create_order(PAYLOAD, "pay_123")
        self.assertIn("log in", ctx.exception.message)

    async def test_undecodable_success_body_raises(self):
        client = self.client_for(lambda request: httpx.Response(200, text="<html>ok</html>"))

        with self.assertRaises(PersistenceError):
            await client.create_order(PAYLOAD, "pay_123")

    async def test_missing_order_id_raises(self):
        client = self.client_for(lambda request: httpx.Response(200, json={'success': True}))

        with self.assertRaises(PersistenceError):
            await client.create_order(PAYLOAD, "pay_123")

    async def test_transport_error_raises(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = self.client_for(refuse)

        with self.assertRaises(PersistenceError) as ctx:
            await client.create_order(PAYLOAD, "pay_123")
        self.assertIn("connection refused", ctx.exception.message)

    def test_curl_command_masks_token(self):
        client = OrderBackendClient(base_url="http://backend.test", debug_curl=True)
        command = client._generate_curl_command(
            "POST", "http://backend.test/api/orders",
            {'Authorization': "Bearer tok_abc", 'Idempotency-Key': "pay_123"}, {'a': 1}
        )
        self.assertNotIn("tok_abc", command)
        self.assertIn("Idempotency-Key: pay_123", command)


if __name__ == "__main__":
    unittest.main()
