import asyncio
import hashlib
import hmac
import io
import unittest
from unittest.mock import patch

from storefront_checkout.interaction import TerminalCheckoutUI
from storefront_checkout.protocol.errors import GatewayIntegrationError, InvalidAmount
from storefront_checkout.services.gateway_adapter import (
    ChargeRequest,
    FailureReason,
    GatewayAdapter,
    GatewayLibraryLoader,
    OutcomeKind,
    to_smallest_unit,
    verify_payment_signature
)

from checkout_fakes import (
    CountingLoader,
    FakeLibrary,
    ScriptedUI,
    broken_loader,
    dismissing,
    failing,
    gateway_config,
    paying,
    raising_on_open,
    waiting
)


def charge_request():
    return ChargeRequest(
        attempt_id="attempt_test0001",
        description="Order Payment - Total: ₹499.00",
        customer_name="Ravi Kumar",
        customer_email="ravi@example.com",
        customer_contact="9876543210"
    )


class TestEmbeddedCheckout(unittest.IsolatedAsyncioTestCase):
    """Embedded modal outcomes; secondary strategies must stay untouched"""

    async def test_success_callback_resolves_success(self):
        ui = ScriptedUI()
        library = FakeLibrary(paying("pay_123"))
        adapter = GatewayAdapter(ui, loader=CountingLoader(library), gateway_config=gateway_config())

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.SUCCESS)
        self.assertEqual(outcome.payment_id, "pay_123")
        self.assertEqual(outcome.strategy, "embedded")
        self.assertEqual(ui.prompts, [])
        self.assertEqual(ui.opened, [])

    async def test_options_follow_checkout_contract(self):
        library = FakeLibrary(paying())
        adapter = GatewayAdapter(ScriptedUI(), loader=CountingLoader(library), gateway_config=gateway_config())

        await adapter.charge(499, charge_request())

        options = library.widgets[0].options
        self.assertEqual(options['key'], "rzp_test_key")
        self.assertEqual(options['amount'], 49900)
        self.assertEqual(options['currency'], "INR")
        self.assertEqual(options['prefill'], {
            'name': "Ravi Kumar", 'email': "ravi@example.com", 'contact': "9876543210"
        })
        self.assertEqual(options['notes']['attempt_id'], "attempt_test0001")
        self.assertNotIn('order_id', options)
        self.assertTrue(callable(options['modal']['ondismiss']))
        self.assertIn('payment.failed', library.widgets[0].handlers)

    async def test_dismiss_is_cancellation_without_fallback(self):
        ui = ScriptedUI(confirms=[True, True])
        adapter = GatewayAdapter(ui, loader=CountingLoader(FakeLibrary(dismissing)),
                                 gateway_config=gateway_config())

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.CANCELLED)
        self.assertEqual(ui.prompts, [])
        self.assertEqual(ui.opened, [])

    async def test_payment_failed_event_resolves_failed(self):
        adapter = GatewayAdapter(ScriptedUI(), loader=CountingLoader(FakeLibrary(failing)),
                                 gateway_config=gateway_config())

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.FAILED)
        self.assertEqual(outcome.reason, FailureReason.PAYMENT_FAILED)
        self.assertIn("declined by the bank", outcome.message)
        self.assertEqual(outcome.error['code'], "BAD_REQUEST_ERROR")

    async def test_outcome_resolves_once(self):
        def pay_then_dismiss(widget):
            widget.pay("pay_first")
            widget.dismiss()
            widget.fail()

        adapter = GatewayAdapter(ScriptedUI(), loader=CountingLoader(FakeLibrary(pay_then_dismiss)),
                                 gateway_config=gateway_config())

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.SUCCESS)
        self.assertEqual(outcome.payment_id, "pay_first")

    async def test_unanswered_modal_times_out_as_pending(self):
        opened = asyncio.Event()
        library = FakeLibrary(waiting(opened))
        ui = ScriptedUI()
        adapter = GatewayAdapter(ui, loader=CountingLoader(library),
                                 gateway_config=gateway_config(callback_timeout=0.05))

        outcome = await adapter.charge(499, charge_request())

        self.assertTrue(opened.is_set())
        self.assertIs(outcome.kind, OutcomeKind.PENDING)
        self.assertEqual(outcome.reason, FailureReason.CALLBACK_TIMEOUT)
        self.assertEqual(ui.prompts, [])

        # A late callback is ignored
        library.widgets[0].pay("pay_late")
        await asyncio.sleep(0)

    async def test_success_without_payment_id_is_only_pending(self):
        adapter = GatewayAdapter(ScriptedUI(), loader=CountingLoader(FakeLibrary(paying(None))),
                                 gateway_config=gateway_config())

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.PENDING)
        self.assertEqual(outcome.reason, FailureReason.UNVERIFIED_CALLBACK)

    async def test_signature_is_verified_when_secret_configured(self):
        secret = "s3cr3t"
        good = hmac.new(secret.encode(), b"order_abc|pay_123", hashlib.sha256).hexdigest()

        adapter = GatewayAdapter(
            ScriptedUI(),
            loader=CountingLoader(FakeLibrary(paying("pay_123", order_id="order_abc", signature=good))),
            gateway_config=gateway_config(key_secret=secret)
        )
        self.assertIs((await adapter.charge(499, charge_request())).kind, OutcomeKind.SUCCESS)

        tampered = GatewayAdapter(
            ScriptedUI(),
            loader=CountingLoader(FakeLibrary(paying("pay_123", order_id="order_abc", signature="0" * 64))),
            gateway_config=gateway_config(key_secret=secret)
        )
        outcome = await tampered.charge(499, charge_request())
        self.assertIs(outcome.kind, OutcomeKind.PENDING)
        self.assertEqual(outcome.reason, FailureReason.SIGNATURE_MISMATCH)

    def test_verify_payment_signature(self):
        signature = hmac.new(b"key", b"order_1|pay_1", hashlib.sha256).hexdigest()
        self.assertTrue(verify_payment_signature("order_1", "pay_1", signature, "key"))
        self.assertFalse(verify_payment_signature("order_1", "pay_2", signature, "key"))


class TestAmountValidation(unittest.IsolatedAsyncioTestCase):

    async def test_non_positive_amounts_rejected_before_library_load(self):
        loader = CountingLoader(FakeLibrary(paying()))
        ui = ScriptedUI()
        adapter = GatewayAdapter(ui, loader=loader, gateway_config=gateway_config())

        for amount in (0, -5, float('nan'), float('inf'), None, "499", True):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidAmount):
                    await adapter.charge(amount, charge_request())

        self.assertEqual(loader.acquisitions, 0)
        self.assertFalse(loader.attempted)
        self.assertEqual(ui.opened, [])

    def test_amount_converted_to_paise(self):
        self.assertEqual(to_smallest_unit(499), 49900)
        self.assertEqual(to_smallest_unit(1299.99), 129999)
        self.assertEqual(to_smallest_unit(10.005), 1001)


class TestSecondaryStrategies(unittest.IsolatedAsyncioTestCase):
    """Fallback chain used only when the embedded checkout cannot be attempted"""

    async def test_confirmed_hosted_page_is_pending_verification(self):
        ui = ScriptedUI(confirms=[True, True])
        adapter = GatewayAdapter(ui, loader=broken_loader(), gateway_config=gateway_config())

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.PENDING)
        self.assertEqual(outcome.strategy, "hosted_page")
        self.assertEqual(len(ui.opened), 1)
        self.assertTrue(ui.opened[0].startswith("https://pages.razorpay.com/jaimaaruthi?"))
        self.assertIn("amount=499.00", ui.opened[0])
        self.assertIn("alternative payment options", ui.prompts[0])
        self.assertIn("₹499.00", ui.prompts[1])

    async def test_declining_alternatives_fails_without_opening_windows(self):
        ui = ScriptedUI(confirms=[False])
        adapter = GatewayAdapter(ui, loader=broken_loader(), gateway_config=gateway_config())

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.FAILED)
        self.assertEqual(outcome.reason, FailureReason.DECLINED)
        self.assertEqual(ui.opened, [])

    async def test_unconfirmed_payment_is_failed(self):
        ui = ScriptedUI(confirms=[True, False])
        adapter = GatewayAdapter(ui, loader=broken_loader(), gateway_config=gateway_config())

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.FAILED)
        self.assertEqual(outcome.reason, FailureReason.DECLINED)
        self.assertEqual(len(ui.opened), 1)

    async def test_blocked_window_moves_to_upi_intent(self):
        ui = ScriptedUI(confirms=[True, True], windows=[False, True])
        adapter = GatewayAdapter(ui, loader=broken_loader(), gateway_config=gateway_config())

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.PENDING)
        self.assertEqual(outcome.strategy, "upi_intent")
        self.assertEqual(len(ui.opened), 2)
        upi = ui.opened[1]
        self.assertTrue(upi.startswith("upi://pay?"))
        self.assertIn("pa=jaimaaruthi%40razorpay", upi)
        self.assertIn("am=499.00", upi)
        self.assertIn("cu=INR", upi)
        self.assertIn("pn=Jaimaaruthi%20Electrical%20Store", upi)

    async def test_every_window_blocked_is_failed_blocked(self):
        ui = ScriptedUI(confirms=[True], windows=[False, False])
        adapter = GatewayAdapter(ui, loader=broken_loader(), gateway_config=gateway_config())

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.FAILED)
        self.assertEqual(outcome.reason, FailureReason.BLOCKED)
        self.assertEqual(len(ui.opened), 2)

    async def test_no_secondary_strategies_is_exhausted(self):
        ui = ScriptedUI(confirms=[True])
        adapter = GatewayAdapter(ui, loader=broken_loader(),
                                 gateway_config=gateway_config(secondary_strategies=[]))

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.FAILED)
        self.assertEqual(outcome.reason, FailureReason.EXHAUSTED)
        self.assertEqual(ui.prompts, [])

    async def test_error_before_modal_opens_falls_back(self):
        ui = ScriptedUI(confirms=[True, True])
        adapter = GatewayAdapter(ui, loader=CountingLoader(FakeLibrary(raising_on_open)),
                                 gateway_config=gateway_config())

        outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.PENDING)
        self.assertEqual(outcome.strategy, "hosted_page")


class TestGatewayLibraryLoader(unittest.IsolatedAsyncioTestCase):

    async def test_handle_is_acquired_once(self):
        library = FakeLibrary(paying())
        loader = CountingLoader(library)

        first, second = await asyncio.gather(loader.acquire(), loader.acquire())

        self.assertIs(first, library)
        self.assertIs(second, library)
        self.assertEqual(loader.acquisitions, 1)
        self.assertTrue(loader.acquired)

    async def test_failure_is_cached_until_reset(self):
        loader = broken_loader()

        for _ in range(3):
            with self.assertRaises(GatewayIntegrationError):
                await loader.acquire()
        self.assertEqual(loader.acquisitions, 1)

        loader.reset()
        with self.assertRaises(GatewayIntegrationError):
            await loader.acquire()
        self.assertEqual(loader.acquisitions, 2)

    async def test_unexpected_acquisition_error_becomes_integration_error(self):
        async def explode():
            raise OSError("network unreachable")

        loader = GatewayLibraryLoader(explode)
        with self.assertRaises(GatewayIntegrationError) as ctx:
            await loader.acquire()
        self.assertIn("network unreachable", ctx.exception.message)

    async def test_library_acquired_once_across_charges(self):
        loader = CountingLoader(FakeLibrary(paying()))
        adapter = GatewayAdapter(ScriptedUI(), loader=loader, gateway_config=gateway_config())

        await adapter.charge(499, charge_request())
        await adapter.charge(250, charge_request())

        self.assertEqual(loader.acquisitions, 1)


class TestTerminalCheckoutUI(unittest.IsolatedAsyncioTestCase):
    """The terminal UI driving the fallback chain"""

    async def test_printed_link_still_asks_for_confirmation(self):
        stream = io.StringIO()
        ui = TerminalCheckoutUI(stream=stream)
        adapter = GatewayAdapter(ui, loader=broken_loader(), gateway_config=gateway_config())

        with patch('storefront_checkout.interaction.webbrowser.open_new', return_value=False), \
                patch('builtins.input', side_effect=["y", "y"]) as answers:
            outcome = await adapter.charge(499, charge_request())

        self.assertIs(outcome.kind, OutcomeKind.PENDING)
        self.assertEqual(outcome.strategy, "hosted_page")
        self.assertEqual(outcome.reason, FailureReason.MANUAL_CONFIRMATION)
        self.assertEqual(answers.call_count, 2)
        self.assertIn("Open this link manually", stream.getvalue())
        self.assertIn(outcome.payment_link, stream.getvalue())

    async def test_notify_writes_to_stream(self):
        stream = io.StringIO()
        await TerminalCheckoutUI(stream=stream).notify("Order confirmation failed")
        self.assertIn("Order confirmation failed", stream.getvalue())


if __name__ == "__main__":
    unittest.main()
