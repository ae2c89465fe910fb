"""Command line checkout for the storefront"""

import argparse
import asyncio
import json
import os
import sys
from typing import Dict, List, Optional, Any

from .config import config
from .interaction import TerminalCheckoutUI
from .models.session import CheckoutSession, CheckoutStep
from .protocol.errors import CheckoutError, ErrorHandler
from .services.checkout_state_machine import CheckoutStateMachine
from .services.reconciliation_service import ReconciliationService
from .utils.logger import get_logger, setup_checkout_logging

logger = get_logger(__name__)

ADDRESS_PROMPTS = {
    'name': "Full name",
    'phone': "Mobile number",
    'email': "Email (optional)",
    'address': "Address (house no, street, area)",
    'locality': "Locality (optional)",
    'landmark': "Landmark (optional)",
    'city': "City",
    'state': "State",
    'pincode': "Pincode",
}


async def _ask(label: str, default: str = "") -> str:
    suffix = f" [{default}]" if default else ""
    answer = await asyncio.to_thread(input, f"{label}{suffix}: ")
    return answer.strip() or default


def load_cart(path: str) -> Dict[str, Any]:
    """
    Read a cart handed over by the cart page

    Accepts either a list of items or an object with `items` and optional
    `total`, `authToken` and `email`.
    """
    with open(path, 'r') as f:
        data = json.load(f)
    if isinstance(data, list):
        data = {'items': data}
    return data


def _print_summary(session: CheckoutSession) -> None:
    print("\nOrder Summary")
    for item in session.items:
        print(f"  {item.name} x {item.quantity}  ₹{item.subtotal:.2f}")
    print(f"  Total: ₹{session.order_total:.2f}")
    customer = session.customer
    print(f"\nDeliver to: {customer.name}, {customer.address}, {customer.city}, "
          f"{customer.state} - {customer.pincode} ({customer.phone})")
    print(f"Payment: {session.payment_method.label}")


async def _address_step(machine: CheckoutStateMachine, session: CheckoutSession) -> None:
    previous = session.customer.to_dict() if session.customer else {}
    print("\nDelivery Address")
    fields = {}
    for name, label in ADDRESS_PROMPTS.items():
        fields[name] = await _ask(label, previous.get(name) or "")

    result = await machine.submit_address(session, fields)
    if not result.accepted:
        print(f"\n{result.message}")


async def _payment_step(machine: CheckoutStateMachine, session: CheckoutSession) -> None:
    methods = machine.selector.available_methods()
    print("\nPayment Method")
    for index, method in enumerate(methods, start=1):
        marker = "" if method['supported'] else " (coming soon)"
        print(f"  {index}. {method['display_name']} - {method['description']}{marker}")
    print("  b. Back to address")

    choice = await _ask("Choose")
    if choice.lower() == 'b':
        await machine.go_back(session)
        return
    if not choice.isdigit() or not 1 <= int(choice) <= len(methods):
        print("Please choose one of the listed options")
        return

    result = await machine.select_payment_method(session, methods[int(choice) - 1]['method'])
    if not result.accepted:
        print(f"\n{result.message}")
        return

    result = await machine.continue_to_summary(session)
    if not result.accepted:
        print(f"\n{result.message}")


async def _summary_step(machine: CheckoutStateMachine, session: CheckoutSession) -> bool:
    """Returns False when the user leaves checkout"""
    _print_summary(session)
    choice = (await _ask("\n[p] Place order  [b] Back  [q] Quit", "p")).lower()
    if choice == 'b':
        await machine.go_back(session)
    elif choice == 'q':
        await machine.abandon(session)
        return False
    else:
        result = await machine.place_order(session)
        if not result.accepted and result.message:
            print(f"\n{result.message}")
    return True


def _print_outcome(session: CheckoutSession) -> None:
    if session.outcome:
        state = session.outcome.to_navigation_state()
        if not state.get('confirmationFailed'):
            # Confirmation failures were already announced through the UI
            print(f"\n{state['message']}")
        if state.get('orderNumber'):
            print(f"Order number: {state['orderNumber']}")
        if state.get('isPending'):
            print(state['pendingMessage'])
        if state.get('confirmationFailed'):
            print(f"Reference: {state['reference']}")
    elif session.current_step == CheckoutStep.CANCELLED:
        print("\nPayment cancelled. You can try again.")
    else:
        message = (session.last_error or {}).get('message', "Payment failed. Please try again.")
        print(f"\n{message}")


async def run_checkout(cart_path: str, total: Optional[float] = None) -> int:
    """Interactive checkout for a cart file"""
    cart = load_cart(cart_path)
    ui = TerminalCheckoutUI()
    machine = CheckoutStateMachine(ui)

    session = machine.start(
        cart.get('items') or [],
        order_total=total if total is not None else cart.get('total'),
        auth_token=cart.get('authToken') or os.getenv("CHECKOUT_AUTH_TOKEN"),
        account_email=cart.get('email')
    )

    while True:
        step = session.current_step
        if step == CheckoutStep.ADDRESS:
            await _address_step(machine, session)
        elif step == CheckoutStep.PAYMENT_METHOD:
            await _payment_step(machine, session)
        elif step == CheckoutStep.SUMMARY:
            if not await _summary_step(machine, session):
                print("\nCheckout abandoned")
                return 1
        else:
            _print_outcome(session)
            if step in (CheckoutStep.FAILED, CheckoutStep.CANCELLED) and await ui.confirm("Try again?"):
                await machine.retry(session)
                continue
            return 0 if step in (CheckoutStep.COMPLETED, CheckoutStep.PENDING_VERIFICATION) else 1


def list_pending() -> List[Dict[str, Any]]:
    return ReconciliationService().list_pending()


async def run_reconcile(auth_token: Optional[str] = None) -> Dict[str, Any]:
    return await ReconciliationService().reconcile(auth_token=auth_token)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storefront-checkout", description="Storefront checkout")
    parser.add_argument("--log-level", default=config.logging.level, help="Logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    checkout = subparsers.add_parser("checkout", help="Check out a cart interactively")
    checkout.add_argument("--cart", required=True, help="Cart JSON file handed over by the cart page")
    checkout.add_argument("--total", type=float, help="Order total override")

    subparsers.add_parser("pending", help="List retained checkout attempts")

    reconcile = subparsers.add_parser("reconcile", help="Resubmit orders for payments that were not confirmed")
    reconcile.add_argument("--auth-token", default=os.getenv("CHECKOUT_AUTH_TOKEN"),
                           help="Bearer token for the order API")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    setup_checkout_logging(level=args.log_level)

    try:
        if args.command == "checkout":
            return asyncio.run(run_checkout(args.cart, args.total))

        if args.command == "pending":
            pending = list_pending()
            print(json.dumps(pending, indent=2))
            return 0

        if args.command == "reconcile":
            report = asyncio.run(run_reconcile(args.auth_token))
            print(json.dumps(report, indent=2))
            return 1 if report['failed'] else 0

    except KeyboardInterrupt:
        logger.info("Checkout interrupted by user")
        return 130
    except (CheckoutError, OSError, ValueError) as e:
        response = ErrorHandler.handle_exception(e)
        print(response['message'], file=sys.stderr)
        logger.debug(f"Command failed: {response['error']}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
