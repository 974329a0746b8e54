"""
Walk through a full commission lifecycle on the in-memory store.

Default scenario: a 100,000 USD sale at 5% commission split 70/30 between the
seller and the house. Two partial payments (40% and 20% of the commission) are
applied, an overpayment is rejected, the consolidated history is printed and
the sale is finally cancelled.
"""

import argparse
import logging
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.commission import Beneficiary, BeneficiaryRole
from domain.errors import OverpaymentError
from domain.ledger import PaymentType
from domain.money import apply_percentage, format_money, quantize_money
from domain.sale import Sale
from repositories.commission_store import InMemoryCommissionStore
from services.history_service import get_consolidated_history, total_paid
from services.payment_distributor import PaymentRequest, apply_payment, quote_payment_amount
from services.reconciler import cancel_sale
from services.settings import EngineSettings
from services.share_builder import build_shares, get_shares


def print_shares(store, sale):
    print("-" * 60)
    for share in get_shares(store, sale.sale_id):
        print(
            f"{share.role.value:<10} {share.split_pct_self:>6}%  "
            f"total {format_money(share.total_amount, share.currency):>14}  "
            f"paid {format_money(share.paid_to_date, share.currency):>14}  "
            f"{share.status.value}"
        )
    print("-" * 60)


def run_demo(price: Decimal, commission_pct: Decimal, currency: str):
    """Run the demo scenario and print each step."""

    settings = EngineSettings()
    store = InMemoryCommissionStore()

    sale = Sale.close(price=price, commission_pct=commission_pct, currency=currency)
    build_shares(
        store,
        sale,
        [
            Beneficiary(BeneficiaryRole.SELLER, "agent-17", Decimal("70")),
            Beneficiary(BeneficiaryRole.HOUSE, "office-1", Decimal("30")),
        ],
        settings=settings,
    )

    print("=" * 60)
    print(f"Sale {sale.sale_id}")
    print(f"Commission: {format_money(sale.commission_amount, sale.currency)}")
    print("=" * 60)
    print_shares(store, sale)

    for amount, payment_date, note in [
        (quantize_money(apply_percentage(sale.commission_amount, 40)), date(2025, 3, 1), "First installment"),
        (quantize_money(apply_percentage(sale.commission_amount, 20)), date(2025, 3, 15), "Second installment"),
    ]:
        entries = apply_payment(
            store,
            PaymentRequest(
                sale_id=sale.sale_id,
                amount=amount,
                payment_type=PaymentType.PARTIAL,
                payment_date=payment_date,
                notes=note,
            ),
            settings=settings,
        )
        print(f"\nApplied {format_money(amount, sale.currency)} in {len(entries)} slice(s):")
        for entry in entries:
            print(f"  share {entry.share_id}: {format_money(entry.amount, entry.currency)}")
        print_shares(store, sale)

    remaining = quote_payment_amount(store, sale.sale_id, 100)
    print(f"\nRemaining balance: {format_money(remaining, sale.currency)}")
    print(f"Suggested 50% payment: {format_money(quote_payment_amount(store, sale.sale_id, 50), sale.currency)}")

    try:
        apply_payment(
            store,
            PaymentRequest(
                sale_id=sale.sale_id,
                amount=remaining + Decimal("0.01"),
                payment_type=PaymentType.TOTAL,
                payment_date=date(2025, 4, 1),
            ),
            settings=settings,
        )
    except OverpaymentError as e:
        print(f"\nRejected as expected: {e}")

    events = get_consolidated_history(store, sale.sale_id, settings=settings)
    print("\nPayment history (newest first):")
    for event in events:
        print(
            f"  {event.payment_date}  {event.payment_type.value:<8} "
            f"{format_money(event.amount, event.currency):>12}  {event.notes or ''}"
        )
    print(f"  Total paid: {format_money(total_paid(events), sale.currency)}")

    result = cancel_sale(store, sale.sale_id, "Buyer financing fell through")
    print(f"\nSale cancelled; {result.cancelled_share_count} share(s) cancelled")
    print_shares(store, sale)
    print(f"History entries kept: {len(get_consolidated_history(store, sale.sale_id, settings=settings))}")


def main():
    parser = argparse.ArgumentParser(
        description="Run a commission split and payment walkthrough on the in-memory store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Default scenario (100,000 USD at 5%)
  python demo_commission_flow.py

  # Peso sale at 3%
  python demo_commission_flow.py --price 8500000 --commission-pct 3 --currency DOP
        """
    )
    parser.add_argument("--price", type=Decimal, default=Decimal("100000"), help="Sale price")
    parser.add_argument("--commission-pct", type=Decimal, default=Decimal("5"), help="Commission percentage (0-100)")
    parser.add_argument("--currency", default="USD", help="ISO currency code")
    parser.add_argument("--verbose", action="store_true", help="Show engine log messages")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    run_demo(args.price, args.commission_pct, args.currency)


if __name__ == "__main__":
    main()
