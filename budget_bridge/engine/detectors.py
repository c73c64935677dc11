"""Marketplace and payment-processor detection.

Purchases paid through Amazon or PayPal show the intermediary as the payee, so even a
matching rule cannot tell what was actually bought. These detectors attach a link to the
order or activity page so the user can categorize by hand.
"""

import re

from budget_bridge.core.models import BankTransaction, ExternalLink
from budget_bridge.engine.base import BaseDetector, combined_text
from budget_bridge.engine.registry import DetectorRegistry

AMAZON_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"AMAZON\s*(PAYMENTS|EU|DE)?", r"AMZN\s*MKTP", r"Amazon\.de", r"AMAZON\s*\.DE")
]
PAYPAL_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (r"PAYPAL\s*\*", r"PP\.\d+", r"PAYPAL")]

# Order ids look like 303-1234567-1234567; the bank may prefix a 2-digit line number.
AMAZON_ORDER_ID = re.compile(r"(?:(?:^|\s)\d{2})?([A-Z0-9]{3}-\d{7}-\d{7})")

AMAZON_ORDER_URL = "https://www.amazon.de/gp/your-account/order-details?ie=UTF8&orderID={order_id}"
AMAZON_HISTORY_URL = "https://www.amazon.de/gp/your-account/order-history"
PAYPAL_ACTIVITY_URL = "https://www.paypal.com/activities"


def extract_amazon_order_id(transaction: BankTransaction) -> str | None:
    """Return the first Amazon order id found in payee and memo."""
    match = AMAZON_ORDER_ID.search(combined_text(transaction))
    return match.group(1) if match else None


class AmazonDetector(BaseDetector):
    """Links marketplace purchases to the order, or to the order history."""

    def detect(self, transaction: BankTransaction) -> ExternalLink | None:
        text = combined_text(transaction)
        if not any(p.search(text) for p in AMAZON_PATTERNS):
            return None
        order_id = extract_amazon_order_id(transaction)
        if order_id:
            return ExternalLink(label=f"Order {order_id}", url=AMAZON_ORDER_URL.format(order_id=order_id))
        return ExternalLink(label="Amazon Orders", url=AMAZON_HISTORY_URL)


class PayPalDetector(BaseDetector):
    """Links payment-processor passthroughs to the activity page."""

    def detect(self, transaction: BankTransaction) -> ExternalLink | None:
        text = combined_text(transaction)
        if any(p.search(text) for p in PAYPAL_PATTERNS):
            return ExternalLink(label="PayPal Activity", url=PAYPAL_ACTIVITY_URL)
        return None


DetectorRegistry.register("marketplace", AmazonDetector)
DetectorRegistry.register("payment_processor", PayPalDetector)


def detect_special_transaction(transaction: BankTransaction) -> list[ExternalLink]:
    """Run every registered detector independently and collect their links."""
    links = []
    for detector in DetectorRegistry.instances():
        link = detector.detect(transaction)
        if link is not None:
            links.append(link)
    return links
