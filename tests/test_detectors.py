"""Tests for marketplace and payment-processor detection."""

from budget_bridge.core.models import PatternType, Rule, TransactionStatus
from budget_bridge.engine.detectors import AMAZON_HISTORY_URL, PAYPAL_ACTIVITY_URL, detect_special_transaction
from budget_bridge.engine.registry import DetectorRegistry
from budget_bridge.engine.rules import classify_transactions


def test_amazon_order_scenario(make_tx: object) -> None:
    """A matching rule does not auto-categorize a marketplace purchase; the order is linked."""
    tx = make_tx("tx-1", payee="AMAZON PAYMENTS EU", memo="01 303-1234567-1234567 Amazon.de")
    rule = Rule(name="Amazon", pattern="AMAZON", pattern_type=PatternType.CONTAINS, category_id="shopping")
    [result] = classify_transactions([rule], [tx])
    if result.status is not TransactionStatus.NEEDS_ATTENTION:
        msg = f"Expected needs_attention, got {result.status}"
        raise AssertionError(msg)
    if len(result.external_links) != 1:
        msg = f"Expected exactly one link, got {result.external_links}"
        raise AssertionError(msg)
    link = result.external_links[0]
    if "303-1234567-1234567" not in link.url or link.label != "Order 303-1234567-1234567":
        msg = f"Expected a link to the specific order, got {link}"
        raise AssertionError(msg)


def test_amazon_without_order_id_links_history(make_tx: object) -> None:
    links = detect_special_transaction(make_tx("tx-1", payee="AMZN MKTP DE", memo="Danke"))
    if [link.url for link in links] != [AMAZON_HISTORY_URL]:
        msg = f"Expected the order history link, got {links}"
        raise AssertionError(msg)


def test_paypal_detection(make_tx: object) -> None:
    links = detect_special_transaction(make_tx("tx-1", payee=None, memo="PP.4711.PP . Shop, Ihr Einkauf"))
    if [link.url for link in links] != [PAYPAL_ACTIVITY_URL]:
        msg = f"Expected the PayPal activity link, got {links}"
        raise AssertionError(msg)


def test_both_families_detected_independently(make_tx: object) -> None:
    links = detect_special_transaction(make_tx("tx-1", payee="PAYPAL *AMAZON", memo=""))
    if [link.label for link in links] != ["Amazon Orders", "PayPal Activity"]:
        msg = f"Expected both links in registration order, got {links}"
        raise AssertionError(msg)


def test_plain_transaction_has_no_links(make_tx: object) -> None:
    if detect_special_transaction(make_tx("tx-1", payee="Stadtwerke", memo="Abschlag")):
        msg = "Expected no links for an ordinary transaction"
        raise AssertionError(msg)


def test_registry_lists_builtin_detectors() -> None:
    available = DetectorRegistry.available()
    if available[:2] != ["marketplace", "payment_processor"]:
        msg = f"Expected the builtin detectors first, got {available}"
        raise AssertionError(msg)
