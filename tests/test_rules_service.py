"""Tests for rule storage, ordering and export/import."""

import uuid

import pytest

from budget_bridge.core.errors import (
    InvalidPatternError,
    RuleCompilationError,
    RuleNotFoundError,
    RuleValidationError,
)
from budget_bridge.core.models import PatternType, Rule, RuleCreate, RuleUpdate
from budget_bridge.services.rules_service import RulesService


def create(service: RulesService, name: str, pattern: str, priority: int = 100, **kwargs: object) -> Rule:
    return service.create_rule(
        RuleCreate(name=name, pattern=pattern, category_id=f"cat-{name}", priority=priority, **kwargs)
    )


def test_list_is_sorted_by_priority(rules_service: RulesService) -> None:
    create(rules_service, "late", "B", priority=50)
    create(rules_service, "early", "A", priority=10)
    names = [r.name for r in rules_service.list_rules()]
    if names != ["early", "late"]:
        msg = f"Expected rules by priority, got {names}"
        raise AssertionError(msg)


def test_create_rejects_invalid_regex(rules_service: RulesService) -> None:
    with pytest.raises(InvalidPatternError):
        create(rules_service, "broken", "(", pattern_type=PatternType.FULL_REGEX)
    if rules_service.list_rules():
        msg = "An invalid rule must not be stored"
        raise AssertionError(msg)


def test_update_and_delete(rules_service: RulesService) -> None:
    rule = create(rules_service, "rent", "Miete")
    updated = rules_service.update_rule(rule.id, RuleUpdate(enabled=False, category_name="Rent"))
    if updated.enabled or updated.category_name != "Rent" or updated.pattern != "Miete":
        msg = f"Expected only the set fields to change, got {updated}"
        raise AssertionError(msg)
    with pytest.raises(InvalidPatternError):
        rules_service.update_rule(rule.id, RuleUpdate(pattern="[", pattern_type=PatternType.FULL_REGEX))
    rules_service.delete_rule(rule.id)
    with pytest.raises(RuleNotFoundError):
        rules_service.get_rule(rule.id)


def test_missing_rule(rules_service: RulesService) -> None:
    with pytest.raises(RuleNotFoundError):
        rules_service.delete_rule(uuid.uuid4())


def test_reorder_assigns_ascending_priorities(rules_service: RulesService) -> None:
    a = create(rules_service, "a", "A", priority=1)
    b = create(rules_service, "b", "B", priority=2)
    c = create(rules_service, "c", "C", priority=3)
    reordered = rules_service.reorder([c.id, a.id, b.id])
    if [r.name for r in reordered] != ["c", "a", "b"]:
        msg = f"Expected c, a, b, got {[r.name for r in reordered]}"
        raise AssertionError(msg)


def test_export_import_round_trip(rules_service: RulesService) -> None:
    """Re-importing an export with replace reproduces the same ordered rule content."""
    create(rules_service, "groceries", "REWE", priority=10, payee_override="REWE")
    create(rules_service, "rent", r"^Miete \d+$", priority=20, pattern_type=PatternType.FULL_REGEX)
    exported = rules_service.export_rules()
    imported = rules_service.import_rules(exported, replace=True)
    content = ("name", "pattern", "pattern_type", "target_field", "category_id", "payee_override", "priority")
    before = [r.model_dump(include=set(content)) for r in exported]
    after = [r.model_dump(include=set(content)) for r in imported]
    if before != after:
        msg = f"Expected identical content after round trip, got {before} vs {after}"
        raise AssertionError(msg)


def test_import_is_all_or_nothing(rules_service: RulesService) -> None:
    existing = create(rules_service, "keep", "KEEP")
    incoming = [
        Rule(name="ok", pattern="OK", category_id="c1"),
        Rule(name="bad", pattern="(", pattern_type=PatternType.FULL_REGEX, category_id="c2"),
    ]
    with pytest.raises(RuleCompilationError):
        rules_service.import_rules(incoming, replace=True)
    if [r.id for r in rules_service.list_rules()] != [existing.id]:
        msg = "A failed import must leave the stored rules untouched"
        raise AssertionError(msg)


@pytest.mark.parametrize("field", ["name", "pattern", "category_id"])
def test_update_rejects_null_for_required_field(rules_service: RulesService, field: str) -> None:
    rule = create(rules_service, "rent", "Miete")
    with pytest.raises(RuleValidationError) as exc_info:
        rules_service.update_rule(rule.id, RuleUpdate.model_validate({field: None}))
    if field not in exc_info.value.message:
        msg = f"Expected the failing field in the message, got {exc_info.value.message!r}"
        raise AssertionError(msg)
    stored = rules_service.get_rule(rule.id)
    if (stored.name, stored.pattern, stored.category_id) != ("rent", "Miete", "cat-rent"):
        msg = "A rejected update must leave the stored rule untouched"
        raise AssertionError(msg)
