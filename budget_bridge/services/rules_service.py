"""Rule storage: CRUD, reordering, and export/import of the categorization rules."""

import uuid
from collections.abc import Callable
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from budget_bridge.core.db import RuleRecord
from budget_bridge.core.errors import RuleNotFoundError, RuleValidationError
from budget_bridge.core.models import PatternType, Rule, RuleCreate, RuleUpdate, TargetField
from budget_bridge.core.utils import get_logger, utcnow
from budget_bridge.engine.rules import compile_pattern, compile_rules

logger = get_logger("budget-bridge.rules-store")

PRIORITY_STEP = 10


def _to_rule(record: RuleRecord) -> Rule:
    return Rule(
        id=uuid.UUID(record.id),
        name=record.name,
        pattern=record.pattern,
        pattern_type=PatternType(record.pattern_type),
        target_field=TargetField(record.target_field),
        category_id=record.category_id,
        category_name=record.category_name,
        payee_override=record.payee_override,
        priority=record.priority,
        enabled=record.enabled,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _apply(record: RuleRecord, rule: Rule) -> None:
    record.name = rule.name
    record.pattern = rule.pattern
    record.pattern_type = rule.pattern_type.value
    record.target_field = rule.target_field.value
    record.category_id = rule.category_id
    record.category_name = rule.category_name
    record.payee_override = rule.payee_override
    record.priority = rule.priority
    record.enabled = rule.enabled
    record.created_at = rule.created_at
    record.updated_at = rule.updated_at


class RulesService:
    """SQLAlchemy-backed rule store; patterns are compiled before anything is written."""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow) -> None:
        """Initialize the service with a session factory."""
        self.session_factory = session_factory
        self.clock = clock

    def list_rules(self) -> list[Rule]:
        """All rules, enabled and disabled, sorted by priority."""
        with self.session_factory() as session:
            stmt = select(RuleRecord).order_by(RuleRecord.priority, RuleRecord.created_at)
            return [_to_rule(r) for r in session.scalars(stmt)]

    def get_rule(self, rule_id: uuid.UUID) -> Rule:
        with self.session_factory() as session:
            record = session.get(RuleRecord, str(rule_id))
            if record is None:
                raise RuleNotFoundError(f"Rule {rule_id} not found")
            return _to_rule(record)

    def create_rule(self, request: RuleCreate) -> Rule:
        """Validate the pattern and store a new rule."""
        compile_pattern(request.pattern, request.pattern_type)
        now = self.clock()
        rule = Rule(**request.model_dump(), created_at=now, updated_at=now)
        with self.session_factory() as session:
            record = RuleRecord(id=str(rule.id))
            _apply(record, rule)
            session.add(record)
            session.commit()
        logger.info(f"Created rule '{rule.name}' ({rule.pattern_type.value}: {rule.pattern})")
        return rule

    def update_rule(self, rule_id: uuid.UUID, request: RuleUpdate) -> Rule:
        """Apply the fields set on the request; the resulting pattern must compile."""
        with self.session_factory() as session:
            record = session.get(RuleRecord, str(rule_id))
            if record is None:
                raise RuleNotFoundError(f"Rule {rule_id} not found")
            changes = request.model_dump(exclude_unset=True)
            rule = _to_rule(record).model_copy(update={**changes, "updated_at": self.clock()})
            try:
                rule = Rule.model_validate(rule.model_dump())
            except ValidationError as exc:
                fields = ", ".join(".".join(str(p) for p in e["loc"]) for e in exc.errors())
                msg = f"Invalid value for {fields}"
                raise RuleValidationError(msg) from exc
            compile_pattern(rule.pattern, rule.pattern_type)
            _apply(record, rule)
            session.commit()
        return rule

    def delete_rule(self, rule_id: uuid.UUID) -> None:
        with self.session_factory() as session:
            record = session.get(RuleRecord, str(rule_id))
            if record is None:
                raise RuleNotFoundError(f"Rule {rule_id} not found")
            session.delete(record)
            session.commit()

    def reorder(self, rule_ids: list[uuid.UUID]) -> list[Rule]:
        """Give the listed rules ascending priorities in the order given."""
        with self.session_factory() as session:
            records = []
            for rule_id in rule_ids:
                record = session.get(RuleRecord, str(rule_id))
                if record is None:
                    raise RuleNotFoundError(f"Rule {rule_id} not found")
                records.append(record)
            now = self.clock()
            for index, record in enumerate(records, start=1):
                record.priority = index * PRIORITY_STEP
                record.updated_at = now
            session.commit()
        return self.list_rules()

    def export_rules(self) -> list[Rule]:
        return self.list_rules()

    def import_rules(self, rules: list[Rule], replace: bool = False) -> list[Rule]:
        """Store a previously exported rule list.

        Every rule must compile before any is written. Imported rules get fresh ids so an
        import never collides with what is already stored.
        """
        compile_rules(rules)
        now = self.clock()
        with self.session_factory() as session:
            if replace:
                session.execute(delete(RuleRecord))
            for rule in rules:
                fresh = rule.model_copy(
                    update={"id": uuid.uuid4(), "created_at": rule.created_at or now, "updated_at": now}
                )
                record = RuleRecord(id=str(fresh.id))
                _apply(record, fresh)
                session.add(record)
            session.commit()
        logger.info(f"Imported {len(rules)} rules (replace={replace})")
        return self.list_rules()
