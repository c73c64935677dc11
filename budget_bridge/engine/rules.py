"""Rule compilation and transaction classification.

Rules arrive pre-sorted by priority from the rules store. They are compiled once per
classification pass, and the first enabled rule that matches a transaction decides its
category. The classifier never re-sorts: list order is priority order.
"""

import re
from dataclasses import dataclass

from budget_bridge.core.errors import InvalidPatternError, RuleCompilationError
from budget_bridge.core.models import (
    BankTransaction,
    DuplicateDetails,
    NotDuplicate,
    PatternType,
    Rule,
    SyncTransaction,
    TargetField,
    TransactionStatus,
)
from budget_bridge.core.utils import get_logger
from budget_bridge.engine.detectors import detect_special_transaction

logger = get_logger("budget-bridge.rules")


@dataclass(frozen=True)
class CompiledRule:
    """A rule together with its compiled matcher."""

    rule: Rule
    regex: re.Pattern[str]

    def matches(self, text: str) -> bool:
        """Whether the rule's matcher finds the pattern in the text."""
        return self.regex.search(text) is not None


def pattern_source(pattern: str, pattern_type: PatternType) -> str:
    """Translate a rule pattern into regular expression source."""
    if pattern_type is PatternType.EXACT:
        return r"\A" + re.escape(pattern) + r"\Z"
    if pattern_type is PatternType.CONTAINS:
        return re.escape(pattern)
    return pattern


def compile_pattern(pattern: str, pattern_type: PatternType) -> re.Pattern[str]:
    """Compile a pattern case-insensitively, raising InvalidPatternError on bad regex source."""
    try:
        return re.compile(pattern_source(pattern, pattern_type), re.IGNORECASE)
    except re.error as exc:
        raise InvalidPatternError(pattern, str(exc)) from exc


def compile_rule(rule: Rule) -> CompiledRule:
    """Compile a single rule."""
    return CompiledRule(rule=rule, regex=compile_pattern(rule.pattern, rule.pattern_type))


def compile_rules(rules: list[Rule]) -> list[CompiledRule]:
    """Compile all rules, or none of them.

    Every failure is collected before raising, so one RuleCompilationError reports all
    broken rules at once. Order is preserved.
    """
    compiled: list[CompiledRule] = []
    errors: list[InvalidPatternError] = []
    for rule in rules:
        try:
            compiled.append(compile_rule(rule))
        except InvalidPatternError as exc:
            errors.append(exc)
    if errors:
        logger.warning(f"{len(errors)} of {len(rules)} rules failed to compile")
        raise RuleCompilationError(errors)
    return compiled


def extract_match_text(transaction: BankTransaction, target_field: TargetField) -> str:
    """Return the transaction text a rule with this target field is matched against."""
    if target_field is TargetField.PAYEE:
        return transaction.payee or ""
    if target_field is TargetField.MEMO:
        return transaction.memo
    return f"{transaction.payee or ''} {transaction.memo}"


def classify(compiled_rules: list[CompiledRule], transaction: BankTransaction) -> tuple[Rule, str] | None:
    """Return the first enabled matching rule and its category id, or None."""
    for compiled in compiled_rules:
        if not compiled.rule.enabled:
            continue
        if compiled.matches(extract_match_text(transaction, compiled.rule.target_field)):
            return compiled.rule, compiled.rule.category_id
    return None


def pattern_matches_sample(pattern: str, pattern_type: PatternType, sample: str) -> bool:
    """Check a pattern against sample text the way classification would."""
    return compile_pattern(pattern, pattern_type).search(sample) is not None


def classify_transactions(rules: list[Rule], transactions: list[BankTransaction]) -> list[SyncTransaction]:
    """Compile the rules and turn each bank transaction into a SyncTransaction.

    A transaction with a marketplace or processor link always needs attention, even when a
    rule matched, because the real counterparty is hidden behind the intermediary.
    """
    compiled_rules = compile_rules(rules)
    results = []
    for transaction in transactions:
        links = detect_special_transaction(transaction)
        has_special_pattern = bool(links)
        sync_tx = SyncTransaction(
            transaction=transaction,
            external_links=links,
            duplicate_status=NotDuplicate(details=DuplicateDetails(transaction_reference=transaction.reference)),
        )
        match = classify(compiled_rules, transaction)
        if match is not None:
            rule, category_id = match
            sync_tx.category_id = category_id
            sync_tx.category_name = rule.category_name
            sync_tx.matched_rule_id = rule.id
            sync_tx.payee_override = rule.payee_override
            sync_tx.status = (
                TransactionStatus.NEEDS_ATTENTION if has_special_pattern else TransactionStatus.AUTO_CATEGORIZED
            )
        else:
            sync_tx.status = TransactionStatus.NEEDS_ATTENTION if has_special_pattern else TransactionStatus.PENDING
        results.append(sync_tx)
    logger.info(f"Classified {len(results)} transactions with {len(compiled_rules)} rules")
    return results
