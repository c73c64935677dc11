"""Engine package: rule compilation, classification, special-transaction detection and duplicate detection."""

from .detectors import detect_special_transaction  # noqa: F401
from .duplicates import DuplicateMatchConfig, mark_duplicates  # noqa: F401
from .registry import DetectorRegistry  # noqa: F401
from .rules import CompiledRule, classify, classify_transactions, compile_rule, compile_rules  # noqa: F401
