"""
GuardianLink Heuristics

A versioned, persisted set of conjunctive rules evaluated against URL
signals, and the supervised loop that maintains it:

- Rule store with atomic JSON persistence
- Evaluator mapping matched-rule suspicion onto the heuristics phase score
- Learner creating rules from confirmed-malicious samples
- False-positive feedback and time-based confidence decay
"""

from guardianlink.heuristics.conditions import ConditionKey
from guardianlink.heuristics.decay import apply_decay, reset_decay_for_rule
from guardianlink.heuristics.evaluator import HeuristicEvaluator
from guardianlink.heuristics.learner import HeuristicLearner
from guardianlink.heuristics.schemas import (
    DecayReport,
    FeedbackResult,
    HeuristicEvaluation,
    HeuristicRule,
    LearningResult,
    RuleSet,
    ValidationProblem,
)
from guardianlink.heuristics.store import (
    DuplicateRuleError,
    HeuristicRuleStore,
    RuleNotFoundError,
    get_rule_store,
)

__all__ = [
    "ConditionKey",
    "DecayReport",
    "DuplicateRuleError",
    "FeedbackResult",
    "HeuristicEvaluation",
    "HeuristicEvaluator",
    "HeuristicLearner",
    "HeuristicRule",
    "HeuristicRuleStore",
    "LearningResult",
    "RuleNotFoundError",
    "RuleSet",
    "ValidationProblem",
    "apply_decay",
    "get_rule_store",
    "reset_decay_for_rule",
]
