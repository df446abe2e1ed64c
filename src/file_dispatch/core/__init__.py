"""Rule engine: conditions, tokens, actions, scheduling and preview."""

from .conditions import ConditionEvaluator, EvaluationResult
from .executor import ActionExecutor, ActionOutcome, OutcomeStatus
from .patterns import TokenContext, TokenResolver
from .preview import PreviewCoordinator, PreviewItem, PreviewService, preview_folder
from .scheduler import FileProcessingResult, RuleScheduler

__all__ = [
    'ConditionEvaluator',
    'EvaluationResult',
    'ActionExecutor',
    'ActionOutcome',
    'OutcomeStatus',
    'TokenContext',
    'TokenResolver',
    'PreviewCoordinator',
    'PreviewItem',
    'PreviewService',
    'preview_folder',
    'FileProcessingResult',
    'RuleScheduler',
]
