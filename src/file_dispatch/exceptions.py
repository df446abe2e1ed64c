"""Custom exceptions for file dispatch."""

from typing import List, Optional


class FileDispatchError(Exception):
    """Base exception for file dispatch errors."""
    pass


class RuleValidationError(FileDispatchError):
    """Raised when a rule or rule draft is rejected before evaluation."""

    def __init__(self, errors: List[str], rule_name: Optional[str] = None):
        self.errors = list(errors)
        self.rule_name = rule_name
        prefix = f"Rule '{rule_name}' rejected" if rule_name else "Rule rejected"
        super().__init__(f"{prefix}: {'; '.join(self.errors)}")


class RejectedOperationError(FileDispatchError):
    """Raised when an action is refused by a disabled capability."""
    pass


class FileOperationError(FileDispatchError):
    """Raised when file operations fail."""
    pass


class MetadataError(FileDispatchError):
    """Raised when file metadata cannot be read."""
    pass


class ConfigurationError(FileDispatchError):
    """Raised when there's an error in configuration."""
    pass


class RuleNotFoundError(FileDispatchError):
    """Raised when a rule or folder cannot be found in the repository."""
    pass
