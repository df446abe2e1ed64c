"""Domain primitives shared by the engine and its capabilities."""

from .result import Result, Success, Failure, try_catch

__all__ = [
    "Result",
    "Success",
    "Failure",
    "try_catch",
]
