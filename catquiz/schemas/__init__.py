"""Validated records for responses, questions and parameters."""
from catquiz.schemas.irt import (
    ItemParameter,
    PersonParameter,
    Question,
    ResponseRecord,
    ResponseSet,
)

__all__ = [
    "ItemParameter",
    "PersonParameter",
    "Question",
    "ResponseRecord",
    "ResponseSet",
]
