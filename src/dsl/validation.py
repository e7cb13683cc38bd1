"""Parsing, serialization and cross-reference validation for the label DSL.

Structural validation is delegated to pydantic. Rules that span several
parts of the document (image elements referencing assets) are checked in a
second pass by `validate_label_dsl`.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .lib import BOUNDS_EPSILON, ImageElement, LabelDSL

logger = logging.getLogger(__name__)


@dataclass
class DSLIssue:
    """A single validation problem in a label DSL.

    Attributes:
        location: Dotted path or element id where the problem was found.
        message: Human-readable error description.
        error_type: Machine-readable error classification.
    """

    location: str
    message: str
    error_type: str

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"


class DSLValidationError(ValueError):
    """Raised when data cannot be parsed into a valid LabelDSL."""

    def __init__(self, issues: list[DSLIssue]):
        self.issues = issues
        summary = "; ".join(str(issue) for issue in issues[:5])
        if len(issues) > 5:
            summary += f" (+{len(issues) - 5} more)"
        super().__init__(f"Invalid label DSL: {summary}")


def _issues_from_pydantic(error: PydanticValidationError) -> list[DSLIssue]:
    issues = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ())) or "root"
        issues.append(
            DSLIssue(
                location=location,
                message=detail.get("msg", "invalid value"),
                error_type=detail.get("type", "schema"),
            )
        )
    return issues


def validate_label_dsl(dsl: LabelDSL) -> list[DSLIssue]:
    """Validate document-level invariants of a parsed DSL.

    Performs the following checks:
        - Every image element references an existing asset
        - Element ids are unique
        - Bounds stay inside the canvas

    The last two are already enforced at parse time; they are repeated here
    so values built with `model_construct` or mutated copies are covered.

    Args:
        dsl: Parsed label DSL.

    Returns:
        list[DSLIssue]: Problems found (empty if valid).
    """
    issues: list[DSLIssue] = []
    asset_ids = {asset.id for asset in dsl.assets}
    seen: set[str] = set()

    for element in dsl.elements:
        if element.id in seen:
            issues.append(
                DSLIssue(element.id, f"Duplicate element id '{element.id}'", "duplicate_id")
            )
        seen.add(element.id)

        b = element.bounds
        if b.x + b.w > 1.0 + BOUNDS_EPSILON or b.y + b.h > 1.0 + BOUNDS_EPSILON:
            issues.append(
                DSLIssue(element.id, "Bounds extend beyond the canvas", "bounds")
            )

        if isinstance(element, ImageElement) and element.asset_id not in asset_ids:
            issues.append(
                DSLIssue(
                    element.id,
                    f"Asset with id '{element.asset_id}' not found in assets array",
                    "missing_asset",
                )
            )

    return issues


def is_valid(dsl: LabelDSL) -> bool:
    """Check if a DSL satisfies every invariant."""
    return len(validate_label_dsl(dsl)) == 0


def parse_label_dsl(data: str | bytes | dict[str, Any] | LabelDSL) -> LabelDSL:
    """Parse and fully validate a label DSL.

    Args:
        data: JSON text, a decoded dict, or an existing LabelDSL.

    Returns:
        LabelDSL with defaults filled in.

    Raises:
        DSLValidationError: If structural or cross-reference validation fails.
    """
    try:
        if isinstance(data, LabelDSL):
            dsl = LabelDSL.model_validate(data.model_dump())
        elif isinstance(data, (str, bytes)):
            dsl = LabelDSL.model_validate_json(data)
        else:
            dsl = LabelDSL.model_validate(data)
    except PydanticValidationError as e:
        raise DSLValidationError(_issues_from_pydantic(e)) from e

    issues = validate_label_dsl(dsl)
    if issues:
        raise DSLValidationError(issues)
    return dsl


def serialize_label_dsl(dsl: LabelDSL, indent: int | None = None) -> str:
    """Serialize a DSL to camelCase JSON, defaults included."""
    return dsl.model_dump_json(by_alias=True, indent=indent)


def dsl_to_dict(dsl: LabelDSL) -> dict[str, Any]:
    """Dump a DSL to a JSON-compatible camelCase dict."""
    return dsl.model_dump(by_alias=True, mode="json")


def load_label_dsl(path) -> LabelDSL:
    """Read and parse a DSL JSON file."""
    with open(path, encoding="utf-8") as f:
        return parse_label_dsl(json.load(f))


__all__ = [
    "DSLIssue",
    "DSLValidationError",
    "validate_label_dsl",
    "is_valid",
    "parse_label_dsl",
    "serialize_label_dsl",
    "dsl_to_dict",
    "load_label_dsl",
]
