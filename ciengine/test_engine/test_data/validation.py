"""Checks run on test data specifications and on generated records."""

import math
from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

from ciengine.test_engine.errors import TestDataSpecificationError
from ciengine.test_engine.models.test_data import (
    Choices,
    DateRange,
    FieldSpecification,
    NumericRange,
    StringLength,
    TestDataSpecification,
    ValidationResult,
)

CONSTRAINT_TYPES: dict[type, set[str]] = {
    NumericRange: {"integer", "float"},
    StringLength: {"string"},
    DateRange: {"date"},
}


def specification_problems(
    spec: TestDataSpecification,
    templates: Mapping[str, Sequence[dict[str, Any]]] | None = None,
) -> list[str]:
    """List every problem of a specification, empty when it is valid.

    Args:
        spec: Specification to check
        templates: Registered template records by template id

    Returns:
        Human readable problems, in field order

    """
    templates = templates or {}
    problems: list[str] = []

    if spec.record_count <= 0:
        problems.append(f"record_count must be positive, got {spec.record_count}")
    if not spec.fields:
        problems.append("at least one field is required")

    names = [f.name for f in spec.fields]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        problems.append(f"duplicate fields: {', '.join(duplicates)}")

    for field in spec.fields:
        problems.extend(_field_problems(field, spec.record_count))

    targets = {r.field for r in spec.relationships}
    for relationship in spec.relationships:
        if relationship.field not in names:
            problems.append(
                f"relationship targets unknown field '{relationship.field}'"
            )
        if relationship.kind == "copy" and relationship.source_field not in names:
            problems.append(
                f"relationship copies unknown field '{relationship.source_field}'"
            )
        if relationship.kind == "reference" and not relationship.source:
            problems.append(
                f"reference relationship on '{relationship.field}' needs a source"
            )
    for field in spec.fields:
        if field.unique and field.name in targets:
            problems.append(
                f"field '{field.name}' cannot be unique and a relationship target"
            )

    for rule in spec.privacy_rules:
        if rule.field not in names:
            problems.append(f"privacy rule targets unknown field '{rule.field}'")

    if spec.strategy == "template":
        if not spec.template_id:
            problems.append("template strategy requires template_id")
        elif spec.template_id not in templates:
            problems.append(f"template '{spec.template_id}' is not registered")
        else:
            problems.extend(
                _source_problems(spec, templates[spec.template_id], "template record")
            )
    elif spec.strategy == "pattern":
        problems.extend(_pattern_problems(spec))
    elif spec.strategy == "synthetic":
        if not spec.samples:
            problems.append("synthetic strategy requires samples")
        problems.extend(_source_problems(spec, spec.samples, "sample"))

    return problems


def validate_specification(
    spec: TestDataSpecification,
    templates: Mapping[str, Sequence[dict[str, Any]]] | None = None,
) -> None:
    """Reject an inconsistent specification before any generation work.

    Raises:
        TestDataSpecificationError: If the specification has any problem

    """
    problems = specification_problems(spec, templates)
    if problems:
        raise TestDataSpecificationError(spec.id, problems)


def _pattern_problems(spec: TestDataSpecification) -> list[str]:
    problems = []
    fields = {f.name: f for f in spec.fields}
    for field in spec.fields:
        if field.type == "string" and field.name not in spec.patterns:
            problems.append(f"pattern strategy needs a pattern for '{field.name}'")
    for name, pattern in spec.patterns.items():
        field = fields.get(name)
        if field is None:
            problems.append(f"pattern given for unknown field '{name}'")
        elif field.type != "string":
            problems.append(f"pattern given for {field.type} field '{name}'")
        elif isinstance(field.constraint, StringLength):
            bounds = field.constraint
            if not bounds.min_length <= len(pattern) <= bounds.max_length:
                problems.append(
                    f"pattern for '{name}' has length {len(pattern)}, outside "
                    f"[{bounds.min_length}, {bounds.max_length}]"
                )
    return problems


def _source_problems(
    spec: TestDataSpecification, records: Sequence[dict[str, Any]], label: str
) -> list[str]:
    """Values copied into generated records must already satisfy their field."""
    rewritten = _rewritten_fields(spec)
    problems = []
    for index, record in enumerate(records):
        for field in spec.fields:
            if field.name not in record or field.name in rewritten:
                continue
            problem = _value_problem(field, record[field.name])
            if problem:
                problems.append(f"{label} {index}: field '{field.name}' {problem}")
    return problems


def _rewritten_fields(spec: TestDataSpecification) -> set[str]:
    return {r.field for r in spec.privacy_rules} | {r.field for r in spec.relationships}


def _field_problems(field: FieldSpecification, record_count: int) -> list[str]:
    constraint = field.constraint
    prefix = f"field '{field.name}'"

    if field.type == "choice" and not isinstance(constraint, Choices):
        return [f"{prefix}: choice fields need a choices constraint"]
    if constraint is None:
        if field.unique and field.type == "boolean" and record_count > 2:
            return [f"{prefix}: boolean field cannot hold {record_count} unique values"]
        return []

    allowed = CONSTRAINT_TYPES.get(type(constraint))
    if allowed is not None and field.type not in allowed:
        return [f"{prefix}: {constraint.kind} constraint on {field.type} field"]

    problems = []
    if isinstance(constraint, NumericRange):
        if constraint.minimum >= constraint.maximum:
            problems.append(f"{prefix}: minimum must be lower than maximum")
        elif field.type == "integer":
            low, high = math.ceil(constraint.minimum), math.floor(constraint.maximum)
            if high < low:
                problems.append(f"{prefix}: range holds no integer")
            elif field.unique and high - low + 1 < record_count:
                problems.append(
                    f"{prefix}: range holds fewer than {record_count} unique values"
                )
    elif isinstance(constraint, StringLength):
        if constraint.min_length >= constraint.max_length:
            problems.append(f"{prefix}: min_length must be lower than max_length")
    elif isinstance(constraint, DateRange):
        if constraint.start >= constraint.end:
            problems.append(f"{prefix}: start must be before end")
    elif isinstance(constraint, Choices):
        if field.unique and len(set(map(repr, constraint.values))) < record_count:
            problems.append(
                f"{prefix}: fewer than {record_count} choices for a unique field"
            )
    return problems


def validate_records(
    spec: TestDataSpecification, records: Sequence[dict[str, Any]]
) -> ValidationResult:
    """Check generated records against their specification.

    Fields rewritten by privacy rules or filled by relationships are only
    checked for presence, their values no longer follow the field constraint.
    """
    errors: list[str] = []
    if len(records) != spec.record_count:
        errors.append(f"expected {spec.record_count} records, got {len(records)}")

    rewritten = _rewritten_fields(spec)
    for field in spec.fields:
        values = []
        for index, record in enumerate(records):
            if field.name not in record:
                errors.append(f"record {index}: missing field '{field.name}'")
                continue
            values.append(record[field.name])
            if field.name in rewritten:
                continue
            problem = _value_problem(field, record[field.name])
            if problem:
                errors.append(f"record {index}: field '{field.name}' {problem}")

        if field.unique and field.name not in rewritten:
            if len(set(map(repr, values))) != len(values):
                errors.append(f"field '{field.name}' has duplicate values")

    return ValidationResult(is_valid=not errors, errors=errors)


def _value_problem(field: FieldSpecification, value: Any) -> str | None:  # noqa: C901
    constraint = field.constraint
    if isinstance(constraint, Choices):
        return None if value in constraint.values else f"value {value!r} not allowed"

    if field.type == "integer":
        if not isinstance(value, int) or isinstance(value, bool):
            return f"expected integer, got {value!r}"
    elif field.type == "float":
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return f"expected number, got {value!r}"
    elif field.type == "boolean":
        if not isinstance(value, bool):
            return f"expected boolean, got {value!r}"
    elif field.type == "string":
        if not isinstance(value, str):
            return f"expected string, got {value!r}"
    elif field.type == "date":
        try:
            value = date.fromisoformat(value)
        except (TypeError, ValueError):
            return f"expected ISO date, got {value!r}"

    if isinstance(constraint, NumericRange):
        if not constraint.minimum <= value <= constraint.maximum:
            return f"value {value} outside [{constraint.minimum}, {constraint.maximum}]"
    elif isinstance(constraint, StringLength):
        if not constraint.min_length <= len(value) <= constraint.max_length:
            return (
                f"length {len(value)} outside "
                f"[{constraint.min_length}, {constraint.max_length}]"
            )
    elif isinstance(constraint, DateRange):
        if not constraint.start <= value <= constraint.end:
            return f"date {value} outside [{constraint.start}, {constraint.end}]"
    return None
