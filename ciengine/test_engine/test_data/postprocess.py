"""Post-processing shared by every generation strategy.

Records go through uniqueness repair, relationships and privacy rules, in
that order, before they are validated.
"""

import hashlib
import math
import random
from collections.abc import Callable
from datetime import date
from typing import Any

from ciengine.test_engine.errors import TestDataSpecificationError
from ciengine.test_engine.models.test_data import (
    PrivacyRule,
    TestDataSet,
    TestDataSpecification,
)
from ciengine.test_engine.test_data.generators import Record, random_value

MAX_UNIQUE_ATTEMPTS = 1000
REDACTED = "[REDACTED]"

DataSetResolver = Callable[[str], TestDataSet | None]


def enforce_unique(
    spec: TestDataSpecification, records: list[Record], rng: random.Random
) -> None:
    """Redraw duplicated values of unique fields in place.

    Raises:
        TestDataSpecificationError: If distinct values cannot be drawn

    """
    for field in spec.fields:
        if not field.unique:
            continue
        seen: set[str] = set()
        for record in records:
            value = record[field.name]
            attempts = 0
            while repr(value) in seen:
                attempts += 1
                if attempts > MAX_UNIQUE_ATTEMPTS:
                    raise TestDataSpecificationError(
                        spec.id,
                        [f"could not generate unique values for field '{field.name}'"],
                    )
                value = random_value(field, rng)
            seen.add(repr(value))
            record[field.name] = value


def apply_relationships(
    spec: TestDataSpecification,
    records: list[Record],
    rng: random.Random,
    resolve: DataSetResolver,
) -> None:
    """Fill relationship target fields in place.

    Raises:
        TestDataSpecificationError: If a referenced data set or field is missing

    """
    for relationship in spec.relationships:
        if relationship.kind == "copy":
            for record in records:
                record[relationship.field] = record[relationship.source_field]
            continue

        parent = resolve(relationship.source or "")
        if parent is None:
            raise TestDataSpecificationError(
                spec.id, [f"referenced data set '{relationship.source}' not found"]
            )
        values = [
            r[relationship.source_field]
            for r in parent.records
            if relationship.source_field in r
        ]
        if not values:
            raise TestDataSpecificationError(
                spec.id,
                [
                    f"referenced data set '{relationship.source}' has no "
                    f"'{relationship.source_field}' values"
                ],
            )
        for record in records:
            record[relationship.field] = rng.choice(values)


def apply_privacy(spec: TestDataSpecification, records: list[Record]) -> None:
    """Anonymise fields in place according to the privacy rules."""
    for rule in spec.privacy_rules:
        for record in records:
            if record.get(rule.field) is not None:
                record[rule.field] = anonymize(record[rule.field], rule)


def anonymize(value: Any, rule: PrivacyRule) -> Any:
    """Apply one privacy rule to a value."""
    if rule.action == "redact":
        return REDACTED
    if rule.action == "hash":
        return hashlib.sha256(str(value).encode()).hexdigest()
    if rule.action == "mask":
        text = str(value)
        visible = min(rule.keep_last, len(text))
        return "*" * (len(text) - visible) + text[len(text) - visible :]

    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        bucketed = math.floor(value / rule.bucket) * rule.bucket
        return int(bucketed) if isinstance(value, int) else bucketed
    try:
        return date.fromisoformat(str(value)).strftime("%Y-%m")
    except ValueError:
        return str(value)[:1] + "*" if value else value
