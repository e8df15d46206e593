"""Record generation strategies."""

import math
import random
import statistics
import string
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Callable, Mapping
from datetime import date, timedelta
from typing import Any

from ciengine.test_engine.models.test_data import (
    Choices,
    DateRange,
    FieldSpecification,
    GenerationStrategy,
    NumericRange,
    StringLength,
    TestDataSpecification,
)

Record = dict[str, Any]

DEFAULT_DATE_RANGE = DateRange(start=date(2020, 1, 1), end=date(2024, 12, 31))


def random_value(field: FieldSpecification, rng: random.Random) -> Any:
    """Draw one value for a field, bounded by its constraint."""
    constraint = field.constraint
    if isinstance(constraint, Choices):
        return rng.choice(constraint.values)

    if field.type == "integer":
        bounds = constraint if isinstance(constraint, NumericRange) else None
        low = math.ceil(bounds.minimum) if bounds else 0
        high = math.floor(bounds.maximum) if bounds else 1000
        return rng.randint(low, high)
    if field.type == "float":
        bounds = constraint if isinstance(constraint, NumericRange) else None
        low = bounds.minimum if bounds else 0.0
        high = bounds.maximum if bounds else 1.0
        return round(rng.uniform(low, high), 4)
    if field.type == "boolean":
        return rng.random() < 0.5
    if field.type == "date":
        dates = constraint if isinstance(constraint, DateRange) else DEFAULT_DATE_RANGE
        days = (dates.end - dates.start).days
        return (dates.start + timedelta(days=rng.randint(0, days))).isoformat()

    lengths = constraint if isinstance(constraint, StringLength) else StringLength()
    length = rng.randint(lengths.min_length, lengths.max_length)
    return "".join(rng.choices(string.ascii_letters, k=length))


class DataGenerator(ABC):
    """Produces raw records for a specification, before post-processing."""

    @abstractmethod
    def generate(
        self, spec: TestDataSpecification, count: int, rng: random.Random
    ) -> list[Record]:
        """Generate ``count`` records.

        Args:
            spec: Validated specification
            count: Number of records, may be a batch of ``spec.record_count``
            rng: Random source, seeded per batch

        Returns:
            Records holding every declared field

        """


class RandomGenerator(DataGenerator):
    """Values drawn uniformly within each field's constraint."""

    def generate(
        self, spec: TestDataSpecification, count: int, rng: random.Random
    ) -> list[Record]:
        """Generate records with random values."""
        return [
            {field.name: random_value(field, rng) for field in spec.fields}
            for _ in range(count)
        ]


class TemplateGenerator(DataGenerator):
    """Cycles through a registered template, filling missing fields randomly."""

    def __init__(self, templates: Mapping[str, list[Record]]) -> None:
        """Initialize with the template registry."""
        self.templates = templates

    def generate(
        self, spec: TestDataSpecification, count: int, rng: random.Random
    ) -> list[Record]:
        """Generate records from the specification's template."""
        template = self.templates[spec.template_id or ""]
        records = []
        for index in range(count):
            base = template[index % len(template)] if template else {}
            records.append(
                {
                    field.name: base[field.name]
                    if field.name in base
                    else random_value(field, rng)
                    for field in spec.fields
                }
            )
        return records


class SyntheticGenerator(DataGenerator):
    """Learns per-field distributions from sample records.

    Numeric fields follow a normal distribution with the sample mean and
    standard deviation, clipped to the field range. Other fields follow the
    observed value frequencies. Fields absent from the samples are random.
    """

    def generate(
        self, spec: TestDataSpecification, count: int, rng: random.Random
    ) -> list[Record]:
        """Generate records following the learned distributions."""
        samplers = {field.name: self._sampler(field, spec) for field in spec.fields}
        return [
            {name: sample(rng) for name, sample in samplers.items()}
            for _ in range(count)
        ]

    def _sampler(
        self, field: FieldSpecification, spec: TestDataSpecification
    ) -> Callable[[random.Random], Any]:
        observed = [s[field.name] for s in spec.samples if field.name in s]
        if not observed:
            return lambda rng: random_value(field, rng)

        numeric = field.type in ("integer", "float") and not isinstance(
            field.constraint, Choices
        )
        if numeric and len(observed) > 1:
            mean = statistics.fmean(observed)
            stdev = statistics.stdev(observed)
            bounds = field.constraint
            low = bounds.minimum if isinstance(bounds, NumericRange) else min(observed)
            high = bounds.maximum if isinstance(bounds, NumericRange) else max(observed)

            def sample_number(rng: random.Random) -> Any:
                value = min(high, max(low, rng.gauss(mean, stdev)))
                if field.type == "integer":
                    return min(math.floor(high), max(math.ceil(low), round(value)))
                return round(value, 4)

            return sample_number

        frequencies = Counter(map(repr, observed))
        values = {repr(v): v for v in observed}
        keys = list(frequencies)
        weights = [frequencies[k] for k in keys]
        return lambda rng: values[rng.choices(keys, weights=weights)[0]]


class PatternGenerator(DataGenerator):
    """Strings following a pattern: ``#`` digit, ``?`` letter, ``*`` either.

    Any other pattern character is copied literally. Fields without a pattern
    are generated randomly.
    """

    def generate(
        self, spec: TestDataSpecification, count: int, rng: random.Random
    ) -> list[Record]:
        """Generate records from the specification's patterns."""
        return [
            {
                field.name: expand_pattern(spec.patterns[field.name], rng)
                if field.name in spec.patterns
                else random_value(field, rng)
                for field in spec.fields
            }
            for _ in range(count)
        ]


def expand_pattern(pattern: str, rng: random.Random) -> str:
    """Expand one pattern into a concrete string."""
    out = []
    for char in pattern:
        if char == "#":
            out.append(rng.choice(string.digits))
        elif char == "?":
            out.append(rng.choice(string.ascii_uppercase))
        elif char == "*":
            out.append(rng.choice(string.ascii_uppercase + string.digits))
        else:
            out.append(char)
    return "".join(out)


FIRST_NAMES = ["Ada", "Grace", "Alan", "Linus", "Barbara", "Ken", "Margaret", "Edsger"]
LAST_NAMES = ["Lovelace", "Hopper", "Turing", "Torvalds", "Liskov", "Thompson"]
CITIES = ["Lisbon", "Montreal", "Nairobi", "Osaka", "Oslo", "Santiago", "Toronto"]
COUNTRIES = ["Canada", "Japan", "Kenya", "Norway", "Portugal", "Chile"]
STREETS = ["Maple", "Oak", "Cedar", "Elm", "Birch", "Willow"]


class RealisticGenerator(DataGenerator):
    """Domain-flavoured values chosen by field name.

    Only unconstrained string fields, and integer fields named like an age,
    get realistic values; everything else is random.
    """

    def generate(
        self, spec: TestDataSpecification, count: int, rng: random.Random
    ) -> list[Record]:
        """Generate records with realistic looking values."""
        return [
            {field.name: self._value(field, rng) for field in spec.fields}
            for _ in range(count)
        ]

    def _value(  # noqa: C901
        self, field: FieldSpecification, rng: random.Random
    ) -> Any:
        name = field.name.lower()
        if field.constraint is not None:
            return random_value(field, rng)
        if field.type == "integer" and "age" in name:
            return rng.randint(18, 90)
        if field.type != "string":
            return random_value(field, rng)

        first, last = rng.choice(FIRST_NAMES), rng.choice(LAST_NAMES)
        if "email" in name:
            return f"{first}.{last}{rng.randint(1, 999)}@example.com".lower()
        if "phone" in name:
            return expand_pattern("+1-555-###-####", rng)
        if "city" in name:
            return rng.choice(CITIES)
        if "country" in name:
            return rng.choice(COUNTRIES)
        if "street" in name or "address" in name:
            return f"{rng.randint(1, 9999)} {rng.choice(STREETS)} St"
        if "zip" in name or "postal" in name:
            return expand_pattern("#####", rng)
        if "first" in name:
            return first
        if "last" in name or "surname" in name:
            return last
        if "name" in name:
            return f"{first} {last}"
        return random_value(field, rng)


def generator_for(
    strategy: GenerationStrategy, templates: Mapping[str, list[Record]]
) -> DataGenerator:
    """Generator implementing a strategy."""
    if strategy == "template":
        return TemplateGenerator(templates)
    if strategy == "synthetic":
        return SyntheticGenerator()
    if strategy == "pattern":
        return PatternGenerator()
    if strategy == "realistic":
        return RealisticGenerator()
    return RandomGenerator()
