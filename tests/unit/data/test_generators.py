"""Tests for record generation strategies."""

import random
import re
from datetime import date

from ciengine.test_engine.models.test_data import (
    FieldSpecification,
    TestDataSpecification,
)
from ciengine.test_engine.test_data.generators import (
    PatternGenerator,
    RandomGenerator,
    RealisticGenerator,
    SyntheticGenerator,
    TemplateGenerator,
    expand_pattern,
    generator_for,
    random_value,
)


def field(**data) -> FieldSpecification:
    """Create a field specification."""
    return FieldSpecification.model_validate(data)


def test_random_value_respects_constraints() -> None:
    """random_value stays within each constraint."""
    rng = random.Random(7)
    integer = field(
        name="n",
        type="integer",
        constraint={"kind": "numeric", "minimum": 3, "maximum": 5},
    )
    text = field(
        name="s",
        type="string",
        constraint={"kind": "length", "min_length": 2, "max_length": 4},
    )
    day = field(
        name="d",
        type="date",
        constraint={"kind": "date", "start": "2024-02-01", "end": "2024-02-10"},
    )
    choice = field(
        name="c", type="choice", constraint={"kind": "choices", "values": ["x", "y"]}
    )

    for _ in range(50):
        assert 3 <= random_value(integer, rng) <= 5
        assert 2 <= len(random_value(text, rng)) <= 4
        drawn = date.fromisoformat(random_value(day, rng))
        assert date(2024, 2, 1) <= drawn <= date(2024, 2, 10)
        assert random_value(choice, rng) in ("x", "y")


def test_random_value_defaults() -> None:
    """Unconstrained fields use the default ranges."""
    rng = random.Random(1)

    assert 0 <= random_value(field(name="n", type="integer"), rng) <= 1000
    assert 0.0 <= random_value(field(name="f", type="float"), rng) <= 1.0
    assert isinstance(random_value(field(name="b", type="boolean"), rng), bool)
    assert 1 <= len(random_value(field(name="s"), rng)) <= 16


def test_random_generator_is_deterministic_with_seed() -> None:
    """The same seed produces the same records."""
    spec = TestDataSpecification(
        id="s", record_count=5, fields=[field(name="a"), field(name="b", type="float")]
    )

    first = RandomGenerator().generate(spec, 5, random.Random(42))
    second = RandomGenerator().generate(spec, 5, random.Random(42))

    assert first == second
    assert len(first) == 5
    assert set(first[0]) == {"a", "b"}


def test_template_generator_cycles_and_fills() -> None:
    """Template records repeat in order and missing fields are generated."""
    spec = TestDataSpecification(
        id="s",
        record_count=3,
        strategy="template",
        template_id="people",
        fields=[field(name="name"), field(name="age", type="integer")],
    )
    generator = TemplateGenerator({"people": [{"name": "Ada"}, {"name": "Alan"}]})

    records = generator.generate(spec, 3, random.Random(0))

    assert [r["name"] for r in records] == ["Ada", "Alan", "Ada"]
    assert all(isinstance(r["age"], int) for r in records)


def test_synthetic_generator_follows_samples() -> None:
    """Synthetic values stay within the observed numeric range and categories."""
    spec = TestDataSpecification(
        id="s",
        record_count=200,
        strategy="synthetic",
        fields=[
            field(name="score", type="integer"),
            field(name="plan"),
            field(name="unseen", type="boolean"),
        ],
        samples=[
            {"score": 10, "plan": "free"},
            {"score": 20, "plan": "free"},
            {"score": 30, "plan": "pro"},
        ],
    )

    records = SyntheticGenerator().generate(spec, 200, random.Random(3))

    assert all(10 <= r["score"] <= 30 for r in records)
    assert {r["plan"] for r in records} <= {"free", "pro"}
    assert all(isinstance(r["unseen"], bool) for r in records)
    plans = [r["plan"] for r in records]
    assert plans.count("free") > plans.count("pro")


def test_expand_pattern() -> None:
    """# is a digit, ? an upper case letter, * either, the rest literal."""
    value = expand_pattern("AB-##-??-**", random.Random(5))

    assert re.fullmatch(r"AB-\d{2}-[A-Z]{2}-[A-Z0-9]{2}", value)


def test_pattern_generator() -> None:
    """Fields with a pattern follow it, others are random."""
    spec = TestDataSpecification(
        id="s",
        record_count=4,
        strategy="pattern",
        fields=[field(name="sku"), field(name="count", type="integer")],
        patterns={"sku": "SKU-####"},
    )

    records = PatternGenerator().generate(spec, 4, random.Random(9))

    assert all(re.fullmatch(r"SKU-\d{4}", r["sku"]) for r in records)
    assert all(isinstance(r["count"], int) for r in records)


def test_realistic_generator_by_field_name() -> None:
    """Realistic values are chosen from field names."""
    spec = TestDataSpecification(
        id="s",
        record_count=10,
        strategy="realistic",
        fields=[
            field(name="email"),
            field(name="phone"),
            field(name="zip_code"),
            field(name="age", type="integer"),
            field(
                name="limited",
                constraint={"kind": "length", "min_length": 3, "max_length": 4},
            ),
        ],
    )

    records = RealisticGenerator().generate(spec, 10, random.Random(11))

    for record in records:
        assert record["email"].endswith("@example.com")
        assert re.fullmatch(r"\+1-555-\d{3}-\d{4}", record["phone"])
        assert re.fullmatch(r"\d{5}", record["zip_code"])
        assert 18 <= record["age"] <= 90
        assert 3 <= len(record["limited"]) <= 4


def test_generator_for_strategies() -> None:
    """generator_for maps each strategy to its generator."""
    assert isinstance(generator_for("random", {}), RandomGenerator)
    assert isinstance(generator_for("template", {}), TemplateGenerator)
    assert isinstance(generator_for("synthetic", {}), SyntheticGenerator)
    assert isinstance(generator_for("pattern", {}), PatternGenerator)
    assert isinstance(generator_for("realistic", {}), RealisticGenerator)
