"""Generation, versioning and lifecycle of test data sets."""

import asyncio
import logging
import math
import random
import sys
import time
from datetime import datetime

import psutil

from ciengine.test_engine.errors import TestDataSpecificationError
from ciengine.test_engine.models.test_data import (
    DataVersion,
    LifecycleCriteria,
    LifecycleReport,
    PerformanceDataStrategy,
    PerformanceTestDataSet,
    TestDataSet,
    TestDataSpecification,
    ValidationResult,
)
from ciengine.test_engine.models.test_result import utcnow
from ciengine.test_engine.test_data.generators import Record, generator_for
from ciengine.test_engine.test_data.postprocess import (
    apply_privacy,
    apply_relationships,
    enforce_unique,
)
from ciengine.test_engine.test_data.validation import (
    validate_records,
    validate_specification,
)

logger = logging.getLogger(__name__)

MEMORY_FRACTION = 0.25
MAX_BATCH_SIZE = 10_000
MAX_CONCURRENCY = 8
RECORD_OVERHEAD = 64

FIELD_SIZES = {
    "integer": 28,
    "float": 24,
    "boolean": 28,
    "date": 59,
    "choice": 64,
}


def estimate_record_size(spec: TestDataSpecification) -> int:
    """Rough in-memory size of one record in bytes."""
    size = RECORD_OVERHEAD
    for field in spec.fields:
        if field.type == "string":
            max_length = getattr(field.constraint, "max_length", 16)
            size += 49 + max_length
        else:
            size += FIELD_SIZES[field.type]
        size += 8
    return size


def plan_performance_strategy(
    spec: TestDataSpecification,
    available_memory: int,
    cpu_count: int | None = None,
) -> PerformanceDataStrategy:
    """Batch size, batch count and concurrency fitting the memory budget.

    Args:
        spec: Validated specification
        available_memory: Bytes of memory available to the process
        cpu_count: Logical CPUs, detected with psutil when None

    Returns:
        Batching plan, batches never exceed the per-worker memory share

    """
    record_size = estimate_record_size(spec)
    budget = max(1, int(available_memory * MEMORY_FRACTION))
    workers = max(1, min(MAX_CONCURRENCY, cpu_count or psutil.cpu_count() or 1))

    per_worker = budget // workers
    batch_size = max(
        1, min(MAX_BATCH_SIZE, spec.record_count, per_worker // record_size)
    )
    batch_count = math.ceil(spec.record_count / batch_size)

    needed = record_size * spec.record_count
    if needed > budget:
        logger.warning(
            f"Data set {spec.id} needs about {needed} bytes, "
            f"more than the {budget} byte budget"
        )

    return PerformanceDataStrategy(
        batch_size=batch_size,
        batch_count=batch_count,
        concurrency=min(workers, batch_count),
        estimated_record_size=record_size,
        memory_budget=budget,
    )


class TestDataManager:
    """Owns generated data sets, their versions and templates.

    Data sets are never modified in place: updates append a new version to
    the history and lifecycle passes replace the archived entry.
    """

    __test__ = False

    def __init__(self) -> None:
        """Initialize an empty manager."""
        self._templates: dict[str, list[Record]] = {}
        self._specifications: dict[str, TestDataSpecification] = {}
        self._data_sets: dict[str, TestDataSet] = {}
        self._history: dict[str, list[TestDataSet]] = {}
        self._latest_by_spec: dict[str, str] = {}
        self._lock = asyncio.Lock()

    def register_template(self, template_id: str, records: list[Record]) -> None:
        """Register records the template strategy copies from."""
        self._templates[template_id] = [dict(r) for r in records]

    def get(self, data_set_id: str) -> TestDataSet | None:
        """Current version of a data set, archived sets included."""
        return self._data_sets.get(data_set_id)

    def data_sets(self, include_archived: bool = False) -> list[TestDataSet]:
        """Current data sets, active only unless asked otherwise."""
        return [
            ds
            for ds in self._data_sets.values()
            if include_archived or ds.archived_at is None
        ]

    def history(self, data_set_id: str) -> list[TestDataSet]:
        """Every version of a data set, oldest first."""
        return list(self._history.get(data_set_id, []))

    async def generate_test_data(self, spec: TestDataSpecification) -> TestDataSet:
        """Validate a specification and materialise its data set.

        Args:
            spec: Specification to generate

        Returns:
            Validated data set, the cached one when reuse is allowed

        Raises:
            TestDataSpecificationError: If the specification or the generated
                records are invalid

        """
        validate_specification(spec, self._templates)

        async with self._lock:
            cached = self._reusable(spec)
            if cached is not None:
                logger.info(f"Reusing data set {cached.id} for {spec.id}")
                return cached

            start = time.monotonic()
            rng = random.Random(spec.seed)
            generator = generator_for(spec.strategy, self._templates)
            records = await asyncio.to_thread(
                generator.generate, spec, spec.record_count, rng
            )
            data_set = TestDataSet(
                specification_id=spec.id,
                records=records,
                validation=self._post_process(spec, records, rng),
                category=spec.category,
                metadata=self._metadata(spec, start),
            )
            self._store(spec, data_set)

        logger.info(
            f"Generated data set {data_set.id} for {spec.id}: "
            f"{data_set.record_count} records ({spec.strategy})"
        )
        return data_set

    async def generate_performance_test_data(
        self,
        spec: TestDataSpecification,
        available_memory: int | None = None,
        optimize_memory: bool = True,
        index_field: str | None = None,
    ) -> PerformanceTestDataSet:
        """Generate a large data set in parallel batches.

        Args:
            spec: Specification to generate
            available_memory: Bytes available, read from psutil when None
            optimize_memory: Intern repeated strings
            index_field: Sort by this field and index its values

        Returns:
            Combined data set with its batching plan and index

        Raises:
            TestDataSpecificationError: If the specification or the generated
                records are invalid

        """
        validate_specification(spec, self._templates)
        if index_field is not None and index_field not in {f.name for f in spec.fields}:
            raise TestDataSpecificationError(
                spec.id, [f"index field '{index_field}' is not declared"]
            )

        if available_memory is None:
            available_memory = psutil.virtual_memory().available
        strategy = plan_performance_strategy(spec, available_memory)
        logger.info(
            f"Generating {spec.record_count} records for {spec.id} in "
            f"{strategy.batch_count} batches of {strategy.batch_size} "
            f"(concurrency {strategy.concurrency})"
        )

        start = time.monotonic()
        generator = generator_for(spec.strategy, self._templates)
        semaphore = asyncio.Semaphore(strategy.concurrency)

        async def generate_batch(index: int) -> list[Record]:
            count = min(
                strategy.batch_size, spec.record_count - index * strategy.batch_size
            )
            seed = None if spec.seed is None else spec.seed + index
            async with semaphore:
                return await asyncio.to_thread(
                    generator.generate, spec, count, random.Random(seed)
                )

        batches = await asyncio.gather(
            *(generate_batch(i) for i in range(strategy.batch_count))
        )
        records = [record for batch in batches for record in batch]
        validation = self._post_process(spec, records, random.Random(spec.seed))

        optimizations = []
        if optimize_memory:
            _intern_strings(records)
            optimizations.append("memory")
        index: dict = {}
        if index_field is not None:
            records.sort(key=lambda r: (type(r[index_field]).__name__, r[index_field]))
            index = {record[index_field]: i for i, record in enumerate(records)}
            optimizations.append("access_pattern")

        data_set = PerformanceTestDataSet(
            specification_id=spec.id,
            records=records,
            validation=validation,
            category=spec.category,
            metadata=self._metadata(spec, start),
            strategy=strategy,
            optimizations=optimizations,
            index=index,
        )
        async with self._lock:
            self._store(spec, data_set)
        return data_set

    def update_test_data(
        self,
        data_set_id: str,
        records: list[Record],
        description: str = "update",
    ) -> TestDataSet:
        """Create the next version of a data set with new records.

        Raises:
            KeyError: If the data set is unknown
            TestDataSpecificationError: If the records violate the specification

        """
        current = self._data_sets[data_set_id]
        spec = self._specifications[current.specification_id].model_copy(
            update={"record_count": len(records)}
        )
        validation = validate_records(spec, records)
        if not validation.is_valid:
            raise TestDataSpecificationError(spec.id, validation.errors)

        updated = current.model_copy(
            update={
                "records": [dict(r) for r in records],
                "validation": validation,
                "version": DataVersion(
                    number=current.version.number + 1, description=description
                ),
            }
        )
        self._data_sets[data_set_id] = updated
        self._history[data_set_id].append(updated)
        logger.info(f"Data set {data_set_id} is now version {updated.version.number}")
        return updated

    def manage_lifecycle(
        self, criteria: LifecycleCriteria, now: datetime | None = None
    ) -> LifecycleReport:
        """Archive and purge data sets by age and category.

        Ages are measured from creation, so a pass archives and purges
        everything it is ever going to and a second pass changes nothing.
        """
        now = now or utcnow()
        report = LifecycleReport()

        for data_set in list(self._data_sets.values()):
            if criteria.categories is not None:
                if data_set.category not in criteria.categories:
                    continue
            age = now - data_set.created_at

            if data_set.archived_at is None and age >= criteria.archive_after:
                data_set = data_set.model_copy(update={"archived_at": now})
                self._data_sets[data_set.id] = data_set
                report.archived.append(data_set.id)

            if data_set.archived_at is not None and age >= criteria.purge_after:
                del self._data_sets[data_set.id]
                self._history.pop(data_set.id, None)
                report.purged.append(data_set.id)

        if report.changed:
            logger.info(
                f"Lifecycle: archived {len(report.archived)}, "
                f"purged {len(report.purged)} data sets"
            )
        return report

    def _reusable(self, spec: TestDataSpecification) -> TestDataSet | None:
        if not spec.allow_reuse:
            return None
        data_set_id = self._latest_by_spec.get(spec.id)
        data_set = self._data_sets.get(data_set_id) if data_set_id else None
        if data_set is None or data_set.archived_at is not None:
            return None
        return data_set

    def _post_process(
        self, spec: TestDataSpecification, records: list[Record], rng: random.Random
    ) -> ValidationResult:
        enforce_unique(spec, records, rng)
        apply_relationships(spec, records, rng, self._resolve)
        apply_privacy(spec, records)
        validation = validate_records(spec, records)
        if not validation.is_valid:
            raise TestDataSpecificationError(spec.id, validation.errors)
        return validation

    def _resolve(self, source: str) -> TestDataSet | None:
        """Data set by id, or the latest one generated for a specification id."""
        data_set = self._data_sets.get(source)
        if data_set is None and source in self._latest_by_spec:
            data_set = self._data_sets.get(self._latest_by_spec[source])
        return data_set

    def _store(self, spec: TestDataSpecification, data_set: TestDataSet) -> None:
        self._specifications[spec.id] = spec
        self._data_sets[data_set.id] = data_set
        self._history[data_set.id] = [data_set]
        self._latest_by_spec[spec.id] = data_set.id

    @staticmethod
    def _metadata(spec: TestDataSpecification, start: float) -> dict:
        return {
            "name": spec.name,
            "strategy": spec.strategy,
            "specification_version": spec.version,
            "seed": spec.seed,
            "generation_time": time.monotonic() - start,
        }


def _intern_strings(records: list[Record]) -> None:
    for record in records:
        for key, value in record.items():
            if isinstance(value, str):
                record[key] = sys.intern(value)
