"""Tests for batch item processing."""

import asyncio
import logging
import time

import pytest

from n8n_code_utils.batch import (
    BatchOptions,
    bind_accessors,
    process_batch,
    process_batch_sync,
    process_items_parallel,
    with_node_data,
)
from n8n_code_utils.exceptions import ValidationError
from n8n_code_utils.results import Failure, Success, WorkItem
from n8n_code_utils.retry import RetryPolicy

QUIET = BatchOptions(log_errors=False)


def n8n_items(*ids):
    return [{"json": {"id": i, "title": f"Episode {i}"}} for i in ids]


def fail_on_two(item, payload, index):
    if payload["id"] == 2:
        raise ValueError("Missing field 'guid'")
    return {"id": payload["id"], "processed": True}


class TestProcessBatch:
    """Test sequential batch processing."""

    @pytest.mark.asyncio
    async def test_end_to_end_with_one_failure(self):
        """Test three items where only the second one fails."""
        result = await process_batch(n8n_items(1, 2, 3), fail_on_two, options=QUIET)

        assert len(result.results) == 3
        assert isinstance(result.results[0], Success)
        assert isinstance(result.results[1], Failure)
        assert "Missing field" in result.results[1].message
        assert result.results[1].index == 1
        assert result.results[1].error_kind == "processing_error"
        assert result.results[2].payload == {"id": 3, "processed": True}

        stats = result.stats
        assert stats.total == 3
        assert stats.successful == 2
        assert stats.failed == 1
        assert stats.success_rate == pytest.approx(2 / 3)
        assert stats.failure_rate == pytest.approx(1 / 3)
        assert stats.error_breakdown == {"processing_error": 1}

    @pytest.mark.asyncio
    async def test_payload_keyed_items(self):
        """Test items shaped as {"payload": ..., "index": ...} mappings."""
        items = [{"payload": {"id": i, "title": f"Episode {i}"}, "index": i - 1} for i in (1, 2, 3)]

        result = await process_batch(items, fail_on_two, options=QUIET)

        assert result.stats.successful == 2
        assert result.stats.failed == 1
        assert result.results[0].payload == {"id": 1, "processed": True}
        assert result.results[1].message == "Missing field 'guid'"
        assert result.results[1].captured_context == {"id": 2, "title": "Episode 2"}
        assert result.results[1].to_n8n()["json"]["id"] == 2

    @pytest.mark.asyncio
    async def test_order_and_pairing_preserved(self):
        """Test that every result keeps the index of its input item."""
        items = n8n_items(*range(10))
        result = await process_batch(items, lambda item, payload, index: payload["id"] * 2)

        assert [r.index for r in result.results] == list(range(10))
        assert [r.payload for r in result.results] == [i * 2 for i in range(10)]
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_failure_captures_context(self):
        """Test that failures keep identifying fields of the original payload."""
        items = [{"json": {"id": 2, "title": "T", "body": "long text"}}]
        result = await process_batch(items, fail_on_two, options=QUIET)

        failure = result.results[0]
        assert failure.captured_context == {"id": 2, "title": "T"}
        assert failure.payload["errorKind"] == "processing_error"
        assert failure.payload["capturedContext"] == {"id": 2, "title": "T"}

        record = result.errors[0]
        assert record.index == 0
        assert record.error["type"] == "processing_error"
        assert "ValueError" in record.error["stack"]
        assert record.original_item == {"json": {"id": 2, "title": "T", "body": "long text"}}

    @pytest.mark.asyncio
    async def test_every_item_fails(self):
        """Test that a run where everything fails still returns normally."""
        def always_fail(item, payload, index):
            raise RuntimeError("boom")

        result = await process_batch(n8n_items(1, 2, 3), always_fail, options=QUIET)

        assert len(result.results) == 3
        assert len(result.errors) == 3
        assert result.stats.successful == 0
        assert result.stats.failure_rate == 1.0
        assert len(result.stats.sample_errors) == 3

    @pytest.mark.asyncio
    async def test_empty_items(self):
        """Test that an empty batch has zero rates and no breakdown."""
        result = await process_batch([], fail_on_two)

        assert result.results == []
        assert result.stats.total == 0
        assert result.stats.success_rate == 0.0
        assert result.stats.failure_rate == 0.0
        assert result.stats.error_breakdown is None
        assert result.stats.sample_errors is None

    @pytest.mark.asyncio
    async def test_stop_on_error(self):
        """Test that stop_on_error truncates results after the failing item."""
        calls = []

        def transform(item, payload, index):
            calls.append(index)
            if index == 2:
                raise ValueError("stop here")
            return index

        options = BatchOptions(log_errors=False, stop_on_error=True)
        result = await process_batch(n8n_items(*range(5)), transform, options=options)

        assert len(result.results) == 3
        assert [r.index for r in result.results] == [0, 1, 2]
        assert len(result.errors) == 1
        assert calls == [0, 1, 2]
        assert result.stats.total == 3

    @pytest.mark.asyncio
    async def test_async_transform(self):
        """Test that awaitable transform results are awaited."""
        async def transform(item, payload, index):
            await asyncio.sleep(0)
            return {"doubled": payload["id"] * 2}

        result = await process_batch(n8n_items(1, 2), transform)

        assert [r.payload for r in result.results] == [{"doubled": 2}, {"doubled": 4}]

    @pytest.mark.asyncio
    async def test_async_transform_failure(self):
        """Test that exceptions from async transforms become failures."""
        async def transform(item, payload, index):
            raise ValueError("async failure")

        result = await process_batch(n8n_items(1), transform, options=QUIET)

        assert isinstance(result.results[0], Failure)
        assert result.results[0].message == "async failure"

    @pytest.mark.asyncio
    async def test_work_item_payload(self):
        """Test that WorkItem payloads are passed to the transform."""
        items = [WorkItem({"id": 1}, 0), WorkItem({"id": 2}, 1)]
        result = await process_batch(items, lambda item, payload, index: payload["id"])

        assert [r.payload for r in result.results] == [1, 2]

    @pytest.mark.asyncio
    async def test_settle_delay(self):
        """Test that the settle delay is awaited once before processing."""
        options = BatchOptions(settle_delay=0.02)
        started = time.monotonic()
        await process_batch(n8n_items(1, 2, 3), lambda item, payload, index: index, options=options)
        elapsed = time.monotonic() - started

        assert elapsed >= 0.01


class TestAccessors:
    """Test node data injection."""

    @pytest.mark.asyncio
    async def test_accessor_values_are_positional(self):
        """Test that accessor data follows accessor registration order."""
        seen = []

        def transform(item, payload, index, sources, settings):
            seen.append((index, sources, settings))
            return payload["id"]

        accessors = {
            "Ingestion Sources": lambda i: {"knowledgeSourceId": 100 + i},
            "User Settings": lambda i: {"locale": "en"},
        }
        await process_batch(n8n_items(1, 2), transform, accessors)

        assert seen == [
            (0, {"knowledgeSourceId": 100}, {"locale": "en"}),
            (1, {"knowledgeSourceId": 101}, {"locale": "en"}),
        ]

    @pytest.mark.asyncio
    async def test_failing_accessor_gives_none(self):
        """Test that an accessor that always raises still lets the transform run."""
        seen = []

        def broken(index):
            raise KeyError("Referenced node doesn't exist")

        def transform(item, payload, index, data):
            seen.append(data)
            return "ok"

        result = await process_batch(n8n_items(1, 2), transform, {"Missing Node": broken}, QUIET)

        assert seen == [None, None]
        assert result.stats.successful == 2
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_failing_accessor_is_logged(self, caplog):
        """Test that accessor failures are logged as warnings."""
        caplog.set_level(logging.WARNING, logger="n8n_code_utils")

        def broken(index):
            raise KeyError("gone")

        await process_batch(n8n_items(1), lambda *args: None, {"Source": broken})

        assert any("Source" in r.getMessage() and r.levelno == logging.WARNING for r in caplog.records)

    @pytest.mark.asyncio
    async def test_async_accessor(self):
        """Test that awaitable accessor results are awaited."""
        async def fetch(index):
            await asyncio.sleep(0)
            return {"n": index}

        result = await process_batch(
            n8n_items(1, 2),
            lambda item, payload, index, data: data["n"],
            {"Source": fetch},
        )

        assert [r.payload for r in result.results] == [0, 1]

    @pytest.mark.asyncio
    async def test_accessor_retry(self):
        """Test that accessor_retry retries empty results."""
        calls = []

        def flaky(index):
            calls.append(index)
            return {"knowledgeSourceId": 7} if len(calls) >= 3 else None

        options = BatchOptions(accessor_retry=RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0))
        result = await process_batch(
            n8n_items(1),
            lambda item, payload, index, source: source,
            {"Ingestion Sources": flaky},
            options,
        )

        assert calls == [0, 0, 0]
        assert result.results[0].payload == {"knowledgeSourceId": 7}

    @pytest.mark.asyncio
    async def test_injected_logger(self):
        """Test that diagnostics go to the injected logger."""
        records = []

        class ListHandler(logging.Handler):
            def emit(self, record):
                records.append(record)

        custom = logging.getLogger("tests.batch.injected")
        custom.addHandler(ListHandler())
        custom.propagate = False

        await process_batch(n8n_items(2), fail_on_two, options=BatchOptions(logger=custom))

        assert len(records) == 1
        assert "Processing failed for item 0" in records[0].getMessage()

    @pytest.mark.asyncio
    async def test_log_errors_disabled(self, caplog):
        """Test that log_errors=False suppresses failure logging."""
        caplog.set_level(logging.DEBUG, logger="n8n_code_utils")

        await process_batch(n8n_items(2), fail_on_two, options=QUIET)

        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    @pytest.mark.asyncio
    async def test_log_errors_disabled_with_retry(self, caplog):
        """Test that exhausted accessor retries stay quiet when log_errors=False."""
        caplog.set_level(logging.DEBUG, logger="n8n_code_utils")
        options = BatchOptions(
            log_errors=False,
            accessor_retry=RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0),
        )

        def broken(index):
            raise KeyError("gone")

        result = await process_batch(n8n_items(1), lambda *args: "ok", {"Src": broken}, options)

        assert result.stats.successful == 1
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    @pytest.mark.asyncio
    async def test_retry_exhaustion_logged(self, caplog):
        """Test that exhausted accessor retries warn when logging is on."""
        caplog.set_level(logging.WARNING, logger="n8n_code_utils")
        options = BatchOptions(accessor_retry=RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0))

        def broken(index):
            raise KeyError("gone")

        await process_batch(n8n_items(1), lambda *args: "ok", {"Src": broken}, options)

        assert any("'Src' unavailable for item 0" in r.getMessage() for r in caplog.records)


class TestValidation:
    """Test argument validation at the call boundary."""

    @pytest.mark.asyncio
    async def test_items_must_be_sequence(self):
        """Test that strings and generators are rejected."""
        with pytest.raises(ValidationError, match="Items must be a list"):
            await process_batch("abc", fail_on_two)
        with pytest.raises(ValidationError, match="Items must be a list"):
            await process_batch((i for i in range(3)), fail_on_two)

    @pytest.mark.asyncio
    async def test_transform_must_be_callable(self):
        """Test that a non-callable transform is rejected."""
        with pytest.raises(ValidationError, match="Transform must be callable"):
            await process_batch(n8n_items(1), "not a function")

    @pytest.mark.asyncio
    async def test_accessors_must_be_mapping(self):
        """Test that accessors given as a list are rejected."""
        with pytest.raises(ValidationError, match="mapping"):
            await process_batch(n8n_items(1), fail_on_two, ["Source"])

    @pytest.mark.asyncio
    async def test_accessor_must_be_callable(self):
        """Test that a non-callable accessor is rejected before processing."""
        calls = []

        def transform(*args):
            calls.append(args)

        with pytest.raises(ValidationError, match="must be callable"):
            await process_batch(n8n_items(1), transform, {"Source": {"id": 1}})
        assert calls == []


class TestBindAccessors:
    """Test accessor binding."""

    def test_param_names(self):
        """Test that names are normalized to camelCase parameter names."""
        bindings = bind_accessors({
            "Ingestion Sources": lambda i: None,
            "API_Config-v2": lambda i: None,
        })

        assert [b.param_name for b in bindings] == ["ingestionSources", "apiConfigV2"]
        assert [b.name for b in bindings] == ["Ingestion Sources", "API_Config-v2"]

    def test_none_means_no_accessors(self):
        """Test that None gives an empty binding list."""
        assert bind_accessors(None) == []

    def test_colliding_names(self):
        """Test that names normalizing to the same token are rejected."""
        with pytest.raises(ValidationError, match="both map to 'userSettings'"):
            bind_accessors({"User Settings": lambda i: None, "user_settings": lambda i: None})

    def test_name_without_word_characters(self):
        """Test that a punctuation-only name is rejected."""
        with pytest.raises(ValidationError, match="no usable characters"):
            bind_accessors({"---": lambda i: None})


class TestProcessItemsParallel:
    """Test bounded concurrent processing."""

    @pytest.mark.asyncio
    async def test_order_preserved(self):
        """Test that results stay in input order when items finish out of order."""
        async def transform(item, payload, index):
            await asyncio.sleep(0.01 * (5 - index))
            return index

        result = await process_items_parallel(n8n_items(*range(5)), transform, concurrency=3)

        assert [r.index for r in result.results] == [0, 1, 2, 3, 4]
        assert [r.payload for r in result.results] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_concurrency_limit(self):
        """Test that no more than `concurrency` items run at once."""
        running = 0
        peak = 0

        async def transform(item, payload, index):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.005)
            running -= 1
            return index

        await process_items_parallel(n8n_items(*range(8)), transform, concurrency=2)

        assert peak <= 2

    @pytest.mark.asyncio
    async def test_failures_paired(self):
        """Test that failures keep their index under concurrency."""
        result = await process_items_parallel(n8n_items(1, 2, 3), fail_on_two, options=QUIET)

        assert isinstance(result.results[1], Failure)
        assert result.errors[0].index == 1
        assert result.stats.failed == 1

    @pytest.mark.asyncio
    async def test_invalid_concurrency(self):
        """Test that concurrency below 1 is rejected."""
        with pytest.raises(ValidationError, match="Concurrency"):
            await process_items_parallel(n8n_items(1), fail_on_two, concurrency=0)

    @pytest.mark.asyncio
    async def test_stop_on_error_rejected(self):
        """Test that stop_on_error is rejected for parallel runs."""
        with pytest.raises(ValidationError, match="stop_on_error"):
            await process_items_parallel(
                n8n_items(1), fail_on_two, options=BatchOptions(stop_on_error=True)
            )


class TestHelpers:
    """Test sync wrapper, keyword adapter and n8n output."""

    def test_process_batch_sync(self):
        """Test running a batch from synchronous code."""
        result = process_batch_sync(n8n_items(1, 2, 3), fail_on_two, options=QUIET)

        assert result.stats.total == 3
        assert result.stats.failed == 1

    @pytest.mark.asyncio
    async def test_with_node_data(self):
        """Test passing accessor values as keyword arguments."""
        accessors = {"Ingestion Sources": lambda i: {"id": i}}
        names = [b.param_name for b in bind_accessors(accessors)]

        def transform(item, payload, index, ingestionSources=None):
            return ingestionSources

        result = await process_batch(n8n_items(1), with_node_data(transform, names), accessors)

        assert result.results[0].payload == {"id": 0}

    @pytest.mark.asyncio
    async def test_to_n8n_output(self):
        """Test the n8n output shape of a mixed run."""
        result = await process_batch(n8n_items(1, 2), fail_on_two, options=QUIET)
        output = result.to_n8n()

        assert output["results"][0] == {"json": {"id": 1, "processed": True}, "pairedItem": 0}
        failed = output["results"][1]
        assert failed["pairedItem"] == 1
        assert failed["json"]["id"] == 2
        assert failed["json"]["_error"]["type"] == "processing_error"
        assert failed["json"]["_error"]["itemIndex"] == 1
        assert output["errors"][0]["itemIndex"] == 1
        assert output["stats"]["successRate"] == 0.5
        assert output["stats"]["errorBreakdown"] == {"processing_error": 1}
