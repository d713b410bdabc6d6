"""Unit tests for RetryStrategy."""

import sqlite3

import pytest

from trackback.errors import ItemNotFound, ItemStoreUnavailable
from trackback.services.retry_strategy import (
    NonRetryableError,
    RetryableError,
    RetryConfig,
    RetryStrategy,
)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def strategy(sleeps):
    return RetryStrategy(
        RetryConfig(max_retries=3, base_delay_seconds=0.5, max_delay_seconds=10, jitter=False),
        sleep=sleeps.append,
    )


class TestRetryConfig:
    """Test RetryConfig initialization."""

    def test_default_config(self):
        """Test default configuration values."""
        config = RetryConfig()

        assert config.max_retries == 3
        assert config.base_delay == 0.5
        assert config.max_delay == 10.0
        assert config.exponential_base == 2
        assert config.jitter is True


class TestShouldRetry:
    """Test error classification."""

    def test_store_unavailable_is_retryable(self, strategy):
        """Test transient store errors are retried."""
        assert strategy.should_retry(ItemStoreUnavailable("database is locked"), 0)

    def test_item_not_found_is_not_retryable(self, strategy):
        """Test a missing item is final."""
        assert not strategy.should_retry(ItemNotFound("i1"), 0)

    def test_marker_classes(self, strategy):
        """Test the marker base classes decide first."""
        assert strategy.should_retry(RetryableError("anything"), 0)
        assert not strategy.should_retry(NonRetryableError("database is locked"), 0)

    def test_sqlite_message_patterns(self, strategy):
        """Test raw SQLite errors are classified by message."""
        assert strategy.should_retry(sqlite3.OperationalError("database is locked"), 0)
        assert not strategy.should_retry(sqlite3.OperationalError("no such table: items"), 0)

    def test_unknown_errors_not_retried(self, strategy):
        """Test unrecognized errors propagate immediately."""
        assert not strategy.should_retry(KeyError("x"), 0)

    def test_max_retries(self, strategy):
        """Test the retry budget is respected."""
        assert not strategy.should_retry(ItemStoreUnavailable("locked"), 3)


class TestBackoff:
    """Test delay calculation."""

    def test_exponential_delay(self, strategy):
        """Test delays double each attempt."""
        assert [strategy.get_delay(n) for n in range(3)] == [0.5, 1.0, 2.0]

    def test_delay_capped(self, strategy):
        """Test delays never exceed the maximum."""
        assert strategy.get_delay(10) == 10

    def test_jitter_within_20_percent(self):
        """Test jitter stays within ±20%."""
        strategy = RetryStrategy(RetryConfig(base_delay_seconds=1.0, jitter=True))

        for _ in range(50):
            assert 0.8 <= strategy.get_delay(0) <= 1.2


class TestRetrySync:
    """Test retry_sync."""

    def test_succeeds_after_transient_failures(self, strategy, sleeps):
        """Test transient failures are retried until success."""
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ItemStoreUnavailable("database is locked")
            return "ok"

        assert strategy.retry_sync(flaky) == "ok"
        assert len(attempts) == 3
        assert sleeps == [0.5, 1.0]

    def test_gives_up_after_max_retries(self, strategy, sleeps):
        """Test the last error is raised once retries are exhausted."""
        def always_down():
            raise ItemStoreUnavailable("database is locked")

        with pytest.raises(ItemStoreUnavailable):
            strategy.retry_sync(always_down)
        assert len(sleeps) == 3

    def test_non_retryable_raised_immediately(self, strategy, sleeps):
        """Test non-retryable errors skip the backoff."""
        def missing():
            raise ItemNotFound("i1")

        with pytest.raises(ItemNotFound):
            strategy.retry_sync(missing)
        assert sleeps == []

    def test_passes_arguments(self, strategy):
        """Test positional and keyword arguments reach the function."""
        assert strategy.retry_sync(lambda a, b=0: a + b, 2, b=3) == 5
