"""Unit tests for logging setup and tracing decorators."""

import logging
import os
from unittest.mock import MagicMock, patch

import pytest

from canteen_menu_sync.observability import configure_logging, traced
from canteen_menu_sync.observability.config import NOISY_LOGGERS, instrument_libraries


@pytest.fixture
def restore_root_logger():
    """Restore root logger handlers and levels after a logging test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    noisy_levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, noisy_level in noisy_levels.items():
        logging.getLogger(name).setLevel(noisy_level)


@pytest.mark.unit
class TestConfigureLogging:
    """Test suite for configure_logging."""

    @patch.dict(os.environ, {}, clear=True)
    def test_installs_single_json_handler(self, restore_root_logger) -> None:
        """Test that the root logger ends up with one JSON handler at the given level."""
        configure_logging("WARNING")
        configure_logging("WARNING")

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert type(root.handlers[0].formatter).__name__ == "JsonFormatter"

    @patch.dict(os.environ, {"LOG_LEVEL": "debug"}, clear=True)
    def test_environment_overrides_argument(self, restore_root_logger) -> None:
        """Test that LOG_LEVEL wins and DEBUG leaves library loggers alone."""
        logging.getLogger("botocore").setLevel(logging.NOTSET)

        configure_logging("ERROR")

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("botocore").level == logging.NOTSET

    @patch.dict(os.environ, {}, clear=True)
    def test_quiets_library_loggers(self, restore_root_logger) -> None:
        """Test that chatty library loggers are raised to WARNING."""
        configure_logging("INFO")

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING


@pytest.mark.unit
class TestInstrumentLibraries:
    """Test suite for instrument_libraries."""

    @patch("canteen_menu_sync.observability.config.BotocoreInstrumentor")
    @patch("canteen_menu_sync.observability.config.HTTPXClientInstrumentor")
    def test_skips_already_instrumented(self, mock_httpx: MagicMock, mock_botocore: MagicMock) -> None:
        """Test that an instrumentor already active is not instrumented again."""
        mock_httpx.return_value.is_instrumented_by_opentelemetry = True
        mock_botocore.return_value.is_instrumented_by_opentelemetry = False

        instrument_libraries()

        mock_httpx.return_value.instrument.assert_not_called()
        mock_botocore.return_value.instrument.assert_called_once_with()


@pytest.mark.unit
class TestTracedDecorator:
    """Test suite for the traced decorator."""

    @pytest.mark.asyncio
    async def test_async_function_result_passes_through(self) -> None:
        """Test that a traced coroutine returns its result unchanged."""

        @traced("test.async")
        async def double(value: int) -> int:
            return value * 2

        assert await double(21) == 42
        assert double.__name__ == "double"

    @pytest.mark.asyncio
    async def test_async_function_error_propagates(self) -> None:
        """Test that exceptions inside a traced coroutine are re-raised."""

        @traced()
        async def fail() -> None:
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await fail()

    def test_sync_function(self) -> None:
        """Test that plain functions are traced without becoming coroutines."""

        @traced("test.sync")
        def add(a: int, b: int) -> int:
            return a + b

        assert add(2, 3) == 5

    def test_sync_function_error_propagates(self) -> None:
        """Test that exceptions inside a traced function are re-raised."""

        @traced("test.sync_fail")
        def fail() -> None:
            raise KeyError("missing")

        with pytest.raises(KeyError):
            fail()
