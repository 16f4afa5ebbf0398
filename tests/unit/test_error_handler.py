"""
ERROR HANDLER TESTS

Failures of side effects are logged and replaced by a default value.
"""
import pytest

from error_handler import ErrorHandler, handle_errors

pytestmark = pytest.mark.asyncio


class TestHandleErrors:

    async def test_failure_returns_default(self):
        @handle_errors(default="fallback", context={"job": "test"})
        async def flaky():
            raise RuntimeError("down")

        assert await flaky() == "fallback"

    async def test_success_passes_result_through(self):
        @handle_errors(default=None)
        async def fine(value):
            return value * 2

        assert await fine(21) == 42
        assert fine.__name__ == "fine"

    async def test_plain_function_rejected(self):
        with pytest.raises(TypeError):
            @handle_errors(default=None)
            def not_a_coroutine():
                return 1


class TestSafeExecute:

    async def test_failure_returns_default(self):
        async def boom():
            raise ValueError("bad")

        assert await ErrorHandler.safe_execute_async(boom(), default=False, context={"x": 1}) is False
