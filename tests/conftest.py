import pytest

from tidegraph import Runtime


@pytest.fixture(autouse=True)
def runtime():
    """Every test gets its own graph so nothing leaks between tests."""
    rt = Runtime(name="test")
    with rt.activate():
        yield rt
