"""Shared pytest fixtures for phraseparse tests."""

from typing import List

import pytest

from combinators import ActionMode, ParseOptions


@pytest.fixture
def diagnostics() -> List[str]:
    """Collects text sent to a builder's diagnostic sink."""
    return []


@pytest.fixture
def output() -> List[str]:
    """Collects text sent to an interpreter's output sink."""
    return []


@pytest.fixture(params=list(ActionMode), ids=lambda mode: mode.value)
def options(request) -> ParseOptions:
    """Parse options for each action dispatch mode."""
    return ParseOptions(actions=request.param)
