from __future__ import annotations

from typing import Any, Dict, List

import pytest

from tracker.engine import FilteredResult, FilterEngine


@pytest.fixture
def staff() -> List[Dict[str, Any]]:
    return [
        {"id": "S1", "name": "Ann", "phase": "Primary", "overseas_thai": "Overseas", "year_group": "Year 3", "department": "EAL"},
        {"id": "S2", "name": "Anna", "phase": "Primary", "overseas_thai": "Thai", "year_group": "Year 4", "department": "LSA"},
        {"id": "S3", "name": "Susan", "phase": "Secondary", "overseas_thai": "Overseas", "year_group": "Year 10", "department": "EAL, LSA"},
        {"id": "S4", "name": "Bob", "phase": "Primary School", "overseas_thai": "Thai", "year_group": "Year 3", "department": "Outclass"},
        {"id": "S5", "name": "Carl", "phase": "Primary", "overseas_thai": "Overseas", "year_group": "Year 3", "department": None},
    ]


@pytest.fixture
def standards() -> List[Dict[str, Any]]:
    return [
        {"code": "T1", "name": "Safeguarding", "description": "Child protection basics", "group": "Welfare"},
        {"code": "T2", "name": "Phonics", "description": "Early reading", "group": "Teaching"},
        {"code": "T3", "name": "Marking", "description": None, "group": None},
    ]


@pytest.fixture
def results() -> List[FilteredResult]:
    """Every result handed to an engine's change callback, in order."""
    return []


@pytest.fixture
def engine(staff, standards, results) -> FilterEngine:
    return FilterEngine(staff, standards, on_filter_change=results.append)
