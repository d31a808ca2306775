import sys
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from env_validation import load_settings  # noqa: E402
from knowledge_graph import (  # noqa: E402
    AccuracyAbove,
    AccuracyBelow,
    ConceptNode,
    CourseGraph,
    PathBranch,
    StrugglingConcept,
)


def build_six_node_graph() -> CourseGraph:
    """Linear six-module course with one branch of each kind."""
    nodes = tuple(
        ConceptNode(
            id=f"n{i}",
            concept_key=f"concept_{i}",
            module_id=f"m{i}",
            prerequisites=(f"n{i - 1}",) if i else (),
            difficulty=difficulty,
            title=f"Module {i}",
        )
        for i, difficulty in enumerate([2, 3, 4, 4, 7, 8])
    )
    edges = tuple((f"n{i}", f"n{i + 1}") for i in range(5))
    branches = (
        PathBranch(
            id="remedial_fundamentals",
            condition=AccuracyBelow(60),
            target_module_id="m0",
            branch_type="remedial",
            title="Review Fundamentals",
            description="Go back over the basics.",
        ),
        PathBranch(
            id="struggling_concept_3",
            condition=StrugglingConcept("concept_3"),
            target_module_id="m1",
            branch_type="alternative",
            title="Another angle",
        ),
        PathBranch(
            id="advanced_skip",
            condition=AccuracyAbove(90),
            target_module_id="m5",
            branch_type="advanced",
            title="Skip Ahead",
            description="Skip to more advanced content.",
        ),
    )
    return CourseGraph(course_id="course-1", nodes=nodes, edges=edges, branches=branches)


@pytest.fixture
def course_graph() -> CourseGraph:
    return build_six_node_graph()


@pytest.fixture
def now() -> datetime:
    # A Wednesday, mid-morning local time
    return datetime(2024, 3, 13, 10, 30)


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()
