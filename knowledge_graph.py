"""Course concept graph: concept nodes, prerequisite edges and conditional branches."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple, Union

import yaml

from engines.validation import MissingConceptNode, UnknownBranchCondition

BranchType = Literal["remedial", "advanced", "alternative"]
BRANCH_TYPES = ("remedial", "advanced", "alternative")

DEFAULT_BELOW_THRESHOLD = 60.0
DEFAULT_ABOVE_THRESHOLD = 90.0


def _load_payload(path: Path) -> Any:
    suffix = path.suffix.lower()
    text = Path(path).read_text(encoding="utf-8")
    if suffix in {".json", ".jsonc"}:
        return json.loads(text)
    if suffix in {".yml", ".yaml"}:
        return yaml.safe_load(text)
    raise ValueError(f"Unsupported course graph format: {path}")


def _slug(text: str) -> str:
    return "_".join(str(text).lower().split())


@dataclass(frozen=True)
class ConceptNode:
    """A module of the course, keyed by the concept it teaches."""

    id: str
    concept_key: str
    module_id: str
    prerequisites: Tuple[str, ...] = ()
    difficulty: int = 5
    estimated_time: int = 15
    title: str = ""


# ----- branch conditions ----------------------------------------------
@dataclass(frozen=True)
class AccuracyBelow:
    threshold: float = DEFAULT_BELOW_THRESHOLD

    type = "accuracy_below"


@dataclass(frozen=True)
class AccuracyAbove:
    threshold: float = DEFAULT_ABOVE_THRESHOLD

    type = "accuracy_above"


@dataclass(frozen=True)
class StrugglingConcept:
    concept_key: str

    type = "struggling_concept"


@dataclass(frozen=True)
class MasteredConcept:
    concept_key: str

    type = "mastered_concept"


BranchCondition = Union[AccuracyBelow, AccuracyAbove, StrugglingConcept, MasteredConcept]


def parse_branch_condition(raw: Mapping[str, Any]) -> BranchCondition:
    """Build a condition from its ``{"type": ..., ...}`` JSON form."""

    if not isinstance(raw, Mapping):
        raise UnknownBranchCondition(raw)
    condition_type = raw.get("type")
    threshold = raw.get("threshold")
    concept_key = raw.get("concept_key", raw.get("conceptKey"))
    if condition_type == "accuracy_below":
        return AccuracyBelow(float(threshold) if threshold is not None else DEFAULT_BELOW_THRESHOLD)
    if condition_type == "accuracy_above":
        return AccuracyAbove(float(threshold) if threshold is not None else DEFAULT_ABOVE_THRESHOLD)
    if condition_type == "struggling_concept":
        return StrugglingConcept(str(concept_key or ""))
    if condition_type == "mastered_concept":
        return MasteredConcept(str(concept_key or ""))
    raise UnknownBranchCondition(condition_type)


def condition_to_dict(condition: BranchCondition) -> Dict[str, Any]:
    if isinstance(condition, (AccuracyBelow, AccuracyAbove)):
        return {"type": condition.type, "threshold": condition.threshold}
    if isinstance(condition, (StrugglingConcept, MasteredConcept)):
        return {"type": condition.type, "conceptKey": condition.concept_key}
    raise UnknownBranchCondition(type(condition).__name__)


@dataclass(frozen=True)
class PathBranch:
    """Conditional redirect to remedial, advanced or alternative content."""

    id: str
    condition: BranchCondition
    target_module_id: str
    branch_type: BranchType
    title: str = ""
    description: str = ""


@dataclass(frozen=True)
class CourseGraph:
    """Static, course-authored learning path.

    ``nodes`` keep authored order; that order is also the unconditioned
    default path whenever a node has no explicit outgoing edge.
    """

    course_id: str
    nodes: Tuple[ConceptNode, ...]
    edges: Tuple[Tuple[str, str], ...] = ()
    branches: Tuple[PathBranch, ...] = ()
    _index: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)
    _by_module: Dict[str, str] = field(default_factory=dict, init=False, repr=False, compare=False)
    _outgoing: Dict[str, List[str]] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        for idx, node in enumerate(self.nodes):
            if node.id in self._index:
                raise ValueError(f"Duplicate concept node id: {node.id}")
            self._index[node.id] = idx
            self._by_module.setdefault(node.module_id, node.id)
        for source, target in self.edges:
            if source not in self._index or target not in self._index:
                raise KeyError("Both source and target must exist before creating an edge")
            self._outgoing.setdefault(source, []).append(target)

    # ------------------------------------------------------------------
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    # ------------------------------------------------------------------
    def get_node(self, node_id: str) -> Optional[ConceptNode]:
        idx = self._index.get(node_id)
        return self.nodes[idx] if idx is not None else None

    # ------------------------------------------------------------------
    def index_of(self, node_id: str) -> int:
        idx = self._index.get(node_id)
        if idx is None:
            raise KeyError(f"Node {node_id} is not part of course {self.course_id}")
        return idx

    # ------------------------------------------------------------------
    def node_for_module(self, module_id: str) -> Optional[ConceptNode]:
        node_id = self._by_module.get(module_id)
        return self.get_node(node_id) if node_id else None

    # ------------------------------------------------------------------
    def nodes_for_concept(self, concept_key: str) -> List[ConceptNode]:
        return [node for node in self.nodes if node.concept_key == concept_key]

    # ------------------------------------------------------------------
    def first_node(self) -> Optional[ConceptNode]:
        return self.nodes[0] if self.nodes else None

    # ------------------------------------------------------------------
    def next_node(self, node_id: str) -> Optional[ConceptNode]:
        """Default successor: first explicit edge, else the next authored node."""

        targets = self._outgoing.get(node_id)
        if targets:
            return self.get_node(targets[0])
        if self.edges:
            # With explicit edges, a node without outgoing edges is terminal
            return None
        idx = self.index_of(node_id)
        if idx + 1 < len(self.nodes):
            return self.nodes[idx + 1]
        return None

    # ------------------------------------------------------------------
    def is_terminal(self, node_id: str) -> bool:
        return self.next_node(node_id) is None

    # ------------------------------------------------------------------
    def get_branch(self, branch_id: str) -> Optional[PathBranch]:
        for branch in self.branches:
            if branch.id == branch_id:
                return branch
        return None

    # ------------------------------------------------------------------
    def branch_target(self, branch: PathBranch) -> ConceptNode:
        node = self.node_for_module(branch.target_module_id)
        if node is None:
            raise MissingConceptNode(branch.target_module_id, branch.id)
        return node

    # ------------------------------------------------------------------
    def validate(self) -> None:
        """Check every branch condition and target before the graph is used."""

        for branch in self.branches:
            condition_to_dict(branch.condition)
            if branch.branch_type not in BRANCH_TYPES:
                raise ValueError(f"Unknown branch type {branch.branch_type!r} on {branch.id}")
            self.branch_target(branch)

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "courseId": self.course_id,
            "nodes": [
                {
                    "id": node.id,
                    "conceptKey": node.concept_key,
                    "moduleId": node.module_id,
                    "prerequisites": list(node.prerequisites),
                    "difficulty": node.difficulty,
                    "estimatedTime": node.estimated_time,
                    "title": node.title,
                }
                for node in self.nodes
            ],
            "edges": [{"from": source, "to": target} for source, target in self.edges],
            "branches": [
                {
                    "id": branch.id,
                    "condition": condition_to_dict(branch.condition),
                    "targetModuleId": branch.target_module_id,
                    "branchType": branch.branch_type,
                    "title": branch.title,
                    "description": branch.description,
                }
                for branch in self.branches
            ],
        }


def _auto_branches(nodes: Sequence[ConceptNode]) -> List[PathBranch]:
    branches: List[PathBranch] = []
    for i in range(1, len(nodes)):
        current = nodes[i]
        previous = nodes[i - 1]

        # A difficulty jump of 3+ levels offers a review of easier material
        if current.difficulty - previous.difficulty >= 3:
            remedial = next(
                (n for n in reversed(nodes[:i]) if n.difficulty <= previous.difficulty),
                None,
            )
            if remedial is not None:
                branches.append(PathBranch(
                    id=f"branch_remedial_{current.id}",
                    condition=AccuracyBelow(DEFAULT_BELOW_THRESHOLD),
                    target_module_id=remedial.module_id,
                    branch_type="remedial",
                    title="Review Fundamentals",
                    description=(
                        "This topic builds on earlier concepts. "
                        f'Review "{remedial.title}" to strengthen your foundation.'
                    ),
                ))

        if current.difficulty <= 5 and i < len(nodes) - 2:
            branches.append(PathBranch(
                id=f"branch_advanced_{current.id}",
                condition=AccuracyAbove(DEFAULT_ABOVE_THRESHOLD),
                target_module_id=nodes[i + 2].module_id,
                branch_type="advanced",
                title="Skip Ahead",
                description="You've mastered these concepts! Skip to more advanced content.",
            ))
    return branches


def generate_course_graph(course_id: str, chapters: Iterable[Mapping[str, Any]]) -> CourseGraph:
    """Derive a linear course graph with automatic branches from a course outline.

    ``chapters`` are ordered mappings with a ``title`` and ordered ``modules``
    (``id``, ``title``, optional ``difficulty`` and ``estimatedTime``).
    """

    nodes: List[ConceptNode] = []
    edges: List[Tuple[str, str]] = []
    previous_id: Optional[str] = None
    for chapter in chapters:
        chapter_title = str(chapter.get("title", ""))
        for module in chapter.get("modules", []):
            module_id = str(module["id"])
            node_id = f"node_{module_id}"
            title = str(module.get("title", module_id))
            nodes.append(ConceptNode(
                id=node_id,
                concept_key=f"{_slug(chapter_title)}_{_slug(title)}",
                module_id=module_id,
                prerequisites=(previous_id,) if previous_id else (),
                difficulty=int(module.get("difficulty") or module.get("difficultyLevel") or 5),
                estimated_time=int(module.get("estimatedTime") or module.get("estimated_time") or 15),
                title=title,
            ))
            if previous_id:
                edges.append((previous_id, node_id))
            previous_id = node_id

    return CourseGraph(
        course_id=course_id,
        nodes=tuple(nodes),
        edges=tuple(edges),
        branches=tuple(_auto_branches(nodes)),
    )


def course_graph_from_dict(payload: Mapping[str, Any]) -> CourseGraph:
    """Validate a JSON-style course graph payload and build the graph."""

    from schemas import CourseGraphModel

    return CourseGraphModel.model_validate(payload).to_domain()


def load_course_graph(path: str | Path) -> CourseGraph:
    """Load a course graph from a JSON or YAML file."""

    return course_graph_from_dict(_load_payload(Path(path)))
