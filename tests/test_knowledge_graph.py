import json

import pytest

from engines.validation import MissingConceptNode, UnknownBranchCondition
from knowledge_graph import (
    AccuracyAbove,
    AccuracyBelow,
    ConceptNode,
    CourseGraph,
    MasteredConcept,
    PathBranch,
    StrugglingConcept,
    course_graph_from_dict,
    generate_course_graph,
    load_course_graph,
    parse_branch_condition,
)


def test_parse_branch_condition_variants():
    assert parse_branch_condition({"type": "accuracy_below"}) == AccuracyBelow(60)
    assert parse_branch_condition({"type": "accuracy_above", "threshold": 85}) == AccuracyAbove(85)
    assert parse_branch_condition({"type": "struggling_concept", "conceptKey": "loops"}) == StrugglingConcept("loops")
    assert parse_branch_condition({"type": "mastered_concept", "concept_key": "loops"}) == MasteredConcept("loops")


def test_unknown_condition_type_is_rejected():
    with pytest.raises(UnknownBranchCondition):
        parse_branch_condition({"type": "time_spent_above", "threshold": 3})


def test_next_node_follows_edges_then_authored_order(course_graph):
    assert course_graph.next_node("n0").id == "n1"
    assert course_graph.next_node("n5") is None
    assert course_graph.is_terminal("n5")

    unlinked = CourseGraph(course_id="c", nodes=course_graph.nodes)
    assert unlinked.next_node("n2").id == "n3"
    assert unlinked.next_node("n5") is None


def test_lookups(course_graph):
    assert course_graph.node_for_module("m3").id == "n3"
    assert course_graph.node_for_module("missing") is None
    assert course_graph.index_of("n4") == 4
    with pytest.raises(KeyError):
        course_graph.index_of("zz")
    assert course_graph.get_branch("advanced_skip").branch_type == "advanced"
    assert course_graph.get_branch("nope") is None


def test_duplicate_nodes_and_dangling_edges_are_rejected():
    node = ConceptNode("a", "k", "m")
    with pytest.raises(ValueError):
        CourseGraph(course_id="c", nodes=(node, node))
    with pytest.raises(KeyError):
        CourseGraph(course_id="c", nodes=(node,), edges=(("a", "b"),))


def test_validate_reports_missing_branch_target(course_graph):
    broken = CourseGraph(
        course_id="c",
        nodes=course_graph.nodes,
        branches=(PathBranch("b1", AccuracyBelow(), "m99", "remedial"),),
    )
    with pytest.raises(MissingConceptNode) as excinfo:
        broken.validate()
    assert excinfo.value.branch_id == "b1"


def test_generate_course_graph_builds_linear_path_with_auto_branches():
    chapters = [
        {"title": "Basics", "modules": [
            {"id": "m1", "title": "Variables", "difficulty": 2},
            {"id": "m2", "title": "Types", "difficulty": 3},
        ]},
        {"title": "Control Flow", "modules": [
            {"id": "m3", "title": "Loops", "difficulty": 7},
            {"id": "m4", "title": "Recursion", "difficulty": 8},
            {"id": "m5", "title": "Generators", "difficulty": 8},
        ]},
    ]

    graph = generate_course_graph("py-101", chapters)

    assert graph.node_ids() == ["node_m1", "node_m2", "node_m3", "node_m4", "node_m5"]
    assert graph.get_node("node_m3").prerequisites == ("node_m2",)
    assert graph.get_node("node_m3").concept_key == "control_flow_loops"
    assert graph.edges[0] == ("node_m1", "node_m2")

    remedial = graph.get_branch("branch_remedial_node_m3")
    assert remedial.condition == AccuracyBelow(60)
    assert remedial.target_module_id == "m2"

    advanced = graph.get_branch("branch_advanced_node_m2")
    assert advanced.condition == AccuracyAbove(90)
    assert advanced.target_module_id == "m4"
    # The first node and the final two never get an advanced branch
    assert graph.get_branch("branch_advanced_node_m1") is None
    assert graph.get_branch("branch_advanced_node_m4") is None
    graph.validate()


def test_dict_round_trip_and_file_loading(course_graph, tmp_path):
    payload = course_graph.to_dict()
    assert payload["branches"][1]["condition"] == {"type": "struggling_concept", "conceptKey": "concept_3"}

    rebuilt = course_graph_from_dict(payload)
    assert rebuilt.node_ids() == course_graph.node_ids()
    assert rebuilt.branches == course_graph.branches
    assert rebuilt.edges == course_graph.edges

    json_path = tmp_path / "course.json"
    json_path.write_text(json.dumps(payload), encoding="utf-8")
    assert load_course_graph(json_path).course_id == "course-1"

    yaml_path = tmp_path / "course.yaml"
    yaml_path.write_text(
        "courseId: yaml-course\n"
        "nodes:\n"
        "  - {id: a, conceptKey: ka, moduleId: ma}\n"
        "  - {id: b, conceptKey: kb, moduleId: mb, prerequisites: [a]}\n"
        "branches:\n"
        "  - id: back\n"
        "    condition: {type: accuracy_below, threshold: 50}\n"
        "    targetModuleId: ma\n"
        "    branchType: remedial\n",
        encoding="utf-8",
    )
    loaded = load_course_graph(yaml_path)
    assert loaded.course_id == "yaml-course"
    assert loaded.branches[0].condition == AccuracyBelow(50)
    assert loaded.next_node("a").id == "b"


def test_unsupported_file_format(tmp_path):
    path = tmp_path / "course.txt"
    path.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError):
        load_course_graph(path)


def test_loaded_graph_with_unknown_condition_tag_is_rejected(course_graph, tmp_path):
    payload = course_graph.to_dict()
    payload["branches"][0]["condition"] = {"type": "time_spent_above", "threshold": 3}
    with pytest.raises(UnknownBranchCondition):
        course_graph_from_dict(payload)

    yaml_path = tmp_path / "course.yaml"
    yaml_path.write_text(
        "courseId: odd\n"
        "nodes:\n"
        "  - {id: a, conceptKey: ka, moduleId: ma}\n"
        "branches:\n"
        "  - id: nap\n"
        "    condition: {type: sleep_deprived}\n"
        "    targetModuleId: ma\n"
        "    branchType: remedial\n",
        encoding="utf-8",
    )
    with pytest.raises(UnknownBranchCondition):
        load_course_graph(yaml_path)
