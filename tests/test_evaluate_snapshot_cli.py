import json

from scripts import evaluate_snapshot


def _snapshot(course_graph, **extra):
    payload = {
        "studentId": "alice",
        "courseGraph": course_graph.to_dict(),
        "responses": [
            {
                "blockId": f"b{i}",
                "conceptKey": "concept_2",
                "isCorrect": True,
                "score": 1,
                "maxScore": 1,
                "submittedAt": f"2024-03-13T09:0{i}:00",
            }
            for i in range(5)
        ],
        "path": {"currentNodeId": "n2", "completedNodes": ["n0", "n1"]},
        "gamification": {"totalXP": 120, "level": 1, "currentStreak": 3, "longestStreak": 3},
        "progress": {"completedModules": ["m0", "m1"], "assessmentScores": [100]},
        "reviews": [
            {"conceptKey": "concept_0", "question": "q", "answer": "a", "nextReviewDate": "2024-03-12T08:00:00"},
        ],
        "evaluatedAt": "2024-03-13T10:30:00",
    }
    payload.update(extra)
    return payload


def test_cli_reports_metrics_branch_and_badges(course_graph, tmp_path, capsys):
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(_snapshot(course_graph)), encoding="utf-8")
    output = tmp_path / "report.json"

    exit_code = evaluate_snapshot.main([str(path), "--output", str(output)])
    captured = capsys.readouterr()

    assert exit_code == 0
    report = json.loads(captured.out)
    assert report == json.loads(output.read_text(encoding="utf-8"))
    assert report["metrics"]["accuracy"] == 100.0
    assert report["metrics"]["conceptsMastered"] == ["concept_2"]
    assert report["nextStep"]["recommendation"]["branchId"] == "advanced_skip"
    assert report["nextStep"]["nextNodeId"] == "n5"
    assert report["nextStep"]["defaultNextNodeId"] == "n3"
    assert report["gamification"]["newBadges"] == [
        "first_steps",
        "getting_started",
        "perfect_score",
        "accuracy_ace",
        "flawless_master",
    ]
    assert report["gamification"]["dailyChallenge"]["id"] == "daily-2024-03-13"
    assert report["reviews"]["due"] == ["concept_0"]


def test_cli_uses_snapshot_badge_catalog(course_graph, tmp_path, capsys):
    catalog = [{
        "id": "only",
        "name": "Only",
        "category": "achievement",
        "requirement": {"type": "module_complete", "value": 2},
        "xpReward": 10,
    }]
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(_snapshot(course_graph, badgeCatalog=catalog)), encoding="utf-8")

    assert evaluate_snapshot.main([str(path), "--now", "2024-03-14T08:00:00"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["gamification"]["newBadges"] == ["only"]
    assert report["evaluatedAt"] == "2024-03-14T08:00:00"


def test_cli_rejects_invalid_snapshot(tmp_path, capsys):
    path = tmp_path / "broken.json"
    path.write_text(json.dumps({"courseGraph": {"courseId": "c"}}), encoding="utf-8")

    assert evaluate_snapshot.main([str(path)]) == 1
    assert "Invalid snapshot" in capsys.readouterr().err


def test_cli_missing_file(tmp_path, capsys):
    assert evaluate_snapshot.main([str(tmp_path / "nope.json")]) == 2
    assert "File not found" in capsys.readouterr().err


def test_cli_accepts_utc_timestamps(course_graph, tmp_path, capsys):
    payload = _snapshot(course_graph, evaluatedAt="2024-03-13T10:30:00Z")
    for response in payload["responses"]:
        response["submittedAt"] += "Z"
    payload["reviews"][0]["nextReviewDate"] = "2024-03-12T08:00:00Z"
    payload["gamification"]["lastActivityDate"] = "2024-03-12T18:00:00Z"
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    assert evaluate_snapshot.main([str(path)]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["metrics"]["accuracy"] == 100.0
    assert report["reviews"]["due"] == ["concept_0"]
    assert "+" not in report["evaluatedAt"]

    assert evaluate_snapshot.main([str(path), "--now", "2024-03-14T08:00:00Z"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["reviews"]["due"] == ["concept_0"]
    assert not report["evaluatedAt"].endswith("Z")


def test_cli_reports_progress_grade_risk_and_struggle(course_graph, tmp_path, capsys):
    payload = _snapshot(
        course_graph,
        moduleInteractions=[
            {"moduleId": "m0", "totalScore": 9, "maxPossibleScore": 10, "percentageComplete": 100},
            {"moduleId": "m1", "totalScore": 8, "maxPossibleScore": 10, "percentageComplete": 100},
        ],
        dailyActivity=[
            {"date": f"2024-03-1{day}", "minutesSpent": 25, "modulesViewed": 1, "interactionsCompleted": 5,
             "accuracy": 90}
            for day in (0, 1, 2)
        ],
        recentEvents=[
            {"timestamp": f"2024-03-13T10:2{i}:00", "type": "answer_submitted", "correct": False}
            for i in range(4)
        ],
    )
    payload["gamification"]["lastActivityDate"] = "2024-03-13T09:04:00"
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    assert evaluate_snapshot.main([str(path)]) == 0
    report = json.loads(capsys.readouterr().out)

    progress = report["progress"]
    assert progress["percentComplete"] == 33
    assert progress["remainingModules"] == 4
    assert progress["minutesRemaining"] == 60
    assert progress["recommendedNodeId"] not in ("n0", "n1")
    assert progress["contentAdaptations"]["showSimplifiedContent"] is False

    grade = report["grade"]
    assert grade["interactionScore"] == 85.0
    assert grade["finalScore"] == 95.5
    assert grade["letterGrade"] == "A"
    assert grade["courseComplete"] is False
    assert grade["message"] == "You have completed 2 of 6 required modules."

    risk = report["risk"]
    assert risk["riskScore"] == 0
    assert risk["predictedOutcome"] == "complete"
    assert risk["confidence"] == 0.7
    assert risk["intervention"] == {"trigger": False, "type": "none", "urgency": "scheduled"}

    struggle = report["struggle"]
    assert struggle["isStruggling"] is True
    assert struggle["severity"] == "high"
    assert struggle["indicators"] == ["repeated_errors"]
    assert struggle["intervention"]["type"] == "review"


def test_cli_rejects_unknown_event_type(course_graph, tmp_path, capsys):
    payload = _snapshot(course_graph, recentEvents=[{"timestamp": "2024-03-13T10:20:00", "type": "napping"}])
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    assert evaluate_snapshot.main([str(path)]) == 1
    assert "Invalid snapshot" in capsys.readouterr().err
