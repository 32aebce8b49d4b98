import io
import json

import pytest

from adsync.core.models import Action, ActionKind, Analysis, Row
from adsync.core.reporting import print_actions, render_table, write_analysis
from adsync.core.summary import format_summary, summarize


def _analysis():
    actions = (
        Action(ActionKind.CREATE_OU, "6A", "OU=6A,DC=test,DC=local", "Create organizational unit '6A'"),
        Action(ActionKind.CREATE_USER, " jean.dupont ", "OU=6A,DC=test,DC=local", "Create account",
               {"mail": "jean.dupont@test.local", "empty": None}, row_index=0),
        Action(ActionKind.ERROR, "Unknown", "", "Row 1: account name could not be resolved", row_index=1),
    )
    return Analysis(actions=actions, summary=summarize(actions, total_objects=2), run_id="r1")


def test_actions_are_immutable():
    a = _analysis().actions[1]
    assert a.object_name == "jean.dupont"
    assert a.attributes["empty"] == ""
    with pytest.raises(TypeError):
        a.attributes["mail"] = "x"  # type: ignore[index]


def test_row_is_case_insensitive_and_ordered():
    row = Row({"Prenom": "Jean", "nom": None, " ": "dropped"}, index=3)
    assert list(row) == ["Prenom", "nom"]
    assert row["PRENOM"] == "Jean"
    assert row.get("absent", "") == ""
    assert row["nom"] == ""
    assert row.index == 3


def test_action_kind_parse():
    assert ActionKind.parse("CREATE_OU") is ActionKind.CREATE_OU
    assert ActionKind.parse("adduserTogroup") is ActionKind.ADD_USER_TO_GROUP
    with pytest.raises(ValueError):
        ActionKind.parse("Launch")


def test_summary_counts_every_kind():
    summary = _analysis().summary
    assert summary.total_objects == 2
    assert summary.count(ActionKind.CREATE_USER) == 1
    assert summary.count(ActionKind.DELETE_OU) == 0
    assert summary.total_actions == 3
    assert summary.error_count == 1
    line = format_summary(summary)
    assert line.startswith("rows=2 | CreateOU=1")
    assert line.endswith("Error=1")


def test_table_and_json_rendering(tmp_path):
    analysis = _analysis()
    table = render_table(list(analysis.actions))
    assert table.splitlines()[0].startswith("| row")
    assert "jean.dupont" in table

    buf = io.StringIO()
    print_actions(analysis, fmt="table", out=buf)
    assert buf.getvalue().rstrip().endswith("Error=1")

    buf = io.StringIO()
    print_actions(analysis, fmt="json", out=buf)
    doc = json.loads(buf.getvalue())
    assert doc["run_id"] == "r1"
    assert doc["summary"]["CreateUser"] == 1
    assert doc["actions"][1]["attributes"]["mail"] == "jean.dupont@test.local"

    path = tmp_path / "out.json"
    write_analysis(analysis, str(path))
    assert json.loads(path.read_text(encoding="utf-8")) == doc


def test_actions_and_analysis_are_hashable():
    analysis = _analysis()
    again = _analysis()

    assert len({*analysis.actions, *again.actions}) == 3
    assert {analysis.actions[1]: "seen"}[again.actions[1]] == "seen"
    assert hash(analysis.summary) == hash(again.summary)
    assert hash(analysis) == hash(again)
