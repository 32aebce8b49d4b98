import threading

import pytest

from adsync.core.directory import DirectoryError, SnapshotDirectory
from adsync.core.engine import AnalysisCancelled, AnalysisError, analyze
from adsync.core.mapping import MappingConfig
from adsync.core.models import ActionKind

ROOT = "DC=test,DC=local"


def _mapping(**extra):
    data = {
        "default_ou": ROOT,
        "ou_column": "classe",
        "attributes": {"sAMAccountName": "%prenom%.%nom%"},
    }
    data.update(extra)
    return MappingConfig.from_dict(data, name="t")


def _user(account, ou="OU=6A," + ROOT):
    return {"account": account, "dn": f"CN={account},{ou}"}


def test_scenario_new_class_and_new_student():
    result = analyze(
        [{"prenom": "Jean", "nom": "Dupont", "classe": "6A"}],
        _mapping(),
        SnapshotDirectory(),
    )

    assert [(a.kind, a.object_name, a.path) for a in result.actions] == [
        (ActionKind.CREATE_OU, "6A", "OU=6A,DC=test,DC=local"),
        (ActionKind.CREATE_USER, "jean.dupont", "OU=6A,DC=test,DC=local"),
    ]
    assert result.summary.total_objects == 1
    assert result.summary.count(ActionKind.CREATE_OU) == 1
    assert result.summary.count(ActionKind.CREATE_USER) == 1
    assert result.summary.error_count == 0


def test_many_concurrent_rows_share_one_create_ou():
    rows = [{"prenom": f"eleve{i}", "nom": "test", "classe": "6A" if i % 2 else "5B"} for i in range(200)]
    directory = SnapshotDirectory()
    result = analyze(rows, _mapping(), directory, max_workers=16)

    creates = result.of_kind(ActionKind.CREATE_OU)
    assert sorted(a.path for a in creates) == ["OU=5B,DC=test,DC=local", "OU=6A,DC=test,DC=local"]
    assert len(result.of_kind(ActionKind.CREATE_USER)) == 200
    # each distinct OU was asked about once
    assert directory.calls["ou_exists"] == 2


def test_output_order_is_scheduled_then_rows_then_orphans():
    directory = SnapshotDirectory(users=[_user("old.one", "OU=9Z," + ROOT)])
    rows = [{"prenom": f"p{i}", "nom": "n", "classe": f"C{i % 3}"} for i in range(30)]
    result = analyze(rows, _mapping(), directory, max_workers=8)

    kinds = [a.kind for a in result.actions]
    n_ou = kinds.count(ActionKind.CREATE_OU)
    assert kinds[:n_ou] == [ActionKind.CREATE_OU] * n_ou
    assert kinds[-1] is ActionKind.DELETE_USER
    row_indexes = [a.row_index for a in result.actions if a.kind is ActionKind.CREATE_USER]
    assert row_indexes == sorted(row_indexes)


def test_summary_is_stable_across_runs():
    directory = SnapshotDirectory(users=[_user("jean.dupont"), _user("gone.user")])
    rows = [
        {"prenom": "Jean", "nom": "Dupont", "classe": "5B"},
        {"prenom": "Marie", "nom": "Curie", "classe": "6A"},
        {"prenom": "", "nom": "", "classe": "6A"},
    ]
    first = analyze(rows, _mapping(), directory, max_workers=4)
    second = analyze(rows, _mapping(), directory, max_workers=2)

    assert first.summary.to_dict() == second.summary.to_dict()
    assert first.summary.count(ActionKind.MOVE_USER) == 1
    assert first.summary.count(ActionKind.DELETE_USER) == 1
    assert first.summary.error_count == 1


def test_orphans_are_the_accounts_missing_from_the_batch():
    directory = SnapshotDirectory(users=[_user("a.x"), _user("b.x"), _user("c.x")])
    rows = [
        {"prenom": "a", "nom": "x", "classe": "6A"},
        {"prenom": "b", "nom": "x", "classe": "6A"},
    ]
    result = analyze(rows, _mapping(), directory)

    deletes = result.of_kind(ActionKind.DELETE_USER)
    assert [a.object_name for a in deletes] == ["c.x"]
    assert deletes[0].attributes["DistinguishedName"] == "CN=c.x,OU=6A,DC=test,DC=local"


def test_degraded_rows_still_protect_their_accounts_from_cleanup():
    class _Broken(SnapshotDirectory):
        def user_exists(self, account):
            raise DirectoryError("lookup failed")

    broken = _Broken(users=[_user("a.x")])
    result = analyze([{"prenom": "a", "nom": "x", "classe": "6A"}], _mapping(), broken)
    assert [a.object_name for a in result.of_kind(ActionKind.UPDATE_USER)] == ["a.x"]
    assert result.of_kind(ActionKind.DELETE_USER) == ()


def test_blank_root_reports_cleanup_error():
    mapping = _mapping(default_ou="")
    result = analyze([{"prenom": "a", "nom": "x"}], mapping, SnapshotDirectory())
    errors = result.of_kind(ActionKind.ERROR)
    assert [e.object_name for e in errors] == ["orphan-cleanup"]


def test_empty_ous_are_deleted_deepest_first():
    directory = SnapshotDirectory(
        ous=["OU=Old," + ROOT, "OU=Sub,OU=Old," + ROOT],
        users=[
            _user("a.x"),
            _user("b.gone", "OU=Old," + ROOT),
            _user("c.gone", "OU=Sub,OU=Old," + ROOT),
        ],
    )
    rows = [{"prenom": "a", "nom": "x", "classe": "6A"}]
    result = analyze(rows, _mapping(empty_ous={"enabled": True}), directory)

    assert [a.path for a in result.of_kind(ActionKind.DELETE_OU)] == [
        "OU=Sub,OU=Old,DC=test,DC=local",
        "OU=Old,DC=test,DC=local",
    ]
    # the 6A OU still holds a.x
    assert all("6A" not in a.path for a in result.of_kind(ActionKind.DELETE_OU))

    # disabled by default
    plain = analyze(rows, _mapping(), directory)
    assert plain.of_kind(ActionKind.DELETE_OU) == ()


def test_disabled_kinds_are_filtered():
    # gone.user lives outside 6A so OU=6A is really missing
    directory = SnapshotDirectory(users=[_user("gone.user", "OU=Old," + ROOT)])
    mapping = _mapping(disabled_actions=["DeleteUser", "CreateOU"])
    result = analyze([{"prenom": "Jean", "nom": "Dupont", "classe": "6A"}], mapping, directory)

    assert result.of_kind(ActionKind.DELETE_USER) == ()
    assert result.of_kind(ActionKind.CREATE_OU) == ()
    assert result.summary.count(ActionKind.DELETE_USER) == 0
    # without CreateOU the user lands in the default OU
    assert result.of_kind(ActionKind.CREATE_USER)[0].path == ROOT


def test_cancel_before_start_raises():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(AnalysisCancelled):
        analyze([{"prenom": "a", "nom": "x"}], _mapping(), SnapshotDirectory(), cancel_event=cancel)


def test_cancel_during_rows_raises():
    cancel = threading.Event()

    class _Cancelling(SnapshotDirectory):
        def user_exists(self, account):
            cancel.set()
            return super().user_exists(account)

    rows = [{"prenom": f"p{i}", "nom": "n", "classe": "6A"} for i in range(50)]
    with pytest.raises(AnalysisCancelled):
        analyze(rows, _mapping(), _Cancelling(), cancel_event=cancel, max_workers=2)


def test_orphan_listing_failure_fails_the_batch():
    class _Unreachable(SnapshotDirectory):
        def list_identities_under(self, root):
            raise DirectoryError("server unreachable")

    with pytest.raises(AnalysisError) as exc:
        analyze([{"prenom": "a", "nom": "x", "classe": "6A"}], _mapping(), _Unreachable())
    assert not isinstance(exc.value, AnalysisCancelled)
    assert "unreachable" in str(exc.value)


def test_progress_is_monotonic_and_completes():
    seen = []

    def on_progress(percent, phase, message):
        seen.append((percent, phase))

    rows = [{"prenom": f"p{i}", "nom": "n", "classe": "6A"} for i in range(25)]
    analyze(rows, _mapping(), SnapshotDirectory(), progress=on_progress, progress_every=5, max_workers=4)

    percents = [p for p, _ in seen]
    assert percents == sorted(percents)
    assert all(0 <= p <= 100 for p in percents)
    assert seen[-1] == (100, "completed")
    assert any(phase == "rows" for _, phase in seen)


def test_failing_progress_callback_does_not_break_analysis():
    def broken(percent, phase, message):
        raise ValueError("ui gone")

    result = analyze([{"prenom": "a", "nom": "x", "classe": "6A"}], _mapping(), SnapshotDirectory(), progress=broken)
    assert result.summary.count(ActionKind.CREATE_USER) == 1


def test_empty_batch():
    result = analyze([], _mapping(), SnapshotDirectory())
    assert result.actions == ()
    assert result.summary.total_objects == 0


def test_class_value_with_dn_special_characters():
    rows = [
        {"prenom": "Jean", "nom": "Dupont", "classe": "6A, option+B"},
        {"prenom": "Marie", "nom": "Curie", "classe": "6A, option+B"},
    ]
    result = analyze(rows, _mapping(), SnapshotDirectory())

    escaped = "OU=6A\\, option\\+B,DC=test,DC=local"
    creates = result.of_kind(ActionKind.CREATE_OU)
    assert [(a.object_name, a.path) for a in creates] == [("6A, option+B", escaped)]
    assert {a.path for a in result.of_kind(ActionKind.CREATE_USER)} == {escaped}
