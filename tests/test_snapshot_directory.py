import pytest

from adsync.core.directory import DirectoryError, SnapshotDirectory, UncShareInspector
from adsync.core.progress import ProgressReporter, TerminalProgress


def test_snapshot_from_yaml(tmp_path):
    path = tmp_path / "ad.yml"
    path.write_text(
        """
ous: ["OU=Staff,DC=test,DC=local"]
users:
  - account: Jean.Dupont
    dn: "CN=Jean Dupont,OU=6A,DC=test,DC=local"
    attributes: {mail: jean.dupont@test.local}
shares: [jean.dupont]
""",
        encoding="utf-8",
    )
    d = SnapshotDirectory.from_yaml(str(path))

    assert d.ou_exists("ou=staff,dc=test,dc=local")
    # the container of a known account exists too
    assert d.ou_exists("OU=6A,DC=test,DC=local")
    assert d.user_exists("jean.dupont")
    assert d.get_current_ou("JEAN.DUPONT") == "OU=6A,DC=test,DC=local"
    assert d.get_attributes("jean.dupont", ["Mail", "sn"]) == {"Mail": "jean.dupont@test.local", "sn": None}
    assert d.share_exists("FS01", "jean.dupont", "D:\\S")
    assert [i.account for i in d.list_identities_under("OU=6A,DC=test,DC=local")] == ["Jean.Dupont"]
    assert d.list_identities_under("OU=Staff,DC=test,DC=local") == []
    assert d.calls["ou_exists"] == 2


def test_snapshot_rejects_bad_input(tmp_path):
    with pytest.raises(DirectoryError):
        SnapshotDirectory.from_yaml(str(tmp_path / "absent.yml"))
    with pytest.raises(DirectoryError):
        SnapshotDirectory(users=[{"account": "x"}])
    bad = tmp_path / "bad.yml"
    bad.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(DirectoryError):
        SnapshotDirectory.from_yaml(str(bad))


def test_unc_share_inspector(monkeypatch):
    seen = []

    def fake_isdir(path):
        seen.append(path)
        return True

    monkeypatch.setattr("adsync.core.directory.os.path.isdir", fake_isdir)
    assert UncShareInspector().share_exists("FS01", "jean.dupont", "D:\\S") is True
    assert seen == ["\\\\FS01\\jean.dupont$"]


def test_progress_reporter_clamps_to_phase():
    seen = []
    reporter = ProgressReporter(lambda p, phase, msg: seen.append((p, phase)))
    reporter.phase("rows", 0.5)
    reporter.phase("rows", 0.25)      # never goes backwards
    reporter.phase("rows", 7.0)       # clamped to the phase range
    assert [p for p, _ in seen] == [45, 85]
    assert reporter.last == 85


def test_terminal_progress_is_silent_when_disabled():
    with TerminalProgress(enabled=False) as bar:
        bar(50, "rows", "half way")
        assert bar.pbar is None
