import pytest

from adsync.core.mapping import MappingConfig, MappingError, MappingLoader, MappingValidationError
from adsync.core.models import ActionKind


def _write(base, name, text):
    (base / f"{name}.yml").write_text(text, encoding="utf-8")


def test_load_and_inherit_defaults(tmp_path):
    base = tmp_path / "resources" / "mappings"
    base.mkdir(parents=True)
    _write(base, "_defaults", """
version: 1
default_ou: "OU=Students,DC=test,DC=local"
upn_suffix: test.local
ou_groups:
  enabled: true
  prefix: "G_"
disabled_actions: [DeleteUser]
""")
    _write(base, "students", """
version: 1
extends: "_defaults"
ou_column: classe
attributes:
  sAMAccountName: "%prenom%.%nom%"
ou_groups:
  prefix: "GRP_"
""")

    m = MappingLoader(search_paths=[str(base)]).load("students")

    assert m.name == "students"
    assert m.default_ou == "OU=Students,DC=test,DC=local"
    assert m.ou_column == "classe"
    assert m.upn_suffix == "test.local"
    # nested maps merge; the child's scalar wins
    assert m.ou_groups.enabled is True
    assert m.ou_groups.prefix == "GRP_"
    assert not m.is_enabled(ActionKind.DELETE_USER)
    assert m.is_enabled(ActionKind.CREATE_USER)


def test_yaml_extension_and_search_order(tmp_path):
    first = tmp_path / "a"
    second = tmp_path / "b"
    first.mkdir()
    second.mkdir()
    (second / "m.yaml").write_text('attributes: {sAMAccountName: "%x%"}\n', encoding="utf-8")
    m = MappingLoader(search_paths=[str(first), str(second)]).load("m")
    assert m.attributes == {"sAMAccountName": "%x%"}


def test_cycle_detection(tmp_path):
    _write(tmp_path, "a", 'extends: "b"\nattributes: {sAMAccountName: "%x%"}\n')
    _write(tmp_path, "b", 'extends: "a"\n')
    with pytest.raises(MappingValidationError) as exc:
        MappingLoader(search_paths=[str(tmp_path)]).load("a")
    assert "a -> b -> a" in str(exc.value)


def test_missing_mapping_and_missing_attributes(tmp_path):
    loader = MappingLoader(search_paths=[str(tmp_path)])
    with pytest.raises(MappingError):
        loader.load("nope")
    _write(tmp_path, "empty", "version: 1\n")
    with pytest.raises(MappingValidationError):
        loader.load("empty")


@pytest.mark.parametrize(
    "data",
    [
        {"attributes": ["sAMAccountName"]},
        {"attributes": {"sAMAccountName": True}},
        {"attributes": {"a": "x"}, "create_missing_ous": "maybe"},
        {"attributes": {"a": "x"}, "disabled_actions": ["FlyToMoon"]},
        {"attributes": {"a": "x"}, "disabled_actions": ["Error"]},
        {"attributes": {"a": "x"}, "folders": "yes"},
        {"attributes": {"a": "x"}, "default_ou": "OU=6A,,DC=test"},
    ],
)
def test_invalid_mappings_are_rejected(data):
    with pytest.raises(MappingValidationError):
        MappingConfig.from_dict(data, name="bad")


def test_disabled_actions_accept_loose_names():
    m = MappingConfig.from_dict(
        {"attributes": {"a": "x"}, "disabled_actions": "create_team; DELETEOU"},
        name="t",
    )
    assert m.disabled_actions == frozenset({ActionKind.CREATE_TEAM, ActionKind.DELETE_OU})
    # errors can never be filtered out
    assert m.is_enabled(ActionKind.ERROR)


def test_defaults_and_blank_root():
    m = MappingConfig.from_dict({"attributes": {"a": "x"}}, name="t")
    assert m.default_ou == "DC=domain,DC=local"
    assert m.create_missing_ous is True
    assert m.overwrite_existing is True
    assert m.ou_groups.enabled is False

    blank = MappingConfig.from_dict({"attributes": {"a": "x"}, "default_ou": ""}, name="t")
    assert blank.default_ou == ""


def test_malformed_yaml_is_a_validation_error(tmp_path):
    _write(tmp_path, "broken", "attributes:\n  sAMAccountName: [unclosed\n")
    with pytest.raises(MappingValidationError) as exc:
        MappingLoader(search_paths=[str(tmp_path)]).load("broken")
    assert "broken.yml" in str(exc.value)
