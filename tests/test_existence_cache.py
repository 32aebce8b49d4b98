import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from adsync.core.cache import OU_EXISTS, OU_MISSING, OU_SCHEDULED, ExistenceCache, PlanningContext
from adsync.core.mapping import MappingConfig
from adsync.core.models import ActionKind


def _mapping(**extra):
    data = {"attributes": {"sAMAccountName": "%login%"}, "default_ou": "DC=test,DC=local"}
    data.update(extra)
    return MappingConfig.from_dict(data, name="t")


class _CountingQuery:
    def __init__(self, existing=(), delay=0.0):
        self.existing = {e.lower() for e in existing}
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, path):
        with self._lock:
            self.calls.append(path)
        time.sleep(self.delay)
        return path.lower() in self.existing


def test_check_queries_each_path_once_under_contention():
    cache = ExistenceCache()
    query = _CountingQuery(existing=["OU=A,DC=test,DC=local"], delay=0.02)

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: cache.check("OU=A,DC=test,DC=local", query), range(50)))

    assert all(results)
    assert len(query.calls) == 1


def test_missing_is_remembered_and_failures_are_not():
    cache = ExistenceCache()
    query = _CountingQuery()
    assert cache.check("OU=X,DC=test,DC=local", query) is False
    assert cache.check("OU=X,DC=test,DC=local", query) is False
    assert len(query.calls) == 1

    def boom(path):
        raise RuntimeError("ldap down")

    with pytest.raises(RuntimeError):
        cache.check("OU=Y,DC=test,DC=local", boom)
    # next caller retries the query
    assert cache.check("OU=Y,DC=test,DC=local", query) is False


def test_schedule_is_first_caller_only():
    cache = ExistenceCache()
    assert cache.schedule("OU=A,DC=x") is True
    assert cache.schedule("ou=a,dc=X") is False
    assert cache.is_scheduled("OU=A,DC=x")
    assert cache.contains("OU=A,DC=x")


def test_ensure_ou_schedules_missing_parents_first():
    ctx = PlanningContext(_mapping(), _CountingQuery())
    state = ctx.ensure_ou("OU=6A,OU=College,DC=test,DC=local")

    assert state == OU_SCHEDULED
    paths = [a.path for a in ctx.scheduled_actions()]
    assert paths == ["OU=College,DC=test,DC=local", "OU=6A,OU=College,DC=test,DC=local"]
    first = ctx.scheduled_actions()[1]
    assert first.attributes["ouName"] == "6A"
    assert first.attributes["parentDn"] == "OU=College,DC=test,DC=local"


def test_ensure_ou_concurrent_rows_yield_one_create():
    query = _CountingQuery(delay=0.01)
    ctx = PlanningContext(_mapping(), query)

    with ThreadPoolExecutor(max_workers=20) as pool:
        states = list(pool.map(lambda _: ctx.ensure_ou("OU=6A,DC=test,DC=local"), range(100)))

    assert set(states) == {OU_SCHEDULED}
    creates = [a for a in ctx.scheduled_actions() if a.kind is ActionKind.CREATE_OU]
    assert len(creates) == 1
    assert len(query.calls) == 1


def test_ensure_ou_domain_root_and_disabled_creation():
    query = _CountingQuery()
    ctx = PlanningContext(_mapping(create_missing_ous=False), query)
    assert ctx.ensure_ou("DC=test,DC=local") == OU_EXISTS
    assert query.calls == []
    assert ctx.ensure_ou("OU=6A,DC=test,DC=local") == OU_MISSING
    assert ctx.scheduled_actions() == []


def test_ou_groups_are_scheduled_with_the_ou():
    ctx = PlanningContext(_mapping(ou_groups={"enabled": True, "prefix": "G_"}), _CountingQuery())
    ctx.ensure_ou("OU=6A,DC=test,DC=local")

    kinds = [a.kind for a in ctx.scheduled_actions()]
    assert kinds == [ActionKind.CREATE_OU, ActionKind.CREATE_GROUP, ActionKind.CREATE_GROUP]
    assert ctx.groups_for("ou=6a,dc=test,dc=local") == ("G_Sec_6A", "G_Dist_6A")
    sec = ctx.scheduled_actions()[1]
    assert sec.attributes["isSecurity"] == "true"


def test_claims_and_targets():
    ctx = PlanningContext(_mapping(), _CountingQuery())
    assert ctx.claim(ActionKind.CREATE_TEAM, "Classe 6A") is True
    assert ctx.claim(ActionKind.CREATE_TEAM, " classe 6a ") is False
    assert ctx.claim(ActionKind.CREATE_CLASS_GROUP_FOLDER, "Classe 6A") is True

    ctx.note_target("OU=6A,OU=College,DC=test,DC=local")
    assert ctx.has_target_within("OU=College,DC=test,DC=local")
    assert not ctx.has_target_within("OU=Lycee,DC=test,DC=local")
