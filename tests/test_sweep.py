"""Tests for the mutable-version sweep (soft deletion of undeclared items)."""

from packsync.cms.local import LocalResourceClient
from packsync.cms.models import ClassSchema, State
from packsync.cms.schemas import PACKAGES, SchemaRegistry
from packsync.errors import ResourceClientError
from packsync.models.pack import CATALOG_PACKAGE, MANIFEST_PACKAGE
from packsync.packs.loader import pack_from_dict
from packsync.sync.reconcile import GraphReconciler
from packsync.sync.sweep import SweepEngine, next_state, relation_inferred

NS = "/public/acme/packs/base/1"


class _FailingClient(LocalResourceClient):
    """Local store that cannot mark the tomcat and jvm CIs pending deletion."""

    def save(self, entity):
        if entity.state == State.PENDING_DELETION:
            name = getattr(entity, "name", "")
            if name == "tomcat":
                raise ResourceClientError("connection reset", status_code=503)
            if name == "jvm":
                return False
        return super().save(entity)


def _client(cls=LocalResourceClient) -> LocalResourceClient:
    schemas = SchemaRegistry.builtin()
    for package in PACKAGES:
        schemas.register(ClassSchema.of(f"{package}.Compute", size="S"))
        schemas.register(ClassSchema.of(f"{package}.Tomcat", port="8080"))
    return cls(schemas=schemas)


def _pack_data() -> dict:
    return {
        "name": "base",
        "version": "1",
        "resources": {
            "compute": {"cookbook": "compute", "payloads": {"os": {"definition": "x"}}},
            "tomcat": {"cookbook": "tomcat", "monitors": {"jvm": {"cmd": "check_jvm"}}},
        },
        "depends_on": {"tomcat": {"compute": {}}},
        "entrypoints": {"tomcat": {"attributes": {}}},
        "variables": {"appname": {"value": "demo"}},
        "environments": {"prod": {}},
    }


def _publish(client, pack):
    reconciler = GraphReconciler(client, register="acme")
    reconciler.reconcile(NS, pack, CATALOG_PACKAGE, "_default", pack.design_resources())
    mode = client.build_ci(NS, "mgmt.Mode", "prod")
    if not client.find(NS, "mgmt.Mode", "prod"):
        client.save(mode)
    reconciler.reconcile(f"{NS}/prod", pack, MANIFEST_PACKAGE, "prod", pack.environment_resources("prod"))


def _without_tomcat() -> dict:
    data = _pack_data()
    del data["resources"]["tomcat"]
    del data["depends_on"]
    del data["entrypoints"]
    return data


# --- Transition rule ---


def test_next_state_rule():
    assert next_state(True, State.PENDING_DELETION) == State.DEFAULT
    assert next_state(False, State.DEFAULT) == State.PENDING_DELETION
    assert next_state(True, State.DEFAULT) is None
    assert next_state(False, State.PENDING_DELETION) is None


def test_relation_inferred_from_nested_declarations():
    pack = pack_from_dict(_pack_data())
    assert relation_inferred(pack, "Payload", "compute", "os")
    assert relation_inferred(pack, "WatchedBy", "tomcat", "jvm")
    assert relation_inferred(pack, "Requires", "tomcat", "compute")
    assert relation_inferred(pack, "Entrypoint", "anything", "tomcat")
    assert not relation_inferred(pack, "Payload", "tomcat", "os")
    assert not relation_inferred(pack, "DependsOn", "tomcat", "compute")


# --- Sweep ---


def test_sweep_unchanged_pack_is_a_no_op():
    client = _client()
    pack = pack_from_dict(_pack_data())
    _publish(client, pack)
    before = client.write_count

    report = SweepEngine(client).sweep(pack, NS)
    assert report.outcomes == []
    assert client.write_count == before
    assert set(report.retained) == {"_default", "prod"}


def test_sweep_marks_undeclared_items_pending_deletion():
    client = _client()
    _publish(client, pack_from_dict(_pack_data()))

    report = SweepEngine(client).sweep(pack_from_dict(_without_tomcat()), NS)
    assert not report.failures

    for ns, package in ((NS, "mgmt.catalog"), (f"{NS}/prod", "mgmt.manifest")):
        [tomcat] = client.find(ns, f"{package}.Tomcat", "tomcat")
        assert tomcat.state == State.PENDING_DELETION
        [jvm] = client.find(ns, f"{package}.Monitor", "jvm")
        assert jvm.state == State.PENDING_DELETION
        [compute] = client.find(ns, f"{package}.Compute", "compute")
        assert compute.state == State.DEFAULT
        [platform] = client.find(ns, f"{package}.Platform", "base")
        assert platform.state == State.DEFAULT

    [depends_on] = client.find_relations(ns_path=NS, relation_name="mgmt.catalog.DependsOn")
    assert depends_on.state == State.PENDING_DELETION
    [entrypoint] = client.find_relations(ns_path=NS, relation_name="mgmt.Entrypoint")
    assert entrypoint.state == State.PENDING_DELETION
    assert "tomcat" in report.transitioned("pending_deletion")


def test_sweep_keeps_variables_payloads_and_modes():
    client = _client()
    _publish(client, pack_from_dict(_pack_data()))

    SweepEngine(client).sweep(pack_from_dict(_without_tomcat()), NS)
    assert client.find(NS, "mgmt.catalog.Localvar", "appname")[0].state == State.DEFAULT
    assert client.find(NS, "mgmt.manifest.Qpath", "os")[0].state == State.DEFAULT
    assert client.find(NS, "mgmt.Mode", "prod")[0].state == State.DEFAULT


def test_sweep_restores_redeclared_items():
    client = _client()
    _publish(client, pack_from_dict(_pack_data()))
    engine = SweepEngine(client)
    engine.sweep(pack_from_dict(_without_tomcat()), NS)

    report = engine.sweep(pack_from_dict(_pack_data()), NS)
    assert "tomcat" in report.transitioned("default")
    assert all(ci.state == State.DEFAULT for ci in client.find(NS))
    assert all(rel.state == State.DEFAULT for rel in client.find_relations(ns_path=NS))


def test_sweep_never_removes_items():
    client = _client()
    _publish(client, pack_from_dict(_pack_data()))
    cis = len(client.find(NS)) + len(client.find(f"{NS}/prod"))
    relations = len(client.find_relations())

    SweepEngine(client).sweep(pack_from_dict({"name": "base", "version": "1"}), NS)
    assert len(client.find(NS)) + len(client.find(f"{NS}/prod")) == cis
    assert len(client.find_relations()) == relations


def test_sweep_explicit_environments():
    client = _client()
    _publish(client, pack_from_dict(_pack_data()))

    report = SweepEngine(client).sweep(pack_from_dict(_without_tomcat()), NS, environments=[])
    assert set(report.retained) == {"_default"}
    [prod_tomcat] = client.find(f"{NS}/prod", "mgmt.manifest.Tomcat", "tomcat")
    assert prod_tomcat.state == State.DEFAULT


def test_sweep_continues_past_failed_updates():
    client = _client(_FailingClient)
    _publish(client, pack_from_dict(_pack_data()))

    report = SweepEngine(client).sweep(pack_from_dict(_without_tomcat()), NS)
    assert {o.name for o in report.failures} == {"tomcat", "jvm"}
    assert all(o.kind == "ci_state" for o in report.failures)

    [tomcat] = client.find(NS, "mgmt.catalog.Tomcat", "tomcat")
    assert tomcat.state == State.DEFAULT
    [depends_on] = client.find_relations(ns_path=NS, relation_name="mgmt.catalog.DependsOn")
    assert depends_on.state == State.PENDING_DELETION
    [prod_depends_on] = client.find_relations(ns_path=f"{NS}/prod", relation_name="mgmt.manifest.DependsOn")
    assert prod_depends_on.state == State.PENDING_DELETION
