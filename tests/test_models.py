"""Tests for the graph store and pack definition models."""

import pytest

from packsync.cms.models import (
    Attributes,
    ClassSchema,
    ConfigurationItem,
    Relation,
    overlay,
    relation_kind,
)
from packsync.models.pack import (
    CATALOG_PACKAGE,
    EnvironmentOverrides,
    MANIFEST_PACKAGE,
    PackDefinition,
    ResourceSpec,
    package_for,
    relation_key,
)


# --- Attribute overlay ---


def test_overlay_only_touches_declared_keys():
    merged = overlay({"size": "S", "cores": "1"}, {"size": "L", "bogus": "x"})
    assert merged == {"size": "L", "cores": "1"}


def test_overlay_require_value_skips_none_and_false():
    merged = overlay(
        {"a": "1", "b": "2", "c": "3"},
        {"a": None, "b": False, "c": ""},
        require_value=True,
    )
    # Empty strings are still values; only None/False are absent.
    assert merged == {"a": "1", "b": "2", "c": ""}


def test_overlay_without_require_value_takes_anything_present():
    merged = overlay({"a": "1"}, {"a": None})
    assert merged == {"a": None}


def test_attributes_ignore_undeclared_writes():
    attrs = ClassSchema.of("mgmt.Mode", description="").new_attributes()
    attrs["description"] = "prod"
    attrs["undeclared"] = "value"
    assert attrs.to_dict() == {"description": "prod"}
    assert not attrs.declares("undeclared")


def test_attributes_cannot_be_removed():
    attrs = Attributes({"a": "1"})
    with pytest.raises(TypeError):
        del attrs["a"]


def test_attributes_apply_in_place():
    attrs = Attributes({"a": "1", "b": "2"})
    attrs.apply({"a": "x", "z": "y"})
    assert dict(attrs) == {"a": "x", "b": "2"}


# --- CI / relation ---


def test_ci_key_and_new_flag():
    ci = ConfigurationItem(ns_path="/public/acme/packs", class_name="mgmt.Pack", name="base")
    assert ci.is_new
    assert str(ci.key) == "/public/acme/packs/mgmt.Pack/base"
    ci.ci_id = 7
    assert not ci.is_new


def test_relation_kind_normalization():
    assert relation_kind("DependsOn") == "depends_on"
    assert relation_kind("WatchedBy") == "watched_by"
    assert relation_kind("Requires") == "requires"


def test_relation_short_name():
    rel = Relation(relation_name="mgmt.catalog.DependsOn", ns_path="/x")
    assert rel.short_name == "DependsOn"
    assert rel.kind == "depends_on"
    assert rel.is_new


# --- Pack definition ---


def _pack(**overrides) -> PackDefinition:
    fields = dict(
        name="base",
        description="Base pack",
        resources={
            "compute": ResourceSpec(name="compute", cookbook="compute", attributes={"size": "M"}),
            "tomcat": ResourceSpec(
                name="tomcat",
                cookbook="tomcat",
                monitors={"jvm": {"cmd": "check_jvm"}},
                payloads={"conf": {"definition": "x"}},
            ),
        },
        depends_on={"tomcat": {"compute": {"flex": "true"}}},
        entrypoints={"tomcat": {"attributes": {}}},
        procedures={"restart": {}},
        variables={"appname": {"value": "demo"}},
        policies={"no-public-ip": {"mode": "active"}},
        environments={
            "prod": EnvironmentOverrides(
                resources={"compute": ResourceSpec(name="compute", attributes={"size": "L"})},
                variables={"region": {"value": "us"}},
            )
        },
    )
    fields.update(overrides)
    return PackDefinition(**fields)


def test_class_name_capitalizes_last_cookbook_segment():
    res = ResourceSpec(name="os", cookbook="oneops.1.os")
    assert res.class_name(CATALOG_PACKAGE) == "mgmt.catalog.oneops.1.Os"


def test_class_name_inserts_source():
    res = ResourceSpec(name="os", cookbook="os", source="oneops")
    assert res.class_name(MANIFEST_PACKAGE) == "mgmt.manifest.oneops.Os"


def test_package_for_environment():
    assert package_for("_default") == CATALOG_PACKAGE
    assert package_for("prod") == MANIFEST_PACKAGE


def test_environment_resources_merge_overrides():
    pack = _pack()
    prod = pack.environment_resources("prod")
    assert prod["compute"].attributes == {"size": "L"}
    assert prod["compute"].cookbook == "compute"
    assert pack.design_resources()["compute"].attributes == {"size": "M"}


def test_environment_views_merge_base_and_env():
    pack = _pack()
    assert set(pack.environment_variables("prod")) == {"appname", "region"}
    assert set(pack.environment_variables("_default")) == {"appname"}
    assert set(pack.environment_variables("unknown")) == {"appname"}


def test_signature_is_deterministic_and_ignores_version():
    a = _pack(version="1")
    b = _pack(version="2", enabled=False, visibility="org")
    assert a.signature == b.signature
    assert len(a.signature) == 64


def test_signature_changes_with_content():
    assert _pack().signature != _pack(description="changed").signature


def test_relation_keys_cover_declared_relations():
    keys = _pack().relation_keys()
    assert relation_key("base", "Requires", "compute") in keys
    assert relation_key("tomcat", "DependsOn", "compute") in keys
    assert relation_key("tomcat", "WatchedBy", "jvm") in keys
    assert relation_key("tomcat", "Payload", "conf") in keys
    assert relation_key("base", "Entrypoint", "tomcat") in keys
    assert relation_key("base", "ControlledBy", "restart") in keys
    assert relation_key("region", "ValueFor", "base") in keys
    assert "tomcat::depends_on::compute" in keys


def test_declared_names_include_platform_variables_and_policies():
    names = _pack().declared_names()
    assert {"base", "compute", "tomcat", "appname", "region", "no-public-ip"} <= names
    assert "jvm" not in names
