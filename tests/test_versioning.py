"""Tests for version resolution (semver and mutable modes)."""

from packsync.cms.models import VISIBILITY_ALT_NS_TAG, Attributes, ConfigurationItem
from packsync.models.pack import PackDefinition
from packsync.sync.versioning import (
    VersionMode,
    VersionResolver,
    patch_number,
    split_version,
)


def _version(name: str, commit: str = "", enabled: str = "true", visibility=None) -> ConfigurationItem:
    alt_ns = {VISIBILITY_ALT_NS_TAG: visibility} if visibility is not None else {}
    return ConfigurationItem(
        ns_path="/public/acme/packs/web",
        class_name="mgmt.Version",
        name=name,
        attributes=Attributes({"description": "", "commit": commit, "enabled": enabled}),
        alt_ns=alt_ns,
        ci_id=1,
    )


def _pack(**overrides) -> PackDefinition:
    return PackDefinition(name="web", description="Web pack", **overrides)


# --- Helpers ---


def test_split_version_pads_missing_segments():
    assert split_version("2") == ("2", "", "")
    assert split_version("2.1") == ("2", "1", "")
    assert split_version("2.1.3") == ("2", "1", "3")


def test_patch_number_defaults_to_zero():
    assert patch_number("2.1.7") == 7
    assert patch_number("2.1") == 0
    assert patch_number("2.1.x") == 0


# --- Semver ---


def test_semver_first_publish_starts_at_patch_zero():
    resolver = VersionResolver(default_version="2.0")
    res = resolver.resolve(_pack(), [], VersionMode.SEMVER)
    assert res.publish
    assert res.version == "2.0.0"
    assert res.signature == _pack().signature


def test_semver_default_version_patch_is_ignored():
    resolver = VersionResolver(default_version="2.0.9")
    res = resolver.resolve(_pack(), [], VersionMode.SEMVER)
    assert res.version == "2.0.0"


def test_semver_missing_minor_defaults_to_zero():
    resolver = VersionResolver(default_version="3")
    res = resolver.resolve(_pack(), [], VersionMode.SEMVER)
    assert res.version == "3.0.0"


def test_semver_changed_content_increments_patch():
    resolver = VersionResolver(default_version="2.0")
    existing = [_version("2.0.0", commit="old"), _version("2.0.1", commit="older")]
    res = resolver.resolve(_pack(), existing, VersionMode.SEMVER)
    assert res.publish
    assert res.version == "2.0.2"


def test_semver_latest_patch_is_numeric_not_lexicographic():
    resolver = VersionResolver(default_version="2.0")
    existing = [_version("2.0.9", commit="a"), _version("2.0.10", commit="b")]
    res = resolver.resolve(_pack(), existing, VersionMode.SEMVER)
    assert res.version == "2.0.11"


def test_semver_identical_content_skips():
    pack = _pack()
    resolver = VersionResolver(default_version="2.0")
    existing = [_version("2.0.0", commit="other"), _version("2.0.1", commit=pack.signature)]
    res = resolver.resolve(pack, existing, VersionMode.SEMVER)
    assert res.skip
    assert res.version == "2.0.1"
    assert res.reason == "signature match"


def test_semver_other_minor_does_not_count_as_latest_patch():
    resolver = VersionResolver()
    existing = [_version("1.1.4", commit="x")]
    res = resolver.resolve(_pack(version="1.2"), existing, VersionMode.SEMVER)
    assert res.version == "1.2.0"


def test_semver_explicit_existing_patch_skips():
    resolver = VersionResolver()
    existing = [_version("1.0.3", commit="x")]
    res = resolver.resolve(_pack(version="1.0.3"), existing, VersionMode.SEMVER)
    assert res.skip
    assert res.version == "1.0.3"
    assert res.reason == "explicit version already exists"


def test_semver_explicit_new_patch_publishes_exactly():
    resolver = VersionResolver()
    existing = [_version("1.0.3", commit="x")]
    res = resolver.resolve(_pack(version="1.0.7"), existing, VersionMode.SEMVER)
    assert res.publish
    assert res.version == "1.0.7"


def test_semver_flags_inherited_from_latest_patch():
    resolver = VersionResolver()
    existing = [
        _version("1.0.0", enabled="true"),
        _version("1.0.1", enabled="false", visibility="acme-org"),
        _version("1.1.0", enabled="true"),
    ]
    res = resolver.resolve(_pack(version="1.0"), existing, VersionMode.SEMVER)
    assert res.version == "1.0.2"
    assert res.enabled is False
    assert res.visibility == "acme-org"


def test_semver_flags_fall_back_to_lexicographic_last_of_major():
    # No patch exists for minor 2, so flags come from the name-wise last
    # version of major 1. "1.9.0" sorts after "1.10.0" by name; this mirrors
    # the established store behaviour even though it is not numeric order.
    resolver = VersionResolver()
    existing = [
        _version("1.10.0", enabled="true"),
        _version("1.9.0", enabled="false"),
        _version("2.0.0", enabled="true"),
    ]
    res = resolver.resolve(_pack(version="1.2"), existing, VersionMode.SEMVER)
    assert res.version == "1.2.0"
    assert res.enabled is False


def test_semver_ignore_skips_after_flag_inheritance():
    resolver = VersionResolver()
    existing = [_version("1.0.0", enabled="false")]
    res = resolver.resolve(_pack(version="1.0", ignore=True), existing, VersionMode.SEMVER)
    assert res.skip
    assert res.ignored
    assert res.enabled is False


# --- Mutable ---


def test_mutable_uses_major_segment_of_default():
    resolver = VersionResolver(default_version="3.2.1")
    res = resolver.resolve(_pack(), [], VersionMode.MUTABLE)
    assert res.publish
    assert res.version == "3"
    assert res.reason == "new version"


def test_mutable_uses_major_segment_of_declared_version():
    resolver = VersionResolver()
    res = resolver.resolve(_pack(version="5.1"), [], VersionMode.MUTABLE)
    assert res.version == "5"


def test_mutable_signature_match_skips():
    pack = _pack()
    resolver = VersionResolver(default_version="1")
    res = resolver.resolve(pack, [_version("1", commit=pack.signature)], VersionMode.MUTABLE)
    assert res.skip
    assert res.reason == "signature match"


def test_mutable_reload_forces_publish():
    pack = _pack()
    resolver = VersionResolver(default_version="1", reload=True)
    res = resolver.resolve(pack, [_version("1", commit=pack.signature)], VersionMode.MUTABLE)
    assert res.publish
    assert res.reason == "reload"


def test_mutable_signature_change_publishes():
    resolver = VersionResolver(default_version="1")
    res = resolver.resolve(_pack(), [_version("1", commit="stale", enabled="false")], VersionMode.MUTABLE)
    assert res.publish
    assert res.reason == "signature changed"
    assert res.enabled is False


def test_mutable_ignore_skips():
    resolver = VersionResolver()
    res = resolver.resolve(_pack(ignore=True), [], VersionMode.MUTABLE)
    assert res.skip
    assert res.ignored
