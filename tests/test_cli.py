"""Tests for the packsync CLI."""

import json
import tempfile
from pathlib import Path

import yaml
from click.testing import CliRunner

from packsync.cli import main
from packsync.cms.local import LocalResourceClient
from packsync.cms.schemas import SchemaRegistry, load_schemas


def _workspace(tmpdir: str) -> dict:
    root = Path(tmpdir)
    packs = root / "packs"
    packs.mkdir()
    (packs / "base.yaml").write_text(
        yaml.dump(
            {
                "name": "base",
                "description": "Base pack",
                "resources": {"compute": {"cookbook": "compute", "attributes": {"size": "M"}}},
            }
        )
    )
    schema = root / "classes.yaml"
    schema.write_text(yaml.dump({"classes": {"mgmt.catalog.Compute": {"size": "S"}}}))
    return {"packs": str(packs), "store": str(root / "store"), "schema": str(schema)}


def _sync_args(ws: dict, *extra: str) -> list:
    return [
        "sync",
        *extra,
        "-r",
        "acme",
        "-o",
        ws["packs"],
        "--store-dir",
        ws["store"],
        "--schema",
        ws["schema"],
    ]


def test_version_option():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_sync_requires_pack_or_all():
    result = CliRunner().invoke(main, ["sync", "-r", "acme"])
    assert result.exit_code == 1
    assert "--all" in result.output


def test_sync_publishes_then_skips():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        ws = _workspace(tmpdir)
        assert runner.invoke(main, ["register", "acme", "--store-dir", ws["store"]]).exit_code == 0

        first = runner.invoke(main, _sync_args(ws, "base"))
        assert first.exit_code == 0, first.output
        assert "published" in first.output
        assert "1 published" in first.output

        schemas = SchemaRegistry.builtin()
        for schema in load_schemas(ws["schema"]):
            schemas.register(schema)
        store = LocalResourceClient(schemas=schemas, store_dir=ws["store"])
        [compute] = store.find("/public/acme/packs/base/1", "mgmt.catalog.Compute", "compute")
        assert compute.attributes["size"] == "M"

        second = runner.invoke(main, _sync_args(ws, "--all"))
        assert second.exit_code == 0, second.output
        assert "skipped" in second.output
        assert "1 skipped" in second.output


def test_sync_fails_without_registered_namespace():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        ws = _workspace(tmpdir)
        result = runner.invoke(main, _sync_args(ws, "base"))
        assert result.exit_code == 1
        assert "register" in result.output


def test_sync_fails_on_collision():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        ws = _workspace(tmpdir)
        (Path(ws["packs"]) / "copy.yaml").write_text(yaml.dump({"name": "BASE"}))
        runner.invoke(main, ["register", "acme", "--store-dir", ws["store"]])

        result = runner.invoke(main, _sync_args(ws, "--all"))
        assert result.exit_code == 1
        assert "conflict" in result.output
        assert json.loads((Path(ws["store"]) / "cis.json").read_text()) == []


def test_sync_all_reports_failed_pack():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        ws = _workspace(tmpdir)
        (Path(ws["packs"]) / "widget.yaml").write_text(yaml.dump({"name": "widget", "type": "widget"}))
        runner.invoke(main, ["register", "acme", "--store-dir", ws["store"]])

        result = runner.invoke(main, _sync_args(ws, "--all"))
        assert result.exit_code == 1
        assert "failed" in result.output
        assert "published" in result.output


def test_sync_help_keeps_v_for_version():
    result = CliRunner().invoke(main, ["sync", "--help"])
    assert result.exit_code == 0
    assert "-v, --version" in result.output
    assert "-v for info" not in result.output
