"""Tests for the command functions and the CLI wiring."""

from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from scopeguard.cli import cli
from scopeguard.commands.access_cmd import parse_fields, run_decide
from scopeguard.commands.audit_cmd import run_audit
from scopeguard.commands.catalog_cmd import run_catalog
from scopeguard.commands.monitor_cmd import run_monitor
from scopeguard.commands.repair_cmd import run_repair
from scopeguard.commands.validate_cmd import run_validate
from scopeguard.commands.violations_cmd import run_history, run_violations
from scopeguard.lock import RunLock
from scopeguard.store import DirectoryStore


def add_record(settings, collection: str, record_id: str, data: dict) -> None:
    path = settings.store_path / collection / f"{record_id}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


def break_store(settings) -> None:
    add_record(settings, "serviceAgreements", "sa-2", {"buildingId": "b-gone"})
    add_record(settings, "reports", "r-2", {"branchId": "north", "buildingId": "b-gone"})


class TestAudit:
    def test_clean_store(self, settings, capsys) -> None:
        assert run_audit(settings, output_format="json") == 0
        data = json.loads(capsys.readouterr().out)
        assert data["summary"]["critical"] == 0
        assert settings.last_audit_path.exists()

    def test_critical_findings_exit_1_and_are_logged(self, settings, capsys) -> None:
        break_store(settings)
        assert run_audit(settings, output_format="json") == 1
        data = json.loads(capsys.readouterr().out)
        assert data["summary"]["byType"] == {"invalid-reference": 2}

        assert run_violations(settings, open_only=True, output_format="json") == 0
        logged = json.loads(capsys.readouterr().out)
        assert sorted(v["documentId"] for v in logged) == ["r-2", "sa-2"]

    def test_no_record(self, settings, capsys) -> None:
        break_store(settings)
        assert run_audit(settings, record=False) == 1
        assert "Critical: 2" in capsys.readouterr().out
        assert not settings.violation_log_path.exists()

    def test_overlapping_run_is_refused(self, settings, capsys) -> None:
        with RunLock(settings.lock_dir, "audit"):
            assert run_audit(settings) == 1
        assert "RunLocked" in capsys.readouterr().err

    def test_missing_store(self, settings, tmp_path: Path, capsys) -> None:
        settings.store_path = tmp_path / "nowhere"
        assert run_audit(settings) == 1
        assert "Store not found" in capsys.readouterr().err


class TestRepair:
    def test_dry_run_changes_nothing(self, settings, capsys) -> None:
        break_store(settings)
        assert run_repair(settings, output_format="json") == 0
        data = json.loads(capsys.readouterr().out)

        assert data["mode"] == "dry-run"
        assert [a["documentId"] for a in data["applied"]] == ["sa-2"]
        assert data["applied"][0]["message"].startswith("would clear reference")
        assert data["skipped"][0]["message"].startswith("skipped: no safe auto-repair")
        assert DirectoryStore(settings.store_path).get("serviceAgreements", "sa-2").get("buildingId") == "b-gone"
        assert not settings.violation_log_path.exists()
        assert not settings.operations_log_path.exists()

    def test_execute_applies_and_journals(self, settings, capsys) -> None:
        break_store(settings)
        assert run_repair(settings, execute=True) == 0
        assert "cleared reference" in capsys.readouterr().out
        assert not DirectoryStore(settings.store_path).get("serviceAgreements", "sa-2").has("buildingId")

        assert run_history(settings) == 0
        assert "clear-reference serviceAgreements/sa-2: applied" in capsys.readouterr().out

        run_violations(settings, open_only=True, output_format="json")
        assert [v["documentId"] for v in json.loads(capsys.readouterr().out)] == ["r-2"]

    def test_refused_while_audit_runs(self, settings, capsys) -> None:
        break_store(settings)
        with RunLock(settings.lock_dir, "audit"):
            assert run_repair(settings, execute=True) == 1
        assert "RunLocked" in capsys.readouterr().err
        assert not settings.violation_log_path.exists()
        assert DirectoryStore(settings.store_path).get("serviceAgreements", "sa-2").get("buildingId") == "b-gone"

    def test_scoped_repair_refused_while_unscoped_audit_runs(self, settings, capsys) -> None:
        with RunLock(settings.lock_dir, "audit"):
            assert run_repair(settings, scope="north") == 1
        assert "RunLocked" in capsys.readouterr().err


class TestMonitor:
    def test_clean_store_scores_100(self, settings, capsys) -> None:
        assert run_monitor(settings, output_format="json") == 0
        assert json.loads(capsys.readouterr().out)["score"] == 100

    def test_html_report_written(self, settings, tmp_path: Path) -> None:
        out = tmp_path / "reports" / "health.html"
        break_store(settings)
        assert run_monitor(settings, output_format="html", out=out) == 1
        assert out.read_text(encoding="utf-8").startswith("<!DOCTYPE html>")

    def test_console_report_written(self, settings, tmp_path: Path) -> None:
        out = tmp_path / "health.txt"
        run_monitor(settings, out=out)
        assert "Health score" in out.read_text(encoding="utf-8")

    def test_cached_uses_last_audit(self, settings, capsys) -> None:
        run_audit(settings, output_format="json")
        capsys.readouterr()
        break_store(settings)

        assert run_monitor(settings, output_format="json", cached=True) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["audit"]["cached"] is True
        assert data["score"] == 100

    def test_cached_without_cache_runs_fresh_audit(self, settings, capsys) -> None:
        break_store(settings)
        assert run_monitor(settings, output_format="json", cached=True) == 1
        captured = capsys.readouterr()
        assert "No cached audit" in captured.err
        assert json.loads(captured.out)["audit"]["cached"] is False


class TestValidate:
    def test_valid_record(self, settings, capsys) -> None:
        assert run_validate(settings, "reports", "r-1") == 0
        assert "is valid" in capsys.readouterr().out

    def test_invalid_record(self, settings, capsys) -> None:
        break_store(settings)
        assert run_validate(settings, "reports", "r-2", output_format="json") == 1
        data = json.loads(capsys.readouterr().out)
        assert data["valid"] is False
        assert data["issues"][0]["type"] == "invalid-reference"
        assert not settings.violation_log_path.exists()

    def test_missing_record(self, settings) -> None:
        assert run_validate(settings, "reports", "r-404") == 1


class TestDecide:
    def test_allow_stored_record(self, settings, token_factory, capsys) -> None:
        token = token_factory("admin-n", role="scoped-admin", branchId="north")
        assert run_decide(settings, token=token, collection="reports", operation="read", record_id="r-1") == 0
        assert "ALLOW" in capsys.readouterr().out

    def test_deny_other_scope(self, settings, token_factory, capsys) -> None:
        token = token_factory("admin-n", role="scoped-admin", branchId="north")
        code = run_decide(
            settings,
            token=token,
            collection="reports",
            operation="create",
            fields={"branchId": "south"},
            explain=True,
            output_json=True,
        )
        assert code == 1
        data = json.loads(capsys.readouterr().out)
        assert data["decision"] == "deny"
        assert data["principal"]["scope_id"] == "north"
        assert data["clauses"]

    def test_bad_token(self, settings, capsys) -> None:
        assert run_decide(settings, token="garbage", collection="reports", operation="read") == 1
        assert "Unauthenticated" in capsys.readouterr().err

    def test_fallback_is_reported(self, settings, token_factory, capsys) -> None:
        token = token_factory("admin-n", role="scoped-admin")
        assert run_decide(settings, token=token, collection="reports", operation="read", record_id="r-1") == 0
        assert "profile fallback" in capsys.readouterr().out

        assert run_history(settings, events=True) == 0
        assert "identity.fallback admin-n" in capsys.readouterr().out

    def test_parse_fields(self) -> None:
        assert parse_fields(["branchId=north", "note=a=b"]) == {"branchId": "north", "note": "a=b"}


def test_catalog_json(settings, capsys) -> None:
    assert run_catalog(settings, output_format="json") == 0
    data = json.loads(capsys.readouterr().out)
    assert data["scope_collection"] == "branches"


class TestCli:
    def test_audit_exit_code(self, settings) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(settings.source), "audit", "--no-record"])
        assert result.exit_code == 0

        break_store(settings)
        result = runner.invoke(cli, ["--config", str(settings.source), "audit", "--no-record"])
        assert result.exit_code == 1

    def test_bad_config_is_a_usage_error(self, tmp_path: Path) -> None:
        config = tmp_path / "broken.yml"
        config.write_text("identity: 3\n", encoding="utf-8")
        result = CliRunner().invoke(cli, ["--config", str(config), "catalog"])
        assert result.exit_code == 1
        assert "identity" in result.output

    def test_bad_field_option(self, settings) -> None:
        result = CliRunner().invoke(
            cli, ["--config", str(settings.source), "decide", "reports", "read", "--token", "t", "--field", "nope"]
        )
        assert result.exit_code == 2
