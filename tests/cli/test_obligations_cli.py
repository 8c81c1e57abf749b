"""
Operator CLI (scripts/obligations.py) against a throwaway SQLite database.
"""

import json

import pytest

from obligation_config import CONFIG_ENV_VAR, DATABASE_URL_ENV_VAR
from obligation_kernel.db.engine import reset_engine
from scripts.obligations import main


@pytest.fixture
def cli(tmp_path, monkeypatch, capsys):
    """Run the CLI against a fresh database; returns (exit_code, stdout, stderr)."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.setenv(DATABASE_URL_ENV_VAR, f"sqlite:///{tmp_path / 'cli.db'}")

    def _run(*argv: str):
        capsys.readouterr()
        code = main(list(argv))
        out, err = capsys.readouterr()
        return code, out, err

    assert _run("init-db")[0] == 0
    yield _run
    reset_engine()


@pytest.fixture
def cli_tree(cli):
    for person in ("root", "childA", "childB"):
        assert cli("add-person", person, "--name", person.title())[0] == 0
    assert cli("add-edge", "root", "childA")[0] == 0
    assert cli("add-edge", "root", "childB")[0] == 0
    return cli


class TestDistributeCommand:
    def test_distribute_json(self, cli_tree):
        code, out, _ = cli_tree("--json", "distribute", "root", "1000000.00", "--kind", "debt")

        assert code == 0
        result = json.loads(out)
        assert result["status"] == "complete"
        assert [r["inherited_portion"] for r in result["records"]] == ["500000.00", "500000.00"]

    def test_distribute_text(self, cli_tree):
        code, out, _ = cli_tree("distribute", "root", "100.00", "--kind", "credit")

        assert code == 0
        assert "DISTRIBUTION CREDIT FROM root" in out
        assert "childA" in out

    def test_supersede(self, cli_tree):
        cli_tree("distribute", "root", "100.00", "--kind", "debt")

        code, out, _ = cli_tree("--json", "supersede", "root", "300.00", "--kind", "debt")

        assert code == 0
        assert json.loads(out)["root_amount"] == "300.00"

    def test_bad_amount_reports_code(self, cli_tree):
        code, _, err = cli_tree("distribute", "root", "-1", "--kind", "debt")

        assert code == 1
        assert "NON_POSITIVE_AMOUNT" in err


class TestPayAndBalance:
    def test_pay_then_balance(self, cli_tree):
        cli_tree("distribute", "root", "1000.00", "--kind", "debt")
        cli_tree("distribute", "root", "1000.00", "--kind", "credit")

        code, out, _ = cli_tree("pay", "childA", "childB", "100.00", "--ref", "tx1")
        assert code == 0
        assert "PAYMENT tx1" in out

        code, out, _ = cli_tree("--json", "balance", "childA")
        assert code == 0
        summary = json.loads(out)
        assert summary["debt"]["outstanding"] == "400.00"
        assert summary["credit"]["outstanding"] == "500.00"

    def test_pay_unknown_person(self, cli_tree):
        code, _, err = cli_tree("pay", "ghost", "childB", "1.00", "--ref", "tx1")

        assert code == 1
        assert "UNKNOWN_PERSON" in err

    def test_rejected_overpay_is_rolled_back(self, cli_tree):
        cli_tree("distribute", "root", "10.00", "--kind", "debt")

        code, _, err = cli_tree("pay", "childA", "childB", "50.00", "--ref", "tx1", "--policy", "reject")

        assert code == 1
        assert "OVERPAY_REJECTED" in err
        _, out, _ = cli_tree("--json", "balance", "childA")
        assert json.loads(out)["debt"]["outstanding"] == "5.00"


class TestRunSummaryCommand:
    def test_run_summary(self, cli_tree):
        _, out, _ = cli_tree("--json", "distribute", "root", "10.00", "--kind", "debt")
        run_id = json.loads(out)["run_id"]

        code, out, _ = cli_tree("run-summary", run_id)

        assert code == 0
        assert "conserves_root_amount: True" in out

    def test_unknown_run(self, cli):
        code, _, err = cli("run-summary", "not-a-run")

        assert code == 1
        assert "RUN_NOT_FOUND" in err


class TestSettingsErrors:
    def test_invalid_config_file(self, cli, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("distribution:\n  max_depth: 0\n")

        code, _, err = cli("--config", str(bad), "balance", "root")

        assert code == 1
        assert "Invalid settings" in err
