from pathlib import Path
import textwrap

from typer.testing import CliRunner

from chartops.cli.app import app
import chartops.cli.app as cli_app
from chartops.helm.release import HistoryRow

runner = CliRunner()


def _plan(tmp_path: Path, text: str) -> Path:
    f = tmp_path / "plan.yaml"
    f.write_text(textwrap.dedent(text))
    return f


def test_validate_prints_levels(tmp_path: Path):
    f = _plan(tmp_path, """
        levels:
          - - name: cert-manager
              namespace: cert-manager
          - - name: ingress
            - name: dns
    """)
    result = runner.invoke(app, ["validate", str(f)])

    assert result.exit_code == 0, result.output
    assert "2 level(s)" in result.output
    assert "ingress, dns" in result.output


def test_validate_rejects_duplicates(tmp_path: Path):
    f = _plan(tmp_path, """
        levels:
          - - name: a
          - - name: a
    """)
    result = runner.invoke(app, ["validate", str(f)])
    assert result.exit_code == 2


def test_history_prints_latest_deployed(monkeypatch):
    rows = [
        HistoryRow(revision=4, updated="2026-01-02", status="deployed", chart="dns-1.2.0",
                   app_version="1.2", description="Upgrade complete"),
        HistoryRow(revision=5, updated="2026-01-03", status="failed", chart="dns-1.3.0",
                   app_version="1.3", description="Upgrade failed"),
    ]
    monkeypatch.setattr(cli_app.HelmCliRunner, "history", lambda self, name, ns: rows)

    result = runner.invoke(app, ["history", "dns", "--namespace", "kube-system"])

    assert result.exit_code == 0, result.output
    assert "revision 4" in result.output


def test_history_without_success_exits_1(monkeypatch):
    monkeypatch.setattr(cli_app.HelmCliRunner, "history", lambda self, name, ns: [])
    result = runner.invoke(app, ["history", "dns", "--namespace", "kube-system"])
    assert result.exit_code == 1
