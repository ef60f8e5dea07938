import json
import subprocess
from pathlib import Path

import pytest

from chartops.config.models import ChartDescriptor, ChartSetValue, ChartValuesGenerated
from chartops.errors import ChartInvocationError
from chartops.helm.cli_runner import HelmCliRunner


class DummyCP:
    def __init__(self, rc=0, out="", err=""):
        self.returncode = rc
        self.stdout = out
        self.stderr = err


def _fake_run(calls, responses=None):
    """responses: helm sub-command -> DummyCP"""
    responses = responses or {}

    def fake_run(argv, check=False, text=False, capture_output=False, env=None):
        calls.append(argv)
        verb = next(a for a in argv[1:] if not a.startswith("-") and a not in ("/k", "ctx1"))
        return responses.get(verb, DummyCP(0))

    return fake_run


def _listed(name, chart):
    return DummyCP(0, json.dumps([{
        "name": name, "namespace": "ns", "revision": "3", "chart": chart,
        "app_version": "1.0", "status": "deployed",
    }]))


def test_upgrade_builds_expected_argv(monkeypatch, tmp_path: Path):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls))

    chart = ChartDescriptor.model_validate({
        "name": "svc",
        "path": "charts/svc",
        "namespace": "ns",
        "timeout_seconds": 900,
        "force_upgrade": True,
        "values_files": ["values/svc.yaml"],
        "values": [{"key": "replicas", "value": "2"}],
        "values_string": [{"key": "image.tag", "value": "0101"}],
    })

    h = HelmCliRunner(kubeconfig="/k", kube_context="ctx1", values_dir=tmp_path)
    h.upgrade(chart)

    argv = calls[0]
    assert argv[:5] == ["helm", "--kubeconfig", "/k", "--kube-context", "ctx1"]
    assert argv[5:9] == ["upgrade", "--install", "svc", "charts/svc"]
    assert argv[argv.index("-n") + 1] == "ns"
    assert argv[argv.index("--timeout") + 1] == "900s"
    assert {"--atomic", "--wait", "--force", "--create-namespace"} <= set(argv)
    assert argv[argv.index("-f") + 1] == "values/svc.yaml"
    assert argv[argv.index("--set") + 1] == "replicas=2"
    assert argv[argv.index("--set-string") + 1] == "image.tag=0101"


def test_generated_values_are_written_per_release(monkeypatch, tmp_path: Path):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls))

    chart = ChartDescriptor(
        name="svc",
        yaml_files_content=[ChartValuesGenerated.for_chart("svc", "replicas: 3\n")],
        values=[ChartSetValue(key="a", value="b")],
    )
    HelmCliRunner(values_dir=tmp_path).upgrade(chart)

    written = tmp_path / "svc" / "svc_override.yaml"
    assert written.read_text() == "replicas: 3\n"
    argv = calls[0]
    # files first, then --set overrides
    assert argv.index(str(written)) < argv.index("--set")


def test_upgrade_failure_raises_with_stderr(monkeypatch):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, {"upgrade": DummyCP(1, err="UPGRADE FAILED: timed out")}))

    with pytest.raises(ChartInvocationError) as ei:
        HelmCliRunner().upgrade(ChartDescriptor(name="svc"))
    assert "timed out" in ei.value.detail


def test_diff_accepts_changes_exit_code(monkeypatch):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, {"diff": DummyCP(2, out="+ replicas: 2")}))

    out = HelmCliRunner().upgrade_diff(ChartDescriptor(name="svc", path="charts/svc", namespace="qovery"))

    assert out == "+ replicas: 2"
    assert calls[0][:6] == ["helm", "diff", "upgrade", "svc", "charts/svc", "-n"]
    assert "--allow-unreleased" in calls[0]


def test_diff_error_raises(monkeypatch):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, {"diff": DummyCP(1, err='unknown command "diff"')}))

    with pytest.raises(ChartInvocationError):
        HelmCliRunner().upgrade_diff(ChartDescriptor(name="svc"))


def test_uninstall_absent_release_is_noop(monkeypatch):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, {"list": DummyCP(0, "[]")}))

    HelmCliRunner().uninstall(ChartDescriptor(name="svc"))

    assert len(calls) == 1
    assert calls[0][1] == "list"


def test_uninstall_installed_release(monkeypatch):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, {"list": _listed("svc", "svc-1.2.0")}))

    HelmCliRunner().uninstall(ChartDescriptor(name="svc", namespace="logging", timeout_seconds=30))

    assert calls[1] == ["helm", "uninstall", "svc", "-n", "logging", "--wait", "--timeout", "30s"]


def test_get_release_parses_chart_version(monkeypatch):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, {"list": _listed("cert-manager", "cert-manager-v1.12.0")}))

    h = HelmCliRunner()
    rel = h.get_release("cert-manager", "ns")

    assert rel.revision == 3
    assert str(h.get_chart_version("cert-manager", "ns")) == "1.12.0"
    assert calls[0][-4:] == ["--filter", "^cert-manager$", "-o", "json"]


def test_breaking_version_uninstalls(monkeypatch):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, {"list": _listed("svc", "svc-1.0.0")}))

    chart = ChartDescriptor(name="svc", reinstall_if_installed_version_below="2.0.0")
    assert HelmCliRunner().uninstall_if_breaking_version(chart) is True
    assert any(c[1] == "uninstall" for c in calls)


def test_recent_version_is_not_uninstalled(monkeypatch):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, {"list": _listed("svc", "svc-2.1.0")}))

    chart = ChartDescriptor(name="svc", reinstall_if_installed_version_below="2.0.0")
    assert HelmCliRunner().uninstall_if_breaking_version(chart) is False
    assert not any(c[1] == "uninstall" for c in calls)


def test_history_of_unknown_release_is_empty(monkeypatch):
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, {"history": DummyCP(1, err="Error: release: not found")}))

    assert HelmCliRunner().history("svc", "ns") == []


def test_history_rows(monkeypatch):
    rows = [
        {"revision": 1, "updated": "t1", "status": "superseded", "chart": "svc-1.0.0",
         "app_version": "1.0", "description": "Install complete"},
        {"revision": 2, "updated": "t2", "status": "deployed", "chart": "svc-1.1.0",
         "app_version": "1.1", "description": "Upgrade complete"},
    ]
    calls = []
    monkeypatch.setattr(subprocess, "run", _fake_run(calls, {"history": DummyCP(0, json.dumps(rows))}))

    history = HelmCliRunner().history("svc", "ns")

    assert [r.revision for r in history] == [1, 2]
    assert calls[0][calls[0].index("--max") + 1] == "50"


def test_missing_binary_is_invocation_error(monkeypatch):
    def fake_run(argv, check=False, text=False, capture_output=False, env=None):
        raise FileNotFoundError("helm")

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(ChartInvocationError):
        HelmCliRunner().history("svc", "ns")
