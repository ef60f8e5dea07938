import json
import subprocess

import pytest

from chartops.errors import ClusterApiError
from chartops.kube.kubectl import KubectlRunner, is_crash_looping


class DummyCP:
    def __init__(self, rc=0, out="", err=""):
        self.returncode = rc
        self.stdout = out
        self.stderr = err


def _pod(name, restarts, reason):
    state = {"waiting": {"reason": reason}} if reason else {"running": {}}
    return {"metadata": {"name": name}, "status": {"containerStatuses": [{"restartCount": restarts, "state": state}]}}


def test_crash_loop_needs_reason_and_restarts():
    assert is_crash_looping(_pod("a", 5, "CrashLoopBackOff"))
    assert not is_crash_looping(_pod("b", 4, "CrashLoopBackOff"))
    assert not is_crash_looping(_pod("c", 12, "ImagePullBackOff"))
    assert not is_crash_looping(_pod("d", 12, None))
    assert not is_crash_looping({"metadata": {"name": "pending"}, "status": {}})


def test_delete_crash_looping_pods(monkeypatch):
    calls = []
    pods = {"items": [_pod("web-1", 9, "CrashLoopBackOff"), _pod("web-2", 0, None)]}

    def fake_run(argv, check=False, text=False, capture_output=False, env=None):
        calls.append(argv)
        if "get" in argv:
            return DummyCP(0, json.dumps(pods))
        return DummyCP(0)

    monkeypatch.setattr(subprocess, "run", fake_run)

    deleted = KubectlRunner(context="kind").delete_crash_looping_pods("apps", "app=web")

    assert [p["metadata"]["name"] for p in deleted] == ["web-1"]
    assert calls[0] == ["kubectl", "--context", "kind", "get", "pods", "-n", "apps", "-l", "app=web", "-o", "json"]
    assert calls[1] == ["kubectl", "--context", "kind", "delete", "pod", "web-1", "-n", "apps", "--ignore-not-found"]


def test_get_resources_list_and_single(monkeypatch):
    responses = {
        "certificate": {"kind": "List", "items": [{"kind": "Certificate"}]},
        "secret/tls": {"kind": "Secret", "metadata": {"name": "tls"}},
    }

    def fake_run(argv, check=False, text=False, capture_output=False, env=None):
        return DummyCP(0, json.dumps(responses[argv[2]]))

    monkeypatch.setattr(subprocess, "run", fake_run)
    k = KubectlRunner()

    assert k.get_resources("certificate", "ns") == [{"kind": "Certificate"}]
    assert k.get_resources("secret/tls", "ns") == [{"kind": "Secret", "metadata": {"name": "tls"}}]


def test_patch_merge_and_apply(monkeypatch):
    calls = []

    def fake_run(argv, check=False, text=False, capture_output=False, env=None):
        calls.append(argv)
        return DummyCP(0)

    monkeypatch.setattr(subprocess, "run", fake_run)
    k = KubectlRunner(kubeconfig="/k")
    k.patch_merge("Secret", "tls", "ns", {"metadata": {"labels": {"a": "1"}}})
    k.apply_file("crds/", server_side=True, force_conflicts=True)

    assert calls[0][3:8] == ["patch", "Secret", "tls", "--type", "merge"]
    assert json.loads(calls[0][9]) == {"metadata": {"labels": {"a": "1"}}}
    assert calls[1][3:] == ["apply", "-f", "crds/", "--server-side", "--force-conflicts"]


def test_failure_raises_cluster_api_error(monkeypatch):
    def fake_run(argv, check=False, text=False, capture_output=False, env=None):
        return DummyCP(1, err="Error from server (Forbidden)")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(ClusterApiError) as ei:
        KubectlRunner().delete_crd("widgets.example.io")
    assert "Forbidden" in ei.value.detail


def test_unbalanced_selector_raises_cluster_api_error(monkeypatch):
    calls = []
    monkeypatch.setattr(subprocess, "run", lambda argv, **kw: calls.append(argv) or DummyCP(0, "{}"))

    with pytest.raises(ClusterApiError) as ei:
        KubectlRunner().get_resources("secret -l 'app=x", "ns")
    assert "No closing quotation" in ei.value.detail
    assert calls == []
