import threading
import time
from pathlib import Path

import pytest

from chartops.deploy.context import DeployContext
from chartops.deploy.vpa import VpaReconciler
from chartops.helm.backup import BackupManager
from chartops.helm.release import HistoryRow, ReleaseInfo
from chartops.kube.kubectl import is_crash_looping
from chartops.observers.dispatcher import EventBus


class _Failures:
    """(op, name) -> [exception, remaining]; remaining None means forever."""

    def __init__(self):
        self._items = {}
        self._lock = threading.Lock()

    def add(self, op, name, exc, times=None):
        self._items[(op, name)] = [exc, times]

    def check(self, op, name):
        with self._lock:
            item = self._items.get((op, name))
            if not item:
                return
            exc, remaining = item
            if remaining is not None:
                if remaining <= 0:
                    return
                item[1] = remaining - 1
        raise exc


class FakeHelm:
    def __init__(self):
        self.calls = []
        self.releases = {}
        self.histories = {}
        self.diffs = {}
        self.delays = {}
        self.upgraded = {}
        self.killers = {}
        self.failures = _Failures()

    def install(self, name, version="1.0.0", namespace="kube-system"):
        self.releases[name] = ReleaseInfo(
            name=name, namespace=namespace, revision=1,
            chart=f"{name}-{version}", app_version=version, status="deployed",
        )
        self.histories[name] = [
            HistoryRow(revision=1, updated="now", status="deployed",
                       chart=f"{name}-{version}", app_version=version, description="Install complete"),
        ]

    def get_release(self, name, namespace):
        self.calls.append(("get_release", name))
        self.failures.check("get_release", name)
        return self.releases.get(name)

    def get_chart_version(self, name, namespace):
        rel = self.get_release(name, namespace)
        return rel.chart_version if rel else None

    def history(self, name, namespace):
        self.calls.append(("history", name))
        self.failures.check("history", name)
        return list(self.histories.get(name, []))

    def upgrade(self, chart, killer=None):
        self.calls.append(("upgrade", chart.name))
        self.killers[chart.name] = killer
        if chart.name in self.delays:
            time.sleep(self.delays[chart.name])
        self.failures.check("upgrade", chart.name)
        if chart.name not in self.releases:
            self.install(chart.name, namespace=chart.get_namespace())
        self.upgraded[chart.name] = chart

    def uninstall(self, chart, killer=None):
        self.calls.append(("uninstall", chart.name))
        self.failures.check("uninstall", chart.name)
        self.releases.pop(chart.name, None)
        self.upgraded.pop(chart.name, None)

    def uninstall_if_breaking_version(self, chart):
        self.calls.append(("uninstall_if_breaking_version", chart.name))
        threshold = chart.reinstall_threshold()
        rel = self.releases.get(chart.name)
        if threshold is None or rel is None or rel.chart_version is None or rel.chart_version >= threshold:
            return False
        self.uninstall(chart)
        return True

    def upgrade_diff(self, chart):
        self.calls.append(("diff", chart.name))
        self.failures.check("diff", chart.name)
        return self.diffs.get(chart.name, "")

    def ops_for(self, name):
        return [op for op, n in self.calls if n == name]


class FakeKubectl:
    def __init__(self):
        self.calls = []
        self.pods = {}
        self.resources = {}
        self.configmaps = {}
        self.events = "LAST SEEN   TYPE     REASON   OBJECT   MESSAGE"
        self.failures = _Failures()

    def get_pods(self, namespace, selector=None):
        self.calls.append(("get_pods", namespace, selector))
        return list(self.pods.get((namespace, selector), []))

    def delete_pod(self, namespace, name):
        self.calls.append(("delete_pod", namespace, name))

    def delete_crash_looping_pods(self, namespace, selector):
        self.calls.append(("delete_crash_looping_pods", namespace, selector))
        self.failures.check("delete_crash_looping_pods", selector)
        pods = [p for p in self.get_pods(namespace, selector) if is_crash_looping(p)]
        for p in pods:
            self.delete_pod(namespace, p["metadata"]["name"])
        return pods

    def delete_pods(self, namespace, selector):
        self.calls.append(("delete_pods", namespace, selector))

    def get_resources(self, resource, namespace):
        self.calls.append(("get_resources", resource, namespace))
        self.failures.check("get_resources", resource)
        return list(self.resources.get((resource, namespace), []))

    def patch_merge(self, kind, name, namespace, patch):
        self.calls.append(("patch_merge", kind, name, namespace, patch))
        self.failures.check("patch_merge", name)

    def apply_file(self, path, *, server_side=False, force_conflicts=False):
        self.calls.append(("apply_file", path, server_side, force_conflicts))
        self.failures.check("apply_file", path)

    def delete_crd(self, name):
        self.calls.append(("delete_crd", name))
        self.failures.check("delete_crd", name)

    def get_events(self, namespace):
        self.calls.append(("get_events", namespace))
        self.failures.check("get_events", namespace)
        return self.events

    def get_configmap(self, namespace, name):
        self.calls.append(("get_configmap", namespace, name))
        return self.configmaps[(namespace, name)]

    def rollout_restart(self, namespace, workload):
        self.calls.append(("rollout_restart", namespace, workload))

    def ops(self):
        return [c[0] for c in self.calls]


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)

    def kinds(self):
        return [e.__class__.__name__ for e in self.events]


@pytest.fixture
def helm():
    return FakeHelm()


@pytest.fixture
def kubectl():
    return FakeKubectl()


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture
def ctx(helm, kubectl, capture, tmp_path: Path):
    return DeployContext(
        helm=helm,
        kubectl=kubectl,
        backups=BackupManager(helm=helm, kubectl=kubectl, backup_dir=tmp_path / "backups"),
        vpa=VpaReconciler(helm=helm, chart_path="charts/vpa"),
        bus=EventBus([capture]),
    )
