"""Pytest configuration and shared fixtures."""

import pytest
from hypothesis import Verbosity, settings

from fakes import FakeCommandRunner

from minicluster.models.cluster import ClusterConfig, KubernetesConfig
from minicluster.models.node import Node

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point the minicluster state directory at a temporary directory."""
    home = tmp_path / "home" / ".minicluster"
    monkeypatch.setenv("MINICLUSTER_HOME", str(home))
    return home


@pytest.fixture
def fake_runner():
    """A FakeCommandRunner with no scripted results."""
    return FakeCommandRunner()


@pytest.fixture
def make_config():
    """Factory for cluster configurations with one control plane and N-1 workers."""

    def factory(
        driver="kvm2",
        runtime="docker",
        version="v1.17.3",
        nodes=1,
        cni="",
        name="minikube",
        **k8s_fields,
    ) -> ClusterConfig:
        members = [
            Node(name=name, ip="192.168.39.10", kubernetes_version=version, control_plane=True)
        ]
        for i in range(2, nodes + 1):
            members.append(
                Node(name=f"m{i:02d}", ip=f"192.168.39.{10 + i}", kubernetes_version=version)
            )
        k8s = KubernetesConfig(
            kubernetes_version=version,
            container_runtime=runtime,
            cni=cni,
            node_name=name,
            node_ip="192.168.39.10",
            should_load_cached_images=False,
            **k8s_fields,
        )
        return ClusterConfig(name=name, driver=driver, kubernetes_config=k8s, nodes=members)

    return factory
