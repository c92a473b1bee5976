"""Property-based tests for default CNI selection."""

from hypothesis import given
from hypothesis import strategies as st

from minicluster import cni, driver
from minicluster.models.cluster import ClusterConfig, KubernetesConfig
from minicluster.models.node import Node


@st.composite
def cluster_config(draw):
    """Generate cluster configurations across drivers, runtimes and node counts."""
    driver_name = draw(st.sampled_from(["docker", "podman", "kvm2", "virtualbox", "none"]))
    runtime = draw(st.sampled_from(["docker", "containerd", "crio"]))
    node_count = draw(st.integers(min_value=1, max_value=4))
    nodes = [Node(name="minikube", ip="192.168.39.10", control_plane=True)]
    nodes += [Node(name=f"m{i:02d}", ip=f"192.168.39.{10 + i}") for i in range(2, node_count + 1)]
    k8s = KubernetesConfig(
        container_runtime=runtime,
        enable_default_cni=draw(st.booleans()),
        should_load_cached_images=False,
    )
    return ClusterConfig(name="minikube", driver=driver_name, kubernetes_config=k8s, nodes=nodes)


@given(cc=cluster_config())
def test_default_cni_matrix(cc):
    """The default CNI follows the driver, runtime, node count and default-CNI flag."""
    k8s = cc.kubernetes_config
    chosen = cni.choose_default(cc)

    if k8s.enable_default_cni:
        expected = cni.Bridge
    elif k8s.container_runtime != "docker":
        expected = cni.KindNet if driver.is_kic(cc.driver) else cni.Bridge
    elif len(cc.nodes) > 1:
        expected = cni.KindNet
    else:
        expected = cni.Disabled

    assert type(chosen) is expected


@given(cc=cluster_config())
def test_auto_selector_matches_default(cc):
    """An empty or auto CNI selector yields the same manager as the default choice."""
    assert type(cni.new(cc)) is type(cni.choose_default(cc))

    cc.kubernetes_config.cni = "auto"
    assert type(cni.new(cc)) is type(cni.choose_default(cc))


@given(cc=cluster_config())
def test_only_disabled_has_no_cidr(cc):
    """Every manager except Disabled reports a pod CIDR."""
    manager = cni.choose_default(cc)
    assert (manager.cidr() == "") == isinstance(manager, cni.Disabled)
