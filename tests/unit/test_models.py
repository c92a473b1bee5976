"""Tests for cluster configuration models and Kubernetes versions."""

import pytest
from pydantic import ValidationError

from minicluster.constants import DEFAULT_KUBERNETES_VERSION, OLDEST_KUBERNETES_VERSION
from minicluster.exceptions import ConfigurationError
from minicluster.models import ClusterConfig, ExtraOption, KubernetesConfig, Node
from minicluster.version import (
    KUBEADM_INIT_PHASES,
    parse_kubernetes_version,
    resolve_kubernetes_version,
)


class TestExtraOption:
    def test_parse(self):
        option = ExtraOption.parse("kubelet.max-pods=100")

        assert option.component == "kubelet"
        assert option.key == "max-pods"
        assert option.value == "100"
        assert str(option) == "kubelet.max-pods=100"

    def test_value_may_contain_equals(self):
        option = ExtraOption.parse("apiserver.oidc-required-claim=k=v")
        assert option.value == "k=v"

    @pytest.mark.parametrize("raw", ["kubelet", "max-pods=100", "=x", "kubelet.=1"])
    def test_malformed(self, raw):
        with pytest.raises(ConfigurationError):
            ExtraOption.parse(raw)

    def test_unknown_component(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ExtraOption.parse("docker.storage-driver=overlay2")
        assert "docker" in exc_info.value.message

    def test_kubeadm_whitelist(self):
        assert ExtraOption.parse("kubeadm.ignore-preflight-errors=all").key == (
            "ignore-preflight-errors"
        )
        assert ExtraOption.parse("kubeadm.pod-network-cidr=10.1.0.0/16").key == "pod-network-cidr"
        with pytest.raises(ConfigurationError) as exc_info:
            ExtraOption.parse("kubeadm.token=abc")
        assert "token" in exc_info.value.message


class TestKubernetesConfig:
    def test_defaults(self):
        k8s = KubernetesConfig()
        assert k8s.kubernetes_version == DEFAULT_KUBERNETES_VERSION
        assert k8s.container_runtime == "docker"
        assert k8s.service_cidr == "10.96.0.0/12"

    def test_runtime_is_normalized(self):
        assert KubernetesConfig(container_runtime="CRI-O").container_runtime == "cri-o"

    def test_rejects_unknown_runtime(self):
        with pytest.raises(ValidationError):
            KubernetesConfig(container_runtime="rkt")

    def test_rejects_bad_version(self):
        with pytest.raises(ValidationError):
            KubernetesConfig(kubernetes_version="latest")

    def test_rejects_bad_apiserver_ip(self):
        with pytest.raises(ValidationError):
            KubernetesConfig(apiserver_ips=["not-an-ip"])

    def test_extra_options_for(self):
        k8s = KubernetesConfig(
            extra_options=[
                ExtraOption.parse("kubelet.max-pods=100"),
                ExtraOption.parse("apiserver.v=5"),
                ExtraOption.parse("kubelet.v=2"),
            ]
        )
        assert k8s.extra_options_for("kubelet") == {"max-pods": "100", "v": "2"}
        assert k8s.extra_options_for("scheduler") == {}


class TestClusterConfig:
    def test_primary_control_plane(self):
        cc = ClusterConfig(
            name="dev",
            nodes=[Node(name="w1"), Node(name="dev", control_plane=True)],
        )
        assert cc.primary_control_plane().name == "dev"

    def test_requires_exactly_one_control_plane(self):
        with pytest.raises(ValidationError):
            ClusterConfig(
                name="dev",
                nodes=[Node(name="a", control_plane=True), Node(name="b", control_plane=True)],
            )

    def test_missing_control_plane(self):
        cc = ClusterConfig(name="dev")
        with pytest.raises(ConfigurationError):
            cc.primary_control_plane()

    def test_empty_name(self):
        with pytest.raises(ValidationError):
            ClusterConfig(name="")

    def test_save_and_load(self, tmp_path, make_config):
        cc = make_config(cni="bridge")
        path = tmp_path / "profile" / "config.json"
        cc.save(path)

        loaded = ClusterConfig.load(path)
        assert loaded == cc


class TestNode:
    def test_defaults(self):
        node = Node()
        assert node.port == 8443
        assert node.worker is True
        assert node.control_plane is False

    @pytest.mark.parametrize("port", [0, 65536])
    def test_rejects_bad_port(self, port):
        with pytest.raises(ValidationError):
            Node(port=port)

    def test_rejects_bad_name(self):
        with pytest.raises(ValidationError):
            Node(name="-bad-")

    def test_rejects_bad_ip(self):
        with pytest.raises(ValidationError):
            Node(ip="300.1.1.1")


class TestKubernetesVersion:
    def test_parse(self):
        v = parse_kubernetes_version("v1.16.1")
        assert (v.major, v.minor, v.patch) == (1, 16, 1)
        assert v.tag == "v1.16.1"
        assert str(v) == "1.16.1"

    def test_prerelease_sorts_before_release(self):
        assert parse_kubernetes_version("v1.18.0-beta.2") < parse_kubernetes_version("v1.18.0")
        assert parse_kubernetes_version("v1.18.0-alpha.1") < parse_kubernetes_version(
            "v1.18.0-beta.2"
        )

    def test_thresholds(self):
        assert parse_kubernetes_version("v1.12.10") < KUBEADM_INIT_PHASES
        assert parse_kubernetes_version("v1.13.0") >= KUBEADM_INIT_PHASES

    @pytest.mark.parametrize("raw", ["", "1.16", "v1.x.0", "latest"])
    def test_parse_rejects(self, raw):
        with pytest.raises(ConfigurationError):
            parse_kubernetes_version(raw)


class TestResolveKubernetesVersion:
    def test_defaults(self):
        assert resolve_kubernetes_version() == DEFAULT_KUBERNETES_VERSION

    def test_reuses_existing(self):
        assert resolve_kubernetes_version("", "v1.16.1") == "v1.16.1"

    def test_adds_prefix(self):
        assert resolve_kubernetes_version("1.17.0") == "v1.17.0"

    def test_upgrade_allowed(self):
        assert resolve_kubernetes_version("v1.17.3", "v1.16.1") == "v1.17.3"

    def test_refuses_downgrade(self):
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_kubernetes_version("v1.15.0", "v1.16.1")
        assert "v1.16.1" in exc_info.value.message

    def test_refuses_too_old(self):
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_kubernetes_version("v1.10.0")
        assert OLDEST_KUBERNETES_VERSION in exc_info.value.details

    def test_ignores_unparseable_existing(self):
        assert resolve_kubernetes_version("v1.17.0", "garbage") == "v1.17.0"
