"""Tests for CNI selection and installation."""

import json
import logging

import pytest
import yaml

from fakes import FakeCommandRunner

from minicluster import cni
from minicluster.constants import (
    CNI_MANIFEST_PATH,
    DEFAULT_CNI_CONFIG_PATH,
    FLANNEL_IMAGE,
    OVERLAY_IMAGE,
)
from minicluster.exceptions import CNIError


class TestNew:
    @pytest.mark.parametrize(
        "selector,cls",
        [
            ("false", cni.Disabled),
            ("kindnet", cni.KindNet),
            ("true", cni.KindNet),
            ("bridge", cni.Bridge),
            ("flannel", cni.Flannel),
        ],
    )
    def test_named(self, make_config, selector, cls):
        assert isinstance(cni.new(make_config(cni=selector)), cls)

    def test_custom_manifest(self, make_config, tmp_path):
        manifest = tmp_path / "calico.yaml"
        manifest.write_text("kind: DaemonSet\n")

        manager = cni.new(make_config(cni=str(manifest)))

        assert isinstance(manager, cni.Custom)
        assert str(manager) == f"Custom ({manifest})"

    def test_missing_custom_manifest(self, make_config, tmp_path):
        with pytest.raises(CNIError) as exc_info:
            cni.new(make_config(cni=str(tmp_path / "missing.yaml")))
        assert "missing.yaml" in exc_info.value.message

    def test_non_cni_network_plugin(self, make_config):
        manager = cni.new(make_config(cni="bridge", network_plugin="kubenet"))
        assert isinstance(manager, cni.Disabled)

    @pytest.mark.parametrize("selector", ["", "auto"])
    def test_auto_uses_default(self, make_config, selector):
        assert isinstance(cni.new(make_config(cni=selector)), cni.Disabled)


class TestChooseDefault:
    def test_enable_default_cni(self, make_config):
        cc = make_config(runtime="containerd", driver="docker", enable_default_cni=True)
        assert isinstance(cni.choose_default(cc), cni.Bridge)

    def test_kic_with_cri_runtime(self, make_config):
        cc = make_config(driver="podman", runtime="crio")
        assert isinstance(cni.choose_default(cc), cni.KindNet)

    def test_vm_with_cri_runtime(self, make_config):
        assert isinstance(cni.choose_default(make_config(runtime="containerd")), cni.Bridge)

    def test_docker_multinode(self, make_config):
        assert isinstance(cni.choose_default(make_config(nodes=3)), cni.KindNet)

    def test_docker_single_node(self, make_config):
        assert isinstance(cni.choose_default(make_config(driver="docker")), cni.Disabled)


class TestApply:
    def test_bridge_writes_netconf_on_every_node(self, make_config):
        cp, worker = FakeCommandRunner(), FakeCommandRunner()

        cni.Bridge(make_config(pod_cidr="10.200.0.0/16")).apply(cp, [worker])

        for runner in (cp, worker):
            conf = json.loads(runner.copies[DEFAULT_CNI_CONFIG_PATH])
            assert conf["ipam"]["subnet"] == "10.200.0.0/16"
            assert conf["ipam"]["routes"] == [{"dst": "0.0.0.0/0"}]
            assert runner.commands == []

    def test_kindnet_applies_manifest(self, make_config):
        runner = FakeCommandRunner()

        cni.KindNet(make_config()).apply(runner, [])

        docs = list(yaml.safe_load_all(runner.copies[CNI_MANIFEST_PATH]))
        daemonset = next(d for d in docs if d and d["kind"] == "DaemonSet")
        container = daemonset["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == OVERLAY_IMAGE
        assert runner.commands == [
            [
                "sudo",
                "/var/lib/minikube/binaries/v1.17.3/kubectl",
                "apply",
                "--kubeconfig=/var/lib/minikube/kubeconfig",
                "-f",
                CNI_MANIFEST_PATH,
            ]
        ]

    def test_flannel_uses_pod_cidr(self, make_config):
        manifest = cni.Flannel(make_config()).manifest()
        assert "10.244.0.0/16" in manifest
        assert FLANNEL_IMAGE in manifest

    def test_custom_copies_manifest(self, make_config, tmp_path):
        manifest = tmp_path / "net.yaml"
        manifest.write_text("kind: DaemonSet\n")
        runner = FakeCommandRunner()

        cni.Custom(make_config(), manifest).apply(runner, [])

        assert runner.copies[CNI_MANIFEST_PATH] == b"kind: DaemonSet\n"
        assert runner.ran("apply --kubeconfig=/var/lib/minikube/kubeconfig")

    def test_apply_failure(self, make_config):
        runner = FakeCommandRunner()
        runner.fail_on("kubectl apply", stderr="connection refused")

        with pytest.raises(CNIError) as exc_info:
            cni.KindNet(make_config()).apply(runner, [])
        assert "connection refused" in exc_info.value.details

    def test_disabled_warns_for_kic_cri(self, make_config, caplog):
        with caplog.at_level(logging.WARNING):
            cni.Disabled(make_config(driver="docker", runtime="containerd", nodes=2)).apply(
                FakeCommandRunner(), []
            )
        assert "expect networking issues" in caplog.text
        assert "multi-node" in caplog.text

    def test_disabled_has_no_cidr(self, make_config):
        assert cni.Disabled(make_config()).cidr() == ""
        assert cni.KindNet(make_config()).cidr() == "10.244.0.0/16"
