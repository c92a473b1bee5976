"""kubeadm-based cluster bootstrapper."""

from minicluster.bootstrapper.kubeadm import Bootstrapper, ClientFactory, default_client_factory

__all__ = ["Bootstrapper", "ClientFactory", "default_client_factory"]
