"""Self-signed PKI for the control plane.

Two CAs (``ca`` and ``proxy-client-ca``) are generated once per profile and
reused afterwards, so repeated starts never rotate trust roots. The three
leaf certificates are regenerated on every run so their SANs follow the
current configuration.
"""

import datetime
import ipaddress
import os
from dataclasses import dataclass, field
from pathlib import Path
from posixpath import join

import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from minicluster.command.runner import CommandRunner, FileAsset, MemoryAsset
from minicluster.constants import APISERVER_PORT, GUEST_CERTS_DIR, GUEST_KUBECONFIG
from minicluster.exceptions import CertificateError, ClusterError
from minicluster.logging_config import get_logger
from minicluster.models.cluster import KubernetesConfig
from minicluster.models.node import Node

logger = get_logger(__name__)

KEY_SIZE = 2048
CA_VALIDITY = datetime.timedelta(days=365 * 10)
LEAF_VALIDITY = datetime.timedelta(days=365)

DEFAULT_SERVICE_IP = "10.0.0.1"
LOOPBACK_IP = "127.0.0.1"

INSTALL_CERTS = (
    "ca.crt",
    "ca.key",
    "apiserver.crt",
    "apiserver.key",
    "proxy-client-ca.crt",
    "proxy-client-ca.key",
    "proxy-client.crt",
    "proxy-client.key",
)


@dataclass
class CASpec:
    name: str
    subject: str


@dataclass
class SignedCertSpec:
    name: str
    subject: str
    ca: str
    ips: list[str] = field(default_factory=list)
    names: list[str] = field(default_factory=list)
    organizations: list[str] = field(default_factory=list)
    usages: list[x509.ObjectIdentifier] = field(
        default_factory=lambda: [ExtendedKeyUsageOID.CLIENT_AUTH]
    )


CA_SPECS = (
    CASpec("ca", "minikubeCA"),
    CASpec("proxy-client-ca", "proxyClientCA"),
)


def service_cluster_ip(service_cidr: str) -> str:
    """Return the first host address of the service CIDR, used by the kubernetes service.

    Raises:
        CertificateError: If the CIDR is invalid
    """
    try:
        network = ipaddress.ip_network(service_cidr, strict=False)
    except ValueError as e:
        raise CertificateError(f"Invalid service CIDR '{service_cidr}'", str(e))
    return str(network.network_address + 1)


def alternate_dns(domain: str) -> list[str]:
    """Return the in-cluster DNS names of the kubernetes service."""
    return [
        f"kubernetes.default.svc.{domain}",
        "kubernetes.default.svc",
        "kubernetes.default",
        "kubernetes",
        "localhost",
    ]


def _unique(values: list[str]) -> list[str]:
    seen = []
    for v in values:
        if v and v not in seen:
            seen.append(v)
    return seen


def signed_cert_specs(k8s: KubernetesConfig, node_ip: str) -> list[SignedCertSpec]:
    """Return the leaf certificates to issue for a configuration."""
    apiserver_ips = _unique(
        [
            *k8s.apiserver_ips,
            node_ip,
            service_cluster_ip(k8s.service_cidr),
            DEFAULT_SERVICE_IP,
            LOOPBACK_IP,
        ]
    )
    apiserver_names = _unique(
        [*k8s.apiserver_names, k8s.apiserver_name, *alternate_dns(k8s.dns_domain)]
    )
    return [
        SignedCertSpec(
            "client", "minikube-user", ca="ca", organizations=["system:masters"]
        ),
        SignedCertSpec(
            "apiserver",
            "minikube",
            ca="ca",
            ips=apiserver_ips,
            names=apiserver_names,
            usages=[ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH],
        ),
        SignedCertSpec("proxy-client", "aggregator", ca="proxy-client-ca"),
    ]


def _can_read(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


def _write_pair(cert_path: Path, key_path: Path, cert: x509.Certificate, key) -> None:
    cert_path.parent.mkdir(parents=True, exist_ok=True)
    key_bytes = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(key_bytes)
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def generate_ca_cert(cert_path: Path, key_path: Path, subject: str) -> None:
    """Generate a self-signed CA certificate and key."""
    logger.info(f"generating CA {subject}: {cert_path}")
    key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, subject)])
    now = _now()
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + CA_VALIDITY)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(key, hashes.SHA256())
    )
    _write_pair(cert_path, key_path, cert, key)


def generate_signed_cert(
    cert_path: Path, key_path: Path, spec: SignedCertSpec, ca_cert_path: Path, ca_key_path: Path
) -> None:
    """Issue a leaf certificate signed by a CA stored on disk."""
    logger.info(f"generating {spec.name} signed cert: {cert_path}")
    ca_cert = x509.load_pem_x509_certificate(ca_cert_path.read_bytes())
    ca_key = serialization.load_pem_private_key(ca_key_path.read_bytes(), password=None)

    key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
    attrs = [x509.NameAttribute(NameOID.ORGANIZATION_NAME, o) for o in spec.organizations]
    attrs.append(x509.NameAttribute(NameOID.COMMON_NAME, spec.subject))
    now = _now()
    builder = (
        x509.CertificateBuilder()
        .subject_name(x509.Name(attrs))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + LEAF_VALIDITY)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.ExtendedKeyUsage(spec.usages), critical=False)
    )
    sans: list[x509.GeneralName] = [x509.DNSName(n) for n in spec.names]
    sans += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in spec.ips]
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)
    cert = builder.sign(ca_key, hashes.SHA256())
    _write_pair(cert_path, key_path, cert, key)


def generate_certs(k8s: KubernetesConfig, node_ip: str, cert_dir: Path) -> None:
    """Create or refresh the certificates of a profile in ``cert_dir``.

    Raises:
        CertificateError: If any certificate cannot be generated
    """
    cert_dir = Path(cert_dir)
    try:
        for ca in CA_SPECS:
            cert_path, key_path = cert_dir / f"{ca.name}.crt", cert_dir / f"{ca.name}.key"
            if _can_read(cert_path) and _can_read(key_path):
                logger.info(f"skipping {ca.name} CA generation: {cert_path}")
                continue
            generate_ca_cert(cert_path, key_path, ca.subject)

        for spec in signed_cert_specs(k8s, node_ip):
            generate_signed_cert(
                cert_dir / f"{spec.name}.crt",
                cert_dir / f"{spec.name}.key",
                spec,
                cert_dir / f"{spec.ca}.crt",
                cert_dir / f"{spec.ca}.key",
            )
    except CertificateError:
        raise
    except (OSError, ValueError, TypeError) as e:
        raise CertificateError("Error generating certificates", str(e))


def kubeconfig(cluster_name: str, server: str, cert: str, key: str, ca: str) -> str:
    """Render a kubeconfig that references certificate files by path."""
    config = {
        "apiVersion": "v1",
        "kind": "Config",
        "preferences": {},
        "clusters": [
            {"name": cluster_name, "cluster": {"server": server, "certificate-authority": ca}}
        ],
        "users": [
            {"name": cluster_name, "user": {"client-certificate": cert, "client-key": key}}
        ],
        "contexts": [
            {"name": cluster_name, "context": {"cluster": cluster_name, "user": cluster_name}}
        ],
        "current-context": cluster_name,
    }
    return yaml.safe_dump(config, default_flow_style=False, sort_keys=False)


def setup_certs(runner: CommandRunner, k8s: KubernetesConfig, node: Node, cert_dir: Path) -> None:
    """Generate the certificates of a cluster and install them on its node.

    Args:
        runner: Runner bound to the node
        k8s: Kubernetes configuration supplying SANs
        node: Node the certificates are issued for
        cert_dir: Local directory holding the profile's certificates

    Raises:
        CertificateError: If generation or installation fails
    """
    node_ip = node.ip or k8s.node_ip
    logger.info(f"Setting up certificates in {cert_dir} for IP: {node_ip}")
    generate_certs(k8s, node_ip, cert_dir)

    try:
        for name in INSTALL_CERTS:
            perms = "0600" if name.endswith(".key") else "0644"
            runner.copy(
                FileAsset(
                    target_dir=GUEST_CERTS_DIR,
                    target_name=name,
                    permissions=perms,
                    source=Path(cert_dir) / name,
                )
            )

        content = kubeconfig(
            cluster_name=k8s.node_name or node.name or k8s.cluster_name or "minikube",
            server=f"https://localhost:{APISERVER_PORT}",
            cert=join(GUEST_CERTS_DIR, "apiserver.crt"),
            key=join(GUEST_CERTS_DIR, "apiserver.key"),
            ca=join(GUEST_CERTS_DIR, "ca.crt"),
        )
        runner.copy(MemoryAsset.for_target(content, GUEST_KUBECONFIG, "0644"))
    except (ClusterError, OSError) as e:
        raise CertificateError("Error installing certificates", str(e))
