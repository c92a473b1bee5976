"""Data models for cluster members."""

import ipaddress
import re

from pydantic import BaseModel, field_validator

from minicluster.constants import APISERVER_PORT


class Node(BaseModel):
    """One control-plane or worker member of a cluster."""

    name: str = ""
    ip: str = ""
    port: int = APISERVER_PORT
    kubernetes_version: str = ""
    control_plane: bool = False
    worker: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate node names follow DNS naming conventions (empty allowed)."""
        if not v:
            return v
        if len(v) > 253:
            raise ValueError("name cannot exceed 253 characters")
        # RFC 1123 hostname validation
        hostname_pattern = re.compile(
            r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$", re.IGNORECASE
        )
        if not hostname_pattern.match(v):
            raise ValueError(
                f"name '{v}' must contain only alphanumeric characters, "
                "hyphens, and dots, and cannot start or end with a hyphen"
            )
        return v

    @field_validator("ip")
    @classmethod
    def validate_ip(cls, v: str) -> str:
        """Validate the node IP, which stays empty until the host is running."""
        if v:
            ipaddress.ip_address(v)
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate the API server port is a usable TCP port."""
        if not 0 < v < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {v}")
        return v
