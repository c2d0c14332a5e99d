"""Core shared models."""

import base64
import binascii
import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel


class DiskRole(str, Enum):
    OS = "os"
    DATA = "data"


class SecurityType(str, Enum):
    STANDARD = "Standard"
    TRUSTED_LAUNCH = "TrustedLaunch"


class SnapshotCandidate(BaseModel):
    """The most recent eligible snapshot of one machine."""

    vm_name: str
    vm_size: str
    disk_sku: str
    disk_role: DiskRole = DiskRole.OS
    location: str
    ip_address: Optional[str] = None
    security_type: SecurityType = SecurityType.STANDARD
    snapshot_id: str
    snapshot_name: str = ""
    resource_group: str = ""
    time_created: Optional[datetime] = None

    model_config = {
        "frozen": True,
        "alias_generator": to_camel,
        "populate_by_name": True,
    }

    @field_validator("disk_role", mode="before")
    @classmethod
    def _strip_disk_suffix(cls, value):
        # tags written by the backup job say "os-disk" / "data-disk"
        if isinstance(value, str) and value.endswith("-disk"):
            return value[: -len("-disk")]
        return value

    @field_validator("ip_address", mode="before")
    @classmethod
    def _blank_ip_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class LocationBinding(BaseModel):
    network_id: str
    location: str

    model_config = {
        "frozen": True,
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class NetworkInterfaceInfo(BaseModel):
    name: str
    id: str
    ip_address: Optional[str] = None

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class MachineInfo(BaseModel):
    name: str
    id: str
    ip_address: Optional[str] = None

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


def message_payload(raw: Union[str, bytes, dict[str, Any]]) -> Any:
    """Parsed JSON body of a queue message: base64 JSON, plain JSON, or an already-parsed dict."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    text = raw.strip()
    if not text:
        raise ValueError("Empty queue message")
    if not text.startswith("{"):
        try:
            text = base64.b64decode(text, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            pass
    return json.loads(text)
