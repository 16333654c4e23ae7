"""
Device capabilities and security profiles.

A device type implies a baseline set of capabilities; open ports add the
services actually seen. The security profile grades the risk of a device
type and lists the usual concerns and recommendations for it.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

RISK_HIGH = "high"
RISK_MEDIUM = "medium"
RISK_LOW = "low"

TYPE_CAPABILITIES: Dict[str, List[str]] = {
    "router": ["routing", "dhcp", "nat", "firewall"],
    "switch": ["switching", "vlan"],
    "access_point": ["wireless", "bridging"],
    "printer": ["printing", "scanning"],
    "camera": ["video_streaming", "motion_detection"],
    "iot": ["sensing", "automation"],
    "storage": ["file_sharing"],
    "media_server": ["media_streaming"],
    "tv": ["media_streaming"],
    "virtual": ["virtualization"],
}

PORT_CAPABILITIES = [
    (22, "ssh"),
    (80, "web_interface"),
    (443, "web_interface"),
    (23, "telnet"),
    (21, "ftp"),
    (25, "smtp"),
    (445, "file_sharing"),
    (3389, "remote_desktop"),
    (5900, "remote_desktop"),
]

HIGH_RISK_TYPES = {"camera", "iot", "printer"}
MEDIUM_RISK_TYPES = {"router", "access_point", "switch"}
LOW_RISK_TYPES = {"computer", "mobile", "tablet"}

TYPE_CONCERNS: Dict[str, List[str]] = {
    "camera": ["Default credentials are common", "Video may be reachable without authentication"],
    "iot": ["Firmware is rarely updated", "Often talks to cloud services directly"],
    "printer": ["Stored documents and scan-to-email credentials", "Exposed management page"],
    "router": ["Administrative interface exposed on the LAN"],
    "access_point": ["Administrative interface exposed on the LAN"],
    "switch": ["Administrative interface exposed on the LAN"],
}

CAPABILITY_CONCERNS = {
    "telnet": "Telnet sends credentials in clear text",
    "ftp": "FTP sends credentials in clear text",
}


@dataclass
class SecurityProfile:
    risk_level: str
    concerns: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


def infer_capabilities(device_type: Optional[str], open_ports: Iterable[int] = ()) -> List[str]:
    """Capabilities implied by the device type, then by open ports, without duplicates."""
    capabilities = list(TYPE_CAPABILITIES.get(device_type or "unknown", []))
    ports = set(open_ports)
    for port, capability in PORT_CAPABILITIES:
        if port in ports and capability not in capabilities:
            capabilities.append(capability)
    return capabilities


def assess_risk_level(device_type: Optional[str]) -> str:
    if device_type in HIGH_RISK_TYPES:
        return RISK_HIGH
    if device_type in MEDIUM_RISK_TYPES:
        return RISK_MEDIUM
    if device_type in LOW_RISK_TYPES:
        return RISK_LOW
    return RISK_MEDIUM


def security_profile(device_type: Optional[str], capabilities: Iterable[str] = ()) -> SecurityProfile:
    capabilities = list(capabilities)
    profile = SecurityProfile(
        risk_level=assess_risk_level(device_type),
        concerns=list(TYPE_CONCERNS.get(device_type or "unknown", [])),
    )
    for capability in capabilities:
        if capability in CAPABILITY_CONCERNS:
            profile.concerns.append(CAPABILITY_CONCERNS[capability])

    if profile.risk_level == RISK_HIGH:
        profile.recommendations.append("Update the firmware and change default credentials")
    if "telnet" in capabilities:
        profile.recommendations.append("Disable Telnet and use SSH instead")
    if device_type == "camera":
        profile.recommendations.append("Review privacy settings and access controls")
    return profile

