"""
Device Discovery

This package finds hosts on the local subnet and keeps their liveness
current.

Modules:
- DiscoveryEngine: ARP/ICMP/TCP sweeps plus the reply listener
- LivenessMonitor: periodic demotion of silent devices
"""

from discovery.scanner import DiscoveryEngine, ProbeMode, ScanState, SweepResult
from discovery.liveness import LivenessMonitor

__all__ = [
    'DiscoveryEngine',
    'ProbeMode',
    'ScanState',
    'SweepResult',
    'LivenessMonitor',
]
