"""
ARP Anomaly Detection

Modules:
- ProxyARPDetector: warns when the gateway answers ARP for most hosts
"""

from defenses.proxy_arp_detector import ProxyARPDetector, ProxyARPWarning

__all__ = [
    'ProxyARPDetector',
    'ProxyARPWarning',
]
