"""
Network utilities for interface management and address resolution.
"""

import ipaddress
import logging
import platform
import socket
import subprocess
from typing import Iterator, List, Optional

import netifaces
from scapy.all import ARP, Ether, conf, srp
from scapy.error import Scapy_Exception

from config import settings

logger = logging.getLogger(__name__)


class InterfaceInfo:
    """Information about a network interface."""

    def __init__(self, name: str, description: str = "", mac: str = "",
                 ip: str = "", netmask: str = "", gateway: str = ""):
        self.name = name
        self.description = description
        self.mac = mac
        self.ip = ip
        self.netmask = netmask
        self.gateway = gateway

    def __repr__(self):
        return (f"InterfaceInfo(name={self.name!r}, mac={self.mac!r}, "
                f"ip={self.ip!r}, netmask={self.netmask!r}, "
                f"gateway={self.gateway!r})")

    def is_valid(self) -> bool:
        """Check if interface has required attributes for ARP operations."""
        return bool(self.mac and self.ip and self.netmask)

    @property
    def network(self) -> ipaddress.IPv4Network:
        """The IPv4 subnet the interface is bound to."""
        return ipaddress.IPv4Interface(f"{self.ip}/{self.netmask}").network

    @property
    def prefix_length(self) -> int:
        return self.network.prefixlen

    @property
    def cidr(self) -> str:
        """Network range in CIDR notation, e.g. '192.168.1.0/24'."""
        return str(self.network)


def get_interfaces() -> List[InterfaceInfo]:
    """
    Get list of all network interfaces with their information.

    Returns:
        List of InterfaceInfo objects for each interface.
    """
    interfaces = []
    gws = netifaces.gateways()
    default_gw = gws.get('default', {}).get(netifaces.AF_INET)

    for iface_name in netifaces.interfaces():
        info = InterfaceInfo(name=iface_name)
        addrs = netifaces.ifaddresses(iface_name)

        # MAC address
        if netifaces.AF_LINK in addrs:
            link_info = addrs[netifaces.AF_LINK][0]
            info.mac = link_info.get('addr', '')

        # IPv4 address and netmask
        if netifaces.AF_INET in addrs:
            inet_info = addrs[netifaces.AF_INET][0]
            info.ip = inet_info.get('addr', '')
            info.netmask = inet_info.get('netmask', '')

        # Gateway
        if default_gw and default_gw[1] == iface_name:
            info.gateway = default_gw[0]

        interfaces.append(info)

    return interfaces


def get_interface_info(interface: str) -> Optional[InterfaceInfo]:
    """
    Get detailed information about a specific interface.

    Args:
        interface: Interface name (e.g., 'eth0', 'en0').

    Returns:
        InterfaceInfo object or None if interface not found.
    """
    for iface in get_interfaces():
        if iface.name == interface:
            return iface
    return None


def select_default_interface() -> Optional[InterfaceInfo]:
    """
    Pick the interface carrying the default route, else the first usable
    non-loopback interface with an IPv4 address.
    """
    candidates = [
        iface for iface in get_interfaces()
        if iface.is_valid() and not iface.ip.startswith("127.")
    ]
    for iface in candidates:
        if iface.gateway:
            return iface
    return candidates[0] if candidates else None


def get_gateway(interface: Optional[str] = None) -> Optional[str]:
    """
    Get the default gateway IP address.

    Args:
        interface: Optional interface name to get gateway for.

    Returns:
        Gateway IP address string or None.
    """
    gws = netifaces.gateways()
    if 'default' in gws and netifaces.AF_INET in gws['default']:
        gw_info = gws['default'][netifaces.AF_INET]
        if interface is None or gw_info[1] == interface:
            return gw_info[0]

    # Non-default routes through this interface
    for gw_ip, gw_iface, _is_default in gws.get(netifaces.AF_INET, []):
        if interface is None or gw_iface == interface:
            return gw_ip

    return None


def subnet_hosts(ip: str, netmask: str) -> Iterator[str]:
    """
    Yield every usable host address of the subnet, except ip itself.

    Args:
        ip: Our IPv4 address.
        netmask: Dotted netmask or prefix length.
    """
    own = ipaddress.IPv4Address(ip)
    network = ipaddress.IPv4Interface(f"{ip}/{netmask}").network
    for host in network.hosts():
        if host != own:
            yield str(host)


def resolve_mac(ip_address: str, interface: Optional[str] = None,
                timeout: float = 2.0) -> Optional[str]:
    """
    Resolve an IP address to its MAC address using ARP.

    Args:
        ip_address: Target IP address.
        interface: Network interface to use.
        timeout: ARP request timeout in seconds.

    Returns:
        MAC address string or None if resolution failed.
    """
    try:
        arp_request = Ether(dst=settings.BROADCAST_MAC) / ARP(pdst=ip_address)
        answered, _ = srp(arp_request, iface=interface or conf.iface,
                          timeout=timeout, verbose=False)
        if answered:
            return answered[0][1].hwsrc.lower()
    except (OSError, Scapy_Exception) as e:
        logger.debug(f"ARP resolution of {ip_address} failed: {e}")

    return check_arp_cache(ip_address)


def check_arp_cache(ip_address: str) -> Optional[str]:
    """Check the system ARP cache for a MAC address."""
    system = platform.system().lower()

    try:
        if system == 'linux':
            result = subprocess.run(['ip', 'neigh', 'show', ip_address],
                                    capture_output=True, text=True, timeout=3)
            parts = result.stdout.split()
            if 'lladdr' in parts:
                idx = parts.index('lladdr')
                return parts[idx + 1].lower()
        elif system in ('darwin', 'windows'):
            result = subprocess.run(['arp', '-a', ip_address] if system == 'windows'
                                    else ['arp', '-n', ip_address],
                                    capture_output=True, text=True, timeout=3)
            for line in result.stdout.splitlines():
                if ip_address not in line:
                    continue
                for part in line.split():
                    candidate = part.replace('-', ':')
                    if candidate.count(':') == 5:
                        return candidate.lower()
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"ARP cache lookup for {ip_address} failed: {e}")

    return None


def lookup_vendor(mac: str) -> str:
    """Best-effort vendor name from Scapy's manufacturer database."""
    manufdb = getattr(conf, "manufdb", None)
    if manufdb is None:
        return settings.UNKNOWN
    try:
        vendor = manufdb._get_manuf(mac)
    except (AttributeError, KeyError, ValueError):
        return settings.UNKNOWN
    # The database echoes the MAC back when the OUI is unknown
    if not vendor or vendor.lower() == mac.lower():
        return settings.UNKNOWN
    return vendor


def lookup_hostname(ip_address: str) -> str:
    """Best-effort reverse DNS name."""
    try:
        return socket.gethostbyaddr(ip_address)[0]
    except (OSError, UnicodeError):
        return settings.UNKNOWN


def print_interfaces():
    """Print available network interfaces in a formatted way."""
    interfaces = get_interfaces()

    print("\nAvailable Network Interfaces:")
    print("-" * 70)

    for i, iface in enumerate(interfaces, 1):
        print(f"{i}. {iface.name}")
        if iface.mac:
            print(f"   MAC: {iface.mac}")
        if iface.ip:
            print(f"   IP: {iface.ip}/{iface.netmask}" if iface.netmask else f"   IP: {iface.ip}")
        if iface.gateway:
            print(f"   Gateway: {iface.gateway}")
        print()


if __name__ == "__main__":
    print_interfaces()
