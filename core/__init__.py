"""
Core module for link-layer device management.

Includes:
- Frame codec for Ethernet/ARP, ICMP echo and TCP SYN frames
- Raw link channel shared by all senders on an interface
- Device registry of observed hosts
- Network utilities for interface, gateway and MAC resolution
"""

from .exceptions import (
    LanManagerError,
    ConfigurationError,
    TransportError,
    ChannelOpenError,
)
from .frame_codec import (
    Frame,
    FrameKind,
    ArpRequest,
    ArpReply,
    IpTraffic,
    Other,
    build_arp_request,
    build_arp_reply,
    build_icmp_echo,
    build_tcp_syn,
    parse,
)
from .network_utils import (
    InterfaceInfo,
    get_interfaces,
    get_interface_info,
    get_gateway,
    resolve_mac,
)
from .link import LinkChannel
from .registry import DeviceRegistry, DeviceRecord, DeviceStatus, NetworkInfo
