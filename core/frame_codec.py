"""
Ethernet frame building and parsing.

Frames are assembled from Scapy layers and serialised to raw bytes, which
fills in lengths and the IPv4, ICMP and TCP checksums. Inbound bytes are
decoded into a small closed set of frame variants; anything malformed or
irrelevant decodes to None instead of raising.
"""

import ipaddress
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from scapy.all import ARP, ICMP, IP, TCP, Ether, Raw

from config import settings

BROADCAST_MAC = settings.BROADCAST_MAC
ZERO_MAC = settings.ZERO_MAC

# ARP field values for Ethernet/IPv4 (RFC 826)
HWTYPE_ETHERNET = 1
PTYPE_IPV4 = settings.ETH_TYPE_IPV4
HWLEN = 6
PLEN = 4

ETHER_HEADER_LEN = 14
ARP_FRAME_LEN = ETHER_HEADER_LEN + 28
IPV4_MIN_FRAME_LEN = ETHER_HEADER_LEN + 20

ICMP_ECHO_REQUEST = 8
ICMP_PAYLOAD = b"abcdefghijklmnopqrstuvwabcdefghi"
TCP_SYN_WINDOW = 64240

IPAddressLike = Union[str, ipaddress.IPv4Address]


class FrameKind(Enum):
    """Kinds of frames this codec builds."""
    ARP_REQUEST = "arp_request"
    ARP_REPLY = "arp_reply"
    ICMP_ECHO = "icmp_echo"
    TCP_SYN = "tcp_syn"


@dataclass(frozen=True)
class Frame:
    """A complete Ethernet frame ready to be written to the link."""
    kind: FrameKind
    data: bytes

    def __bytes__(self) -> bytes:
        return self.data

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ArpRequest:
    """Decoded ARP who-has."""
    sender_ip: str
    sender_mac: str
    target_ip: str
    target_mac: str
    eth_source: str


@dataclass(frozen=True)
class ArpReply:
    """Decoded ARP is-at."""
    sender_ip: str
    sender_mac: str
    target_ip: str
    target_mac: str
    eth_source: str


@dataclass(frozen=True)
class IpTraffic:
    """Any IPv4 frame; only its source addresses matter for discovery."""
    source_ip: str
    source_mac: str
    destination_ip: str
    protocol: int


@dataclass(frozen=True)
class Other:
    """A well-formed frame of no interest (other EtherTypes)."""
    ethertype: int


DecodedFrame = Union[ArpRequest, ArpReply, IpTraffic, Other]


def normalize_mac(mac: Union[str, bytes]) -> str:
    """
    Normalise a MAC address to lower-case, colon separated form.

    Args:
        mac: 'AA-BB-CC-DD-EE-FF', 'aa:bb:cc:dd:ee:ff' or 6 raw bytes.

    Returns:
        MAC string such as 'aa:bb:cc:dd:ee:ff'.
    """
    if isinstance(mac, (bytes, bytearray)):
        raw = bytes(mac)
    else:
        try:
            raw = bytes.fromhex(mac.replace(":", "").replace("-", "").replace(".", ""))
        except ValueError:
            raise ValueError(f"Invalid MAC address: {mac!r}") from None
    if len(raw) != 6:
        raise ValueError(f"Invalid MAC address: {mac!r}")
    return ":".join(f"{b:02x}" for b in raw)


def _ipv4(value: IPAddressLike) -> str:
    return str(ipaddress.IPv4Address(str(value)))


def _arp(op: int, source_mac: str, source_ip: str, target_mac: str,
         target_ip: str, eth_dst: str):
    return (
        Ether(src=source_mac, dst=eth_dst, type=settings.ETH_TYPE_ARP) /
        ARP(
            hwtype=HWTYPE_ETHERNET,
            ptype=PTYPE_IPV4,
            hwlen=HWLEN,
            plen=PLEN,
            op=op,
            hwsrc=source_mac,
            psrc=source_ip,
            hwdst=target_mac,
            pdst=target_ip
        )
    )


def build_arp_request(source_mac: str, source_ip: IPAddressLike,
                      target_ip: IPAddressLike) -> Frame:
    """
    Build a broadcast ARP who-has for target_ip.

    Args:
        source_mac: Our MAC address.
        source_ip: Our IPv4 address.
        target_ip: Address to resolve.

    Returns:
        42-byte ARP request frame.
    """
    source_mac = normalize_mac(source_mac)
    packet = _arp(settings.ARP_REQUEST, source_mac, _ipv4(source_ip),
                  ZERO_MAC, _ipv4(target_ip), BROADCAST_MAC)
    return Frame(FrameKind.ARP_REQUEST, bytes(packet))


def build_arp_reply(source_mac: str, source_ip: IPAddressLike,
                    target_mac: str, target_ip: IPAddressLike) -> Frame:
    """
    Build a unicast ARP is-at telling target that source_ip is at source_mac.

    The same frame serves as a probe answer, a poisoning reply (when
    source_ip is not ours) and a corrective restoration reply.
    """
    source_mac = normalize_mac(source_mac)
    target_mac = normalize_mac(target_mac)
    packet = _arp(settings.ARP_REPLY, source_mac, _ipv4(source_ip),
                  target_mac, _ipv4(target_ip), target_mac)
    return Frame(FrameKind.ARP_REPLY, bytes(packet))


def build_icmp_echo(source_mac: str, source_ip: IPAddressLike,
                    target_ip: IPAddressLike, target_mac: str = BROADCAST_MAC,
                    identifier: Optional[int] = None,
                    sequence: int = 1) -> Frame:
    """
    Build an ICMP echo request for hosts that ignore ARP probes.

    Args:
        source_mac: Our MAC address.
        source_ip: Our IPv4 address.
        target_ip: Host to probe.
        target_mac: Link destination, broadcast when the host is unknown.
        identifier: ICMP identifier (random if None).
        sequence: ICMP sequence number.
    """
    if identifier is None:
        identifier = random.getrandbits(16)
    packet = (
        Ether(src=normalize_mac(source_mac), dst=normalize_mac(target_mac)) /
        IP(src=_ipv4(source_ip), dst=_ipv4(target_ip), ttl=64) /
        ICMP(type=ICMP_ECHO_REQUEST, code=0, id=identifier, seq=sequence) /
        Raw(load=ICMP_PAYLOAD)
    )
    return Frame(FrameKind.ICMP_ECHO, bytes(packet))


def build_tcp_syn(source_mac: str, source_ip: IPAddressLike,
                  target_ip: IPAddressLike, target_port: int,
                  target_mac: str = BROADCAST_MAC,
                  source_port: Optional[int] = None) -> Frame:
    """
    Build a TCP SYN (20-byte header, no options) to target_ip:target_port.

    Any answer, SYN/ACK or RST, proves the host is alive.
    """
    if not 0 < target_port < 65536:
        raise ValueError(f"Invalid TCP port: {target_port}")
    if source_port is None:
        source_port = random.randint(49152, 65535)
    packet = (
        Ether(src=normalize_mac(source_mac), dst=normalize_mac(target_mac)) /
        IP(src=_ipv4(source_ip), dst=_ipv4(target_ip), ttl=64) /
        TCP(
            sport=source_port,
            dport=target_port,
            flags="S",
            seq=random.getrandbits(32),
            window=TCP_SYN_WINDOW,
            options=[]
        )
    )
    return Frame(FrameKind.TCP_SYN, bytes(packet))


def _decode(data: bytes) -> Optional[DecodedFrame]:
    packet = Ether(data)
    ethertype = packet.type

    if ethertype == settings.ETH_TYPE_ARP:
        if len(data) < ARP_FRAME_LEN or not packet.haslayer(ARP):
            return None
        arp = packet[ARP]
        if (arp.hwtype != HWTYPE_ETHERNET or arp.ptype != PTYPE_IPV4 or
                arp.hwlen != HWLEN or arp.plen != PLEN):
            return None
        fields = dict(
            sender_ip=_ipv4(arp.psrc),
            sender_mac=normalize_mac(arp.hwsrc),
            target_ip=_ipv4(arp.pdst),
            target_mac=normalize_mac(arp.hwdst),
            eth_source=normalize_mac(packet.src),
        )
        if arp.op == settings.ARP_REQUEST:
            return ArpRequest(**fields)
        if arp.op == settings.ARP_REPLY:
            return ArpReply(**fields)
        return None

    if ethertype == settings.ETH_TYPE_IPV4:
        if len(data) < IPV4_MIN_FRAME_LEN or not packet.haslayer(IP):
            return None
        ip = packet[IP]
        if ip.version != 4:
            return None
        return IpTraffic(
            source_ip=_ipv4(ip.src),
            source_mac=normalize_mac(packet.src),
            destination_ip=_ipv4(ip.dst),
            protocol=ip.proto,
        )

    return Other(ethertype=ethertype)


def parse(data: bytes) -> Optional[DecodedFrame]:
    """
    Decode raw frame bytes.

    Args:
        data: Bytes as read from the link.

    Returns:
        ArpRequest, ArpReply, IpTraffic or Other; None when the frame is
        truncated, uses non-Ethernet/IPv4 ARP formats or fails to dissect.
    """
    if data is None or len(data) < ETHER_HEADER_LEN:
        return None
    try:
        return _decode(bytes(data))
    except Exception:
        return None
