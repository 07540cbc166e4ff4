"""Choosing listen addresses, creating listeners and describing them."""

from __future__ import annotations

import ipaddress
import socket
from typing import Sequence, Union

import psutil

from dufs.args import BindAddr

IpLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]


def interface_addrs() -> tuple[list[BindAddr], list[BindAddr]]:
    """Addresses of the local network interfaces, split into IPv4 and IPv6."""
    ipv4_addrs: list[BindAddr] = []
    ipv6_addrs: list[BindAddr] = []
    try:
        interfaces = psutil.net_if_addrs()
    except OSError as exc:
        raise OSError("Failed to get local interface addresses") from exc
    for addresses in interfaces.values():
        for entry in addresses:
            if entry.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            try:
                ip = ipaddress.ip_address(entry.address.split("%", 1)[0])
            except ValueError:
                continue
            if ip.version == 4:
                ipv4_addrs.append(BindAddr(ip=ip))
            else:
                ipv6_addrs.append(BindAddr(ip=ip))
    return ipv4_addrs, ipv6_addrs


def check_addrs(
    addrs: Sequence[BindAddr],
    ipv4_addrs: Sequence[BindAddr],
    ipv6_addrs: Sequence[BindAddr],
) -> tuple[list[BindAddr], list[BindAddr]]:
    """Return the addresses to bind and the sorted addresses to announce.

    IP families without any local interface are dropped; unspecified addresses
    are announced as every interface address of their family.
    """
    new_addrs: list[BindAddr] = []
    print_addrs: list[BindAddr] = []
    for bind_addr in addrs:
        ip = bind_addr.ip
        if ip is None:
            new_addrs.append(bind_addr)
            print_addrs.append(bind_addr)
            continue
        family = ipv4_addrs if ip.version == 4 else ipv6_addrs
        if not family:
            continue
        new_addrs.append(bind_addr)
        if ip.is_unspecified:
            print_addrs.extend(family)
        else:
            print_addrs.append(bind_addr)
    print_addrs.sort()
    return new_addrs, print_addrs


def _url(bind_addr: BindAddr, port: int, uri_prefix: str, tls: bool) -> str:
    ip = bind_addr.ip
    if ip is None:
        return str(bind_addr.socket_path)
    host = f"{ip}:{port}" if ip.version == 4 else f"[{ip}]:{port}"
    protocol = "https" if tls else "http"
    return f"{protocol}://{host}{uri_prefix}"


def format_listening(
    print_addrs: Sequence[BindAddr], port: int, uri_prefix: str, tls: bool
) -> str:
    """The start-up message listing the URLs the server answers on."""
    urls = [_url(addr, port, uri_prefix, tls) for addr in print_addrs]
    if len(urls) == 1:
        return f"Listening on {urls[0]}"
    info = "\n".join(f"  {url}" for url in urls)
    return f"Listening on:\n{info}\n"


def create_listener(ip: IpLike, port: int) -> socket.socket:
    """A non-blocking TCP socket listening on ``ip:port``."""
    address = ipaddress.ip_address(ip) if isinstance(ip, str) else ip
    family = socket.AF_INET6 if address.version == 6 else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM, socket.IPPROTO_TCP)
    try:
        if family == socket.AF_INET6:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((str(address), port))
        sock.listen(1024)
        sock.setblocking(False)
    except OSError as exc:
        sock.close()
        raise OSError(exc.errno, f"Failed to bind `{address}:{port}`") from exc
    return sock