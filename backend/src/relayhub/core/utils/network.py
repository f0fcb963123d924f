import ipaddress
import socket
from typing import Optional


def get_local_ip() -> str:
    """IPv4 hiện tại của client trên mạng LAN (không gửi gói tin nào)."""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError:
        return "127.0.0.1"


def subnet_prefix(local_ip: str) -> Optional[str]:
    """Prefix /24 dạng 'a.b.c' từ một địa chỉ IPv4, None nếu không hợp lệ."""
    try:
        address = ipaddress.IPv4Address(local_ip.strip())
    except (ipaddress.AddressValueError, AttributeError):
        return None
    return ".".join(str(address).split(".")[:3])


def host_url(host: str, path: str = "/") -> str:
    if not path.startswith("/"):
        path = "/" + path
    return f"http://{host}{path}"
