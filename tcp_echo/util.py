import socket


def get_remote_addr(sock: socket.socket) -> tuple[str, int] | None:
    try:
        info = sock.getpeername()
    except OSError:
        return None
    # AF_INET6 returns a 4-tuple (host, port, flowinfo, scope_id)
    if isinstance(info, tuple) and len(info) >= 2:
        return (str(info[0]), int(info[1]))
    return None


def format_addr(addr: tuple[str, int] | None) -> str:
    if addr is None:
        return "unknown"
    host, port = addr
    if ":" in host:
        # It's an IPv6 address.
        return "[%s]:%d" % (host, port)
    return "%s:%d" % (host, port)
