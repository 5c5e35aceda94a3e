import os

from stunclient import stun


def generate_transaction_id():
    """Random transaction id, truncated from a 16 byte draw of the OS CSPRNG
    :see: http://tools.ietf.org/html/rfc5389#section-6
    """
    return os.urandom(16)[:stun.TRANSACTION_ID_SIZE]


def split_host_port(hostport):
    """Split 'host:port' or '[v6addr]:port' into (host, port)
    """
    if hostport.startswith('['):
        host, sep, port = hostport[1:].partition(']:')
    else:
        host, sep, port = hostport.rpartition(':')
        if ':' in host:
            raise ValueError("IPv6 address must be bracketed: {!r}".format(hostport))
    if not sep or not host or not port.isdigit():
        raise ValueError("Invalid address {!r}, expected host:port".format(hostport))
    return host, int(port)
