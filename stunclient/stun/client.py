from twisted.internet import defer
from stunclient.stun.agent import StunUdpProtocol, Message, Address
from stunclient.stun.errors import (StunError, ResponseTooBigError, TransactionError,
                                    ConcurrentRequestError)
from stunclient import stun
from stunclient.stun import attributes
from stunclient.utils import split_host_port
import argparse
import logging
import socket
import sys
import threading
import time


logger = logging.getLogger(__name__)

# Seconds to wait for a response in the Twisted client
DEFAULT_TIMEOUT = 5.

# (address family, socket type) for each transport name
PROTOCOLS = {
    'udp':  (socket.AF_UNSPEC, socket.SOCK_DGRAM),
    'udp4': (socket.AF_INET, socket.SOCK_DGRAM),
    'udp6': (socket.AF_INET6, socket.SOCK_DGRAM),
    'tcp':  (socket.AF_UNSPEC, socket.SOCK_STREAM),
    'tcp4': (socket.AF_INET, socket.SOCK_STREAM),
    'tcp6': (socket.AF_INET6, socket.SOCK_STREAM),
    }


def binding_request(family, port, address, transaction_id=None):
    """Binding request with the given address as XOR-MAPPED-ADDRESS

    The address is the one of the server the request is sent to. Plain
    RFC 5389 binding requests carry no address, servers ignore the attribute.
    :see: http://tools.ietf.org/html/rfc5389#section-7.1
    """
    return Message.build(stun.METHOD_BINDING, stun.CLASS_REQUEST,
                         transaction_id,
                         attributes.XorMappedAddress(family, port, address))


class Client(object):
    """Blocking STUN client over one connected UDP or TCP socket

    Reads and writes share a single deadline armed when the client is
    created. A client serves one caller at a time, a request issued while
    another is in flight fails with ConcurrentRequestError.
    """
    def __init__(self, conn, deadline=None, max_message_size=stun.MAX_MESSAGE_SIZE,
                 verify_transaction=False):
        """
        :param conn: connected socket, the client takes ownership of it
        :param deadline: seconds from now until reads and writes time out
        :param max_message_size: largest response accepted, in bytes
        :param verify_transaction: reject responses for another transaction
        """
        self._conn = conn
        self._deadline = None if deadline is None else time.monotonic() + deadline
        self.max_message_size = max_message_size
        self.verify_transaction = verify_transaction
        self._busy = threading.Lock()

    @classmethod
    def dial(cls, protocol, server, deadline, **kwargs):
        """Connect to server ('host:port') within deadline seconds
        """
        try:
            family, socktype = PROTOCOLS[protocol]
        except KeyError:
            raise ValueError("Unknown protocol {!r}".format(protocol))
        host, port = split_host_port(server)
        expires = time.monotonic() + deadline
        error = None
        for af, socktype, proto, _, sockaddr in socket.getaddrinfo(
                host, port, family, socktype):
            remaining = expires - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("Connecting to {} timed out after {}s".format(
                    server, deadline))
            conn = socket.socket(af, socktype, proto)
            try:
                conn.settimeout(remaining)
                conn.connect(sockaddr)
            except OSError as e:
                logger.info("Failed to connect to %s:%d: %s", sockaddr[0], sockaddr[1], e)
                conn.close()
                error = e
            else:
                logger.info("Connected to %s:%d over %s", sockaddr[0], sockaddr[1], protocol)
                return cls(conn, deadline, **kwargs)
        raise error or socket.gaierror("No addresses found for {}".format(server))

    def local_addr(self):
        return self._conn.getsockname()[:2]

    def remote_addr(self):
        return self._conn.getpeername()[:2]

    def close(self):
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def request(self):
        """Send a Binding Request and return the decoded response
        """
        if not self._busy.acquire(False):
            raise ConcurrentRequestError("Request already in progress on {}".format(self))
        try:
            return self._request()
        finally:
            self._busy.release()

    def _request(self):
        host, port = self.remote_addr()
        request = binding_request(Address.aftof(self._conn.family), port, host)
        logger.info("%s Sending Binding Request to %s:%d", self, host, port)
        logger.debug(request.format())

        self._arm_deadline()
        self._conn.sendall(request.pack())

        self._arm_deadline()
        data = self._conn.recv(self.max_message_size)
        if len(data) > self.max_message_size:
            raise ResponseTooBigError("received too much data {} > {} (maximum)".format(
                len(data), self.max_message_size))

        response = Message.decode(data)
        logger.info("%s Received response from %s:%d", self, host, port)
        logger.debug(response.format())
        if self.verify_transaction and response.transaction_id != request.transaction_id:
            raise TransactionError("Transaction id mismatch {} != {} (expected)".format(
                response.transaction_id.hex(), request.transaction_id.hex()), response)
        return response

    def _arm_deadline(self):
        if self._deadline is None:
            return
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError("i/o deadline exceeded")
        self._conn.settimeout(remaining)

    def __repr__(self):
        return "Client({!r})".format(self._conn)


class StunUdpClient(StunUdpProtocol):
    def __init__(self, reactor, interface='', port=0, software=None,
                 timeout=DEFAULT_TIMEOUT, max_message_size=stun.MAX_MESSAGE_SIZE):
        """
        :param timeout: seconds to wait for a response, requests are sent once
        """
        StunUdpProtocol.__init__(self, reactor, interface, port, software,
                                 max_message_size)
        self.timeout = timeout
        self._transactions = {}

    def bind(self, addr):
        """
        :param addr: (ip, port) of the STUN server
        :see: http://tools.ietf.org/html/rfc5389#section-7.1
        """
        host, port = addr
        family = Address.aftof(self.transport.addressFamily)
        request = binding_request(family, port, host)
        if self.software:
            request.add_attr(attributes.Software(self.software))
        return self.request(request, addr)

    def request(self, request, addr):
        """Send a STUN request
        """
        transaction = StunTransaction(request, addr)
        logger.info("%s Sending Request, timeout=%.1fs", transaction, self.timeout)
        logger.debug(request.format())
        self.transport.write(request.pack(), addr)
        self._transactions[transaction.transaction_id] = transaction
        transaction.timer = self.reactor.callLater(self.timeout, transaction.time_out)
        transaction.addBoth(self._transaction_completed, transaction)
        return transaction

    def _transaction_completed(self, result, transaction):
        del self._transactions[transaction.transaction_id]
        if transaction.timer.active():
            transaction.timer.cancel()
        return result

    def get_transaction(self, msg):
        return self._transactions.get(msg.transaction_id)

    def _stun_binding_success(self, msg, addr):
        """
        :see: http://tools.ietf.org/html/rfc5389#section-7.3.3
        """
        transaction = self.get_transaction(msg)
        if transaction:
            transaction.succeed(msg)
        else:
            logger.warning("%s No transaction for response from %s:%d", self, *addr[:2])

    def _stun_binding_error(self, msg, addr):
        """
        :see: http://tools.ietf.org/html/rfc5389#section-7.3.4
        """
        transaction = self.get_transaction(msg)
        if transaction:
            error_code = msg.get_attr(stun.ATTR_ERROR_CODE)
            transaction.fail(TransactionError("Binding failed: {!r}".format(error_code), msg))
        else:
            logger.warning("%s No transaction for response from %s:%d", self, *addr[:2])


class StunTransaction(defer.Deferred):
    fail = defer.Deferred.errback
    succeed = defer.Deferred.callback

    def __init__(self, request, addr):
        defer.Deferred.__init__(self)
        self.transaction_id = request.transaction_id
        self.request = request
        self.addr = addr
        self.timer = None

    def time_out(self):
        if not self.called:
            self.fail(TransactionError("Timed out"))

    def __repr__(self):
        return "StunTransaction({}, {}:{})".format(
            self.transaction_id.hex(), self.addr[0], self.addr[1])


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Send a STUN Binding Request and print the mapped address")
    parser.add_argument('server', help="STUN server as host:port")
    parser.add_argument('-p', '--protocol', default='udp', choices=sorted(PROTOCOLS))
    parser.add_argument('-t', '--timeout', type=float, default=DEFAULT_TIMEOUT,
                        help="seconds until the request times out")
    parser.add_argument('-v', '--verbose', action='store_true')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        with Client.dial(args.protocol, args.server, args.timeout) as client:
            response = client.request()
    except (OSError, ValueError, StunError) as e:
        logger.error("STUN request to %s failed: %s", args.server, e)
        return 1

    address = response.mapped_address()
    if address is None:
        logger.error("No mapped address in response from %s", args.server)
        return 1
    print("{}:{}".format(*address))
    return 0


if __name__ == '__main__':
    sys.exit(main())
