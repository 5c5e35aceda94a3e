import unittest
import socket
from twisted.internet.task import Clock
from stunclient import stun
from stunclient.stun.agent import Message, Address
from stunclient.stun.attributes import XorMappedAddress, ErrorCode
from stunclient.stun.client import StunUdpClient
from stunclient.stun.errors import TransactionError


SERVER = '198.51.100.7', 3478


class FakeDatagramTransport(object):
    addressFamily = socket.AF_INET

    def __init__(self):
        self.written = []

    def write(self, datagram, addr=None):
        self.written.append((datagram, addr))


class StunUdpClientTest(unittest.TestCase):
    def setUp(self):
        self.clock = Clock()
        self.transport = FakeDatagramTransport()
        self.client = StunUdpClient(self.clock, software="stunclient test", timeout=3.)
        self.client.makeConnection(self.transport)
        self.results = []
        self.failures = []

    def bind(self):
        d = self.client.bind(SERVER)
        d.addCallbacks(self.results.append, self.failures.append)
        datagram, addr = self.transport.written[-1]
        self.assertEqual(addr, SERVER)
        return Message.decode(datagram)

    def test_bind_request(self):
        request = self.bind()
        self.assertEqual(request.msg_method, stun.METHOD_BINDING)
        self.assertEqual(request.msg_class, stun.CLASS_REQUEST)
        self.assertEqual(str(request.get_attr(stun.ATTR_SOFTWARE)), "stunclient test")
        address = request.get_attr(stun.ATTR_XOR_MAPPED_ADDRESS)
        self.assertEqual((address.address, address.port), SERVER)

    def test_bind_success(self):
        request = self.bind()
        response = request.create_response(stun.CLASS_RESPONSE_SUCCESS)
        response.add_attr(XorMappedAddress(Address.FAMILY_IPv4, 54321, '203.0.113.5'))

        self.client.datagramReceived(response.pack(), SERVER)

        self.assertEqual(len(self.results), 1)
        self.assertEqual(self.results[0].mapped_address(), ('203.0.113.5', 54321))
        self.assertEqual(self.client._transactions, {})
        self.assertEqual(self.clock.getDelayedCalls(), [])

    def test_bind_error(self):
        request = self.bind()
        response = request.create_response(stun.CLASS_RESPONSE_ERROR)
        response.add_attr(ErrorCode(*stun.ERR_BAD_REQUEST))

        self.client.datagramReceived(response.pack(), SERVER)

        self.assertEqual(self.results, [])
        failure, = self.failures
        self.assertTrue(failure.check(TransactionError))
        self.assertEqual(failure.value.args[1].get_attr(stun.ATTR_ERROR_CODE).code, 400)

    def test_time_out(self):
        self.bind()
        self.clock.advance(2)
        self.assertEqual(self.failures, [])

        self.clock.advance(1)

        failure, = self.failures
        self.assertTrue(failure.check(TransactionError))
        self.assertEqual(str(failure.value), "Timed out")
        self.assertEqual(self.client._transactions, {})

    def test_response_for_other_transaction(self):
        self.bind()
        response = Message.encode(stun.METHOD_BINDING, stun.CLASS_RESPONSE_SUCCESS)

        with self.assertLogs('stunclient.stun.client', 'WARNING'):
            self.client.datagramReceived(response.pack(), SERVER)

        self.assertEqual(self.results, [])
        self.assertEqual(len(self.client._transactions), 1)

    def test_malformed_datagram(self):
        request = self.bind()
        datagram = request.create_response(stun.CLASS_RESPONSE_SUCCESS).pack()

        with self.assertLogs('stunclient.stun.agent', 'ERROR'):
            self.client.datagramReceived(datagram + b'\x00\x00', SERVER)

        self.assertEqual(self.results, [])

    def test_oversized_datagram(self):
        request = self.bind()
        response = request.create_response(stun.CLASS_RESPONSE_SUCCESS)
        response.add_attribute(0x8888, b'\x00' * stun.MAX_MESSAGE_SIZE)

        with self.assertLogs('stunclient.stun.agent', 'WARNING'):
            self.client.datagramReceived(response.pack(), SERVER)

        self.assertEqual(self.results, [])

    def test_non_stun_datagram(self):
        self.bind()
        with self.assertLogs('stunclient.stun.agent', 'WARNING'):
            self.client.datagramReceived(b'\x80\x00\x00\x00', SERVER)
        self.assertEqual(self.results, [])


if __name__ == "__main__":
    unittest.main()
