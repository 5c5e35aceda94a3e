import logging
from collections import namedtuple
from twisted.internet.protocol import DatagramProtocol
from stunclient import stun
from stunclient.stun.errors import DecodeError, MalformedMessageError
from stunclient.utils import generate_transaction_id
import struct
import socket


logger = logging.getLogger(__name__)


class StunUdpProtocol(DatagramProtocol):
    def __init__(self, reactor, interface='', port=0, software=None,
                 max_message_size=stun.MAX_MESSAGE_SIZE):
        """
        :param port: UDP port to bind to
        :param software: value of the SOFTWARE attribute, None to leave it out
        :param max_message_size: datagrams larger than this are dropped
        """
        self.reactor = reactor
        self.interface = interface
        self.port = port
        self.software = software
        self.max_message_size = max_message_size

        self._handlers = {
            # Binding handlers
            (stun.METHOD_BINDING, stun.CLASS_RESPONSE_SUCCESS):
                self._stun_binding_success,
            (stun.METHOD_BINDING, stun.CLASS_RESPONSE_ERROR):
                self._stun_binding_error,
            }

    def start(self):
        port = self.reactor.listenUDP(self.port, self, self.interface)
        return port.getHost().port

    def datagramReceived(self, datagram, addr):
        if len(datagram) > self.max_message_size:
            logger.warning("Dropping %d byte datagram from %s:%d",
                           len(datagram), *addr[:2])
            return
        if datagram and datagram[0] >> 6 == stun.MSG_STUN:
            try:
                msg = Message.decode(datagram)
            except DecodeError:
                logger.exception("Failed to decode STUN from %s:%d:", *addr[:2])
                logger.debug(datagram.hex())
            else:
                self._stun_received(msg, addr)
        else:
            logger.warning("Unknown message in datagram from %s:%d:", *addr[:2])
            logger.debug(datagram.hex())

    def _stun_received(self, msg, addr):
        handler = self._handlers.get((msg.msg_method, msg.msg_class))
        if handler:
            logger.info("%s Received STUN", self)
            logger.debug(msg.format())
            handler(msg, addr)
        else:
            logger.info("%s Received unrecognized STUN", self)
            logger.debug(msg.format())

    def _stun_unhandled(self, msg, addr):
        logger.warning("%s Unhandled message from %s:%d", self, *addr[:2])
        logger.debug(msg.format())

    def _stun_binding_success(self, msg, addr):
        self._stun_unhandled(msg, addr)

    def _stun_binding_error(self, msg, addr):
        self._stun_unhandled(msg, addr)


def padding(length):
    """Number of padding bytes required to align to 4 byte boundary
    """
    return (4 - (length % 4)) % 4


class Message(bytearray):
    """STUN message structure
    :see: http://tools.ietf.org/html/rfc5389#section-6
    """

    _struct = struct.Struct('>2HL12s')
    _ATTR_TYPE_CLS = {}

    # Padding content is ignored by receivers, zeros keep packing deterministic
    _padding = bytes

    def __init__(self, data, msg_method, msg_class, magic_cookie, transaction_id):
        bytearray.__init__(self, data)
        self.msg_method = msg_method
        self.msg_class = msg_class
        self.magic_cookie = magic_cookie
        self.transaction_id = bytes(transaction_id)
        self._attributes = []

    @classmethod
    def encode(cls, msg_method, msg_class, transaction_id=None,
               magic_cookie=stun.MAGIC_COOKIE):
        if transaction_id is None:
            transaction_id = generate_transaction_id()
        if len(transaction_id) != stun.TRANSACTION_ID_SIZE:
            raise ValueError("invalid transaction id length {} != {} (expected)".format(
                len(transaction_id), stun.TRANSACTION_ID_SIZE))
        msg_type = msg_method & 0x3eef | msg_class << 4
        header = cls._struct.pack(msg_type, 0, magic_cookie, transaction_id)
        return cls(header, msg_method, msg_class, magic_cookie, transaction_id)

    @classmethod
    def build(cls, msg_method, msg_class, transaction_id, *attributes):
        """Encode a header and pack the attributes in the given order
        """
        msg = cls.encode(msg_method, msg_class, transaction_id)
        for attr in attributes:
            msg.add_attr(attr)
        return msg

    def add_attr(self, attr):
        attr.pack(self)
        self._attributes.append(attr)
        return attr

    def add_attribute(self, attr_type, value):
        """Append a type-length-value record and update the header length
        """
        self.extend(Attribute.struct.pack(attr_type, len(value)))
        self.extend(value)
        self.extend(self._padding(padding(len(value))))
        self.length = len(self) - self._struct.size
        return RawAttribute(attr_type, bytes(value))

    def pack(self):
        return bytes(self)

    def get_attr(self, *attr_types):
        for attr in self._attributes:
            if attr.type in attr_types:
                return attr

    @property
    def attributes(self):
        return tuple(self._attributes)

    def mapped_address(self):
        """The (host, port) reflected by the server, if any
        """
        address = self.get_attr(stun.ATTR_XOR_MAPPED_ADDRESS)
        if address is None:
            address = self.get_attr(stun.ATTR_MAPPED_ADDRESS)
        if address is not None:
            return address.address, address.port

    @classmethod
    def decode(cls, data):
        """
        :see: http://tools.ietf.org/html/rfc5389#section-7.3.1
        """
        data = bytes(data)
        if len(data) < cls._struct.size:
            raise MalformedMessageError("message too short {} < {} (header)".format(
                len(data), cls._struct.size))
        if data[0] >> 6 != stun.MSG_STUN:
            raise MalformedMessageError("STUN message MUST start with 0b00")
        msg_type, msg_length, magic_cookie, transaction_id = cls._struct.unpack_from(data)
        if msg_length % 4:
            raise MalformedMessageError(
                "message length {} not aligned to 4 byte boundary".format(msg_length))
        if msg_length != len(data) - cls._struct.size:
            raise MalformedMessageError("message length {} != {} (received)".format(
                msg_length, len(data) - cls._struct.size))
        msg_type &= 0x3fff               # 00111111 11111111
        msg_method = msg_type & 0x3eef   # ..111110 11101111
        msg_class = msg_type >> 4 & 0x11 # ..000001 00010000
        msg = cls(data, msg_method, msg_class, magic_cookie, transaction_id)
        offset = cls._struct.size
        while offset < len(data):
            attr_type, attr_length = Attribute.struct.unpack_from(data, offset)
            offset += Attribute.struct.size
            if offset + attr_length > len(data):
                raise MalformedMessageError(
                    "attribute {:#06x} length {} exceeds remaining {}".format(
                        attr_type, attr_length, len(data) - offset))
            raw = RawAttribute(attr_type, data[offset:offset + attr_length])
            msg._attributes.append(cls.get_attr_cls(attr_type).unpack(msg, raw))
            offset += attr_length + padding(attr_length)
        return msg

    @classmethod
    def get_attr_cls(cls, attr_type):
        return cls._ATTR_TYPE_CLS.get(attr_type, RawAttribute)

    @classmethod
    def add_attr_cls(cls, attr_cls):
        """Decorator to add a Stun Attribute as an recognized attribute type
        """
        if attr_cls.type in cls._ATTR_TYPE_CLS:
            raise ValueError("Duplicate definition for {:#06x}".format(attr_cls.type))
        cls._ATTR_TYPE_CLS[attr_cls.type] = attr_cls
        return attr_cls

    def unknown_comp_required_attrs(self, ignored=()):
        """Returns a list of unknown comprehension-required attributes
        """
        return tuple(attr.type for attr in self._attributes
                     if attr.type not in ignored
                     and attr.required
                     and isinstance(attr, RawAttribute))

    @property
    def length(self):
        return len(self) - self._struct.size

    @length.setter
    def length(self, value):
        struct.pack_into('>H', self, 2, value)

    @classmethod
    def attr_name(cls, attr_type):
        """Get the readable name of an attribute type, if known
        """
        attr_cls = cls._ATTR_TYPE_CLS.get(attr_type)
        return attr_cls.__name__ if attr_cls else "{:#06x}".format(attr_type)

    def create_response(self, msg_class):
        return self.encode(self.msg_method, msg_class, self.transaction_id,
                           self.magic_cookie)

    def __repr__(self):
        return ("{}(method={:#05x}, class={:#04x}, length={}, "
                "magic_cookie={:#010x}, transaction_id={}, attributes={})".format(
                    type(self).__name__, self.msg_method, self.msg_class,
                    self.length, self.magic_cookie, self.transaction_id.hex(),
                    self._attributes))

    def format(self):
        string = '\n'.join([
            "{0.__class__.__name__}",
            "    method:         {0.msg_method:#05x}",
            "    class:          {0.msg_class:#04x}",
            "    length:         {0.length}",
            "    magic-cookie:   {0.magic_cookie:#010x}",
            "    transaction-id: {1}",
            "    attributes:", ""
            ]).format(self, self.transaction_id.hex())
        string += '\n'.join(["    \t" + repr(attr) for attr in self._attributes])
        return string


class Attribute(object):
    """STUN message attribute structure
    :see: http://tools.ietf.org/html/rfc5389#section-15
    """
    struct = struct.Struct('>2H')
    type = None
    label = 'attribute'

    def pack(self, msg):
        return msg.add_attribute(self.type, self.encode(msg))

    def encode(self, msg):
        raise NotImplementedError

    @classmethod
    def unpack(cls, msg, raw):
        raise NotImplementedError

    @classmethod
    def _check_length(cls, value, expected):
        if len(value) != expected:
            raise DecodeError("invalid {} length {} != {} (expected)".format(
                cls.label, len(value), expected))

    @property
    def required(self):
        """Establish wether a attribute is in the comprehension-required range
        """
        #Comprehension-required attributes are in range 0x0000-0x7fff
        return self.type < 0x8000

    def __eq__(self, other):
        return type(self) is type(other) and vars(self) == vars(other)

    def __ne__(self, other):
        return not self == other

    __hash__ = None


class RawAttribute(namedtuple('RawAttribute', 'type value')):
    """Undecoded attribute record, kept as is for unregistered types
    """
    __slots__ = ()

    def pack(self, msg):
        return msg.add_attribute(self.type, self.value)

    @classmethod
    def unpack(cls, msg, raw):
        return raw

    @property
    def required(self):
        return self.type < 0x8000

    def __repr__(self):
        return "UNKNOWN(type={:#06x}, length={}, value={})".format(
            self.type, len(self.value), self.value.hex())


class Address(Attribute):
    """Base class for all the addess STUN attributes
    :cvar _xored: Wether or not the port and address field are xored
    """
    _struct = struct.Struct('>xBH')

    FAMILY_IPv4 = 0x01
    FAMILY_IPv6 = 0x02
    # Convert to/from STUN FAMILY and AF_INET
    ftoaf = {FAMILY_IPv4: socket.AF_INET,
             FAMILY_IPv6: socket.AF_INET6}.get
    aftof = {socket.AF_INET: FAMILY_IPv4,
             socket.AF_INET6: FAMILY_IPv6}.get
    _address_size = {FAMILY_IPv4: 4,
                     FAMILY_IPv6: 16}

    _xored = False

    def __init__(self, family, port, address):
        self.family = family
        self.port = port
        self.address = address

    def encode(self, msg):
        af = Address.ftoaf(self.family)
        if af is None:
            raise ValueError("invalid address family {!r}".format(self.family))
        port = self.port
        packed_ip = socket.inet_pton(af, self.address)
        if self._xored:
            port, packed_ip = self._xor(msg, port, packed_ip)
        return self._struct.pack(self.family, port) + packed_ip

    @classmethod
    def unpack(cls, msg, raw):
        value = raw.value
        if len(value) < cls._struct.size:
            raise DecodeError("invalid {} length {} < {} (minimum)".format(
                cls.label, len(value), cls._struct.size))
        family, port = cls._struct.unpack_from(value)
        af = Address.ftoaf(family)
        if af is None:
            raise DecodeError("invalid {} family {:#04x}".format(cls.label, family))
        cls._check_length(value, cls._struct.size + cls._address_size[family])
        packed_ip = value[cls._struct.size:]
        if cls._xored:
            port, packed_ip = cls._xor(msg, port, packed_ip)
        return cls(family, port, socket.inet_ntop(af, packed_ip))

    @staticmethod
    def _xor(msg, port, packed_ip):
        # xport and xaddress are xored with the concatination of
        # the magic cookie and the transaction id (data[4:20])
        magic, = struct.unpack_from('>16s', msg, 4)
        port = port ^ magic[0] << 8 ^ magic[1]
        packed_ip = bytes(a ^ b for a, b in zip(packed_ip, magic))
        return port, packed_ip

    def __repr__(self):
        return "{}(family={:#04x}, port={}, address={!r})".format(
            type(self).__name__, self.family, self.port, self.address)


# Decorator shortcut for adding known attribute classes
attribute = Message.add_attr_cls
