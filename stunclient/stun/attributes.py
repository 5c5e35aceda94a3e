from stunclient.stun.agent import attribute, Address, Attribute
from stunclient.stun.errors import DecodeError
from stunclient import stun
import struct


@attribute
class MappedAddress(Address):
    """
    :see: http://tools.ietf.org/html/rfc5389#section-15.1
    """
    type = stun.ATTR_MAPPED_ADDRESS
    label = 'mapped address'
    _xored = False


@attribute
class ErrorCode(Attribute):
    """
    :see: http://tools.ietf.org/html/rfc5389#section-15.6
    """
    type = stun.ATTR_ERROR_CODE
    label = 'error code'
    _struct = struct.Struct('>2x2B')

    def __init__(self, err_class, err_number, reason):
        self.err_class = err_class
        self.err_number = err_number
        self.code = err_class * 100 + err_number
        self.reason = reason

    def encode(self, msg):
        return self._struct.pack(self.err_class, self.err_number) + self.reason.encode('utf8')

    @classmethod
    def unpack(cls, msg, raw):
        value = raw.value
        if len(value) < cls._struct.size:
            raise DecodeError("invalid {} length {} < {} (minimum)".format(
                cls.label, len(value), cls._struct.size))
        err_class, err_number = cls._struct.unpack_from(value)
        try:
            reason = value[cls._struct.size:].decode('utf8')
        except UnicodeDecodeError as e:
            raise DecodeError("invalid {} reason: {}".format(cls.label, e))
        return cls(err_class & 0b111, err_number, reason)

    def __repr__(self):
        return "ERROR-CODE(code={}, reason={!r})".format(self.code, self.reason)


@attribute
class UnknownAttributes(Attribute):
    """
    :see: http://tools.ietf.org/html/rfc5389#section-15.9
    """
    type = stun.ATTR_UNKNOWN_ATTRIBUTES
    label = 'unknown attributes'

    def __init__(self, types):
        self.types = tuple(types)

    def encode(self, msg):
        return struct.pack('>{}H'.format(len(self.types)), *self.types)

    @classmethod
    def unpack(cls, msg, raw):
        length = len(raw.value)
        if length % 2:
            raise DecodeError("invalid {} length {}, not a multiple of 2".format(
                cls.label, length))
        return cls(struct.unpack('>{}H'.format(length // 2), raw.value))

    def __repr__(self):
        return "UNKNOWN-ATTRIBUTES({})".format(
            str(["{:#06x}".format(t) for t in self.types]))


@attribute
class Lifetime(Attribute):
    """TURN STUN LIFETIME attribute
    :see: http://tools.ietf.org/html/rfc5766#section-14.2
    """
    type = stun.ATTR_LIFETIME
    label = 'lifetime'
    _struct = struct.Struct('>L')

    def __init__(self, duration):
        self.duration = duration

    def encode(self, msg):
        return self._struct.pack(self.duration)

    @classmethod
    def unpack(cls, msg, raw):
        cls._check_length(raw.value, cls._struct.size)
        duration, = cls._struct.unpack(raw.value)
        return cls(duration)

    def __repr__(self):
        return "LIFETIME(duration={})".format(self.duration)


@attribute
class XorMappedAddress(Address):
    """
    :see: http://tools.ietf.org/html/rfc5389#section-15.2
    """
    type = stun.ATTR_XOR_MAPPED_ADDRESS
    label = 'xor mapped address'
    _xored = True


@attribute
class Software(Attribute):
    """
    :see: http://tools.ietf.org/html/rfc5389#section-15.10
    """
    type = stun.ATTR_SOFTWARE
    label = 'software'
    _max_length = 763 # less than 128 characters can be up to 763 bytes

    def __init__(self, software):
        self.software = software

    def encode(self, msg):
        value = self.software.encode('utf8')
        if len(value) > self._max_length:
            raise ValueError("{} too long {} > {} (maximum)".format(
                self.label, len(value), self._max_length))
        return value

    @classmethod
    def unpack(cls, msg, raw):
        try:
            return cls(raw.value.decode('utf8'))
        except UnicodeDecodeError as e:
            raise DecodeError("invalid {}: {}".format(cls.label, e))

    def __str__(self):
        return self.software

    def __repr__(self):
        return "SOFTWARE({!r})".format(self.software)


@attribute
class AlternateServer(Address):
    """
    :see: http://tools.ietf.org/html/rfc5389#section-15.11
    """
    type = stun.ATTR_ALTERNATE_SERVER
    label = 'alternate server'
