class StunError(Exception):
    pass


class DecodeError(StunError, ValueError):
    """Raised when a message or attribute can not be decoded
    """


class MalformedMessageError(DecodeError):
    """Raised when the header or a TLV record disagrees with the data length
    """


class ResponseTooBigError(StunError):
    """Raised when more than the maximum message size is received
    :see: http://tools.ietf.org/html/rfc5389#section-7
    """


class TransactionError(StunError):
    pass


class ConcurrentRequestError(TransactionError):
    """A client only supports one outstanding request at a time
    """
