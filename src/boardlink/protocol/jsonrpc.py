"""
JSON-RPC 2.0 messages exchanged with the relay.

Each websocket message carries one JSON object. Requests from this side carry an id and are
answered by a response with the same id. Messages carrying a method are calls from the relay;
those without an id are notifications.
"""
import itertools
import json
import logging

from boardlink.conduit.base import Conduit
from boardlink.protocol.asynchronous import BaseAsyncProtocolHandler, ProtocolError, Request, Response

logger = logging.getLogger(__name__)

JSONRPC_VERSION = '2.0'

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601


class RpcError(Exception):
    """ The relay rejected a call. """

    def __init__(self, code, message, data=None):
        super().__init__(code, message, data)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self):
        return "%s (%s)" % (self.message, self.code)

    @staticmethod
    def from_error(error):
        """
        builds an RpcError from the error member of a response

        >>> str(RpcError.from_error({'code': -32601, 'message': 'Method not found'}))
        'Method not found (-32601)'
        >>> str(RpcError.from_error('port busy'))
        'port busy (None)'
        """
        if isinstance(error, dict):
            return RpcError(error.get('code'), error.get('message'), error.get('data'))
        return RpcError(None, str(error))


class JsonRpcRequest(Request):
    """ a call from this side that expects a response """

    def __init__(self, request_id, method, params=None):
        self.id = request_id
        self.method = method
        self.params = params

    def to_message(self):
        message = {'jsonrpc': JSONRPC_VERSION, 'method': self.method, 'id': self.id}
        if self.params is not None:
            message['params'] = self.params
        return json.dumps(message)

    @property
    def response_keys(self):
        return [self.id]


class JsonRpcNotification(JsonRpcRequest):
    """ a call from this side that has no response """

    def __init__(self, method, params=None):
        super().__init__(None, method, params)

    def to_message(self):
        message = {'jsonrpc': JSONRPC_VERSION, 'method': self.method}
        if self.params is not None:
            message['params'] = self.params
        return json.dumps(message)

    @property
    def response_keys(self):
        return []


class JsonRpcResponse(Response):
    """ the reply to a call made from this side """

    def __init__(self, request_id, result=None, error=None):
        self.id = request_id
        self.result = result
        self.error = error

    @property
    def response_key(self):
        return self.id

    @property
    def value(self):
        return RpcError.from_error(self.error) if self.error is not None else self.result


class JsonRpcIncoming(Response):
    """ a call or notification initiated by the relay """

    def __init__(self, method, params=None, request_id=None):
        self.method = method
        self.params = params
        self.id = request_id

    @property
    def is_notification(self):
        return self.id is None

    @property
    def response_key(self):
        return None

    @property
    def value(self):
        return self.params


def decode_message(message):
    """
    decodes a single JSON-RPC message, given as text or as UTF-8 bytes

    >>> decode_message('{"jsonrpc": "2.0", "id": 3, "result": [1]}').value
    [1]
    >>> decode_message('{"jsonrpc": "2.0", "method": "ping"}').is_notification
    True
    """
    try:
        if isinstance(message, bytes):
            message = message.decode('utf-8')
        decoded = json.loads(message)
    except ValueError as e:
        raise ProtocolError("message is not JSON: %r" % (message,)) from e
    if not isinstance(decoded, dict):
        raise ProtocolError("message is not a JSON object: %r" % (message,))
    if 'method' in decoded:
        return JsonRpcIncoming(decoded['method'], decoded.get('params'), decoded.get('id'))
    if 'id' not in decoded:
        raise ProtocolError("message has neither method nor id: %r" % (message,))
    return JsonRpcResponse(decoded['id'], decoded.get('result'), decoded.get('error'))


class JsonRpcProtocolHandler(BaseAsyncProtocolHandler):
    """
    Sends JSON-RPC requests over a conduit and correlates the responses by id.

    Calls received from the relay are answered with "Method not found" since this side exposes no methods.
    Notifications received are passed to the unmatched response handlers.
    """

    def __init__(self, conduit: Conduit):
        super().__init__(conduit)
        self._ids = itertools.count()

    def call(self, method, params=None):
        """
        :return: a FutureResponse that completes with the call result, or with an RpcError.
        """
        return self.async_request(JsonRpcRequest(next(self._ids), method, params))

    def notify(self, method, params=None):
        self._stream_request(JsonRpcNotification(method, params))

    def _decode_response(self, message):
        return decode_message(message)

    def process_response(self, response):
        if isinstance(response, JsonRpcIncoming) and not response.is_notification:
            self._reply_unknown_method(response)
            return response
        return super().process_response(response)

    def _reply_unknown_method(self, call: JsonRpcIncoming):
        logger.debug("relay called unsupported method %s" % call.method)
        reply = {'jsonrpc': JSONRPC_VERSION, 'id': call.id,
                 'error': {'code': METHOD_NOT_FOUND, 'message': 'Method not found'}}
        self.conduit.send(json.dumps(reply))
