"""
The duplex channel to the relay.

The transport connects and reads on a background thread. Everything it observes - the channel
opening, failing or closing, calls completing, notifications from the relay - is posted to a
QueuedEventSource and delivered on whichever thread calls publish(). Owners therefore see
transport activity as a single ordered stream of events on their own thread.
"""
import logging
import threading

from websocket import WebSocketConnectionClosedException

from boardlink.conduit.base import LoggingConduit
from boardlink.connector.base import ConnectionNotConnectedError, Connector, ConnectorError
from boardlink.connector.websocketconn import RelayEndpoint, WebSocketConnector
from boardlink.protocol.asynchronous import AsyncLoop, FutureResponse
from boardlink.protocol.jsonrpc import JsonRpcIncoming, JsonRpcProtocolHandler
from boardlink.support.events import QueuedEventSource

logger = logging.getLogger(__name__)


class TransportEvent:
    """ base class for transport events. """
    def __init__(self, transport):
        self.transport = transport


class TransportOpenedEvent(TransportEvent):
    """ The channel is open and calls can be made. """


class TransportErrorEvent(TransportEvent):
    """ The channel failed to open or failed while open. """
    def __init__(self, transport, error):
        super().__init__(transport)
        self.error = error


class TransportClosedEvent(TransportEvent):
    """ The channel closed. expected is True when close() was called on this side. """
    def __init__(self, transport, expected):
        super().__init__(transport)
        self.expected = expected


class TransportCallCompletedEvent(TransportEvent):
    """ A call made with send_call() has completed. The handler is invoked with the completed future. """
    def __init__(self, transport, future: FutureResponse, handler):
        super().__init__(transport)
        self.future = future
        self.handler = handler


class TransportNotificationEvent(TransportEvent):
    """ The relay sent a notification. """
    def __init__(self, transport, method, params):
        super().__init__(transport)
        self.method = method
        self.params = params


def default_connector_factory(endpoint: RelayEndpoint, connect_timeout=5):
    return WebSocketConnector(endpoint, connect_timeout)


class RelayTransport:
    """
    A persistent JSON-RPC channel to a relay endpoint.

    Calls are only sent while the channel is open. Calls made at any other time are dropped, not queued,
    so owners wait for the TransportOpenedEvent before calling.

    :param connector_factory a callable taking (endpoint, connect_timeout) and returning an unconnected Connector.
    :param connect_timeout seconds allowed for the channel to open.
    """

    def __init__(self, connector_factory=default_connector_factory, connect_timeout=5, log=logger):
        self.connector_factory = connector_factory
        self.connect_timeout = connect_timeout
        self.events = QueuedEventSource()
        self.logger = log
        self.connector = None       # type: Connector
        self.protocol = None        # type: JsonRpcProtocolHandler
        self._loop = None
        self._closing = False
        self._connecting = False
        self._lock = threading.RLock()

    @property
    def is_open(self):
        connector = self.connector
        return self.protocol is not None and connector is not None and connector.connected

    @property
    def endpoint(self):
        connector = self.connector
        return connector.endpoint if connector is not None else None

    def open(self, endpoint):
        """
        Starts opening the channel to the endpoint and returns immediately. A TransportOpenedEvent
        or a TransportErrorEvent follows.
        :param endpoint: a RelayEndpoint or a websocket url
        """
        if self._loop is not None:
            return
        if not isinstance(endpoint, RelayEndpoint):
            endpoint = RelayEndpoint(endpoint)
        self._closing = False
        self._connecting = True
        self.connector = self.connector_factory(endpoint, self.connect_timeout)
        loop = self._loop = AsyncLoop(self.read_message, log=self.logger)
        loop.startup = self.connect
        loop.exception_handler = self._read_failed
        loop.start()

    def connect(self):
        """ runs on the reader thread. opens the connector and binds the protocol to it. """
        connector = self.connector
        try:
            connector.connect()
        except ConnectorError as e:
            with self._lock:
                if self.connector is not connector:
                    return
                self._connecting = False
                self._stop_reading()
            self.events.fire(TransportErrorEvent(self, e))
            self.events.fire(TransportClosedEvent(self, self._closing))
            return
        with self._lock:
            if self._closing or self.connector is not connector:
                # closed while connecting
                connector.disconnect()
                return
            self._connecting = False
            protocol = JsonRpcProtocolHandler(LoggingConduit(connector.conduit, self.logger))
            protocol.add_unmatched_response_handler(self._unmatched)
            self.protocol = protocol
        self.logger.info("relay channel open to %s" % connector.endpoint)
        self.events.fire(TransportOpenedEvent(self))

    def read_message(self):
        """ runs on the reader thread. waits for the next message and dispatches it. """
        protocol = self.protocol
        if protocol is None:
            self._stop_reading()
            return
        try:
            message = protocol.conduit.receive()
        except WebSocketConnectionClosedException:
            self._channel_lost(None)
            return
        except Exception as e:
            self._channel_lost(e)
            return
        if not message:
            # the relay sent a close frame
            self._channel_lost(None)
            return
        protocol.process_message(message)

    def _read_failed(self, e):
        """ a message could not be processed. The channel is still usable. """
        self.logger.warning("ignoring message from %s: %s" % (self.endpoint, e))

    def _channel_lost(self, error):
        if self._closing:
            self.logger.debug("channel closed")
        elif error is not None:
            self.logger.warning("relay channel to %s failed: %s" % (self.endpoint, error))
            self.events.fire(TransportErrorEvent(self, error))
        else:
            self.logger.info("relay at %s closed the channel" % self.endpoint)
        self._terminate()

    def _stop_reading(self):
        loop = self._loop
        if loop is not None:
            loop.stop_event.set()

    def _terminate(self):
        """ the channel is no longer usable. Fails outstanding calls and posts the closed event once. """
        with self._lock:
            self._stop_reading()
            protocol = self.protocol
            self.protocol = None
            connector = self.connector
            if connector is not None:
                connector.disconnect()
        if protocol is not None:
            protocol.fail_pending(ConnectionNotConnectedError("the relay channel closed"))
            self.events.fire(TransportClosedEvent(self, self._closing))

    def _unmatched(self, response):
        if isinstance(response, JsonRpcIncoming):
            self.events.fire(TransportNotificationEvent(self, response.method, response.params))
        else:
            self.logger.debug("discarding response to unknown call %s" % response.response_key)

    def send_call(self, method, params=None, handler=None):
        """
        Sends a correlated call.
        :param handler: optional callable given the completed future. It is invoked from publish() via a
            TransportCallCompletedEvent.
        :return: the FutureResponse for the call, or None when the channel is not open and the call was dropped.
        """
        protocol = self.protocol
        if protocol is None or not self.is_open:
            self.logger.debug("channel not open, dropping call %s" % method)
            return None
        try:
            future = protocol.call(method, params)
        except Exception as e:
            self._channel_lost(e)
            return None
        if handler is not None:
            future.add_done_callback(lambda f: self.events.fire(TransportCallCompletedEvent(self, f, handler)))
        return future

    def send_notification(self, method, params=None):
        """ sends a message without a response. Dropped when the channel is not open.
        :return: True if the notification was sent
        """
        protocol = self.protocol
        if protocol is None or not self.is_open:
            self.logger.debug("channel not open, dropping notification %s" % method)
            return False
        try:
            protocol.notify(method, params)
        except Exception as e:
            self._channel_lost(e)
            return False
        return True

    def close(self):
        """
        closes the channel. The TransportClosedEvent that follows is marked as expected. Does not wait for a
        reader that is still connecting: it drops the connection when connect() returns.
        """
        with self._lock:
            self._closing = True
            loop = self._loop
            self._loop = None
            connecting = self._connecting
            self._connecting = False
        self._terminate()
        if loop is None:
            return
        if connecting:
            loop.stop_event.set()
        else:
            loop.stop()

    def publish(self):
        """ delivers queued transport events on the calling thread. """
        return self.events.publish()
