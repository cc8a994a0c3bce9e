import logging
import socket

import websocket
from websocket import WebSocketException

from boardlink.conduit.base import Conduit
from boardlink.conduit.websocket_conduit import WebSocketConduit
from boardlink.connector.base import AbstractConnector, ConnectorError

logger = logging.getLogger(__name__)


class RelayEndpoint:
    """
    Describes the websocket endpoint of a relay process.
    """
    def __init__(self, url):
        self.url = url

    def __str__(self):
        return self.url


class WebSocketConnector(AbstractConnector):
    """
    A connector that communicates with a relay via a websocket
    """
    def __init__(self, endpoint: RelayEndpoint, connect_timeout=5):
        """
        Creates a new websocket connector.
        :param endpoint The relay endpoint to connect to.
        :param connect_timeout seconds to wait for the websocket handshake to complete.
        """
        super().__init__()
        self._endpoint = endpoint
        self._connect_timeout = connect_timeout

    @property
    def endpoint(self):
        return self._endpoint

    def _connect(self) -> Conduit:
        try:
            ws = websocket.create_connection(self._endpoint.url, timeout=self._connect_timeout)
            ws.settimeout(None)
            logger.info("opened websocket to %s" % self._endpoint)
            return WebSocketConduit(ws)
        except (socket.error, WebSocketException, ValueError) as e:
            logger.warning("error opening websocket to %s: %s" % (self._endpoint, e))
            raise ConnectorError("unable to open %s" % self._endpoint) from e
