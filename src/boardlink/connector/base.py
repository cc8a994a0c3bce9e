"""
Connectors open and close the conduit to a relay endpoint.
"""
import logging
from abc import abstractmethod

from boardlink.conduit.base import Conduit

logger = logging.getLogger(__name__)


class ConnectorError(Exception):
    """ The relay channel could not be opened or used. """


class ConnectionNotConnectedError(ConnectorError):
    """ The relay channel is needed but is closed. """


class Connector:
    """ Reaches one endpoint. At most one conduit is open at a time. """

    @property
    @abstractmethod
    def endpoint(self):
        raise NotImplementedError

    @property
    @abstractmethod
    def connected(self) -> bool:
        raise NotImplementedError

    @property
    @abstractmethod
    def conduit(self) -> Conduit:
        """ The open conduit. Raises ConnectionNotConnectedError when not connected. """
        raise NotImplementedError

    @abstractmethod
    def connect(self):
        """ Opens the conduit. Does nothing when already connected.
        :raises ConnectorError: when the conduit cannot be opened.
        """
        raise NotImplementedError

    @abstractmethod
    def disconnect(self):
        """ Closes the conduit. Does nothing when not connected. """
        raise NotImplementedError


class AbstractConnector(Connector):
    """
    Runs the connect/disconnect cycle. Subclasses open the conduit in _connect().
    """

    def __init__(self):
        self._conduit = None

    @property
    def connected(self):
        conduit = self._conduit
        return conduit is not None and conduit.open

    @property
    def conduit(self) -> Conduit:
        self.check_connected()
        return self._conduit

    def check_connected(self):
        if not self.connected:
            raise ConnectionNotConnectedError("%s is not connected" % (self.endpoint,))

    def connect(self):
        if self.connected:
            return
        conduit = self._connect()
        if conduit is None:
            raise ConnectorError("no conduit to %s" % (self.endpoint,))
        self._conduit = conduit
        logger.debug("connected to %s" % (self.endpoint,))

    def disconnect(self):
        conduit = self._conduit
        if conduit is None:
            return
        self._conduit = None
        try:
            self._disconnect()
        finally:
            conduit.close()
        logger.debug("disconnected from %s" % (self.endpoint,))

    @abstractmethod
    def _connect(self) -> Conduit:
        """ Opens and returns a conduit, raising ConnectorError when that is not possible. """
        raise NotImplementedError

    def _disconnect(self):
        """ Called before the conduit is closed. """
