from abc import abstractmethod


class Conduit:
    """
    A conduit allows two-way communication of whole messages. Each message sent is received by the
    peer as one unit, and each call to receive() returns exactly one message from the peer.
    """

    @property
    @abstractmethod
    def target(self):
        raise NotImplementedError

    @abstractmethod
    def send(self, message: str):
        """ sends a single message to the peer """
        raise NotImplementedError

    @abstractmethod
    def receive(self) -> str:
        """ blocks until the next message arrives from the peer and returns it, as text or as bytes.
            Raises an exception when the conduit is closed or broken. """
        raise NotImplementedError

    @property
    @abstractmethod
    def open(self) -> bool:
        """ determines if this conduit is open. When open, messages can be sent and received. """
        raise NotImplementedError

    @abstractmethod
    def close(self):
        """
        Closes the conduit. Any blocked receive() call is released.
        """
        raise NotImplementedError


class ConduitDecorator(Conduit):
    """
    A ConduitDecorator wraps another conduit and delegates to it's methods.
    This allows subclasses to easily override some behaviors while keeping others
    unchanged.
    """

    def __init__(self, decorate: Conduit):
        self.decorate = decorate

    @property
    def target(self):
        return self.decorate.target

    def send(self, message: str):
        self.decorate.send(message)

    def receive(self) -> str:
        return self.decorate.receive()

    def close(self):
        self.decorate.close()

    @property
    def open(self) -> bool:
        return self.decorate.open


class LoggingConduit(ConduitDecorator):
    """ logs each message sent and received at debug level. """

    def __init__(self, decorate: Conduit, log):
        super().__init__(decorate)
        self.logger = log

    def send(self, message: str):
        self.logger.debug("-> %s" % message)
        super().send(message)

    def receive(self) -> str:
        message = super().receive()
        self.logger.debug("<- %s" % message)
        return message
