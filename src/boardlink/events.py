"""
Events a PeripheralSession fires to its listeners.

Listeners are plain callables added to the EventSource given to the session. Each receives one event
instance and can dispatch on its type. Events carry plain data only, never the session or the transport.
"""
from boardlink.support.mixins import CommonEqualityMixin, StringerMixin

LOST_CONNECTION_MESSAGE = 'lost connection to'


class PeripheralEvent(CommonEqualityMixin, StringerMixin):
    """ base class for peripheral events. """


class PeripheralListUpdatedEvent(PeripheralEvent):
    """ A scan completed. peripherals maps each peripheral id to its PeripheralDescriptor. """
    def __init__(self, peripherals):
        self.peripherals = dict(peripherals)


class PeripheralConnectedEvent(PeripheralEvent):
    """ The board was connected. """


class PeripheralDisconnectedEvent(PeripheralEvent):
    """ The board was disconnected on request. """


class PeripheralErrorEvent(PeripheralEvent):
    def __init__(self, message, extension_id):
        self.message = message
        self.extension_id = extension_id


class PeripheralConnectionLostEvent(PeripheralErrorEvent):
    """ The channel to the relay or the relay's link to the board closed while the board was connected. """


class PeripheralRequestErrorEvent(PeripheralErrorEvent):
    """ A call to the relay failed. """


class PeripheralScanTimeoutEvent(PeripheralEvent):
    """ A scan produced no result within the discovery timeout. """


class SessionListener:
    """
    Adapts peripheral events to one method per event type. Subclasses override the methods they need,
    and the instance is added to the session's event source.
    """

    def __call__(self, event):
        name = self._handlers.get(type(event))
        if name is not None:
            getattr(self, name)(event)

    def peripheral_list_updated(self, event: PeripheralListUpdatedEvent):
        pass

    def peripheral_connected(self, event: PeripheralConnectedEvent):
        pass

    def peripheral_disconnected(self, event: PeripheralDisconnectedEvent):
        pass

    def peripheral_connection_lost(self, event: PeripheralConnectionLostEvent):
        pass

    def peripheral_request_error(self, event: PeripheralRequestErrorEvent):
        pass

    def peripheral_scan_timeout(self, event: PeripheralScanTimeoutEvent):
        pass

    _handlers = {
        PeripheralListUpdatedEvent: 'peripheral_list_updated',
        PeripheralConnectedEvent: 'peripheral_connected',
        PeripheralDisconnectedEvent: 'peripheral_disconnected',
        PeripheralConnectionLostEvent: 'peripheral_connection_lost',
        PeripheralRequestErrorEvent: 'peripheral_request_error',
        PeripheralScanTimeoutEvent: 'peripheral_scan_timeout',
    }
