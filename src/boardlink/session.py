"""
A PeripheralSession owns one channel to the relay and at most one connected board.

    IDLE --channel open--> DISCOVERING --scan result--> READY --connect--> CONNECTING --> CONNECTED
                                                          ^                    |              |
                                                          +----connect failed--+              |
                                                    DISCONNECTED <--disconnect / connection lost

The session never blocks and never raises to its caller for relay failures. Calls complete later, when the
owner pumps update(), and failures are reported to the listeners as PeripheralRequestErrorEvent or
PeripheralConnectionLostEvent.

Pin state is last-writer-wins: a successful mode change updates the local pin at once, and the next
board-state refresh overwrites the whole pin table with whatever the relay reports.
"""
import logging
import math
import time
from enum import Enum

from boardlink.board import Board, PinMode, peripherals_from_scan
from boardlink.connector.base import ConnectionNotConnectedError
from boardlink.events import LOST_CONNECTION_MESSAGE, PeripheralConnectedEvent, PeripheralConnectionLostEvent, \
    PeripheralDisconnectedEvent, PeripheralListUpdatedEvent, PeripheralRequestErrorEvent, PeripheralScanTimeoutEvent
from boardlink.support.events import EventSource
from boardlink.support.schedule import Deadline
from boardlink.transport import RelayTransport, TransportCallCompletedEvent, TransportClosedEvent, \
    TransportErrorEvent, TransportNotificationEvent, TransportOpenedEvent

logger = logging.getLogger(__name__)

DEFAULT_RELAY_URL = 'ws://localhost:2020'
DEFAULT_DISCOVERY_TIMEOUT = 15


def finite(value):
    """
    >>> finite(12.5), finite(float('nan')), finite(float('-inf'))
    (12.5, 0, 0)
    """
    return value if math.isfinite(value) else 0


class SessionState(Enum):
    IDLE = 'idle'
    DISCOVERING = 'discovering'
    READY = 'ready'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'


class PeripheralSession:
    """
    Drives discovery, connection and pin commands for one board through a RelayTransport.

    :param transport: the unopened transport to the relay. The session owns it.
    :param listeners: the EventSource that receives the PeripheralEvent instances.
    :param extension_id: identifies the caller in error events.
    :param relay_url: where the relay listens.
    :param peripheral_options: passed as the parameters of the scan call.
    :param connect_callback: called with the Board when a connect succeeds.
    :param discovery_timeout: seconds to wait for a scan result before firing PeripheralScanTimeoutEvent.
    :param clock: returns the current time in seconds.
    """

    def __init__(self, transport: RelayTransport, listeners: EventSource, extension_id, relay_url=DEFAULT_RELAY_URL,
                 peripheral_options=None, connect_callback=None, discovery_timeout=DEFAULT_DISCOVERY_TIMEOUT,
                 clock=time.monotonic, log=logger):
        self.transport = transport
        self.listeners = listeners
        self.extension_id = extension_id
        self.relay_url = relay_url
        self.peripheral_options = peripheral_options if peripheral_options is not None else {}
        self.connect_callback = connect_callback
        self.discovery_deadline = Deadline(discovery_timeout)
        self.clock = clock
        self.logger = log
        self.state = SessionState.IDLE
        self.peripherals = {}
        self.board = None           # type: Board
        self._channel_failed = False
        self._disposed = False
        transport.events += self._transport_event

    def open(self):
        """ opens the channel to the relay. Discovery starts once it is open. """
        self.transport.open(self.relay_url)

    def update(self, current_time=None):
        """
        Processes everything that happened since the last update: channel events, call completions
        and the discovery timeout. Listeners are notified on the calling thread.
        """
        if self._disposed:
            return
        self.transport.publish()
        if current_time is None:
            current_time = self.clock()
        if self.discovery_deadline.expired(current_time):
            self.logger.info("no peripherals reported within %ss" % self.discovery_deadline.duration)
            self._fire(PeripheralScanTimeoutEvent())

    def _fire(self, event):
        self.listeners.fire(event)

    def _request_error(self, reason):
        self.logger.info("request error: %s" % reason)
        self._fire(PeripheralRequestErrorEvent(LOST_CONNECTION_MESSAGE, self.extension_id))

    def _connection_lost(self, reason):
        self.logger.warning("connection to %s lost: %s" % (self.board, reason))
        self.board = None
        self.state = SessionState.DISCONNECTED
        self._fire(PeripheralConnectionLostEvent(LOST_CONNECTION_MESSAGE, self.extension_id))

    def _transport_event(self, event):
        if isinstance(event, TransportCallCompletedEvent):
            event.handler(event.future)
        elif isinstance(event, TransportOpenedEvent):
            self._channel_failed = False
            self.request_peripheral()
        elif isinstance(event, TransportErrorEvent):
            self._channel_failed = True
            if self.board is not None:
                self._connection_lost(event.error)
            else:
                self._request_error(event.error)
        elif isinstance(event, TransportClosedEvent):
            self._channel_closed(event)
        elif isinstance(event, TransportNotificationEvent):
            self.logger.debug("relay notification %s %s" % (event.method, event.params))

    def _channel_closed(self, event: TransportClosedEvent):
        self.discovery_deadline.cancel()
        if event.expected:
            return
        if self.board is not None:
            self._connection_lost("the relay closed the channel")
        else:
            if not self._channel_failed:
                self._request_error("the relay closed the channel")
            self.state = SessionState.DISCONNECTED

    def _call(self, method, params, on_result=None, on_error=None):
        """
        Calls the relay. on_result is given the result when the call succeeds. When it fails, on_error is
        given the exception and a PeripheralRequestErrorEvent is fired, unless the call failed because the
        channel closed.
        :return: False if the call was dropped because the channel is not open.
        """
        def completed(future):
            if self._disposed:
                return
            error = future.exception()
            if error is not None:
                self.logger.debug("%s failed: %s" % (method, error))
                if on_error is not None:
                    on_error(error)
                # the channel closed under the call. The closed event that follows reports it, if at all.
                if not isinstance(error, ConnectionNotConnectedError):
                    self._request_error("%s failed: %s" % (method, error))
            elif on_result is not None:
                on_result(future.result())

        return self.transport.send_call(method, params, completed) is not None

    def request_peripheral(self):
        """
        Starts discovery: forgets previously found peripherals, arms the discovery timeout and asks the relay
        for the peripherals it can reach.
        """
        if not self.transport.is_open:
            return
        self.peripherals = {}
        self.discovery_deadline.arm(self.clock())
        self.state = SessionState.DISCOVERING
        self.logger.debug("scanning with options %s" % self.peripheral_options)
        self._call('scan', self.peripheral_options, self._scan_result, self._scan_failed)

    def _scan_result(self, result):
        self.discovery_deadline.cancel()
        self.peripherals = peripherals_from_scan(result)
        if self.state is SessionState.DISCOVERING:
            self.state = SessionState.READY
        names = ", ".join(map(str, self.peripherals))
        self.logger.info("found %d peripheral(s): %s" % (len(self.peripherals), names))
        self._fire(PeripheralListUpdatedEvent(self.peripherals))

    def _scan_failed(self, error):
        self.discovery_deadline.cancel()

    def connect_peripheral(self, peripheral_id=None):
        """
        Connects to a discovered peripheral. When no id is given, the first peripheral the relay listed is
        used, which is arbitrary when there are several.
        """
        if self.board is not None:
            self.logger.debug("already connected to %s" % self.board)
            return
        if self.state is SessionState.CONNECTING:
            self.logger.debug("already connecting")
            return
        if not peripheral_id:
            peripheral_id = next(iter(self.peripherals), None)
        if peripheral_id is None:
            self._request_error("no peripheral to connect to")
            return
        previous = self.state
        self.state = SessionState.CONNECTING

        def connected(result):
            self._connected(peripheral_id, result)

        def failed(error):
            self.state = SessionState.READY

        if not self._call('connect', {'portPath': peripheral_id}, connected, failed):
            self.state = previous
            self._request_error("channel not open")

    def _connected(self, peripheral_id, snapshot):
        board = Board.from_snapshot(snapshot if isinstance(snapshot, dict) else {})
        if board.transport.path is None:
            board.transport.path = peripheral_id
        self.board = board
        self.state = SessionState.CONNECTED
        self.logger.info("connected to %s" % board)
        self._fire(PeripheralConnectedEvent())
        if self.connect_callback is not None:
            self.connect_callback(board)

    def disconnect(self):
        """
        Asks the relay to release the board. When it agrees the channel is closed and
        PeripheralDisconnectedEvent is fired. If it refuses the board is kept.
        """
        if self.board is None or self.state is not SessionState.CONNECTED:
            return
        if not self._call('disconnect', {'portPath': self.board.path}, self._disconnected):
            self._request_error("channel not open")

    def _disconnected(self, result):
        self.transport.close()
        released = self.board
        self.board = None
        self.state = SessionState.DISCONNECTED
        self.logger.info("disconnected from %s" % released)
        self._fire(PeripheralDisconnectedEvent())

    def dispose(self):
        """
        Tears the session down without waiting for the relay. A connected board is released with a final
        disconnect call before the channel closes.
        """
        if self._disposed:
            return
        self.discovery_deadline.cancel()
        board = self.board
        if board is not None:
            self.transport.send_call('disconnect', {'portPath': board.path})
        self._disposed = True
        self.transport.events -= self._transport_event
        self.transport.close()
        self.board = None
        self.state = SessionState.DISCONNECTED
        if board is not None:
            self.logger.info("released %s" % board)
            self._fire(PeripheralDisconnectedEvent())

    def update_board_state(self):
        """ asks the relay for the board's current state and merges it into the local board """
        self._board_call('getBoardState', {}, self._board_state)

    def _board_state(self, snapshot):
        board = self.board
        if board is None:
            return
        if isinstance(snapshot, dict):
            board.merge(snapshot)
        if not board.is_open:
            self._connection_lost("the relay reports %s is closed" % board.path)

    def _board_call(self, method, params, on_result=None):
        board = self.board
        if board is None:
            return False
        params = dict(params, portPath=board.path)
        return self._call(method, params, on_result)

    def is_connected(self):
        board = self.board
        return board is not None and bool(board.is_open)

    def get_pins(self):
        return list(self.board.pins) if self.board is not None else []

    def get_pin_value(self, pin_index):
        return self.board.pin_value(pin_index) if self.board is not None else 0

    def get_analog_pin_value(self, analog_pin_index):
        return self.board.analog_pin_value(analog_pin_index) if self.board is not None else 0

    def get_pin_mode(self, pin_index):
        return self.board.pin_mode(pin_index) if self.board is not None else None

    def set_pin_mode(self, pin, mode):
        """ changes a pin's mode. The local pin takes the new mode once the relay confirms. """
        if self.board is None:
            return
        try:
            mode = PinMode(mode)
        except ValueError:
            self.logger.warning("ignoring unknown mode %r for pin %s" % (mode, pin))
            return

        def mode_set(result):
            board_pin = self.board.pin(pin) if self.board is not None else None
            if board_pin is not None:
                board_pin.mode = mode

        self._board_call('pinMode', {'pin': pin, 'mode': int(mode)}, mode_set)

    def digital_write(self, pin, value):
        self._board_call('digitalWrite', {'pin': pin, 'value': 1 if value else 0})

    def pwm_write(self, pin, value):
        """ writes a duty value, clamped to 0..RESOLUTION.PWM and rounded down. NaN and infinities write 0. """
        if self.board is None:
            return
        self._board_call('pwmWrite', {'pin': pin, 'value': self.board.clamp_pwm(finite(value))})

    def servo_write(self, pin, value):
        self._board_call('servoWrite', {'pin': pin, 'value': finite(value)})
