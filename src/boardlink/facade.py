"""
The application-facing entry point.

A BoardLink owns at most one PeripheralSession at a time and a BoardStatePoller that keeps the session's
board mirror fresh. Every method is safe to call at any time. Without a session, or without a connected
board, queries return empty values and commands do nothing.

The host drives the link by calling update() regularly, from its own loop or from a BoardLinkLoop.
Listener events are delivered from inside update().
"""
import logging
import math
import time

from boardlink.board import PinMode
from boardlink.events import PeripheralConnectionLostEvent, PeripheralDisconnectedEvent
from boardlink.poller import BoardStatePoller
from boardlink.protocol.asynchronous import AsyncLoop
from boardlink.session import PeripheralSession
from boardlink.settings import BoardLinkSettings
from boardlink.support.events import EventSource
from boardlink.transport import RelayTransport

logger = logging.getLogger(__name__)


def to_number(value):
    """
    Converts a block argument to a number. Anything that is not a number is 0.

    >>> to_number('12.5')
    12.5
    >>> to_number('abc')
    0
    >>> to_number(None)
    0
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    return int(number) if number.is_integer() else number


class BoardLink:
    """
    Scan for, connect to and drive one board through the relay.

    :param settings: a BoardLinkSettings. Defaults are used when not given.
    :param listeners: the EventSource receiving the peripheral events. Add listeners to link.events.
    :param transport_factory: a callable taking connect_timeout and returning an unopened RelayTransport.
    :param clock: returns the current time in seconds.
    """

    def __init__(self, settings: BoardLinkSettings=None, listeners: EventSource=None,
                 transport_factory=RelayTransport, clock=time.monotonic, log=logger):
        self.settings = settings if settings is not None else BoardLinkSettings()
        self.events = listeners if listeners is not None else EventSource()
        self.transport_factory = transport_factory
        self.clock = clock
        self.logger = log
        self.session = None         # type: PeripheralSession
        self.poller = BoardStatePoller(self._refresh, self.is_connected, self.settings.poll_period, log=log)
        self.events += self._session_event

    def _session_event(self, event):
        if isinstance(event, (PeripheralDisconnectedEvent, PeripheralConnectionLostEvent)):
            self.poller.stop()

    def _refresh(self):
        if self.session is not None:
            self.session.update_board_state()

    def _on_connect(self, board):
        self.logger.debug("polling %s" % board)
        self.poller.start(self.clock())

    def scan(self):
        """
        Discards the current session, releasing its board, and starts a new one. The new session
        scans as soon as its channel to the relay opens.
        """
        self._dispose_session()
        settings = self.settings
        transport = self.transport_factory(connect_timeout=settings.connect_timeout)
        session = PeripheralSession(transport, self.events, settings.extension_id, settings.relay_url,
                                    peripheral_options=settings.peripheral_options,
                                    connect_callback=self._on_connect,
                                    discovery_timeout=settings.discovery_timeout,
                                    clock=self.clock, log=self.logger)
        self.session = session
        session.open()

    def _dispose_session(self):
        self.poller.stop()
        session = self.session
        self.session = None
        if session is not None:
            session.dispose()

    def connect(self, peripheral_id=None):
        if self.session is not None:
            self.session.connect_peripheral(peripheral_id)

    def disconnect(self):
        self.poller.stop()
        if self.session is not None:
            self.session.disconnect()

    def close(self):
        """ releases the board and closes the channel to the relay """
        self._dispose_session()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def is_connected(self):
        return self.session is not None and self.session.is_connected()

    def update(self, current_time=None):
        """
        Delivers everything the relay sent since the last update, fires due timers and refreshes the board
        state when the poll period has elapsed.
        """
        if current_time is None:
            current_time = self.clock()
        if self.session is not None:
            self.session.update(current_time)
        self.poller.maintain(current_time)

    def _pins(self):
        session = self.session
        return session.board if session is not None and session.board is not None else None

    def get_all_pin_index(self):
        board = self._pins()
        return board.pin_indexes() if board is not None else []

    def get_digital_pin_index(self):
        board = self._pins()
        return board.digital_pin_indexes() if board is not None else []

    def get_pwm_pin_index(self):
        board = self._pins()
        return board.pwm_pin_indexes() if board is not None else []

    def get_servo_pin_index(self):
        board = self._pins()
        return board.servo_pin_indexes() if board is not None else []

    def get_pin_value(self, pin_index):
        return self.session.get_pin_value(pin_index) if self.session is not None else 0

    def get_analog_pin_value(self, analog_pin_index):
        return self.session.get_analog_pin_value(analog_pin_index) if self.session is not None else 0

    def set_pin_mode(self, pin, mode):
        if self.session is not None:
            self.session.set_pin_mode(pin, mode)

    def write_digital(self, pin, value):
        if self.session is not None:
            self.session.digital_write(pin, 1 if to_number(value) else 0)

    def write_pwm(self, pin, value):
        """
        Switches the pin to PWM if needed, then writes the duty value. The mode change and the write are
        separate calls, so a write can reach the board before the mode change is confirmed.
        """
        self._write_in_mode(pin, PinMode.PWM, to_number(value), 'pwm_write')

    def write_servo(self, pin, value):
        """ Switches the pin to SERVO if needed, then writes the angle. """
        self._write_in_mode(pin, PinMode.SERVO, to_number(value), 'servo_write')

    def _write_in_mode(self, pin, mode, value, write):
        session = self.session
        if session is None:
            return
        if session.get_pin_mode(pin) != mode:
            session.set_pin_mode(pin, mode)
        getattr(session, write)(pin, value)


class BoardLinkLoop(AsyncLoop):
    """
    Pumps a BoardLink on a background thread, for hosts without a loop of their own.
    Listener events are then delivered on the background thread.

    :param link: the BoardLink to pump.
    :param interval: seconds between updates.
    """

    def __init__(self, link: BoardLink, interval=0.02, log=logger):
        super().__init__(log=log)
        self.link = link
        self.interval = interval

    def loop(self):
        self.link.update()
        self.stop_event.wait(self.interval)
