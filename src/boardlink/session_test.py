import unittest
from unittest.mock import Mock

from hamcrest import assert_that, contains_exactly, empty, has_length, instance_of, is_, is_not

from boardlink.board import PinMode
from boardlink.connector.base import ConnectionNotConnectedError
from boardlink.events import LOST_CONNECTION_MESSAGE, PeripheralConnectedEvent, PeripheralConnectionLostEvent, \
    PeripheralDisconnectedEvent, PeripheralListUpdatedEvent, PeripheralRequestErrorEvent, PeripheralScanTimeoutEvent
from boardlink.protocol.asynchronous import FutureResponse
from boardlink.protocol.jsonrpc import JsonRpcRequest, RpcError
from boardlink.session import PeripheralSession, SessionState
from boardlink.support.events import EventSource, QueuedEventSource
from boardlink.transport import RelayTransport, TransportCallCompletedEvent, TransportClosedEvent, \
    TransportErrorEvent, TransportOpenedEvent
from boardlink.transport_test import QueueConduit, QueueConnector, pump_until


class ScriptedTransport:
    """ stands in for a RelayTransport. The test decides when the channel opens and how each call completes. """

    def __init__(self):
        self.events = QueuedEventSource()
        self.is_open = False
        self.calls = []
        self.opened_with = None
        self.closed = False

    def open(self, endpoint):
        self.opened_with = endpoint

    def channel_opened(self):
        self.is_open = True
        self.events.fire(TransportOpenedEvent(self))

    def channel_closed(self, expected=False):
        self.is_open = False
        self.events.fire(TransportClosedEvent(self, expected))

    def channel_failed(self, error):
        self.events.fire(TransportErrorEvent(self, error))

    def send_call(self, method, params=None, handler=None):
        if not self.is_open:
            return None
        future = FutureResponse(JsonRpcRequest(len(self.calls), method, params))
        self.calls.append((method, params, future, handler))
        return future

    def close(self):
        self.is_open = False
        self.closed = True
        self.events.fire(TransportClosedEvent(self, True))

    def publish(self):
        return self.events.publish()

    def methods(self):
        return [c[0] for c in self.calls]

    def last(self, method):
        return [c for c in self.calls if c[0] == method][-1]

    def complete(self, method, value):
        """ completes the most recent call to the method with a result or an exception """
        _, _, future, handler = self.last(method)
        future.set_result_or_exception(value)
        if handler is not None:
            self.events.fire(TransportCallCompletedEvent(self, future, handler))


def uno_snapshot(is_open=True):
    return {
        'name': 'Arduino Uno',
        'transport': {'path': 'COM3', 'isOpen': is_open},
        'pins': [
            {'value': 0, 'mode': 1, 'supportedModes': [1, 3]},
            {'value': 512, 'mode': 2, 'supportedModes': [2]},
            {'value': 90, 'mode': 4, 'supportedModes': [4]},
        ],
        'analogPins': [1],
        'RESOLUTION': {'ADC': 1023, 'PWM': 255},
    }


class PeripheralSessionTest(unittest.TestCase):

    def setUp(self):
        self.now = 100.0
        self.transport = ScriptedTransport()
        self.listeners = EventSource()
        self.events = []
        self.listeners += self.events.append
        self.on_connect = Mock()
        self.sut = PeripheralSession(self.transport, self.listeners, 'scrattino', 'ws://localhost:2020',
                                     connect_callback=self.on_connect, discovery_timeout=15,
                                     clock=lambda: self.now)

    def update(self):
        self.sut.update()

    def event_types(self):
        return [type(e) for e in self.events]

    def discovered(self, result=None):
        self.sut.open()
        self.transport.channel_opened()
        self.update()
        self.transport.complete('scan', {'COM3': {'name': 'Arduino Uno'}} if result is None else result)
        self.update()

    def connected(self, snapshot=None):
        self.discovered()
        self.sut.connect_peripheral()
        self.transport.complete('connect', uno_snapshot() if snapshot is None else snapshot)
        self.update()
        del self.events[:]

    def test_open_uses_relay_url(self):
        self.sut.open()
        assert_that(self.transport.opened_with, is_('ws://localhost:2020'))
        assert_that(self.sut.state, is_(SessionState.IDLE))

    def test_scan_is_sent_when_channel_opens(self):
        self.sut.open()
        self.transport.channel_opened()
        self.update()
        assert_that(self.transport.methods(), is_(['scan']))
        assert_that(self.sut.state, is_(SessionState.DISCOVERING))
        assert_that(self.sut.discovery_deadline.armed, is_(True))

    def test_scan_result_replaces_list(self):
        self.discovered({'COM3': {'name': 'Arduino Uno'}, 'COM4': {'name': 'Nano'}})
        assert_that(sorted(self.sut.peripherals), is_(['COM3', 'COM4']))
        self.sut.request_peripheral()
        assert_that(self.sut.peripherals, is_({}))
        self.transport.complete('scan', {'COM5': {}})
        self.update()
        assert_that(list(self.sut.peripherals), is_(['COM5']))
        assert_that(self.events[-1].peripherals, is_(self.sut.peripherals))

    def test_empty_scan_result_is_reported(self):
        self.discovered({})
        assert_that(self.event_types(), is_([PeripheralListUpdatedEvent]))
        assert_that(self.events[0].peripherals, is_({}))
        assert_that(self.sut.state, is_(SessionState.READY))

    def test_scan_timeout_fires_once(self):
        self.sut.open()
        self.transport.channel_opened()
        self.update()
        self.now += 14.9
        self.update()
        assert_that(self.events, is_(empty()))
        self.now += 0.2
        self.update()
        self.now += 30
        self.update()
        assert_that(self.event_types(), is_([PeripheralScanTimeoutEvent]))

    def test_scan_result_cancels_timeout(self):
        self.discovered()
        self.now += 60
        self.update()
        assert_that(self.event_types(), is_([PeripheralListUpdatedEvent]))

    def test_late_scan_result_is_accepted(self):
        self.sut.open()
        self.transport.channel_opened()
        self.update()
        self.now += 20
        self.update()
        self.transport.complete('scan', {'COM3': {}})
        self.update()
        assert_that(self.event_types(), is_([PeripheralScanTimeoutEvent, PeripheralListUpdatedEvent]))
        assert_that(list(self.sut.peripherals), is_(['COM3']))

    def test_failed_scan_is_a_request_error(self):
        self.sut.open()
        self.transport.channel_opened()
        self.update()
        self.transport.complete('scan', RpcError(-1, 'no serial support'))
        self.update()
        self.now += 60
        self.update()
        assert_that(self.event_types(), is_([PeripheralRequestErrorEvent]))
        assert_that(self.events[0], is_(PeripheralRequestErrorEvent(LOST_CONNECTION_MESSAGE, 'scrattino')))

    def test_connect_defaults_to_first_peripheral(self):
        self.discovered({'COM3': {}, 'COM4': {}})
        self.sut.connect_peripheral()
        assert_that(self.transport.last('connect')[1], is_({'portPath': 'COM3'}))
        assert_that(self.sut.state, is_(SessionState.CONNECTING))

    def test_connect_to_named_peripheral(self):
        self.discovered({'COM3': {}, 'COM4': {}})
        self.sut.connect_peripheral('COM4')
        assert_that(self.transport.last('connect')[1], is_({'portPath': 'COM4'}))

    def test_connect_without_peripherals_is_a_request_error(self):
        self.discovered({})
        self.sut.connect_peripheral()
        assert_that(self.transport.methods(), is_(['scan']))
        assert_that(self.events[-1], is_(instance_of(PeripheralRequestErrorEvent)))

    def test_connect_success(self):
        self.discovered()
        self.sut.connect_peripheral()
        self.transport.complete('connect', uno_snapshot())
        self.update()
        assert_that(self.event_types(), is_([PeripheralListUpdatedEvent, PeripheralConnectedEvent]))
        assert_that(self.sut.state, is_(SessionState.CONNECTED))
        assert_that(self.sut.is_connected(), is_(True))
        self.on_connect.assert_called_once_with(self.sut.board)

    def test_connect_while_connecting_is_ignored(self):
        self.discovered()
        self.sut.connect_peripheral()
        self.sut.connect_peripheral()
        assert_that(self.transport.methods(), is_(['scan', 'connect']))
        self.transport.complete('connect', uno_snapshot())
        self.update()
        assert_that(self.event_types().count(PeripheralConnectedEvent), is_(1))
        self.on_connect.assert_called_once_with(self.sut.board)

    def test_connect_rejected(self):
        self.discovered()
        self.sut.connect_peripheral()
        self.transport.complete('connect', RpcError(-1, 'port busy'))
        self.update()
        assert_that(self.events[-1], is_(instance_of(PeripheralRequestErrorEvent)))
        assert_that(self.sut.state, is_(SessionState.READY))
        assert_that(self.sut.is_connected(), is_(False))
        self.on_connect.assert_not_called()

    def test_is_connected_requires_open_board_transport(self):
        self.connected(uno_snapshot(is_open=False))
        assert_that(self.sut.board, is_not(None))
        assert_that(self.sut.is_connected(), is_(False))

    def test_commands_before_connect_send_nothing(self):
        self.discovered()
        self.sut.set_pin_mode(0, PinMode.OUTPUT)
        self.sut.digital_write(0, 1)
        self.sut.pwm_write(0, 100)
        self.sut.servo_write(2, 90)
        self.sut.update_board_state()
        assert_that(self.transport.methods(), is_(['scan']))

    def test_queries_without_board(self):
        assert_that(self.sut.get_pins(), is_([]))
        assert_that(self.sut.get_pin_value(0), is_(0))
        assert_that(self.sut.get_analog_pin_value(0), is_(0))
        assert_that(self.sut.get_pin_mode(0), is_(None))

    def test_pin_queries(self):
        self.connected()
        assert_that(self.sut.get_pins(), has_length(3))
        assert_that(self.sut.get_pin_value(2), is_(90))
        assert_that(self.sut.get_analog_pin_value(0), is_(512))
        assert_that(self.sut.get_pin_mode(0), is_(PinMode.OUTPUT))

    def test_pwm_write_is_clamped(self):
        self.connected()
        self.sut.pwm_write(0, 300)
        assert_that(self.transport.last('pwmWrite')[1], is_({'pin': 0, 'value': 255, 'portPath': 'COM3'}))
        self.sut.pwm_write(0, -5)
        assert_that(self.transport.last('pwmWrite')[1]['value'], is_(0))
        self.sut.pwm_write(0, 12.7)
        assert_that(self.transport.last('pwmWrite')[1]['value'], is_(12))

    def test_non_finite_values_write_zero(self):
        self.connected()
        self.sut.pwm_write(0, float('nan'))
        assert_that(self.transport.last('pwmWrite')[1]['value'], is_(0))
        self.sut.pwm_write(0, float('inf'))
        assert_that(self.transport.last('pwmWrite')[1]['value'], is_(0))
        self.sut.servo_write(2, float('inf'))
        assert_that(self.transport.last('servoWrite')[1]['value'], is_(0))

    def test_digital_write(self):
        self.connected()
        self.sut.digital_write(0, True)
        assert_that(self.transport.last('digitalWrite')[1], is_({'pin': 0, 'value': 1, 'portPath': 'COM3'}))
        self.sut.digital_write(0, 0)
        assert_that(self.transport.last('digitalWrite')[1]['value'], is_(0))

    def test_servo_write(self):
        self.connected()
        self.sut.servo_write(2, 45)
        assert_that(self.transport.last('servoWrite')[1], is_({'pin': 2, 'value': 45, 'portPath': 'COM3'}))

    def test_pin_mode_applied_after_confirmation(self):
        self.connected()
        self.sut.set_pin_mode(0, PinMode.PWM)
        assert_that(self.transport.last('pinMode')[1], is_({'pin': 0, 'mode': 3, 'portPath': 'COM3'}))
        assert_that(self.sut.get_pin_mode(0), is_(PinMode.OUTPUT))
        self.transport.complete('pinMode', None)
        self.update()
        assert_that(self.sut.get_pin_mode(0), is_(PinMode.PWM))

    def test_unknown_pin_mode_is_ignored(self):
        self.connected()
        self.sut.set_pin_mode(0, 42)
        assert_that('pinMode' in self.transport.methods(), is_(False))

    def test_board_state_merged(self):
        self.connected()
        self.sut.update_board_state()
        assert_that(self.transport.last('getBoardState')[1], is_({'portPath': 'COM3'}))
        self.transport.complete('getBoardState', {'pins': [{'value': 1, 'mode': 0, 'supportedModes': [0, 1]}]})
        self.update()
        assert_that(self.sut.get_pins(), has_length(1))
        assert_that(self.sut.get_pin_value(0), is_(1))
        assert_that(self.sut.board.name, is_('Arduino Uno'))
        assert_that(self.events, is_(empty()))

    def test_board_state_reporting_closed_port_loses_connection(self):
        self.connected()
        self.sut.update_board_state()
        self.transport.complete('getBoardState', {'transport': {'path': 'COM3', 'isOpen': False}})
        self.update()
        assert_that(self.event_types(), is_([PeripheralConnectionLostEvent]))
        assert_that(self.sut.board, is_(None))
        assert_that(self.sut.state, is_(SessionState.DISCONNECTED))
        self.sut.update_board_state()
        assert_that(self.transport.methods().count('getBoardState'), is_(1))

    def test_channel_error_while_connected_loses_connection(self):
        self.connected()
        self.transport.channel_failed(OSError('reset'))
        self.transport.channel_closed()
        self.update()
        assert_that(self.event_types(), is_([PeripheralConnectionLostEvent]))
        assert_that(self.events[0].extension_id, is_('scrattino'))
        assert_that(self.sut.is_connected(), is_(False))

    def test_channel_closed_while_connected_loses_connection(self):
        self.connected()
        self.transport.channel_closed()
        self.update()
        assert_that(self.event_types(), is_([PeripheralConnectionLostEvent]))

    def test_channel_closed_before_connect_is_a_request_error(self):
        self.discovered()
        self.transport.channel_closed()
        self.update()
        assert_that(self.event_types(), is_([PeripheralListUpdatedEvent, PeripheralRequestErrorEvent]))
        assert_that(self.sut.state, is_(SessionState.DISCONNECTED))

    def test_channel_open_failure_reported_once(self):
        self.sut.open()
        self.transport.channel_failed(ConnectionRefusedError())
        self.transport.channel_closed()
        self.update()
        assert_that(self.event_types(), is_([PeripheralRequestErrorEvent]))

    def test_call_failed_by_closing_channel_is_not_reported(self):
        self.connected()
        self.sut.update_board_state()
        self.transport.complete('getBoardState', ConnectionNotConnectedError('closed'))
        self.transport.channel_closed()
        self.update()
        assert_that(self.event_types(), contains_exactly(PeripheralConnectionLostEvent))

    def test_disconnect(self):
        self.connected()
        self.sut.disconnect()
        assert_that(self.transport.last('disconnect')[1], is_({'portPath': 'COM3'}))
        assert_that(self.transport.closed, is_(False))
        self.transport.complete('disconnect', None)
        self.update()
        assert_that(self.transport.closed, is_(True))
        assert_that(self.event_types(), is_([PeripheralDisconnectedEvent]))
        assert_that(self.sut.board, is_(None))
        assert_that(self.sut.state, is_(SessionState.DISCONNECTED))

    def test_disconnect_refused_keeps_board(self):
        self.connected()
        self.sut.disconnect()
        self.transport.complete('disconnect', RpcError(-1, 'busy'))
        self.update()
        assert_that(self.event_types(), is_([PeripheralRequestErrorEvent]))
        assert_that(self.sut.is_connected(), is_(True))
        assert_that(self.transport.closed, is_(False))

    def test_disconnect_without_board_does_nothing(self):
        self.discovered()
        self.sut.disconnect()
        assert_that(self.transport.methods(), is_(['scan']))

    def test_dispose_releases_board(self):
        self.connected()
        self.sut.dispose()
        assert_that(self.transport.last('disconnect')[1], is_({'portPath': 'COM3'}))
        assert_that(self.transport.closed, is_(True))
        assert_that(self.event_types(), is_([PeripheralDisconnectedEvent]))
        self.update()
        assert_that(self.event_types(), is_([PeripheralDisconnectedEvent]))

    def test_dispose_during_discovery(self):
        self.sut.open()
        self.transport.channel_opened()
        self.update()
        self.sut.dispose()
        self.now += 60
        self.update()
        assert_that(self.events, is_(empty()))
        assert_that(self.transport.closed, is_(True))


class PeripheralSessionOverRelayTest(unittest.TestCase):
    """ runs the session against a RelayTransport whose relay is played by the test """

    def setUp(self):
        self.conduit = QueueConduit()
        self.transport = RelayTransport(
            connector_factory=lambda endpoint, connect_timeout: QueueConnector(endpoint, self.conduit))
        listeners = EventSource()
        self.events = []
        listeners += self.events.append
        self.sut = PeripheralSession(self.transport, listeners, 'scrattino')

    def tearDown(self):
        self.sut.dispose()

    def event_types(self):
        return [type(e) for e in self.events]

    def connect(self):
        self.sut.open()
        pump_until(self.transport, lambda: self.sut.state is SessionState.DISCOVERING)
        self.conduit.reply(result={'COM3': {'name': 'Arduino Uno'}})
        pump_until(self.transport, lambda: self.sut.state is SessionState.READY)
        self.sut.connect_peripheral()
        self.conduit.reply(result=uno_snapshot())
        pump_until(self.transport, lambda: self.sut.state is SessionState.CONNECTED)
        del self.events[:]

    def test_disconnect_with_refresh_in_flight(self):
        self.connect()
        self.sut.update_board_state()
        assert_that(self.conduit.sent.get(timeout=5)['method'], is_('getBoardState'))
        self.sut.disconnect()
        request = self.conduit.reply(result=None)
        assert_that(request['method'], is_('disconnect'))
        pump_until(self.transport, lambda: self.events)
        self.transport.publish()
        assert_that(self.event_types(), is_([PeripheralDisconnectedEvent]))
        assert_that(self.transport.is_open, is_(False))

    def test_relay_drop_with_refresh_in_flight(self):
        self.connect()
        self.sut.update_board_state()
        self.conduit.sent.get(timeout=5)
        self.conduit.close()
        pump_until(self.transport, lambda: self.sut.state is SessionState.DISCONNECTED)
        self.transport.publish()
        assert_that(self.event_types(), is_([PeripheralConnectionLostEvent]))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
