"""
The local mirror of a board connected to the relay.

The relay describes a board with a snapshot such as::

    {
        "name": "Arduino Uno",
        "transport": {"path": "/dev/ttyACM0", "isOpen": true},
        "pins": [{"value": 0, "mode": 1, "supportedModes": [0, 1, 4]}, ...],
        "analogPins": [14, 15, 16, 17, 18, 19],
        "RESOLUTION": {"ADC": 1023, "PWM": 255, "DAC": null}
    }

Board.merge() applies a later, possibly partial, snapshot by overwriting each top-level member it contains.
"""
import math
from enum import IntEnum

from boardlink.support.mixins import CommonEqualityMixin, StringerMixin


class PinMode(IntEnum):
    """ Firmata pin modes. """
    INPUT = 0x00
    OUTPUT = 0x01
    ANALOG = 0x02
    PWM = 0x03
    SERVO = 0x04
    SHIFT = 0x05
    I2C = 0x06
    ONEWIRE = 0x07
    STEPPER = 0x08
    SERIAL = 0x0A
    PULLUP = 0x0B
    IGNORE = 0x7F
    PING_READ = 0x75
    UNKNOWN = 0x10

    @classmethod
    def decode(cls, value):
        """
        >>> PinMode.decode(3)
        <PinMode.PWM: 3>
        >>> PinMode.decode(99)
        <PinMode.UNKNOWN: 16>
        >>> PinMode.decode(None)
        <PinMode.UNKNOWN: 16>
        """
        try:
            return cls(value)
        except (ValueError, TypeError):
            return cls.UNKNOWN


class Pin(CommonEqualityMixin, StringerMixin):

    def __init__(self, value=0, mode=PinMode.UNKNOWN, supported_modes=frozenset(), analog_channel=None):
        self.value = value
        self.mode = mode
        self.supported_modes = frozenset(supported_modes)
        self.analog_channel = analog_channel

    def supports(self, mode: PinMode):
        return mode in self.supported_modes

    @classmethod
    def from_snapshot(cls, snapshot: dict):
        modes = snapshot.get('supportedModes') or ()
        return cls(value=snapshot.get('value', 0) or 0,
                   mode=PinMode.decode(snapshot.get('mode')),
                   supported_modes=(PinMode.decode(m) for m in modes),
                   analog_channel=snapshot.get('analogChannel'))


class BoardTransport(CommonEqualityMixin, StringerMixin):
    """ the serial port the relay uses to reach the board. """

    def __init__(self, path, is_open=False):
        self.path = path
        self.is_open = is_open

    @classmethod
    def from_snapshot(cls, snapshot: dict):
        return cls(snapshot.get('path'), bool(snapshot.get('isOpen', False)))


class Board(CommonEqualityMixin):
    """
    The connected board's pins and capabilities, as last reported by the relay.
    """

    def __init__(self, transport: BoardTransport, pins=(), analog_pins=(), resolution=None, name=None):
        self.transport = transport
        self.pins = list(pins)
        self.analog_pins = list(analog_pins)
        self.resolution = dict(resolution or {})
        self.name = name

    def __str__(self):
        return "%s on %s" % (self.name or 'board', self.transport.path)

    @classmethod
    def from_snapshot(cls, snapshot: dict):
        board = cls(BoardTransport(None))
        board.merge(snapshot)
        return board

    def merge(self, snapshot: dict):
        """
        Overwrites each member present in the snapshot. Members that are absent are left unchanged.
        """
        if 'transport' in snapshot:
            self.transport = BoardTransport.from_snapshot(snapshot['transport'] or {})
        if 'pins' in snapshot:
            self.pins = [Pin.from_snapshot(p or {}) for p in snapshot['pins'] or ()]
        if 'analogPins' in snapshot:
            self.analog_pins = list(snapshot['analogPins'] or ())
        if 'RESOLUTION' in snapshot:
            self.resolution = dict(snapshot['RESOLUTION'] or {})
        if 'name' in snapshot:
            self.name = snapshot['name']
        return self

    @property
    def path(self):
        return self.transport.path

    @property
    def is_open(self):
        return self.transport.is_open

    @property
    def pwm_resolution(self):
        return self.resolution.get('PWM') or 0

    def pin(self, index):
        """ the pin at the given index or None """
        if isinstance(index, int) and 0 <= index < len(self.pins):
            return self.pins[index]
        return None

    def pin_value(self, index):
        pin = self.pin(index)
        return pin.value if pin is not None else 0

    def analog_pin_value(self, analog_index):
        """ the value of the pin assigned to the nth analog input """
        if isinstance(analog_index, int) and 0 <= analog_index < len(self.analog_pins):
            return self.pin_value(self.analog_pins[analog_index])
        return 0

    def pin_mode(self, index):
        pin = self.pin(index)
        return pin.mode if pin is not None else None

    def pin_indexes(self, predicate=None):
        return [i for i, pin in enumerate(self.pins) if predicate is None or predicate(pin)]

    def digital_pin_indexes(self):
        """ pins that support any mode, excluding analog inputs. """
        return self.pin_indexes(lambda pin: pin.supported_modes and not pin.supports(PinMode.ANALOG))

    def pwm_pin_indexes(self):
        return self.pin_indexes(lambda pin: pin.supports(PinMode.PWM) and not pin.supports(PinMode.ANALOG))

    def servo_pin_indexes(self):
        return self.pin_indexes(lambda pin: pin.supports(PinMode.SERVO) and not pin.supports(PinMode.ANALOG))

    def clamp_pwm(self, value):
        """
        >>> Board(BoardTransport('p'), resolution={'PWM': 255}).clamp_pwm(300.7)
        255
        >>> Board(BoardTransport('p'), resolution={'PWM': 255}).clamp_pwm(12.9)
        12
        >>> Board(BoardTransport('p'), resolution={'PWM': 255}).clamp_pwm(-4)
        0
        """
        return int(math.floor(min(max(value, 0), self.pwm_resolution)))


class PeripheralDescriptor(CommonEqualityMixin, StringerMixin):
    """ a peripheral the relay can connect to, keyed by its port path. """

    def __init__(self, peripheral_id, name=None, transport_type=None, details=None):
        self.peripheral_id = peripheral_id
        self.name = name
        self.transport_type = transport_type
        self.details = dict(details or {})

    @classmethod
    def from_scan(cls, peripheral_id, details):
        if not isinstance(details, dict):
            details = {'name': details}
        name = details.get('name') or details.get('manufacturer') or peripheral_id
        transport_type = details.get('transport') or details.get('type') or 'serial'
        return cls(peripheral_id, name, transport_type, details)


def peripherals_from_scan(result):
    """
    Builds the mapping of peripheral id to descriptor from a scan result.

    >>> sorted(peripherals_from_scan({'COM3': {'name': 'Uno'}}))
    ['COM3']
    >>> peripherals_from_scan(None)
    {}
    """
    if isinstance(result, dict):
        return {k: PeripheralDescriptor.from_scan(k, v) for k, v in result.items()}
    if isinstance(result, list):
        found = {}
        for item in result:
            if isinstance(item, dict):
                key = item.get('path') or item.get('peripheralId') or item.get('id')
                if key is not None:
                    found[key] = PeripheralDescriptor.from_scan(key, item)
        return found
    return {}
