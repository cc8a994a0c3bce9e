"""


Board Link

Drives a Firmata board attached to a relay process. The relay owns the serial port and exposes the
board over a local websocket speaking JSON-RPC.

- Conduit: a message channel to the relay. WebSocketConduit wraps a websocket-client connection.
- Connector: opens a conduit to a RelayEndpoint and fires connected/disconnected events.
- RelayTransport: binds the JSON-RPC protocol handler to the connector, reads on a background thread
  and queues everything it sees - opening, failures, closing, call completions, relay notifications.
- PeripheralSession: the discovery and connection state machine. Scans once the channel opens,
  connects to a peripheral, mirrors the Board and sends pin commands. Relay failures become
  PeripheralRequestErrorEvent or PeripheralConnectionLostEvent for the listeners.
- BoardStatePoller: refreshes the board mirror every poll period while connected.
- BoardLink: the facade applications use. scan(), connect(), the pin queries and writes.
- BoardLinkSettings: relay url and timings, loaded from boardlink.cfg files with configobj.


## Threading

Only the transport reader runs on its own thread. Its events are queued and delivered when the owner
calls BoardLink.update(), so listeners, the session and the board mirror all run on the caller's thread.
Hosts without a loop of their own can run a BoardLinkLoop, which calls update() on a background thread.

"""
