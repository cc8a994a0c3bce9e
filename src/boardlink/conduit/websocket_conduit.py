import socket

from websocket import WebSocket, WebSocketException

from boardlink.conduit import base


class WebSocketConduit(base.Conduit):
    """
    A conduit that exchanges text frames via a connected websocket.
    :param ws The open, connected websocket
    """
    def __init__(self, ws: WebSocket):
        self.ws = ws

    @property
    def open(self) -> bool:
        return bool(self.ws.connected)

    @property
    def target(self):
        return self.ws

    def send(self, message: str):
        self.ws.send(message)

    def receive(self):
        """ the next frame. Binary frames are returned as bytes and decoded by the protocol. """
        return self.ws.recv()

    def close(self):
        try:
            # releases a reader blocked in recv() on another thread
            self.ws.abort()
        except (socket.error, WebSocketException):
            pass
        finally:
            self.ws.shutdown()
