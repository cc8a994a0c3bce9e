"""
Listener lists. A handler is any callable; fire() calls each handler with the event.
"""
from queue import Empty, Queue


class EventSource(object):

    def __init__(self):
        self._handlers = []

    def __iadd__(self, handler):
        return self.add(handler)

    def __isub__(self, handler):
        return self.remove(handler)

    def add(self, handler):
        self._handlers.append(handler)
        return self

    def remove(self, handler):
        """ removes the handler. Removing a handler that was never added is not an error. """
        if handler in self._handlers:
            self._handlers.remove(handler)
        return self

    def handlers(self):
        """ a snapshot of the handlers, so handlers can add or remove handlers while an event is fired """
        return tuple(self._handlers)

    def fire(self, *args, **kwargs):
        self._deliver(*args, **kwargs)

    def _deliver(self, *args, **kwargs):
        for handler in self.handlers():
            handler(*args, **kwargs)


class QueuedEventSource(EventSource):
    """
    fire() only queues the event. Queued events reach the handlers when publish() is called.
    Any thread may fire. Handlers run on the thread that publishes.
    """
    def __init__(self):
        super().__init__()
        self.event_queue = Queue()

    def fire(self, event):
        self.event_queue.put(event)

    def publish(self):
        """ delivers the events queued so far. Events fired by the handlers wait for the next publish().
        :return: the number of events delivered
        """
        pending = []
        while True:
            try:
                pending.append(self.event_queue.get_nowait())
            except Empty:
                break
        for event in pending:
            self._deliver(event)
        return len(pending)
