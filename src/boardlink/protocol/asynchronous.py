"""
Provides building blocks for implementing asynchronous protocols. They are represented abstractly as two message queues.
"""
import logging
import threading
import time
from abc import abstractmethod
from collections import defaultdict
from collections.abc import Callable
from concurrent.futures import Future

from boardlink.conduit.base import Conduit

logger = logging.getLogger(__name__)


class ProtocolError(IOError):
    """
    Error raised when a message received does not conform to the protocol.
    """


class Request:
    """ Encapsulates the request data.  A request is a message sent from the client to the server. """

    @abstractmethod
    def to_message(self) -> str:
        """ Encodes the request as a single message. """
        raise NotImplementedError()

    @property
    def response_keys(self) -> list:
        """ retrieves an iterable over keys that are used to correlate requests with corresponding responses. """
        raise NotImplementedError()


class Response:
    """Represents a response, which has been decoded from a message and has a value.

    A response is a message sent from the server to the client.
    Some responses may be unsolicited - have no originating request from a known client.
    """

    @property
    def response_key(self):
        """
        :return: a key that can be used to pair this response with a previously sent request.
        Will be None if this response is unsolicited.
        """
        raise NotImplementedError()

    @property
    def value(self):
        """
        The decoded representation of the response value. When the peer reports a failure,
        this is the exception describing it.
        """
        raise NotImplementedError()


class FutureResponse(Future):
    """ Relates a request and it's future response value.
        If the peer reports a failure the exception is set instead."""

    def __init__(self, request: Request):
        """
        :param request: The request this response is for.
        """
        super().__init__()
        self._request = request

    @property
    def request(self):
        return self._request

    def set_result_or_exception(self, value):
        if isinstance(value, BaseException):
            self.set_exception(value)
        else:
            self.set_result(value)


class AsyncLoop:
    """ Continually runs a given function on a background thread.
        Exceptions are logged and posted to a given handler
        The background thread is registered as a daemon.
    """

    def __init__(self, fn: Callable=None, args=(), log=logger):
        """
        :param fn the function to run
        :param args arguments to pass to fn
        """
        self.fn = fn
        self.args = args
        self.stop_event = threading.Event()
        self.background_thread = None
        self.logger = log

    def start(self):
        """
        Starts the background thread.
        """
        if self.background_thread is None:
            t = threading.Thread(target=self._run, daemon=True)
            self.background_thread = t
            t.start()

    def exception_handler(self, e):
        self.logger.exception(e)

    def _run(self):
        """ The processing loop for the background thread.
             Invokes the callable for as long as the stop signal is not received.
        """
        self._do(self.startup)
        while self.running():
            self._do(self.loop)
        self._do(self.shutdown)
        self.logger.debug("background thread exiting")

    def _do(self, callme):
        """ runs a function and captures any exceptions """
        try:
            time.sleep(0)
            callme()
        except Exception as e:
            time.sleep(0)
            self.exception_handler(e)

    def startup(self):
        """ template method called when the thread starts"""
        pass

    def loop(self):
        self.fn(*self.args)

    def shutdown(self):
        """ template method called when the thread exits """
        pass

    def running(self):
        return not self.stop_event.is_set()

    def stop(self):
        event = self.stop_event
        event.set()
        thread = self.background_thread
        self.background_thread = None
        if thread and thread is not threading.current_thread():
            thread.join()


class BaseAsyncProtocolHandler:
    """
    Wraps a conduit in an asynchronous request/response handler. The format for the requests and responses is not
    defined at this level, but the class takes care of registering requests sent along with a future response and
    associating incoming responses with the originating request.

    The primary method to use is async_request(r:Request) which asynchronously sends the request and fetches the
    response. The returned FutureResponse can be used by the caller to check if the response has arrived or wait
    for the response.

    To handle unsolicited responses (with no originating request), use add_unmatched_response_handler().

     :param conduit: The conduit over which the protocol is conducted
    """

    def __init__(self, conduit: Conduit):
        self._conduit = conduit
        self._requests = defaultdict(list)
        self._lock = threading.Lock()
        self._unmatched = []

    @property
    def conduit(self):
        return self._conduit

    def add_unmatched_response_handler(self, fn):
        """add a function that is called with unsolicited responses.

        :param fn: A callable that takes a single argument. This function is called with any responses that did not
                originate from a request (such as notifications and calls from the peer.)
        """
        if fn not in self._unmatched:
            self._unmatched.append(fn)

    def async_request(self, request: Request) -> FutureResponse:
        """ Asynchronously sends a request to the conduit.
        :param request: The request to send.
        :return: A FutureResponse where the corresponding response to the request can be retrieved when it arrives.
        """
        future = FutureResponse(request)
        self._register_future(future)
        try:
            self._stream_request(request)
        except Exception:
            self._unregister_future(future)
            raise
        return future

    def fail_pending(self, exception):
        """ completes every outstanding future with the given exception. Used when the conduit closes. """
        with self._lock:
            pending = [f for futures in self._requests.values() for f in futures]
            self._requests.clear()
        for f in pending:
            if not f.done():
                f.set_exception(exception)
        return pending

    def _stream_request(self, request):
        """ sends the request as a single message on the conduit """
        self._conduit.send(request.to_message())

    def _register_future(self, future: FutureResponse):
        """
        registers a FutureResponse so that it can be later retrieved when the corresponding response arrives.
        """
        request = future.request
        if request.response_keys:
            with self._lock:
                for key in request.response_keys:
                    self._requests[key].append(future)

    def _unregister_future(self, future: FutureResponse):
        request = future.request
        if request.response_keys:
            with self._lock:
                for key in request.response_keys:
                    futures = self._requests.get(key)
                    if futures and future in futures:
                        futures.remove(future)
                        if not futures:
                            del self._requests[key]

    @abstractmethod
    def _decode_response(self, message: str) -> Response:
        """  Template method for subclasses. decodes a message received from the conduit. """
        raise NotImplementedError()

    def process_message(self, message):
        """ decodes and processes a message that was received from the conduit. """
        return self.process_response(self._decode_response(message))

    def process_response(self, response: Response) -> Response:
        """
        Handles the response by associating with any previous request or notifying unmatched response
        listeners.
        """
        if response is not None:
            futures = self._matching_futures(response)
            if futures:
                for f in futures:
                    self._set_future_response(f, response)
            else:
                for callback in self._unmatched:
                    callback(response)
        return response

    def _set_future_response(self, future: FutureResponse, response: Response):
        """ sets the response on the given future and removes the associated request, now that it has been handled. """
        self._unregister_future(future)
        future.set_result_or_exception(response.value)

    def _matching_futures(self, response):
        """ finds matching futures for the given response """
        with self._lock:
            return list(self._requests.get(response.response_key, ()))
