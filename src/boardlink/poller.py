import logging
import time

from boardlink.support.schedule import PeriodStrategy

logger = logging.getLogger(__name__)

DEFAULT_POLL_PERIOD = 0.1


class BoardStatePoller:
    """
    Refreshes the board state at a fixed period while a board is connected.

    The poller is driven by calling maintain() regularly. Each due tick calls refresh() when is_active()
    says there is a board to refresh; otherwise the tick is skipped.

    :param refresh: requests a board-state refresh.
    :param is_active: returns True when a refresh makes sense.
    :param period: seconds between refreshes.
    """

    def __init__(self, refresh, is_active, period=DEFAULT_POLL_PERIOD, log=logger):
        self.refresh = refresh
        self.is_active = is_active
        self.strategy = PeriodStrategy(period)
        self.running = False
        self.logger = log

    @property
    def period(self):
        return self.strategy.period

    def start(self, current_time=None):
        """ starts polling. The first refresh is due one period from now. """
        if current_time is None:
            current_time = time.monotonic()
        self.strategy.last_run = current_time
        if not self.running:
            self.logger.debug("polling board state every %ss" % self.period)
        self.running = True

    def stop(self):
        if self.running:
            self.logger.debug("board state polling stopped")
        self.running = False
        self.strategy.reset()

    def maintain(self, current_time=None):
        """
        Refreshes the board state if a refresh is due.
        :return: True if a refresh was requested.
        """
        if not self.running:
            return False
        if current_time is None:
            current_time = time.monotonic()
        if self.strategy(current_time) > 0:
            return False
        if not self.is_active():
            return False
        self.refresh()
        return True
