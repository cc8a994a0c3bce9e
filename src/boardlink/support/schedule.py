"""
Timers driven by the caller's clock. Nothing here sleeps or starts a thread; the owner
passes the current time in and acts on the answer.
"""
from boardlink.support.mixins import CommonEqualityMixin


class PeriodStrategy(CommonEqualityMixin):
    """
    Determines when a periodic action is next due.
    """

    def __init__(self, period, last_run=None):
        """
        :param period: The period in seconds.
        """
        self.last_run = last_run         # the time last run
        self.period = period

    def __call__(self, current_time, dryRun=False):
        """return the length of time until the action should run again. A result <= 0 means it is due now.
            :param dryRun: when True, the last run time is not updated
        """
        result = self._time_to_run(current_time)
        if not dryRun and result <= 0:
            self.last_run = current_time
        return result

    def _time_to_run(self, current_time):
        return 0 if self.last_run is None else self.period - (current_time - self.last_run)

    def reset(self):
        self.last_run = None


class Deadline:
    """
    A one-shot timer. Once armed, expired() returns True exactly once, at or after the
    deadline, unless cancelled first.
    """

    def __init__(self, duration):
        self.duration = duration
        self.expires_at = None

    @property
    def armed(self):
        return self.expires_at is not None

    def arm(self, current_time):
        """ (re)arms the timer, replacing any previous deadline """
        self.expires_at = current_time + self.duration

    def cancel(self):
        self.expires_at = None

    def expired(self, current_time):
        if self.expires_at is None or current_time < self.expires_at:
            return False
        self.expires_at = None
        return True
