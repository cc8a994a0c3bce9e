import logging
import os

from boardlink.config.config import apply_conf_path, load_config
from boardlink.support.mixins import CommonEqualityMixin, StringerMixin

logger = logging.getLogger(__name__)

config_name = 'boardlink'
config_directory = os.path.dirname(os.path.abspath(__file__))


class BoardLinkSettings(CommonEqualityMixin, StringerMixin):
    """
    Tunables for a BoardLink. The defaults match a relay running on this machine.
    """

    def __init__(self, relay_url='ws://localhost:2020', connect_timeout=5.0, discovery_timeout=15.0,
                 poll_period=0.1, extension_id='scrattino', peripheral_options=None):
        self.relay_url = relay_url
        self.connect_timeout = connect_timeout
        self.discovery_timeout = discovery_timeout
        self.poll_period = poll_period
        self.extension_id = extension_id
        self.peripheral_options = peripheral_options if peripheral_options is not None else {}

    @classmethod
    def load(cls, name=config_name, directory=config_directory, user_directory='~'):
        """
        Builds settings from the [boardlink] section of the layered configuration files.
        :raises ConfigObjError: when the configuration is invalid.
        """
        settings = cls()
        conf = load_config(name, directory, user_directory)
        if not apply_conf_path(conf, ['boardlink'], settings):
            logger.debug("no [boardlink] section in %s configuration, using defaults" % name)
        logger.debug("loaded settings %s" % settings)
        return settings
