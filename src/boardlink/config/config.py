import logging
import os
import platform

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from validate import Validator

logger = logging.getLogger(__name__)

# The default extension for configuration files
config_extension = '.cfg'


def config_flavor(name, flavor=None):
    configname = name if not flavor else name + '.' + flavor
    return configname


def config_filename(name, directory):
    """
    The path of a config file in the given directory.
    """
    return os.path.join(directory, name + config_extension)


def load_config_file_base(file, must_exist=True):
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an exception is thrown.
    :return: The ConfigObj instance for the file.
    """
    try:
        return ConfigObj(file, interpolation='Template', file_error=must_exist) \
            if must_exist or os.path.exists(file) else ConfigObj()
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file) from e


def config_flavor_file(name, directory, subpart=None) -> ConfigObj:
    """
    Loads a specialization of a config file. The configuration file is expected to be named
    after the base, followed by a period and then the specialization, if the specialization is given,
    otherwise just the base name. A missing file gives an empty configuration.
    """
    configname = config_flavor(name, subpart)
    return load_config_file_base(config_filename(configname, directory), False)


def map_os_name(name):
    """
    >>> map_os_name('Windows')
    'windows'
    >>> map_os_name("Darwin")
    'osx'
    """
    name = name.lower()
    if name == 'darwin':
        name = 'osx'
    return name


def os_name():
    return map_os_name(platform.system())


def load_config(name, directory, user_directory='~'):
    """
    Loads all the configuration files that relate to the given name.
    Later files override earlier ones:

    - the default specialization, name.default.cfg
    - the platform specialization, e.g. name.linux.cfg
    - the user override, name.cfg in the user directory
    - the local configuration, name.cfg in the given directory

    The merged configuration is validated against name.schema.cfg, which also converts
    values to their declared types and supplies defaults.
    :param name: the base name of the configuration to load.
    :param directory: the directory holding the configuration files.
    :param user_directory: the directory holding the user override.
    :raises ConfigObjError: when a file cannot be parsed or the configuration fails validation.
    """
    default_config = config_flavor_file(name, directory, 'default')
    platform_config = config_flavor_file(name, directory, os_name())
    user_config = load_config_file_base(config_filename(name, os.path.expanduser(user_directory)),
                                        must_exist=False)
    local_config = config_flavor_file(name, directory)
    config = ConfigObj()
    config.merge(default_config)
    config.merge(platform_config)
    config.merge(user_config)
    config.merge(local_config)

    config.configspec = config_flavor_file(name, directory, 'schema')
    result = config.validate(Validator())
    if result is not True:
        for section_list, key, error in flatten_errors(config, result):
            if key is not None:
                logger.warning('the "%s" key in section "%s" failed validation: %s' %
                               (key, ', '.join(section_list), error))
            else:
                logger.warning('section "%s" is missing' % ', '.join(section_list))
        raise ConfigObjError("the config file %s failed validation" % name)
    return config


def fetch_conf_path(conf: Section, path):
    """
    Retrieves the named configuration section
    :param conf:        The root configuration
    :param path:        An iterable that lists the names of the sections to resolve
    :return: The configuration section identified by the path, or None
    """
    for p in path:
        conf = conf.get(p, None)
        if conf is None:
            return None
    return conf


def apply_conf_path(conf: Section, name_parts, target):
    """
    Applies the values in a configuration section to a given target object
    :param conf:        The root configuration object
    :param name_parts:  The path of the section to apply
    :param target:      The target object that receives the configured values
    :return: True if the section exists
    """
    conf = fetch_conf_path(conf, name_parts)
    if conf:
        apply_conf(conf, target)
    return conf is not None


def apply_conf(conf: Section, target):
    """
    Sets each attribute of the target that has the same name as a value in the configuration.
    Nested sections and names the target does not have are ignored.
    """
    for k, v in conf.items():
        if not isinstance(v, Section) and hasattr(target, k):
            setattr(target, k, v)
