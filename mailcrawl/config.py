import errno
import os
import yaml


__all__ = ['config']


if 'MAILCRAWL_ENV' in os.environ:
    assert os.environ['MAILCRAWL_ENV'] in ('dev', 'test', 'staging', 'prod'), \
        "MAILCRAWL_ENV must be either 'dev', 'test', staging, or 'prod'"
    env = os.environ['MAILCRAWL_ENV']
else:
    env = 'prod'


def is_live_env():
    return env == 'prod' or env == 'staging'


class ConfigError(Exception):

    def __init__(self, error=None, help=None):
        self.error = error or ''
        self.help = help or \
            'Run `sudo cp etc/config-dev.json /etc/mailcrawl/config.json` ' \
            'and retry.'

    def __str__(self):
        return '{0} {1}'.format(self.error, self.help)


class Configuration(dict):

    def __init__(self, *args, **kwargs):
        dict.__init__(self, *args, **kwargs)

    def get_required(self, key):
        if key not in self:
            raise ConfigError('Missing config value for {0}.'.format(key))

        return self[key]


def _update_config_from_env(config, env):
    """
    Update a config dictionary from configuration files specified in the
    environment.

    The environment variable `MAILCRAWL_CFG_PATH` contains a list of .json or
    .yml paths separated by colons. The files are read in reverse order, so
    that the settings specified in the leftmost configuration files take
    precedence.

    The following paths will always be appended:

    If `MAILCRAWL_ENV` is 'prod' or 'staging':
      /etc/mailcrawl/secrets.yml:/etc/mailcrawl/config.json

    Otherwise:
      {srcdir}/etc/secrets-{env}.yml:{srcdir}/etc/config-{env}.json

    Missing files in the path will be ignored.

    """
    srcdir = os.path.join(os.path.dirname(os.path.realpath(__file__)), '..')

    if env in ['prod', 'staging']:
        base_cfg_path = [
            '/etc/mailcrawl/secrets.yml',
            '/etc/mailcrawl/config.json',
        ]
    else:
        v = {'env': env, 'srcdir': srcdir}
        base_cfg_path = [
            '{srcdir}/etc/secrets-{env}.yml'.format(**v),
            '{srcdir}/etc/config-{env}.json'.format(**v),
        ]

    if 'MAILCRAWL_CFG_PATH' in os.environ:
        cfg_path = os.environ.get('MAILCRAWL_CFG_PATH', '').split(
            os.path.pathsep)
        cfg_path = list(p.strip() for p in cfg_path if p.strip())
    else:
        cfg_path = []

    path = cfg_path + base_cfg_path

    for filename in reversed(path):
        try:
            f = open(filename)
        except (IOError, OSError) as e:
            if e.errno != errno.ENOENT:
                raise
        else:
            with f:
                # this also parses json, which is a subset of yaml
                config.update(yaml.safe_load(f) or {})


def _get_process_name(config):
    if os.environ.get('PROCESS_NAME') is not None:
        config['PROCESS_NAME'] = os.environ.get('PROCESS_NAME')


config = Configuration()
_update_config_from_env(config, env)
_get_process_name(config)
