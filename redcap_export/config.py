"""
    Connection settings for the export scripts, read from environment variables.

        REDCAP_URL          api_url
        REDCAP_API_TOKEN    api_token
        REDCAP_VERBOSE      verbose (0/false/no/off to silence outcome messages)
        REDCAP_TIMEOUT      timeout in seconds, passed on to requests
"""

import os

FALSE_STRINGS = ("0", "false", "no", "off")


def load_config(environ=None):
    """
        Values are read as is; REDCAP_TIMEOUT is only converted by transport_options so that importing
        this module never fails on a bad environment.
    """
    if environ is None:
        environ = os.environ

    return {
        "api_url": environ.get("REDCAP_URL", "").strip(),
        "api_token": environ.get("REDCAP_API_TOKEN", ""),
        "verbose": environ.get("REDCAP_VERBOSE", "true").strip().lower() not in FALSE_STRINGS,
        "timeout": environ.get("REDCAP_TIMEOUT", "").strip() or None,
    }


def transport_options(settings):
    """
        :param settings: dict as returned by load_config
        :raises ValueError: when the timeout is not a number of seconds
        :return: dict of keyword args for requests.post
    """
    options = {}
    timeout = settings.get("timeout")

    if timeout is not None:
        try:
            options["timeout"] = float(timeout)
        except ValueError:
            raise ValueError(
                'REDCAP_TIMEOUT must be a number of seconds, received "{}"'.format(timeout)
            )

    return options


config = load_config()
