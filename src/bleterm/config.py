# MIT License
#
# Copyright (c) 2025 bleterm Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Configuration helpers.

Configuration arrives either as a plain dict or as a ConfigObj section read
from an INI-style file (Reticulum ships configobj as RNS.vendor.configobj).
Values read from files are strings, so booleans and numbers are converted
on access.

Example file:

    [BLE Terminal]
      name = Bench Terminal
      auto_scan = yes
      log_undecodable_hex = no
      adapter = hci0
      adapter_index = 0
      connection_timeout = 10
"""

import os

import RNS
from RNS.vendor.configobj import ConfigObj

DEFAULT_SECTION = "BLE Terminal"


def get_config_obj(configuration):
    """
    Normalise a configuration argument into a dict-like object.

    Args:
        configuration: None, a dict, or a ConfigObj (or one of its sections)

    Returns:
        Object supporting .get(key, default)
    """
    if configuration is None:
        return {}
    if isinstance(configuration, dict):
        # ConfigObj and its Sections are dict subclasses
        return configuration
    raise TypeError(f"Unsupported configuration type {type(configuration).__name__}")


def as_bool(value, default=False):
    """Convert "yes"/"no" style config values to bool."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ["yes", "true", "1", "on"]
    return bool(value)


def as_float(value, default):
    if value is None:
        return default
    return float(value)


def as_int(value, default):
    if value is None:
        return default
    return int(value)


def load_config_file(path, section=DEFAULT_SECTION):
    """
    Read a configuration file and return the requested section.

    A missing section yields an empty dict so that all defaults apply.

    Raises:
        FileNotFoundError: path does not exist
    """
    path = os.path.expanduser(path)
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Configuration file {path} not found")

    config = ConfigObj(path)
    if section in config:
        RNS.log(f"Loaded configuration section [{section}] from {path}", RNS.LOG_DEBUG)
        return config[section]

    RNS.log(f"No [{section}] section in {path}, using defaults", RNS.LOG_WARNING)
    return {}
