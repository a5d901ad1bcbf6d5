#
# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
#
"""
Configuration for the local execution engine. A configuration is a dict of
sections, each of which may be supplied by a JSON configuration file, e.g.

{
    "state_engine": {
        "respect_wait_ceiling": false,
        "max_wait_seconds": 30,
        "max_concurrency": 10,
        "region": "local",
        "account": "0123456789"
    },
    "tracer": {
        "implementation": "Jaeger",
        "config": {"sampler": {"type": "const", "param": 1}}
    },
    "metrics": {
        "implementation": "Prometheus",
        "namespace": "asl_local_engine"
    }
}

with any value overridden by an environment variable.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import copy, os

from asl_local_engine.logger import init_logging

try:  # Attempt to use ujson if available https://pypi.org/project/ujson/
    import ujson as json
except ImportError:  # Fall back to standard library json
    import json

DEFAULT_CONFIG = {
    "state_engine": {
        "respect_wait_ceiling": False,
        "max_wait_seconds": 30,
        "max_concurrency": 10,
        "region": "local",
        "account": "0123456789",
    },
    "tracer": {"implementation": "None"},
    "metrics": {"implementation": "None", "namespace": ""},
}


def to_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def merge_config(*configs):
    """
    Provide defaults for any unset config section or key, later configs
    override earlier ones section by section.
    """
    merged = copy.deepcopy(DEFAULT_CONFIG)
    for section, values in (
        item for config in configs for item in (config or {}).items()
    ):
        if isinstance(values, dict):
            merged.setdefault(section, {}).update(values)
        else:
            merged[section] = values
    return merged


def load_config(configuration_file=None, config=None):
    """
    :param configuration_file: Optional path to a JSON configuration file
    :type configuration_file: str
    :param config: Optional partial configuration dict, applied after the file
    :type config: dict
    :raises IOError: If configuration file does not exist, or is not readable
    :raises ValueError: If configuration file does not contain valid JSON
    """
    logger = init_logging(log_name="asl_local_engine")

    file_config = {}
    if configuration_file:
        try:
            with open(configuration_file, "r") as fp:
                file_config = json.load(fp)
        except IOError:
            logger.error(
                "Unable to read configuration file: {}".format(configuration_file)
            )
            raise
        except ValueError:
            logger.error("Configuration file does not contain valid JSON")
            raise

    config = merge_config(file_config, config)

    """
    Override config values if a field is set as an environment variable.
    There is also a USE_STRUCTURED_LOGGING environment variable used by
    the logger to select between automation friendly structured logging
    or more human readable "traditional" logs.
    """
    se = config["state_engine"]
    se["respect_wait_ceiling"] = to_bool(os.environ.get(
        "STATE_ENGINE_RESPECT_WAIT_CEILING", se.get("respect_wait_ceiling")
    ))
    se["max_wait_seconds"] = float(os.environ.get(
        "STATE_ENGINE_MAX_WAIT_SECONDS", se.get("max_wait_seconds")
    ))
    se["max_concurrency"] = int(float(os.environ.get(
        "STATE_ENGINE_MAX_CONCURRENCY", se.get("max_concurrency")
    )))
    se["region"] = os.environ.get("STATE_ENGINE_REGION", se.get("region"))
    se["account"] = os.environ.get("STATE_ENGINE_ACCOUNT", se.get("account"))

    tr = config["tracer"]
    tr["implementation"] = os.environ.get("TRACER_IMPLEMENTATION",
                                          tr.get("implementation", "None"))

    me = config["metrics"]
    me["implementation"] = os.environ.get("METRICS_IMPLEMENTATION",
                                          me.get("implementation", "None"))
    me["namespace"] = os.environ.get("METRICS_NAMESPACE",
                                     me.get("namespace", ""))
    return config
