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
https://states-language.net/spec.html#errors

Task, Parallel and Map states MAY have fields named Retry and Catch. When a
state reports an error the interpreter scans through the Retriers and, when
the Error Name appears in a Retrier's ErrorEquals field, implements the retry
policy described in that Retrier. When there is no Retrier, or retries have
failed to resolve the error, the interpreter scans through the Catchers in
array order and transitions the machine to the state named in the matching
Catcher's Next field.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import asyncio, traceback

from asl_local_engine.asl_exceptions import (
    ExecutionError,
    INTERNAL_ABORTED,
    STATES_ALL,
)
from asl_local_engine.state_engine_paths import apply_jsonpath, apply_resultpath

# Default values taken from ASL specification.
DEFAULT_INTERVAL_SECONDS = 1
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_RATE = 2.0


def error_name(error):
    """
    The Error Name reported for an error, its custom type name if it has one.
    """
    return error.error_type or error.error


def error_matches(pattern, error):
    """
    Tag based matching first: States.ALL, the error's kind or its custom type
    name. Only then, and only for patterns outside the reserved "States."
    namespace, fall back to a substring search of the stringified message
    chain of the error and its causes. An abort is never matched.
    """
    if error.error == INTERNAL_ABORTED:
        return False
    if pattern == STATES_ALL:
        return True
    if pattern == error.error or pattern == error.error_type:
        return True
    if pattern.startswith("States."):
        return False
    return any(pattern in message for message in error.message_chain())


def find_matching_rule(rules, error):
    """
    Return the first (rule, pattern) whose ErrorEquals contains a pattern that
    matches error, or (None, None).
    """
    for rule in rules or []:
        for pattern in rule.get("ErrorEquals", []):
            if error_matches(pattern, error):
                return rule, pattern
    return None, None


def retry_delay(retrier, attempt):
    """
    The delay in seconds before retry number attempt + 1 is made.
    """
    interval_seconds = retrier.get("IntervalSeconds", DEFAULT_INTERVAL_SECONDS)
    backoff_rate = max(retrier.get("BackoffRate", DEFAULT_BACKOFF_RATE), 1.0)
    return interval_seconds * (attempt + 1) * backoff_rate


async def with_retry(state, invoke, logger=None):
    """
    Call the coroutine function invoke(attempt) with attempt starting at zero,
    retrying it as described by the state's Retry field. An error that isn't
    matched by a Retrier, or whose Retrier has no attempts left, is re-raised
    unchanged so that the caller can offer it to the Catchers.
    """
    attempt = 0
    while True:
        try:
            return await invoke(attempt)
        except ExecutionError as e:
            retrier, pattern = find_matching_rule(state.get("Retry"), e)
            if not retrier:
                raise
            max_attempts = retrier.get("MaxAttempts", DEFAULT_MAX_ATTEMPTS)
            if attempt >= max_attempts:
                raise

            delay = retry_delay(retrier, attempt)
            if logger:
                logger.info(
                    "Retrying after {} matched {}, attempt {} of {} in {}s".format(
                        error_name(e), pattern, attempt + 1, max_attempts, delay
                    )
                )
            await asyncio.sleep(delay)
            attempt += 1


def error_output(error, pattern):
    """
    The JSON object a Catcher passes to its Next state, an Error field holding
    the Error Name and a Cause field describing the failure. When the matched
    pattern is States.ALL the Error field holds the actual Error Name, as the
    hosted service reports it, rather than "States.ALL".
    """
    failure = error.cause if isinstance(error.cause, BaseException) else error
    stack_trace = [
        line.rstrip("\n") for line in traceback.format_exception(
            type(failure), failure, failure.__traceback__
        )
    ]
    return {
        "Error": error_name(error) if pattern == STATES_ALL else pattern,
        "Cause": {
            "errorMessage": error.message,
            "errorType": error_name(error),
            "stackTrace": stack_trace,
        },
    }


def catch(state, error, raw_input):
    """
    Offer error to the state's Catchers. If one matches return a tuple of the
    Catcher's Next state and the output produced by applying the Catcher's
    ResultPath (default "$") to the state's raw input followed by its
    OutputPath, marking the error recovered. Return None if nothing matches.
    """
    catcher, pattern = find_matching_rule(state.get("Catch"), error)
    if not catcher:
        return None

    output = apply_resultpath(
        raw_input, error_output(error, pattern), catcher.get("ResultPath", "$")
    )
    output = apply_jsonpath(output, catcher.get("OutputPath", "$"))
    error.recovered = True
    return catcher["Next"], output
