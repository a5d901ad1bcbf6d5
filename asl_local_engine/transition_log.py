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
The TransitionLog is the append-only record of every transition made by an
execution: state entries and exits, Map iterations, Parallel branches, task
handler invocations and the execution level start and terminal events. It is
the only state shared by concurrently running Parallel branches and Map
iterations, so appends are serialised by a lock and listeners are called
synchronously, in sequence order, while the record is being appended.

Each transition is also logged. The State Machine's loggingConfiguration
selects which transitions are logged at INFO level, using the CloudWatch Logs
level semantics, everything else is logged at DEBUG.
https://docs.aws.amazon.com/step-functions/latest/dg/cloudwatch-log-level.html
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import copy, fnmatch, threading, time
from collections import namedtuple

from asl_local_engine.asl_exceptions import ExecutionHistoryLimitExceeded
from asl_local_engine.context import now_rfc3339

MAX_EXECUTION_HISTORY_LENGTH = 25000

TransitionRecord = namedtuple(
    "TransitionRecord",
    [
        "sequence",
        "label",
        "state_name",
        "elapsed_millis",
        "timestamp",
        "input",
        "output",
        "index",
        "length",
        "error",
    ],
)

# A dict mapping transition labels with the set of log levels.
log_dict = {
    "ChoiceStateAborted":           {"ALL", "ERROR"},
    "ChoiceStateEntered":           {"ALL"},
    "ChoiceStateExited":            {"ALL"},
    "ChoiceStateFailed":            {"ALL", "ERROR"},
    "ExecutionAborted":             {"ALL", "ERROR", "FATAL"},
    "ExecutionFailed":              {"ALL", "ERROR", "FATAL"},
    "ExecutionStarted":             {"ALL"},
    "ExecutionSucceeded":           {"ALL"},
    "ExecutionTimedOut":            {"ALL", "ERROR", "FATAL"},
    "FailStateAborted":             {"ALL", "ERROR"},
    "FailStateEntered":             {"ALL", "ERROR"},
    "FailStateExited":              {"ALL", "ERROR"},
    "FailStateFailed":              {"ALL", "ERROR"},
    "LambdaFunctionFailed":         {"ALL", "ERROR"},
    "LambdaFunctionScheduled":      {"ALL"},
    "LambdaFunctionStarted":        {"ALL"},
    "LambdaFunctionSucceeded":      {"ALL"},
    "MapIterationStarted":          {"ALL"},
    "MapIterationSucceeded":        {"ALL"},
    "MapStateAborted":              {"ALL", "ERROR"},
    "MapStateEntered":              {"ALL"},
    "MapStateExited":               {"ALL"},
    "MapStateFailed":               {"ALL", "ERROR"},
    "MapStateStarted":              {"ALL"},
    "MapStateSucceeded":            {"ALL"},
    "ParallelStateAborted":         {"ALL", "ERROR"},
    "ParallelStateEntered":         {"ALL"},
    "ParallelStateExited":          {"ALL"},
    "ParallelStateFailed":          {"ALL", "ERROR"},
    "ParallelStateStarted":         {"ALL"},
    "ParallelStateSucceeded":       {"ALL"},
    "PassStateAborted":             {"ALL", "ERROR"},
    "PassStateEntered":             {"ALL"},
    "PassStateExited":              {"ALL"},
    "PassStateFailed":              {"ALL", "ERROR"},
    "SucceedStateAborted":          {"ALL", "ERROR"},
    "SucceedStateEntered":          {"ALL"},
    "SucceedStateExited":           {"ALL"},
    "SucceedStateFailed":           {"ALL", "ERROR"},
    "TaskStateAborted":             {"ALL", "ERROR"},
    "TaskStateEntered":             {"ALL"},
    "TaskStateExited":              {"ALL"},
    "TaskStateFailed":              {"ALL", "ERROR"},
    "WaitStateAborted":             {"ALL", "ERROR"},
    "WaitStateEntered":             {"ALL"},
    "WaitStateExited":              {"ALL"},
    "WaitStateFailed":              {"ALL", "ERROR"},
}

TERMINAL_LABELS = {
    "ExecutionSucceeded",
    "ExecutionFailed",
    "ExecutionAborted",
    "ExecutionTimedOut",
}


class TransitionLog(object):
    def __init__(self, logger, logging_configuration=None,
                 history_limit=MAX_EXECUTION_HISTORY_LENGTH):
        self.logger = logger
        # https://docs.aws.amazon.com/step-functions/latest/apireference/API_LoggingConfiguration.html
        logging_configuration = logging_configuration or {}
        self.logging_level = logging_configuration.get("level", "OFF")
        self.include_data = logging_configuration.get("includeExecutionData", False)
        self.history_limit = history_limit
        self.execution_arn = ""
        self.listeners = []  # List of (label pattern, callback) tuples
        self.lock = threading.RLock()
        self.records = []
        self.start = time.monotonic()

    def reset(self, execution_arn=""):
        with self.lock:
            self.execution_arn = execution_arn
            self.records = []
            self.start = time.monotonic()

    def subscribe(self, label, callback):
        """
        Register callback to be called with each TransitionRecord whose label
        matches label, which may be an exact label or a wildcard pattern such
        as "Map*" or "*".
        """
        with self.lock:
            self.listeners.append((label, callback))

    def unsubscribe(self, label, callback):
        with self.lock:
            self.listeners.remove((label, callback))

    def get_trace(self):
        with self.lock:
            return list(self.records)

    def last_terminal_record(self):
        with self.lock:
            for record in reversed(self.records):
                if record.label in TERMINAL_LABELS:
                    return record
        return None

    def record(self, label, state_name=None, input=None, output=None,
               index=None, length=None, error=None):
        """
        Append a TransitionRecord and notify listeners. Execution level
        transitions are always recorded so that the terminal record of an
        execution that exceeded the history limit is still present.
        """
        with self.lock:
            if (len(self.records) >= self.history_limit and
                    not label.startswith("Execution")):
                raise ExecutionHistoryLimitExceeded(
                    "Execution history exceeded {} transitions".format(
                        self.history_limit
                    )
                )

            record = TransitionRecord(
                sequence=len(self.records) + 1,
                label=label,
                state_name=state_name,
                elapsed_millis=int((time.monotonic() - self.start) * 1000),
                timestamp=now_rfc3339(),
                input=copy.deepcopy(input),
                output=copy.deepcopy(output),
                index=index,
                length=length,
                error=error,
            )
            self.records.append(record)
            self.log(record)

            for pattern, callback in list(self.listeners):
                if pattern == label or fnmatch.fnmatchcase(label, pattern):
                    callback(record)
        return record

    def log(self, record):
        details = {
            k: v for k, v in record._asdict().items()
            if v is not None and k not in ("label", "timestamp")
        }
        level_set = log_dict.get(record.label, set())
        if self.logging_level in level_set:
            # The set of fields to be redacted if includeExecutionData is false.
            data_fields = {"input", "output"}
            logged_details = {
                k: v for k, v in details.items()
                if self.include_data or k not in data_fields
            }
            self.logger.info("{} {} {}".format(
                self.execution_arn, record.label, logged_details
            ))
        else:  # If DEBUG is set then log irrespective of loggingConfiguration.
            self.logger.debug("{} {} {}".format(
                self.execution_arn, record.label, details
            ))
