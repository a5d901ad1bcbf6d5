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
Defines the exceptions relating to ASL itself as defined in
https://states-language.net/spec.html#appendix-a

Every exception raised by the engine is an ExecutionError. The error attribute
holds the ASL Error Name (the "kind") used when matching Retry and Catch
ErrorEquals patterns, error_type holds the custom type name of a failure raised
by a bound task handler (usually the handler exception's class name) and cause
holds the wrapped exception, if any.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

# Predefined ASL Error Names.
STATES_ALL = "States.ALL"
STATES_RUNTIME = "States.Runtime"
STATES_TIMEOUT = "States.Timeout"
STATES_TASK_FAILED = "States.TaskFailed"
STATES_INTRINSIC_FAILURE = "States.IntrinsicFailure"
STATES_RESULT_PATH_MATCH_FAILURE = "States.ResultPathMatchFailure"
STATES_DATA_LIMIT_EXCEEDED = "States.DataLimitExceeded"
STATES_EXECUTION_HISTORY_LIMIT_EXCEEDED = "States.ExecutionHistoryLimitExceeded"
# Raised on external cancellation, never matched by any ErrorEquals pattern.
INTERNAL_ABORTED = "Internal.Aborted"


class ExecutionError(Exception):
    error = STATES_RUNTIME

    def __init__(self, message="", cause=None, error=None, error_type=None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if error:
            self.error = error
        self.error_type = error_type
        self.recovered = False

    def __str__(self):
        if self.error_type:
            return "{}: {}".format(self.error_type, self.message)
        return "{}: {}".format(self.error, self.message)

    def message_chain(self):
        """
        The stringified messages of this error and each of its causes, used by
        the legacy substring error matching.
        """
        chain = [str(self)]
        cause = self.cause
        while cause is not None:
            chain.append("{}: {}".format(type(cause).__name__, cause))
            cause = getattr(cause, "cause", None)
        return chain


class Runtime(ExecutionError):
    error = STATES_RUNTIME


class NoChoiceMatched(Runtime):
    pass


class ParameterPathFailure(Runtime):
    pass


# Not defined in the ASL spec but used in InputPath/OutputPath and Choice paths.
class PathMatchFailure(Runtime):
    pass


class ResultPathMatchFailure(ExecutionError):
    error = STATES_RESULT_PATH_MATCH_FAILURE


class IntrinsicFailure(ExecutionError):
    error = STATES_INTRINSIC_FAILURE


class Timeout(ExecutionError):
    error = STATES_TIMEOUT


class TaskFailed(ExecutionError):
    error = STATES_TASK_FAILED


class DataLimitExceeded(ExecutionError):
    error = STATES_DATA_LIMIT_EXCEEDED


class ExecutionHistoryLimitExceeded(ExecutionError):
    error = STATES_EXECUTION_HISTORY_LIMIT_EXCEEDED


class Aborted(ExecutionError):
    error = INTERNAL_ABORTED
