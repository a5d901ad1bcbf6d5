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
https://states-language.net/spec.html#choice-state
https://docs.aws.amazon.com/step-functions/latest/dg/amazon-states-language-choice-state.html

A Choice state (identified by "Type":"Choice") adds branching logic to a state
machine. evaluate() applies one Choice Rule to the effective input and returns
True, False or None, where None means "undefined" because the rule's Variable
(or the operand of a ...Path comparison) isn't present in the input. An
undefined rule never selects its Next state, it is not an error.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import fnmatch, functools, locale, operator

from asl_local_engine.asl_exceptions import (
    NoChoiceMatched,
    PathMatchFailure,
    Runtime,
)
from asl_local_engine.context import timestamp_millis
from asl_local_engine.state_engine_paths import apply_path

COMBINATORS = ("And", "Or", "Not")


def isnumber(x):
    # General test for numeric - any number x zero is zero
    try:
        return not isinstance(x, bool) and 0 == x * 0
    except TypeError:
        return False


def compare_strings(op, variable, value):
    # Locale aware three-way comparison, the result is then compared to zero.
    if isinstance(variable, str) and isinstance(value, str):
        return op(locale.strcoll(variable, value), 0)
    return False


def compare_numbers(op, variable, value):
    return isnumber(variable) and isnumber(value) and op(variable, value)


def compare_booleans(op, variable, value):
    return isinstance(variable, bool) and isinstance(value, bool) and op(variable, value)


def compare_timestamps(op, variable, value):
    """
    The approach we take is to parse each rfc3339 string into an epoch
    millisecond timestamp and perform the comparisons on those, because
    different rfc3339 representations such as Zulu or local time plus offset
    can both refer to the same actual time.
    """
    try:
        return op(timestamp_millis(variable), timestamp_millis(value))
    except (ValueError, TypeError, IndexError):
        return False


def string_matches(variable, value):
    # https://docs.python.org/3/library/fnmatch.html
    # Change the \ escape to fnmatch [seq] escape and also escape [ and ? as
    # only * is a wildcard in ASL.
    if not (isinstance(variable, str) and isinstance(value, str)):
        return False
    value = value.replace("[", "[[]").replace("?", "[?]").replace("\\*", "[*]")
    return fnmatch.fnmatchcase(variable, value)


def is_timestamp(variable):
    try:
        timestamp_millis(variable)
        return True
    except (ValueError, TypeError, IndexError):
        return False


"""
Comparison operators, keyed by the Choice Rule field name. Each ...Path variant
is derived from these by resolving its operand from the input first.
"""
COMPARISONS = {
    "BooleanEquals": functools.partial(compare_booleans, operator.eq),
    "NumericEquals": functools.partial(compare_numbers, operator.eq),
    "NumericGreaterThan": functools.partial(compare_numbers, operator.gt),
    "NumericGreaterThanEquals": functools.partial(compare_numbers, operator.ge),
    "NumericLessThan": functools.partial(compare_numbers, operator.lt),
    "NumericLessThanEquals": functools.partial(compare_numbers, operator.le),
    "StringEquals": functools.partial(compare_strings, operator.eq),
    "StringGreaterThan": functools.partial(compare_strings, operator.gt),
    "StringGreaterThanEquals": functools.partial(compare_strings, operator.ge),
    "StringLessThan": functools.partial(compare_strings, operator.lt),
    "StringLessThanEquals": functools.partial(compare_strings, operator.le),
    "StringMatches": string_matches,
    "TimestampEquals": functools.partial(compare_timestamps, operator.eq),
    "TimestampGreaterThan": functools.partial(compare_timestamps, operator.gt),
    "TimestampGreaterThanEquals": functools.partial(compare_timestamps, operator.ge),
    "TimestampLessThan": functools.partial(compare_timestamps, operator.lt),
    "TimestampLessThanEquals": functools.partial(compare_timestamps, operator.le),
}

TYPE_TESTS = {
    "IsBoolean": lambda variable: isinstance(variable, bool),
    "IsNull": lambda variable: variable is None,
    "IsNumeric": isnumber,
    "IsString": lambda variable: isinstance(variable, str),
    "IsTimestamp": is_timestamp,
}


class _Undefined:
    pass


UNDEFINED = _Undefined()


def resolve(input, context, path):
    try:
        return apply_path(input, context, path)
    except PathMatchFailure:
        return UNDEFINED


def find_operator(rule):
    for key in rule:
        if (
            key in COMPARISONS
            or key in TYPE_TESTS
            or key == "IsPresent"
            or (key.endswith("Path") and key[:-4] in COMPARISONS)
        ):
            return key
    raise Runtime(
        "Choice Rule {} has no recognised comparison operator".format(rule)
    )


def evaluate(rule, input, context=None):
    """
    Evaluate a single Choice Rule, either a Boolean expression (And, Or, Not)
    or a data-test expression, against the effective input.
    """
    for op in ("And", "Or"):
        if op in rule and (not isinstance(rule[op], list) or not rule[op]):
            raise Runtime("Choice Rule {} must be a non-empty array".format(op))

    if "And" in rule:
        return all(evaluate(r, input, context) is True for r in rule["And"])

    if "Or" in rule:
        """
        True if at least one nested rule is true, as ASL defines it.
        """
        return any(evaluate(r, input, context) is True for r in rule["Or"])

    if "Not" in rule:
        result = evaluate(rule["Not"], input, context)
        if result is None:
            return False
        return not result

    if "Variable" not in rule:
        raise Runtime("Choice Rule {} has no Variable field".format(rule))

    key = find_operator(rule)
    variable = resolve(input, context, rule["Variable"])
    value = rule[key]

    if key == "IsPresent":
        return (variable is not UNDEFINED) == value
    if variable is UNDEFINED:
        return None

    if key in TYPE_TESTS:
        return TYPE_TESTS[key](variable) == value

    if key.endswith("Path"):  # Handle variable to variable comparison
        key = key[:-4]
        value = resolve(input, context, value)
        if value is UNDEFINED:
            return None

    return bool(COMPARISONS[key](variable, value))


def choose(state, input, context=None):
    """
    The interpreter attempts pattern-matches against the Choice Rules in array
    order and transitions to the state specified in the Next field on the first
    Choice Rule that evaluates to true. Choice states MAY have a Default field,
    which is used if none of the Choice Rules match, otherwise NoChoiceMatched
    (a States.Runtime error) is raised.
    """
    for rule in state.get("Choices", []):
        if evaluate(rule, input, context) is True:
            return rule["Next"]

    if state.get("Default"):
        return state["Default"]

    raise NoChoiceMatched(
        "No Choice Rule matched and no Default state is defined"
    )
