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
# Run with:
# PYTHONPATH=.. python3 test_choice_state.py
#
"""
This test tests the ASL choice state implementation
"""

import sys
assert sys.version_info >= (3, 0) # Bomb out if not running Python3

import unittest
from asl_local_engine.asl_exceptions import ExecutionError, NoChoiceMatched, Runtime
from asl_local_engine.logger import init_logging
from asl_local_engine.state_engine import StepFunction
from asl_local_engine.state_engine_choice import evaluate

ASL = """{
    "Comment": "Test Choice State",
    "StartAt": "ChoiceState",
    "States": {
        "ChoiceState": {
            "Type": "Choice",
            "Choices": [
                {
                    "Variable": "$.string_equals",
                    "StringEquals": "hello world",
                    "Next": "StringEqualsSuccess"
                },
                {
                    "Variable": "$.string_less_than",
                    "StringLessThan": "apple",
                    "Next": "StringLessThanSuccess"
                },
                {
                    "Variable": "$.string_greater_than",
                    "StringGreaterThan": "airbnb",
                    "Next": "StringGreaterThanSuccess"
                },
                {
                    "Variable": "$.string_less_than_equals",
                    "StringLessThanEquals": "apple",
                    "Next": "StringLessThanEqualsSuccess"
                },
                {
                    "Variable": "$.string_greater_than_equals",
                    "StringGreaterThanEquals": "airbnb",
                    "Next": "StringGreaterThanEqualsSuccess"
                },
                {
                    "Variable": "$.string_matches",
                    "StringMatches": "*.log",
                    "Next": "StringMatchesSuccess"
                },

                {
                    "Variable": "$.numeric_equals",
                    "NumericEquals": 1234,
                    "Next": "NumericEqualsSuccess"
                },
                {
                    "Variable": "$.numeric_less_than",
                    "NumericLessThan": 1234,
                    "Next": "NumericLessThanSuccess"
                },
                {
                    "Variable": "$.numeric_greater_than",
                    "NumericGreaterThan": 1234,
                    "Next": "NumericGreaterThanSuccess"
                },
                {
                    "Variable": "$.numeric_less_than_equals",
                    "NumericLessThanEquals": 1234,
                    "Next": "NumericLessThanEqualsSuccess"
                },
                {
                    "Variable": "$.numeric_greater_than_equals",
                    "NumericGreaterThanEquals": 1234,
                    "Next": "NumericGreaterThanEqualsSuccess"
                },

                {
                    "Variable": "$.boolean_equals",
                    "BooleanEquals": true,
                    "Next": "BooleanEqualsSuccess"
                },
                {
                    "And": [
                        {
                            "Variable": "$.and_test_value",
                            "NumericGreaterThanEquals": 20
                        },
                        {
                            "Variable": "$.and_test_value",
                            "NumericLessThan": 30
                        }
                    ],
                    "Next": "ValueInTwenties"
                },
                {
                    "Or": [
                        {
                            "Variable": "$.animal",
                            "StringEquals": "cat"
                        },
                        {
                            "Variable": "$.animal",
                            "StringEquals": "dog"
                        }
                    ],
                    "Next": "IsPet"
                },
                {
                    "And": [
                        {
                            "Or": [
                                {
                                    "Variable": "$.name",
                                    "StringEquals": "shrek"
                                },
                                {
                                    "Variable": "$.name",
                                    "StringEquals": "donkey"
                                }
                            ]
                        },
                        {
                            "And": [
                                {
                                    "Variable": "$.age",
                                    "NumericGreaterThanEquals": 40
                                },
                                {
                                    "Variable": "$.age",
                                    "NumericLessThan": 60
                                }
                            ]

                        },
                        {
                            "Not": {
                                "Variable": "$.colour",
                                "StringEquals": "pink"
                            }
                        }
                    ],
                    "Next": "IsCharacter"
                },
                {
                    "Variable": "$.timestamp_equals",
                    "TimestampEquals": "2019-08-08T10:55:25.325038+01:00",
                    "Next": "TimestampEqualsSuccess"
                },
                {
                    "Variable": "$.timestamp_less_than",
                    "TimestampLessThan": "2019-08-08T10:55:25.325038+01:00",
                    "Next": "TimestampLessThanSuccess"
                },
                {
                    "Variable": "$.timestamp_greater_than",
                    "TimestampGreaterThan": "2019-08-08T10:55:25.325038+01:00",
                    "Next": "TimestampGreaterThanSuccess"
                },
                {
                    "Variable": "$.timestamp_less_than_equals",
                    "TimestampLessThanEquals": "2019-08-08T10:55:25.325038+01:00",
                    "Next": "TimestampLessThanEqualsSuccess"
                },
                {
                    "Variable": "$.timestamp_greater_than_equals",
                    "TimestampGreaterThanEquals": "2019-08-08T10:55:25.325038+01:00",
                    "Next": "TimestampGreaterThanEqualsSuccess"
                },
                {
                    "Variable": "$.optional",
                    "IsPresent": true,
                    "Next": "IsPresentSuccess"
                },
                {
                    "Not": {
                        "Variable": "$.not_string_equals",
                        "StringEquals": "hello world"
                    },
                    "Next": "NotStringEqualsSuccess"
                }
            ],
            "Default": "FailState"
        },
        "FailState": {
            "Type": "Fail",
            "Error": "NoMatchError",
            "Cause": "No Matches!"
        },
        "StringEqualsSuccess": {
            "Type": "Pass",
            "End": true
        },
        "StringLessThanSuccess": {
            "Type": "Pass",
            "End": true
        },
        "StringGreaterThanSuccess": {
            "Type": "Pass",
            "End": true
        },
        "StringLessThanEqualsSuccess": {
            "Type": "Pass",
            "End": true
        },
        "StringGreaterThanEqualsSuccess": {
            "Type": "Pass",
            "End": true
        },
        "StringMatchesSuccess": {
            "Type": "Pass",
            "End": true
        },

        "NumericEqualsSuccess": {
            "Type": "Pass",
            "End": true
        },
        "NumericLessThanSuccess": {
            "Type": "Pass",
            "End": true
        },
        "NumericGreaterThanSuccess": {
            "Type": "Pass",
            "End": true
        },
        "NumericLessThanEqualsSuccess": {
            "Type": "Pass",
            "End": true
        },
        "NumericGreaterThanEqualsSuccess": {
            "Type": "Pass",
            "End": true
        },

        "BooleanEqualsSuccess": {
            "Type": "Pass",
            "End": true
        },
        "ValueInTwenties": {
            "Type": "Pass",
            "End": true
        },
        "IsPet": {
            "Type": "Pass",
            "End": true
        },
        "IsCharacter": {
            "Type": "Pass",
            "End": true
        },
        "TimestampEqualsSuccess": {
            "Type": "Pass",
            "End": true
        },
        "TimestampLessThanSuccess": {
            "Type": "Pass",
            "End": true
        },
        "TimestampGreaterThanSuccess": {
            "Type": "Pass",
            "End": true
        },
        "TimestampLessThanEqualsSuccess": {
            "Type": "Pass",
            "End": true
        },
        "TimestampGreaterThanEqualsSuccess": {
            "Type": "Pass",
            "End": true
        },
        "IsPresentSuccess": {
            "Type": "Pass",
            "End": true
        },
        "NotStringEqualsSuccess": {
            "Type": "Pass",
            "End": true
        }
    }
}"""

BOUNDARY_ASL = """{
    "StartAt": "Threshold",
    "States": {
        "Threshold": {
            "Type": "Choice",
            "Choices": [
                {
                    "Variable": "$.v",
                    "NumericGreaterThan": 10,
                    "Next": "X"
                }
            ],
            "Default": "Y"
        },
        "X": {
            "Type": "Pass",
            "End": true
        },
        "Y": {
            "Type": "Pass",
            "End": true
        }
    }
}"""

NO_DEFAULT_ASL = """{
    "StartAt": "NoDefault",
    "States": {
        "NoDefault": {
            "Type": "Choice",
            "Choices": [
                {
                    "Variable": "$.v",
                    "StringEquals": "expected",
                    "Next": "Matched"
                }
            ]
        },
        "Matched": {
            "Type": "Succeed"
        }
    }
}"""


class TestChoiceState(unittest.TestCase):

    def setUp(self):
        # Initialise logger
        self.logger = init_logging(log_name="test_choice_state")
        self.sfn = StepFunction(ASL, name="choice_state_machine")

    def run_choice(self, data, sfn=None):
        """
        Execute the State Machine with data as its input, returning the output
        and the name of the state the Choice state transitioned to.
        """
        sfn = sfn or self.sfn
        try:
            output = sfn.execute(data)
        except ExecutionError:
            output = None
        entered = [r.state_name for r in sfn.get_trace()
                   if r.label.endswith("StateEntered")]
        return output, entered[-1]

    #---------- String ---------------------------------------------------------

    def test_string_equals(self):
        print("---------- test_string_equals ----------")
        data, state = self.run_choice({"string_equals": "hello world"})
        self.assertEqual(data["string_equals"], "hello world")
        self.assertEqual(state, "StringEqualsSuccess")

        # Comparisons are case sensitive.
        data, state = self.run_choice({"string_equals": "Hello World"})
        self.assertEqual(data, None)
        self.assertEqual(state, "FailState")

    def test_string_less_than(self):
        print("---------- test_string_less_than ----------")
        data, state = self.run_choice({"string_less_than": "amazon"})
        self.assertEqual(data["string_less_than"], "amazon")
        self.assertEqual(state, "StringLessThanSuccess")

    def test_string_greater_than(self):
        print("---------- test_string_greater_than ----------")
        data, state = self.run_choice({"string_greater_than": "amazon"})
        self.assertEqual(data["string_greater_than"], "amazon")
        self.assertEqual(state, "StringGreaterThanSuccess")

    def test_string_less_than_equals(self):
        print("---------- test_string_less_than_equals ----------")
        data, state = self.run_choice({"string_less_than_equals": "amazon"})
        self.assertEqual(data["string_less_than_equals"], "amazon")
        self.assertEqual(state, "StringLessThanEqualsSuccess")

        data, state = self.run_choice({"string_less_than_equals": "apple"})
        self.assertEqual(data["string_less_than_equals"], "apple")
        self.assertEqual(state, "StringLessThanEqualsSuccess")

    def test_string_greater_than_equals(self):
        print("---------- test_string_greater_than_equals ----------")
        data, state = self.run_choice({"string_greater_than_equals": "amazon"})
        self.assertEqual(data["string_greater_than_equals"], "amazon")
        self.assertEqual(state, "StringGreaterThanEqualsSuccess")

        data, state = self.run_choice({"string_greater_than_equals": "airbnb"})
        self.assertEqual(data["string_greater_than_equals"], "airbnb")
        self.assertEqual(state, "StringGreaterThanEqualsSuccess")

    def test_string_matches(self):
        print("---------- test_string_matches ----------")
        data, state = self.run_choice({"string_matches": "engine.log"})
        self.assertEqual(data["string_matches"], "engine.log")
        self.assertEqual(state, "StringMatchesSuccess")

        data, state = self.run_choice({"string_matches": "engine.txt"})
        self.assertEqual(state, "FailState")

    #---------- Numeric --------------------------------------------------------

    def test_numeric_equals(self):
        print("---------- test_numeric_equals ----------")
        data, state = self.run_choice({"numeric_equals": 1234})
        self.assertEqual(data["numeric_equals"], 1234)
        self.assertEqual(state, "NumericEqualsSuccess")

    def test_numeric_less_than(self):
        print("---------- test_numeric_less_than ----------")
        data, state = self.run_choice({"numeric_less_than": 123})
        self.assertEqual(data["numeric_less_than"], 123)
        self.assertEqual(state, "NumericLessThanSuccess")

    def test_numeric_greater_than(self):
        print("---------- test_numeric_greater_than ----------")
        data, state = self.run_choice({"numeric_greater_than": 12345})
        self.assertEqual(data["numeric_greater_than"], 12345)
        self.assertEqual(state, "NumericGreaterThanSuccess")

    def test_numeric_less_than_equals(self):
        print("---------- test_numeric_less_than_equals ----------")
        data, state = self.run_choice({"numeric_less_than_equals": 1234})
        self.assertEqual(data["numeric_less_than_equals"], 1234)
        self.assertEqual(state, "NumericLessThanEqualsSuccess")

        data, state = self.run_choice({"numeric_less_than_equals": 123})
        self.assertEqual(data["numeric_less_than_equals"], 123)
        self.assertEqual(state, "NumericLessThanEqualsSuccess")

    def test_numeric_greater_than_equals(self):
        print("---------- test_numeric_greater_than_equals ----------")
        data, state = self.run_choice({"numeric_greater_than_equals": 1234})
        self.assertEqual(data["numeric_greater_than_equals"], 1234)
        self.assertEqual(state, "NumericGreaterThanEqualsSuccess")

        data, state = self.run_choice({"numeric_greater_than_equals": 12345})
        self.assertEqual(data["numeric_greater_than_equals"], 12345)
        self.assertEqual(state, "NumericGreaterThanEqualsSuccess")

    def test_numeric_greater_than_boundary(self):
        print("---------- test_numeric_greater_than_boundary ----------")
        sfn = StepFunction(BOUNDARY_ASL)
        data, state = self.run_choice({"v": 11}, sfn)
        self.assertEqual(state, "X")
        data, state = self.run_choice({"v": 10}, sfn)
        self.assertEqual(state, "Y")
        self.assertEqual(data, {"v": 10})

    def test_numeric_type_mismatch(self):
        print("---------- test_numeric_type_mismatch ----------")
        # A string is never numerically equal to a number.
        data, state = self.run_choice({"numeric_equals": "1234"})
        self.assertEqual(state, "FailState")

    #---------- Boolean --------------------------------------------------------

    def test_boolean_equals(self):
        print("---------- test_boolean_equals ----------")
        data, state = self.run_choice({"boolean_equals": True})
        self.assertEqual(data["boolean_equals"], True)
        self.assertEqual(state, "BooleanEqualsSuccess")

    def test_and(self):
        print("---------- test_and ----------")
        data, state = self.run_choice({"and_test_value": 22})
        self.assertEqual(data["and_test_value"], 22)
        self.assertEqual(state, "ValueInTwenties")

        data, state = self.run_choice({"and_test_value": 32})
        self.assertEqual(state, "FailState")

    def test_or(self):
        print("---------- test_or ----------")
        data, state = self.run_choice({"animal": "cat"})
        self.assertEqual(data["animal"], "cat")
        self.assertEqual(state, "IsPet")

        data, state = self.run_choice({"animal": "dog"})
        self.assertEqual(data["animal"], "dog")
        self.assertEqual(state, "IsPet")

        data, state = self.run_choice({"animal": "hamster"})
        self.assertEqual(state, "FailState")

    def test_complex_logic(self):
        print("---------- test_complex_logic ----------")
        data, state = self.run_choice({"name": "shrek", "age": 55, "colour": "green"})
        self.assertEqual(data["name"], "shrek")
        self.assertEqual(state, "IsCharacter")

        data, state = self.run_choice({"name": "donkey", "age": 50, "colour": "grey"})
        self.assertEqual(data["name"], "donkey")
        self.assertEqual(state, "IsCharacter")

        data, state = self.run_choice({"name": "donkey", "age": 50, "colour": "pink"})
        self.assertEqual(state, "FailState")

    def test_not_string_equals(self):
        # In other words this is the != operator
        print("---------- test_not_string_equals ----------")
        data, state = self.run_choice({"not_string_equals": "not hello world"})
        self.assertEqual(data["not_string_equals"], "not hello world")
        self.assertEqual(state, "NotStringEqualsSuccess")

    def test_is_present(self):
        print("---------- test_is_present ----------")
        data, state = self.run_choice({"optional": None})
        self.assertEqual(data, {"optional": None})
        self.assertEqual(state, "IsPresentSuccess")

    def test_undefined_variable_is_skipped(self):
        print("---------- test_undefined_variable_is_skipped ----------")
        # None of the Variables resolve, so every rule is skipped, including
        # the Not rule, and the Default state is chosen.
        data, state = self.run_choice({"unrelated": "value"})
        self.assertEqual(data, None)
        self.assertEqual(state, "FailState")
        terminal = self.sfn.get_trace()[-1]
        self.assertEqual(terminal.label, "ExecutionFailed")
        self.assertEqual(terminal.error["Error"], "NoMatchError")
        self.assertEqual(terminal.error["Cause"], "No Matches!")

    def test_no_matching_choice(self):
        print("---------- test_no_matching_choice ----------")
        sfn = StepFunction(NO_DEFAULT_ASL)
        with self.assertRaises(NoChoiceMatched) as cm:
            sfn.execute({"v": "unexpected"})
        self.assertEqual(cm.exception.error, "States.Runtime")

        trace = sfn.get_trace()
        self.assertEqual(trace[-2].label, "ChoiceStateFailed")
        self.assertEqual(trace[-1].label, "ExecutionFailed")
        self.assertEqual(trace[-1].error["Error"], "States.Runtime")

    #---------- Timestamp ------------------------------------------------------

    def test_timestamp_equals(self):
        print("---------- test_timestamp_equals ----------")
        data, state = self.run_choice({"timestamp_equals": "2019-08-08T10:55:25.325038+01:00"})
        self.assertEqual(data["timestamp_equals"], "2019-08-08T10:55:25.325038+01:00")
        self.assertEqual(state, "TimestampEqualsSuccess")

        # This is the same time but represented in Zulu so test that matches too.
        data, state = self.run_choice({"timestamp_equals": "2019-08-08T09:55:25.325038Z"})
        self.assertEqual(data["timestamp_equals"], "2019-08-08T09:55:25.325038Z")
        self.assertEqual(state, "TimestampEqualsSuccess")

    def test_timestamp_less_than(self):
        print("---------- test_timestamp_less_than ----------")
        data, state = self.run_choice({"timestamp_less_than": "2019-08-08T09:55:25.325038+01:00"})
        self.assertEqual(data["timestamp_less_than"], "2019-08-08T09:55:25.325038+01:00")
        self.assertEqual(state, "TimestampLessThanSuccess")

    def test_timestamp_greater_than(self):
        print("---------- test_timestamp_greater_than ----------")
        data, state = self.run_choice({"timestamp_greater_than": "2019-08-08T11:55:25.325038+01:00"})
        self.assertEqual(data["timestamp_greater_than"], "2019-08-08T11:55:25.325038+01:00")
        self.assertEqual(state, "TimestampGreaterThanSuccess")

    def test_timestamp_less_than_equals(self):
        print("---------- test_timestamp_less_than_equals ----------")
        data, state = self.run_choice({"timestamp_less_than_equals": "2019-08-08T10:55:25.325038+01:00"})
        self.assertEqual(data["timestamp_less_than_equals"], "2019-08-08T10:55:25.325038+01:00")
        self.assertEqual(state, "TimestampLessThanEqualsSuccess")

        data, state = self.run_choice({"timestamp_less_than_equals": "2019-08-08T09:55:25.325038+01:00"})
        self.assertEqual(data["timestamp_less_than_equals"], "2019-08-08T09:55:25.325038+01:00")
        self.assertEqual(state, "TimestampLessThanEqualsSuccess")

    def test_timestamp_greater_than_equals(self):
        print("---------- test_timestamp_greater_than_equals ----------")
        data, state = self.run_choice({"timestamp_greater_than_equals": "2019-08-08T10:55:25.325038+01:00"})
        self.assertEqual(data["timestamp_greater_than_equals"], "2019-08-08T10:55:25.325038+01:00")
        self.assertEqual(state, "TimestampGreaterThanEqualsSuccess")

        data, state = self.run_choice({"timestamp_greater_than_equals": "2019-08-08T11:55:25.325038+01:00"})
        self.assertEqual(data["timestamp_greater_than_equals"], "2019-08-08T11:55:25.325038+01:00")
        self.assertEqual(state, "TimestampGreaterThanEqualsSuccess")


class TestChoiceRules(unittest.TestCase):
    """
    Evaluate individual Choice Rules without running a State Machine.
    """

    def test_undefined(self):
        print("---------- test_undefined ----------")
        rule = {"Variable": "$.missing", "NumericEquals": 1}
        self.assertEqual(evaluate(rule, {"present": 1}), None)
        self.assertEqual(evaluate({"Not": rule}, {"present": 1}), False)
        self.assertEqual(evaluate({"And": [rule]}, {"present": 1}), False)

    def test_or_single_match(self):
        print("---------- test_or_single_match ----------")
        rule = {
            "Or": [
                {"Variable": "$.v", "NumericEquals": 1},
                {"Variable": "$.v", "NumericEquals": 2}
            ]
        }
        self.assertEqual(evaluate(rule, {"v": 1}), True)
        self.assertEqual(evaluate(rule, {"v": 3}), False)

    def test_empty_combinator(self):
        print("---------- test_empty_combinator ----------")
        for op in ["And", "Or"]:
            with self.assertRaises(Runtime):
                evaluate({op: []}, {"v": 1})

    def test_path_comparison(self):
        print("---------- test_path_comparison ----------")
        rule = {"Variable": "$.v", "NumericGreaterThanPath": "$.limit"}
        self.assertEqual(evaluate(rule, {"v": 5, "limit": 4}), True)
        self.assertEqual(evaluate(rule, {"v": 5, "limit": 5}), False)
        self.assertEqual(evaluate(rule, {"v": 5}), None)

    def test_type_tests(self):
        print("---------- test_type_tests ----------")
        input = {
            "n": 1.5, "s": "x", "b": False, "z": None,
            "t": "2019-08-08T10:55:25Z"
        }
        self.assertEqual(evaluate({"Variable": "$.n", "IsNumeric": True}, input), True)
        self.assertEqual(evaluate({"Variable": "$.b", "IsNumeric": True}, input), False)
        self.assertEqual(evaluate({"Variable": "$.s", "IsString": True}, input), True)
        self.assertEqual(evaluate({"Variable": "$.b", "IsBoolean": True}, input), True)
        self.assertEqual(evaluate({"Variable": "$.z", "IsNull": True}, input), True)
        self.assertEqual(evaluate({"Variable": "$.t", "IsTimestamp": True}, input), True)
        self.assertEqual(evaluate({"Variable": "$.s", "IsTimestamp": True}, input), False)
        self.assertEqual(evaluate({"Variable": "$.s", "IsPresent": False}, input), False)
        self.assertEqual(evaluate({"Variable": "$.q", "IsPresent": False}, input), True)

    def test_string_matches_escapes(self):
        print("---------- test_string_matches_escapes ----------")
        rule = {"Variable": "$.v", "StringMatches": "log\\*[1]?"}
        self.assertEqual(evaluate(rule, {"v": "log*[1]?"}), True)
        self.assertEqual(evaluate(rule, {"v": "logfile[1]?"}), False)

    def test_context_variable(self):
        print("---------- test_context_variable ----------")
        rule = {"Variable": "$$.State.Name", "StringEquals": "Router"}
        context = {"State": {"Name": "Router"}}
        self.assertEqual(evaluate(rule, {}, context), True)

if __name__ == '__main__':
    unittest.main()
