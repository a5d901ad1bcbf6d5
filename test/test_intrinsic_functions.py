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
# PYTHONPATH=.. python3 test_intrinsic_functions.py
# PYTHONPATH=.. LOG_LEVEL=DEBUG python3 test_intrinsic_functions.py
#
"""
Intrinsic Function support. https://states-language.net/#intrinsic-functions

Only States.Format is supported, the State Machine in this test is rather
contrived with an ItemSelector in the Map state intended to exercise it,
including nesting and the various argument types. Every other Intrinsic
Function must fail the execution with States.IntrinsicFailure.
"""

import sys
assert sys.version_info >= (3, 0) # Bomb out if not running Python3

import unittest
from asl_local_engine.logger import init_logging
from asl_local_engine.state_engine import StepFunction
from asl_local_engine.state_engine_paths import intrinsic_format
from asl_local_engine.asl_exceptions import IntrinsicFailure

ASL = """{
    "StartAt": "Validate-All",
    "States": {
        "Validate-All": {
          "Comment": "The format.$ field deliberately has weird whitespace to test that the Intrinsic Function argument parser can deal with such things.",
          "Type": "Map",
          "InputPath": "$",
          "ItemsPath": "$.items",
          "MaxConcurrency": 3,
          "ResultPath": "$",
          "ItemSelector": {
            "item.$": "$$.Map.Item.Value",
            "index.$": "$$.Map.Item.Index",
            "format.$": "States.Format  (  'Execution {} started, {}. Extra args are {}, {}, {}, {}'  ,    $$.Execution.Name   , States.Format   ( 'OK {}'  , 'then' ), -1.5, 1234, $.items[0]  ,  null  )",
            "greeting.$": "States.Format('Hello, {}!', $.name)",
            "json.$": "States.Format('{} in {}', $.someJson, $$.State.Name)"
          },
          "ResultSelector": {
            "state.$": "$$.State.Name",
            "items.$": "$[:].item",
            "item0.$": "$[0]"
          },
          "ItemProcessor": {
            "StartAt": "Validate",
            "States": {
              "Validate": {
                "Type": "Pass",
                "Comment": "The Result from each iteration should be its *effective* input, which is a JSON node that contains the current item data and its index from the context object.",
                "End": true
              }
            }
          },
          "End": true
        }
    }
}"""

UNSUPPORTED_ASL = """{
    "StartAt": "Convert",
    "States": {
        "Convert": {
            "Type": "Pass",
            "Parameters": {
                "converted.$": "States.StringToJson($.someString)"
            },
            "End": true
        }
    }
}"""


class TestIntrinsicFunctions(unittest.TestCase):

    def setUp(self):
        # Initialise logger
        self.logger = init_logging(log_name="test_intrinsic_functions")

    def test_intrinsic_functions(self):
        print("---------- test_intrinsic_functions ----------")
        sfn = StepFunction(ASL)
        output = sfn.execute({
            "name": "World",
            "someJson": {"random": "abcdefg"},
            "items": [0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12]
        })
        print(output)

        execution_name = sfn.execution_context["Execution"]["Name"]
        format = ("Execution " + execution_name + " started, OK then. "
                  "Extra args are -1.5, 1234, 0, null")

        self.assertEqual(output["items"], [0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12])
        self.assertEqual(output["state"], "Validate-All")
        self.assertEqual(output["item0"]["index"], 0)
        self.assertEqual(output["item0"]["format"], format)
        self.assertEqual(output["item0"]["greeting"], "Hello, World!")
        self.assertEqual(
            output["item0"]["json"], '{"random":"abcdefg"} in Validate-All'
        )

    def test_unsupported_intrinsic(self):
        print("---------- test_unsupported_intrinsic ----------")
        sfn = StepFunction(UNSUPPORTED_ASL)
        with self.assertRaises(IntrinsicFailure) as cm:
            sfn.execute({"someString": "{\"number\": 25}"})
        self.assertEqual(cm.exception.error, "States.IntrinsicFailure")
        self.assertEqual(sfn.get_trace()[-1].label, "ExecutionFailed")
        self.assertEqual(sfn.get_trace()[-1].error["Error"], "States.IntrinsicFailure")

    def test_format_placeholders(self):
        print("---------- test_format_placeholders ----------")
        self.assertEqual(intrinsic_format("{} and {}", ["a", 1]), "a and 1")
        self.assertEqual(intrinsic_format("{}", [[1, "b"]]), '[1,"b"]')
        self.assertEqual(intrinsic_format("\\{} {}", [True]), "{} true")
        self.assertEqual(intrinsic_format("no placeholders", []), "no placeholders")

    def test_format_argument_count(self):
        print("---------- test_format_argument_count ----------")
        with self.assertRaises(IntrinsicFailure):
            intrinsic_format("{} and {}", ["a"])
        with self.assertRaises(IntrinsicFailure):
            intrinsic_format("{}", ["a", "b"])
        with self.assertRaises(IntrinsicFailure):
            intrinsic_format(42, [])


if __name__ == "__main__":
    unittest.main()
