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
# PYTHONPATH=.. python3 test_global_context.py
# PYTHONPATH=.. LOG_LEVEL=DEBUG python3 test_global_context.py
#
"""
This test tests that the context object is globally visible.

The context object is accessible wherever ASL allows JSON reference paths, not
just in the Parameters block. This gives access to the context object in the
following fields:

* InputPath
* OutputPath
* ItemsPath (in Map states)
* Variable (in Choice states)
* ResultSelector
* Variable to variable comparison operators

https://states-language.net/spec.html#path

Note that some of the paths used are rather contrived (like the OutputPath of
ChoiceState) and their role is primarily to exercise the path logic to test
that it works correctly against both input/output data and execution context.
"""

import sys
assert sys.version_info >= (3, 0) # Bomb out if not running Python3

import unittest
from asl_local_engine.logger import init_logging
from asl_local_engine.state_engine import StepFunction

ASL = """{
    "StartAt": "ChoiceState",
    "States": {
       "ChoiceState": {
            "Type": "Choice",
            "InputPath": "$$.Execution.Input",
            "OutputPath": "$$.Execution",
            "Choices": [
                {
                    "And": [
                        {
                            "Variable": "$.items[0]",
                            "NumericEquals": 0
                        },
                        {
                            "Variable": "$$.State.Name",
                            "StringEquals": "ChoiceState"
                        }
                    ],
                    "Next": "Validate-All"
                }
            ]
        },
        "Validate-All": {
          "Type": "Map",
          "InputPath": "$.Input",
          "OutputPath": "$",
          "ItemsPath": "$$.Execution.Input.items",
          "MaxConcurrency": 3,
          "ResultPath": "$",
          "Parameters": {
            "item.$": "$$.Map.Item.Value",
            "index.$": "$$.Map.Item.Index"
          },
          "ResultSelector": {
            "state.$": "$$.State.Name",
            "items.$": "$.[:].item"
          },
          "Iterator": {
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

CONTEXT_ASL = """{
    "StartAt": "Describe",
    "States": {
        "Describe": {
            "Type": "Pass",
            "Parameters": {
                "execution.$": "$$.Execution.Id",
                "name.$": "$$.Execution.Name",
                "state_machine.$": "$$.StateMachine.Id",
                "state_machine_name.$": "$$.StateMachine.Name",
                "state.$": "$$.State.Name",
                "entered.$": "$$.State.EnteredTime",
                "retry_count.$": "$$.State.RetryCount"
            },
            "End": true
        }
    }
}"""


class TestGlobalContext(unittest.TestCase):

    def setUp(self):
        # Initialise logger
        logger = init_logging(log_name="test_global_context")

    def test_global_context(self):
        print("---------- test_global_context ----------")
        sfn = StepFunction(ASL, name="global_context")
        items = list(range(13))
        output = sfn.execute({"items": items})
        print(output)

        self.assertEqual(output, {"state": "Validate-All", "items": items})
        self.assertEqual(sfn.get_trace()[-1].label, "ExecutionSucceeded")

    def test_context_object(self):
        print("---------- test_context_object ----------")
        sfn = StepFunction(CONTEXT_ASL, name="context_object")
        output = sfn.execute({})

        self.assertEqual(
            output["state_machine"],
            "arn:aws:states:local:0123456789:stateMachine:context_object"
        )
        self.assertEqual(output["state_machine_name"], "context_object")
        self.assertEqual(
            output["execution"],
            "arn:aws:states:local:0123456789:execution:context_object:" +
            output["name"]
        )
        self.assertEqual(output["state"], "Describe")
        self.assertEqual(output["retry_count"], 0)
        self.assertTrue(output["entered"])

    def test_execution_names_are_unique(self):
        print("---------- test_execution_names_are_unique ----------")
        sfn = StepFunction(CONTEXT_ASL)
        first = sfn.execute({})
        second = sfn.execute({})
        self.assertNotEqual(first["name"], second["name"])

    def test_region_and_account_from_config(self):
        print("---------- test_region_and_account_from_config ----------")
        config = {"state_engine": {"region": "eu-west-2", "account": "1234"}}
        sfn = StepFunction(CONTEXT_ASL, name="configured", config=config)
        self.assertEqual(
            sfn.arn, "arn:aws:states:eu-west-2:1234:stateMachine:configured"
        )
        output = sfn.execute({})
        self.assertTrue(
            output["execution"].startswith(
                "arn:aws:states:eu-west-2:1234:execution:configured:"
            )
        )

if __name__ == '__main__':
    unittest.main()
