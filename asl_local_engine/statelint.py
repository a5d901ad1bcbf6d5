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
Semantic checks of a State Machine definition, run once when a StepFunction is
created. Problems are collected into a list and reported together by raising
a States.Runtime error, so that a malformed definition fails fast rather than
part way through an execution.

Based on https://github.com/awslabs/statelint/blob/master/lib/statelint/state_node.rb
"""

import sys
assert sys.version_info >= (3, 6)  # Bomb out if not running Python3.6

import re

from asl_local_engine.asl_exceptions import Runtime

STATE_TYPES = {
    "Task", "Map", "Parallel", "Choice", "Pass", "Wait", "Fail", "Succeed"
}


def is_non_negative_integer(val):
    # bool is a subclass of int but true isn't a valid count.
    return isinstance(val, int) and not isinstance(val, bool) and val >= 0


class StateNode():
    """
    Handles semantic validation of the States of a State Machine and of the
    nested State Machines of its Parallel Branches and Map Iterators.
    """
    def __init__(self):
        """
        We push States nodes on here when we traverse them then, whenever
        we find a "Next", "Default" or "StartAt" node, we validate that the
        target node exists, and record that the target has an incoming pointer.
        """
        self.current_states_node = []
        self.current_states_incoming = []

        # We keep track of all the state names and complain about dupes
        self.all_state_names = {}

        self.intrinsic_invocation_regex = re.compile(r"^States\.\w+\s*\(.*\)$")

    def check(self, node, path, problems):
        if not node or not isinstance(node, dict):
            return

        is_machine_top = "States" in node and isinstance(node["States"], dict)
        if is_machine_top:
            states = node["States"]
            self.current_states_node.append(states)
            start_at = node.get("StartAt")
            if start_at and isinstance(start_at, str):
                self.current_states_incoming.append([start_at])
                if start_at not in states:
                    problems.append(
                        f'StartAt value "{start_at}" not found in ' +
                        f'States field at {path}'
                    )
            else:
                self.current_states_incoming.append([])
                problems.append(f'No StartAt field found at {path}')

            for name, child in states.items():
                child_path = path + ".States." + name
                if not isinstance(child, dict):
                    problems.append(f'State at {child_path} is not an object')
                    continue

                if child.get("Type") not in STATE_TYPES:
                    problems.append(
                        f'State at {child_path} has unknown Type ' +
                        f'"{child.get("Type")}"'
                    )

                for field_name in ["Parameters", "ItemSelector", "ResultSelector"]:
                    if field_name in child:
                        self.probe_payload_template(
                            child[field_name],
                            child_path,
                            problems,
                            field_name
                        )

                if ("MaxConcurrency" in child and
                    not is_non_negative_integer(child["MaxConcurrency"])):
                    problems.append(
                        f'Field "MaxConcurrency" at {child_path} must be ' +
                        f'a non-negative integer'
                    )

                if child.get("Type") == "Choice":
                    self.probe_choice_state(
                        child.get("Choices"), child_path + ".Choices", problems
                    )

                if name in self.all_state_names:
                    problems.append(
                        f'State "{name}", defined at {path}.States, ' +
                        f'is also defined at {self.all_state_names[name]}'
                    )
                else:
                    self.all_state_names[name] = f"{path}.States"

        self.check_for_terminal(node, path, problems)
        self.check_next(node, path, problems)
        self.check_States_ALL(node.get("Retry"), path + '.Retry', problems)
        self.check_States_ALL(node.get("Catch"), path + '.Catch', problems)

        for name, val in node.items():
            # Payload Templates and Pass Results are data, not definition.
            if name in ("Parameters", "ItemSelector", "ResultSelector", "Result"):
                continue
            if isinstance(val, list):
                for i, element in enumerate(val):
                    self.check(element, f"{path}.{name}[{i}]", problems)
            else:
                self.check(val, f"{path}.{name}", problems)

        if is_machine_top:
            states = self.current_states_node.pop()
            incoming = self.current_states_incoming.pop()
            missing = sorted(set(states.keys()) - set(incoming))
            for state in missing:
                problems.append(f'No transition found to state {path}.States.{state}')

    def check_next(self, node, path, problems):
        self.add_next(node, path, "Next", problems)
        self.add_next(node, path, "Default", problems)

    def add_next(self, node, path, field, problems):
        transition_to = node.get(field)
        if transition_to and isinstance(transition_to, str):
            if len(self.current_states_node) > 0:
                if transition_to in self.current_states_node[-1]:
                    self.current_states_incoming[-1].append(transition_to)
                else:
                    problems.append(
                        f'No state found named "{transition_to}", ' +
                        f'referenced at {path}.{field}'
                    )

    def probe_choice_state(self, node, path, problems):
        if isinstance(node, dict):
            variable = node.get("Variable")
            if variable is not None and not self.is_path(variable):
                problems.append(
                    f'Field "Variable" of Choice state choice at "{path}" ' +
                    f'is not a JSONPath'
                )

            for op in ["And", "Or"]:
                if op in node and (not isinstance(node[op], list) or not node[op]):
                    problems.append(
                        f'Field "{op}" of Choice state choice at "{path}" ' +
                        f'must be a non-empty array'
                    )

            for op in ["And", "Or", "Not"]:
                if op in node:
                    self.probe_choice_state(node[op], path + "." + op, problems)

        elif isinstance(node, list):
            for i, element in enumerate(node):
                self.probe_choice_state(element, f"{path}[{i}]", problems)
        else:
            problems.append(f'Field "Choices" at "{path}" is not an array')

    def probe_payload_template(self, node, path, problems, field_name):
        # Search through Payload Templates for object nodes and check field semantics
        if isinstance(node, dict):
            for name, val in node.items():
                if name.endswith(".$"):
                    if (not self.is_intrinsic_invocation(val) and
                        not self.is_path(val)):
                        problems.append(
                            f'Field "{name}" of {field_name} at "{path}" is ' +
                            f'not a JSONPath nor intrinsic function expression'
                        )
                else:
                    self.probe_payload_template(val, f"{path}.{name}", problems, field_name)
        elif isinstance(node, list):
            for i, element in enumerate(node):
                self.probe_payload_template(element, f"{path}[{i}]", problems, field_name)

    def is_path(self, val):
        return isinstance(val, str) and val.startswith("$")

    def is_intrinsic_invocation(self, val):
        return isinstance(val, str) and self.intrinsic_invocation_regex.match(val)

    def check_for_terminal(self, node, path, problems):
        states = node.get("States")
        if states and isinstance(states, dict):
            terminal_found = False
            for state_node in states.values():
                if isinstance(state_node, dict):
                    if state_node.get("Type", "") in ["Succeed", "Fail"]:
                        terminal_found = True
                    elif state_node.get("End", False) == True:
                        terminal_found = True

            if not terminal_found:
                problems.append(
                    f'No terminal state found in machine at {path}.States'
                )

    def check_States_ALL(self, node, path, problems):
        if not isinstance(node, list):
            return

        for i, element in enumerate(node):
            if isinstance(element, dict):
                ee = element.get("ErrorEquals")
                if ee and isinstance(ee, list):
                    if "States.ALL" in ee:
                        if i != len(node) -1 or len(ee) != 1:
                            problems.append(
                                f'{path}[{i}]: States.ALL can only appear ' +
                                f'in the last element, and by itself'
                            )
                else:
                    problems.append(
                        f'{path}[{i}]: ErrorEquals must be a non-empty array'
                    )


def validate(definition):
    """
    Return the list of problems found in definition, empty if there are none.
    """
    problems = []
    if not isinstance(definition, dict):
        return ["State Machine definition must be a JSON object"]
    StateNode().check(definition, "State Machine", problems)
    return problems


def check_state_machine(definition):
    """
    The default validator used by StepFunction, raising Runtime if definition
    has any problems.
    """
    problems = validate(definition)
    if problems:
        raise Runtime(
            "Invalid State Machine definition: {}".format("; ".join(problems))
        )
