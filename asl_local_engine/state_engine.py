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
The StepFunction class is the local execution engine for a single State
Machine definition written in the Amazon States Language.
https://states-language.net/spec.html

Native functions are bound to Task states by state name and an execution runs
the definition to completion in-process, reproducing the data flow, error
handling and concurrency semantics of AWS Step Functions closely enough to be
used as a test harness before deploying the State Machine.

    sfn = StepFunction(definition, resources={"Double": lambda x: x * 2})
    output = sfn.execute(21)

Every transition of the most recent execution is recorded in a TransitionLog,
available via get_trace(), and may be observed via subscribe().
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import asyncio, copy, time
from collections import namedtuple

import opentracing

from asl_local_engine.asl_exceptions import (
    Aborted,
    DataLimitExceeded,
    ExecutionError,
    INTERNAL_ABORTED,
    Runtime,
    STATES_TASK_FAILED,
    STATES_TIMEOUT,
    TaskFailed,
    Timeout,
)
from asl_local_engine.config import load_config
from asl_local_engine.context import (
    create_execution_context,
    create_state_context,
    parse_rfc3339_datetime,
    state_machine_arn,
)
from asl_local_engine.logger import bind_execution, init_logging, unbind_execution
from asl_local_engine.metrics import create_metrics
from asl_local_engine.open_tracing_factory import create_tracer
from asl_local_engine.state_engine_choice import choose
from asl_local_engine.state_engine_errors import catch, error_name, with_retry
from asl_local_engine.state_engine_paths import (
    apply_input,
    apply_output,
    apply_path,
    apply_resultpath,
    evaluate_payload_template,
)
from asl_local_engine.statelint import check_state_machine, is_non_negative_integer
from asl_local_engine.task_dispatcher import TaskDispatcher
from asl_local_engine.transition_log import TransitionLog

try:  # Attempt to use ujson if available https://pypi.org/project/ujson/
    import ujson as json
except ImportError:  # Fall back to standard library json
    import json

# https://docs.aws.amazon.com/step-functions/latest/dg/limits.html
MAX_DATA_LENGTH = 262144  # Max length of the input or output JSON string.

"""
The options fixed for the lifetime of one execution. respect_wait_ceiling
caps duration Wait states at max_wait_seconds, without it a Wait until a
Timestamp further away than max_wait_seconds fails with States.Timeout.
max_concurrency bounds the number of Parallel branches run at once.
"""
RuntimeOptions = namedtuple(
    "RuntimeOptions",
    ["respect_wait_ceiling", "max_wait_seconds", "max_concurrency"]
)

# Accept the options' JSON style names too.
OPTION_ALIASES = {
    "respectWaitCeiling": "respect_wait_ceiling",
    "maxWaitSeconds": "max_wait_seconds",
    "maxConcurrency": "max_concurrency",
}


class StepFunction(object):
    def __init__(self, definition, name=None, resources=None, config=None,
                 validator=check_state_machine, logging_configuration=None):
        """
        :param definition: The ASL State Machine, as a dict or a JSON string
        :type definition: dict or str
        :param name: The State Machine name, defaults to its StartAt state
        :type name: str
        :param resources: Optional dict mapping Task state names to handlers
        :type resources: dict
        :param config: Optional (partial) configuration dict, see config.py
        :type config: dict
        :param validator: Called with the definition, raising if it is invalid.
            None disables validation.
        :param logging_configuration: CloudWatch style loggingConfiguration,
            defaults to the definition's loggingConfiguration field if any
        :type logging_configuration: dict
        :raises Runtime: If the definition isn't valid
        """
        self.logger = init_logging(log_name="asl_local_engine")

        if isinstance(definition, (str, bytes)):
            try:
                definition = json.loads(definition)
            except ValueError as e:
                raise Runtime(
                    "State Machine definition is not valid JSON", cause=e
                )
        if validator:
            validator(definition)
        self.definition = definition

        self.config = load_config(config=config)
        se = self.config["state_engine"]
        self.default_options = RuntimeOptions(
            respect_wait_ceiling=se["respect_wait_ceiling"],
            max_wait_seconds=se["max_wait_seconds"],
            max_concurrency=se["max_concurrency"],
        )

        self.name = name or definition.get("StartAt")
        self.arn = state_machine_arn(self.name, se["region"], se["account"])
        self.logger.info("Creating StepFunction {}".format(self.arn))

        create_tracer("asl_local_engine", self.config["tracer"], use_asyncio=True)

        """
        Prometheus metrics intended to emulate Stepfunction CloudWatch metrics.
        https://docs.aws.amazon.com/step-functions/latest/dg/procedure-cw-metrics.html
        """
        self.metrics_registry, self.execution_metrics = create_metrics(
            self.config["metrics"]
        )

        self.transition_log = TransitionLog(
            self.logger,
            logging_configuration or definition.get("loggingConfiguration"),
        )
        self.task_dispatcher = TaskDispatcher(
            self.logger, self.transition, self.execution_metrics
        )
        for task_name, fn in (resources or {}).items():
            self.bind_task_resource(task_name, fn)

        self.aborted = False
        self.loop = None
        self.task = None
        self.execution_context = None

    def bind_task_resource(self, task_name, fn):
        """
        Bind the callable fn as the handler of the Task state named task_name.
        fn is called with the Task's effective input and returns its result.
        """
        self.task_dispatcher.bind(task_name, fn)

    def unbind_task_resource(self, task_name):
        """
        Remove the handler of task_name, after which the Task passes its
        input through.
        """
        self.task_dispatcher.unbind(task_name)

    def subscribe(self, label, callback):
        self.transition_log.subscribe(label, callback)

    def unsubscribe(self, label, callback):
        self.transition_log.unsubscribe(label, callback)

    def get_trace(self):
        """
        The ordered list of TransitionRecords of the most recent execution.
        """
        return self.transition_log.get_trace()

    def get_execution_result(self):
        """
        The output recorded by the most recent terminal transition, which is
        None unless the most recent execution succeeded.
        """
        record = self.transition_log.last_terminal_record()
        return record.output if record else None

    def abort(self):
        """
        Abort the running execution. This may be called from a task handler,
        a transition listener or another thread. No further transitions other
        than the *Aborted ones are made and outstanding Wait timers, branches
        and iterations are cancelled.
        """
        self.aborted = True
        if self.task and self.loop and not self.task.done():
            self.loop.call_soon_threadsafe(self.task.cancel)

    def resolve_options(self, options):
        if options is None:
            return self.default_options
        if not isinstance(options, RuntimeOptions):
            options = {OPTION_ALIASES.get(k, k): v for k, v in options.items()}
            unknown = set(options) - set(RuntimeOptions._fields)
            if unknown:
                raise TypeError("Unknown runtime options {}".format(sorted(unknown)))
            options = self.default_options._replace(**options)
        if options.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        return options

    def execute(self, input=None, options=None):
        """
        Blocking wrapper around start_execution for callers that aren't
        running an asyncio event loop.
        """
        return asyncio.run(self.start_execution(input, options))

    async def start_execution(self, input=None, options=None):
        """
        Run the State Machine to completion with the supplied input, returning
        its output. An error that isn't recovered by a Catcher is re-raised
        after the terminal ExecutionFailed, ExecutionTimedOut or
        ExecutionAborted transition has been recorded.
        """
        options = self.resolve_options(options)
        self.aborted = False
        self.loop = asyncio.get_running_loop()
        self.execution_context = create_execution_context(
            self.arn, self.name, copy.deepcopy(input)
        )
        execution_arn = self.execution_context["Execution"]["Id"]
        self.transition_log.reset(execution_arn)
        bind_execution(execution_arn, self.arn)

        labels = {"StateMachineArn": self.arn}
        start_time = time.time()

        """
        Start an OpenTracing trace for the execution, task invocations create
        child spans of this one.
        https://opentracing.io/specification/conventions/
        """
        with opentracing.tracer.start_active_span(
            operation_name="StartExecution",
            tags={
                "component": "state_engine",
                "execution_arn": execution_arn,
            }
        ) as scope:
            try:
                self.transition("ExecutionStarted", input=input)
                if self.execution_metrics:
                    self.execution_metrics["ExecutionsStarted"].inc(labels)

                # Run as a Task of its own so that abort() can cancel it.
                self.task = asyncio.ensure_future(
                    self.run_states(self.definition, copy.deepcopy(input), options)
                )
                output = await self.task
                self.check_data_limit(output, "Execution")
            except asyncio.CancelledError:
                if not self.aborted:
                    raise
                self.execution_ended(scope, Aborted("Execution was aborted"))
                raise Aborted("Execution {} was aborted".format(execution_arn))
            except ExecutionError as e:
                self.execution_ended(scope, e)
                raise
            else:
                scope.span.set_tag("status", "SUCCEEDED")
                self.transition("ExecutionSucceeded", output=output)
                if self.execution_metrics:
                    self.execution_metrics["ExecutionsSucceeded"].inc(labels)
                return output
            finally:
                self.task = None
                unbind_execution()
                if self.execution_metrics:
                    duration = (time.time() - start_time) * 1000.0
                    self.execution_metrics["ExecutionTime"].observe(labels, duration)

    def execution_ended(self, scope, error):
        """
        Record the terminal transition of an execution that didn't succeed.
        """
        if self.aborted or error.error == INTERNAL_ABORTED:
            label, metric = "ExecutionAborted", "ExecutionsAborted"
        elif error.error == STATES_TIMEOUT:
            label, metric = "ExecutionTimedOut", "ExecutionsTimedOut"
        else:
            label, metric = "ExecutionFailed", "ExecutionsFailed"

        scope.span.set_tag("error", True)
        scope.span.set_tag("status", label)
        self.logger.error("{} {}: {}".format(
            self.execution_context["Execution"]["Id"], label, error
        ))
        self.transition_log.record(label, error={
            "Error": error_name(error), "Cause": error.message
        })
        if self.execution_metrics:
            self.execution_metrics[metric].inc({"StateMachineArn": self.arn})

    def transition(self, label, state_name=None, **kwargs):
        """
        Record a transition. Once the execution has been aborted only the
        *Aborted transitions may be recorded, anything else raises Aborted.
        """
        if self.aborted and not label.endswith("Aborted"):
            raise Aborted("Execution was aborted")
        return self.transition_log.record(label, state_name, **kwargs)

    def state_context(self, name, retry_count=0, item=None):
        return create_state_context(
            self.execution_context, name, retry_count, item
        )

    def check_data_limit(self, data, name):
        try:
            length = len(json.dumps(data))
        except (TypeError, ValueError, OverflowError) as e:
            raise Runtime("{} output is not valid JSON".format(name), cause=e)
        if length > MAX_DATA_LENGTH:
            raise DataLimitExceeded(
                "The output of {} has a size of {} characters, exceeding "
                "the maximum of {}".format(name, length, MAX_DATA_LENGTH)
            )

    def next_state(self, name, state):
        if state.get("End"):
            return None
        if "Next" not in state:
            raise Runtime("State {} has neither a Next nor an End field".format(name))
        return state["Next"]

    async def run_states(self, state_machine, input, options):
        """
        Run a State Machine, the top level one or a Parallel Branch or Map
        Iterator, from its StartAt state until a state ends it, returning the
        output of that state. State transitions are made iteratively so long
        running State Machines don't grow the stack.
        """
        states = state_machine.get("States", {})
        current_state = state_machine.get("StartAt")
        data = input
        while current_state is not None:
            state = states.get(current_state)
            if not isinstance(state, dict):
                raise Runtime("State {} does not exist".format(current_state))
            current_state, data = await self.execute_state(
                current_state, state, data, options
            )
        return data

    async def execute_state(self, name, state, raw_input, options):
        """
        Enter the state, run its type's asl_state_<Type> handler and return a
        tuple of the name of the next state (None if the state ends its State
        Machine) and the state's output.

        https://states-language.net/spec.html#errors
        Errors raised by Task, Parallel and Map states are offered to their
        Retriers, then their Catchers. A caught error is recovered and the
        State Machine continues at the Catcher's Next state.
        """
        state_type = state.get("Type")
        handler = getattr(self, "asl_state_" + str(state_type), None)
        if handler is None:
            raise Runtime("State {} has unknown Type {}".format(name, state_type))
        label = state_type + "State"

        async def invoke(attempt):
            try:
                return await handler(name, state, raw_input, options, attempt)
            except (LookupError, TypeError, ValueError) as e:
                raise Runtime(
                    "An error occurred while executing the state {}: {}".format(name, e),
                    cause=e
                )

        self.transition(label + "Entered", name, input=raw_input)
        try:
            if state_type in ("Task", "Parallel", "Map"):
                try:
                    next_state, output = await with_retry(state, invoke, self.logger)
                except ExecutionError as e:
                    caught = catch(state, e, raw_input)
                    if caught is None:
                        raise
                    self.logger.info("State {} caught {}, next state is {}".format(
                        name, error_name(e), caught[0]
                    ))
                    self.transition(label + "Failed", name, error={
                        "Error": error_name(e), "Cause": e.message
                    })
                    next_state, output = caught
            else:
                next_state, output = await invoke(0)

            self.check_data_limit(output, name)
        except asyncio.CancelledError:
            self.transition(label + "Aborted", name)
            raise
        except ExecutionError as e:
            if e.error == INTERNAL_ABORTED:
                self.transition(label + "Aborted", name)
            else:
                self.transition(label + "Failed", name, error={
                    "Error": error_name(e), "Cause": e.message
                })
            raise

        self.transition(label + "Exited", name, output=output)
        return next_state, output

    async def gather_in_order(self, coros):
        """
        Run coros concurrently, returning their results in the order supplied.
        If any fails the others are cancelled and the first failure, in the
        order supplied, is raised once they have all finished.
        """
        tasks = [asyncio.ensure_future(coro) for coro in coros]
        if not tasks:
            return []
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in tasks:
                if task.done() and not task.cancelled() and task.exception():
                    raise task.exception()
            return [task.result() for task in tasks]
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending)

    async def asl_state_Task(self, name, state, raw_input, options, attempt):
        """
        https://states-language.net/spec.html#task-state

        The Task's effective input is passed to the handler bound to the state
        and the handler's return value is the Task's result.
        """
        context = self.state_context(name, attempt)
        parameters = apply_input(state, raw_input, context)
        result = await self.task_dispatcher.execute_task(
            name, state.get("Resource"), parameters
        )
        return (
            self.next_state(name, state),
            apply_output(state, raw_input, result, context),
        )

    async def asl_state_Pass(self, name, state, raw_input, options, attempt):
        """
        https://states-language.net/spec.html#pass-state

        If present, the Result field is treated as the output of a virtual
        task, otherwise the effective input is the result.
        """
        context = self.state_context(name)
        effective_input = apply_input(state, raw_input, context)
        result = copy.deepcopy(state["Result"]) if "Result" in state else effective_input
        return (
            self.next_state(name, state),
            apply_output(state, raw_input, result, context),
        )

    async def asl_state_Choice(self, name, state, raw_input, options, attempt):
        """
        https://states-language.net/spec.html#choice-state

        InputPath & OutputPath are allowed (but unusual) in Choice states.
        """
        context = self.state_context(name)
        input = apply_path(raw_input, context, state.get("InputPath", "$"))
        next_state = choose(state, input, context)
        return next_state, apply_path(input, context, state.get("OutputPath", "$"))

    async def asl_state_Wait(self, name, state, raw_input, options, attempt):
        """
        https://states-language.net/spec.html#wait-state

        A Wait state causes the interpreter to delay the machine from
        continuing for a specified time, given as Seconds or SecondsPath, or
        until an absolute time, given as Timestamp or TimestampPath. The
        resolved values are locals, the shared definition is never updated.
        """
        context = self.state_context(name)
        input = apply_path(raw_input, context, state.get("InputPath", "$"))

        seconds = timestamp = None
        if "Seconds" in state:
            seconds = state["Seconds"]
        elif "SecondsPath" in state:
            seconds = apply_path(input, context, state["SecondsPath"])
        elif "Timestamp" in state:
            timestamp = state["Timestamp"]
        elif "TimestampPath" in state:
            timestamp = apply_path(input, context, state["TimestampPath"])
        else:
            raise Runtime("Wait state {} has no Seconds or Timestamp".format(name))

        if timestamp is None:
            if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or seconds < 0:
                raise Runtime(
                    "Wait state {} Seconds must be a non-negative number, "
                    "got {}".format(name, seconds)
                )
            if options.respect_wait_ceiling:
                seconds = min(seconds, options.max_wait_seconds)
            await asyncio.sleep(seconds)
        else:
            try:
                target = parse_rfc3339_datetime(timestamp).timestamp()
            except (ValueError, IndexError) as e:
                raise Runtime(
                    "Wait state {} Timestamp {} is not a valid RFC3339 "
                    "timestamp".format(name, timestamp), cause=e
                )
            remaining = target - time.time()
            if remaining > options.max_wait_seconds and not options.respect_wait_ceiling:
                await asyncio.sleep(options.max_wait_seconds)
                raise Timeout(
                    "Wait state {} exceeded the maximum wait of {} seconds "
                    "before {}".format(name, options.max_wait_seconds, timestamp)
                )
            if remaining > 0:
                await asyncio.sleep(remaining)

        return (
            self.next_state(name, state),
            apply_path(input, context, state.get("OutputPath", "$")),
        )

    async def asl_state_Succeed(self, name, state, raw_input, options, attempt):
        """
        https://states-language.net/spec.html#succeed-state

        The Succeed State terminates its State Machine successfully, its
        output is its (possibly filtered) input.
        """
        context = self.state_context(name)
        input = apply_path(raw_input, context, state.get("InputPath", "$"))
        return None, apply_path(input, context, state.get("OutputPath", "$"))

    async def asl_state_Fail(self, name, state, raw_input, options, attempt):
        """
        https://states-language.net/spec.html#fail-state

        The Fail State terminates the machine and marks it as a failure, with
        the Error and Cause fields, if present, describing the failure.
        """
        raise TaskFailed(
            state.get("Cause", "Transitioned to the Fail state {}".format(name)),
            error=state.get("Error", STATES_TASK_FAILED),
        )

    async def asl_state_Parallel(self, name, state, raw_input, options, attempt):
        """
        https://states-language.net/spec.html#parallel-state

        Each Branch is run with its own copy of the effective input. Branches
        run in batches of at most max_concurrency, every Branch in a batch
        finishing before the next batch starts. The result is the array of
        Branch outputs, in the order the Branches are declared, which then
        passes through ResultSelector, ResultPath and OutputPath.
        """
        context = self.state_context(name, attempt)
        effective_input = apply_input(state, raw_input, context)
        branches = state.get("Branches", [])

        async def run_branch(index, branch):
            self.transition(
                "ParallelStateStarted", name, input=effective_input,
                index=index, length=len(branches)
            )
            return await self.run_states(
                branch, copy.deepcopy(effective_input), options
            )

        results = []
        batch_size = options.max_concurrency
        for start in range(0, len(branches), batch_size):
            results += await self.gather_in_order(
                run_branch(i, branches[i])
                for i in range(start, min(start + batch_size, len(branches)))
            )

        self.transition("ParallelStateSucceeded", name, output=results)
        return (
            self.next_state(name, state),
            apply_output(state, raw_input, results, context),
        )

    async def asl_state_Map(self, name, state, raw_input, options, attempt):
        """
        https://states-language.net/spec.html#map-state

        The Iterator (or ItemProcessor) State Machine is run for each item of
        the array selected by ItemsPath. Each iteration gets a Context Object
        with Map.Item.Index and Map.Item.Value set, used when ItemSelector (or
        Parameters) builds the iteration's input, otherwise the item itself is
        the input. Iterations run one at a time unless MaxConcurrency is set,
        0 meaning max_concurrency, and results are always in item order.
        OutputPath applies to each iteration's result, while ResultSelector
        and ResultPath apply to the array of results.
        """
        context = self.state_context(name, attempt)
        input = apply_path(raw_input, context, state.get("InputPath", "$"))
        items = apply_path(input, context, state.get("ItemsPath", "$"))
        if not isinstance(items, list):
            raise Runtime(
                "Map state {} ItemsPath must select an array, got {}".format(
                    name, json.dumps(items)
                )
            )

        iterator = state.get("ItemProcessor", state.get("Iterator"))
        if not isinstance(iterator, dict):
            raise Runtime("Map state {} has no Iterator".format(name))
        selector = state.get("ItemSelector", state.get("Parameters"))

        async def iterate(index, item):
            self.transition(
                "MapIterationStarted", name, input=item, index=index,
                length=len(items)
            )
            item_context = self.state_context(name, attempt, (index, item))
            if selector is None:
                item_input = copy.deepcopy(item)
            else:
                item_input = evaluate_payload_template(input, item_context, selector)
            result = await self.run_states(iterator, item_input, options)
            result = apply_path(result, item_context, state.get("OutputPath", "$"))
            self.transition(
                "MapIterationSucceeded", name, output=result, index=index,
                length=len(items)
            )
            return result

        max_concurrency = state.get("MaxConcurrency")
        if max_concurrency is not None and not is_non_negative_integer(max_concurrency):
            raise Runtime(
                "Map state {} MaxConcurrency must be a non-negative integer, "
                "got {}".format(name, json.dumps(max_concurrency))
            )

        if max_concurrency is None:
            batch_size = 1
        elif max_concurrency == 0:
            batch_size = options.max_concurrency
        else:
            batch_size = max_concurrency

        self.transition("MapStateStarted", name, length=len(items))
        results = []
        for start in range(0, len(items), batch_size):
            results += await self.gather_in_order(
                iterate(i, items[i])
                for i in range(start, min(start + batch_size, len(items)))
            )

        self.transition("MapStateSucceeded", name, output=results)
        if "ResultSelector" in state:
            results = evaluate_payload_template(
                results, context, state["ResultSelector"]
            )
        return (
            self.next_state(name, state),
            apply_resultpath(raw_input, results, state.get("ResultPath", "$")),
        )
