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
The TaskDispatcher invokes the native functions bound to Task states, which
stand in for the remote resources (usually Lambda functions) that a Task's
Resource ARN would name in the hosted service. Handlers are bound by Task
state name. A handler may be a plain function, which is run in the event
loop's default executor so concurrent Parallel branches and Map iterations
don't block each other, or a coroutine function, which is awaited.

A Task state with no bound handler passes its effective input through
unchanged.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import asyncio, copy, functools, inspect, time
import opentracing

from asl_local_engine.asl_exceptions import ExecutionError, TaskFailed


class TaskDispatcher(object):
    def __init__(self, logger, transition, metrics=None):
        """
        :param logger: The logger of the StepFunction using this TaskDispatcher
        :param transition: Called to record the LambdaFunction* transitions,
            with the same arguments as TransitionLog.record
        :type transition: callable
        :param metrics: Optional dict of aioprometheus metrics
        :type metrics: dict
        """
        self.logger = logger
        self.transition = transition
        self.task_metrics = metrics or {}
        self.resources = {}

    def bind(self, task_name, fn):
        if not callable(fn):
            raise TypeError("Handler for {} must be callable".format(task_name))
        self.resources[task_name] = fn

    def unbind(self, task_name):
        self.resources.pop(task_name, None)

    async def execute_task(self, state_name, resource_arn, parameters):
        """
        Invoke the handler bound to state_name with a copy of parameters (the
        effective input), recording the LambdaFunction lifecycle transitions.
        A Task with no bound handler records the same transitions and returns
        its input unchanged. Exceptions raised by the handler are wrapped in
        TaskFailed with error_type set to the exception's class name, unless
        they are already ExecutionErrors.
        """
        fn = self.resources.get(state_name)
        if fn is None:
            self.logger.debug(
                "No handler bound to {}, passing input through".format(state_name)
            )
            self.transition("LambdaFunctionScheduled", state_name, input=parameters)
            self.transition("LambdaFunctionStarted", state_name, input=parameters)
            self.transition("LambdaFunctionSucceeded", state_name, output=parameters)
            return parameters

        # Handlers may modify their event, Retries must see the original.
        event = copy.deepcopy(parameters)
        resource_arn = resource_arn or state_name
        labels = {"LambdaFunctionArn": resource_arn}
        self.transition(
            "LambdaFunctionScheduled", state_name, input=parameters
        )
        if self.task_metrics:
            self.task_metrics["LambdaFunctionsScheduled"].inc(labels)
        sched_time = time.time() * 1000.0

        """
        Start an OpenTracing span for the Task invocation, a child of the
        execution's span.
        https://opentracing.io/specification/conventions/
        """
        with opentracing.tracer.start_active_span(
            operation_name="Task",
            child_of=opentracing.tracer.active_span,
            tags={
                "component": "task_dispatcher",
                "resource_arn": resource_arn,
                "state_name": state_name,
                "span.kind": "client",
            }
        ) as scope:
            self.transition(
                "LambdaFunctionStarted", state_name, input=parameters
            )
            try:
                if inspect.iscoroutinefunction(fn):
                    result = await fn(event)
                else:
                    loop = asyncio.get_running_loop()
                    result = await loop.run_in_executor(
                        None, functools.partial(fn, event)
                    )
                    if inspect.isawaitable(result):
                        result = await result
            except ExecutionError as e:
                error = e
            except Exception as e:
                error = TaskFailed(str(e), cause=e, error_type=type(e).__name__)
            else:
                self.transition(
                    "LambdaFunctionSucceeded", state_name, output=result
                )
                if self.task_metrics:
                    self.task_metrics["LambdaFunctionsSucceeded"].inc(labels)
                    self.observe_time(labels, sched_time)
                return result

            scope.span.set_tag("error", True)
            scope.span.log_kv({"event": error.error, "message": error.message})
            self.logger.warning(
                "Task {} failed with {}".format(state_name, error)
            )
            self.transition(
                "LambdaFunctionFailed", state_name, error={
                    "Error": error.error_type or error.error,
                    "Cause": error.message,
                },
            )
            if self.task_metrics:
                self.task_metrics["LambdaFunctionsFailed"].inc(labels)
                self.observe_time(labels, sched_time)
            raise error

    def observe_time(self, labels, sched_time):
        duration = (time.time() * 1000.0) - sched_time
        self.task_metrics["LambdaFunctionTime"].observe(labels, duration)
