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
Prometheus metrics intended to emulate Step Functions CloudWatch metrics.
https://docs.aws.amazon.com/step-functions/latest/dg/procedure-cw-metrics.html

With aioprometheus if you want a Summary metric the "obvious" thing to do is to
use the Summary class. The problem with that however is that it directly uses
the quantile.Estimator, which retains *all* observations in a linked list, so
over time the insert and query time linearly degrades. The "official"
prometheus Python client doesn't store or expose quantiles at all, it simply
provides sum + observation count, so BasicSummary extends aioprometheus Summary
to do the same.

Metrics are only created when the metrics implementation is "Prometheus". Each
StepFunction registers its metrics in its own Registry so that several engines
may exist in one process.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

from aioprometheus import Counter, Registry, Summary


class BasicEstimator(object):
    """
    The Estimator basically follows the same API as quantile.Estimator but
    follows the pattern of the basic "official" prometheus client Summary
    to provide a simple summary comprising sum plus observation count.
    """
    def __init__(self):
        self._invariants = []  # Deliberately empty, but required by Summary.get()
        self._observations = 0
        self._sum = 0

    def observe(self, value):
        self._observations += 1
        self._sum += value


class BasicSummary(Summary):
    """
    Extend aioprometheus Summary to use our basic Estimator.
    """
    def observe(self, labels, value):
        if type(value) not in (float, int):
            raise TypeError("Summary only works with digits (int, float)")

        try:
            e = self.get_value(labels)
        except KeyError:
            e = BasicEstimator()
            self.set_value(labels, e)

        e.observe(float(value))  # type: ignore


def create_metrics(config, registry=None):
    """
    Create the execution and Lambda function metrics described by the metrics
    section of the configuration, returning a (registry, metrics dict) tuple.
    If the implementation isn't "Prometheus" the tuple is (None, {}).
    """
    metrics_config = config or {}
    if metrics_config.get("implementation", "") != "Prometheus":
        return None, {}

    registry = registry or Registry()
    ns = metrics_config.get("namespace", "")
    ns = ns + "_" if ns else ""

    counters = {
        "ExecutionsAborted": "The number of aborted or terminated executions.",
        "ExecutionsFailed": "The number of failed executions.",
        "ExecutionsStarted": "The number of started executions.",
        "ExecutionsSucceeded": "The number of successfully completed executions.",
        "ExecutionsTimedOut": "The number of executions that time out for any reason.",
        "LambdaFunctionsFailed": "The number of failed Lambda functions.",
        "LambdaFunctionsScheduled": "The number of scheduled Lambda functions.",
        "LambdaFunctionsSucceeded": "The number of successfully completed Lambda functions.",
    }
    metrics = {
        name: Counter(ns + name, doc, registry=registry)
        for name, doc in counters.items()
    }
    metrics["ExecutionTime"] = BasicSummary(
        ns + "ExecutionTime",
        "The interval, in milliseconds, between the time the execution " +
        "starts and the time it closes.",
        registry=registry,
    )
    metrics["LambdaFunctionTime"] = BasicSummary(
        ns + "LambdaFunctionTime",
        "The interval, in milliseconds, between the time the Lambda " +
        "function is scheduled and the time it closes.",
        registry=registry,
    )
    return registry, metrics
