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
https://docs.aws.amazon.com/step-functions/latest/dg/input-output-contextobject.html

The Context Object is an internal JSON structure that is available during an
execution and contains information about the state machine and execution.
A fresh Context Object is built each time a state is entered, so concurrent
Parallel branches and Map iterations never share one.

{
    "Execution": {
        "Id": <String>,
        "Input": <Object>,
        "Name": <String>,
        "RoleArn": <String>,
        "StartTime": <String Format: ISO 8601>
    },
    "State": {
        "EnteredTime": <String Format: ISO 8601>,
        "Name": <String>,
        "RetryCount": <Number>
    },
    "StateMachine": {
        "Id": <String>,
        "Name": <String>
    },
    "Map": {
        "Item": {
            "Index": <Number>,
            "Value": <Object>
        }
    }
}

AWS resources are identified by Amazon Resource Names (ARNs), see
http://docs.aws.amazon.com/general/latest/gr/aws-arns-and-namespaces.html
so simple utility functions for creating and parsing ARNs live here too.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import uuid
from datetime import datetime, timedelta, timezone

DEFAULT_ROLE_ARN = "arn:aws:iam:::role/dummy-role/dummy"


def create_arn(
    resource="",
    arn="arn",
    partition="aws",
    service="",
    region="",
    account="",
    resource_type=None,
):
    """
    Create an ARN string from its component parts, if this function is called
    passing a dictionary we use the ** operator to perform keyword expansion.
    """
    if isinstance(resource, dict):
        return create_arn(**resource)
    if resource_type:
        resource = resource_type + ":" + resource
    return "{}:{}:{}:{}:{}:{}".format(
        arn, partition, service, region, account, resource
    )


def parse_arn(arn):
    """
    Parse an ARN into a dictionary comprising the component parts of the ARN
    """
    elements = arn.split(":", 5)
    if len(elements) != 6 or elements[0] != "arn":
        raise ValueError("{} is not a valid ARN".format(arn))
    result = {
        "arn": elements[0],
        "partition": elements[1],
        "service": elements[2],
        "region": elements[3],
        "account": elements[4],
        "resource": elements[5],
        "resource_type": None,
    }
    if "/" in result["resource"]:
        result["resource_type"], result["resource"] = result["resource"].split("/", 1)
    elif ":" in result["resource"]:
        result["resource_type"], result["resource"] = result["resource"].split(":", 1)
    return result


def state_machine_arn(name, region="local", account="0123456789"):
    return create_arn(
        service="states",
        region=region,
        account=account,
        resource_type="stateMachine",
        resource=name,
    )


def execution_arn(state_machine_id, execution_name):
    """
    Form an executionArn from a stateMachineArn and an execution name.
    """
    arn = parse_arn(state_machine_id)
    return create_arn(
        service="states",
        region=arn["region"],
        account=arn["account"],
        resource_type="execution",
        resource=arn["resource"] + ":" + execution_name,
    )


def now_rfc3339():
    # https://stackoverflow.com/questions/8556398/generate-rfc-3339-timestamp-in-python
    return datetime.now(timezone.utc).astimezone().isoformat()


def parse_rfc3339_datetime(rfc3339):
    """
    Parse an RFC3339 (https://www.ietf.org/rfc/rfc3339.txt) format string into
    a datetime object which is essentially the inverse operation to
    datetime.now(timezone.utc).astimezone().isoformat()
    We primarily need this in the Wait and Choice states so we can compute
    timeouts and compare timestamps. Raises ValueError if the string is not a
    valid RFC3339 timestamp.
    """
    if not isinstance(rfc3339, str):
        raise ValueError("{} is not an RFC3339 timestamp".format(rfc3339))
    rfc3339 = rfc3339.strip()  # Remove any leading/trailing whitespace
    if rfc3339[-1:] in ("Z", "z"):
        date = rfc3339[:-1]
        offset = "+00:00"
    else:
        date = rfc3339[:-6]
        offset = rfc3339[-6:]
    if offset[0] not in "+-" or offset[3] != ":":
        raise ValueError("{} has no valid UTC offset".format(rfc3339))

    if "." in date:
        # strptime %f accepts at most six fractional digits.
        date, fraction = date.split(".", 1)
        date = date + "." + fraction[:6]
    else:
        date = date + ".0"
    raw_datetime = datetime.strptime(date.replace("t", "T"), "%Y-%m-%dT%H:%M:%S.%f")
    delta = timedelta(hours=int(offset[1:3]), minutes=int(offset[4:6]))
    if offset[0] == "-":
        delta = -delta
    return raw_datetime.replace(tzinfo=timezone(delta))


def timestamp_millis(rfc3339):
    """
    Normalise an RFC3339 timestamp to milliseconds since the epoch.
    """
    return int(round(parse_rfc3339_datetime(rfc3339).timestamp() * 1000))


def create_execution_context(
    state_machine_id, state_machine_name, input, name=None, role_arn=None
):
    """
    Create the execution level part of the Context Object, which is fixed for
    the lifetime of one execution.
    """
    name = name or str(uuid.uuid4())
    return {
        "Execution": {
            "Id": execution_arn(state_machine_id, name),
            "Input": input,
            "Name": name,
            "RoleArn": role_arn or DEFAULT_ROLE_ARN,
            "StartTime": now_rfc3339(),
        },
        "StateMachine": {"Id": state_machine_id, "Name": state_machine_name},
    }


def create_state_context(execution_context, state_name, retry_count=0, item=None):
    """
    Build the Context Object for one state invocation. item, if supplied, is an
    (index, value) tuple describing the current Map iteration.
    """
    context = {
        "Execution": dict(execution_context["Execution"]),
        "StateMachine": dict(execution_context["StateMachine"]),
        "State": {
            "EnteredTime": now_rfc3339(),
            "Name": state_name,
            "RetryCount": retry_count,
        },
    }
    if item is not None:
        index, value = item
        context["Map"] = {"Item": {"Index": index, "Value": value}}
    return context
