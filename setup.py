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

from setuptools import setup, find_packages

setup(
    name="asl_local_engine",
    version="1.0.0",
    description="A local execution engine for Amazon States Language (ASL) State Machines.",
    long_description="A local execution engine for Amazon States Language (ASL) State Machines. Native Python functions are bound to Task states so that a State Machine can be run to completion in-process, reproducing the data flow, error handling and concurrency semantics of AWS Step Functions for testing before deployment.",
    packages=find_packages(exclude=["test"]),
    python_requires=">=3.8",
    install_requires=["structlog>=20.1",
                      "ujson",
                      "jsonpath",
                      "opentracing>=2.2",
                      "aioprometheus>=22.5"],
    extras_require={
        "jaeger": ["jaeger_client", "tornado"],
        "test": ["pytest"],
    }
)
