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
https://states-language.net/spec.html#filters

A state may want to process only a subset of its input data, and may want that
data structured differently from the way it appears in the input. Similarly, it
may want to control the format and content of the data that it passes on as
output.

Fields named “InputPath”, “Parameters”, “ResultSelector”, “OutputPath”, and
“ResultPath” exist to support this. apply_input() runs InputPath then
Parameters before a state's work is done and apply_output() runs
ResultSelector, ResultPath then OutputPath on the state's result.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import copy, re

"""
ASL paths use JSONPath.
https://goessner.net/articles/JsonPath/
http://www.ultimate.com/phil/python/#jsonpath
Note jsponpath_rw was tried but doesn't seem to correctly support many of the
test cases from the goessner link above.
"""
from jsonpath import jsonpath  # pip3 install jsonpath

from asl_local_engine.asl_exceptions import (
    IntrinsicFailure,
    ParameterPathFailure,
    PathMatchFailure,
    ResultPathMatchFailure,
    Runtime,
)

try:  # Attempt to use ujson if available https://pypi.org/project/ujson/
    import ujson as json
except ImportError:  # Fall back to standard library json
    import json


def apply_jsonpath(input, path="$", throw_exception_on_failed_match=True):
    """
    Performs the InputPath and OutputPath logic described in the ASL spec.
    https://states-language.net/spec.html#filters
    This is mostly just calling jsonpath() and applying the specified defaults.

    A null path yields an empty JSON object, which is the defined behaviour of
    InputPath and OutputPath being null. A path that matches nothing raises
    PathMatchFailure unless throw_exception_on_failed_match is False, in which
    case None is returned so that callers such as the Choice evaluator can
    treat the value as undefined.
    """
    if path is None:
        return {}
    if path == "$":
        return input
    if input is None:
        input = {}
    result = jsonpath(input, path)

    if result is False:
        if throw_exception_on_failed_match:
            raise PathMatchFailure(
                "Invalid path '{}' applied to input '{}'".format(path, input)
            )
        else:
            return None

    """
    The following is a little subtle. Python jsonpath returns a list of matches
    but for most scenarios if a single item matches it is more intuitive to have
    that item returned rather than a list that contains that item, which is how
    Jayway (the engine used by the hosted service) behaves. The exception is
    where the path contains an array slice operator because then we expect to
    return an array even if only a single item is matched.
    """
    if len(result) == 1:
        path_has_slice = re.search(r"\[.*:.*\]", path)
        if not path_has_slice:
            return result[0]

    return result


def apply_path(input, context, path="$", throw_exception_on_failed_match=True):
    """
    https://states-language.net/spec.html#path

    A Path is a string, beginning with "$", used to identify components with a
    JSON text. The syntax is that of JSONPath.

    When a Path begins with "$$", two dollar signs, this signals that it is
    intended to identify content within the Context Object. The first dollar
    sign is stripped, and the remaining text, which begins with a dollar sign,
    is interpreted as the JSONPath applying to the Context Object.
    """
    if path is None:
        return {}
    if not isinstance(path, str) or not path.startswith("$"):
        raise ParameterPathFailure("{} must be a JSONPath".format(path))
    if path.startswith("$$"):  # Use Context object, not input
        return apply_jsonpath(
            context or {}, path[1:], throw_exception_on_failed_match
        )
    else:
        return apply_jsonpath(input, path, throw_exception_on_failed_match)


def apply_resultpath(input, result, path="$"):
    """
    Performs the ResultPath logic described in the ASL spec.
    https://states-language.net/spec.html#filters

    The ResultPath field’s value is a Reference Path that specifies where to
    place the result, relative to the raw input. If the input has a field which
    matches the ResultPath value, then in the output, that field is discarded
    and overwritten by the state output. Otherwise, a new field is created in
    the state output.

    If the value of of ResultPath is null, that means that the state’s own raw
    output is discarded and its raw input becomes its result.

    The raw input is never modified, the result is written into a copy.
    """
    def update_path(target, keys, default):
        if len(keys) == 0:
            return default
        key = keys.pop(0)
        if isinstance(target, list):
            try:
                i = int(key)
                target[i] = update_path(target[i], keys, default)
            except (ValueError, IndexError) as e:
                raise ResultPathMatchFailure(
                    "Cannot apply ResultPath {}".format(path), cause=e
                )
        elif isinstance(target, dict):
            if key.isdigit():
                raise ResultPathMatchFailure(
                    "Object index {} is not a valid key string".format(key)
                )
            target[key] = update_path(target.get(key, {}), keys, default)
        else:
            raise ResultPathMatchFailure(
                "Cannot use key {} to index a primitive type".format(key)
            )
        return target

    if path is None:
        return input
    if path == "$":
        return result
    if path.startswith("$$"):
        raise ResultPathMatchFailure(
            "The value of \"ResultPath\" MUST NOT begin with \"$$\""
        )
    if input is None:
        input = {}
    if not isinstance(input, (dict, list)):
        raise Runtime(
            "ResultPath {} requires a JSON object or array input, got {}".format(
                path, json.dumps(input)
            )
        )

    keys = re.findall(r"[^$.[\]'\"]+", path)  # Split the reference path
    return update_path(copy.deepcopy(input), keys, result)


def intrinsic_format(template_string, args):
    """
    States.Format: each unescaped {} in template_string is replaced, in order,
    by the next argument. String arguments are inserted verbatim, any other
    value is inserted as its JSON text.
    """
    if not isinstance(template_string, str):
        raise IntrinsicFailure(
            "States.Format failed, the first argument must be a string."
        )
    # Split on {} not preceded by a backslash, the escapes are then removed.
    pieces = re.split(r"(?<!\\)\{\}", template_string)
    if len(pieces) - 1 != len(args):
        raise IntrinsicFailure(
            "States.Format failed, template has {} placeholders but {} "
            "arguments were supplied.".format(len(pieces) - 1, len(args))
        )

    def unescape(s):
        return re.sub(r"\\([{}'\\])", r"\1", s)

    formatted = unescape(pieces[0])
    for arg, piece in zip(args, pieces[1:]):
        formatted += arg if isinstance(arg, str) else json.dumps(arg)
        formatted += unescape(piece)
    return formatted


def evaluate_intrinsic_function(input, context, intrinsic):
    """
    ASL Appendix B: List of Intrinsic Functions:
    https://states-language.net/#appendix-b

    Only States.Format is supported, every other intrinsic fails the state with
    States.IntrinsicFailure rather than silently producing nothing.
    """
    if "(" not in intrinsic or not intrinsic.rstrip().endswith(")"):
        raise IntrinsicFailure(
            "{} is not a valid Intrinsic Function".format(intrinsic)
        )

    func, args = intrinsic.split("(", 1)
    func = func.strip()
    if func != "States.Format":
        raise IntrinsicFailure(
            "Intrinsic Function {} is not supported.".format(func)
        )
    # Extract raw args string
    args = args.rsplit(")", 1)[0]

    """
    Extract the individual args from the raw string into a list. Intrinsic
    Function arguments may be strings enclosed by apostrophe (') characters,
    numbers, null, Paths, or nested Intrinsic Functions. The regex finds
    each valid argument as follows:
    \'.*?(?<!\\\\)\'        extracts apostrophe delimited string. This uses
        a negative lookbehind to match a closing ' only if not preceeded
        by a \\ in order to support escaped apostrophes in the string.
    States.*?\\)            extracts nested intrinsic
    [^\\s,]+                anything else up to whitespace or comma, an invalid
        literal such as f123.45 is matched so that it fails evaluation below.
    """
    arglist = re.findall("'.*?(?<!\\\\)'|States.*?\\)|[^\\s,]+", args)

    for i, arg in enumerate(arglist):
        if arg.startswith("'"):  # It's an apostrophe delimited string
            arglist[i] = arg[1:-1]
        elif arg.startswith("$"):  # It's a path
            arglist[i] = apply_path(input, context, arg)
        elif arg.startswith("States."):  # It's a nested intrinsic function
            arglist[i] = evaluate_intrinsic_function(input, context, arg)
        elif arg == "null":
            arglist[i] = None
        elif arg == "true":
            arglist[i] = True
        elif arg == "false":
            arglist[i] = False
        else:
            try:
                arglist[i] = int(arg)
            except ValueError:
                try:
                    arglist[i] = float(arg)
                except ValueError:
                    raise IntrinsicFailure(
                        "Intrinsic Function {}, Invalid argument {}.".format(func, arg)
                    )

    if len(arglist) < 1:
        raise IntrinsicFailure(
            "States.Format failed, requires one or more arguments."
        )
    return intrinsic_format(arglist[0], arglist[1:])


def evaluate_payload_template(input, context, template):
    """
    https://states-language.net/spec.html#payload-template

    The value of "Parameters" MUST be a Payload Template which is a JSON object,
    whose input is the result of applying the InputPath to the raw input. If the
    "Parameters" field is provided, its payload, after the extraction and
    embedding, becomes the effective input.

    The value of "ResultSelector" MUST be a Payload Template, whose input is the
    result, and whose payload replaces and becomes the effective result.

    If any field within the Payload Template (however deeply nested) has a name
    ending with the characters ".$", its value is transformed and the field is
    renamed to strip the ".$" suffix.

    If the field value begins with only one "$", the value MUST be a Path. In
    this case, the Path is applied to the Payload Template’s input and is the
    new field value.

    If the field value begins with "$$", the first dollar sign is stripped and
    the remainder MUST be a Path. In this case, the Path is applied to the
    Context Object and is the new field value.

    If the field value does not begin with "$", it MUST be an Intrinsic Function.
    The interpreter invokes the Intrinsic Function and the result is the new value.
    """

    def evaluate(k, v):
        if not (isinstance(k, str) and k.endswith(".$")):
            return k, v

        k = k[:-2]  # strip ".$" from end
        if not isinstance(v, str):
            raise ParameterPathFailure(
                "The value of field {}.$ must be a Path or Intrinsic Function".format(k)
            )
        if v == "$":  # It's a path representing the root node
            v = copy.deepcopy(input)
        elif v.startswith("$"):  # It's a path
            try:
                v = apply_path(input, context, v)
            except PathMatchFailure as e:
                raise ParameterPathFailure(
                    "Field {}.$ could not be resolved".format(k), cause=e
                )
        else:  # It's an Intrinsic Function
            v = evaluate_intrinsic_function(input, context, v)
        return k, v

    def clone(template):
        """
        Recursively crawl the source JSON template creating a clone of its
        structure but evaluating and expanding fields whose name ends with “.$”
        """
        if isinstance(template, list):
            return [clone(item) for item in template]
        elif isinstance(template, dict):
            target = {}
            for k, v in template.items():
                if isinstance(v, (dict, list)):
                    target[k] = clone(v)
                else:
                    k, v = evaluate(k, v)
                    target[k] = v
            return target
        return template

    if template is None:
        return input
    return clone(template)


def apply_input(state, input, context):
    """
    InputPath then Parameters, producing the effective input of a state. Like
    every Path, InputPath may select from the Context Object.
    """
    effective_input = apply_path(input, context, state.get("InputPath", "$"))
    if "Parameters" in state:
        effective_input = evaluate_payload_template(
            effective_input, context, state["Parameters"]
        )
    return effective_input


def apply_output(state, raw_input, result, context):
    """
    ResultSelector, ResultPath then OutputPath. ResultPath places the result
    relative to the state's raw input, not its effective input.
    """
    if "ResultSelector" in state:
        result = evaluate_payload_template(result, context, state["ResultSelector"])
    output = apply_resultpath(raw_input, result, state.get("ResultPath", "$"))
    return apply_path(output, context, state.get("OutputPath", "$"))
