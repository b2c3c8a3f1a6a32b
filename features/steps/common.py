import json
import typing

from behave import given, then, use_step_matcher

# Use regular expressions
use_step_matcher("re")


@given(r"(?P<input_type>[a-zA-Z0-9]+) (?P<input_value>.+)")
def given_input(context: typing.Any, input_type: str, input_value: str):
    context.error = None
    context.output = None
    if input_type == "json":
        context.input = json.loads(input_value)
    elif input_type == "bool":
        context.input = parse_bool(input_value)
    elif input_type == "bytes":
        context.input = parse_hex(input_value)
    elif input_type == "string":
        context.input = parse_string(input_value)
    elif input_type in ("u8", "u16", "u32", "u64", "u128"):
        context.input = int(input_value)
    else:
        raise Exception("Unrecognized input type")


@then(r"the result should be (?P<expected_type>[a-zA-Z0-9]+) (?P<expected_value>\S+)")
def then_result(context: typing.Any, expected_type: str, expected_value: str):
    assert context.error is None, "Unexpected error " + repr(context.error)
    expected_val: typing.Any = expected_value
    if expected_type == "bool":
        expected_val = parse_bool(expected_value)
    elif expected_type == "bytes":
        expected_val = parse_hex(expected_value)
    elif expected_type == "string":
        expected_val = parse_string(expected_value)
    elif expected_type in ("u8", "u16", "u32", "u64", "u128"):
        expected_val = int(expected_value)
    assert context.output == expected_val, (
        "Expected " + str(expected_val) + " but got " + str(context.output)
    )


@then(r"it should fail with (?P<error>[a-zA-Z]+)")
def then_error(context: typing.Any, error: str):
    assert context.error is not None, "Expected " + error + " but nothing was raised"
    assert type(context.error).__name__ == error, (
        "Expected " + error + " but got " + repr(context.error)
    )


def parse_hex(input_value: str):
    return bytes.fromhex(input_value.removeprefix("0x"))


def parse_bool(input_value: str):
    return input_value == "true"


def parse_string(input_value: str):
    return input_value.removeprefix('"').removesuffix('"')
