import typing

from behave import use_step_matcher, when

from chainsig_aa.errors import AbstractAccountError
from chainsig_aa.identity import Identity
from chainsig_aa.path import derive_path

# Use regular expressions
use_step_matcher("re")


@when(r"I derive the path")
def when_derive_path(context: typing.Any):
    try:
        context.output = derive_path(Identity.from_json(context.input))
    except AbstractAccountError as e:
        context.error = e
