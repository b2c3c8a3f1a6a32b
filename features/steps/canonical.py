import typing

from behave import use_step_matcher, when

from chainsig_aa import canonical
from chainsig_aa.errors import AbstractAccountError
from chainsig_aa.transactions import Transaction

# Use regular expressions
use_step_matcher("re")


@when(r"I canonicalize the document")
def when_canonicalize(context: typing.Any):
    try:
        context.output = canonical.encode(context.input)
    except AbstractAccountError as e:
        context.error = e


@when(r"I canonicalize the transaction")
def when_canonicalize_transaction(context: typing.Any):
    try:
        transaction = Transaction.from_json(context.input)
        context.output = canonical.encode(transaction)
    except AbstractAccountError as e:
        context.error = e
