import typing

from behave import use_step_matcher, when

from chainsig_aa.borsh import Deserializer, Serializer
from chainsig_aa.errors import EncodingError

# Use regular expressions
use_step_matcher("re")


@when(r"I serialize as (?P<input_type>[a-zA-Z0-9]+)")
def when_serialize(context: typing.Any, input_type: str):
    ser = Serializer()

    try:
        if input_type == "bool":
            ser.bool(context.input)
        elif input_type == "u8":
            ser.u8(context.input)
        elif input_type == "u16":
            ser.u16(context.input)
        elif input_type == "u32":
            ser.u32(context.input)
        elif input_type == "u64":
            ser.u64(context.input)
        elif input_type == "u128":
            ser.u128(context.input)
        elif input_type == "bytes":
            ser.to_bytes(context.input)
        elif input_type == "string":
            ser.str(context.input)
        else:
            raise Exception("Unrecognized input type")
    except EncodingError as e:
        context.error = e
        return

    context.output = ser.output()


@when(r"I deserialize as (?P<input_type>[a-zA-Z0-9]+)")
def when_deserialize(context: typing.Any, input_type: str):
    des = Deserializer(context.input)

    try:
        if input_type == "bool":
            context.output = des.bool()
        elif input_type == "u8":
            context.output = des.u8()
        elif input_type == "u16":
            context.output = des.u16()
        elif input_type == "u32":
            context.output = des.u32()
        elif input_type == "u64":
            context.output = des.u64()
        elif input_type == "u128":
            context.output = des.u128()
        elif input_type == "bytes":
            context.output = des.to_bytes()
        elif input_type == "string":
            context.output = des.str()
        else:
            raise Exception("Unrecognized input type")
    except EncodingError as e:
        context.error = e
