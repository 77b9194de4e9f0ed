"""Protobuf schema of the cast channel message.

The message type is described with a ``FileDescriptorProto`` and turned into a
concrete message class by the protobuf runtime, so encoding and parsing are
done by the protobuf library itself. The schema mirrors::

    package extensions.api.cast_channel;

    message CastMessage {
      enum ProtocolVersion { CASTV2_1_0 = 0; }
      required ProtocolVersion protocol_version = 1;
      required string source_id = 2;
      required string destination_id = 3;
      required string namespace = 4;
      enum PayloadType { STRING = 0; BINARY = 1; }
      required PayloadType payload_type = 5;
      optional string payload_utf8 = 6;
      optional bytes payload_binary = 7;
    }
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

__all__ = ["PROTOCOL_VERSION_CASTV2_1_0", "CastMessage"]

_PACKAGE = "extensions.api.cast_channel"
_MESSAGE = "CastMessage"

PROTOCOL_VERSION_CASTV2_1_0 = 0

_Field = descriptor_pb2.FieldDescriptorProto

# name, number, type, label, enum type name
_FIELDS: tuple[tuple[str, int, int, int, str], ...] = (
    ("protocol_version", 1, _Field.TYPE_ENUM, _Field.LABEL_REQUIRED, "ProtocolVersion"),
    ("source_id", 2, _Field.TYPE_STRING, _Field.LABEL_REQUIRED, ""),
    ("destination_id", 3, _Field.TYPE_STRING, _Field.LABEL_REQUIRED, ""),
    ("namespace", 4, _Field.TYPE_STRING, _Field.LABEL_REQUIRED, ""),
    ("payload_type", 5, _Field.TYPE_ENUM, _Field.LABEL_REQUIRED, "PayloadType"),
    ("payload_utf8", 6, _Field.TYPE_STRING, _Field.LABEL_OPTIONAL, ""),
    ("payload_binary", 7, _Field.TYPE_BYTES, _Field.LABEL_OPTIONAL, ""),
)

_ENUMS: tuple[tuple[str, tuple[tuple[str, int], ...]], ...] = (
    ("ProtocolVersion", (("CASTV2_1_0", PROTOCOL_VERSION_CASTV2_1_0),)),
    ("PayloadType", (("STRING", 0), ("BINARY", 1))),
)


def _build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto()
    file_proto.name = "castlink/cast_channel.proto"
    file_proto.package = _PACKAGE
    file_proto.syntax = "proto2"

    message = file_proto.message_type.add()
    message.name = _MESSAGE

    for enum_name, values in _ENUMS:
        enum_proto = message.enum_type.add()
        enum_proto.name = enum_name
        for value_name, number in values:
            value = enum_proto.value.add()
            value.name = value_name
            value.number = number

    for name, number, field_type, label, enum_name in _FIELDS:
        field = message.field.add()
        field.name = name
        field.number = number
        field.type = field_type  # type: ignore[assignment]
        field.label = label  # type: ignore[assignment]
        if enum_name:
            field.type_name = f".{_PACKAGE}.{_MESSAGE}.{enum_name}"

    return file_proto


def _build_message_class() -> type:
    # Private pool: another library may already register this proto name globally
    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(_build_file_descriptor().SerializeToString())
    descriptor = pool.FindMessageTypeByName(f"{_PACKAGE}.{_MESSAGE}")
    return message_factory.GetMessageClass(descriptor)


CastMessage = _build_message_class()
