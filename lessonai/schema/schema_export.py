"""
Convert msgspec Structs into the OpenAPI-subset schema Vertex AI accepts as ``responseSchema``.

Vertex rejects ``$ref``/``$defs`` and JSON-Schema-only keywords, so nested
Structs are inlined and constraints are mapped onto the supported keywords
(``minLength``, ``maxItems``, ``minimum`` ...). Wire names (``msgspec.field(name=...)``)
are used for property keys.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import msgspec
import msgspec.inspect


def _string_schema(type_info: msgspec.inspect.StrType) -> dict[str, Any]:
  schema: dict[str, Any] = {"type": "string"}
  if type_info.min_length is not None:
    schema["minLength"] = type_info.min_length
  if type_info.max_length is not None:
    schema["maxLength"] = type_info.max_length
  if type_info.pattern is not None:
    schema["pattern"] = type_info.pattern
  return schema


def _numeric_schema(type_info: msgspec.inspect.IntType | msgspec.inspect.FloatType, json_type: str) -> dict[str, Any]:
  schema: dict[str, Any] = {"type": json_type}
  if type_info.ge is not None:
    schema["minimum"] = type_info.ge
  if type_info.le is not None:
    schema["maximum"] = type_info.le
  return schema


def _type_schema(type_info: msgspec.inspect.Type) -> dict[str, Any]:
  """Map a msgspec.inspect type onto a Vertex schema node."""
  if isinstance(type_info, msgspec.inspect.Metadata):
    schema = _type_schema(type_info.type)
    if type_info.extra_json_schema:
      schema.update(type_info.extra_json_schema)
    return schema

  if isinstance(type_info, msgspec.inspect.StrType):
    return _string_schema(type_info)

  if isinstance(type_info, msgspec.inspect.IntType):
    return _numeric_schema(type_info, "integer")

  if isinstance(type_info, msgspec.inspect.FloatType):
    return _numeric_schema(type_info, "number")

  if isinstance(type_info, msgspec.inspect.BoolType):
    return {"type": "boolean"}

  if isinstance(type_info, msgspec.inspect.ListType):
    schema: dict[str, Any] = {"type": "array", "items": _type_schema(type_info.item_type)}
    if type_info.min_length is not None:
      schema["minItems"] = type_info.min_length
    if type_info.max_length is not None:
      schema["maxItems"] = type_info.max_length
    return schema

  if isinstance(type_info, msgspec.inspect.LiteralType):
    return {"type": "string", "enum": [str(value) for value in type_info.values]}

  if isinstance(type_info, msgspec.inspect.StructType):
    return _struct_schema(type_info)

  if isinstance(type_info, msgspec.inspect.UnionType):
    non_none = [member for member in type_info.types if not isinstance(member, msgspec.inspect.NoneType)]
    if len(non_none) == 1:
      schema = _type_schema(non_none[0])
      schema["nullable"] = True
      return schema
    return {"anyOf": [_type_schema(member) for member in non_none]}

  raise ValueError(f"Unsupported type for response schema: {type_info!r}")


def _struct_schema(type_info: msgspec.inspect.StructType) -> dict[str, Any]:
  properties: dict[str, Any] = {}
  required: list[str] = []
  for field in type_info.fields:
    properties[field.encode_name] = _type_schema(field.type)
    if field.required:
      required.append(field.encode_name)

  schema: dict[str, Any] = {"type": "object", "properties": properties, "propertyOrdering": list(properties)}
  if required:
    schema["required"] = required
  if type_info.cls.__doc__:
    schema["description"] = type_info.cls.__doc__.strip()
  return schema


@lru_cache(maxsize=None)
def struct_to_response_schema(struct_class: type[msgspec.Struct]) -> dict[str, Any]:
  """Return the response schema for a Struct class (cached per class; treat as read-only)."""
  type_info = msgspec.inspect.type_info(struct_class)
  if not isinstance(type_info, msgspec.inspect.StructType):
    raise ValueError(f"{struct_class} is not a msgspec.Struct")
  return _struct_schema(type_info)
