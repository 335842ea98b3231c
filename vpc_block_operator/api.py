"""
Typed schema for the ClusterCSIDriver custom resource.

Every field is optional so that the same types describe both a full object and
the partial value a single field manager applies. Field names are the snake_case
form of the camelCase keys used on the wire.
"""

# Standard
from dataclasses import dataclass, fields, is_dataclass
from typing import Any, Dict, List, Optional, TypeVar, Union, get_args, get_origin
import copy
import typing

# Local
from .exceptions import ConversionError

SchemaType = TypeVar("SchemaType", bound="Schema")

## Conversion ##################################################################


def _json_name(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(part.capitalize() for part in tail)


def _unwrap_optional(hint: Any) -> Any:
    if get_origin(hint) is Union:
        args = [arg for arg in get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


def _type_error(where: str, expected: str, value: Any) -> ConversionError:
    return ConversionError(f"{where}: expected {expected}, got {type(value).__name__}")


def _convert(hint: Any, value: Any, where: str) -> Any:
    hint = _unwrap_optional(hint)
    origin = get_origin(hint)
    if origin is list:
        if not isinstance(value, list):
            raise _type_error(where, "a list", value)
        (item_hint,) = get_args(hint)
        return [
            _convert(item_hint, item, f"{where}[{idx}]")
            for idx, item in enumerate(value)
        ]
    if origin is dict:
        if not isinstance(value, dict):
            raise _type_error(where, "a map", value)
        return copy.deepcopy(value)
    if is_dataclass(hint):
        return hint.from_dict(value, where)
    if hint is int and (isinstance(value, bool) or not isinstance(value, int)):
        raise ConversionError(f"{where}: expected an integer, got {value!r}")
    if hint is str and not isinstance(value, str):
        raise ConversionError(f"{where}: expected a string, got {value!r}")
    return value


def _to_json(value: Any) -> Any:
    if isinstance(value, Schema):
        return value.to_dict()
    if isinstance(value, list):
        return [_to_json(item) for item in value]
    return copy.deepcopy(value)


class Schema:
    """Shared conversion between the typed dataclasses and generic dicts"""

    @classmethod
    def from_dict(
        cls: typing.Type[SchemaType],
        data: Any,
        where: Optional[str] = None,
    ) -> SchemaType:
        """Convert the generic representation into this type. Unknown keys are
        ignored.

        Raises:
            ConversionError: A known key holds a value of the wrong type
        """
        where = where or cls.__name__
        if not isinstance(data, dict):
            raise _type_error(where, "a map", data)
        hints = typing.get_type_hints(cls)
        kwargs = {}
        for fld in fields(cls):
            key = _json_name(fld.name)
            if data.get(key) is None:
                continue
            kwargs[fld.name] = _convert(hints[fld.name], data[key], f"{where}.{key}")
        return cls(**kwargs)

    def to_dict(self) -> dict:
        """Convert to the generic representation, omitting unset fields"""
        return {
            _json_name(fld.name): _to_json(getattr(self, fld.name))
            for fld in fields(self)
            if getattr(self, fld.name) is not None
        }


## Types #######################################################################


@dataclass
class OperatorSpec(Schema):
    management_state: Optional[str] = None
    log_level: Optional[str] = None
    operator_log_level: Optional[str] = None
    unsupported_config_overrides: Optional[Dict[str, Any]] = None
    observed_config: Optional[Dict[str, Any]] = None


@dataclass
class ClusterCSIDriverSpec(OperatorSpec):
    driver_config: Optional[Dict[str, Any]] = None
    storage_class_state: Optional[str] = None


@dataclass
class OperatorCondition(Schema):
    type: Optional[str] = None
    status: Optional[str] = None
    last_transition_time: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None


@dataclass
class GenerationStatus(Schema):
    """The last generation of a workload that a controller rolled out"""

    group: Optional[str] = None
    resource: Optional[str] = None
    namespace: Optional[str] = None
    name: Optional[str] = None
    last_generation: Optional[int] = None
    hash: Optional[str] = None


@dataclass
class OperatorStatus(Schema):
    observed_generation: Optional[int] = None
    conditions: Optional[List[OperatorCondition]] = None
    version: Optional[str] = None
    ready_replicas: Optional[int] = None
    latest_available_revision: Optional[int] = None
    generations: Optional[List[GenerationStatus]] = None


@dataclass
class ClusterCSIDriver(Schema):
    api_version: Optional[str] = None
    kind: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    spec: Optional[ClusterCSIDriverSpec] = None
    status: Optional[OperatorStatus] = None
