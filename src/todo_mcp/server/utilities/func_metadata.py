import inspect
import json
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, get_type_hints

from pydantic import BaseModel, ConfigDict, Field, WithJsonSchema, create_model
from pydantic.fields import FieldInfo
from pydantic_core import PydanticUndefined

from todo_mcp.server.exceptions import InvalidSignature
from todo_mcp.server.utilities.logging import get_logger

logger = get_logger(__name__)

_VARIADIC = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)


class ArgModelBase(BaseModel):
    """Base for the generated argument models."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def as_kwargs(self) -> dict[str, Any]:
        """Field values keyed by python parameter name, nested models left intact."""
        return {name: getattr(self, name) for name in type(self).model_fields}


class FuncMetadata(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    arg_model: Annotated[type[ArgModelBase], WithJsonSchema(None)]

    def validate_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Turn raw ``tools/call`` arguments into keyword arguments for the function.

        Raises:
            pydantic.ValidationError: if the arguments do not match the signature.
        """
        decoded = self._decode_json_strings(arguments)
        return self.arg_model.model_validate(decoded).as_kwargs()

    async def invoke(self, fn: Callable[..., Any], is_async: bool, kwargs: dict[str, Any]) -> Any:
        if is_async:
            return await fn(**kwargs)
        result = fn(**kwargs)
        # sync callables may still hand back an awaitable
        return await result if isinstance(result, Awaitable) else result

    def _decode_json_strings(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Decode list and object arguments that a client sent as JSON text.

        Parameters typed ``str`` are never decoded, so a title like ``"[1]"``
        stays a string. Decoded scalars are dropped in favour of pydantic's own
        coercion of the original text.
        """
        decoded = dict(arguments)
        for name, info in self.arg_model.model_fields.items():
            key = info.alias or name
            raw = arguments.get(key)
            if info.annotation is str or not isinstance(raw, str):
                continue
            try:
                value = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(value, list | dict):
                decoded[key] = value
        return decoded


def func_metadata(func: Callable[..., Any]) -> FuncMetadata:
    """Build a pydantic argument model from ``func``'s signature.

    ```
    meta = func_metadata(func)
    kwargs = meta.validate_arguments(raw_arguments)
    return await meta.invoke(func, True, kwargs)
    ```

    ``Annotated`` metadata on a parameter becomes field constraints, and a
    ``Field(alias=...)`` sets the name used on the wire and in the schema.
    """
    owner = getattr(func, "__name__", type(func).__name__)
    try:
        hints = get_type_hints(func, include_extras=True)
    except NameError as e:
        raise InvalidSignature(f"Unable to evaluate type annotations of {owner}: {e}") from e

    fields: dict[str, Any] = {}
    for param in inspect.signature(func).parameters.values():
        if param.name.startswith("_"):
            raise InvalidSignature(f"Parameter {param.name} of {owner} cannot start with '_'")
        if param.kind in _VARIADIC:
            raise InvalidSignature(f"Variadic parameter {param.name} of {owner} is not supported")
        info = _argument_field(param, hints.get(param.name, inspect.Parameter.empty))
        fields[param.name] = (info.annotation, info)

    arg_model = create_model(f"{owner}Arguments", __base__=ArgModelBase, **fields)
    return FuncMetadata(arg_model=arg_model)


def _argument_field(param: inspect.Parameter, annotation: Any) -> FieldInfo:
    if annotation is inspect.Parameter.empty:
        # untyped parameters are advertised as strings
        annotation = Annotated[Any, Field(), WithJsonSchema({"title": param.name, "type": "string"})]
    default = PydanticUndefined if param.default is inspect.Parameter.empty else param.default
    return FieldInfo.from_annotated_attribute(annotation, default)
