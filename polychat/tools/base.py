from __future__ import annotations

import asyncio
import inspect
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from polychat.llm.types import ToolDef

ToolHandler = Callable[[str], Union[str, Awaitable[str]]]

_JSON_TYPES = {
    "str": "string",
    "int": "integer",
    "float": "number",
    "bool": "boolean",
    "list": "array",
    "dict": "object",
}


def normalize_schema(schema: dict | None) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    return s


@dataclass
class Tool:
    """
    A registered tool: the definition advertised to the model plus its handler.

    Handlers receive the raw JSON argument string and return a string.  They
    may be plain functions or coroutine functions.
    """

    definition: ToolDef
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def description(self) -> str:
        return self.definition.description

    @property
    def parameters(self) -> dict:
        return normalize_schema(self.definition.parameters)

    async def execute(self, arguments: str) -> str:
        if inspect.iscoroutinefunction(self.handler):
            result = await self.handler(arguments)
        else:
            # Off the loop thread, so timeouts and cancellation still apply.
            result = await asyncio.to_thread(self.handler, arguments)
            if inspect.isawaitable(result):
                result = await result
        if isinstance(result, str):
            return result
        return json.dumps(result)

    @classmethod
    def from_function(
        cls,
        fn: Callable[..., Any],
        *,
        name: str | None = None,
        description: str | None = None,
        parameters: dict | None = None,
    ) -> Tool:
        """
        Wrap a function that takes keyword arguments.

        The JSON schema is derived from the signature unless *parameters* is
        given; annotated ``str``/``int``/``float``/``bool``/``list``/``dict``
        parameters get the matching JSON type.
        """
        if parameters is None:
            parameters = _schema_from_signature(fn)
        if description is None:
            doc = inspect.getdoc(fn) or ""
            description = doc.splitlines()[0] if doc else ""

        if inspect.iscoroutinefunction(fn):

            async def handler(raw: str) -> Any:
                return await fn(**_loads_object(raw))

        else:

            def handler(raw: str) -> Any:
                return fn(**_loads_object(raw))

        return cls(
            definition=ToolDef(
                name=name or fn.__name__,
                description=description,
                parameters=parameters,
            ),
            handler=handler,
        )


def _loads_object(raw: str) -> dict:
    value = json.loads(raw or "{}")
    if not isinstance(value, dict):
        raise ValueError("tool arguments must be a JSON object")
    return value


def _schema_from_signature(fn: Callable[..., Any]) -> dict:
    properties: dict[str, dict] = {}
    required: list[str] = []
    for pname, param in inspect.signature(fn).parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = param.annotation
        # Annotations may be strings under postponed evaluation.
        key = annotation if isinstance(annotation, str) else getattr(annotation, "__name__", "")
        properties[pname] = {"type": _JSON_TYPES.get(key, "string")}
        if param.default is param.empty:
            required.append(pname)
    schema: dict = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema
