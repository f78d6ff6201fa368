import json

import jsonschema

from polychat.tools.base import Tool


class ToolValidator:
    @staticmethod
    def validate(tool: Tool, arguments: str) -> tuple[bool, str | None]:
        try:
            instance = json.loads(arguments or "{}")
        except ValueError as e:
            return False, f"arguments are not valid JSON: {e}"
        try:
            jsonschema.validate(instance=instance, schema=tool.parameters)
            return True, None
        except jsonschema.ValidationError as e:
            return False, str(e.message)
        except jsonschema.SchemaError as e:
            return False, f"invalid tool schema: {e.message}"
