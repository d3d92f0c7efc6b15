"""Custom response classes for the application."""

from typing import Any
from fastapi.responses import JSONResponse
from resume_billing.core.json_utils import custom_json_dumps


class DecimalJSONResponse(JSONResponse):
    """JSONResponse that renders Decimal amounts and datetimes."""
    def render(self, content: Any) -> bytes:
        return custom_json_dumps(content).encode('utf-8')
