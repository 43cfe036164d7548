"""JSON response handling for API payloads."""

from __future__ import annotations

import datetime
import json
from decimal import Decimal
from typing import Any

from fastapi.responses import JSONResponse


class RelayJSONEncoder(json.JSONEncoder):
  """Encoder that understands Decimal and datetime values coming back from Postgres."""

  def default(self, obj: Any) -> Any:
    if isinstance(obj, Decimal):
      return int(obj) if obj % 1 == 0 else float(obj)
    if isinstance(obj, datetime.datetime):
      return obj.isoformat()
    return super().default(obj)


class RelayJSONResponse(JSONResponse):
  """JSONResponse rendered with RelayJSONEncoder and compact separators."""

  def render(self, content: Any) -> bytes:
    return json.dumps(content, ensure_ascii=False, allow_nan=False, indent=None, separators=(",", ":"), cls=RelayJSONEncoder).encode("utf-8")
