from datetime import datetime, timezone
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def envelope(status_code: int, message: str, data: Any = None, success: Optional[bool] = None) -> dict:
    return {
        "statusCode": status_code,
        "message": message,
        "data": jsonable_encoder(data),
        "success": success if success is not None else status_code < 400,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


# Uniform JSON body for success and error paths
def api_response(message: str, data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope(status_code, message, data))


def api_error(status_code: int, message: str, data: Any = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope(status_code, message, data, success=False))
