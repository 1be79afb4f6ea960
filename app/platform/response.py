from typing import Any, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    """
    Wrap a payload in the envelope every endpoint returns:
    {"status_code", "status", "message", "data"}.

    status is "error" for any 4xx/5xx code. Pydantic models in data
    (ScanResult, ScanPreview, ...) are encoded here.
    """
    encoded = jsonable_encoder(data) if data is not None else {}

    return JSONResponse(
        status_code=status_code,
        content={
            "status_code": status_code,
            "status": "error" if status_code >= 400 else "success",
            "message": message,
            "data": encoded,
        },
    )
