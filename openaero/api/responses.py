from typing import Any


def ok(data: Any = None, message: str = "") -> dict:
    return {"success": True, "data": data, "message": message}
