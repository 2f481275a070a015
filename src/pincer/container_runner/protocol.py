"""Invocation wire protocol shared by the host and the agent process.

The host writes one JSON object to the agent's stdin; the agent writes one
JSON object as the last line of its stdout. Keys are camelCase on the wire.
"""

from __future__ import annotations

import json
from typing import Any

from pincer.types import Attachment, InvocationRequest, InvocationResult


def request_to_dict(request: InvocationRequest) -> dict[str, Any]:
    d: dict[str, Any] = {
        "prompt": request.prompt,
        "groupFolder": request.group_folder,
        "chatJid": request.chat_jid,
        "isMain": request.is_main,
    }
    if request.session_id is not None:
        d["sessionId"] = request.session_id
    if request.attachment is not None:
        d["attachment"] = {
            "mimeType": request.attachment.mime_type,
            "data": request.attachment.data,
        }
        if request.attachment.name is not None:
            d["attachment"]["name"] = request.attachment.name
    return d


def request_to_json(request: InvocationRequest) -> str:
    return json.dumps(request_to_dict(request))


def parse_request(text: str) -> InvocationRequest:
    """Parse the request read from stdin (agent side).

    Raises ValueError (json.JSONDecodeError included) or KeyError on bad input.
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Invocation request must be a JSON object")
    attachment = None
    if data.get("attachment"):
        raw = data["attachment"]
        attachment = Attachment(mime_type=raw["mimeType"], data=raw["data"], name=raw.get("name"))
    return InvocationRequest(
        prompt=data["prompt"],
        group_folder=data["groupFolder"],
        chat_jid=data["chatJid"],
        is_main=bool(data.get("isMain", False)),
        session_id=data.get("sessionId"),
        attachment=attachment,
    )


def result_to_line(result: InvocationResult) -> str:
    """Serialize a result as a single stdout line (agent side)."""
    d: dict[str, Any] = {"status": result.status, "result": result.result}
    if result.new_session_id is not None:
        d["newSessionId"] = result.new_session_id
    if result.error is not None:
        d["error"] = result.error
    return json.dumps(d)


def parse_result_line(line: str) -> InvocationResult:
    """Parse the final stdout line into an InvocationResult.

    Raises ValueError if the line is not JSON or does not have the result shape.
    """
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError("Result must be a JSON object")
    status = data.get("status")
    if status not in ("success", "error"):
        raise ValueError(f"Invalid result status: {status!r}")
    result = data.get("result")
    if result is not None and not isinstance(result, str):
        raise ValueError("Result text must be a string or null")
    return InvocationResult(
        status=status,
        result=result,
        new_session_id=data.get("newSessionId"),
        error=data.get("error"),
    )
