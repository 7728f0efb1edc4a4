"""Per-request context for log correlation.

Each pipeline invocation runs in its own asyncio task; the request ID lives in
a contextvars.ContextVar so every log line emitted while handling that request
can be correlated without threading the ID through call signatures.
"""

import contextvars
import uuid

# Context variable accessible from anywhere in the same async task
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)


def new_request_id(rid: str | None = None) -> contextvars.Token:
    """Bind a request ID (given or freshly generated) to the current context.

    Returns the token needed to restore the previous value.
    """
    return request_id_var.set(rid or str(uuid.uuid4()))


def reset_request_id(token: contextvars.Token) -> None:
    request_id_var.reset(token)


def get_request_id() -> str:
    """Get the current request ID (empty string if not in a request context)."""
    return request_id_var.get()
