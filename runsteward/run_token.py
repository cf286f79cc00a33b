"""
Run token codec - recognise our own run among the service's runs.

The start call accepts no client-supplied id, so a random token is smuggled
through the runtime arguments under a reserved key. The service stores the
arguments on the run as properties["runtimeArgs"], a JSON object serialized
to a string; on the wire that string is itself a JSON string literal, so the
value is doubly encoded.

Only this module knows the reserved key and the encoding. If the service
ever accepts a native client token, this is the module that changes.
"""

import json
import uuid
from typing import Any, Mapping

from runsteward.errors import DecodeError

# Reserved runtime argument. The program ignores it; runsteward reads it back.
RUN_TOKEN_KEY = "__FAUX_RUN_ID__"

RUNTIME_ARGS_PROPERTY = "runtimeArgs"

# One level for the parsed-response form, two for the raw wire form.
_MAX_DECODE_DEPTH = 2


def new_token() -> str:
    """Return a fresh random 128-bit token as a canonical UUID string."""
    return str(uuid.uuid4())


def embed(arguments: Mapping[str, str] | None, token: str) -> dict[str, str]:
    """
    Return a copy of `arguments` carrying `token` under RUN_TOKEN_KEY.

    The caller's mapping is not modified.

    Raises:
        ValueError: If the caller already uses the reserved key
    """
    args = dict(arguments or {})
    if RUN_TOKEN_KEY in args:
        raise ValueError(f"Runtime argument {RUN_TOKEN_KEY} is reserved")
    args[RUN_TOKEN_KEY] = token
    return args


def encode_runtime_args(arguments: Mapping[str, Any]) -> str:
    """
    Encode runtime arguments the way they appear in a raw run record.

    The result is a JSON string literal whose content is the JSON object,
    e.g. '"{\\"k\\": \\"v\\"}"'.
    """
    return json.dumps(json.dumps(dict(arguments)))


def extract(properties: Mapping[str, Any] | None) -> str:
    """
    Read the run token out of a run's properties.

    Accepts runtimeArgs as a JSON string literal (raw wire form), as the
    JSON object text (after the response body has been parsed once), or as
    an already-decoded object.

    Raises:
        DecodeError: If the arguments are missing or malformed, or carry
            no token. Callers scanning a run list treat this as "not ours".
    """
    if not properties:
        raise DecodeError("Run has no properties")
    if RUNTIME_ARGS_PROPERTY not in properties:
        raise DecodeError(f"Run properties have no {RUNTIME_ARGS_PROPERTY}")

    value = properties[RUNTIME_ARGS_PROPERTY]
    depth = 0
    while isinstance(value, (str, bytes)):
        if depth == _MAX_DECODE_DEPTH:
            raise DecodeError(f"{RUNTIME_ARGS_PROPERTY} is nested too deeply")
        try:
            value = json.loads(value)
        except ValueError as e:
            raise DecodeError(f"{RUNTIME_ARGS_PROPERTY} is not valid JSON: {e}") from e
        depth += 1

    if not isinstance(value, dict):
        raise DecodeError(f"{RUNTIME_ARGS_PROPERTY} is not an object: {type(value).__name__}")

    token = value.get(RUN_TOKEN_KEY)
    if not isinstance(token, str) or not token:
        raise DecodeError(f"{RUNTIME_ARGS_PROPERTY} carries no {RUN_TOKEN_KEY}")
    return token
