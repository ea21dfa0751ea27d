"""
Copyright 2025 The Flame Authors.
Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at
    http://www.apache.org/licenses/LICENSE-2.0
Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.

Wire encoding of unit payloads and results.

Requests and unit payloads are JSON documents validated by pydantic models.
Partial and aggregate results are self-describing JSON documents tagged with
a "kind" so a joiner can tell numbers, text and opaque bytes apart:

    {"kind": "number", "value": 219.3, "paths": 1000}
    {"kind": "text", "value": "..."}
    {"kind": "bytes", "value": "<base64>"}
    {"kind": "scalar", "value": 219.1, "count": 10, "paths": 10000}
    {"kind": "vector", "values": [<partial>, ...]}
"""

import base64
import binascii
import json
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .types import (
    Aggregation,
    AggregateResult,
    BasketError,
    ErrorCode,
    JoinerPayload,
    PartialResult,
    PartialValue,
    SimulationRequest,
    WorkerPayload,
)

M = TypeVar("M", bound=BaseModel)


def _encode_model(model: BaseModel) -> bytes:
    return model.model_dump_json(by_alias=True).encode("utf-8")


def _decode_model(kind: Type[M], data: bytes) -> M:
    if data is None:
        raise BasketError(ErrorCode.INVALID_PAYLOAD, f"missing {kind.__name__} payload")
    try:
        return kind.model_validate_json(data)
    except ValidationError as e:
        raise BasketError(ErrorCode.INVALID_PAYLOAD, f"malformed {kind.__name__} payload: {e}")


def encode_request(request: SimulationRequest) -> bytes:
    return _encode_model(request)


def decode_request(data: bytes) -> SimulationRequest:
    """Decode a simulation request.

    Raises:
        BasketError: INVALID_PAYLOAD if the payload is not a complete, valid request
    """
    return _decode_model(SimulationRequest, data)


def encode_worker_payload(payload: WorkerPayload) -> bytes:
    return _encode_model(payload)


def decode_worker_payload(data: bytes) -> WorkerPayload:
    return _decode_model(WorkerPayload, data)


def encode_joiner_payload(payload: JoinerPayload) -> bytes:
    return _encode_model(payload)


def decode_joiner_payload(data: bytes) -> JoinerPayload:
    return _decode_model(JoinerPayload, data)


def _partial_document(partial: PartialResult) -> Dict[str, Any]:
    value = partial.value
    if isinstance(value, bytes):
        return {"kind": "bytes", "value": base64.b64encode(value).decode("ascii")}
    if isinstance(value, str):
        return {"kind": "text", "value": value}
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return {"kind": "number", "value": float(value), "paths": partial.paths}
    raise BasketError(ErrorCode.INVALID_PAYLOAD, f"unsupported partial value type {type(value).__name__}")


def _partial_from_document(doc: Any) -> PartialResult:
    if not isinstance(doc, dict):
        raise BasketError(ErrorCode.INVALID_PAYLOAD, "partial result must be a JSON object")

    kind = doc.get("kind")
    value = doc.get("value")
    if kind == "number":
        paths = doc.get("paths")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise BasketError(ErrorCode.INVALID_PAYLOAD, "numeric partial result without a number")
        if paths is not None and (isinstance(paths, bool) or not isinstance(paths, int)):
            raise BasketError(ErrorCode.INVALID_PAYLOAD, "partial result path count must be an integer")
        return PartialResult(value=float(value), paths=paths)
    if kind == "text":
        if not isinstance(value, str):
            raise BasketError(ErrorCode.INVALID_PAYLOAD, "text partial result without a string")
        return PartialResult(value=value)
    if kind == "bytes":
        if not isinstance(value, str):
            raise BasketError(ErrorCode.INVALID_PAYLOAD, "bytes partial result without base64 data")
        try:
            return PartialResult(value=base64.b64decode(value, validate=True))
        except binascii.Error as e:
            raise BasketError(ErrorCode.INVALID_PAYLOAD, f"invalid base64 in partial result: {e}")

    raise BasketError(ErrorCode.INVALID_PAYLOAD, f"unknown partial result kind: {kind!r}")


def encode_partial(partial: PartialResult) -> bytes:
    return json.dumps(_partial_document(partial)).encode("utf-8")


def decode_partial(data: bytes, strict: bool = True) -> PartialResult:
    """
    Decode the payload a worker unit wrote to its output slot.

    Args:
        data: The payload bytes
        strict: If False, a payload that is not a partial result document is
                kept verbatim as an opaque bytes partial instead of failing.

    Returns:
        The decoded PartialResult

    Raises:
        BasketError: INVALID_PAYLOAD in strict mode if the payload is not a
                     partial result document
    """
    try:
        doc = json.loads(data.decode("utf-8"))
        return _partial_from_document(doc)
    except (UnicodeDecodeError, ValueError, BasketError) as e:
        if not strict:
            return PartialResult(value=bytes(data))
        if isinstance(e, BasketError):
            raise
        raise BasketError(ErrorCode.INVALID_PAYLOAD, f"partial result is not valid JSON: {e}")


def encode_aggregate(result: AggregateResult) -> bytes:
    if result.mode is Aggregation.MEAN:
        doc = {"kind": "scalar", "value": result.value, "count": result.count, "paths": result.paths}
    else:
        values = result.values or ()
        doc = {"kind": "vector", "values": [_partial_document(PartialResult(value=v)) for v in values]}
    return json.dumps(doc).encode("utf-8")


def decode_aggregate(data: bytes) -> AggregateResult:
    """Decode the payload a joiner unit wrote to its output slot."""
    try:
        doc = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise BasketError(ErrorCode.INVALID_PAYLOAD, f"aggregate result is not valid JSON: {e}")

    if not isinstance(doc, dict):
        raise BasketError(ErrorCode.INVALID_PAYLOAD, "aggregate result must be a JSON object")

    kind = doc.get("kind")
    if kind == "scalar":
        value = doc.get("value")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise BasketError(ErrorCode.INVALID_PAYLOAD, "scalar aggregate without a number")
        return AggregateResult(
            mode=Aggregation.MEAN,
            count=int(doc.get("count") or 0),
            value=float(value),
            paths=doc.get("paths"),
        )
    if kind == "vector":
        docs = doc.get("values")
        if not isinstance(docs, list):
            raise BasketError(ErrorCode.INVALID_PAYLOAD, "vector aggregate without values")
        values = tuple(_partial_from_document(d).value for d in docs)
        return AggregateResult(mode=Aggregation.VECTOR, count=len(values), values=values)

    raise BasketError(ErrorCode.INVALID_PAYLOAD, f"unknown aggregate result kind: {kind!r}")
