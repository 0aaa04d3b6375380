"""OpenAI-style chat, embeddings and model listing on top of Gemini's native API.

Only the request/response shapes are translated. Credentials follow the same
rule as the direct proxy: the bearer token becomes `x-goog-api-key`.
Function calling is not translated.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from ..errors import ProxyError
from ..proxy.headers import API_CLIENT_HEADER, API_KEY_HEADER, bearer_token


logger = logging.getLogger(__name__)

API_VERSION = "v1beta"
GEMINI_MODEL_PREFIXES = ("gemini-", "gemma-", "learnlm-", "embedding-")
# Gemini numbers its text-embedding models; OpenAI ones (text-embedding-3-small) are not ours
GEMINI_TEXT_EMBEDDING = re.compile(r"text-embedding-\d{3}$")

FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
    "BLOCKLIST": "content_filter",
    "PROHIBITED_CONTENT": "content_filter",
    "SPII": "content_filter",
}

GENERATION_FIELDS = {
    "max_tokens": "maxOutputTokens",
    "max_completion_tokens": "maxOutputTokens",
    "temperature": "temperature",
    "top_p": "topP",
    "top_k": "topK",
    "n": "candidateCount",
    "presence_penalty": "presencePenalty",
    "frequency_penalty": "frequencyPenalty",
    "seed": "seed",
}


def model_name(requested: Optional[str], default: str) -> str:
    """Gemini model id for an OpenAI `model` field; OpenAI names fall back to the default."""
    if not requested:
        return default
    if requested.startswith("models/"):
        return requested[len("models/"):]
    if requested.startswith(GEMINI_MODEL_PREFIXES) or GEMINI_TEXT_EMBEDDING.match(requested):
        return requested
    return default


def content_parts(content: Any) -> List[Dict[str, Any]]:
    if content is None:
        return [{"text": ""}]
    if isinstance(content, str):
        return [{"text": content}]
    if not isinstance(content, list):
        raise ProxyError(400, "message content must be a string or a list of parts")
    parts = []
    for item in content:
        if not isinstance(item, dict):
            raise ProxyError(400, "content parts must be objects")
        kind = item.get("type")
        if kind == "text":
            parts.append({"text": item.get("text", "")})
        elif kind == "image_url":
            image = item.get("image_url")
            url = image.get("url", "") if isinstance(image, dict) else (image or "")
            if not isinstance(url, str) or not url.startswith("data:"):
                raise ProxyError(400, "only data: URLs are supported for image_url parts")
            header, _, data = url.partition(",")
            mime_type = header[len("data:"):].split(";")[0]
            parts.append({"inlineData": {"mimeType": mime_type, "data": data}})
        else:
            raise ProxyError(400, f"unsupported content part type: {kind}")
    return parts


def generation_config(body: Dict[str, Any]) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    for field, gemini_field in GENERATION_FIELDS.items():
        if body.get(field) is not None:
            config[gemini_field] = body[field]
    stop = body.get("stop")
    if stop:
        config["stopSequences"] = [stop] if isinstance(stop, str) else list(stop)
    response_format = body.get("response_format") or {}
    if not isinstance(response_format, dict):
        raise ProxyError(400, "response_format must be an object")
    if response_format.get("type") in ("json_object", "json_schema"):
        config["responseMimeType"] = "application/json"
    return config


def chat_request(body: Dict[str, Any]) -> Dict[str, Any]:
    """OpenAI chat body -> Gemini generateContent body."""
    contents = []
    system_parts = []
    messages = body.get("messages") or []
    if not isinstance(messages, list):
        raise ProxyError(400, "messages must be a list")
    for message in messages:
        if not isinstance(message, dict):
            raise ProxyError(400, "each message must be an object")
        role = message.get("role")
        parts = content_parts(message.get("content"))
        if role in ("system", "developer"):
            system_parts.extend(parts)
        elif role == "user":
            contents.append({"role": "user", "parts": parts})
        elif role == "assistant":
            contents.append({"role": "model", "parts": parts})
        else:
            raise ProxyError(400, f"unsupported message role: {role}")
    if not contents:
        raise ProxyError(400, "messages must include at least one user or assistant message")

    out: Dict[str, Any] = {"contents": contents}
    if system_parts:
        out["systemInstruction"] = {"parts": system_parts}
    config = generation_config(body)
    if config:
        out["generationConfig"] = config
    return out


def _candidate_text(candidate: Dict[str, Any]) -> str:
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if not p.get("thought"))


def _finish_reason(candidate: Dict[str, Any]) -> Optional[str]:
    reason = candidate.get("finishReason")
    if reason is None:
        return None
    return FINISH_REASONS.get(reason, "stop")


def usage(metadata: Optional[Dict[str, Any]]) -> Dict[str, int]:
    metadata = metadata or {}
    return {
        "prompt_tokens": metadata.get("promptTokenCount", 0),
        "completion_tokens": metadata.get("candidatesTokenCount", 0),
        "total_tokens": metadata.get("totalTokenCount", 0),
    }


def chat_completion(data: Dict[str, Any], model: str, completion_id: str, created: int) -> Dict[str, Any]:
    """Gemini generateContent response -> OpenAI chat.completion."""
    choices = []
    for i, candidate in enumerate(data.get("candidates") or []):
        choices.append({
            "index": candidate.get("index", i),
            "message": {"role": "assistant", "content": _candidate_text(candidate)},
            "logprobs": None,
            "finish_reason": _finish_reason(candidate) or "stop",
        })
    return {
        "id": completion_id,
        "object": "chat.completion",
        "created": created,
        "model": model,
        "choices": choices,
        "usage": usage(data.get("usageMetadata")),
    }


def chat_chunk(data: Dict[str, Any], model: str, completion_id: str, created: int, first: bool) -> Dict[str, Any]:
    choices = []
    for i, candidate in enumerate(data.get("candidates") or []):
        delta: Dict[str, Any] = {"content": _candidate_text(candidate)}
        if first:
            delta["role"] = "assistant"
        choices.append({
            "index": candidate.get("index", i),
            "delta": delta,
            "logprobs": None,
            "finish_reason": _finish_reason(candidate),
        })
    return {
        "id": completion_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model,
        "choices": choices,
    }


def _sse(obj: Dict[str, Any]) -> str:
    return f"data: {json.dumps(obj)}\n\n"


def _passthrough(response: httpx.Response, content: bytes) -> Response:
    return Response(
        content=content,
        status_code=response.status_code,
        media_type=response.headers.get("content-type"),
    )


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        return response.json()
    except ValueError as exc:
        raise ProxyError(502, f"invalid JSON from upstream: {exc}") from exc


class GeminiCompat:
    """Default compatibility backend; `fetch(request) -> response`."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        upstream_base: str,
        api_client: str,
        default_chat_model: str = "gemini-2.0-flash",
        default_embeddings_model: str = "text-embedding-004",
    ):
        self.client = client
        self.upstream_base = upstream_base.rstrip("/")
        self.api_client = api_client
        self.default_chat_model = default_chat_model
        self.default_embeddings_model = default_embeddings_model

    async def fetch(self, request: Request) -> Response:
        path = request.url.path
        api_key = bearer_token(request.headers.get("authorization"))
        if not api_key:
            raise ProxyError(401, "Bad credentials")

        if path.endswith("/chat/completions"):
            self._require_method(request, "POST")
            return await self.chat_completions(await self._read_json(request), api_key)
        if path.endswith("/embeddings"):
            self._require_method(request, "POST")
            return await self.embeddings(await self._read_json(request), api_key)
        if path.endswith("/models"):
            self._require_method(request, "GET")
            return await self.models(api_key)
        raise ProxyError(404, "404 Not Found")

    async def models(self, api_key: str) -> Response:
        response = await self.client.get(self._url("models"), headers=self._headers(api_key))
        if response.is_error:
            return _passthrough(response, response.content)
        names = [m.get("name") for m in _json_body(response).get("models") or [] if isinstance(m, dict)]
        return JSONResponse({
            "object": "list",
            "data": [
                {
                    "id": name[len("models/"):] if name.startswith("models/") else name,
                    "object": "model",
                    "created": 0,
                    "owned_by": "",
                }
                for name in names
                if isinstance(name, str) and name
            ],
        })

    async def embeddings(self, body: Dict[str, Any], api_key: str) -> Response:
        model = model_name(body.get("model"), self.default_embeddings_model)
        inputs = body.get("input")
        if isinstance(inputs, str):
            inputs = [inputs]
        if not isinstance(inputs, list) or not inputs:
            raise ProxyError(400, "input is required")

        requests = []
        for text in inputs:
            item: Dict[str, Any] = {"model": f"models/{model}", "content": {"parts": [{"text": str(text)}]}}
            if body.get("dimensions"):
                item["outputDimensionality"] = body["dimensions"]
            requests.append(item)

        response = await self.client.post(
            self._url(f"models/{model}:batchEmbedContents"),
            json={"requests": requests},
            headers=self._headers(api_key),
        )
        if response.is_error:
            return _passthrough(response, response.content)
        embeddings = _json_body(response).get("embeddings") or []
        return JSONResponse({
            "object": "list",
            "data": [
                {"object": "embedding", "index": i, "embedding": e.get("values", [])}
                for i, e in enumerate(embeddings)
            ],
            "model": model,
        })

    async def chat_completions(self, body: Dict[str, Any], api_key: str) -> Response:
        model = model_name(body.get("model"), self.default_chat_model)
        payload = chat_request(body)
        completion_id = f"chatcmpl-{uuid.uuid4().hex[:24]}"
        created = int(time.time())

        if body.get("stream"):
            include_usage = bool((body.get("stream_options") or {}).get("include_usage"))
            return await self._stream_chat(payload, model, api_key, completion_id, created, include_usage)

        response = await self.client.post(
            self._url(f"models/{model}:generateContent"),
            json=payload,
            headers=self._headers(api_key),
        )
        if response.is_error:
            return _passthrough(response, response.content)
        return JSONResponse(chat_completion(_json_body(response), model, completion_id, created))

    async def _stream_chat(
        self,
        payload: Dict[str, Any],
        model: str,
        api_key: str,
        completion_id: str,
        created: int,
        include_usage: bool,
    ) -> Response:
        request = self.client.build_request(
            "POST",
            self._url(f"models/{model}:streamGenerateContent"),
            params={"alt": "sse"},
            json=payload,
            headers=self._headers(api_key),
        )
        response = await self.client.send(request, stream=True)
        if response.is_error:
            try:
                content = await response.aread()
            finally:
                await response.aclose()
            return _passthrough(response, content)

        async def events() -> AsyncIterator[str]:
            first = True
            last_usage = None
            try:
                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    try:
                        data = json.loads(line[len("data: "):])
                    except ValueError:
                        logger.warning("Skipping malformed upstream SSE line: %.200s", line)
                        continue
                    if data.get("usageMetadata"):
                        last_usage = data["usageMetadata"]
                    yield _sse(chat_chunk(data, model, completion_id, created, first))
                    first = False
                if include_usage:
                    yield _sse({
                        "id": completion_id,
                        "object": "chat.completion.chunk",
                        "created": created,
                        "model": model,
                        "choices": [],
                        "usage": usage(last_usage),
                    })
                yield "data: [DONE]\n\n"
            finally:
                await response.aclose()

        return StreamingResponse(events(), media_type="text/event-stream")

    def _url(self, resource: str) -> str:
        return f"{self.upstream_base}/{API_VERSION}/{resource}"

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {API_KEY_HEADER: api_key, API_CLIENT_HEADER: self.api_client}

    @staticmethod
    def _require_method(request: Request, method: str) -> None:
        if request.method != method:
            raise ProxyError(405, "Method Not Allowed")

    @staticmethod
    async def _read_json(request: Request) -> Dict[str, Any]:
        try:
            body = await request.json()
        except ValueError as exc:
            raise ProxyError(400, f"invalid JSON body: {exc}") from exc
        if not isinstance(body, dict):
            raise ProxyError(400, "request body must be a JSON object")
        return body
