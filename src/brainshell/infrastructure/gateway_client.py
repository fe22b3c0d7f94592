from __future__ import annotations

import http.client
import json
import socket
import time
import uuid
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from brainshell.infrastructure.activity_logger import ActivityLogger
from brainshell.infrastructure.model_io_logger import ModelIOLogger


class GatewayClientError(RuntimeError):
    pass


class GatewayAuthError(GatewayClientError):
    pass


_CHAT_ENDPOINT = "/gateway/chat"


@dataclass(frozen=True)
class GatewayClient:
    base_url: str
    api_key: str
    model: str
    io_logger: ModelIOLogger | None = None
    activity_logger: ActivityLogger | None = None
    request_timeout_seconds: int = 120
    max_retries: int = 1
    retry_backoff_seconds: float = 0.75

    def _post_json(self, path: str, payload: dict) -> dict:
        request = Request(
            url=f"{self.base_url.rstrip('/')}{path}",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self.request_timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as error:
            body = error.read().decode("utf-8", errors="ignore")
            if error.code in (401, 403):
                raise GatewayAuthError(f"HTTP {error.code}: authentication rejected ({body[:200]})") from error
            raise GatewayClientError(f"HTTP {error.code}: {body[:500]}") from error
        except URLError as error:
            raise GatewayClientError(f"Cannot connect to gateway: {error.reason}") from error
        except (TimeoutError, socket.timeout) as error:
            raise GatewayClientError(f"Gateway request timeout after {self.request_timeout_seconds}s") from error
        except ConnectionError as error:
            raise GatewayClientError(f"Connection reset by gateway: {error}") from error
        except UnicodeDecodeError as error:
            raise GatewayClientError(f"Gateway returned a body that is not UTF-8: {error}") from error
        except http.client.HTTPException as error:
            raise GatewayClientError(f"Malformed HTTP response from gateway: {error!r}") from error

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as error:
            raise GatewayClientError(f"Gateway returned invalid JSON: {raw[:200]}") from error
        if not isinstance(parsed, dict):
            raise GatewayClientError("Gateway returned a non-object JSON payload")
        return parsed

    @staticmethod
    def _is_retryable_error(error: GatewayClientError) -> bool:
        if isinstance(error, GatewayAuthError):
            return False
        message = str(error).lower()
        if message.startswith("http 5") or message.startswith("http 429"):
            return True
        retry_markers = [
            "timeout",
            "timed out",
            "cannot connect to gateway",
            "connection reset",
            "connection aborted",
            "temporarily unavailable",
        ]
        return any(marker in message for marker in retry_markers)

    @staticmethod
    def _extract_text(result: dict[str, Any]) -> str | None:
        choices = result.get("choices")
        if isinstance(choices, list) and choices:
            first = choices[0]
            if isinstance(first, dict):
                message = first.get("message")
                if isinstance(message, dict):
                    content = message.get("content")
                    if isinstance(content, str) and content.strip():
                        return content

        response = result.get("response")
        if isinstance(response, str) and response.strip():
            return response

        message = result.get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, str) and content.strip():
                return content
        return None

    def chat(
        self,
        messages: list[dict[str, str]],
        *,
        mode: str,
        os_tag: str,
        context: str | None = None,
    ) -> str:
        request_id = str(uuid.uuid4())
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": list(messages),
            "mode": mode,
            "os": os_tag,
        }
        if context:
            payload["context"] = context

        if self.activity_logger:
            self.activity_logger.log(
                action="model.chat.request",
                intent="Sent the conversation to the model gateway.",
                details={
                    "request_id": request_id,
                    "model": self.model,
                    "messages": len(messages),
                    "mode": mode,
                },
            )
        if self.io_logger:
            self.io_logger.log_input(
                request_id=request_id,
                model=self.model,
                endpoint=_CHAT_ENDPOINT,
                payload=payload,
            )

        attempts = max(1, self.max_retries + 1)
        result: dict | None = None
        for attempt in range(1, attempts + 1):
            try:
                result = self._post_json(_CHAT_ENDPOINT, payload)
                break
            except GatewayClientError as error:
                is_retryable = self._is_retryable_error(error)
                will_retry = is_retryable and attempt < attempts
                if self.activity_logger:
                    self.activity_logger.log(
                        action="model.chat.retry" if will_retry else "model.chat.error",
                        intent=(
                            "Retrying the model call after a transient failure."
                            if will_retry
                            else "Recorded a failed model call."
                        ),
                        details={
                            "request_id": request_id,
                            "attempt": attempt,
                            "max_attempts": attempts,
                            "retryable": is_retryable,
                            "error": str(error),
                        },
                    )
                if self.io_logger:
                    self.io_logger.log_error(
                        request_id=request_id,
                        model=self.model,
                        endpoint=_CHAT_ENDPOINT,
                        error=str(error),
                        attempt=attempt,
                    )
                if not will_retry:
                    raise
                time.sleep(self.retry_backoff_seconds * attempt)

        if result is None:
            raise GatewayClientError("Gateway returned no result")

        if self.io_logger:
            self.io_logger.log_output(
                request_id=request_id,
                model=self.model,
                endpoint=_CHAT_ENDPOINT,
                response=result,
            )

        text = self._extract_text(result)
        if self.activity_logger:
            self.activity_logger.log(
                action="model.chat.response",
                intent="Recorded the model answer.",
                details={"request_id": request_id, "has_text": text is not None},
            )
        if text is None:
            raise GatewayClientError("Gateway returned an empty response")
        return text
