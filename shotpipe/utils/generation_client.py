import time
from typing import Any, Callable, Dict, Optional

import requests

from shotpipe.pipeline.errors import (
    AuthorizationError,
    ContentRejectedError,
    GenerationError,
    ServiceOverloadedError,
)


def error_for_status(status_code: int, detail: str = "") -> Exception:
    """Map a gateway HTTP status onto the pipeline error taxonomy."""
    if status_code == 400:
        return ContentRejectedError(detail or "request rejected", status_code=status_code)
    if status_code in (401, 403):
        return AuthorizationError(detail or f"HTTP {status_code}")
    if status_code == 429 or status_code >= 500:
        return ServiceOverloadedError(detail or f"HTTP {status_code}", status_code=status_code)
    return GenerationError(f"HTTP {status_code}: {detail}".rstrip(": "), status_code=status_code)


def _error_detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "")[:500]
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err)
        if err:
            return str(err)
        if body.get("message"):
            return str(body["message"])
    return str(body)[:500]


class GenerationGatewayClient:
    """
    Blocking client for the OpenAI/Gemini-compatible generation gateway.

    Image generation is a single ``generateContent`` round trip; video generation
    is a submit followed by polling until the task completes or fails.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout_sec: int = 180,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key or ""
        self.base_url = (base_url or "").rstrip("/")
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()
        self.sleep = sleep

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise AuthorizationError("Missing API key (set SHOTPIPE_API_KEY in .env or environment).")
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _check(self, resp: requests.Response) -> Dict[str, Any]:
        if resp.status_code != 200:
            raise error_for_status(resp.status_code, _error_detail(resp))
        try:
            return resp.json()
        except ValueError as e:
            raise GenerationError(f"Invalid JSON from gateway: {e}") from e

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        headers = self._headers()
        try:
            return self.session.request(method, url, headers=headers, timeout=self.timeout_sec, **kwargs)
        except requests.Timeout as e:
            raise ServiceOverloadedError(f"Gateway timed out: {e}") from e
        except requests.RequestException as e:
            raise GenerationError(f"Gateway request failed: {e}") from e

    def generate_content(self, endpoint: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._send("POST", f"{self.base_url}{endpoint}", json=body)
        return self._check(resp)

    def submit_video(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._send("POST", f"{self.base_url}{endpoint}", json=payload)
        data = self._check(resp)
        if not (data.get("id") or data.get("task_id")):
            raise GenerationError(f"Video submit returned no task id: {data}")
        return data

    def poll_video(
        self,
        endpoint: str,
        task_id: str,
        timeout_sec: int = 900,
        poll_interval_sec: float = 5,
    ) -> Dict[str, Any]:
        deadline = time.time() + timeout_sec
        url = f"{self.base_url}{endpoint.format(task_id=task_id)}"
        while time.time() < deadline:
            resp = self._send("GET", url)
            data = self._check(resp)
            status = (data.get("status") or "").lower()
            if status in ("completed", "succeeded", "success"):
                return data
            if status in ("failed", "error", "cancelled"):
                raise GenerationError(f"Video task {task_id} failed: {data.get('error') or data.get('fail_reason')}")
            self.sleep(poll_interval_sec)
        raise GenerationError(f"Timed out waiting for video task {task_id}")


def with_retries(
    call: Callable[[], Any],
    max_retries: int = 2,
    retry_delay_sec: float = 2,
    sleep: Callable[[float], None] = time.sleep,
    logger=None,
) -> Any:
    """Retry ``call`` while the service reports it is overloaded."""
    attempt = 0
    while True:
        try:
            return call()
        except ServiceOverloadedError as e:
            if attempt >= max_retries:
                raise
            attempt += 1
            if logger is not None:
                logger.warning("Service overloaded (%s), retry %d/%d in %.1fs", e, attempt, max_retries, retry_delay_sec)
            sleep(retry_delay_sec * attempt)
