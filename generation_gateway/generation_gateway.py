from __future__ import annotations  # Remote question/recommendation generator transport

import logging
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import httpx


logger = logging.getLogger(__name__)  # Module logger setup


class HttpClient(Protocol):  # Minimal HTTP client protocol
    def post(self, url: str, *, json: Dict[str, Any], headers: Dict[str, str], timeout: float) -> "HttpResponse": ...


class HttpResponse(Protocol):  # Minimal HTTP response protocol
    @property
    def status_code(self) -> int: ...

    def json(self) -> Any: ...

    @property
    def text(self) -> str: ...


class GenerationGatewayError(RuntimeError):  # Base gateway error
    pass


def post_turn(
    url: str,
    payload: Dict[str, Any],
    *,
    api_key: Optional[str] = None,
    timeout_s: float = 15.0,
    client: Optional[HttpClient] = None,
) -> Dict[str, Any]:  # POST one turn to the generator webhook and return its JSON object
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["X-API-Key"] = api_key
    logger.info(
        "Generator request send session=%s question=%s has_api_key=%s",
        payload.get("sessionId"),
        payload.get("questionNumber"),
        bool(api_key),
    )
    try:
        response, close_cb = _post(url, payload, headers, timeout_s, client)
    except httpx.TimeoutException as exc:
        logger.warning("Generator request timed out after %.1fs", timeout_s)
        raise GenerationGatewayError("Generator request timed out") from exc
    except Exception as exc:  # noqa: BLE001
        logger.warning("Generator transport failure: %s", exc)
        raise GenerationGatewayError("Generator transport failed") from exc
    try:
        if response.status_code >= 400:
            logger.warning(
                "Generator error status=%s body=%s",
                response.status_code,
                _truncate(response.text, 500),
            )
            raise GenerationGatewayError(f"Generator returned status {response.status_code}")
        try:
            data = response.json()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Invalid JSON payload from generator: %s", exc)
            raise GenerationGatewayError("Generator payload was not JSON") from exc
    finally:
        _close_safely(close_cb)
    data = _unwrap(data)
    if not isinstance(data, dict):
        raise GenerationGatewayError("Generator payload was not an object")
    logger.info("Generator request done session=%s", payload.get("sessionId"))
    return data


def _post(url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float, client: Optional[HttpClient]) -> Tuple[HttpResponse, Optional[Callable[[], None]]]:  # Dispatch HTTP request
    if client is not None:
        response = client.post(url, json=payload, headers=headers, timeout=timeout)
        return response, None
    http_client = httpx.Client(timeout=timeout)
    try:
        response = http_client.post(url, json=payload, headers=headers)
    except Exception:
        http_client.close()
        raise
    return response, http_client.close


def _close_safely(close_cb: Optional[Callable[[], None]]) -> None:  # Close HTTP client callback when provided
    if close_cb is not None:
        close_cb()


def _unwrap(data: Any) -> Any:  # Workflow engines often reply with a one-item list
    if isinstance(data, list) and len(data) == 1:
        return data[0]
    return data


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text
