import base64
import json
import logging
import socket
from urllib import error, parse, request

from ..core.errors import ProviderError

logger = logging.getLogger(__name__)


def basic_auth(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def send(
    method: str,
    url: str,
    *,
    timeout: float,
    json_body: dict | None = None,
    form_body: dict | list | None = None,
    headers: dict | None = None,
) -> dict:
    """Perform one HTTP call and decode a JSON body.

    Every transport failure, non-2xx answer and timeout surfaces as
    ``ProviderError`` so callers only have one exception to handle.
    """
    data = None
    all_headers = {"Accept": "application/json", **(headers or {})}
    if json_body is not None:
        data = json.dumps(json_body).encode("utf-8")
        all_headers["Content-Type"] = "application/json"
    elif form_body is not None:
        data = parse.urlencode(form_body, doseq=True).encode("utf-8")
        all_headers["Content-Type"] = "application/x-www-form-urlencoded"

    req = request.Request(url, data=data, headers=all_headers, method=method)
    logger.debug("%s %s", method, url)
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace")[:500]
        raise ProviderError(f"{method} {url} returned {exc.code}: {body}", provider_status=exc.code) from exc
    except (error.URLError, socket.timeout, TimeoutError) as exc:
        raise ProviderError(f"{method} {url} failed: {exc}") from exc

    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ProviderError(f"{method} {url} returned a non-JSON body") from exc
