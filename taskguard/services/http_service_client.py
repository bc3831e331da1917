import requests
from typing import Dict, Any, Optional
from taskguard.config import SERVICES, INTERNAL_API_KEY, HTTP_CONNECT_TIMEOUT_S, HTTP_READ_TIMEOUT_S
from taskguard.services.error_taxonomy import BusinessRuleError, InfrastructureError

class ServiceCallError(InfrastructureError):
    def __init__(self, code: str, message: str, retryable: bool, details: Optional[dict] = None,
                 status_code: Optional[int] = None):
        super().__init__(message, code=code, retryable=retryable, details=details)
        self.status_code = status_code

class ServiceRejectedError(BusinessRuleError):
    """The dependency understood the request and refused it (4xx); retrying cannot help."""

    def __init__(self, code: str, message: str, details: Optional[dict] = None, status_code: Optional[int] = None):
        super().__init__(message, code=code, details=details)
        self.status_code = status_code

class HTTPServiceClient:
    def __init__(self, session: Optional[requests.Session] = None):
        self.http = session or requests.Session()

    def _headers(self, service_conf: dict, idempotency_key: str) -> Dict[str, str]:
        h = {"Content-Type": "application/json", "Idempotency-Key": idempotency_key}
        auth = service_conf.get("auth", {"type": "none"})
        if auth.get("type") == "api_key_header":
            header_name = auth.get("header", "X-Internal-Key")
            if INTERNAL_API_KEY:
                h[header_name] = INTERNAL_API_KEY
        elif auth.get("type") == "bearer":
            if INTERNAL_API_KEY:
                h["Authorization"] = f"Bearer {INTERNAL_API_KEY}"
        return h

    def _parse_error(self, resp: requests.Response) -> dict:
        try:
            body = resp.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            err = body["error"]
            return {
                "code": err.get("code", "SERVICE_ERROR"),
                "message": err.get("message", f"HTTP {resp.status_code}"),
                "retryable": bool(err.get("retryable", resp.status_code >= 500)),
                "details": err,
            }

        return {
            "code": "SERVICE_HTTP_ERROR",
            "message": f"Service returned HTTP {resp.status_code}",
            "retryable": resp.status_code >= 500,
            "details": body if isinstance(body, dict) else None,
        }

    def call(self, service_name: str, body: Dict[str, Any], idempotency_key: str,
             timeout_s: Optional[float] = None) -> Dict[str, Any]:
        conf = SERVICES.get(service_name)
        if not conf:
            raise ServiceCallError("UNKNOWN_SERVICE", f"No config for {service_name}", False)

        url = conf["base_url"].rstrip("/") + conf["execute_path"]
        read_t = min(float(timeout_s or conf.get("timeout", HTTP_READ_TIMEOUT_S)), float(HTTP_READ_TIMEOUT_S))
        timeout = (HTTP_CONNECT_TIMEOUT_S, read_t)

        try:
            resp = self.http.post(url, json=body, headers=self._headers(conf, idempotency_key), timeout=timeout)
        except requests.Timeout as e:
            raise ServiceCallError("SERVICE_TIMEOUT", str(e), True)
        except requests.RequestException as e:
            raise ServiceCallError("SERVICE_UNREACHABLE", str(e), True)

        if resp.status_code < 200 or resp.status_code >= 300:
            err = self._parse_error(resp)

            # map common "busy" scenarios
            if resp.status_code in (429, 503):
                err["code"] = "RESOURCE_EXHAUSTED"
                err["retryable"] = True

            if 400 <= resp.status_code < 500 and not err["retryable"]:
                raise ServiceRejectedError(err["code"], err["message"], err.get("details"), resp.status_code)
            raise ServiceCallError(err["code"], err["message"], err["retryable"], err.get("details"),
                                   resp.status_code)

        try:
            out = resp.json()
        except ValueError:
            raise ServiceCallError("BAD_RESPONSE", "Service returned non-JSON", True)

        if not isinstance(out, dict):
            raise ServiceCallError("BAD_RESPONSE", "Response body must be an object", True)
        return out
