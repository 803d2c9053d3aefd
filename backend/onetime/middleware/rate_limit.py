from starlette.requests import Request

UNKNOWN_CLIENT = "unknown"


def get_client_identifier(request: Request) -> str:
    """Identify the client for rate limiting and audit fields.

    Behind a reverse proxy the original client is the first entry of
    X-Forwarded-For; some proxies send X-Real-IP instead. Requests carrying
    neither share the "unknown" bucket.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return UNKNOWN_CLIENT
