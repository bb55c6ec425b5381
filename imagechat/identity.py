# Client identity for admission control: first forwarded hop, then x-real-ip,
# then a shared "anonymous" bucket. Headers are client-controlled and
# unauthenticated, so the result is advisory only.

from starlette.requests import Request

ANONYMOUS = "anonymous"


def client_identity(request: Request) -> str:
    """Derive the rate-limit key for a request.

    x-forwarded-for may carry a proxy chain ("client, proxy1, proxy2");
    only the left-most entry identifies the client.
    """
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop

    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip

    return ANONYMOUS
