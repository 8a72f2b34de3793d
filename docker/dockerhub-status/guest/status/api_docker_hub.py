import base64
import dataclasses
import email.message
import http.client
import json
import re
import urllib.request
from helpers import HttpTransport, RateLimits


SENTINEL_REPOSITORY = "ratelimitpreview/test"
TOKEN_URL = f"https://auth.docker.io/token?service=registry.docker.io&scope=repository:{SENTINEL_REPOSITORY}:pull"
RATE_LIMITS_URL = (
    f"https://registry-1.docker.io/v2/{SENTINEL_REPOSITORY}/manifests/latest"
)
LIMIT_HEADER = "RateLimit-Limit"
REMAINING_HEADER = "RateLimit-Remaining"


#
# DockerHub credentials as kept in the store. When authentication is False,
# the token is requested anonymously and username/password are ignored.
#
@dataclasses.dataclass(frozen=True)
class DockerHubCredentials:
    authentication: bool = False
    username: str = ""
    password: str = ""

    def __repr__(self):
        return f"DockerHubCredentials(authentication={self.authentication}, username={self.username!r})"


class DockerHubError(Exception):
    pass


class TransportError(DockerHubError):
    pass


class UnexpectedStatusError(DockerHubError):
    def __init__(self, message: str, *, status: int):
        super().__init__(f"{message} (HTTP {status})")
        self.status = status


class DecodeError(DockerHubError):
    pass


class UpstreamAuthError(DockerHubError):
    pass


class UpstreamRateLimitError(DockerHubError):
    pass


class UpstreamProtocolError(DockerHubError):
    def __init__(self, message: str, *, header: str):
        super().__init__(message)
        self.header = header


class MissingHeaderError(ValueError):
    def __init__(self, header: str):
        super().__init__(f"Missing {header} header")
        self.header = header


def docker_hub_fetch_token(
    *,
    transport: HttpTransport,
    credentials: DockerHubCredentials,
    url: str = TOKEN_URL,
) -> str:
    headers: dict[str, str] = {}
    if credentials.authentication:
        basic = f"{credentials.username}:{credentials.password}".encode()
        headers["Authorization"] = f"Basic {base64.b64encode(basic).decode()}"

    try:
        with transport.do(
            urllib.request.Request(url, method="GET", headers=headers)
        ) as res:
            if res.status != 200:
                raise UnexpectedStatusError(
                    "failed fetching dockerhub token",
                    status=res.status,
                )
            body = res.read()
    except (OSError, http.client.HTTPException) as e:
        raise TransportError(f"failed fetching dockerhub token: {e}") from e

    try:
        data = json.loads(body.decode())
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"invalid dockerhub token response: {e}") from e
    token = data.get("token") if isinstance(data, dict) else None
    if not isinstance(token, str):
        raise DecodeError('dockerhub token response has no "token" string')
    return token


def docker_hub_fetch_rate_limits(
    *,
    transport: HttpTransport,
    token: str,
    url: str = RATE_LIMITS_URL,
) -> RateLimits:
    try:
        with transport.do(
            urllib.request.Request(
                url,
                method="HEAD",
                headers={"Authorization": f"Bearer {token}"},
            )
        ) as res:
            if res.status != 200:
                raise UnexpectedStatusError(
                    "failed fetching dockerhub limits",
                    status=res.status,
                )
            headers = res.headers
    except (OSError, http.client.HTTPException) as e:
        raise TransportError(f"failed fetching dockerhub limits: {e}") from e

    values: dict[str, int] = {}
    for header in [LIMIT_HEADER, REMAINING_HEADER]:
        try:
            values[header] = parse_numeric_header(headers, header)
        except ValueError as e:
            raise UpstreamProtocolError(
                f"Failed fetching {header} header: {e}",
                header=header,
            ) from e

    return RateLimits(
        limit=values[LIMIT_HEADER],
        remaining=values[REMAINING_HEADER],
    )


#
# Parses e.g. "100;w=21600" into 100: DockerHub appends the window policy
# after a semicolon.
#
def parse_numeric_header(headers: email.message.Message, key: str) -> int:
    value = headers.get(key) or ""
    if not value:
        raise MissingHeaderError(key)
    number = value.split(";")[0].strip()
    if not re.fullmatch(r"[0-9]+", number):
        raise ValueError(f"invalid literal for {key}: {value!r}")
    return int(number)


#
# Acquires a token and then fetches the rate limits with it. A failed token
# step never reaches the registry.
#
def docker_hub_get_status(
    *,
    transport: HttpTransport,
    credentials: DockerHubCredentials,
    token_url: str = TOKEN_URL,
    rate_limits_url: str = RATE_LIMITS_URL,
) -> RateLimits:
    try:
        token = docker_hub_fetch_token(
            transport=transport,
            credentials=credentials,
            url=token_url,
        )
    except DockerHubError as e:
        raise UpstreamAuthError(str(e)) from e

    try:
        return docker_hub_fetch_rate_limits(
            transport=transport,
            token=token,
            url=rate_limits_url,
        )
    except (TransportError, UnexpectedStatusError) as e:
        raise UpstreamRateLimitError(str(e)) from e
