import dataclasses
import re
from api_docker_hub import (
    RATE_LIMITS_URL,
    TOKEN_URL,
    DockerHubError,
    UpstreamAuthError,
    docker_hub_get_status,
)
from helpers import GetJsonHttpRequestHandler, HttpTransport, RateLimits
from store import Endpoint, Store, StoreError


URL_PATH_RE = r"^/api/endpoints/([^/]+)/dockerhub/status/?$"
EGRESS_URL_PREFIXES = ("unix://", "npipe://")


class StatusRequestError(Exception):
    status = 500

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidInputError(StatusRequestError):
    status = 400


class NotFoundError(StatusRequestError):
    status = 404


class UnsupportedEndpointTypeError(StatusRequestError):
    status = 400


#
# Endpoints managed through a local socket, or the local Kubernetes
# environment, pull images through this server's own network.
#
def endpoint_has_docker_hub_egress(endpoint: Endpoint) -> bool:
    return (
        endpoint.url.startswith(EGRESS_URL_PREFIXES)
        or endpoint.type == "kubernetes_local"
    )


class HandlerDockerHubStatus:
    def __init__(
        self,
        *,
        store: Store,
        transport: HttpTransport,
        token_url: str = TOKEN_URL,
        rate_limits_url: str = RATE_LIMITS_URL,
    ):
        self.store = store
        self.transport = transport
        self.token_url = token_url
        self.rate_limits_url = rate_limits_url
        this = self

        class RequestHandler(GetJsonHttpRequestHandler):
            def handle_GET_json(self):
                this.handle(self)

        self.RequestHandler = RequestHandler

    def __str__(self):
        return f"{self.__class__.__name__}({self.store})"

    def handle(self, handler: GetJsonHttpRequestHandler):
        match = re.match(URL_PATH_RE, handler.path.split("?", 1)[0])
        if not match:
            return handler.send_error(404, f"No route for {handler.path}")

        try:
            rate_limits = self.fetch(match.group(1))
        except StatusRequestError as e:
            return handler.send_error(e.status, e.message, e.details)
        except StoreError as e:
            return handler.send_error(
                500,
                "Unable to read the endpoints store",
                str(e),
            )
        except UpstreamAuthError as e:
            return handler.send_error(
                500,
                "Unable to retrieve DockerHub token from DockerHub",
                str(e),
            )
        except DockerHubError as e:
            return handler.send_error(
                500,
                "Unable to retrieve DockerHub rate limits from DockerHub",
                str(e),
            )

        handler.log_suffix = (
            f"limit={rate_limits.limit} remaining={rate_limits.remaining}"
        )
        return handler.send_json(200, json=dataclasses.asdict(rate_limits))

    def fetch(self, endpoint_id: str) -> RateLimits:
        if not endpoint_id.isascii() or not endpoint_id.isdigit():
            raise InvalidInputError(
                "Invalid endpoint identifier route variable",
                f"not a number: {endpoint_id}",
            )

        endpoint = self.store.endpoint_get(int(endpoint_id))
        if endpoint is None:
            raise NotFoundError(
                "Unable to find an endpoint with the specified identifier inside the database",
                f"endpoint {endpoint_id} not found",
            )

        if not endpoint_has_docker_hub_egress(endpoint):
            raise UnsupportedEndpointTypeError(
                "Invalid environment type",
                f"endpoint {endpoint.id} ({endpoint.url}, {endpoint.type}) is not managed locally",
            )

        return docker_hub_get_status(
            transport=self.transport,
            credentials=self.store.docker_hub_credentials(),
            token_url=self.token_url,
            rate_limits_url=self.rate_limits_url,
        )
