import dataclasses
import yaml
from api_docker_hub import DockerHubCredentials
from typing import Any, Literal, cast, get_args


EndpointType = Literal[
    "docker",
    "agent_on_docker",
    "azure",
    "edge_agent_on_docker",
    "kubernetes_local",
    "agent_on_kubernetes",
    "edge_agent_on_kubernetes",
]
ENDPOINT_TYPES: tuple[str, ...] = get_args(EndpointType)


class StoreError(ValueError):
    pass


#
# A managed container runtime endpoint.
#
@dataclasses.dataclass(frozen=True)
class Endpoint:
    id: int
    name: str
    url: str
    type: EndpointType


#
# Endpoints and DockerHub credentials persisted in a YAML document. The file
# is re-read on every call, so edits apply to the next request.
#
class Store:
    def __init__(self, path: str):
        self.path = path

    def __str__(self):
        return f"{self.__class__.__name__}({self.path})"

    def endpoint_get(self, endpoint_id: int) -> Endpoint | None:
        for endpoint in self._endpoints(self._load()):
            if endpoint.id == endpoint_id:
                return endpoint
        return None

    def docker_hub_credentials(self) -> DockerHubCredentials:
        return self._docker_hub_credentials(self._load())

    def check(self) -> int:
        doc = self._load()
        self._docker_hub_credentials(doc)
        return len(self._endpoints(doc))

    def _load(self) -> dict[str, Any]:
        try:
            with open(self.path) as f:
                doc = yaml.safe_load(f)
        except OSError as e:
            raise StoreError(f"Can't read {self.path}: {e}") from e
        except yaml.YAMLError as e:
            raise StoreError(f"Invalid YAML in {self.path}: {e}") from e
        if doc is None:
            return {}
        if not isinstance(doc, dict):
            raise StoreError(f"{self.path} must contain a mapping")
        return cast(dict[str, Any], doc)

    def _endpoints(self, doc: dict[str, Any]) -> list[Endpoint]:
        items = doc.get("endpoints") or []
        if not isinstance(items, list):
            raise StoreError(f"{self.path}: endpoints must be a list")
        endpoints: list[Endpoint] = []
        ids: set[int] = set()
        for item in cast(list[Any], items):
            if not isinstance(item, dict):
                raise StoreError(f"{self.path}: invalid endpoint {item!r}")
            item = cast(dict[str, Any], item)
            id = item.get("id")
            # bool is an int subclass; "id: yes" is not an identifier.
            if not isinstance(id, int) or isinstance(id, bool) or id <= 0:
                raise StoreError(f"{self.path}: invalid endpoint id {id!r}")
            if id in ids:
                raise StoreError(f"{self.path}: duplicated endpoint id {id}")
            ids.add(id)
            type = str(item.get("type", "docker")).lower()
            if type not in ENDPOINT_TYPES:
                raise StoreError(
                    f"{self.path}: endpoint {id} has unknown type {type!r}; "
                    + f"expected one of {', '.join(ENDPOINT_TYPES)}"
                )
            endpoints.append(
                Endpoint(
                    id=id,
                    name=str(item.get("name", "")),
                    url=str(item.get("url", "")),
                    type=cast(EndpointType, type),
                )
            )
        return endpoints

    def _docker_hub_credentials(self, doc: dict[str, Any]) -> DockerHubCredentials:
        section = doc.get("dockerhub")
        if section is None:
            return DockerHubCredentials(authentication=False)
        if not isinstance(section, dict):
            raise StoreError(f"{self.path}: dockerhub must be a mapping")
        section = cast(dict[str, Any], section)
        authentication = section.get("authentication", False)
        if not isinstance(authentication, bool):
            raise StoreError(f"{self.path}: dockerhub.authentication must be a boolean")
        return DockerHubCredentials(
            authentication=authentication,
            username=str(section.get("username") or ""),
            password=str(section.get("password") or ""),
        )
