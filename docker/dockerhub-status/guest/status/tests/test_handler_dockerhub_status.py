import json
import os
import socketserver
import tempfile
import textwrap
import threading
import urllib.error
import urllib.request
from api_docker_hub import RATE_LIMITS_URL, TOKEN_URL
from fakes import FakeResponse, FakeTransport
from handler_dockerhub_status import (
    HandlerDockerHubStatus,
    InvalidInputError,
    NotFoundError,
    UnsupportedEndpointTypeError,
    endpoint_has_docker_hub_egress,
)
from helpers import RateLimits
from store import Endpoint, Store
from typing import Any
from unittest import TestCase


STORE = """
    dockerhub:
      authentication: true
      username: someone
      password: secret
    endpoints:
      - id: 1
        name: local
        url: unix:///var/run/docker.sock
        type: docker
      - id: 2
        name: windows
        url: npipe:////./pipe/docker_engine
        type: docker
      - id: 3
        name: remote
        url: tcp://10.0.0.5:2375
        type: docker
      - id: 4
        name: k8s
        url: https://kubernetes.default.svc
        type: kubernetes_local
      - id: 5
        name: agent
        url: tcp://10.0.0.6:9001
        type: agent_on_kubernetes
"""


def ok_transport() -> FakeTransport:
    return FakeTransport(
        {
            TOKEN_URL: FakeResponse(body=b'{"token":"abc123"}'),
            RATE_LIMITS_URL: FakeResponse(
                headers={
                    "RateLimit-Limit": "100;w=21600",
                    "RateLimit-Remaining": "17;w=21600",
                }
            ),
        }
    )


class TestEgress(TestCase):
    def test_endpoint_has_docker_hub_egress(self):
        def endpoint(url: str, type: Any = "docker"):
            return Endpoint(id=1, name="e", url=url, type=type)

        self.assertTrue(endpoint_has_docker_hub_egress(endpoint("unix:///var/run/docker.sock")))
        self.assertTrue(endpoint_has_docker_hub_egress(endpoint("npipe:////./pipe/docker_engine")))
        self.assertTrue(
            endpoint_has_docker_hub_egress(endpoint("tcp://1.2.3.4:2375", "kubernetes_local"))
        )
        self.assertFalse(endpoint_has_docker_hub_egress(endpoint("tcp://1.2.3.4:2375")))
        self.assertFalse(
            endpoint_has_docker_hub_egress(endpoint("tcp://1.2.3.4:9001", "agent_on_kubernetes"))
        )


class TestFetch(TestCase):
    def setUp(self):
        fd, path = tempfile.mkstemp(suffix=".yml")
        with os.fdopen(fd, "w") as f:
            f.write(textwrap.dedent(STORE))
        self.addCleanup(os.remove, path)
        self.store = Store(path)

    def test_local_endpoints(self):
        for endpoint_id in ["1", "2", "4"]:
            with self.subTest(endpoint_id=endpoint_id):
                transport = ok_transport()
                handler = HandlerDockerHubStatus(store=self.store, transport=transport)
                self.assertEqual(
                    handler.fetch(endpoint_id),
                    RateLimits(limit=100, remaining=17),
                )
                self.assertTrue(transport.requests[0].has_header("Authorization"))

    def test_remote_endpoints_are_rejected_before_any_call(self):
        for endpoint_id in ["3", "5"]:
            with self.subTest(endpoint_id=endpoint_id):
                transport = ok_transport()
                handler = HandlerDockerHubStatus(store=self.store, transport=transport)
                with self.assertRaises(UnsupportedEndpointTypeError):
                    handler.fetch(endpoint_id)
                self.assertEqual(len(transport.requests), 0)

    def test_invalid_identifier(self):
        for endpoint_id in ["abc", "-1", "1.0", "١"]:
            with self.subTest(endpoint_id=endpoint_id):
                transport = ok_transport()
                handler = HandlerDockerHubStatus(store=self.store, transport=transport)
                with self.assertRaises(InvalidInputError):
                    handler.fetch(endpoint_id)
                self.assertEqual(len(transport.requests), 0)

    def test_not_found(self):
        transport = ok_transport()
        handler = HandlerDockerHubStatus(store=self.store, transport=transport)
        with self.assertRaises(NotFoundError):
            handler.fetch("42")
        self.assertEqual(len(transport.requests), 0)


class TestHttp(TestCase):
    def setUp(self):
        fd, path = tempfile.mkstemp(suffix=".yml")
        with os.fdopen(fd, "w") as f:
            f.write(textwrap.dedent(STORE))
        self.addCleanup(os.remove, path)
        self.store = Store(path)
        self.transport = ok_transport()
        self.serve(self.transport)

    def serve(self, transport: FakeTransport):
        handler = HandlerDockerHubStatus(store=self.store, transport=transport)
        httpd = socketserver.ThreadingTCPServer(("127.0.0.1", 0), handler.RequestHandler)
        httpd.daemon_threads = True
        thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        thread.start()
        self.addCleanup(httpd.server_close)
        self.addCleanup(httpd.shutdown)
        self.base_url = f"http://127.0.0.1:{httpd.server_address[1]}"

    def get(self, path: str, method: str = "GET") -> tuple[int, Any]:
        try:
            with urllib.request.urlopen(
                urllib.request.Request(self.base_url + path, method=method),
                timeout=10,
            ) as res:
                return res.status, json.loads(res.read().decode())
        except urllib.error.HTTPError as e:
            with e:
                body = e.read().decode()
                return e.code, json.loads(body) if body else None

    def test_status(self):
        status, data = self.get("/api/endpoints/1/dockerhub/status")
        self.assertEqual(status, 200)
        self.assertEqual(data, {"remaining": 17, "limit": 100})

    def test_invalid_identifier(self):
        status, data = self.get("/api/endpoints/abc/dockerhub/status")
        self.assertEqual(status, 400)
        self.assertEqual(data["message"], "Invalid endpoint identifier route variable")

    def test_not_found(self):
        status, _ = self.get("/api/endpoints/42/dockerhub/status")
        self.assertEqual(status, 404)

    def test_unsupported_endpoint_type(self):
        status, data = self.get("/api/endpoints/3/dockerhub/status")
        self.assertEqual(status, 400)
        self.assertEqual(data["message"], "Invalid environment type")
        self.assertEqual(len(self.transport.requests), 0)

    def test_unknown_route(self):
        status, _ = self.get("/api/endpoints/1/status")
        self.assertEqual(status, 404)

    def test_unsupported_method(self):
        status, _ = self.get("/api/endpoints/1/dockerhub/status", method="POST")
        self.assertEqual(status, 501)
        self.assertEqual(len(self.transport.requests), 0)

    def test_token_failure(self):
        self.transport.routes[TOKEN_URL] = FakeResponse(401)
        status, data = self.get("/api/endpoints/1/dockerhub/status")
        self.assertEqual(status, 500)
        self.assertEqual(
            data["message"],
            "Unable to retrieve DockerHub token from DockerHub",
        )
        self.assertIn("HTTP 401", data["details"])
        self.assertEqual(self.transport.urls(), [TOKEN_URL])

    def test_missing_header(self):
        self.transport.routes[RATE_LIMITS_URL] = FakeResponse(
            headers={"RateLimit-Limit": "100;w=21600"}
        )
        status, data = self.get("/api/endpoints/1/dockerhub/status")
        self.assertEqual(status, 500)
        self.assertEqual(
            data["message"],
            "Unable to retrieve DockerHub rate limits from DockerHub",
        )
        self.assertIn("RateLimit-Remaining", data["details"])
        self.assertNotIn("limit", data)

    def test_store_failure(self):
        with open(self.store.path, "w") as f:
            f.write("endpoints: [\n")
        status, data = self.get("/api/endpoints/1/dockerhub/status")
        self.assertEqual(status, 500)
        self.assertEqual(data["message"], "Unable to read the endpoints store")
