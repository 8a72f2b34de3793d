#!/usr/bin/env python3
__import__("sys").dont_write_bytecode = True
import argparse
import dataclasses
import json
import socketserver
import sys
from api_docker_hub import RATE_LIMITS_URL, TOKEN_URL, DockerHubError
from handler_dockerhub_status import HandlerDockerHubStatus, StatusRequestError
from helpers import (
    DEFAULT_TIMEOUT_SEC,
    HttpTransport,
    logged_result,
    log,
    ParagraphFormatter,
    wrap_main,
)
from store import Store


def main():
    parser = argparse.ArgumentParser(
        description="""
            Reports the current DockerHub image-pull rate-limit status for
            the managed container runtime endpoints, as seen from this server.

            On GET /api/endpoints/{id}/dockerhub/status, the tool looks up
            the endpoint in the store, requests a short-lived token from
            DockerHub's auth service (with the stored credentials, if
            authentication is enabled there) and issues a HEAD request for
            the sentinel ratelimitpreview/test manifest, which does not
            consume the quota. The response is {"remaining": N, "limit": N}.

            Only endpoints connected via unix:// or npipe:// sockets, and the
            local Kubernetes environment, are supported: other endpoints pull
            images through their own network, so this server's quota says
            nothing about them.

            The store is a YAML file with the "endpoints" list (id, name,
            url, type) and an optional "dockerhub" section (authentication,
            username, password). It is re-read on every request.
        """,
        formatter_class=ParagraphFormatter,
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8089,
        help="port to listen for status requests",
    )
    parser.add_argument(
        "--store",
        type=str,
        required=True,
        help="path to the YAML file with endpoints and DockerHub credentials",
    )
    parser.add_argument(
        "--timeout-sec",
        type=float,
        default=DEFAULT_TIMEOUT_SEC,
        help="timeout for each outbound request to DockerHub",
    )
    parser.add_argument(
        "--token-url",
        type=str,
        default=TOKEN_URL,
        help="DockerHub auth service URL which issues the pull token",
    )
    parser.add_argument(
        "--rate-limits-url",
        type=str,
        default=RATE_LIMITS_URL,
        help="DockerHub registry manifest URL which returns the rate limit headers",
    )
    parser.add_argument(
        "--once",
        type=str,
        metavar="ENDPOINT_ID",
        default=None,
        help="print the status of one endpoint as JSON and exit instead of listening",
    )
    args = parser.parse_args()

    port = int(args.port)
    store = Store(str(args.store))
    transport = HttpTransport(timeout_sec=float(args.timeout_sec))

    with logged_result(doing=f"Loading {store}"):
        store.check()

    handler = HandlerDockerHubStatus(
        store=store,
        transport=transport,
        token_url=str(args.token_url),
        rate_limits_url=str(args.rate_limits_url),
    )

    if args.once is not None:
        try:
            rate_limits = handler.fetch(str(args.once))
        except StatusRequestError as e:
            log(f"Error: {e.message}" + (f": {e.details}" if e.details else ""))
            sys.exit(3)
        except DockerHubError as e:
            log(f"Error: {e.__class__.__name__}: {e}")
            sys.exit(3)
        print(json.dumps(dataclasses.asdict(rate_limits)))
        return

    with socketserver.ThreadingTCPServer(
        ("", port),
        handler.RequestHandler,
        bind_and_activate=False,
    ) as httpd:
        httpd.allow_reuse_address = True
        httpd.daemon_threads = True
        httpd.server_bind()
        httpd.server_activate()
        log(f"Listening for DockerHub status requests on port {port}")
        httpd.serve_forever()


if __name__ == "__main__":
    wrap_main(main)
