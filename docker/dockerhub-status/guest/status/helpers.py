import argparse
import dataclasses
import http.client
import http.server
import re
import signal
import sys
import textwrap
import threading
import time
import traceback
import urllib.error
import urllib.request
from http import HTTPStatus
from json import dumps
from types import TracebackType
from typing import Any, Callable


DEFAULT_TIMEOUT_SEC = 30


#
# Logs a timestamped message to stderr.
#
def log(msg: str):
    prefix = f"[{time.strftime('%d/%b/%Y %H:%M:%S')}] "
    print(re.sub("^", prefix, msg.rstrip(), flags=re.M), file=sys.stderr)


#
# Logs the result of the code in the context: "doing... done" on success, or
# the exception with its traceback on failure. Re-raises the exception unless
# swallow is True.
#
def logged_result(
    *,
    doing: str | None = None,
    failure: str | None = None,
    swallow: bool = False,
):
    class LogResult:
        def __enter__(self):
            pass

        def __exit__(
            self,
            exc_type: type[BaseException] | None,
            exc_value: BaseException | None,
            tb: TracebackType | None,
        ):
            if exc_type and exc_value:
                prefix = failure or (f"{doing}... failed" if doing else "Error")
                log(
                    f"{prefix}: {exc_type.__name__}: {exc_value}\n"
                    + "".join(traceback.format_tb(tb))
                )
                return swallow
            if doing:
                log(f"{doing}... done")

    return LogResult()


#
# Wraps the main function to handle exceptions and exit with the proper code.
#
def wrap_main(main: Callable[[], Any]):
    def terminate(num: int, frame: Any):
        log(f"Received {signal.Signals(num).name}, exiting...")
        raise KeyboardInterrupt

    try:
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, terminate)
            signal.signal(signal.SIGTERM, terminate)
        main()
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(1)
    except ValueError as e:
        log(f"{e.__class__.__name__}: {e}")
        sys.exit(2)


#
# A helper class for ArgumentParser.
#
class ParagraphFormatter(argparse.HelpFormatter):
    def _fill_text(self, text: str, width: int, indent: str) -> str:
        text = re.sub(r"^ *\n", "", text)
        return "\n\n".join(
            [
                textwrap.indent(textwrap.fill(paragraph, width), indent)
                for paragraph in textwrap.dedent(text).split("\n\n")
            ]
        )


#
# An information about rate limits.
#
@dataclasses.dataclass
class RateLimits:
    limit: int
    remaining: int


#
# The shared outbound HTTP transport. Unlike urllib.request.urlopen(), it
# returns non-2xx responses instead of raising, so only connection-level
# problems (URLError, OSError) are exceptions here. One opener is shared by
# all threads; it holds no per-request state.
#
class HttpTransport:
    def __init__(self, *, timeout_sec: float = DEFAULT_TIMEOUT_SEC):
        self.timeout_sec = timeout_sec
        self.opener = urllib.request.build_opener()

    def __str__(self):
        return f"{self.__class__.__name__}(timeout_sec={self.timeout_sec})"

    def do(self, request: urllib.request.Request) -> http.client.HTTPResponse:
        try:
            return self.opener.open(request, timeout=self.timeout_sec)
        except urllib.error.HTTPError as e:
            # HTTPError is a response object too: status, headers and body.
            return e  # type: ignore


#
# A tool subclass of BaseHTTPRequestHandler that allows to handle GET requests
# and respond with JSON.
#
class GetJsonHttpRequestHandler(http.server.BaseHTTPRequestHandler):
    server_version = "dockerhub-status"
    sys_version = "1.0"
    log_suffix = ""

    def handle_GET_json(self) -> None:
        self.send_error(404, "No handler for GET request overridden")

    def send_json(
        self,
        status: int,
        *,
        json: Any = None,
        message: str | None = None,
    ):
        if message:
            if json is None:
                json = {"message": message}
            self.log_suffix = (
                f"{self.log_suffix}; " if self.log_suffix else ""
            ) + message
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(f"{dumps(json)}\n".encode("utf-8"))

    # @override
    def log_request(self, code: Any = "-", size: Any = "-"):
        if isinstance(code, HTTPStatus):
            code = code.value
        self.log_message(
            '"%s" %s %s%s',
            self.requestline,
            str(code),
            str(size),
            f" {self.log_suffix}" if self.log_suffix else "",
        )

    # @override
    def do_GET(self):
        try:
            self.handle_GET_json()
        except BaseException:
            log(traceback.format_exc())
            self.send_error(500, "Internal server error")

    # @override
    def send_error(
        self,
        code: int,
        message: str | None = None,
        explain: str | None = None,
    ):
        message = message or HTTPStatus(code).phrase
        self.send_json(
            code,
            json={"message": message, **({"details": explain} if explain else {})},
            message=message,
        )
        log(f"Error: {message} (HTTP {code})" + (f": {explain}" if explain else ""))
