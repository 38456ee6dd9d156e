import os
import stat
import sys
import textwrap
from contextlib import asynccontextmanager

import pytest
from httpx import ASGITransport, AsyncClient
from starlette.requests import Request

from streamgate.config.settings import Config
from streamgate.main import create_app

# Stand-ins for the extraction binary. Each receives the real argument vector.
SCRIPTS = {
    "media": """
        import sys
        out = sys.stdout.buffer
        for i in range(8):
            out.write(bytes([i]) * 32768)
            out.flush()
    """,
    "echo_args": """
        import json, sys
        sys.stdout.buffer.write(json.dumps(sys.argv[1:]).encode())
    """,
    "fail": """
        import sys
        sys.stderr.write("ERROR: [youtube] abc: Video unavailable\\n")
        sys.exit(1)
    """,
    "empty_ok": """
        import sys
        sys.exit(0)
    """,
    "stderr_flood": """
        import sys
        for _ in range(256):
            sys.stderr.write("W" * 4095 + "\\n")
        sys.stderr.flush()
        sys.stdout.buffer.write(b"M" * 262144)
    """,
    "endless": """
        import sys, time
        out = sys.stdout.buffer
        while True:
            out.write(b"x" * 65536)
            out.flush()
            time.sleep(0.01)
    """,
    "partial_fail": """
        import sys
        sys.stdout.buffer.write(b"P" * 100000)
        sys.stdout.flush()
        sys.stderr.write("ERROR: connection reset mid-download\\n")
        sys.exit(2)
    """,
    "silent": """
        import time
        time.sleep(60)
    """,
    "slow_fail": """
        import sys, time
        time.sleep(1)
        sys.stderr.write("ERROR: [youtube] abc: Unable to download webpage: timed out\\n")
        sys.exit(1)
    """,
    "slow_media": """
        import sys, time
        time.sleep(1)
        out = sys.stdout.buffer
        for i in range(4):
            out.write(bytes([i]) * 32768)
            out.flush()
    """,
    "stalled": """
        import sys, time
        sys.stderr.write("[youtube] abc: Downloading webpage\\n")
        sys.stderr.flush()
        time.sleep(60)
    """,
}


def write_script(directory, name: str, body: str, marker: bool = True) -> str:
    path = os.path.join(str(directory), name)
    source = f"#!{sys.executable}\n"
    if marker:
        # Leaves a trace so tests can assert whether a process was spawned
        source += f"open({path + '.spawned'!r}, 'a').close()\n"
    source += textwrap.dedent(body)
    with open(path, "w") as f:
        f.write(source)
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def was_spawned(script_path: str) -> bool:
    return os.path.exists(script_path + ".spawned")


@pytest.fixture
def extractor(tmp_path):
    """Factory returning the path of a fake extractor script"""
    def _make(name: str) -> str:
        return write_script(tmp_path, name, SCRIPTS[name])
    return _make


def make_config(binary: str, **extraction) -> Config:
    settings = {
        "binary": binary,
        "first_byte_timeout": 5.0,
        "exit_timeout": 5.0,
        "terminate_grace": 2.0,
        **extraction,
    }
    return Config(
        extraction=settings,
        redis={"enabled": False},
        rate_limit={"enabled": False},
        security={"enable_ssrf_protection": False},
        logging={"enable_rich": False, "level": "DEBUG"},
    )


@asynccontextmanager
async def gateway_client(config: Config):
    app = create_app(config)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, app


def make_request(app) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/retrieve",
        "headers": [],
        "query_string": b"",
        "app": app,
        "state": {"request_id": "test"},
    })
