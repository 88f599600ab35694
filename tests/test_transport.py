import asyncio
import json
import sys
import textwrap
import time

import httpx
import pytest

from mission_control.correlator import RequestCorrelator
from mission_control.errors import CallTimeout, ServiceRejected, TransportClosed
from mission_control.transport import HTTPTransport, SubprocessTransport

MCP_URL = "http://127.0.0.1:3333/mcp"

ECHO_SERVER = textwrap.dedent(
    """
    import json
    import os
    import sys

    print("echo server ready", file=sys.stderr, flush=True)
    for line in sys.stdin:
        request = json.loads(line)
        if "id" not in request:
            continue
        if request["method"] == "whoami":
            result = {"token": os.environ.get("HUBSPOT_ACCESS_TOKEN")}
        elif request["method"] == "exit":
            sys.exit(3)
        else:
            result = request.get("params")
        sys.stdout.write(json.dumps({"jsonrpc": "2.0", "id": request["id"], "result": result}) + "\\n")
        sys.stdout.flush()
    """
)


def _http_transport(handler) -> HTTPTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPTransport(MCP_URL, client=client)


def _echo(request: httpx.Request, **kwargs) -> httpx.Response:
    payload = json.loads(request.content)
    return httpx.Response(
        200,
        json={"jsonrpc": "2.0", "id": payload["id"], "result": payload.get("params")},
        **kwargs,
    )


@pytest.mark.asyncio
async def test_http_transport_sends_bearer_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _echo(request)

    transport = _http_transport(handler)
    transport.set_token("hubspot-access-token")

    async with RequestCorrelator(transport) as correlator:
        result = await correlator.call("tools/call", {"name": "get_contact"})

    assert result == {"name": "get_contact"}
    assert seen[0].headers["Authorization"] == "Bearer hubspot-access-token"
    assert seen[0].headers["Content-Type"] == "application/json"
    assert "text/event-stream" in seen[0].headers["Accept"]


@pytest.mark.asyncio
async def test_http_transport_omits_header_without_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _echo(request)

    async with RequestCorrelator(_http_transport(handler)) as correlator:
        await correlator.call("ping")

    assert "Authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_http_transport_rejection_keeps_status_and_body() -> None:
    transport = _http_transport(lambda request: httpx.Response(401, text="expired token"))

    async with RequestCorrelator(transport) as correlator:
        with pytest.raises(ServiceRejected) as info:
            await correlator.call("tools/list", {})

        assert len(correlator.pending) == 0
        assert correlator.closed is False

    assert info.value.status_code == 401
    assert info.value.body == "expired token"


@pytest.mark.asyncio
async def test_http_transport_connection_error_is_transport_closed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with RequestCorrelator(_http_transport(handler)) as correlator:
        with pytest.raises(TransportClosed, match="unreachable"):
            await correlator.call("tools/list", {})

        assert len(correlator.pending) == 0


@pytest.mark.asyncio
async def test_http_transport_reads_event_stream_frames() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        frame = json.dumps({"jsonrpc": "2.0", "id": payload["id"], "result": {"tools": []}})
        note = json.dumps({"jsonrpc": "2.0", "method": "notifications/progress", "params": {}})
        return httpx.Response(
            200,
            text=f"event: message\ndata: {note}\n\nevent: message\ndata: {frame}\n\n",
            headers={"Content-Type": "text/event-stream"},
        )

    async with RequestCorrelator(_http_transport(handler)) as correlator:
        assert await correlator.call("tools/list", {}) == {"tools": []}


@pytest.mark.asyncio
async def test_http_transport_joins_multiline_event_data() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        frame = json.dumps({"jsonrpc": "2.0", "id": payload["id"], "result": {"tools": []}}, indent=2)
        data = "\n".join(f"data: {line}" for line in frame.splitlines())
        return httpx.Response(
            200,
            text=f"event: message\n{data}\n\n",
            headers={"Content-Type": "text/event-stream"},
        )

    async with RequestCorrelator(_http_transport(handler)) as correlator:
        assert await correlator.call("tools/list", {}, timeout=1.0) == {"tools": []}


@pytest.mark.asyncio
async def test_http_transport_context_mode_omits_bearer_header() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _echo(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = HTTPTransport(MCP_URL, client=client, auth_mode="context")
    transport.set_token("hubspot-access-token")

    async with RequestCorrelator(transport) as correlator:
        await correlator.call("ping")

    assert "Authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_http_call_timeout_covers_slow_response() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(2)
        return _echo(request)

    async with RequestCorrelator(_http_transport(handler)) as correlator:
        started = time.monotonic()
        with pytest.raises(CallTimeout):
            await correlator.call("tools/list", {}, timeout=0.2)

        assert time.monotonic() - started < 1.5
        assert len(correlator.pending) == 0
        assert correlator.closed is False


@pytest.mark.asyncio
async def test_http_transport_echoes_session_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if "id" not in json.loads(request.content):
            return httpx.Response(202)
        return _echo(request, headers={"Mcp-Session-Id": "session-1"})

    async with RequestCorrelator(_http_transport(handler)) as correlator:
        await correlator.call("initialize", {})
        await correlator.notify("notifications/initialized")
        await correlator.call("tools/list", {})

    assert "Mcp-Session-Id" not in seen[0].headers
    assert seen[1].headers["Mcp-Session-Id"] == "session-1"
    assert seen[2].headers["Mcp-Session-Id"] == "session-1"


@pytest.mark.asyncio
async def test_http_transport_rejects_send_after_close() -> None:
    transport = _http_transport(_echo)
    await transport.close()

    with pytest.raises(TransportClosed):
        await transport.send(b"{}")


@pytest.mark.asyncio
async def test_subprocess_transport_round_trip(capsys) -> None:
    transport = SubprocessTransport(sys.executable, ["-c", ECHO_SERVER])

    async with RequestCorrelator(transport) as correlator:
        first = await correlator.call("echo", {"n": 1})
        second = await correlator.call("echo", {"n": 2})

    assert first == {"n": 1}
    assert second == {"n": 2}
    assert transport.returncode == 0
    assert "[MCP Server] echo server ready" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_subprocess_transport_exports_token() -> None:
    transport = SubprocessTransport(
        sys.executable,
        ["-c", ECHO_SERVER],
        token_env="HUBSPOT_ACCESS_TOKEN",
    )
    transport.set_token("hubspot-access-token")

    async with RequestCorrelator(transport) as correlator:
        result = await correlator.call("whoami")

    assert result == {"token": "hubspot-access-token"}


@pytest.mark.asyncio
async def test_subprocess_exit_fails_pending_call() -> None:
    transport = SubprocessTransport(sys.executable, ["-c", ECHO_SERVER])

    async with RequestCorrelator(transport) as correlator:
        with pytest.raises(TransportClosed, match="closed by MCP server"):
            await correlator.call("exit", {})

        assert len(correlator.pending) == 0
        with pytest.raises(TransportClosed):
            await correlator.call("echo", {})

    assert transport.returncode == 3


@pytest.mark.asyncio
async def test_subprocess_missing_command_is_transport_closed() -> None:
    transport = SubprocessTransport("/nonexistent/hubspot-mcp-server")

    with pytest.raises(TransportClosed, match="failed to start"):
        await transport.start()

    with pytest.raises(TransportClosed):
        await transport.send(b"{}")
