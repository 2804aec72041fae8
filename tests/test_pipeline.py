import asyncio
import io
import logging
import socket
import stat

import httpx
import pytest

from conftest import MockConnector, chunked
from dockwire import (
    ArchiveEntry,
    ArchiveError,
    ConnectError,
    ConnectionConfig,
    Document,
    EventStream,
    Pipeline,
    RawStream,
    Request,
    RequestError,
    TlsConfig,
    iter_tar,
)
from dockwire.logger import CONTEXT_ATTR, create_logger
from dockwire.pipeline import MULTIPLEXED_STREAM_TYPE, classify, media_type
from dockwire.transport import TcpTransport, UnixTransport, connect
from dockwire.types import BodyKind


@pytest.mark.parametrize(
    ("content_type", "kind"),
    [
        ("application/json", BodyKind.DOCUMENT),
        ("application/json; charset=utf-8", BodyKind.DOCUMENT),
        ("application/x-ndjson", BodyKind.EVENT_STREAM),
        ("application/jsonl", BodyKind.EVENT_STREAM),
        ("application/json-seq", BodyKind.EVENT_STREAM),
        ("application/vnd.docker.raw-stream", BodyKind.RAW_STREAM),
        (MULTIPLEXED_STREAM_TYPE, BodyKind.RAW_STREAM),
        ("text/plain; charset=utf-8", BodyKind.RAW_STREAM),
        (None, BodyKind.RAW_STREAM),
    ],
)
def test_classify_by_media_type(content_type, kind) -> None:
    assert classify(content_type) is kind


def test_expect_overrides_classification() -> None:
    assert classify("application/json", BodyKind.EVENT_STREAM) is BodyKind.EVENT_STREAM
    assert media_type(" Application/JSON ; charset=utf-8") == "application/json"


@pytest.mark.asyncio
async def test_each_request_gets_its_own_transport(make_pipeline) -> None:
    pipeline, connector = make_pipeline(lambda request: httpx.Response(200, json={}))
    await pipeline.send(Request("GET", "/info"))
    await pipeline.send(Request("GET", "/version"))
    assert len(connector.opened) == 2
    assert connector.opened[0] is not connector.opened[1]
    assert all(transport.closed for transport in connector.opened)


@pytest.mark.asyncio
async def test_request_line_query_and_headers(make_pipeline) -> None:
    pipeline, connector = make_pipeline(lambda request: httpx.Response(200, json=[]))
    headers = httpx.Headers([("X-Registry-Config", "a"), ("Accept", "application/json")])
    await pipeline.send(Request("get", "/containers/json", params=[("all", "true"), ("limit", "5")], headers=headers))

    sent = connector.requests[0]
    assert sent.method == "GET"
    assert sent.url.path == "/containers/json"
    assert sent.url.params["all"] == "true"
    assert sent.url.params["limit"] == "5"
    assert sent.headers["x-registry-config"] == "a"


@pytest.mark.asyncio
async def test_api_version_prefix() -> None:
    connector = MockConnector(lambda request: httpx.Response(200, json={}))
    config = ConnectionConfig.from_url("tcp://127.0.0.1:2375", api_version="1.41")
    await Pipeline(config, connect=connector).send(Request("GET", "/version"))
    assert connector.requests[0].url.path == "/v1.41/version"


@pytest.mark.asyncio
async def test_byte_body_uses_content_length(make_pipeline) -> None:
    pipeline, connector = make_pipeline(lambda request: httpx.Response(201, json={"Id": "c1"}))
    await pipeline.send(Request("POST", "/containers/create", body=b'{"Image":"busybox"}'))
    sent = connector.requests[0]
    assert sent.headers["content-length"] == "19"
    assert "transfer-encoding" not in sent.headers
    assert sent.content == b'{"Image":"busybox"}'


@pytest.mark.asyncio
async def test_archiver_body_is_sent_chunked(make_pipeline) -> None:
    entries = [
        ArchiveEntry.from_bytes("Dockerfile", b"FROM scratch\n", mtime=1_600_000_000),
        ArchiveEntry.from_bytes("app/main.py", b"print(1)\n" * 500, mtime=1_600_000_000),
    ]
    expected = b"".join(iter_tar(entries))

    pipeline, connector = make_pipeline(
        lambda request: httpx.Response(200, headers={"Content-Type": "application/json"}, content=b'{"stream":"ok"}\n')
    )
    stream = await pipeline.send(
        Request("POST", "/build", headers={"Content-Type": "application/x-tar"}, body=iter_tar(entries)),
        expect=BodyKind.EVENT_STREAM,
    )
    assert isinstance(stream, EventStream)
    assert [value async for value in stream] == [{"stream": "ok"}]

    sent = connector.requests[0]
    assert sent.headers["transfer-encoding"] == "chunked"
    assert sent.content == expected


@pytest.mark.asyncio
async def test_async_body_is_forwarded(make_pipeline) -> None:
    pipeline, connector = make_pipeline(lambda request: httpx.Response(200))
    await pipeline.send(Request("PUT", "/containers/c1/archive", body=chunked([b"ab", b"cd"])))
    assert connector.requests[0].content == b"abcd"


@pytest.mark.parametrize("status", [400, 404, 409, 500, 503])
@pytest.mark.asyncio
async def test_non_2xx_raises_request_error(make_pipeline, status: int) -> None:
    pipeline, connector = make_pipeline(
        lambda request: httpx.Response(status, json={"message": "No such container: abc"})
    )
    with pytest.raises(RequestError) as excinfo:
        await pipeline.send(Request("GET", "/containers/abc/json"))
    assert excinfo.value.status == status
    assert excinfo.value.detail == {"message": "No such container: abc"}
    assert str(excinfo.value) == f"{status}: No such container: abc"
    assert connector.last.closed


@pytest.mark.asyncio
async def test_non_json_error_body(make_pipeline) -> None:
    pipeline, _ = make_pipeline(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(RequestError) as excinfo:
        await pipeline.send(Request("GET", "/_ping"))
    assert excinfo.value.detail is None
    assert excinfo.value.args[0] == "bad gateway"


@pytest.mark.asyncio
async def test_streaming_endpoints_still_check_status(make_pipeline) -> None:
    pipeline, _ = make_pipeline(
        lambda request: httpx.Response(
            404,
            headers={"Content-Type": "application/json"},
            content=b'{"message":"no such exec instance"}',
        )
    )
    with pytest.raises(RequestError, match="no such exec"):
        await pipeline.send(Request("POST", "/exec/e1/start"), expect=BodyKind.RAW_STREAM)


@pytest.mark.asyncio
async def test_connect_failure_is_mapped(make_pipeline) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    pipeline, connector = make_pipeline(refuse)
    with pytest.raises(ConnectError, match="refused"):
        await pipeline.send(Request("GET", "/_ping"))
    assert connector.last.closed


@pytest.mark.asyncio
async def test_missing_unix_socket_fails_fast(tmp_path) -> None:
    config = ConnectionConfig.from_url(f"unix://{tmp_path / 'docker.sock'}")
    with pytest.raises(ConnectError, match="not found"):
        await Pipeline(config).send(Request("GET", "/_ping"))


def test_unix_path_that_is_not_a_socket(tmp_path) -> None:
    regular = tmp_path / "docker.sock"
    regular.write_text("")
    with pytest.raises(ConnectError, match="Not a unix socket"):
        UnixTransport(str(regular))


@pytest.mark.asyncio
async def test_refused_tcp_connection() -> None:
    with socket.socket() as spare:
        spare.bind(("127.0.0.1", 0))
        port = spare.getsockname()[1]
    config = ConnectionConfig.from_url(f"tcp://127.0.0.1:{port}")
    with pytest.raises(ConnectError):
        await Pipeline(config).send(Request("GET", "/_ping"))


def test_unreadable_tls_material(tmp_path) -> None:
    tls = TlsConfig(ca_cert=str(tmp_path / "ca.pem"))
    with pytest.raises(ConnectError, match="TLS"):
        TcpTransport("localhost", 2376, tls=tls)


@pytest.mark.asyncio
async def test_connect_selects_variant(tmp_path) -> None:
    tcp = connect(ConnectionConfig.from_url("tcp://127.0.0.1:2375"))
    tls = connect(ConnectionConfig.from_url("tls://localhost:2376", tls=TlsConfig(verify=False)))
    try:
        assert isinstance(tcp, TcpTransport)
        assert tcp.kind == "tcp"
        assert getattr(tcp, "_use_ssl") is False
        assert getattr(tls, "_use_ssl") is True
    finally:
        await tcp.aclose()
        await tls.aclose()

    with socket.socket(socket.AF_UNIX) as server:
        path = str(tmp_path / "d.sock")
        server.bind(path)
        unix = connect(ConnectionConfig.from_url(f"unix://{path}"))
        assert isinstance(unix, UnixTransport)
        assert unix.kind == "unix"
        await unix.aclose()


@pytest.mark.asyncio
async def test_closed_transport_refuses_to_send(make_pipeline) -> None:
    pipeline, connector = make_pipeline(lambda request: httpx.Response(200, json={}))
    document = await pipeline.send(Request("GET", "/info"))
    assert isinstance(document, Document)
    transport = connector.last
    with pytest.raises(ConnectError, match="closed"):
        await transport.send(transport.build_request("GET", "/info"))


@pytest.mark.asyncio
async def test_raw_default_shape(make_pipeline) -> None:
    pipeline, _ = make_pipeline(lambda request: httpx.Response(200, text="OK"))
    assert isinstance(await pipeline.send(Request("GET", "/_ping")), RawStream)


@pytest.mark.asyncio
async def test_ipv6_host_is_bracketed() -> None:
    with socket.socket() as spare:
        spare.bind(("127.0.0.1", 0))
        port = spare.getsockname()[1]
    config = ConnectionConfig.from_url(f"tcp://[::1]:{port}")
    assert config.host == "::1"
    assert config.address == f"tcp://[::1]:{port}"

    transport = TcpTransport(config.host, port)
    assert transport.address == f"[::1]:{port}"
    await transport.aclose()

    with pytest.raises(ConnectError):
        await Pipeline(config).send(Request("GET", "/_ping"))


@pytest.mark.asyncio
async def test_tls_handshake_failure() -> None:
    async def plain_http(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await reader.read(1024)
        writer.write(b"HTTP/1.1 400 Bad Request\r\nContent-Length: 0\r\n\r\n")
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(plain_http, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    async with server:
        config = ConnectionConfig.from_url(f"tls://127.0.0.1:{port}", tls=TlsConfig(verify=False))
        with pytest.raises(ConnectError):
            await Pipeline(config).send(Request("GET", "/_ping"))


@pytest.mark.asyncio
async def test_archive_error_mid_upload_closes_transport(make_pipeline) -> None:
    entries = [
        ArchiveEntry.from_bytes("Dockerfile", b"FROM scratch\n", mtime=0),
        ArchiveEntry("grown.log", stat.S_IFREG | 0o644, 3, 0, content=lambda: io.BytesIO(b"longer than three")),
    ]
    pipeline, connector = make_pipeline(lambda request: httpx.Response(200))
    with pytest.raises(ArchiveError, match="longer than the declared 3"):
        await pipeline.send(Request("POST", "/build", body=iter_tar(entries)), expect=BodyKind.EVENT_STREAM)
    assert connector.last.closed
    assert connector.requests == []


@pytest.mark.asyncio
async def test_records_carry_request_context(config, caplog) -> None:
    connector = MockConnector(lambda request: httpx.Response(200, json={}))
    logger = create_logger(logger=logging.getLogger("dockwire.requests"), level="debug")
    pipeline = Pipeline(config, logger=logger, connect=connector)

    with caplog.at_level(logging.DEBUG, logger="dockwire.requests"):
        await pipeline.send(Request("GET", "/info"))
        await pipeline.send(Request("GET", "/version"))

    records = [record for record in caplog.records if record.name.startswith("dockwire.requests")]
    contexts = [getattr(record, CONTEXT_ATTR) for record in records]
    assert {context["request"] for context in contexts} == {1, 2}
    assert {"request": 2, "body": "document"} in contexts
    assert "HTTP GET /version [request=2]" in [record.getMessage() for record in records]
