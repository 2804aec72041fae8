"""High-level client for the endpoints that exercise each response shape."""

from __future__ import annotations

import json as jsonlib
import os
from dataclasses import dataclass
from types import TracebackType
from typing import Any, BinaryIO, Iterable, Mapping, Sequence, Union

import httpx

from .archive import IgnoreRule, build_context, iter_file
from .config import ConnectionConfig
from .decoder import Document, EventStream, RawStream
from .demux import FrameStream
from .errors import ArchiveError, DecodeError
from .logger import BoundLogger, LogLevel, create_logger
from .pipeline import MULTIPLEXED_STREAM_TYPE, Body, Connector, Pipeline, Request, ResponseShape, media_type
from .transport import connect as connect_transport
from .types import BodyKind

OutputStream = Union[FrameStream, RawStream]
TarballSource = Union[bytes, Iterable[bytes], BinaryIO, str, "os.PathLike[str]"]


@dataclass(frozen=True)
class PingInfo:
    api_version: str | None
    os_type: str | None
    experimental: bool
    builder_version: str | None
    body: str

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], body: str) -> "PingInfo":
        return cls(
            api_version=headers.get("api-version"),
            os_type=headers.get("ostype"),
            experimental=(headers.get("docker-experimental") or "").lower() == "true",
            builder_version=headers.get("builder-version"),
            body=body,
        )


def encode_params(params: Mapping[str, Any] | None) -> list[tuple[str, str]]:
    """Render query values the way the daemon expects them."""
    encoded: list[tuple[str, str]] = []
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif isinstance(value, (list, dict)):
            value = jsonlib.dumps(value)
        encoded.append((key, str(value)))
    return encoded


class DockerClient:
    """Primary entry point for talking to a container daemon."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        config: ConnectionConfig | None = None,
        default_headers: Mapping[str, str] | None = None,
        logger: object | None = None,
        log_level: LogLevel = "info",
        connect: Connector = connect_transport,
    ) -> None:
        self._logger: BoundLogger = create_logger(logger=logger, level=log_level)
        if config is not None:
            self.config = config
        elif base_url:
            self.config = ConnectionConfig.from_url(base_url)
        else:
            self.config = ConnectionConfig.from_env()
        self._logger.info("Initializing DockerClient for %s", self.config.address)
        self._default_headers = dict(default_headers or {})
        self._pipeline = Pipeline(self.config, logger=self._logger, connect=connect)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        body: Body | None = None,
        json: Any | None = None,
        expect: BodyKind | None = None,
    ) -> ResponseShape:
        merged = httpx.Headers(self._default_headers)
        if headers:
            merged.update(headers)
        if json is not None:
            if body is not None:
                raise ValueError("Pass either body or json, not both")
            body = jsonlib.dumps(json).encode("utf-8")
            merged["Content-Type"] = "application/json"

        request = Request(method, path, params=encode_params(params), headers=merged, body=body)
        return await self._pipeline.send(request, expect=expect)

    async def get_json(self, path: str, *, params: Mapping[str, Any] | None = None) -> Any:
        document = await self.request("GET", path, params=params, expect=BodyKind.DOCUMENT)
        return _document(document).value

    async def post_json(
        self,
        path: str,
        payload: Any | None = None,
        *,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        document = await self.request("POST", path, params=params, json=payload, expect=BodyKind.DOCUMENT)
        return _document(document).value

    async def ping(self) -> PingInfo:
        stream = await self.request("GET", "/_ping", expect=BodyKind.RAW_STREAM)
        assert isinstance(stream, RawStream)
        headers = stream.headers
        body = await stream.read()
        return PingInfo.from_headers(headers, body.decode("utf-8", errors="replace").strip())

    async def version(self) -> Any:
        return await self.get_json("/version")

    async def info(self) -> Any:
        return await self.get_json("/info")

    async def events(
        self,
        *,
        since: int | str | None = None,
        until: int | str | None = None,
        filters: Mapping[str, list[str]] | None = None,
    ) -> EventStream:
        params = {"since": since, "until": until, "filters": dict(filters) if filters else None}
        stream = await self.request("GET", "/events", params=params, expect=BodyKind.EVENT_STREAM)
        assert isinstance(stream, EventStream)
        return stream

    async def build(
        self,
        path: str | os.PathLike[str],
        *,
        tag: str | None = None,
        dockerfile: str | None = None,
        compress: bool = False,
        ignore: IgnoreRule | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> EventStream:
        """Upload *path* as a build context and stream the build progress."""
        if not os.path.isdir(path):
            raise ArchiveError(f"Build context is not a directory: {os.fspath(path)}")
        query: dict[str, Any] = {"t": tag, "dockerfile": dockerfile}
        query.update(params or {})
        body = build_context(path, ignore=ignore, compress=compress, logger=self._logger)
        self._logger.info("Building %s from %s", tag or "<untagged>", os.fspath(path))
        stream = await self.request(
            "POST",
            "/build",
            params=query,
            headers={"Content-Type": "application/x-tar"},
            body=body,
            expect=BodyKind.EVENT_STREAM,
        )
        assert isinstance(stream, EventStream)
        return stream

    async def exec_create(
        self,
        container: str,
        cmd: Sequence[str],
        *,
        attach_stdin: bool = False,
        attach_stdout: bool = True,
        attach_stderr: bool = True,
        tty: bool = False,
        env: Mapping[str, str] | None = None,
        working_dir: str | None = None,
        user: str | None = None,
        privileged: bool = False,
    ) -> str:
        """Create an exec instance in *container* and return its id."""
        payload: dict[str, Any] = {
            "Cmd": list(cmd),
            "AttachStdin": attach_stdin,
            "AttachStdout": attach_stdout,
            "AttachStderr": attach_stderr,
            "Tty": tty,
            "Privileged": privileged,
        }
        if env:
            payload["Env"] = [f"{key}={value}" for key, value in env.items()]
        if working_dir:
            payload["WorkingDir"] = working_dir
        if user:
            payload["User"] = user
        created = await self.post_json(f"/containers/{container}/exec", payload)
        if not isinstance(created, dict) or "Id" not in created:
            raise DecodeError("Exec create response carries no Id", context=created)
        return created["Id"]

    async def exec_start(self, exec_id: str, *, tty: bool = False) -> OutputStream:
        stream = await self.request(
            "POST",
            f"/exec/{exec_id}/start",
            json={"Detach": False, "Tty": tty},
            expect=BodyKind.RAW_STREAM,
        )
        return _output(stream, tty)

    async def exec_run(self, container: str, cmd: Sequence[str], *, tty: bool = False, **options: Any) -> OutputStream:
        """Create and start an exec instance in one call."""
        exec_id = await self.exec_create(container, cmd, tty=tty, **options)
        return await self.exec_start(exec_id, tty=tty)

    async def exec_inspect(self, exec_id: str) -> Any:
        return await self.get_json(f"/exec/{exec_id}/json")

    async def logs(
        self,
        container: str,
        *,
        stdout: bool = True,
        stderr: bool = True,
        follow: bool = False,
        timestamps: bool = False,
        tail: int | str | None = None,
        tty: bool = False,
    ) -> OutputStream:
        params = {
            "stdout": stdout,
            "stderr": stderr,
            "follow": follow,
            "timestamps": timestamps,
            "tail": tail,
        }
        stream = await self.request(
            "GET",
            f"/containers/{container}/logs",
            params=params,
            expect=BodyKind.RAW_STREAM,
        )
        return _output(stream, tty)

    async def pull(self, image: str, *, tag: str | None = None, platform: str | None = None) -> EventStream:
        """Pull *image* from its registry, streaming the progress messages."""
        params = {"fromImage": image, "tag": tag, "platform": platform}
        self._logger.info("Pulling %s%s", image, f":{tag}" if tag else "")
        stream = await self.request("POST", "/images/create", params=params, expect=BodyKind.EVENT_STREAM)
        assert isinstance(stream, EventStream)
        return stream

    async def export_image(self, name: str) -> RawStream:
        stream = await self.request("GET", f"/images/{name}/get", expect=BodyKind.RAW_STREAM)
        assert isinstance(stream, RawStream)
        return stream

    async def import_image(self, tarball: TarballSource, *, quiet: bool = False) -> EventStream:
        """Load images from a tarball (bytes, chunks, an open file or a path)."""
        if isinstance(tarball, (str, os.PathLike)) or hasattr(tarball, "read"):
            body: Body = iter_file(tarball)  # type: ignore[arg-type]
        else:
            body = tarball  # type: ignore[assignment]
        stream = await self.request(
            "POST",
            "/images/load",
            params={"quiet": quiet},
            headers={"Content-Type": "application/x-tar"},
            body=body,
            expect=BodyKind.EVENT_STREAM,
        )
        assert isinstance(stream, EventStream)
        return stream

    async def close(self) -> None:
        # Transports are per request; nothing is held between calls.
        self._logger.debug("DockerClient for %s closed", self.config.address)

    async def __aenter__(self) -> "DockerClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


def _document(shape: ResponseShape) -> Document:
    if not isinstance(shape, Document):
        raise DecodeError(f"Expected a JSON document, got {type(shape).__name__}")
    return shape


def _output(shape: ResponseShape, tty: bool) -> OutputStream:
    assert isinstance(shape, RawStream)
    # TTY sessions are not multiplexed unless the daemon says otherwise.
    if tty and media_type(shape.headers.get("content-type")) != MULTIPLEXED_STREAM_TYPE:
        return shape
    return shape.frames()


__all__ = ["DockerClient", "PingInfo", "encode_params"]
