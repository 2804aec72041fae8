"""End-to-end scenario driving a local daemon through the dockwire client."""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any

from dockwire import BodyKind, ConnectError, DockerClient, FrameStream, RequestError

LOG_LEVEL = os.getenv("DOCKWIRE_CLIENT_LOG", "info")
BASE_IMAGE = os.getenv("DOCKWIRE_DEMO_IMAGE", "busybox:latest")
DEMO_TAG = "dockwire-demo:latest"


def log_section(title: str) -> None:
    print("\n" + "=" * 80)
    print(title)
    print("=" * 80)


def write_context(root: Path) -> None:
    (root / "Dockerfile").write_text(
        f"FROM {BASE_IMAGE}\n"
        "COPY greet.sh /greet.sh\n"
        'CMD ["sh", "/greet.sh"]\n'
    )
    (root / "greet.sh").write_text('echo "hello from dockwire"\necho "and a warning" >&2\n')
    (root / "node_modules").mkdir()
    (root / "node_modules" / "huge.bin").write_bytes(b"\0" * 1024)


def print_build_message(message: dict[str, Any]) -> None:
    if "stream" in message:
        print("  " + message["stream"].rstrip())
    elif "status" in message:
        print(f"  {message['status']} {message.get('progress', '')}".rstrip())
    elif "aux" in message:
        print(f"  → image {message['aux'].get('ID')}")
    elif "error" in message:
        raise RuntimeError(message["error"])


async def main() -> None:
    log_section("dockwire: Real-World Scenario")
    async with DockerClient(log_level=LOG_LEVEL) as client:
        print(f"Connecting to {client.config.address}")
        try:
            ping = await client.ping()
        except ConnectError as exc:
            raise SystemExit(f"Cannot reach the daemon: {exc}") from exc
        print(f"→ {ping.body} (API {ping.api_version}, {ping.os_type})")

        log_section("Step 1: Daemon Version")
        version = await client.version()
        print(f"→ Engine {version.get('Version')} on {version.get('Os')}/{version.get('Arch')}")

        log_section("Step 2: Build From A Local Context")
        with tempfile.TemporaryDirectory() as workdir:
            context = Path(workdir)
            write_context(context)
            progress = await client.build(
                context,
                tag=DEMO_TAG,
                compress=True,
                ignore=lambda path: path.startswith("node_modules"),
            )
            async with progress:
                async for message in progress:
                    print_build_message(message)

        log_section("Step 3: Run And Read Logs")
        created = await client.post_json("/containers/create", {"Image": DEMO_TAG})
        container_id = created["Id"]
        print(f"→ Created {container_id[:12]}")
        try:
            await client.post_json(f"/containers/{container_id}/start")
            await client.post_json(f"/containers/{container_id}/wait")
            output = await client.logs(container_id)
            assert isinstance(output, FrameStream)
            async for frame in output:
                print(f"  [{frame.stream.name.lower()}] {frame.text().rstrip()}")
        finally:
            try:
                await client.request("DELETE", f"/containers/{container_id}", params={"force": True}, expect=BodyKind.DOCUMENT)
                print(f"→ Removed {container_id[:12]}")
            except RequestError as exc:
                print(f"→ Cleanup failed: {exc}")

        log_section("Step 4: Export The Image")
        exported = 0
        async with await client.export_image(DEMO_TAG) as archive:
            async for chunk in archive:
                exported += len(chunk)
        print(f"→ Exported {exported} bytes of image tarball")


if __name__ == "__main__":
    asyncio.run(main())
