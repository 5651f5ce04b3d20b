"""Tests for scp upload and download."""

import asyncio
import io
import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from sshfleet.errors import RemoteCommandError, TransferProtocolError
from sshfleet.models import PooledConnection, Target
from sshfleet.services.session import Session
from sshfleet.services.transfer import (
    ProgressWriter,
    download,
    format_control_line,
    parse_control_line,
    scp_get,
    scp_put,
    upload,
)


class FakeStdin:
    """Records everything the local side writes to the remote process."""

    def __init__(self, process: "FakeProcess") -> None:
        self.data = bytearray()
        self.eof = False
        self._process = process

    def write(self, data: bytes) -> None:
        if self._process.closed:
            raise BrokenPipeError("channel closed")
        self.data.extend(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def write_eof(self) -> None:
        self.eof = True
        self._process.exit()


class FakeProcess:
    """Remote scp process: replays scripted stdout, exits after stdin EOF."""

    def __init__(self, stdout: bytes = b"", exit_status: int = 0) -> None:
        self.stdout = asyncio.StreamReader()
        if stdout:
            self.stdout.feed_data(stdout)
        self.stdin = FakeStdin(self)
        self.exit_status = exit_status
        self.exit_signal = None
        self.closed = False
        self._exited = asyncio.Event()

    def exit(self) -> None:
        if not self.stdout.at_eof():
            self.stdout.feed_eof()
        self._exited.set()

    def close(self) -> None:
        self.closed = True
        self.exit()

    async def wait_closed(self) -> None:
        await self._exited.wait()


def make_session(process: FakeProcess) -> tuple[Session, MagicMock]:
    """Create a session whose channel runs the fake process."""
    conn = MagicMock()
    conn.create_process = AsyncMock(return_value=process)
    pooled = PooledConnection()
    pooled.attach(conn)
    return Session(Target("cockroach", "denim-0001"), pooled), conn


@pytest.fixture
def data_file(tmp_path: Path) -> Path:
    """A 10000-byte file with mode 0644."""
    path = tmp_path / "data.bin"
    path.write_bytes(os.urandom(10000))
    os.chmod(path, 0o644)
    return path


def test_format_control_line() -> None:
    assert format_control_line(0o644, 10000, "data.bin") == b"C0644 10000 data.bin\n"
    assert format_control_line(0o755, 0, "run.sh") == b"C0755 0 run.sh\n"


def test_format_control_line_rejects_newline() -> None:
    with pytest.raises(ValueError):
        format_control_line(0o644, 1, "bad\nname")


def test_parse_control_line() -> None:
    assert parse_control_line("C0644 10000 data.bin") == (0o644, 10000, "data.bin")
    assert parse_control_line("C0600 5 my file") == (0o600, 5, "my file")


@pytest.mark.parametrize(
    "line",
    [
        "C0644 10000",
        "C0644",
        "D0755 0 dir",
        "C0899 10 x",
        "C0644 ten x",
        "C0644 -1 x",
        "C17777 5 x",
        "C7777777 5 x",
        "",
    ],
)
def test_parse_control_line_malformed(line: str) -> None:
    """Malformed lines raise with the literal line as payload."""
    with pytest.raises(TransferProtocolError) as exc_info:
        parse_control_line(line)
    assert exc_info.value.line == line


@pytest.mark.asyncio
async def test_progress_writer_reports_fractions() -> None:
    """Progress is the running total over the declared size."""
    sink = io.BytesIO()
    seen: list[float] = []
    writer = ProgressWriter(sink, 4, seen.append)

    await writer.write(b"ab")
    await writer.write(b"cd")

    assert sink.getvalue() == b"abcd"
    assert seen == [0.5, 1.0]
    assert writer.done == 4


@pytest.mark.asyncio
async def test_progress_writer_empty_transfer() -> None:
    """An empty transfer reports completion once."""
    seen: list[float] = []
    writer = ProgressWriter(io.BytesIO(), 0, seen.append)
    writer.finish()
    assert seen == [1.0]


@pytest.mark.asyncio
async def test_upload_wire_format(data_file: Path) -> None:
    """Upload sends control line, payload and NUL terminator."""
    process = FakeProcess(stdout=b"\x00\x00\x00")
    session, conn = make_session(process)

    result = await scp_put(session, str(data_file), "/tmp/data.bin")

    payload = data_file.read_bytes()
    assert bytes(process.stdin.data) == b"C0644 10000 data.bin\n" + payload + b"\x00"
    assert process.stdin.eof
    assert result.size == 10000
    assert result.bytes_transferred == 10000
    assert result.mode == 0o644
    command = conn.create_process.call_args.args[0]
    assert command == "rm -f /tmp/data.bin ; scp -t /tmp/data.bin"
    assert conn.create_process.call_args.kwargs["encoding"] is None


@pytest.mark.asyncio
async def test_upload_quotes_destination(data_file: Path) -> None:
    """Destinations are shell quoted."""
    process = FakeProcess(stdout=b"\x00\x00\x00")
    session, conn = make_session(process)

    await scp_put(session, str(data_file), "/tmp/my data.bin")

    command = conn.create_process.call_args.args[0]
    assert command == "rm -f '/tmp/my data.bin' ; scp -t '/tmp/my data.bin'"


@pytest.mark.asyncio
async def test_upload_progress_converges_to_one(tmp_path: Path) -> None:
    """Progress values never decrease and end at exactly 1.0."""
    src = tmp_path / "big.bin"
    src.write_bytes(os.urandom(100_000))
    process = FakeProcess(stdout=b"\x00\x00\x00")
    session, _ = make_session(process)
    seen: list[float] = []

    await scp_put(session, str(src), "/tmp/big.bin", seen.append)

    assert len(seen) > 1
    assert seen == sorted(seen)
    assert seen[-1] == 1.0


@pytest.mark.asyncio
async def test_upload_missing_source(tmp_path: Path) -> None:
    """A missing local file fails before any remote command."""
    process = FakeProcess()
    session, conn = make_session(process)

    with pytest.raises(FileNotFoundError):
        await scp_put(session, str(tmp_path / "missing"), "/tmp/missing")
    conn.create_process.assert_not_awaited()


@pytest.mark.asyncio
async def test_upload_remote_error_fails_command(data_file: Path) -> None:
    """A remote scp refusal surfaces the failed command, chained from the protocol error."""
    process = FakeProcess(stdout=b"\x01scp: /root/data.bin: Permission denied\n", exit_status=1)
    session, _ = make_session(process)

    with pytest.raises(RemoteCommandError) as exc_info:
        await scp_put(session, str(data_file), "/root/data.bin")

    assert exc_info.value.exit_status == 1
    assert isinstance(exc_info.value.__cause__, TransferProtocolError)
    assert "Permission denied" in str(exc_info.value.__cause__)


@pytest.mark.asyncio
async def test_upload_waits_for_late_background_error(data_file: Path) -> None:
    """An error arriving after the remote command exited is still reported."""
    process = FakeProcess()
    process._exited.set()
    session, _ = make_session(process)

    loop = asyncio.get_running_loop()
    loop.call_later(0.05, process.stdout.feed_data, b"\x02scp: protocol error\n")

    with pytest.raises(TransferProtocolError, match="protocol error"):
        await scp_put(session, str(data_file), "/tmp/data.bin")


@pytest.mark.asyncio
async def test_download_wire_format(tmp_path: Path) -> None:
    """Download acknowledges each step and writes the payload with its mode."""
    payload = os.urandom(10000)
    process = FakeProcess(stdout=b"C0644 10000 data.bin\n" + payload + b"\x00")
    session, conn = make_session(process)
    dest = tmp_path / "copy.bin"

    result = await scp_get(session, "/tmp/data.bin", str(dest))

    assert dest.read_bytes() == payload
    assert dest.stat().st_mode & 0o777 == 0o644
    assert bytes(process.stdin.data) == b"\x00\x00\x00"
    assert result.bytes_transferred == 10000
    assert conn.create_process.call_args.args[0] == "scp -qrf /tmp/data.bin"


@pytest.mark.asyncio
async def test_download_malformed_control_line(tmp_path: Path) -> None:
    """A wrong field count yields the literal offending line."""
    process = FakeProcess(stdout=b"C0644 10000\n")
    session, _ = make_session(process)

    with pytest.raises(TransferProtocolError) as exc_info:
        await scp_get(session, "/tmp/data.bin", str(tmp_path / "copy.bin"))

    assert exc_info.value.line == "C0644 10000"
    assert not (tmp_path / "copy.bin").exists()


@pytest.mark.asyncio
async def test_download_remote_error(tmp_path: Path) -> None:
    """A remote error instead of a control line is a protocol error."""
    process = FakeProcess(stdout=b"\x01scp: /tmp/nope: No such file or directory\n")
    session, _ = make_session(process)

    with pytest.raises(TransferProtocolError, match="No such file"):
        await scp_get(session, "/tmp/nope", str(tmp_path / "nope"))


@pytest.mark.asyncio
async def test_download_short_read(tmp_path: Path) -> None:
    """Fewer payload bytes than declared is a protocol error."""
    process = FakeProcess(stdout=b"C0644 100 data.bin\n" + b"x" * 10)
    session, _ = make_session(process)
    process.stdout.feed_eof()

    with pytest.raises(TransferProtocolError, match="Short read"):
        await scp_get(session, "/tmp/data.bin", str(tmp_path / "copy.bin"))

    assert not (tmp_path / "copy.bin").exists()
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_download_failure_keeps_existing_destination(tmp_path: Path) -> None:
    """A failed download leaves an existing destination untouched."""
    dest = tmp_path / "copy.bin"
    dest.write_bytes(b"previous contents")
    process = FakeProcess(stdout=b"C0644 5 data.bin\nhello\x01scp: read error\n")
    session, _ = make_session(process)

    with pytest.raises(TransferProtocolError, match="read error"):
        await scp_get(session, "/tmp/data.bin", str(dest))

    assert dest.read_bytes() == b"previous contents"
    assert list(tmp_path.iterdir()) == [dest]


@pytest.mark.asyncio
async def test_download_replaces_existing_destination(tmp_path: Path) -> None:
    """A completed download overwrites the destination."""
    dest = tmp_path / "copy.bin"
    dest.write_bytes(b"previous contents")
    process = FakeProcess(stdout=b"C0600 5 data.bin\nhello\x00")
    session, _ = make_session(process)

    await scp_get(session, "/tmp/data.bin", str(dest))

    assert dest.read_bytes() == b"hello"
    assert list(tmp_path.iterdir()) == [dest]


@pytest.mark.asyncio
async def test_round_trip(data_file: Path, tmp_path: Path) -> None:
    """Uploading then downloading reproduces content and mode."""
    os.chmod(data_file, 0o751)
    up = FakeProcess(stdout=b"\x00\x00\x00")
    session, _ = make_session(up)
    await scp_put(session, str(data_file), "/tmp/data.bin")

    # The remote sender emits exactly what was uploaded
    down = FakeProcess(stdout=bytes(up.stdin.data))
    session, _ = make_session(down)
    dest = tmp_path / "restored.bin"
    seen: list[float] = []
    await scp_get(session, "/tmp/data.bin", str(dest), seen.append)

    assert dest.read_bytes() == data_file.read_bytes()
    assert up.stdin.data.startswith(b"C0751 10000 data.bin\n")
    assert dest.stat().st_mode & 0o777 == 0o751
    assert seen[-1] == 1.0


@pytest.mark.asyncio
async def test_upload_and_download_release_sessions(data_file: Path, tmp_path: Path) -> None:
    """Pool helpers close their session after the transfer."""
    up = FakeProcess(stdout=b"\x00\x00\x00")
    up_session, _ = make_session(up)
    down = FakeProcess(stdout=b"C0600 3 a.txt\nabc\x00")
    down_session, _ = make_session(down)
    pool = MagicMock()
    pool.get_session = AsyncMock(side_effect=[up_session, down_session])

    await upload(pool, "cockroach", "denim-0001", str(data_file), "/tmp/data.bin")
    await download(pool, "cockroach", "denim-0001", "/tmp/a.txt", str(tmp_path / "a.txt"))

    assert up.closed and down.closed
    assert (tmp_path / "a.txt").read_bytes() == b"abc"
    assert (tmp_path / "a.txt").stat().st_mode & 0o777 == 0o600
