"""Remote-copy (scp) file transfer over a session's byte streams.

Wire format, identical in both directions::

    C<mode octal> <size decimal> <basename>\\n
    <size raw bytes>
    \\0

The receiving side acknowledges every step with a single NUL byte; a 0x01 or
0x02 byte followed by a text line reports a remote error instead.

Each transfer runs a background task driving the protocol on the process
streams while the foreground waits for the remote command to exit. Both
outcomes are always awaited before the transfer is declared done.
"""

import asyncio
import contextlib
import logging
import os
import shlex
import stat
import tempfile
from typing import IO, TYPE_CHECKING, Any

import asyncssh

from sshfleet.errors import TransferProtocolError
from sshfleet.models import TransferDescriptor, TransferResult
from sshfleet.models.transfer import ProgressCallback

if TYPE_CHECKING:
    from sshfleet.services.pool import ConnectionPool
    from sshfleet.services.session import Session

logger = logging.getLogger(__name__)

ACK = b"\x00"
CHUNK_SIZE = 32 * 1024


def format_control_line(mode: int, size: int, name: str) -> bytes:
    """Build the control line announcing a file.

    Examples:
        >>> format_control_line(0o644, 10000, "data.bin")
        b'C0644 10000 data.bin\\n'
    """
    if "\n" in name or "/" in name:
        raise ValueError(f"Invalid file name for transfer: {name!r}")
    return f"C{mode & 0o7777:04o} {size} {name}\n".encode()


def parse_control_line(line: str) -> tuple[int, int, str]:
    """Parse a control line into (mode, size, name).

    Raises:
        TransferProtocolError: If the line is malformed; ``line`` is set to
            the offending text
    """
    fields = line.split(" ", 2)
    if len(fields) != 3 or not fields[0].startswith("C") or not fields[2]:
        raise TransferProtocolError(line, line=line)
    try:
        mode = int(fields[0][1:], 8)
        size = int(fields[1])
    except ValueError:
        raise TransferProtocolError(line, line=line) from None
    if size < 0 or mode > 0o7777:
        raise TransferProtocolError(line, line=line)
    return mode, size, fields[2]


class ProgressWriter:
    """Write-through wrapper that reports the fraction of bytes written."""

    def __init__(
        self,
        writer: Any,
        total: int,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.writer = writer
        self.total = total
        self.done = 0
        self.progress = progress

    async def write(self, data: bytes) -> int:
        """Write data, then update the running total and report progress."""
        self.writer.write(data)
        drain = getattr(self.writer, "drain", None)
        if drain is not None:
            await drain()
        self.done += len(data)
        if self.progress and self.total:
            self.progress(self.done / self.total)
        return len(data)

    def finish(self) -> None:
        """Report completion of an empty transfer."""
        if self.progress and not self.total:
            self.progress(1.0)


async def _read_ack(stdout: Any, step: str) -> None:
    """Wait for the peer's acknowledgement byte.

    Raises:
        TransferProtocolError: On EOF, a remote error report or an
            unexpected byte
    """
    status = await stdout.read(1)
    if status == ACK:
        return
    if not status:
        raise TransferProtocolError(f"Connection closed waiting for ack after {step}")
    if status in (b"\x01", b"\x02"):
        message = (await stdout.readline()).decode("utf-8", errors="replace").strip()
        raise TransferProtocolError(f"Remote scp error after {step}: {message}")
    raise TransferProtocolError(f"Unexpected ack byte {status!r} after {step}")


async def _send_ack(stdin: Any) -> None:
    stdin.write(ACK)
    await stdin.drain()


async def _send_file(
    process: "asyncssh.SSHClientProcess",
    source: IO[bytes],
    descriptor: TransferDescriptor,
) -> TransferResult:
    """Drive the sending side of the protocol on the process streams."""
    stdin, stdout = process.stdin, process.stdout
    name = os.path.basename(descriptor.local_path)
    writer = ProgressWriter(stdin, descriptor.size, descriptor.progress)
    try:
        await _read_ack(stdout, "start")
        stdin.write(format_control_line(descriptor.mode, descriptor.size, name))
        await stdin.drain()
        await _read_ack(stdout, "control line")

        remaining = descriptor.size
        while remaining > 0:
            chunk = source.read(min(CHUNK_SIZE, remaining))
            if not chunk:
                raise TransferProtocolError(
                    f"Short read: {descriptor.local_path} ended "
                    f"{remaining} bytes before its declared size"
                )
            await writer.write(chunk)
            remaining -= len(chunk)

        await _send_ack(stdin)
        await _read_ack(stdout, "payload")
        stdin.write_eof()
    except (ConnectionError, asyncssh.Error) as e:
        process.close()
        raise TransferProtocolError(f"Stream failed mid-transfer: {e}") from e
    except Exception:
        # Unblock the remote side so the foreground wait can finish
        process.close()
        raise

    writer.finish()
    return TransferResult(
        local_path=descriptor.local_path,
        remote_path=descriptor.remote_path,
        mode=descriptor.mode,
        size=descriptor.size,
        bytes_transferred=writer.done,
    )


async def _receive_file(
    process: "asyncssh.SSHClientProcess",
    src: str,
    dest: str,
    progress: ProgressCallback | None,
) -> TransferResult:
    """Drive the receiving side of the protocol on the process streams.

    The payload lands in a temporary file beside dest, which only replaces
    dest once the sender confirmed the whole payload.
    """
    stdin, stdout = process.stdin, process.stdout
    partial: str | None = None
    try:
        await _send_ack(stdin)

        raw = await stdout.readline()
        if not raw:
            raise TransferProtocolError("Connection closed before control line")
        if raw[:1] in (b"\x01", b"\x02"):
            message = raw[1:].decode("utf-8", errors="replace").strip()
            raise TransferProtocolError(f"Remote scp error: {message}")
        line = raw.decode("utf-8", errors="replace").rstrip("\n")
        mode, size, _name = parse_control_line(line)

        fd, partial = tempfile.mkstemp(
            prefix=f".{os.path.basename(dest)}.",
            suffix=".part",
            dir=os.path.dirname(os.path.abspath(dest)),
        )
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), mode)
            await _send_ack(stdin)

            writer = ProgressWriter(f, size, progress)
            remaining = size
            while remaining > 0:
                chunk = await stdout.read(min(CHUNK_SIZE, remaining))
                if not chunk:
                    raise TransferProtocolError(
                        f"Short read: {remaining} of {size} bytes missing from {src}"
                    )
                await writer.write(chunk)
                remaining -= len(chunk)

        await _read_ack(stdout, "payload")
        os.replace(partial, dest)
        partial = None
        await _send_ack(stdin)
        stdin.write_eof()
    except (ConnectionError, asyncssh.Error) as e:
        process.close()
        raise TransferProtocolError(f"Stream failed mid-transfer: {e}") from e
    except Exception:
        process.close()
        raise
    finally:
        if partial is not None:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(partial)

    writer.finish()
    return TransferResult(
        local_path=dest,
        remote_path=src,
        mode=mode,
        size=size,
        bytes_transferred=writer.done,
    )


async def _join(session: "Session", background: asyncio.Task) -> TransferResult:
    """Wait for both the protocol task and the remote command.

    A failed remote command wins, chained from any protocol error.
    """
    bg_result, fg_result = await asyncio.gather(
        background, session.wait(), return_exceptions=True
    )
    if isinstance(fg_result, BaseException):
        if isinstance(bg_result, BaseException):
            raise fg_result from bg_result
        raise fg_result
    if isinstance(bg_result, BaseException):
        raise bg_result
    return bg_result


def describe_upload(
    src: str,
    dest: str,
    progress: ProgressCallback | None = None,
) -> TransferDescriptor:
    """Build an upload descriptor from the local file's metadata.

    Raises:
        OSError: If the source is missing or not a regular file
    """
    st = os.stat(src)
    if not stat.S_ISREG(st.st_mode):
        raise IsADirectoryError(f"Not a regular file: {src}")
    return TransferDescriptor(
        local_path=src,
        remote_path=dest,
        mode=stat.S_IMODE(st.st_mode) & 0o777,
        size=st.st_size,
        progress=progress,
    )


async def scp_put(
    session: "Session",
    src: str,
    dest: str,
    progress: ProgressCallback | None = None,
) -> TransferResult:
    """Upload a local file to dest on the session's host.

    Raises:
        OSError: If the local file cannot be opened
        RemoteCommandError: If the remote scp exits with failure
        TransferProtocolError: On a framing violation
    """
    with open(src, "rb") as source:
        descriptor = describe_upload(src, dest, progress)
        logger.info(
            "Uploading %s -> %s:%s (%d bytes, mode %04o)",
            src,
            session.target,
            dest,
            descriptor.size,
            descriptor.mode,
        )
        quoted = shlex.quote(dest)
        process = await session.start(f"rm -f {quoted} ; scp -t {quoted}", encoding=None)
        background = asyncio.create_task(_send_file(process, source, descriptor))
        result = await _join(session, background)

    logger.info("Upload to %s:%s completed", session.target, dest)
    return result


async def scp_get(
    session: "Session",
    src: str,
    dest: str,
    progress: ProgressCallback | None = None,
) -> TransferResult:
    """Download src from the session's host to a local file.

    Raises:
        OSError: If the local file cannot be created
        RemoteCommandError: If the remote scp exits with failure
        TransferProtocolError: On a malformed control line or short read
    """
    logger.info("Downloading %s:%s -> %s", session.target, src, dest)
    process = await session.start(f"scp -qrf {shlex.quote(src)}", encoding=None)
    background = asyncio.create_task(_receive_file(process, src, dest, progress))
    result = await _join(session, background)
    logger.info(
        "Download from %s:%s completed (%d bytes)",
        session.target,
        src,
        result.bytes_transferred,
    )
    return result


async def upload(
    pool: "ConnectionPool",
    user: str,
    host: str,
    src: str,
    dest: str,
    progress: ProgressCallback | None = None,
) -> TransferResult:
    """Upload over a pooled connection, releasing the session afterwards."""
    session = await pool.get_session(user, host)
    async with session:
        return await scp_put(session, src, dest, progress)


async def download(
    pool: "ConnectionPool",
    user: str,
    host: str,
    src: str,
    dest: str,
    progress: ProgressCallback | None = None,
) -> TransferResult:
    """Download over a pooled connection, releasing the session afterwards."""
    session = await pool.get_session(user, host)
    async with session:
        return await scp_get(session, src, dest, progress)
