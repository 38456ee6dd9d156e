import asyncio

DIAGNOSTIC_READ_SIZE = 4096


class DiagnosticBuffer:
    """
    Bounded stderr capture.
    Keeps the most recent `capacity` bytes and counts what was dropped.
    """

    def __init__(self, capacity: int = 64 * 1024):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.dropped = 0
        self._data = bytearray()

    def append(self, chunk: bytes) -> None:
        self._data.extend(chunk)
        overflow = len(self._data) - self.capacity
        if overflow > 0:
            del self._data[:overflow]
            self.dropped += overflow

    def __len__(self) -> int:
        return len(self._data)

    def text(self) -> str:
        return self._data.decode('utf-8', errors='replace')

    def tail(self, max_chars: int = 500) -> str:
        """Last lines of the captured text, trimmed for error responses"""
        text = self.text().strip()
        if len(text) > max_chars:
            text = text[-max_chars:]
            newline = text.find('\n')
            if 0 <= newline < len(text) - 1:
                text = text[newline + 1:]
        return text


async def drain(
    stream: asyncio.StreamReader,
    buffer: DiagnosticBuffer,
    read_size: int = DIAGNOSTIC_READ_SIZE
) -> DiagnosticBuffer:
    """
    Read stderr until end of stream.
    Must run concurrently with the stdout relay: a full stderr pipe blocks the
    child, and reading continues past the cap so the child never stalls here.
    """
    while True:
        chunk = await stream.read(read_size)
        if not chunk:
            break
        buffer.append(chunk)
    return buffer
