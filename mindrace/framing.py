"""
Line framing for the device text stream.

Devices print one JSON object per line. Reads arrive in arbitrary chunks,
so each link keeps the unterminated tail until its newline shows up.
"""

from typing import List


class LineFramer:
    def __init__(self):
        self._buffer = ""

    def feed(self, chunk: str) -> List[str]:
        records = []
        if not chunk:
            return records
        self._buffer += chunk
        while True:
            idx = self._buffer.find("\n")
            if idx < 0:
                break
            line = self._buffer[:idx]
            self._buffer = self._buffer[idx + 1:]
            # Arduino println() terminates with CRLF
            if line.endswith("\r"):
                line = line[:-1]
            records.append(line)
        return records

    @property
    def pending(self) -> str:
        return self._buffer

    def reset(self):
        self._buffer = ""
