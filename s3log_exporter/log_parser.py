"""
Parsing of raw S3 access-log lines into method/size observations.

A line such as

    ... "GET /bucket/key HTTP/1.1" 200 - 5120 4096 12 ...

yields Observation(method="GET", request_size=4096, response_size=5120).
The first size field after the status and error/agent token is the response
size, the second is the request size, the third is not retained.
A "-" in a size field means unknown and contributes nothing for that field.
"""

import re
from typing import Iterable, Iterator, List, Optional, Union

from .models import Observation


_LOG_ENTRY_RE = re.compile(
    r'(GET|PUT|HEAD|POST) /[^"]*" \d+ \S+ (\d+|-) (\d+|-) (\d+|-)'
)


def _size(field: str) -> Optional[int]:
    if field == "-":
        return None
    try:
        return int(field)
    except ValueError:
        return None


def parse_log_line(line: Union[str, bytes]) -> List[Observation]:
    """
    Parse one raw log line.

    Returns every embedded record in order of appearance; a line that does
    not match yields an empty list.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")

    return [
        Observation(
            method=match.group(1),
            request_size=_size(match.group(3)),
            response_size=_size(match.group(2)),
        )
        for match in _LOG_ENTRY_RE.finditer(line)
    ]


def parse_log_lines(lines: Iterable[Union[str, bytes]]) -> Iterator[Observation]:
    """Parse many lines, yielding observations in order."""
    for line in lines:
        yield from parse_log_line(line)
