"""Line-oriented batching of streamed assistant text for PII scanning.

The stream orchestrator keeps a side buffer of text that has already been
sent to the client but not yet scanned. After every delta it asks
``extract_batches`` which complete pieces of that buffer are ready for the
detectors. Batches are cut at newline boundaries so that a PII value is
rarely split across two detector calls; a hard cap forces a cut when the
model emits long runs without a newline.

Usage::

    buffer += delta
    batches, buffer = extract_batches(buffer, settings.PII_MAX_BATCH_CHARS)
    for batch in batches:
        schedule_scan(batch, base_offset)
        base_offset += len(batch)

Concatenating every batch and the final remaining buffer always gives back
the input, so offsets computed by summing batch lengths stay exact.
"""


def _split_lines(region: str) -> list[str]:
    """Split ``region`` into ``\\n``-terminated lines.

    ``region`` must end with ``\\n``. A ``\\r`` before the newline stays part
    of its line.
    """
    lines: list[str] = []
    start = 0
    while start < len(region):
        end = region.index("\n", start) + 1
        lines.append(region[start:end])
        start = end
    return lines


def _chunk_line(line: str, max_batch_chars: int) -> list[str]:
    """Cut an over-long line into pieces of at most ``max_batch_chars``.

    Only the final piece keeps the trailing newline.
    """
    if len(line) <= max_batch_chars:
        return [line]
    return [line[i:i + max_batch_chars] for i in range(0, len(line), max_batch_chars)]


def extract_batches(buffer: str, max_batch_chars: int) -> tuple[list[str], str]:
    """Take the scan-ready batches off the front of ``buffer``.

    Args:
        buffer: Unscanned text, in stream order.
        max_batch_chars: Upper bound on a single batch's length.

    Returns:
        ``(batches, remaining)`` where ``"".join(batches) + remaining ==
        buffer``.

    Rules:
        - Empty buffer or ``max_batch_chars < 1``: nothing is extracted.
        - No newline: forced batches of exactly ``max_batch_chars`` are cut
          while the buffer holds at least that many characters.
        - Otherwise everything up to and including the last newline is
          split into lines (over-long lines are chunked). When that region
          holds several lines and the buffer ends exactly on the newline,
          the newest line is held back until more text arrives or the
          stream is flushed.
    """
    if not buffer or max_batch_chars < 1:
        return [], buffer

    last_newline = buffer.rfind("\n")
    if last_newline == -1:
        batches: list[str] = []
        remaining = buffer
        while len(remaining) >= max_batch_chars:
            batches.append(remaining[:max_batch_chars])
            remaining = remaining[max_batch_chars:]
        return batches, remaining

    completed = buffer[:last_newline + 1]
    remaining = buffer[last_newline + 1:]
    lines = _split_lines(completed)

    if not remaining and len(lines) > 1:
        remaining = lines.pop()

    batches = []
    for line in lines:
        batches.extend(_chunk_line(line, max_batch_chars))
    return batches, remaining
