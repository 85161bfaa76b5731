from typing import Literal

OffsetEncoding = Literal["utf-8", "utf-16", "utf-32"]


def _units(ch: str, encoding: OffsetEncoding) -> int:
    if encoding == "utf-8":
        return len(ch.encode("utf-8"))
    if encoding == "utf-16":
        return 2 if ord(ch) > 0xFFFF else 1
    return 1


def character_to_index(line: str, character: int, encoding: OffsetEncoding = "utf-16") -> int:
    """Convert an LSP ``character`` (in code units of ``encoding``) to a str index.

    Positions past the end of the line clamp to the line length.
    """
    if encoding == "utf-32":
        return min(character, len(line))
    units = 0
    for index, ch in enumerate(line):
        if units >= character:
            return index
        units += _units(ch, encoding)
    return len(line)


def position_to_offset(
    content: str, line: int, character: int, encoding: OffsetEncoding = "utf-16"
) -> int:
    lines = content.splitlines(keepends=True)
    offset = 0
    for i, ln in enumerate(lines):
        if i == line:
            text = ln.rstrip("\r\n")
            return offset + character_to_index(text, character, encoding)
        offset += len(ln)
    return offset
