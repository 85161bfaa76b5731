from pathlib import Path
from urllib.parse import quote, unquote, urlparse


def path_to_uri(path: str | Path) -> str:
    path = Path(path).resolve()
    return "file://" + quote(str(path), safe="/:")


def uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise ValueError(f"Not a file URI: {uri}")
    return Path(unquote(parsed.path))


def is_within(path: Path, root: Path) -> bool:
    """True when ``path`` is ``root`` or lies below it, compared component-wise."""
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False
