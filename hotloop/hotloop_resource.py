from __future__ import annotations
import os
import sys
import logging
from importlib import resources
from typing import Optional

from hotloop.hotloop_config import HotloopConfig
from hotloop.hotloop_errors import ResourceNotFoundError

logger = logging.getLogger(__name__)


def _strip_scheme(resource_id: str) -> tuple[Optional[str], str]:
    if "://" in resource_id:
        scheme, rest = resource_id.split("://", 1)
        return scheme.lower(), rest
    return None, resource_id


def resolve_path(resource_id: str, base_dir: Optional[str] = None) -> Optional[str]:
    """
    Map a filesystem-style locator to an existing file path, or None.

    Accepts 'file://...' or a bare path. Relative names are tried against
    base_dir (or the CWD) first and then against every sys.path entry, the
    same way a class loader searches its classpath.
    """
    scheme, rest = _strip_scheme(resource_id)
    if scheme not in (None, "file"):
        raise ValueError(f"Not a filesystem locator: {resource_id}")
    # Absolute filesystem root
    if rest.startswith("/"):
        path = "/" + rest.lstrip("/")
        return path if os.path.isfile(path) else None
    # Home directory
    if rest.startswith("~"):
        path = os.path.expanduser(rest)
        return path if os.path.isfile(path) else None
    # Windows drive paths arrive as-is
    if os.path.isabs(rest):
        return rest if os.path.isfile(rest) else None
    base = base_dir or os.getcwd()
    candidate = os.path.normpath(os.path.join(base, rest))
    if os.path.isfile(candidate):
        return candidate
    # Explicitly relative names stay anchored to the base directory
    if rest.startswith("./") or rest.startswith("../"):
        return None
    for entry in sys.path:
        root = entry or os.getcwd()
        candidate = os.path.join(root, rest)
        if os.path.isfile(candidate):
            logger.debug("Resolved %r on search path entry %r", resource_id, root)
            return candidate
    return None


def _read_package_resource(resource_id: str, encoding: str) -> str:
    _, rest = _strip_scheme(resource_id)
    package, _, name = rest.partition("/")
    if not package or not name:
        raise ResourceNotFoundError(resource_id, "expected pkg://<package>/<resource>")
    try:
        root = resources.files(package)
    except ModuleNotFoundError as e:
        raise ResourceNotFoundError(resource_id, f"no package {package!r}") from e
    node = root.joinpath(*name.split("/"))
    if not node.is_file():
        raise ResourceNotFoundError(resource_id)
    return node.read_text(encoding=encoding)


async def read_text(resource_id: str, config: Optional[HotloopConfig] = None, *, base_dir: Optional[str] = None) -> str:
    """Return the full current text of a resource; raise ResourceNotFoundError when absent."""
    cfg = config or HotloopConfig()
    scheme, _ = _strip_scheme(resource_id)

    if scheme in ("http", "https"):
        from hotloop.hotloop_http import http_get_text  # lazy import keeps httpx off the file-only path
        return await http_get_text(resource_id, cfg)

    if scheme == "pkg":
        return _read_package_resource(resource_id, cfg.encoding)

    if scheme not in (None, "file"):
        raise ResourceNotFoundError(resource_id, f"unsupported scheme {scheme!r}")

    path = resolve_path(resource_id, base_dir)
    if path is None:
        raise ResourceNotFoundError(resource_id)
    try:
        with open(path, "r", encoding=cfg.encoding) as f:
            return f.read()
    except FileNotFoundError as e:
        # Deleted between resolution and read
        raise ResourceNotFoundError(resource_id) from e
