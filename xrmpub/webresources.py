"""Web resource types and local file discovery for resource creation."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import List

from xrmpub.errors import UnsupportedFileTypeError


class WebResourceType(IntEnum):
    HTML = 1
    CSS = 2
    JS = 3
    XML = 4
    PNG = 5
    JPG = 6
    GIF = 7
    XAP = 8
    XSL = 9
    ICO = 10
    SVG = 11
    RESX = 12


# Types offered by the resource listing (markup, style, script)
LISTED_TYPES = (WebResourceType.HTML, WebResourceType.CSS, WebResourceType.JS)

_EXTENSION_TYPES = {
    ".html": WebResourceType.HTML,
    ".htm": WebResourceType.HTML,
    ".css": WebResourceType.CSS,
    ".js": WebResourceType.JS,
    ".xml": WebResourceType.XML,
    ".png": WebResourceType.PNG,
    ".jpg": WebResourceType.JPG,
    ".jpeg": WebResourceType.JPG,
    ".gif": WebResourceType.GIF,
    ".xap": WebResourceType.XAP,
    ".xsl": WebResourceType.XSL,
    ".xslt": WebResourceType.XSL,
    ".ico": WebResourceType.ICO,
    ".svg": WebResourceType.SVG,
    ".resx": WebResourceType.RESX,
}


def resource_type_from_extension(filename: str | Path) -> WebResourceType:
    ext = Path(filename).suffix.lower()
    try:
        return _EXTENSION_TYPES[ext]
    except KeyError:
        raise UnsupportedFileTypeError(f"unsupported file type: {ext or '(none)'}") from None


@dataclass
class CreateFileInfo:
    """One local file queued for creation as a new web resource."""

    local_path: str
    web_resource_name: str
    resource_type: WebResourceType


def single_file(local_path: str | Path, web_resource_name: str) -> CreateFileInfo:
    resource_type = resource_type_from_extension(local_path)
    name = web_resource_name.strip()
    if not name:
        raise ValueError("web resource name cannot be empty")
    return CreateFileInfo(str(Path(local_path).resolve()), name, resource_type)


def scan_folder(folder: str | Path, prefix: str = "") -> List[CreateFileInfo]:
    """Collect supported files under ``folder``, named by their relative path.

    Unsupported extensions are skipped. Names use ``/`` separators and are
    prefixed with ``prefix`` verbatim (e.g. ``new_/app/``).
    """
    root = Path(folder).resolve()
    if not root.is_dir():
        raise NotADirectoryError(str(root))

    files: List[CreateFileInfo] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            try:
                resource_type = resource_type_from_extension(path)
            except UnsupportedFileTypeError:
                continue
            rel = path.relative_to(root).as_posix()
            files.append(CreateFileInfo(str(path), prefix + rel, resource_type))
    return files
