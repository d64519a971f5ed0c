# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Where the raw fields of an item come from.

DirectoryContentSource reads one JSON object per item from
<root>/<content_type>/<content_id>.json. Items that are hidden, not
approved or marked as spam are not eligible for indexing.
"""
import json
from pathlib import Path
from typing import Optional

from .content import ContentType
from .log import get_logger

log = get_logger(__name__)


class ContentSource:
    def get_content(self, content_type: ContentType, content_id: str) -> Optional[dict]:
        """Raw fields of an eligible item, or None."""
        raise NotImplementedError

    def list_ids(self, content_type: ContentType) -> list[str]:
        raise NotImplementedError

    def eligible_ids(self, content_type: ContentType) -> list[str]:
        return [i for i in self.list_ids(content_type) if self.get_content(content_type, i) is not None]


def is_eligible(fields: dict) -> bool:
    if fields.get("visible") is False:
        return False
    if fields.get("approved") is False:
        return False
    if fields.get("spam") is True:
        return False
    return True


class DirectoryContentSource(ContentSource):
    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, content_type: ContentType, content_id: str) -> Path:
        return self.root / ContentType(content_type).value / f"{content_id}.json"

    def get_content(self, content_type: ContentType, content_id: str) -> Optional[dict]:
        path = self._path(content_type, content_id)
        # ids come from the queue, never let them escape the type directory
        if path.parent.resolve() != (self.root / ContentType(content_type).value).resolve():
            return None
        if not path.is_file():
            return None
        try:
            fields = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("content_unreadable", path=str(path), error=str(e))
            return None
        if not isinstance(fields, dict) or not is_eligible(fields):
            return None
        return fields

    def list_ids(self, content_type: ContentType) -> list[str]:
        type_dir = self.root / ContentType(content_type).value
        if not type_dir.is_dir():
            return []
        return sorted(p.stem for p in type_dir.glob("*.json"))
