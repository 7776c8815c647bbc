import logging
from pathlib import Path
from typing import Iterable

import aiofiles
import aiofiles.os

from helpdesk.config import get_settings


logger = logging.getLogger(__name__)


class LocalFileStorage:
    """Named blobs under a bucket directory, served from ``base_url``."""

    def __init__(self, root: str, base_url: str, bucket: str) -> None:
        self._root = Path(root) / bucket
        self._base_url = base_url.rstrip("/") + "/" + bucket

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if self._root.resolve() not in target.parents:
            raise ValueError("Invalid storage path")
        return target

    async def upload(self, path: str, data: bytes, upsert: bool = False) -> str:
        target = self._resolve(path)
        if target.exists() and not upsert:
            raise FileExistsError(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, "wb") as fh:
            await fh.write(data)
        return path

    def get_public_url(self, path: str) -> str:
        return f"{self._base_url}/{path}"

    async def remove(self, paths: Iterable[str]) -> None:
        for path in paths:
            try:
                await aiofiles.os.remove(self._resolve(path))
            except FileNotFoundError:
                continue
            except ValueError:
                logger.warning("Refusing to remove %s", path)


def get_avatar_storage() -> LocalFileStorage:
    settings = get_settings()
    return LocalFileStorage(settings.MEDIA_ROOT, settings.MEDIA_URL, "avatars")
