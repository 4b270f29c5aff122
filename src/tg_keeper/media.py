"""Classify message media and fetch it in the background.

Files land in ``<media>/chat_<chat_id>/<message_id>.<ext>`` with an optional
``<message_id>.<ext>_thumb.jpg`` next to them.  The dispatcher returns the
relative paths as soon as the downloads are scheduled; the bytes may arrive
later or never.
"""

from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Union

from log_utils import get_logger

from .helpers import message_chat_id, progress_logger

log = get_logger().bind(module=__name__)

STICKER_ANIMATED_MIME = "application/x-tgsticker"
NOT_DOWNLOADABLE = {
    "MessageMediaPoll",
    "MessageMediaGeo",
    "MessageMediaGeoLive",
    "MessageMediaVenue",
    "MessageMediaDice",
    "MessageMediaWebPage",
}
# "No thumbnail" markers and vector outlines never count as a thumbnail.
EXCLUDED_THUMBS = {"PhotoSizeEmpty", "PhotoPathSize"}


@dataclass(frozen=True)
class Photo:
    photo: object


@dataclass(frozen=True)
class Sticker:
    document: object
    animated: bool
    thumb: object | None = None


@dataclass(frozen=True)
class Document:
    document: object
    extension: str
    thumb: object | None = None


@dataclass(frozen=True)
class Contact:
    contact: object


@dataclass(frozen=True)
class NotDownloadable:
    reason: str


Downloadable = Union[Photo, Sticker, Document, Contact, NotDownloadable]


@dataclass(frozen=True)
class MediaPaths:
    media_rel_path: str
    thumbnail_rel_path: str | None = None


def _thumb_width(thumb) -> int:
    if type(thumb).__name__ == "PhotoStrippedSize":
        return 0
    return getattr(thumb, "w", 0) or 0


def pick_largest_thumb(thumbs):
    """Return the widest usable thumbnail or ``None``."""

    candidates = [t for t in thumbs or [] if type(t).__name__ not in EXCLUDED_THUMBS]
    if not candidates:
        return None
    return max(candidates, key=_thumb_width)


def _attribute(document, name: str):
    for attr in getattr(document, "attributes", None) or []:
        if type(attr).__name__ == name:
            return attr
    return None


def document_extension(document) -> str:
    """Extension from the file name, then the MIME type, then ``bin``."""

    attr = _attribute(document, "DocumentAttributeFilename")
    file_name = getattr(attr, "file_name", "") or ""
    suffix = Path(file_name).suffix
    if suffix:
        return suffix[1:].lower()
    mime_type = getattr(document, "mime_type", None)
    if mime_type:
        guessed = mimetypes.guess_extension(mime_type)
        if guessed:
            return guessed[1:]
    return "bin"


def classify_media(media) -> Downloadable:
    """Map a raw ``MessageMedia*`` object onto a downloadable kind."""

    kind = type(media).__name__
    if kind == "MessageMediaPhoto":
        photo = getattr(media, "photo", None)
        if type(photo).__name__ != "Photo":
            return NotDownloadable("photo unavailable")
        return Photo(photo)
    if kind == "MessageMediaDocument":
        document = getattr(media, "document", None)
        if type(document).__name__ != "Document":
            return NotDownloadable("document unavailable")
        thumb = pick_largest_thumb(getattr(document, "thumbs", None))
        if _attribute(document, "DocumentAttributeSticker") is not None:
            animated = getattr(document, "mime_type", None) == STICKER_ANIMATED_MIME
            return Sticker(document, animated, thumb)
        return Document(document, document_extension(document), thumb)
    if kind == "MessageMediaContact":
        return Contact(media)
    if kind in NOT_DOWNLOADABLE:
        return NotDownloadable(kind)
    log.warning("Unsupported media", media=kind)
    return NotDownloadable(kind)


def media_extension(item: Downloadable) -> str:
    if isinstance(item, Photo):
        return "jpg"
    if isinstance(item, Sticker):
        return "tgs" if item.animated else "webp"
    if isinstance(item, Document):
        return item.extension
    if isinstance(item, Contact):
        return "vcf"
    raise ValueError(f"{item!r} has no file")


def _remote(item: Downloadable):
    """Return the object Telethon downloads for ``item``."""

    if isinstance(item, Photo):
        return item.photo
    if isinstance(item, (Sticker, Document)):
        return item.document
    return item.contact


Download = Callable[..., Awaitable[object]]


def telethon_downloader(client) -> Download:
    """Wrap ``client.download_media`` as the dispatcher's download primitive."""

    async def download(location, path: Path, *, thumb=None, progress_callback=None):
        return await client.download_media(
            location, file=str(path), thumb=thumb, progress_callback=progress_callback
        )

    return download


class MediaDispatcher:
    """Start detached downloads for message media.

    There is no limit on concurrent downloads and no retry; a failed fetch
    is logged and forgotten.
    """

    def __init__(self, download: Download, media_root: Path) -> None:
        self.download = download
        self.media_root = Path(media_root)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, msg) -> MediaPaths | None:
        """Schedule downloads for ``msg`` and return their relative paths."""

        media = getattr(msg, "media", None)
        if media is None:
            return None
        item = classify_media(media)
        if isinstance(item, NotDownloadable):
            log.debug("Media not downloadable", id=msg.id, reason=item.reason)
            return None

        chat_id = message_chat_id(msg)
        if chat_id is None:
            raise ValueError(f"Message {msg.id} has media but no chat id")
        file_name = f"{msg.id}.{media_extension(item)}"
        chat_dir = f"chat_{chat_id}"

        media_rel_path = f"{chat_dir}/{file_name}"
        self._spawn(_remote(item), media_rel_path)

        thumbnail_rel_path = None
        thumb = getattr(item, "thumb", None)
        if thumb is not None:
            thumbnail_rel_path = f"{chat_dir}/{file_name}_thumb.jpg"
            self._spawn(item.document, thumbnail_rel_path, thumb=thumb)
        return MediaPaths(media_rel_path, thumbnail_rel_path)

    def _spawn(self, location, rel_path: str, thumb=None) -> None:
        path = self.media_root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        log.info("Attempting to download media", path=rel_path)
        if path.exists():
            log.info("File already exists, overwriting", path=rel_path)
        task = asyncio.create_task(self._fetch(location, path, rel_path, thumb))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fetch(self, location, path: Path, rel_path: str, thumb) -> None:
        try:
            result = await self.download(
                location, path, thumb=thumb, progress_callback=progress_logger(rel_path)
            )
        except Exception:
            log.exception("Failed to download media", path=rel_path)
            return
        if result is None:
            log.error("Nothing was downloaded", path=rel_path)
            return
        log.info("Successfully downloaded", path=rel_path)
