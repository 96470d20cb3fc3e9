"""Deserializers - turn a response body stream into a typed value.

A Deserializer receives the (binary, file-like) response body and the
ExecutionContext of the call, and returns the payload for the
RestCommandResult. Deserializers are stateless, so one instance can serve
concurrent executions.

Decoding policy:
    StringDeserializer, BytesDeserializer, ImageDeserializer and
    FileDeserializer raise DeserializationError on bad input.
    JsonDeserializer, JsonArrayDeserializer and XmlDeserializer are permissive:
    a malformed document is logged and the payload is None.
"""

from __future__ import annotations

import io
import json
import logging
import os
import shutil
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, BinaryIO, Generic, TypeVar

from PIL import Image

from rest_command.models import ExecutionContext
from rest_command.xml_body import xml_to_dict

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ENCODING = "UTF-8"

# Buffer used when streaming a body to disk
COPY_BUFFER_SIZE = 16 * 1024


class DeserializationError(Exception):
    """Raised when a response body cannot be turned into the requested type."""


class Deserializer(ABC, Generic[T]):
    """Strategy converting a response body stream into a value of type T."""

    @abstractmethod
    def realise(self, stream: BinaryIO, context: ExecutionContext | None = None) -> T:
        """Read stream and build the payload.

        Raises:
            DeserializationError: If the body cannot be decoded.
        """


def _content_type_charset(context: ExecutionContext | None) -> str | None:
    """Charset parameter of the response Content-Type, if any."""
    if context is None:
        return None
    content_type = context.header("content-type")
    if not content_type:
        return None
    for part in content_type.split(";")[1:]:
        name, _, value = part.strip().partition("=")
        if name.lower() == "charset" and value:
            return value.strip('"')
    return None


class StringDeserializer(Deserializer[str]):
    """Reads the whole body as text and closes the stream.

    With encoding=None the charset announced in the response Content-Type is
    used, falling back to UTF-8.
    """

    def __init__(self, encoding: str | None = DEFAULT_ENCODING) -> None:
        self._encoding = encoding

    @classmethod
    def default(cls) -> StringDeserializer:
        """Shared UTF-8 instance."""
        return _DEFAULT_STRING_DESERIALIZER

    @property
    def encoding(self) -> str | None:
        return self._encoding

    def realise(self, stream: BinaryIO, context: ExecutionContext | None = None) -> str:
        encoding = self._encoding or _content_type_charset(context) or DEFAULT_ENCODING
        try:
            data = stream.read()
        finally:
            stream.close()
        try:
            return data.decode(encoding)
        except (LookupError, UnicodeDecodeError) as e:
            raise DeserializationError(f"Cannot decode body as {encoding}: {e}") from e


_DEFAULT_STRING_DESERIALIZER = StringDeserializer()
_CONTENT_TYPE_STRING_DESERIALIZER = StringDeserializer(encoding=None)


class BytesDeserializer(Deserializer[bytes]):
    """Returns the raw body bytes."""

    def realise(self, stream: BinaryIO, context: ExecutionContext | None = None) -> bytes:
        try:
            return stream.read()
        finally:
            stream.close()


def _load_json(stream: BinaryIO, context: ExecutionContext | None) -> Any:
    """Decode the body with the response charset and parse it; None if malformed."""
    text = _CONTENT_TYPE_STRING_DESERIALIZER.realise(stream, context)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("Response body is not valid JSON: %s", e)
    except RecursionError:
        logger.warning("Response body is nested too deeply to parse as JSON")
    return None


class JsonDeserializer(Deserializer[dict[str, Any] | None]):
    """Parses a JSON object body. Malformed JSON or a non-object yields None."""

    def realise(
        self, stream: BinaryIO, context: ExecutionContext | None = None
    ) -> dict[str, Any] | None:
        document = _load_json(stream, context)
        if document is not None and not isinstance(document, dict):
            logger.warning("Expected a JSON object, got %s", type(document).__name__)
            return None
        return document


class JsonArrayDeserializer(Deserializer[list[Any] | None]):
    """Parses a JSON array body. Malformed JSON or a non-array yields None."""

    def realise(
        self, stream: BinaryIO, context: ExecutionContext | None = None
    ) -> list[Any] | None:
        document = _load_json(stream, context)
        if document is not None and not isinstance(document, list):
            logger.warning("Expected a JSON array, got %s", type(document).__name__)
            return None
        return document


class XmlDeserializer(Deserializer[dict[str, Any] | None]):
    """Parses an XML body with xml_to_dict. Malformed XML yields None."""

    def __init__(self, force_list: set[str] | None = None) -> None:
        self._force_list = set(force_list or ())

    def realise(
        self, stream: BinaryIO, context: ExecutionContext | None = None
    ) -> dict[str, Any] | None:
        data = BytesDeserializer().realise(stream, context)
        try:
            return xml_to_dict(data, self._force_list)
        except ET.ParseError as e:
            logger.warning("Response body is not well-formed XML: %s", e)
        except RecursionError:
            logger.warning("Response body is nested too deeply to parse as XML")
        return None


class ImageDeserializer(Deserializer[Image.Image]):
    """Decodes the body into a Pillow image.

    Images above Pillow's MAX_IMAGE_PIXELS bomb limit are rejected like any
    other undecodable body.
    """

    def realise(self, stream: BinaryIO, context: ExecutionContext | None = None) -> Image.Image:
        data = BytesDeserializer().realise(stream, context)
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (OSError, Image.DecompressionBombError, ValueError) as e:
            raise DeserializationError(f"Cannot decode image: {e}") from e
        return image


class FileDeserializer(Deserializer[None]):
    """Saves the body to a file.

    The body is copied to a sibling ``<name>_tmp`` file and renamed into
    place only after the copy completes, so a failed download never leaves a
    truncated target. With overwrite=False an existing target is left alone
    and nothing is read.
    """

    def __init__(self, path: str | os.PathLike, overwrite: bool = True) -> None:
        self._path = Path(path)
        self._overwrite = overwrite

    @classmethod
    def in_directory(
        cls, directory: str | os.PathLike, file_name: str, overwrite: bool = True
    ) -> FileDeserializer:
        return cls(Path(directory) / file_name, overwrite)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def temp_path(self) -> Path:
        return self._path.with_name(self._path.name + "_tmp")

    def realise(self, stream: BinaryIO, context: ExecutionContext | None = None) -> None:
        try:
            if self._path.exists() and not self._overwrite:
                logger.debug("%s is already present and overwrite is False", self._path)
                return None

            parent = self._path.parent
            if not parent.exists():
                parent.mkdir(parents=True, exist_ok=True)
                logger.debug("Folder %s created", parent)

            temp_path = self.temp_path
            try:
                with open(temp_path, "wb") as out:
                    shutil.copyfileobj(stream, out, COPY_BUFFER_SIZE)
                os.replace(temp_path, self._path)
            except OSError as e:
                temp_path.unlink(missing_ok=True)
                raise DeserializationError(f"Error saving {self._path}: {e}") from e
            except BaseException:
                temp_path.unlink(missing_ok=True)
                raise

            logger.debug("Response body saved to %s", self._path)
            return None
        finally:
            stream.close()
