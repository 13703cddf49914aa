"""Exception and warning types raised by the JIM / Aseprite converter."""

from __future__ import annotations


class JimConverterError(Exception):
    """Base class for every error raised by this package."""


class StructuralParseError(JimConverterError, ValueError):
    """A binary container could not be decoded. Always fatal for the parse."""


class TruncatedDataError(StructuralParseError):
    """Raised when a read runs past the end of the buffer."""

    def __init__(self, what: str, offset: int, size: int, available: int):
        super().__init__(
            f"Buffer too short for {what}: need {size} bytes at offset {offset}, "
            f"buffer is {available} bytes"
        )
        self.offset = offset
        self.size = size
        self.available = available


class ImplausibleStructureError(StructuralParseError):
    """The buffer is long enough but its layout cannot be valid."""


class InvalidMagicError(ImplausibleStructureError):
    """A magic number did not match."""


class UnsupportedColorDepthError(ImplausibleStructureError):
    """Only 8bpp indexed sprite documents are supported."""


class ConversionError(JimConverterError):
    """Custom exception for conversion errors."""


class TileIndexOverflowError(ConversionError):
    """A map cell references a tile slot that does not fit in 11 bits."""


class JimConverterWarning(RuntimeWarning):
    """Base class for recoverable conditions reported through ``warnings``."""


class CelDecompressionWarning(JimConverterWarning):
    """A cel payload could not be inflated; the cel was skipped."""


class PixelLossWarning(JimConverterWarning):
    """Pixels outside a block's chosen palette bank were replaced by index 0."""
