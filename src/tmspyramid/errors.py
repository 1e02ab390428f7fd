"""Error taxonomy for pyramid builds."""

from __future__ import annotations


class PyramidError(RuntimeError):
    """Base class for fatal pyramid build errors."""


class ConsistencyError(PyramidError):
    """Fragments or payloads disagree with the pyramid geometry."""


class OrderingViolation(PyramidError):
    """A sorted sink received a key that is not strictly increasing."""


class UnsupportedPixelType(PyramidError):
    """A pixel kind without numeric semantics reached resampling or compositing."""


class MetadataError(PyramidError):
    """The pyramid descriptor is missing or describes invalid geometry."""


class ConfigError(PyramidError):
    """Build options or environment overrides cannot be parsed."""
