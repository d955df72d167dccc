"""Serialization errors."""


class FormatError(ValueError):
    """
    Input is not the expected file or snapshot shape.

    Fatal for the one import or restore that hit it; the stored dataset is
    left unchanged.
    """
    pass
