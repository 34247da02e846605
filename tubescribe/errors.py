from __future__ import annotations


class TubescribeError(Exception):
    pass


class ValidationError(TubescribeError):
    pass


class CollaboratorError(TubescribeError):
    pass


class StorageError(TubescribeError):
    pass
