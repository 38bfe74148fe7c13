from __future__ import annotations


class CommentStanceError(Exception):
    pass


class InvalidVideoReferenceError(CommentStanceError):
    pass
