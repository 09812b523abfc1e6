"""
Exceptions raised by the change-stream replication engine.

Feed errors are fatal for the current run; CheckpointError never leaves
CheckpointStore.save().
"""


class CDCError(Exception):
    """Base exception for CDC errors."""
    pass


class FeedCreationError(CDCError):
    """Change stream could not be opened (bad pipeline, connectivity)."""
    pass


class FeedResumeError(CDCError):
    """Resume token rejected by the source (history lost or invalid token)."""
    pass


class FeedIterationError(CDCError):
    """Change stream failed while being iterated."""
    pass


class CheckpointError(CDCError):
    """Error saving/loading checkpoint."""
    pass
