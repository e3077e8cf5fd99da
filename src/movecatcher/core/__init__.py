"""
Core package.

Domain records, error types, pip arithmetic and the order-comment codec.
"""

from movecatcher.core.comment_codec import (
    CommentCodec,
    CommentTier,
    DecodedComment,
    render_sequence,
    parse_sequence,
)
from movecatcher.core.errors import (
    MoveCatcherError,
    GateDenied,
    SubmissionFailed,
    ReconciliationConflict,
    MalformedIdentifier,
    VenueError,
    VenueTransientError,
    RequoteError,
    VenueTimeoutError,
    VenueFatalError,
)
from movecatcher.core.models import (
    BUY,
    SELL,
    OrderKind,
    Quote,
    Position,
    PendingOrder,
    TradeRecord,
    OrderRequest,
    OrderSpec,
    OcoLevels,
    ClosedTrade,
    grid_stops,
    opposite,
)

__all__ = [
    "CommentCodec",
    "CommentTier",
    "DecodedComment",
    "render_sequence",
    "parse_sequence",
    "MoveCatcherError",
    "GateDenied",
    "SubmissionFailed",
    "ReconciliationConflict",
    "MalformedIdentifier",
    "VenueError",
    "VenueTransientError",
    "RequoteError",
    "VenueTimeoutError",
    "VenueFatalError",
    "BUY",
    "SELL",
    "OrderKind",
    "Quote",
    "Position",
    "PendingOrder",
    "TradeRecord",
    "OrderRequest",
    "OrderSpec",
    "OcoLevels",
    "ClosedTrade",
    "grid_stops",
    "opposite",
]
