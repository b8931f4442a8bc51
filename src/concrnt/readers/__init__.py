"""Readers that page through timelines and follow them live."""

from concrnt.readers.query import Query, QueryTimelineReader
from concrnt.readers.subscription import Subscription, SubscriptionEvent
from concrnt.readers.timeline import TimelineReader

__all__ = [
    "Query",
    "QueryTimelineReader",
    "Subscription",
    "SubscriptionEvent",
    "TimelineReader",
]
