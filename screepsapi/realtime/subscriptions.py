"""
Subscription bookkeeping.

Reference counts per topic so several listeners can share one server-side
subscription, and so the active set can be replayed after a reconnect.
"""

from __future__ import annotations

from typing import Dict, List, Mapping


class SubscriptionRegistry:
    """Topic -> reference count. Counts never drop below zero."""

    def __init__(self, prune: bool = True):
        self._counts: Dict[str, int] = {}
        self._seen: set = set()
        self._prune = prune

    def increment(self, topic: str) -> int:
        count = self._counts.get(topic, 0) + 1
        self._counts[topic] = count
        self._seen.add(topic)
        return count

    def decrement(self, topic: str) -> int:
        count = max(0, self._counts.get(topic, 0) - 1)
        if count == 0 and self._prune:
            self._counts.pop(topic, None)
        elif topic in self._counts:
            self._counts[topic] = count
        return count

    def count(self, topic: str) -> int:
        return self._counts.get(topic, 0)

    def active_topics(self) -> List[str]:
        """Topics with a positive count, for replay after reconnect."""
        return [topic for topic, count in self._counts.items() if count > 0]

    def was_subscribed(self, topic: str) -> bool:
        """True if the topic was subscribed at any point since the last clear."""
        return topic in self._seen

    def snapshot(self) -> Mapping[str, int]:
        return dict(self._counts)

    def clear(self) -> None:
        self._counts.clear()
        self._seen.clear()

    def __contains__(self, topic: str) -> bool:
        return self.count(topic) > 0

    def __len__(self) -> int:
        return len(self.active_topics())
