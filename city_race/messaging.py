"""Admin <-> team chat with per-side read flags.

Every message has exactly one ADMIN side. Each side owns one flag:

    read_by_team   flipped by the team
    read_by_admin  flipped by the organizers

The sender's own flag is set at creation. Unread counts are never stored;
they are always the live size of `{to: X, read_by_X: false}`.

A Conversation is one viewer's open chat window. It subscribes to both
directions; the first snapshot marks every unread incoming message read,
later snapshots only mark the messages that just arrived.
"""

from __future__ import annotations

import inspect
import logging
from collections import Counter
from typing import Awaitable, Callable

from city_race.models import ADMIN, Message
from city_race.repository import MESSAGES, GameRepository, parse
from city_race.store import DocumentStore, QuerySnapshot, Subscription

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[list[Message]], "Awaitable[None] | None"]


def read_flag(viewer: str) -> str:
    return "read_by_admin" if viewer == ADMIN else "read_by_team"


async def _call(callback: Callable, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class Conversation:
    def __init__(
        self,
        store: DocumentStore,
        team_id: str,
        viewer: str,
        on_update: UpdateCallback | None = None,
    ) -> None:
        self.store = store
        self.team_id = team_id
        self.viewer = viewer
        self.other = team_id if viewer == ADMIN else ADMIN
        self._on_update = on_update
        self._incoming: list[Message] = []
        self._outgoing: list[Message] = []
        self._subs: list[Subscription] = []
        self._initial = True

    @property
    def messages(self) -> list[Message]:
        return sorted(self._incoming + self._outgoing, key=lambda m: (m.timestamp, m.id))

    @property
    def closed(self) -> bool:
        return not self._subs

    async def open(self) -> Conversation:
        self._subs.append(await self.store.subscribe(
            MESSAGES,
            self._on_incoming,
            where=[("from", "==", self.other), ("to", "==", self.viewer)],
            order_by="timestamp",
        ))
        self._subs.append(await self.store.subscribe(
            MESSAGES,
            self._on_outgoing,
            where=[("from", "==", self.viewer), ("to", "==", self.other)],
            order_by="timestamp",
        ))
        return self

    def close(self) -> None:
        for sub in self._subs:
            sub.unsubscribe()
        self._subs = []

    async def _notify(self) -> None:
        if self._on_update is not None and not self.closed:
            await _call(self._on_update, self.messages)

    async def _on_incoming(self, snapshot: QuerySnapshot) -> None:
        self._incoming = [parse(Message, d, MESSAGES) for d in snapshot.docs]
        flag = read_flag(self.viewer)
        if self._initial:
            self._initial = False
            unread = [d["id"] for d in snapshot.docs if not d.get(flag)]
        else:
            unread = [c.doc["id"] for c in snapshot.changes if c.type == "added" and not c.doc.get(flag)]
        if unread:
            batch = self.store.batch()
            for message_id in unread:
                batch.update(MESSAGES, message_id, {flag: True})
            await batch.commit()
            logger.debug("%s read %d message(s) from %s", self.viewer, len(unread), self.other)
        await self._notify()

    async def _on_outgoing(self, snapshot: QuerySnapshot) -> None:
        self._outgoing = [parse(Message, d, MESSAGES) for d in snapshot.docs]
        await self._notify()


class MessagingTracker:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.repo = GameRepository(store)

    async def send(self, sender: str, recipient: str, text: str) -> Message:
        if (sender == ADMIN) == (recipient == ADMIN):
            raise ValueError("a message goes between the organizers and exactly one team")
        text = text.strip()
        if not text:
            raise ValueError("message text is empty")
        await self.repo.get_team(recipient if sender == ADMIN else sender)
        message_id = await self.store.add(MESSAGES, {
            "from": sender,
            "to": recipient,
            "text": text,
            "timestamp": self.store.server_timestamp(),
            "read_by_team": sender != ADMIN,
            "read_by_admin": sender == ADMIN,
        })
        logger.debug("message %s: %s -> %s", message_id, sender, recipient)
        return parse(Message, await self.store.get(MESSAGES, message_id), MESSAGES)

    async def broadcast(self, text: str) -> list[Message]:
        sent = [await self.send(ADMIN, team.id, text) for team in await self.repo.list_teams()]
        logger.info("broadcast to %d team(s)", len(sent))
        return sent

    async def history(self, team_id: str) -> list[Message]:
        docs = await self.store.query(MESSAGES, where=[("from", "==", team_id)])
        docs += await self.store.query(MESSAGES, where=[("to", "==", team_id)])
        return sorted((parse(Message, d, MESSAGES) for d in docs), key=lambda m: (m.timestamp, m.id))

    async def open_conversation(
        self,
        team_id: str,
        viewer: str,
        on_update: UpdateCallback | None = None,
    ) -> Conversation:
        if viewer not in (ADMIN, team_id):
            raise ValueError(f"{viewer!r} is not a party to team {team_id}'s chat")
        await self.repo.get_team(team_id)
        return await Conversation(self.store, team_id, viewer, on_update).open()

    # ------------------------------------------------------------------
    # Unread counts
    # ------------------------------------------------------------------

    def _unread_where(self, recipient: str, sender: str | None = None) -> list:
        where = [("to", "==", recipient), (read_flag(recipient), "==", False)]
        if sender is not None:
            where.append(("from", "==", sender))
        return where

    async def unread_count(self, recipient: str, sender: str | None = None) -> int:
        return len(await self.store.query(MESSAGES, where=self._unread_where(recipient, sender)))

    async def unread_by_team(self) -> dict[str, int]:
        """Admin view: unread messages per sending team."""
        docs = await self.store.query(MESSAGES, where=self._unread_where(ADMIN))
        return dict(Counter(d["from"] for d in docs))

    async def has_unread(self, team_id: str) -> bool:
        return await self.unread_count(team_id) > 0

    async def watch_unread(
        self,
        recipient: str,
        listener: Callable[[int], "Awaitable[None] | None"],
    ) -> Subscription:
        async def on_snapshot(snapshot: QuerySnapshot) -> None:
            await _call(listener, snapshot.size)

        return await self.store.subscribe(MESSAGES, on_snapshot, where=self._unread_where(recipient))
