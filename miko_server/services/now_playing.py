# Copyright (C) 2024 RompMusic Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""In-memory now-playing table, one entry per (username, client)."""

import threading
import zlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

EXPIRY = timedelta(minutes=10)
UNKNOWN_CLIENT = "Unknown"


@dataclass
class NowPlayingRecord:
    username: str
    song_id: str
    player_id: int
    player_name: str
    updated_at: datetime

    def minutes_ago(self, now: datetime) -> int:
        return int((now - self.updated_at).total_seconds() // 60)


class NowPlaying:
    def __init__(self, expiry: timedelta = EXPIRY):
        self.expiry = expiry
        self._lock = threading.Lock()
        self._records: dict[tuple[str, str], NowPlayingRecord] = {}

    def update(self, username: str, song_id: str, client: str = "") -> NowPlayingRecord:
        client = client or UNKNOWN_CLIENT
        record = NowPlayingRecord(
            username=username,
            song_id=song_id,
            player_id=zlib.adler32(client.encode("utf-8")),
            player_name=client,
            updated_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._records[(username, client)] = record
        return record

    def remove(self, username: str, client: str = "") -> None:
        with self._lock:
            self._records.pop((username, client or UNKNOWN_CLIENT), None)

    def entries(self) -> list[NowPlayingRecord]:
        """Live entries, newest first; expired ones are dropped here."""
        now = datetime.now(timezone.utc)
        with self._lock:
            for key in [k for k, r in self._records.items() if now - r.updated_at > self.expiry]:
                del self._records[key]
            live = list(self._records.values())
        return sorted(live, key=lambda r: r.updated_at, reverse=True)
