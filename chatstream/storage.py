"""
Storage collaborators: conversations, turns and provider profiles.

The orchestrator only relies on single-row atomic operations and on
"most recent N turns" retrieval. Two conversation stores are provided:

- MemoryConversationStore: dict-backed, for tests and ephemeral sessions
- SQLiteConversationStore: durable, stdlib sqlite3 in WAL mode

Both return copies; the store is the sole owner of authoritative state.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Optional, Protocol, Union

from chatstream.config import (
    Conversation,
    ProviderProfile,
    Role,
    TokenUsage,
    Turn,
    _now_ms,
    load_profiles_from_env,
)


class ConversationStore(Protocol):
    """Record-based interface to conversation and turn storage."""

    def insert_conversation(self, conversation: Conversation) -> None: ...
    def get_conversation(self, conversation_id: str) -> Optional[Conversation]: ...
    def update_conversation(self, conversation: Conversation) -> None: ...
    def touch_conversation(self, conversation_id: str, timestamp: Optional[int] = None) -> None: ...
    def delete_conversation(self, conversation_id: str) -> None: ...
    def list_conversations(self) -> list[Conversation]: ...

    def insert_turn(self, turn: Turn) -> None: ...
    def get_turn(self, turn_id: str) -> Optional[Turn]: ...
    def list_turns(self, conversation_id: str) -> list[Turn]: ...
    def recent_turns(self, conversation_id: str, limit: int) -> list[Turn]: ...
    def delete_turns(self, conversation_id: str) -> None: ...
    def update_turn_content(self, turn_id: str, content: str, timestamp: Optional[int] = None) -> None: ...
    def append_turn_content(self, turn_id: str, text: str, timestamp: Optional[int] = None) -> str: ...
    def set_generating(self, turn_id: str, generating: bool) -> None: ...
    def set_error(self, turn_id: str, error: str, error_code: Optional[int] = None) -> None: ...
    def update_token_usage(self, turn_id: str, usage: Optional[TokenUsage]) -> None: ...
    def update_finish_reason(self, turn_id: str, finish_reason: Optional[str]) -> None: ...
    def generating_turns(self, conversation_id: Optional[str] = None) -> list[Turn]: ...


# ─────────────────────────────────────────────────────────────────────
# IN-MEMORY STORE
# ─────────────────────────────────────────────────────────────────────

class MemoryConversationStore:
    """Dict-backed ConversationStore. Thread-safe via a single lock."""

    def __init__(self):
        self._lock = threading.RLock()
        self._conversations: dict[str, Conversation] = {}
        # Insertion order breaks created_at ties
        self._turns: dict[str, Turn] = {}

    def insert_conversation(self, conversation: Conversation) -> None:
        with self._lock:
            self._conversations[conversation.id] = conversation.model_copy(deep=True)

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            return conversation.model_copy(deep=True) if conversation else None

    def update_conversation(self, conversation: Conversation) -> None:
        with self._lock:
            if conversation.id in self._conversations:
                self._conversations[conversation.id] = conversation.model_copy(deep=True)

    def touch_conversation(self, conversation_id: str, timestamp: Optional[int] = None) -> None:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation:
                conversation.updated_at = timestamp or _now_ms()

    def delete_conversation(self, conversation_id: str) -> None:
        with self._lock:
            self._conversations.pop(conversation_id, None)
            self.delete_turns(conversation_id)

    def list_conversations(self) -> list[Conversation]:
        with self._lock:
            ordered = sorted(self._conversations.values(), key=lambda c: c.updated_at, reverse=True)
            return [c.model_copy(deep=True) for c in ordered]

    def insert_turn(self, turn: Turn) -> None:
        with self._lock:
            self._turns[turn.id] = turn.model_copy(deep=True)

    def get_turn(self, turn_id: str) -> Optional[Turn]:
        with self._lock:
            turn = self._turns.get(turn_id)
            return turn.model_copy(deep=True) if turn else None

    def list_turns(self, conversation_id: str) -> list[Turn]:
        with self._lock:
            turns = [t for t in self._turns.values() if t.conversation_id == conversation_id]
            turns.sort(key=lambda t: t.created_at)
            return [t.model_copy(deep=True) for t in turns]

    def recent_turns(self, conversation_id: str, limit: int) -> list[Turn]:
        if limit <= 0:
            return []
        return list(reversed(self.list_turns(conversation_id)))[:limit]

    def delete_turns(self, conversation_id: str) -> None:
        with self._lock:
            for turn_id in [t.id for t in self._turns.values() if t.conversation_id == conversation_id]:
                del self._turns[turn_id]

    def update_turn_content(self, turn_id: str, content: str, timestamp: Optional[int] = None) -> None:
        with self._lock:
            turn = self._turns.get(turn_id)
            if turn:
                turn.content = content
                turn.updated_at = timestamp or _now_ms()

    def append_turn_content(self, turn_id: str, text: str, timestamp: Optional[int] = None) -> str:
        with self._lock:
            turn = self._turns.get(turn_id)
            if turn is None:
                return ""
            turn.content += text
            turn.updated_at = timestamp or _now_ms()
            return turn.content

    def set_generating(self, turn_id: str, generating: bool) -> None:
        with self._lock:
            turn = self._turns.get(turn_id)
            if turn:
                turn.generating = generating

    def set_error(self, turn_id: str, error: str, error_code: Optional[int] = None) -> None:
        with self._lock:
            turn = self._turns.get(turn_id)
            if turn:
                turn.error = error
                turn.error_code = error_code
                turn.generating = False
                turn.updated_at = _now_ms()

    def update_token_usage(self, turn_id: str, usage: Optional[TokenUsage]) -> None:
        with self._lock:
            turn = self._turns.get(turn_id)
            if turn:
                turn.usage = usage.model_copy() if usage else None

    def update_finish_reason(self, turn_id: str, finish_reason: Optional[str]) -> None:
        with self._lock:
            turn = self._turns.get(turn_id)
            if turn:
                turn.finish_reason = finish_reason

    def generating_turns(self, conversation_id: Optional[str] = None) -> list[Turn]:
        with self._lock:
            return [
                t.model_copy(deep=True)
                for t in self._turns.values()
                if t.generating and (conversation_id is None or t.conversation_id == conversation_id)
            ]


# ─────────────────────────────────────────────────────────────────────
# SQLITE STORE
# ─────────────────────────────────────────────────────────────────────

class SQLiteConversationStore:
    """SQLite-backed ConversationStore."""

    def __init__(self, db_path: Union[str, Path]):
        db_path = Path(db_path)
        if str(db_path) != ":memory:":
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        # The orchestrator's worker thread and the caller share the connection
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._migrate()

    def _migrate(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                provider TEXT NOT NULL,
                model TEXT,
                system_prompt TEXT,
                temperature REAL,
                top_p REAL,
                max_tokens INTEGER,
                max_context_messages INTEGER,
                streaming INTEGER NOT NULL DEFAULT 1,
                starred INTEGER NOT NULL DEFAULT 0,
                hidden INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS turns (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                generating INTEGER NOT NULL DEFAULT 0,
                error TEXT,
                error_code INTEGER,
                input_tokens INTEGER,
                output_tokens INTEGER,
                total_tokens INTEGER,
                finish_reason TEXT,
                provider TEXT,
                model TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_turns_conversation
                ON turns(conversation_id, created_at);
        """)
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def _write(self, sql: str, params: tuple) -> None:
        with self._lock:
            self.conn.execute(sql, params)
            self.conn.commit()

    # Conversations

    @staticmethod
    def _row_to_conversation(row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            name=row["name"],
            provider=row["provider"],
            model=row["model"],
            system_prompt=row["system_prompt"],
            temperature=row["temperature"],
            top_p=row["top_p"],
            max_tokens=row["max_tokens"],
            max_context_messages=row["max_context_messages"],
            streaming=bool(row["streaming"]),
            starred=bool(row["starred"]),
            hidden=bool(row["hidden"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def insert_conversation(self, conversation: Conversation) -> None:
        c = conversation
        self._write(
            """INSERT INTO conversations (id, name, provider, model, system_prompt,
               temperature, top_p, max_tokens, max_context_messages, streaming,
               starred, hidden, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (c.id, c.name, c.provider, c.model, c.system_prompt, c.temperature,
             c.top_p, c.max_tokens, c.max_context_messages, int(c.streaming),
             int(c.starred), int(c.hidden), c.created_at, c.updated_at),
        )

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return self._row_to_conversation(row) if row else None

    def update_conversation(self, conversation: Conversation) -> None:
        c = conversation
        self._write(
            """UPDATE conversations SET name = ?, provider = ?, model = ?,
               system_prompt = ?, temperature = ?, top_p = ?, max_tokens = ?,
               max_context_messages = ?, streaming = ?, starred = ?, hidden = ?,
               updated_at = ?
               WHERE id = ?""",
            (c.name, c.provider, c.model, c.system_prompt, c.temperature, c.top_p,
             c.max_tokens, c.max_context_messages, int(c.streaming), int(c.starred),
             int(c.hidden), c.updated_at, c.id),
        )

    def touch_conversation(self, conversation_id: str, timestamp: Optional[int] = None) -> None:
        self._write(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (timestamp or _now_ms(), conversation_id),
        )

    def delete_conversation(self, conversation_id: str) -> None:
        self._write("DELETE FROM conversations WHERE id = ?", (conversation_id,))

    def list_conversations(self) -> list[Conversation]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM conversations ORDER BY updated_at DESC"
            ).fetchall()
        return [self._row_to_conversation(r) for r in rows]

    # Turns

    @staticmethod
    def _row_to_turn(row: sqlite3.Row) -> Turn:
        usage = None
        if any(row[k] is not None for k in ("input_tokens", "output_tokens", "total_tokens")):
            usage = TokenUsage(
                input_tokens=row["input_tokens"],
                output_tokens=row["output_tokens"],
                total_tokens=row["total_tokens"],
            )
        return Turn(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=Role(row["role"]),
            content=row["content"],
            generating=bool(row["generating"]),
            error=row["error"],
            error_code=row["error_code"],
            usage=usage,
            finish_reason=row["finish_reason"],
            provider=row["provider"],
            model=row["model"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def insert_turn(self, turn: Turn) -> None:
        t = turn
        usage = t.usage or TokenUsage()
        self._write(
            """INSERT INTO turns (id, conversation_id, role, content, generating,
               error, error_code, input_tokens, output_tokens, total_tokens,
               finish_reason, provider, model, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (t.id, t.conversation_id, Role(t.role).value, t.content, int(t.generating),
             t.error, t.error_code, usage.input_tokens, usage.output_tokens,
             usage.total_tokens, t.finish_reason, t.provider, t.model,
             t.created_at, t.updated_at),
        )

    def get_turn(self, turn_id: str) -> Optional[Turn]:
        with self._lock:
            row = self.conn.execute("SELECT * FROM turns WHERE id = ?", (turn_id,)).fetchone()
        return self._row_to_turn(row) if row else None

    def list_turns(self, conversation_id: str) -> list[Turn]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM turns WHERE conversation_id = ? ORDER BY created_at, rowid",
                (conversation_id,),
            ).fetchall()
        return [self._row_to_turn(r) for r in rows]

    def recent_turns(self, conversation_id: str, limit: int) -> list[Turn]:
        if limit <= 0:
            return []
        with self._lock:
            rows = self.conn.execute(
                """SELECT * FROM turns WHERE conversation_id = ?
                   ORDER BY created_at DESC, rowid DESC LIMIT ?""",
                (conversation_id, limit),
            ).fetchall()
        return [self._row_to_turn(r) for r in rows]

    def delete_turns(self, conversation_id: str) -> None:
        self._write("DELETE FROM turns WHERE conversation_id = ?", (conversation_id,))

    def update_turn_content(self, turn_id: str, content: str, timestamp: Optional[int] = None) -> None:
        self._write(
            "UPDATE turns SET content = ?, updated_at = ? WHERE id = ?",
            (content, timestamp or _now_ms(), turn_id),
        )

    def append_turn_content(self, turn_id: str, text: str, timestamp: Optional[int] = None) -> str:
        with self._lock:
            self.conn.execute(
                "UPDATE turns SET content = content || ?, updated_at = ? WHERE id = ?",
                (text, timestamp or _now_ms(), turn_id),
            )
            self.conn.commit()
            row = self.conn.execute("SELECT content FROM turns WHERE id = ?", (turn_id,)).fetchone()
        return row["content"] if row else ""

    def set_generating(self, turn_id: str, generating: bool) -> None:
        self._write("UPDATE turns SET generating = ? WHERE id = ?", (int(generating), turn_id))

    def set_error(self, turn_id: str, error: str, error_code: Optional[int] = None) -> None:
        self._write(
            "UPDATE turns SET error = ?, error_code = ?, generating = 0, updated_at = ? WHERE id = ?",
            (error, error_code, _now_ms(), turn_id),
        )

    def update_token_usage(self, turn_id: str, usage: Optional[TokenUsage]) -> None:
        usage = usage or TokenUsage()
        self._write(
            """UPDATE turns SET input_tokens = ?, output_tokens = ?, total_tokens = ?
               WHERE id = ?""",
            (usage.input_tokens, usage.output_tokens, usage.total_tokens, turn_id),
        )

    def update_finish_reason(self, turn_id: str, finish_reason: Optional[str]) -> None:
        self._write("UPDATE turns SET finish_reason = ? WHERE id = ?", (finish_reason, turn_id))

    def generating_turns(self, conversation_id: Optional[str] = None) -> list[Turn]:
        with self._lock:
            if conversation_id is None:
                rows = self.conn.execute(
                    "SELECT * FROM turns WHERE generating = 1 ORDER BY created_at, rowid"
                ).fetchall()
            else:
                rows = self.conn.execute(
                    """SELECT * FROM turns WHERE generating = 1 AND conversation_id = ?
                       ORDER BY created_at, rowid""",
                    (conversation_id,),
                ).fetchall()
        return [self._row_to_turn(r) for r in rows]


# ─────────────────────────────────────────────────────────────────────
# PROFILES
# ─────────────────────────────────────────────────────────────────────

class ProfileStore(Protocol):
    """Read access to provider profiles by key."""

    def get_profile(self, provider: str) -> ProviderProfile: ...
    def save_profile(self, profile: ProviderProfile) -> None: ...
    def list_profiles(self) -> list[ProviderProfile]: ...


class MemoryProfileStore:
    """
    Dict-backed ProfileStore.

    A provider seen for the first time gets a default profile (display name
    and host from the defaults table, no credential).
    """

    def __init__(self, profiles: Optional[dict[str, ProviderProfile]] = None):
        self._lock = threading.RLock()
        self._profiles: dict[str, ProviderProfile] = {}
        for profile in (profiles or {}).values():
            self.save_profile(profile)

    @classmethod
    def from_env(cls) -> "MemoryProfileStore":
        return cls(load_profiles_from_env())

    def get_profile(self, provider: str) -> ProviderProfile:
        with self._lock:
            if provider not in self._profiles:
                self._profiles[provider] = ProviderProfile.create_default(provider)
            return self._profiles[provider].model_copy(deep=True)

    def save_profile(self, profile: ProviderProfile) -> None:
        with self._lock:
            stored = profile.model_copy(deep=True)
            stored.touch()
            self._profiles[profile.provider] = stored

    def list_profiles(self) -> list[ProviderProfile]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._profiles.values()]
