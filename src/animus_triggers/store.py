"""Rule storage — per-guild CRUD over trigger definitions with count limits."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from animus_triggers.errors import (
    CapacityError,
    ConfigurationError,
    NotFoundError,
    TriggerError,
)
from animus_triggers.models import MAX_PRESETS_PER_RULE, MAX_RULES_PER_GUILD, Rule

logger = logging.getLogger(__name__)


class RuleStore(ABC):
    """Base class for rule stores.

    Subclasses persist the camelCase dict form of each rule per guild.
    Every read deserialises fresh :class:`Rule` objects, so callers get an
    independent snapshot they may hold for the duration of one event.
    """

    def __init__(
        self,
        max_rules_per_guild: int = MAX_RULES_PER_GUILD,
        max_presets_per_rule: int = MAX_PRESETS_PER_RULE,
    ) -> None:
        self.max_rules_per_guild = max_rules_per_guild
        self.max_presets_per_rule = max_presets_per_rule
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def _load(self, guild_id: str) -> list[dict[str, Any]]:
        """Return the stored dicts for *guild_id* in insertion order."""

    @abstractmethod
    def _insert(self, data: dict[str, Any]) -> None:
        """Persist a new rule dict."""

    @abstractmethod
    def _replace(self, data: dict[str, Any]) -> None:
        """Overwrite an existing rule dict (matched by guild and id)."""

    @abstractmethod
    def _remove(self, guild_id: str, rule_id: str) -> bool:
        """Delete one rule. Returns ``True`` if it existed."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list(self, guild_id: str) -> list[Rule]:
        """Return every rule stored for *guild_id*."""
        with self._lock:
            rows = self._load(guild_id)
        rules = [rule for rule in (self._decode(row) for row in rows) if rule is not None]
        logger.debug("Loaded %d rules for guild %s", len(rules), guild_id)
        return rules

    async def get(self, guild_id: str, rule_id: str) -> Rule | None:
        """Return one rule, or ``None`` if it does not exist."""
        for rule in await self.list(guild_id):
            if rule.id == rule_id:
                return rule
        return None

    async def require(self, guild_id: str, rule_id: str) -> Rule:
        """Like :meth:`get`, but raise :class:`NotFoundError` for a missing rule."""
        rule = await self.get(guild_id, rule_id)
        if rule is None:
            raise NotFoundError(f"Trigger {rule_id} not found", {"guild_id": guild_id})
        return rule

    async def create(self, rule: Rule) -> Rule:
        """Store a new rule.

        Raises:
            CapacityError: The guild already holds the maximum number of
                rules, or the rule has too many presets.  Nothing is stored.
        """
        self._check_presets(len(rule.presets))
        for index, preset in enumerate(rule.presets):
            preset.trigger_id = rule.id
            preset.index = index

        with self._lock:
            existing = self._load(rule.guild_id)
            if len(existing) >= self.max_rules_per_guild:
                raise CapacityError(
                    f"A guild may hold at most {self.max_rules_per_guild} triggers; "
                    "delete an existing trigger first",
                    limit=self.max_rules_per_guild,
                    requested=len(existing) + 1,
                )
            if any(row.get("id") == rule.id for row in existing):
                raise ConfigurationError(f"Trigger {rule.id} already exists")
            self._insert(rule.to_dict())

        logger.info("Trigger created: %s (%s) in guild %s", rule.name, rule.id, rule.guild_id)
        return rule

    async def update(self, guild_id: str, rule_id: str, changes: dict[str, Any]) -> Rule | None:
        """Apply a partial camelCase update. Returns ``None`` if the rule is missing."""
        presets = changes.get("presets")
        if presets is not None:
            self._check_presets(len(presets))

        with self._lock:
            current = next((r for r in self._load(guild_id) if r.get("id") == rule_id), None)
            if current is None:
                return None
            merged = {
                **current,
                **changes,
                "id": rule_id,
                "guildId": guild_id,
                "updatedAt": datetime.now(UTC).isoformat(),
            }
            rule = Rule.from_dict(merged)
            for index, preset in enumerate(rule.presets):
                preset.trigger_id = rule.id
                preset.index = index
            self._replace(rule.to_dict())

        logger.info("Trigger updated: %s (%s)", rule.name, rule_id)
        return rule

    async def delete(self, guild_id: str, rule_id: str) -> bool:
        """Delete a rule. Returns ``True`` if it was found."""
        with self._lock:
            removed = self._remove(guild_id, rule_id)
        if removed:
            logger.info("Trigger deleted: %s", rule_id)
        return removed

    async def import_rules(self, guild_id: str, payloads: list[dict[str, Any]]) -> list[Rule]:
        """Create rules from exported dicts, assigning fresh ids.

        Entries that are malformed or exceed a limit are logged and skipped.
        """
        imported: list[Rule] = []
        now = datetime.now(UTC).isoformat()
        for position, payload in enumerate(payloads):
            try:
                rule = Rule.from_dict(
                    {
                        **payload,
                        "id": str(uuid.uuid4()),
                        "guildId": guild_id,
                        "createdAt": now,
                        "updatedAt": now,
                    }
                )
                imported.append(await self.create(rule))
            except (TriggerError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Failed to import trigger #%d: %s", position, exc)
        return imported

    async def export_rules(self, guild_id: str) -> list[dict[str, Any]]:
        """Return every rule of *guild_id* in its camelCase dict form."""
        return [rule.to_dict() for rule in await self.list(guild_id)]

    def close(self) -> None:  # noqa: B027
        """Release any underlying resources."""

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_presets(self, count: int) -> None:
        if count > self.max_presets_per_rule:
            raise CapacityError(
                f"A trigger may hold at most {self.max_presets_per_rule} presets",
                limit=self.max_presets_per_rule,
                requested=count,
            )

    @staticmethod
    def _decode(data: dict[str, Any]) -> Rule | None:
        try:
            return Rule.from_dict(data)
        except (TypeError, ValueError, AttributeError) as exc:
            logger.warning("Skipping malformed trigger %r: %s", data.get("id"), exc)
            return None


class InMemoryRuleStore(RuleStore):
    """Process-local store, mainly for tests and dry runs."""

    def __init__(
        self,
        max_rules_per_guild: int = MAX_RULES_PER_GUILD,
        max_presets_per_rule: int = MAX_PRESETS_PER_RULE,
    ) -> None:
        super().__init__(max_rules_per_guild, max_presets_per_rule)
        self._guilds: dict[str, list[str]] = {}

    def _load(self, guild_id: str) -> list[dict[str, Any]]:
        return [json.loads(raw) for raw in self._guilds.get(guild_id, [])]

    def _insert(self, data: dict[str, Any]) -> None:
        self._guilds.setdefault(data["guildId"], []).append(json.dumps(data))

    def _replace(self, data: dict[str, Any]) -> None:
        rows = self._guilds.get(data["guildId"], [])
        for i, raw in enumerate(rows):
            if json.loads(raw).get("id") == data["id"]:
                rows[i] = json.dumps(data)
                return

    def _remove(self, guild_id: str, rule_id: str) -> bool:
        rows = self._guilds.get(guild_id, [])
        kept = [raw for raw in rows if json.loads(raw).get("id") != rule_id]
        if len(kept) == len(rows):
            return False
        self._guilds[guild_id] = kept
        return True


class SQLiteRuleStore(RuleStore):
    """SQLite-backed store: one row per rule, JSON body, WAL mode."""

    def __init__(
        self,
        db_path: Path | str,
        max_rules_per_guild: int = MAX_RULES_PER_GUILD,
        max_presets_per_rule: int = MAX_PRESETS_PER_RULE,
    ) -> None:
        super().__init__(max_rules_per_guild, max_presets_per_rule)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        """Create the triggers table."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS triggers (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                guild_id TEXT NOT NULL,
                body TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (guild_id, id)
            );
            CREATE INDEX IF NOT EXISTS idx_triggers_guild ON triggers(guild_id);
        """)
        self._conn.commit()

    def _load(self, guild_id: str) -> list[dict[str, Any]]:
        cursor = self._conn.execute(
            "SELECT id, body FROM triggers WHERE guild_id = ? ORDER BY seq", (guild_id,)
        )
        rows: list[dict[str, Any]] = []
        for row in cursor.fetchall():
            try:
                rows.append(json.loads(row["body"]))
            except json.JSONDecodeError as exc:
                logger.warning("Skipping unreadable trigger row %s: %s", row["id"], exc)
        return rows

    def _insert(self, data: dict[str, Any]) -> None:
        self._conn.execute(
            "INSERT INTO triggers (id, guild_id, body, updated_at) VALUES (?, ?, ?, ?)",
            (data["id"], data["guildId"], json.dumps(data), data.get("updatedAt", "")),
        )
        self._conn.commit()

    def _replace(self, data: dict[str, Any]) -> None:
        self._conn.execute(
            "UPDATE triggers SET body = ?, updated_at = ? WHERE guild_id = ? AND id = ?",
            (json.dumps(data), data.get("updatedAt", ""), data["guildId"], data["id"]),
        )
        self._conn.commit()

    def _remove(self, guild_id: str, rule_id: str) -> bool:
        cursor = self._conn.execute(
            "DELETE FROM triggers WHERE guild_id = ? AND id = ?", (guild_id, rule_id)
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
