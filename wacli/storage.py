"""SQLite credential store kept in the auth folder"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional
import aiosqlite

from .config import AUTH_FOLDER, CREDS_DB_NAME
from .crypto import Credentials, create_credentials


class CredentialStore:
    """Async SQLite storage for credentials and protocol keys"""

    def __init__(self, folder: Path = AUTH_FOLDER):
        self.folder = Path(folder)
        self.db_path = self.folder / CREDS_DB_NAME
        self._db: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Create the folder, open the database and create tables"""
        self.folder.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._create_tables()

    async def close(self):
        """Close database connection"""
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def _create_tables(self):
        """Create database tables if they don't exist"""
        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS creds (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                data TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS keys (
                type TEXT NOT NULL,
                id TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (type, id)
            );
        """)
        await self._db.commit()

    # === Credential Operations ===

    async def save_credentials(self, credentials: Credentials):
        """Save or replace the credential row"""
        await self._db.execute("""
            INSERT OR REPLACE INTO creds (id, data, updated_at)
            VALUES (1, ?, CURRENT_TIMESTAMP)
        """, (json.dumps(credentials.to_dict()),))
        await self._db.commit()

    async def get_credentials(self) -> Optional[Credentials]:
        """Get stored credentials (there is at most one row)"""
        async with self._db.execute("SELECT data FROM creds WHERE id = 1") as cursor:
            row = await cursor.fetchone()
            if not row:
                return None
            return Credentials.from_dict(json.loads(row['data']))

    # === Key Operations ===

    async def set_keys(self, keys: dict[str, dict]):
        """Store protocol keys: {type: {id: value}}; a None value deletes"""
        for key_type, entries in keys.items():
            for key_id, value in entries.items():
                if value is None:
                    await self._db.execute(
                        "DELETE FROM keys WHERE type = ? AND id = ?",
                        (key_type, key_id)
                    )
                else:
                    await self._db.execute(
                        "INSERT OR REPLACE INTO keys (type, id, value) VALUES (?, ?, ?)",
                        (key_type, key_id, json.dumps(value))
                    )
        await self._db.commit()


@dataclass
class AuthState:
    """Loaded credentials plus the handler that persists them"""
    credentials: Credentials
    save_creds: Callable[[], Awaitable[None]]
    store: CredentialStore

    async def apply_update(self, changes: dict):
        """Merge a creds.update partial and persist it"""
        keys = changes.get('keys')
        if keys:
            await self.store.set_keys(keys)
        self.credentials.update({k: v for k, v in changes.items() if k != 'keys'})
        await self.save_creds()


async def use_auth_state(folder: Path = AUTH_FOLDER) -> AuthState:
    """Open the credential store in `folder`, creating credentials on first run"""
    store = CredentialStore(folder)
    await store.connect()

    credentials = await store.get_credentials()
    if credentials is None:
        credentials = create_credentials()
        await store.save_credentials(credentials)

    async def save_creds():
        await store.save_credentials(credentials)

    return AuthState(credentials=credentials, save_creds=save_creds, store=store)
