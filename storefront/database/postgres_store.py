import asyncpg
import json
from typing import Dict, Any, Optional
import logging
from config import settings

logger = logging.getLogger(__name__)

class PostgresStore:
    def __init__(self, connection_string: Optional[str] = None):
        self.connection_string = connection_string or settings.DATABASE_URL
        self.pool = None

    @property
    def enabled(self) -> bool:
        return self.pool is not None

    async def init_pool(self):
        """Initialize connection pool"""
        if not self.connection_string:
            logger.info("[Database] DATABASE_URL not set, checkout attempts kept in memory only")
            return
        try:
            self.pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=2,
                max_size=10,
                command_timeout=60
            )
            logger.info("[Database] Connection pool initialized")
            await self.init_tables()
        except Exception as e:
            logger.error(f"[Database] Failed to initialize pool: {e}")
            raise

    async def init_tables(self):
        """Create tables if they don't exist"""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS checkout_attempts (
                    attempt_id VARCHAR(64) PRIMARY KEY,
                    session_id VARCHAR(255),
                    payment_method VARCHAR(16) NOT NULL,
                    state VARCHAR(32) NOT NULL,
                    total INTEGER NOT NULL,
                    gateway_order_id VARCHAR(64),
                    order_id VARCHAR(64),
                    reason TEXT,
                    history JSONB NOT NULL DEFAULT '[]',
                    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
                );

                CREATE INDEX IF NOT EXISTS idx_checkout_attempts_session_id
                ON checkout_attempts(session_id);

                CREATE INDEX IF NOT EXISTS idx_checkout_attempts_state
                ON checkout_attempts(state);

                CREATE INDEX IF NOT EXISTS idx_checkout_attempts_updated_at
                ON checkout_attempts(updated_at);
            """)
            logger.info("[Database] Tables initialized")

    async def upsert_attempt(self, data: Dict[str, Any]):
        """Create or update a checkout attempt"""
        if not self.enabled:
            return
        async with self.pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO checkout_attempts
                (attempt_id, session_id, payment_method, state, total,
                 gateway_order_id, order_id, reason, history, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, NOW())
                ON CONFLICT (attempt_id) DO UPDATE SET
                    state = $4,
                    gateway_order_id = $6,
                    order_id = $7,
                    reason = $8,
                    history = $9,
                    updated_at = NOW()
            """,
                data["attempt_id"],
                data.get("session_id"),
                data["payment_method"],
                data["state"],
                data["total"],
                data.get("gateway_order_id"),
                data.get("order_id"),
                data.get("reason"),
                json.dumps(data.get("history", []))
            )
            logger.info(f"[Database] Saved attempt {data['attempt_id']} in state {data['state']}")

    async def get_attempt(self, attempt_id: str) -> Dict[str, Any]:
        """Get checkout attempt by id"""
        if not self.enabled:
            return {}
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT attempt_id, session_id, payment_method, state, total,
                       gateway_order_id, order_id, reason, history, created_at
                FROM checkout_attempts
                WHERE attempt_id = $1
            """, attempt_id)

            if row:
                data = dict(row)
                data["history"] = json.loads(row["history"])
                return data
            return {}

    async def cleanup_old_attempts(self, days: int = 30):
        """Clean up attempts older than specified days"""
        if not self.enabled:
            return
        async with self.pool.acquire() as conn:
            result = await conn.execute("""
                DELETE FROM checkout_attempts
                WHERE updated_at < NOW() - make_interval(days => $1)
            """, days)
            logger.info(f"[Database] Cleaned up old attempts: {result}")

    async def close(self):
        """Close connection pool"""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("[Database] Connection pool closed")

# Global instance
postgres_store = PostgresStore()
