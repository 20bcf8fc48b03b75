"""
Database Manager - PostgreSQL schema and operations.

Stores resource specs and status, secrets and notification events. This is
the operator's object store: the CLI writes specs into it and the
controller reads them back, reconciles, and records the outcome.
"""

import asyncpg
import hashlib
import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"
FINALIZER = "rabbitmq-operator"

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS resources (
        id SERIAL PRIMARY KEY,
        kind TEXT NOT NULL,
        namespace TEXT NOT NULL DEFAULT 'default',
        name TEXT NOT NULL,
        spec JSONB NOT NULL DEFAULT '{}'::jsonb,
        spec_hash TEXT NOT NULL,
        generation INTEGER NOT NULL DEFAULT 1,
        observed_generation INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'pending',
        status_message TEXT,
        conditions JSONB NOT NULL DEFAULT '[]'::jsonb,
        owner_id INTEGER REFERENCES resources(id) ON DELETE SET NULL,
        finalizers JSONB NOT NULL DEFAULT '[]'::jsonb,
        retry_count INTEGER NOT NULL DEFAULT 0,
        next_reconcile_time TIMESTAMPTZ,
        last_reconcile_time TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        deleted_at TIMESTAMPTZ
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS resources_kind_namespace_name
        ON resources (kind, namespace, name)
        WHERE deleted_at IS NULL
    """,
    """
    CREATE INDEX IF NOT EXISTS resources_next_reconcile_time
        ON resources (next_reconcile_time)
    """,
    """
    CREATE TABLE IF NOT EXISTS secrets (
        id SERIAL PRIMARY KEY,
        namespace TEXT NOT NULL,
        name TEXT NOT NULL,
        data JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (namespace, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        id SERIAL PRIMARY KEY,
        resource_id INTEGER NOT NULL REFERENCES resources(id) ON DELETE CASCADE,
        event_type TEXT NOT NULL,
        reason TEXT NOT NULL,
        message TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
]


class ResourceStatus(Enum):
    """Status of a resource."""

    PENDING = "pending"
    RECONCILING = "reconciling"
    READY = "ready"
    FAILED = "failed"
    DELETING = "deleting"


class DatabaseManager:
    """Manages PostgreSQL database operations for the controller."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None

    @classmethod
    def from_config(cls, config) -> "DatabaseManager":
        """Build a manager from a DatabaseConfig."""
        return cls(
            host=config.host,
            port=config.port,
            database=config.database,
            user=config.user,
            password=config.password,
            min_pool_size=config.min_pool_size,
            max_pool_size=config.max_pool_size,
        )

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Create tables and indexes that do not exist yet."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            for statement in SCHEMA:
                await conn.execute(statement)
        logger.info("Database schema initialized")

    # ==================== Resource Methods ====================

    async def apply_resource(
        self,
        kind: str,
        namespace: str,
        name: str,
        spec: Dict[str, Any],
        owner_id: Optional[int] = None,
        finalizers: Optional[List[str]] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Create a resource, or update its spec if it changed.

        A changed spec bumps the generation and schedules an immediate
        reconcile. An unchanged spec leaves the resource untouched.

        Returns:
            ``(resource, created)``
        """
        if finalizers is None:
            finalizers = [FINALIZER]

        spec_hash = self._calculate_spec_hash(spec)

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO resources (
                    kind, namespace, name, spec, spec_hash, owner_id,
                    finalizers, status, next_reconcile_time
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, NOW())
                ON CONFLICT (kind, namespace, name) WHERE deleted_at IS NULL
                DO UPDATE SET spec = EXCLUDED.spec,
                    spec_hash = EXCLUDED.spec_hash,
                    generation = resources.generation + 1,
                    status = EXCLUDED.status,
                    next_reconcile_time = NOW(),
                    updated_at = NOW()
                WHERE resources.spec_hash <> EXCLUDED.spec_hash
                RETURNING *, (xmax = 0) AS created
                """,
                kind,
                namespace,
                name,
                json.dumps(spec),
                spec_hash,
                owner_id,
                json.dumps(finalizers),
                ResourceStatus.PENDING.value,
            )

            if row is None:
                # Spec unchanged
                row = await conn.fetchrow(
                    """
                    SELECT * FROM resources
                    WHERE kind = $1 AND namespace = $2 AND name = $3
                      AND deleted_at IS NULL
                    """,
                    kind,
                    namespace,
                    name,
                )
                return self._parse_resource_row(row), False

            resource = self._parse_resource_row(row)
            created = bool(resource.pop("created", False))
            if created:
                logger.info(f"Created {kind} {namespace}/{name} with ID {resource['id']}")
            else:
                logger.info(
                    f"Updated {kind} {namespace}/{name} to generation "
                    f"{resource['generation']}"
                )
            return resource, created

    async def delete_resource(self, resource_id: int):
        """Mark a resource for deletion (soft delete)."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE resources
                SET status = $1,
                    deleted_at = NOW(),
                    next_reconcile_time = NOW()
                WHERE id = $2
                """,
                ResourceStatus.DELETING.value,
                resource_id,
            )

            logger.info(f"Marked resource {resource_id} for deletion")

    async def get_resource(self, resource_id: int) -> Optional[Dict[str, Any]]:
        """Get a resource by ID."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM resources WHERE id = $1 AND deleted_at IS NULL",
                resource_id,
            )
            if not row:
                return None

            return self._parse_resource_row(row)

    async def get_resource_by_name(
        self,
        kind: str,
        namespace: str,
        name: str,
    ) -> Optional[Dict[str, Any]]:
        """Get a live resource by kind, namespace and name."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM resources
                WHERE kind = $1
                  AND namespace = $2
                  AND name = $3
                  AND deleted_at IS NULL
                """,
                kind,
                namespace,
                name,
            )
            if not row:
                return None

            return self._parse_resource_row(row)

    async def list_resources(
        self,
        kind: Optional[str] = None,
        namespace: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 1000,
    ) -> List[Dict[str, Any]]:
        """List live resources with optional filters."""
        async with self.pool.acquire() as conn:
            query = "SELECT * FROM resources WHERE deleted_at IS NULL"
            params = []
            param_count = 0

            if kind:
                param_count += 1
                query += f" AND kind = ${param_count}"
                params.append(kind)

            if namespace:
                param_count += 1
                query += f" AND namespace = ${param_count}"
                params.append(namespace)

            if status:
                param_count += 1
                query += f" AND status = ${param_count}"
                params.append(status)

            param_count += 1
            query += f" ORDER BY kind, namespace, name LIMIT ${param_count}"
            params.append(limit)

            rows = await conn.fetch(query, *params)
            return [self._parse_resource_row(row) for row in rows]

    async def get_resources_needing_reconciliation(
        self, limit: int = 10
    ) -> List[Dict[str, Any]]:
        """
        Get resources that need reconciliation.

        A resource is due when it has never been reconciled, its spec
        changed, its scheduled time passed, or it is being deleted.
        Resources that failed fatally have no scheduled time and wait for
        a spec change.
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT *
                FROM resources
                WHERE (deleted_at IS NULL OR status = 'deleting')
                  AND (
                    -- Never reconciled
                    last_reconcile_time IS NULL
                    -- Generation changed
                    OR generation > observed_generation
                    -- Scheduled for reconciliation
                    OR next_reconcile_time <= NOW()
                  )
                  AND status != 'reconciling'
                ORDER BY
                    CASE status
                        WHEN 'deleting' THEN 0
                        WHEN 'pending' THEN 1
                        WHEN 'failed' THEN 2
                        ELSE 3
                    END,
                    next_reconcile_time ASC NULLS FIRST
                LIMIT $1
                """,
                limit,
            )

            return [self._parse_resource_row(row) for row in rows]

    async def reset_in_flight(self) -> int:
        """Return resources left mid-reconcile by a previous process to pending."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE resources
                SET status = 'pending', next_reconcile_time = NOW()
                WHERE status = 'reconciling'
                """
            )
        count = int(result.split()[-1]) if isinstance(result, str) else 0
        if count:
            logger.info(f"Reset {count} in-flight resources to pending")
        return count

    async def update_resource_status(
        self,
        resource_id: int,
        status: ResourceStatus,
        message: Optional[str] = None,
        observed_generation: Optional[int] = None,
        requeue_after: Optional[float] = None,
    ):
        """
        Update the status of a resource and schedule its next pass.

        ``requeue_after`` seconds from now becomes the next reconcile time;
        None clears it. Failures increment the retry count, readiness
        resets it.
        """
        async with self.pool.acquire() as conn:
            sets = ["status = $1", "status_message = $2", "updated_at = NOW()"]
            params: List[Any] = [status.value, message]
            param_count = 2

            if observed_generation is not None:
                param_count += 1
                sets.append(f"observed_generation = ${param_count}")
                params.append(observed_generation)

            if status != ResourceStatus.RECONCILING:
                param_count += 1
                sets.append(
                    f"next_reconcile_time = NOW() + (INTERVAL '1 second' * ${param_count})"
                )
                params.append(float(requeue_after) if requeue_after is not None else None)
                sets.append("last_reconcile_time = NOW()")

            if status == ResourceStatus.READY:
                sets.append("retry_count = 0")
            elif status == ResourceStatus.FAILED:
                sets.append("retry_count = retry_count + 1")

            param_count += 1
            params.append(resource_id)

            # A pass finishing after a delete must not clear the deleting status
            query = (
                f"UPDATE resources SET {', '.join(sets)} WHERE id = ${param_count} "
                "AND (deleted_at IS NULL OR $1 = 'deleting')"
            )
            await conn.execute(query, *params)

    async def requeue_with_backoff(
        self,
        resource_id: int,
        base_delay: int = 15,
        max_delay: int = 900,
        jitter_factor: float = 0.1,
    ):
        """
        Schedule a failed resource's retry with exponential backoff and jitter.

        Args:
            resource_id: The resource ID
            base_delay: Base delay in seconds (default 15)
            max_delay: Maximum delay in seconds (default 900 = 15 minutes)
            jitter_factor: Jitter factor ±X (default 0.1 = ±10%)
        """
        async with self.pool.acquire() as conn:
            # Calculate delay with exponential backoff, capped at max_delay
            # Add jitter of ±jitter_factor to prevent thundering herd
            await conn.execute(
                """
                UPDATE resources
                SET next_reconcile_time = NOW() + (
                    INTERVAL '1 second' * LEAST(
                        $1 * POWER(2, LEAST(GREATEST(retry_count - 1, 0), 10)),
                        $2
                    ) * (1 + (random() * 2 - 1) * $3)
                )
                WHERE id = $4
                """,
                base_delay,
                max_delay,
                jitter_factor,
                resource_id,
            )

    async def update_resource_conditions(
        self, resource_id: int, conditions: List[Dict[str, Any]]
    ) -> None:
        """Replace a resource's conditions with those computed by a pass."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE resources
                SET conditions = $1, updated_at = NOW()
                WHERE id = $2
                """,
                json.dumps(conditions),
                resource_id,
            )

    async def mark_resource_for_reconciliation(
        self, kind: str, namespace: str, name: str, delay: float = 0
    ) -> bool:
        """
        Schedule a resource's next pass ``delay`` seconds from now.

        Never pushes an earlier scheduled pass later.
        """
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                UPDATE resources
                SET next_reconcile_time = LEAST(
                    COALESCE(next_reconcile_time, 'infinity'::timestamptz),
                    NOW() + (INTERVAL '1 second' * $4)
                )
                WHERE kind = $1 AND namespace = $2 AND name = $3
                  AND deleted_at IS NULL
                RETURNING id
                """,
                kind,
                namespace,
                name,
                float(delay),
            )
            return result is not None

    async def hard_delete_resource(self, resource_id: int) -> bool:
        """
        Permanently delete a resource from the database.

        Only succeeds if the resource has been soft-deleted (deleted_at set)
        and all finalizers have been removed.

        Args:
            resource_id: The resource ID to permanently delete

        Returns:
            True if the resource was deleted, False if not found,
            not soft-deleted, or finalizers remain
        """
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                DELETE FROM resources
                WHERE id = $1
                  AND deleted_at IS NOT NULL
                  AND finalizers = '[]'::jsonb
                RETURNING id
                """,
                resource_id,
            )
            if result:
                logger.info(f"Hard-deleted resource {resource_id}")
                return True
            return False

    async def remove_finalizer(self, resource_id: int, finalizer: str) -> None:
        """
        Remove a finalizer from a resource.

        Args:
            resource_id: The resource ID
            finalizer: Finalizer name to remove
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE resources
                SET finalizers = COALESCE(
                        (SELECT jsonb_agg(elem)
                         FROM jsonb_array_elements(finalizers) AS elem
                         WHERE elem #>> '{}' != $2),
                        '[]'::jsonb
                    ),
                    updated_at = NOW()
                WHERE id = $1
                """,
                resource_id,
                finalizer,
            )

    async def get_finalizers(self, resource_id: int) -> List[str]:
        """
        Get the finalizers list for a resource.

        Args:
            resource_id: The resource ID

        Returns:
            List of finalizer names, or empty list if resource not found
        """
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                "SELECT finalizers FROM resources WHERE id = $1",
                resource_id,
            )
            if result is None:
                return []
            return json.loads(result) if isinstance(result, str) else result

    # ==================== Secret Methods ====================

    async def get_secret(self, namespace: str, name: str) -> Optional[Dict[str, str]]:
        """
        Get a secret's data.

        Returns:
            Map of key to base64-encoded value, or None if not found
        """
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                "SELECT data FROM secrets WHERE namespace = $1 AND name = $2",
                namespace,
                name,
            )
            if result is None:
                return None
            return json.loads(result) if isinstance(result, str) else result

    async def put_secret(self, namespace: str, name: str, data: Dict[str, str]) -> None:
        """Create or replace a secret. Values must already be base64-encoded."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO secrets (namespace, name, data)
                VALUES ($1, $2, $3)
                ON CONFLICT (namespace, name)
                DO UPDATE SET data = EXCLUDED.data, updated_at = NOW()
                """,
                namespace,
                name,
                json.dumps(data),
            )
            logger.info(f"Stored secret {namespace}/{name}")

    # ==================== Event Methods ====================

    async def record_event(
        self, resource_id: int, event_type: str, reason: str, message: str
    ) -> None:
        """Record a notification event against a resource."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO events (resource_id, event_type, reason, message)
                VALUES ($1, $2, $3, $4)
                """,
                resource_id,
                event_type,
                reason,
                message,
            )

    async def list_events(
        self, resource_id: int, limit: int = 20
    ) -> List[Dict[str, Any]]:
        """Get the most recent notification events for a resource."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT *
                FROM events
                WHERE resource_id = $1
                ORDER BY created_at DESC, id DESC
                LIMIT $2
                """,
                resource_id,
                limit,
            )

            return [dict(row) for row in rows]

    def _parse_resource_row(self, row: asyncpg.Record) -> Dict[str, Any]:
        """
        Parse a resource row from the database, converting JSON fields.

        Converts the asyncpg Record to a regular dictionary and parses
        JSON-stored fields (spec, conditions, finalizers) into Python objects.

        Args:
            row: An asyncpg.Record from a database query

        Returns:
            A dictionary with the resource data, with JSON fields parsed
        """
        result = dict(row)
        result["spec"] = json.loads(result["spec"]) if result.get("spec") else {}
        conditions = result.get("conditions")
        result["conditions"] = (
            json.loads(conditions) if isinstance(conditions, str) else conditions or []
        )
        result["finalizers"] = (
            json.loads(result["finalizers"])
            if isinstance(result.get("finalizers"), str)
            else result.get("finalizers", []) or []
        )
        return result

    def _calculate_spec_hash(self, spec: Dict[str, Any]) -> str:
        """Calculate a hash of the resource specification for change detection."""
        spec_string = json.dumps(spec, sort_keys=True)
        return hashlib.sha256(spec_string.encode()).hexdigest()
