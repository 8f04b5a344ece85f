"""
Access to the SQL user table that LDAP attributes are synced into.

Only the columns the sync reads or writes are declared here; the table itself
belongs to the application (Greenlight) and is never created or migrated.
"""

import logging
from typing import Dict, List, Any, Iterable, Optional, Sequence

from sqlalchemy import (
    Column, DateTime, Integer, MetaData, String, Table, create_engine, func, select, update,
)
from sqlalchemy.engine import Engine, URL
from sqlalchemy.exc import SQLAlchemyError

from ldap_sql_sync.attribute_mapping import COLUMN_PROJECTION
from ldap_sql_sync.change_detector import ID_COLUMN
from ldap_sql_sync.config import ConfigurationError, DB_ADAPTERS

logger = logging.getLogger(__name__)

DRIVERS = {
    'postgresql': 'postgresql+psycopg2',
}

SYNC_COLUMNS = tuple(COLUMN_PROJECTION.values())


class StoreConnectionError(Exception):
    """Raised when the database cannot be reached or queried."""
    pass


class StoreCommitError(Exception):
    """Raised when the batched user update fails and was rolled back."""
    pass


def users_table(metadata: MetaData, name: str = 'users') -> Table:
    """Declare the columns of the application's user table used by the sync."""
    return Table(
        name, metadata,
        Column('id', Integer, primary_key=True),
        Column('name', String),
        Column('username', String),
        Column('email', String),
        Column('social_uid', String),
        Column('image', String),
        Column('external_id', String),
        Column('provider', String),
        Column('updated_at', DateTime),
    )


class UserStore:
    """
    Reads LDAP managed users and writes batched attribute updates.

    A user is LDAP managed when its provider column equals the configured
    provider. Updates run in one transaction: either every row of a batch is
    written or none is.
    """

    def __init__(self, config: Dict[str, Any], engine: Optional[Engine] = None,
                 columns: Sequence[str] = SYNC_COLUMNS):
        """
        Initialize user store.

        Args:
            config: Database configuration dictionary
            engine: Existing SQLAlchemy engine to use instead of building one
            columns: Columns compared with and written from LDAP
        """
        self.config = config
        self.adapter = config.get('adapter', 'postgresql')
        self.provider = config.get('provider', 'greenlight')
        self.columns = tuple(columns)
        self.table = users_table(MetaData(), config.get('table', 'users'))

        self.engine = engine
        self._owns_engine = engine is None

    def database_url(self) -> URL:
        """Build the connection URL from the configuration."""
        if self.adapter not in DB_ADAPTERS:
            raise ConfigurationError(f"{self.adapter} is an unsupported database adapter, "
                                     f"supported: {', '.join(DB_ADAPTERS)}")

        query = {}
        if self.config.get('sslmode'):
            query['sslmode'] = self.config['sslmode']

        return URL.create(
            DRIVERS[self.adapter],
            username=self.config.get('username') or None,
            password=self.config.get('password') or None,
            host=self.config.get('host'),
            port=self.config.get('port'),
            database=self.config.get('name'),
            query=query,
        )

    def connect(self):
        """
        Create the engine if needed and verify the database is reachable.

        Raises:
            ConfigurationError: If the adapter is not supported
            StoreConnectionError: If the database cannot be reached
        """
        if self.engine is None:
            self.engine = create_engine(self.database_url(), pool_pre_ping=True)
            self._owns_engine = True

        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError as e:
            raise StoreConnectionError(f"Cannot establish database connection: {e}")

        logger.debug(f"Connected to {self.adapter} database")

    def _managed(self):
        return self.table.c.provider == self.provider

    def fetch_managed_users(self) -> Dict[str, Dict[str, str]]:
        """
        Fetch all LDAP managed users with their synced columns.

        Returns:
            Identifier -> column values (NULL read as empty string), including
            the identifier column itself

        Raises:
            StoreConnectionError: If the query fails
        """
        id_column = self.table.c[ID_COLUMN]
        query = (
            select(id_column, *(self.table.c[column] for column in self.columns))
            .where(self._managed(), id_column.is_not(None))
        )

        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as e:
            raise StoreConnectionError(f"Cannot fetch users from database: {e}")

        users = {}
        for row in rows:
            user = {column: row[column] or '' for column in self.columns}
            user[ID_COLUMN] = row[ID_COLUMN]
            users[row[ID_COLUMN]] = user

        logger.debug(f"Fetched {len(users)} users from database")
        return users

    def fetch_managed_identifiers(self) -> List[str]:
        """
        Fetch only the identifiers of all LDAP managed users.

        Raises:
            StoreConnectionError: If the query fails
        """
        id_column = self.table.c[ID_COLUMN]
        query = select(id_column).where(self._managed(), id_column.is_not(None))

        try:
            with self.engine.connect() as conn:
                identifiers = list(conn.execute(query).scalars())
        except SQLAlchemyError as e:
            raise StoreConnectionError(f"Cannot fetch user identifiers from database: {e}")

        logger.debug(f"Fetched {len(identifiers)} user identifiers from database")
        return identifiers

    def apply_batch(self, records: Iterable[Dict[str, str]]) -> int:
        """
        Write all records in a single transaction.

        Every synced column present in a record is written and ``updated_at``
        is set to the current time.

        Args:
            records: Resolved user attributes, each including the identifier column

        Returns:
            Number of rows updated

        Raises:
            StoreCommitError: If any update fails; nothing is written then
        """
        updated = 0
        # psycopg2 raises a plain ValueError for values it cannot adapt, e.g. NUL characters
        try:
            with self.engine.begin() as conn:
                for record in records:
                    values = {column: record[column] for column in self.columns if column in record}
                    statement = (
                        update(self.table)
                        .where(self.table.c[ID_COLUMN] == record[ID_COLUMN], self._managed())
                        .values(updated_at=func.now(), **values)
                    )
                    updated += conn.execute(statement).rowcount
        except (SQLAlchemyError, ValueError) as e:
            raise StoreCommitError(f"Failed to update users, transaction rolled back: {e}")

        logger.debug(f"Committed update of {updated} users")
        return updated

    def close(self):
        """Dispose the engine if this store created it."""
        if self.engine is not None and self._owns_engine:
            self.engine.dispose()
            self.engine = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
