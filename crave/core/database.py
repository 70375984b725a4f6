"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (Postgres) and sqlite support (dev/tests)
- Table definitions for the reward economy
"""
from typing import List, Optional
from sqlalchemy import inspect
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, Date, DateTime, Boolean, JSON, Text, Index, ForeignKey, UniqueConstraint, CheckConstraint, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func, true, false
import logging

from crave.core.config import settings

logger = logging.getLogger("crave")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    return settings.DATABASE_URL


def build_engine(url: str) -> Engine:
    """Create an engine with pool settings suited to the backend."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            # One shared connection, otherwise every checkout sees an empty db
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL query logging
    )


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    _engine = build_engine(url)

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def create_all_tables(engine=None):
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine or get_engine())


def check_connection(engine=None) -> List[str]:
    """
    Readiness check: connect, then look for every economy table.

    Returns the names of missing tables (empty when ready). Connection
    failures propagate to the caller.
    """
    engine = engine or get_engine()
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    inspector = inspect(engine)
    return [name for name in sorted(metadata.tables) if not inspector.has_table(name)]


# User accounts (created at onboarding; balance/level/streak mutated here)
user_accounts = Table(
    'user_accounts',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('cravecoins', Integer, nullable=False, server_default='0'),
    Column('starting_balance', Integer, nullable=False, server_default='0'),
    Column('subscription_tier', String(20), nullable=False, server_default='free'),
    Column('streak_count', Integer, nullable=False, server_default='0'),
    Column('longest_streak', Integer, nullable=False, server_default='0'),
    Column('current_level', Integer, nullable=False, server_default='1'),
    Column('xp', Integer, nullable=False, server_default='0'),
    Column('primary_craving', String(50), nullable=True),
    Column('preferences', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    CheckConstraint('cravecoins >= 0', name='ck_user_accounts_balance_non_negative'),
    CheckConstraint('streak_count >= 0', name='ck_user_accounts_streak_non_negative'),
)

# Shop catalog (read-only to the economy engine)
shop_items = Table(
    'shop_items',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('category', String(20), nullable=False),  # consumable | utility | cosmetic
    Column('price_coins', Integer, nullable=False),
    Column('tier_required', String(20), nullable=False, server_default='free'),
    Column('effects', JSON, nullable=False),
    Column('expires_after_days', Integer, nullable=True),
    Column('description', Text, nullable=True),
    Column('icon', String(20), nullable=True),
    Column('active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_shop_items_active_price', 'active', 'price_coins'),
)

# Level catalog (read-only)
levels = Table(
    'levels',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('level_number', Integer, nullable=False, unique=True),
    Column('title', String(200), nullable=False),
    Column('craving_type', String(50), nullable=True),
    Column('xp_reward', Integer, nullable=False, server_default='0'),
    Column('coin_reward', Integer, nullable=False, server_default='0'),
)

# Depletable inventory; rows at quantity 0 are deleted, never kept
user_inventory = Table(
    'user_inventory',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), ForeignKey('user_accounts.user_id'), nullable=False),
    Column('item_id', String(100), ForeignKey('shop_items.id'), nullable=False),
    Column('quantity', Integer, nullable=False),
    Column('purchased_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('expires_at', Date, nullable=True),
    UniqueConstraint('user_id', 'item_id', name='uq_user_inventory_user_item'),
    CheckConstraint('quantity > 0', name='ck_user_inventory_quantity_positive'),
    Index('idx_user_inventory_user', 'user_id'),
    Index('idx_user_inventory_expires', 'expires_at'),
)

# Append-only purchase ledger
user_purchases = Table(
    'user_purchases',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), ForeignKey('user_accounts.user_id'), nullable=False),
    Column('item_id', String(100), ForeignKey('shop_items.id'), nullable=False),
    Column('quantity', Integer, nullable=False),
    Column('amount_coins', Integer, nullable=False),
    Column('purchased_at', DateTime(timezone=True), nullable=False),
    CheckConstraint('quantity > 0', name='ck_user_purchases_quantity_positive'),
    CheckConstraint('amount_coins >= 0', name='ck_user_purchases_amount_non_negative'),
    Index('idx_user_purchases_user_purchased', 'user_id', 'purchased_at'),
)

# Streak pause windows (start/end inclusive, reward-zone calendar dates)
streak_pauses = Table(
    'streak_pauses',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), ForeignKey('user_accounts.user_id'), nullable=False),
    Column('inventory_entry_id', String(100), nullable=True),
    Column('start_date', Date, nullable=False),
    Column('end_date', Date, nullable=False),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    CheckConstraint('end_date >= start_date', name='ck_streak_pauses_window'),
    Index('idx_streak_pauses_user_window', 'user_id', 'is_active', 'start_date', 'end_date'),
)

# Permanent cosmetic unlocks, one per (user, theme)
user_themes = Table(
    'user_themes',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), ForeignKey('user_accounts.user_id'), nullable=False),
    Column('theme_id', String(100), nullable=False),
    Column('theme_data', JSON, nullable=False),
    Column('unlocked_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('user_id', 'theme_id', name='uq_user_themes_user_theme'),
)

# Level completions, earned or skipped
user_progress = Table(
    'user_progress',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), ForeignKey('user_accounts.user_id'), nullable=False),
    Column('level_id', String(100), ForeignKey('levels.id'), nullable=False),
    Column('level_number', Integer, nullable=False),
    Column('completed_at', DateTime(timezone=True), nullable=False),
    Column('skipped', Boolean, nullable=False, server_default=false()),
    Column('xp_awarded', Integer, nullable=False, server_default='0'),
    Column('coins_awarded', Integer, nullable=False, server_default='0'),
    UniqueConstraint('user_id', 'level_id', name='uq_user_progress_user_level'),
    Index('idx_user_progress_user', 'user_id'),
)

# Active theme selection
user_settings = Table(
    'user_settings',
    metadata,
    Column('user_id', String(100), ForeignKey('user_accounts.user_id'), primary_key=True),
    Column('active_theme_id', String(100), nullable=True),
    Column('theme_personalization', JSON, nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)
