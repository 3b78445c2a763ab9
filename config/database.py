"""
Database Configuration and Management (SQLAlchemy)

Handles database setup, subscriptions and the monitoring history log.
"""

import os
import shutil
from pathlib import Path
from datetime import datetime, timedelta
import logging
from sqlalchemy import create_engine, select, delete, func, case
from sqlalchemy.orm import sessionmaker
from config.models import Base, Subscription, MonitoringHistory

logger = logging.getLogger(__name__)

# Database configuration
PROJECT_ROOT = Path(__file__).parent.parent
DB_PATH = Path(os.getenv("DATABASE_PATH", PROJECT_ROOT / "data" / "gifts_monitor.db"))
BACKUP_DIR = PROJECT_ROOT / "backups"

SUBSCRIPTION_FIELDS = ('item_name', 'model', 'background', 'pattern', 'is_active')

# SQLAlchemy Engine and Session
engine = None
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

def configure_database(database_url=None):
    """
    Bind the session factory to a database.

    Args:
        database_url (str, optional): SQLAlchemy URL. Defaults to the SQLite file at DB_PATH.

    Returns:
        sqlalchemy.engine.Engine: The new engine
    """
    global engine

    if database_url is None:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        database_url = f"sqlite:///{DB_PATH}"

    if engine is not None:
        engine.dispose()

    engine = create_engine(database_url, echo=False)
    SessionLocal.configure(bind=engine)
    return engine

def get_db_session():
    """
    Get a new database session.

    Returns:
        sqlalchemy.orm.Session: Database session
    """
    if engine is None:
        configure_database()
    return SessionLocal()

def init_database():
    """
    Initialize the database with all required tables.
    """
    logger.info("Initializing database...")

    if engine is None:
        configure_database()

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully!")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise

def backup_database():
    """
    Create a backup of the database.
    """
    if not DB_PATH.exists():
        logger.warning("Database file does not exist, cannot create backup")
        return None

    BACKUP_DIR.mkdir(exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = BACKUP_DIR / f"gifts_monitor_backup_{timestamp}.db"

    try:
        shutil.copy2(DB_PATH, backup_path)
        logger.info(f"Database backed up to: {backup_path}")
        return str(backup_path)
    except Exception as e:
        logger.error(f"Error creating backup: {e}")
        return None

def _subscription_to_dict(sub):
    return {
        'subscription_id': sub.subscription_id,
        'user_id': sub.user_id,
        'item_name': sub.item_name,
        'model': sub.model,
        'background': sub.background,
        'pattern': sub.pattern,
        'is_active': bool(sub.is_active),
        'created_at': sub.created_at,
        'updated_at': sub.updated_at,
    }

def _history_to_dict(record):
    return {
        'history_id': record.history_id,
        'subscription_id': record.subscription_id,
        'count': record.count,
        'checked_at': record.checked_at,
        'has_changed': bool(record.has_changed),
    }

# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------

def create_subscription(user_id, item_name, model=None, background=None, pattern=None, is_active=True):
    """
    Create a new subscription.

    Returns:
        dict or None: The stored subscription
    """
    session = get_db_session()
    try:
        sub = Subscription(
            user_id=user_id,
            item_name=item_name,
            model=model or None,
            background=background or None,
            pattern=pattern or None,
            is_active=is_active,
        )
        session.add(sub)
        session.commit()
        logger.info(f"Created subscription {sub.subscription_id}: user {user_id}, item {item_name}")
        return _subscription_to_dict(sub)
    except Exception as e:
        logger.error(f"Error creating subscription: {e}")
        session.rollback()
        return None
    finally:
        session.close()

def get_subscription(subscription_id):
    """
    Get subscription details by ID.
    """
    session = get_db_session()
    try:
        sub = session.get(Subscription, subscription_id)
        return _subscription_to_dict(sub) if sub else None
    except Exception as e:
        logger.error(f"Error fetching subscription {subscription_id}: {e}")
        return None
    finally:
        session.close()

def list_user_subscriptions(user_id):
    """
    Get all subscriptions for a user, newest first.
    """
    session = get_db_session()
    try:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
        )
        return [_subscription_to_dict(s) for s in session.execute(stmt).scalars().all()]
    except Exception as e:
        logger.error(f"Error fetching subscriptions for user {user_id}: {e}")
        return []
    finally:
        session.close()

def list_all_subscriptions():
    """
    Get every subscription, active or not.
    """
    session = get_db_session()
    try:
        stmt = select(Subscription).order_by(Subscription.subscription_id)
        return [_subscription_to_dict(s) for s in session.execute(stmt).scalars().all()]
    except Exception as e:
        logger.error(f"Error fetching subscriptions: {e}")
        return []
    finally:
        session.close()

def list_active_subscriptions():
    """
    Get all active subscriptions.

    Raises on database errors: the monitoring cycle counts this as a failure.
    """
    session = get_db_session()
    try:
        stmt = (
            select(Subscription)
            .where(Subscription.is_active.is_(True))
            .order_by(Subscription.created_at.asc(), Subscription.subscription_id.asc())
        )
        return [_subscription_to_dict(s) for s in session.execute(stmt).scalars().all()]
    except Exception as e:
        logger.error(f"Error fetching active subscriptions: {e}")
        raise
    finally:
        session.close()

def update_subscription(subscription_id, **fields):
    """
    Update filter fields or the active flag of a subscription.
    """
    unknown = set(fields) - set(SUBSCRIPTION_FIELDS)
    if unknown:
        raise ValueError(f"Unknown subscription fields: {', '.join(sorted(unknown))}")

    session = get_db_session()
    try:
        sub = session.get(Subscription, subscription_id)
        if not sub:
            return None

        for name, value in fields.items():
            if name != 'is_active' and value == '':
                value = None
            setattr(sub, name, value)

        session.commit()
        logger.info(f"Updated subscription {subscription_id}: {', '.join(fields)}")
        return _subscription_to_dict(sub)
    except Exception as e:
        logger.error(f"Error updating subscription {subscription_id}: {e}")
        session.rollback()
        return None
    finally:
        session.close()

def set_subscription_active(subscription_id, active):
    """
    Pause or resume a subscription.

    Returns:
        dict or None: The updated subscription, None if it does not exist
    """
    return update_subscription(subscription_id, is_active=bool(active))

def delete_subscription(subscription_id):
    """
    Delete a subscription (cascade will handle its history).
    """
    session = get_db_session()
    try:
        sub = session.get(Subscription, subscription_id)
        if not sub:
            return False
        session.delete(sub)
        session.commit()
        logger.info(f"Deleted subscription {subscription_id}")
        return True
    except Exception as e:
        logger.error(f"Error deleting subscription {subscription_id}: {e}")
        session.rollback()
        return False
    finally:
        session.close()

# ---------------------------------------------------------------------------
# Monitoring history
# ---------------------------------------------------------------------------

def latest_history_for(subscription_id):
    """
    Get the most recent accepted observation for a subscription.

    Returns:
        dict or None: Row with the highest history_id, None if never observed
    """
    session = get_db_session()
    try:
        stmt = (
            select(MonitoringHistory)
            .where(MonitoringHistory.subscription_id == subscription_id)
            .order_by(MonitoringHistory.history_id.desc())
            .limit(1)
        )
        record = session.execute(stmt).scalar_one_or_none()
        return _history_to_dict(record) if record else None
    except Exception as e:
        logger.error(f"Error fetching latest history for subscription {subscription_id}: {e}")
        raise
    finally:
        session.close()

def append_history(subscription_id, count, changed):
    """
    Append one accepted observation to the history log.
    """
    session = get_db_session()
    try:
        record = MonitoringHistory(
            subscription_id=subscription_id,
            count=count,
            has_changed=bool(changed),
            checked_at=datetime.now(),
        )
        session.add(record)
        session.commit()
        logger.debug(f"History for subscription {subscription_id}: count={count}, changed={changed}")
        return _history_to_dict(record)
    except Exception as e:
        logger.error(f"Error writing history for subscription {subscription_id}: {e}")
        session.rollback()
        raise
    finally:
        session.close()

def get_history_for(subscription_id, limit=None):
    """
    Get history rows for a subscription, newest first.
    """
    session = get_db_session()
    try:
        stmt = (
            select(MonitoringHistory)
            .where(MonitoringHistory.subscription_id == subscription_id)
            .order_by(MonitoringHistory.history_id.desc())
        )
        if limit:
            stmt = stmt.limit(limit)
        return [_history_to_dict(r) for r in session.execute(stmt).scalars().all()]
    except Exception as e:
        logger.error(f"Error fetching history for subscription {subscription_id}: {e}")
        return []
    finally:
        session.close()

def get_changed_history(limit=None):
    """
    Get history rows that recorded a change, newest first.
    """
    session = get_db_session()
    try:
        stmt = (
            select(MonitoringHistory)
            .where(MonitoringHistory.has_changed.is_(True))
            .order_by(MonitoringHistory.history_id.desc())
        )
        if limit:
            stmt = stmt.limit(limit)
        return [_history_to_dict(r) for r in session.execute(stmt).scalars().all()]
    except Exception as e:
        logger.error(f"Error fetching changed history: {e}")
        return []
    finally:
        session.close()

def get_history_stats(subscription_id):
    """
    Aggregate the history of one subscription.
    """
    empty = {
        'total_checks': 0,
        'total_changes': 0,
        'average_count': 0,
        'min_count': 0,
        'max_count': 0,
        'last_check': None,
    }
    session = get_db_session()
    try:
        stmt = (
            select(
                func.count(MonitoringHistory.history_id),
                func.sum(case((MonitoringHistory.has_changed.is_(True), 1), else_=0)),
                func.avg(MonitoringHistory.count),
                func.min(MonitoringHistory.count),
                func.max(MonitoringHistory.count),
                func.max(MonitoringHistory.checked_at),
            )
            .where(MonitoringHistory.subscription_id == subscription_id)
        )
        total, changes, average, minimum, maximum, last_check = session.execute(stmt).one()
        if not total:
            return empty
        return {
            'total_checks': total,
            'total_changes': changes or 0,
            'average_count': float(average or 0),
            'min_count': minimum or 0,
            'max_count': maximum or 0,
            'last_check': last_check,
        }
    except Exception as e:
        logger.error(f"Error aggregating history for subscription {subscription_id}: {e}")
        return empty
    finally:
        session.close()

def delete_old_history(days_to_keep=30):
    """
    Delete history rows older than the retention window.

    The latest row of every subscription is kept so baselines survive the sweep.
    """
    session = get_db_session()
    try:
        cutoff = datetime.now() - timedelta(days=days_to_keep)
        latest_ids = (
            select(func.max(MonitoringHistory.history_id))
            .group_by(MonitoringHistory.subscription_id)
        )
        stmt = (
            delete(MonitoringHistory)
            .where(MonitoringHistory.checked_at < cutoff)
            .where(MonitoringHistory.history_id.not_in(latest_ids))
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)
        session.commit()

        if result.rowcount > 0:
            logger.info(f"Cleaned up {result.rowcount} history rows older than {days_to_keep} days")
        return result.rowcount
    except Exception as e:
        logger.error(f"Error cleaning up monitoring history: {e}")
        session.rollback()
        return 0
    finally:
        session.close()
