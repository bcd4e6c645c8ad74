from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.studiofinder.db import build_engine, make_sessionmaker


def load_models() -> None:
    """Import every model module so string relationships resolve outside the Flask app."""
    import app.studiofinder.models  # noqa: F401
    import app.studiofinder.modules.error_log.models  # noqa: F401
    import app.studiofinder.modules.memberships.models  # noqa: F401
    import app.studiofinder.modules.messages.models  # noqa: F401
    import app.studiofinder.modules.notifications.models  # noqa: F401
    import app.studiofinder.modules.rate_limiting.models  # noqa: F401
    import app.studiofinder.modules.reviews.models  # noqa: F401
    import app.studiofinder.modules.studios.models  # noqa: F401
    import app.studiofinder.modules.support.models  # noqa: F401


@contextmanager
def script_session(db_url: str):
    """Commit-on-success session for release/seed steps that run without the Flask app."""
    load_models()
    engine = build_engine(db_url)
    s: Session = make_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
