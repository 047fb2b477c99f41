from authentify.core.logging import setup_logging
from authentify.db.session import SessionLocal
from authentify.services.sessions import SessionManager


def main() -> int:
    setup_logging()
    db = SessionLocal()
    try:
        removed = SessionManager().sweep_expired(db)
        db.commit()
        print(f"ok: expired sessions removed={removed}")
        return removed
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
