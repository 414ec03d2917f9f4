"""Seed the development database with an office admin and a demo family."""

import os

from app.backend.src.db import get_engine, session_scope
from app.backend.src.models.base import Base
from app.backend.src.services.seed import seed_development_data


def main() -> None:
    """Create tables (if needed) and ensure the demo records exist."""

    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    with session_scope() as session:
        auth0_sub = os.environ.get("AUTH0_DEMO_SUB")
        result = seed_development_data(session, auth0_sub=auth0_sub)
        session.flush()

        print("✅ Development data ready!")
        admin_status = "created" if result.admin_created else "unchanged"
        enrollment_status = "created" if result.enrollment_created else "unchanged"
        print(
            f"Admin ({admin_status}): {result.admin.name} <{result.admin.email}> "
            f"[id={result.admin.id}]"
        )
        print(
            f"Parent: {result.parent.name} <{result.parent.email}> [id={result.parent.id}]"
        )
        print(
            f"Enrollment ({enrollment_status}): {result.student.full_name} "
            f"[enrollment_id={result.enrollment.id}]"
        )
        print()
        if auth0_sub:
            print(f"Linked Auth0 subject: {auth0_sub}")
        else:
            print("Set AUTH0_DEMO_SUB to automatically link an Auth0 subject during seeding.")


if __name__ == "__main__":
    main()
