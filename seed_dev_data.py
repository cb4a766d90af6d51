"""Seed the development database with a demo shop and a queued invoice."""

import argparse

from app.backend.src.db import get_engine, session_scope
from app.backend.src.models.base import Base
from app.backend.src.services.entity_resolution import resolve_or_create_shop
from app.backend.src.services.invoice_queue import enqueue_invoice


def main(argv: list[str] | None = None) -> None:
    """Create tables (if needed), ensure the shop exists and queue one invoice."""

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("shop_id", help="Shop identifier, e.g. shop1")
    parser.add_argument("drive_file_id", nargs="?", default="test-file-id")
    args = parser.parse_args(argv)

    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    with session_scope() as session:
        shop = resolve_or_create_shop(session, args.shop_id, name=f"Shop {args.shop_id}")
        invoice = enqueue_invoice(
            session, shop_id=shop.shop_id, drive_file_id=args.drive_file_id
        )
        session.flush()

        print("✅ Development data ready!")
        print(f"Shop: {shop.name} [shop_id={shop.shop_id}]")
        print(f"Invoice: id={invoice.id} status={invoice.status} drive_file_id={invoice.drive_file_id}")


if __name__ == "__main__":
    main()
