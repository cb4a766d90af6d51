from app.backend.src.core.config import get_settings
from app.backend.src.db.session import build_engine
from app.backend.src.models import *  # noqa
from app.backend.src.models.base import Base

def init_db():
    engine = build_engine(get_settings().database_url)
    print(f"🚀 Connecting to {engine.url.render_as_string(hide_password=True)}")
    Base.metadata.create_all(bind=engine)
    print("✅ Tables created successfully!")

if __name__ == "__main__":
    init_db()
