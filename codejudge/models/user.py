from sqlalchemy import Column, Integer, String, DateTime, func

from codejudge.database import Base


class User(Base):
    """Minimal user record; profile management lives outside the judging core."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), unique=True, nullable=False)
    name = Column(String(120), nullable=True)
    email = Column(String(255), unique=True, nullable=True)
    created_at = Column(DateTime, default=func.now())

    @property
    def display_name(self) -> str:
        return self.name or self.username
