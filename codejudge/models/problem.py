from sqlalchemy import CheckConstraint, Column, DateTime, Integer, JSON, String, Text, func

from codejudge.database import Base

DIFFICULTIES = ("easy", "medium", "hard")


class Problem(Base):
    __tablename__ = "problems"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    difficulty = Column(String(10), nullable=False, default="easy")
    # Ordered list of {"input": ..., "expected_output": ...}; order drives execution.
    test_cases = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        CheckConstraint(
            "difficulty IN (" + ", ".join(f"'{d}'" for d in DIFFICULTIES) + ")",
            name="ck_problems_difficulty",
        ),
    )

    def __repr__(self) -> str:
        return f"<Problem id={self.id} title={self.title!r}>"
