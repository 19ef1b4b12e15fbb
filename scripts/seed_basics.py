import asyncio

import codejudge.database as database
from sqlalchemy import select

from codejudge.auth_token import create_access_token
from codejudge.models.problem import Problem
from codejudge.models.user import User


async def main() -> None:
    """Create base tables, seed a demo user and problem, and print a token for the user."""

    await database.init_models()
    async with database.async_session() as session:
        user = (await session.execute(select(User).where(User.username == "demo"))).scalar_one_or_none()
        if user is None:
            user = User(username="demo", name="Demo Student", email="demo@example.com")
            session.add(user)
        if (await session.execute(select(Problem.id).where(Problem.title == "Sum of Two"))).first() is None:
            session.add(
                Problem(
                    title="Sum of Two",
                    description="Read two integers and print their sum.",
                    difficulty="easy",
                    test_cases=[
                        {"input": "1 2\n", "expected_output": "3\n"},
                        {"input": "10 -4\n", "expected_output": "6\n"},
                    ],
                )
            )
        await session.commit()
        await session.refresh(user)
    print("Seeded demo user and problem.")
    print(f"Bearer token for demo (user_id={user.id}): {create_access_token({'user_id': user.id})}")


if __name__ == "__main__":
    asyncio.run(main())
