"""Database seeder: posts with randomly shaped comment threads."""
import asyncio
import argparse
import random
import time
from datetime import datetime, timezone, timedelta

from app.database import engine, async_session, Base
from app.models import Comment, Post

AUTHORS = ["alice", "bob", "carol", "dave", "erin", "frank", "grace", "heidi"]
TOPICS = ["python", "fastapi", "postgresql", "redis", "caching", "recursion",
          "testing", "performance", "asyncio", "sqlalchemy"]


async def seed(small: bool = False):
    num_posts = 20 if small else 1000
    top_level_per_post = 3 if small else 10
    max_depth = 3 if small else 6

    print(f"Seeding: {num_posts} posts, up to {top_level_per_post} threads each, depth <= {max_depth}")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    total_comments = 0
    async with async_session() as session:
        for i in range(num_posts):
            created = datetime.now(timezone.utc) - timedelta(days=random.randint(0, 365))
            post = Post(
                title=f"Post {i}: notes on {random.choice(TOPICS)}",
                content=f"This is the full content of post {i}. " * 20,
                author=random.choice(AUTHORS),
                created_at=created,
                updated_at=created,
            )
            session.add(post)
            await session.flush()

            # Breadth-first: each level replies to a random subset of the previous one.
            level: list[Comment] = []
            for _ in range(random.randint(1, top_level_per_post)):
                level.append(Comment(
                    post_id=post.id,
                    content=f"Thoughts on post {i}",
                    author=random.choice(AUTHORS),
                ))
            depth = 0
            while level and depth < max_depth:
                session.add_all(level)
                await session.flush()
                total_comments += len(level)
                replies = []
                for parent in level:
                    for _ in range(random.randint(0, 2)):
                        replies.append(Comment(
                            post_id=post.id,
                            parent_id=parent.id,
                            content=f"Reply to #{parent.id}",
                            author=random.choice(AUTHORS),
                        ))
                level = replies
                depth += 1

            if i % 100 == 0:
                print(f"  Post {i}: {total_comments} comments so far")

        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Posts: {num_posts}")
    print(f"  Comments: {total_comments}")


def main():
    parser = argparse.ArgumentParser(description="Seed the blog database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (20 posts)")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
