"""
Comment endpoint tests — posting, threading, cooldown, and the deletion
cascade (replies and attached image files).
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms import storage
from blogcms.config import settings
from blogcms.models import Comment
from blogcms.services import comment_service

from factories import auth_headers, make_comment, make_post, make_user


def _write_upload(public_dir, name: str) -> tuple[str, object]:
    """Create a fake stored image and return (public_url, path)."""
    path = public_dir / "uploads" / "comments" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x89PNG")
    return f"/uploads/comments/{name}", path


async def _comment_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(Comment))).scalar_one()


# ---------------------------------------------------------------------------
# Posting
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_add_comment(async_client: AsyncClient, db_session: AsyncSession):
    reader = await make_user(db_session, "reader")
    post = await make_post(db_session, reader, slug="hello")

    resp = await async_client.post(
        "/api/v1/posts/hello/comments",
        json={"content": "Great article!", "image_url": "/uploads/comments/x.png"},
        headers=auth_headers(reader),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["content"] == "Great article!"
    assert body["article_id"] == post.id
    assert body["author_id"] == reader.id
    assert body["author"]["username"] == "reader"
    assert body["image_url"] == "/uploads/comments/x.png"
    assert body["parent_id"] is None


@pytest.mark.asyncio
async def test_add_comment_requires_session(async_client: AsyncClient, db_session: AsyncSession):
    reader = await make_user(db_session, "reader")
    await make_post(db_session, reader, slug="hello")

    resp = await async_client.post("/api/v1/posts/hello/comments", json={"content": "Hi"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_add_comment_rejects_invalid_token(async_client: AsyncClient, db_session: AsyncSession):
    reader = await make_user(db_session, "reader")
    await make_post(db_session, reader, slug="hello")

    resp = await async_client.post(
        "/api/v1/posts/hello/comments",
        json={"content": "Hi"},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_comment_content_length_validated(async_client: AsyncClient, db_session: AsyncSession):
    reader = await make_user(db_session, "reader")
    await make_post(db_session, reader, slug="hello")

    empty = await async_client.post(
        "/api/v1/posts/hello/comments", json={"content": ""}, headers=auth_headers(reader)
    )
    too_long = await async_client.post(
        "/api/v1/posts/hello/comments", json={"content": "x" * 1001}, headers=auth_headers(reader)
    )
    assert empty.status_code == 422
    assert too_long.status_code == 422


@pytest.mark.asyncio
async def test_comment_on_missing_post(async_client: AsyncClient, db_session: AsyncSession):
    reader = await make_user(db_session, "reader")
    resp = await async_client.post(
        "/api/v1/posts/ghost/comments", json={"content": "Hi"}, headers=auth_headers(reader)
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_reply_to_missing_parent(async_client: AsyncClient, db_session: AsyncSession):
    reader = await make_user(db_session, "reader")
    await make_post(db_session, reader, slug="hello")
    resp = await async_client.post(
        "/api/v1/posts/hello/comments",
        json={"content": "Hi", "parent_id": 4242},
        headers=auth_headers(reader),
    )
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Parent comment not found"


@pytest.mark.asyncio
async def test_comment_cooldown(async_client: AsyncClient, db_session: AsyncSession):
    reader = await make_user(db_session, "reader")
    await make_post(db_session, reader, slug="hello")

    first = await async_client.post(
        "/api/v1/posts/hello/comments", json={"content": "One"}, headers=auth_headers(reader)
    )
    second = await async_client.post(
        "/api/v1/posts/hello/comments", json={"content": "Two"}, headers=auth_headers(reader)
    )
    assert first.status_code == 201
    assert second.status_code == 429
    assert 1 <= second.json()["retry_after"] <= 5
    assert "Retry-After" in second.headers


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_comments_builds_tree(async_client: AsyncClient, db_session: AsyncSession):
    author = await make_user(db_session, "author")
    post = await make_post(db_session, author, slug="thread")
    older = await make_comment(db_session, post, author, "older root")
    newer = await make_comment(db_session, post, author, "newer root")
    reply = await make_comment(db_session, post, author, "reply", parent=older)
    await make_comment(db_session, post, author, "nested", parent=reply)

    resp = await async_client.get("/api/v1/posts/thread/comments")
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_top_level"] == 2
    assert body["total_all"] == 4
    assert body["has_more"] is False

    roots = body["comments"]
    assert [r["id"] for r in roots] == [newer.id, older.id]
    assert roots[1]["replies"][0]["content"] == "reply"
    assert roots[1]["replies"][0]["replies"][0]["content"] == "nested"
    assert roots[1]["replies"][0]["author"]["username"] == "author"


@pytest.mark.asyncio
async def test_list_comments_paginates_roots(async_client: AsyncClient, db_session: AsyncSession):
    author = await make_user(db_session, "author")
    post = await make_post(db_session, author, slug="busy")
    for i in range(3):
        await make_comment(db_session, post, author, f"root {i}")

    resp = await async_client.get("/api/v1/posts/busy/comments", params={"page": 1, "limit": 2})
    body = resp.json()
    assert len(body["comments"]) == 2
    assert body["has_more"] is True

    resp = await async_client.get("/api/v1/posts/busy/comments", params={"page": 2, "limit": 2})
    body = resp.json()
    assert len(body["comments"]) == 1
    assert body["has_more"] is False


@pytest.mark.asyncio
async def test_list_comments_missing_post(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/posts/ghost/comments")
    assert resp.status_code == 404


def test_build_comment_tree_drops_orphans_and_sorts_replies():
    flat = [
        {"id": 1, "parent_id": None, "created_at": "2024-01-01T00:00:00"},
        {"id": 3, "parent_id": 1, "created_at": "2024-01-03T00:00:00"},
        {"id": 2, "parent_id": 1, "created_at": "2024-01-02T00:00:00"},
        {"id": 4, "parent_id": 99, "created_at": "2024-01-04T00:00:00"},
    ]
    tree = comment_service.build_comment_tree(flat)
    assert len(tree) == 1
    assert [r["id"] for r in tree[0]["replies"]] == [2, 3]


# ---------------------------------------------------------------------------
# Deletion cascade
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_comment_removes_replies_and_images(
    async_client: AsyncClient, db_session: AsyncSession, public_dir
):
    owner = await make_user(db_session, "owner")
    other = await make_user(db_session, "other")
    post = await make_post(db_session, owner, slug="cascade")

    root_url, root_path = _write_upload(public_dir, "root.png")
    r1_url, r1_path = _write_upload(public_dir, "reply1.png")
    r2_url, r2_path = _write_upload(public_dir, "reply2.png")

    root = await make_comment(db_session, post, owner, "root", image_url=root_url)
    await make_comment(db_session, post, other, "reply 1", parent=root, image_url=r1_url)
    await make_comment(db_session, post, owner, "reply 2", parent=root, image_url=r2_url)
    survivor = await make_comment(db_session, post, other, "unrelated")

    resp = await async_client.delete(f"/api/v1/comments/{root.id}", headers=auth_headers(owner))
    assert resp.status_code == 200
    assert resp.json() == {"success": True}

    assert not root_path.exists()
    assert not r1_path.exists()
    assert not r2_path.exists()

    remaining = (await db_session.execute(select(Comment.id))).scalars().all()
    assert remaining == [survivor.id]


@pytest.mark.asyncio
async def test_delete_comment_cascades_to_nested_replies(async_client: AsyncClient, db_session: AsyncSession):
    owner = await make_user(db_session, "owner")
    post = await make_post(db_session, owner, slug="deep")
    root = await make_comment(db_session, post, owner, "root")
    reply = await make_comment(db_session, post, owner, "reply", parent=root)
    await make_comment(db_session, post, owner, "nested", parent=reply)

    resp = await async_client.delete(f"/api/v1/comments/{root.id}", headers=auth_headers(owner))
    assert resp.status_code == 200
    assert await _comment_count(db_session) == 0


@pytest.mark.asyncio
async def test_delete_comment_requires_session(async_client: AsyncClient, db_session: AsyncSession):
    owner = await make_user(db_session, "owner")
    post = await make_post(db_session, owner, slug="p")
    root = await make_comment(db_session, post, owner)

    resp = await async_client.delete(f"/api/v1/comments/{root.id}")
    assert resp.status_code == 401
    assert await _comment_count(db_session) == 1


@pytest.mark.asyncio
async def test_delete_comment_by_non_author_is_forbidden(
    async_client: AsyncClient, db_session: AsyncSession, public_dir
):
    owner = await make_user(db_session, "owner")
    intruder = await make_user(db_session, "intruder")
    post = await make_post(db_session, owner, slug="p")
    url, path = _write_upload(public_dir, "keep.png")
    root = await make_comment(db_session, post, owner, image_url=url)
    await make_comment(db_session, post, owner, "reply", parent=root)

    resp = await async_client.delete(f"/api/v1/comments/{root.id}", headers=auth_headers(intruder))
    assert resp.status_code == 403
    assert path.exists()
    assert await _comment_count(db_session) == 2


@pytest.mark.asyncio
async def test_delete_missing_comment(async_client: AsyncClient, db_session: AsyncSession):
    owner = await make_user(db_session, "owner")
    resp = await async_client.delete("/api/v1/comments/999", headers=auth_headers(owner))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_image_cleanup_failure_does_not_block_delete(
    async_client: AsyncClient, db_session: AsyncSession, public_dir, monkeypatch
):
    owner = await make_user(db_session, "owner")
    post = await make_post(db_session, owner, slug="p")
    bad_url, bad_path = _write_upload(public_dir, "bad.png")
    good_url, good_path = _write_upload(public_dir, "good.png")
    root = await make_comment(db_session, post, owner)
    await make_comment(db_session, post, owner, "bad", parent=root, image_url=bad_url)
    await make_comment(db_session, post, owner, "good", parent=root, image_url=good_url)

    real_delete = storage.delete_comment_image

    async def flaky_delete(image_url):
        if image_url == bad_url:
            raise OSError("disk unavailable")
        return await real_delete(image_url)

    monkeypatch.setattr(storage, "delete_comment_image", flaky_delete)

    resp = await async_client.delete(f"/api/v1/comments/{root.id}", headers=auth_headers(owner))
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert bad_path.exists()
    assert not good_path.exists()
    assert await _comment_count(db_session) == 0


@pytest.mark.asyncio
async def test_reply_image_already_gone_is_noop(async_client: AsyncClient, db_session: AsyncSession):
    owner = await make_user(db_session, "owner")
    post = await make_post(db_session, owner, slug="p")
    root = await make_comment(db_session, post, owner)
    await make_comment(
        db_session, post, owner, "reply", parent=root, image_url="/uploads/comments/missing.png"
    )

    resp = await async_client.delete(f"/api/v1/comments/{root.id}", headers=auth_headers(owner))
    assert resp.status_code == 200
    assert await _comment_count(db_session) == 0


@pytest.mark.asyncio
async def test_delete_storage_error_returns_500(
    async_client: AsyncClient, db_session: AsyncSession, monkeypatch
):
    owner = await make_user(db_session, "owner")
    post = await make_post(db_session, owner, slug="p")
    root = await make_comment(db_session, post, owner)

    async def _explode(db, comment_id, requester_id):
        raise RuntimeError("constraint check failed")

    monkeypatch.setattr(comment_service, "delete_comment", _explode)

    resp = await async_client.delete(f"/api/v1/comments/{root.id}", headers=auth_headers(owner))
    assert resp.status_code == 500
    assert resp.json()["error"] == "Failed to delete comment"
    assert resp.json()["details"] == "constraint check failed"

    monkeypatch.setattr(settings, "APP_ENV", "production")
    resp = await async_client.delete(f"/api/v1/comments/{root.id}", headers=auth_headers(owner))
    assert resp.status_code == 500
    assert "details" not in resp.json()


@pytest.mark.asyncio
async def test_delete_commit_failure_returns_500_and_keeps_rows(
    async_client: AsyncClient, db_session: AsyncSession, monkeypatch
):
    """A failure while committing the delete goes through the same 500 path."""
    owner = await make_user(db_session, "owner")
    post = await make_post(db_session, owner, slug="p")
    root = await make_comment(db_session, post, owner)
    await make_comment(db_session, post, owner, "reply", parent=root)

    pending_failures = [RuntimeError("commit lost")]
    real_commit = AsyncSession.commit

    async def _commit_failing_once(self):
        if pending_failures:
            raise pending_failures.pop()
        await real_commit(self)

    monkeypatch.setattr(AsyncSession, "commit", _commit_failing_once)

    resp = await async_client.delete(f"/api/v1/comments/{root.id}", headers=auth_headers(owner))
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to delete comment", "details": "commit lost"}
    assert await _comment_count(db_session) == 2
