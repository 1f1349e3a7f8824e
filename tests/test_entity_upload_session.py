import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from portal_core import path_policy
from portal_core.errors import SessionStateError, StorageError, ValidationError
from portal_core.models import FileType, IncomingFile, SessionMode, SessionStatus, StoredFile
from portal_core.storage import StorageGateway
from services.upload_sessions.app.entity_session import (
    EntityUploadSession, open_create_session, open_edit_session, open_session,
)


@pytest.fixture
def mock_gateway():
    """Gateway double that 'uploads' to real-looking final paths and counts deletes."""
    gateway = MagicMock(spec=StorageGateway)

    async def fake_upload(file, entity_type, entity_id, file_type):
        bucket, path = path_policy.build_path(entity_type, entity_id, file_type, file.name)
        return StoredFile(bucket=bucket, path=path, url=f"https://cdn.test/{bucket}/{path}")

    gateway.upload_entity_image = AsyncMock(side_effect=fake_upload)
    gateway.delete = AsyncMock(return_value=None)
    gateway.cleanup_entity_folder = AsyncMock(return_value=1)
    return gateway


def image(name="photo.png") -> IncomingFile:
    return IncomingFile(name=name, content_type="image/png", data=b"\x89PNG")

# --- Construction ---

def test_unknown_entity_type_raises(mock_gateway):
    with pytest.raises(ValueError):
        EntityUploadSession("podcast", SessionMode.CREATE, mock_gateway)


def test_edit_session_requires_entity_id(mock_gateway):
    with pytest.raises(SessionStateError):
        EntityUploadSession("author", SessionMode.EDIT, mock_gateway)


def test_edit_session_is_active_on_construction(mock_gateway):
    session = EntityUploadSession("author", "edit", mock_gateway, existing_entity_id="author-1")
    assert session.is_active
    assert session.status == SessionStatus.ACTIVE
    assert session.entity_id == "author-1"


def test_create_session_starts_uninitialized(mock_gateway):
    session = EntityUploadSession("article", SessionMode.CREATE, mock_gateway)
    assert not session.is_active
    assert session.status == SessionStatus.UNINITIALIZED
    assert session.entity_id is None


def test_initialize_is_idempotent_while_active(mock_gateway):
    session = EntityUploadSession("article", SessionMode.CREATE, mock_gateway)
    first = session.initialize_session()
    assert session.initialize_session() == first
    assert session.entity_id == first


def test_open_session_factories(mock_gateway):
    create = open_create_session("brief", mock_gateway)
    assert create.is_active and create.mode == SessionMode.CREATE

    edit = open_edit_session("company", "company-5", mock_gateway)
    assert edit.entity_id == "company-5" and edit.mode == SessionMode.EDIT

    assert open_session("author", "create", mock_gateway).is_active

# --- Uploads ---

@pytest.mark.asyncio
async def test_upload_requires_active_session(mock_gateway):
    session = EntityUploadSession("article", SessionMode.CREATE, mock_gateway)
    with pytest.raises(SessionStateError):
        await session.upload_direct(image(), FileType.PRIMARY)
    mock_gateway.upload_entity_image.assert_not_called()


@pytest.mark.asyncio
async def test_two_uploads_share_entity_prefix_with_distinct_paths(mock_gateway):
    session = open_create_session("article", mock_gateway)

    first = await session.upload_direct(image("a.png"), FileType.PRIMARY)
    second = await session.upload_direct(image("b.png"), FileType.PRIMARY)

    assert len(session.uploaded_files) == 2
    assert first.final_path.split("/")[0] == second.final_path.split("/")[0] == session.entity_id
    assert first.final_path != second.final_path
    assert first.original_name == "a.png"


@pytest.mark.asyncio
async def test_entity_id_is_stable_across_uploads(mock_gateway):
    session = open_create_session("author", mock_gateway)
    entity_id = session.entity_id

    await session.upload_direct(image(), FileType.PRIMARY)
    await session.upload_direct(image(), FileType.SECONDARY)

    calls = mock_gateway.upload_entity_image.await_args_list
    assert [c.args[2] for c in calls] == [entity_id, entity_id]
    assert session.entity_id == entity_id


@pytest.mark.asyncio
async def test_concurrent_uploads_are_all_recorded(mock_gateway):
    session = open_create_session("article", mock_gateway)

    results = await asyncio.gather(*(session.upload_direct(image(f"{i}.png"), FileType.SECONDARY) for i in range(5)))

    assert len(session.uploaded_files) == 5
    assert {f.url for f in session.uploaded_files} == {r.url for r in results}


@pytest.mark.asyncio
async def test_validation_error_propagates_and_records_nothing(mock_gateway):
    mock_gateway.upload_entity_image.side_effect = ValidationError("File size must be less than 2MB")
    session = open_create_session("author", mock_gateway)

    with pytest.raises(ValidationError):
        await session.upload_direct(image(), FileType.PRIMARY)
    assert session.uploaded_files == []


@pytest.mark.asyncio
async def test_storage_error_propagates(mock_gateway):
    mock_gateway.upload_entity_image.side_effect = StorageError("Failed to upload image", bucket="featured-images")
    session = open_create_session("article", mock_gateway)

    with pytest.raises(StorageError):
        await session.upload_direct(image(), FileType.PRIMARY)
    assert session.is_active


@pytest.mark.asyncio
async def test_upload_finishing_after_cleanup_is_not_attributed(mock_gateway):
    session = open_create_session("article", mock_gateway)
    await session.upload_direct(image(), FileType.PRIMARY)
    release = asyncio.Event()
    original = mock_gateway.upload_entity_image.side_effect

    async def slow_upload(*args):
        await release.wait()
        return await original(*args)

    mock_gateway.upload_entity_image.side_effect = slow_upload
    upload_task = asyncio.create_task(session.upload_direct(image("late.png"), FileType.PRIMARY))
    await asyncio.sleep(0)

    await session.cleanup()
    release.set()
    late = await upload_task

    assert late.original_name == "late.png"
    assert session.uploaded_files == []
    assert session.status == SessionStatus.CLEANED_UP

# --- Removal ---

@pytest.mark.asyncio
async def test_remove_upload_deletes_object_and_record(mock_gateway):
    session = open_create_session("article", mock_gateway)
    kept = await session.upload_direct(image("keep.png"), FileType.PRIMARY)
    dropped = await session.upload_direct(image("drop.png"), FileType.SECONDARY)

    await session.remove_upload(dropped.url)

    mock_gateway.delete.assert_awaited_once_with(dropped.bucket, dropped.final_path)
    assert [f.url for f in session.uploaded_files] == [kept.url]


@pytest.mark.asyncio
async def test_remove_unknown_url_is_a_no_op(mock_gateway):
    session = open_create_session("article", mock_gateway)
    await session.upload_direct(image(), FileType.PRIMARY)
    before = session.state

    await session.remove_upload("https://cdn.test/featured-images/other/x.png")

    mock_gateway.delete.assert_not_called()
    assert session.state == before


@pytest.mark.asyncio
async def test_remove_upload_failure_keeps_record(mock_gateway):
    mock_gateway.delete.side_effect = StorageError("Failed to delete image")
    session = open_create_session("article", mock_gateway)
    uploaded = await session.upload_direct(image(), FileType.PRIMARY)

    with pytest.raises(StorageError):
        await session.remove_upload(uploaded.url)
    assert len(session.uploaded_files) == 1

# --- Commit / cleanup ---

@pytest.mark.asyncio
async def test_cleanup_after_commit_issues_no_deletes(mock_gateway):
    session = open_create_session("article", mock_gateway)
    await session.upload_direct(image(), FileType.PRIMARY)
    entity_id = session.entity_id

    assert session.commit_create() == entity_id
    assert not session.is_active
    await session.cleanup()

    mock_gateway.cleanup_entity_folder.assert_not_called()
    mock_gateway.delete.assert_not_called()
    assert session.status == SessionStatus.COMMITTED


@pytest.mark.asyncio
async def test_edit_cleanup_never_deletes(mock_gateway):
    session = open_edit_session("author", "author-1", mock_gateway)
    await session.upload_direct(image(), FileType.PRIMARY)
    await session.upload_direct(image(), FileType.SECONDARY)

    await session.cleanup()

    mock_gateway.cleanup_entity_folder.assert_not_called()
    mock_gateway.delete.assert_not_called()
    assert not session.is_active


@pytest.mark.asyncio
async def test_abandoned_create_session_deletes_entity_folder_once(mock_gateway):
    session = open_create_session("article", mock_gateway)
    entity_id = session.entity_id
    await session.upload_direct(image(), FileType.PRIMARY)

    await session.cleanup()

    mock_gateway.cleanup_entity_folder.assert_awaited_once_with("article", entity_id)
    mock_gateway.delete.assert_not_called()
    assert session.state is None
    assert session.status == SessionStatus.CLEANED_UP


@pytest.mark.asyncio
async def test_cleanup_without_uploads_touches_nothing(mock_gateway):
    session = open_create_session("company", mock_gateway)
    await session.cleanup()
    mock_gateway.cleanup_entity_folder.assert_not_called()


@pytest.mark.asyncio
async def test_cleanup_swallows_storage_failures(mock_gateway):
    mock_gateway.cleanup_entity_folder.side_effect = StorageError("Failed to delete folder")
    session = open_create_session("article", mock_gateway)
    await session.upload_direct(image(), FileType.PRIMARY)

    await session.cleanup()

    assert session.state is None
    assert session.status == SessionStatus.CLEANED_UP


@pytest.mark.asyncio
async def test_cleanup_is_terminal(mock_gateway):
    session = open_create_session("article", mock_gateway)
    await session.cleanup()
    with pytest.raises(SessionStateError):
        session.initialize_session()


def test_commit_create_on_edit_session_is_logged_not_raised(mock_gateway):
    session = open_edit_session("author", "author-1", mock_gateway)
    assert session.commit_create() is None
    assert session.is_active
    assert session.status == SessionStatus.ACTIVE


def test_commit_edit_session_deactivates(mock_gateway):
    session = open_edit_session("author", "author-1", mock_gateway)
    assert session.commit() == "author-1"
    assert not session.is_active
    assert session.status == SessionStatus.COMMITTED


def test_commit_create_twice_is_a_no_op(mock_gateway):
    session = open_create_session("article", mock_gateway)
    entity_id = session.commit_create()
    assert session.commit_create() is None
    assert session.entity_id == entity_id


@pytest.mark.asyncio
async def test_reset_is_terminal_without_storage_calls(mock_gateway):
    session = open_create_session("article", mock_gateway)
    await session.upload_direct(image(), FileType.PRIMARY)

    session.reset()

    assert session.state is None
    assert not session.is_active
    assert session.status == SessionStatus.CLEANED_UP
    with pytest.raises(SessionStateError):
        session.initialize_session()
    with pytest.raises(SessionStateError):
        await session.upload_direct(image(), FileType.PRIMARY)
    mock_gateway.cleanup_entity_folder.assert_not_called()
    mock_gateway.delete.assert_not_called()


def test_reset_after_commit_keeps_committed_status(mock_gateway):
    session = open_create_session("article", mock_gateway)
    session.commit_create()
    session.reset()
    assert session.status == SessionStatus.COMMITTED
    with pytest.raises(SessionStateError):
        session.initialize_session()


def test_close_is_terminal_without_storage_calls(mock_gateway):
    session = open_create_session("article", mock_gateway)
    session.close()
    assert session.status == SessionStatus.CLEANED_UP
    mock_gateway.cleanup_entity_folder.assert_not_called()
