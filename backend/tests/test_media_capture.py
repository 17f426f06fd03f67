import pytest

from services.errors import PermissionDeniedError, RecordingError, UploadError
from services.media_capture import CaptureState, MediaCapture


def _capture(**kwargs):
    capture = MediaCapture("sess-1", 5, **kwargs)
    capture.grant_permission(True)
    return capture


def test_start_requires_permission():
    capture = MediaCapture("sess-1", 5)
    with pytest.raises(PermissionDeniedError) as exc:
        capture.start()
    assert exc.value.retryable

    capture.grant_permission(False, "NotAllowedError")
    with pytest.raises(PermissionDeniedError):
        capture.start()
    assert capture.state == CaptureState.IDLE


def test_chunks_while_paused_are_dropped():
    capture = _capture()
    capture.start()
    capture.append_chunk(b"a" * 10)
    capture.pause()
    capture.append_chunk(b"b" * 10)
    capture.resume()
    capture.append_chunk(b"c" * 5)

    blob = capture.stop()
    assert blob.data == b"a" * 10 + b"c" * 5
    assert blob.chunk_count == 2
    assert capture.state == CaptureState.STOPPED
    assert capture.stop() is blob


def test_exceeding_max_bytes_fails_the_recording():
    capture = _capture(max_bytes=16)
    capture.start()
    capture.append_chunk(b"x" * 10)
    with pytest.raises(RecordingError):
        capture.append_chunk(b"x" * 10)
    assert capture.state == CaptureState.FAILED


def test_stop_without_data_fails():
    capture = _capture()
    capture.start()
    with pytest.raises(RecordingError):
        capture.stop()
    assert capture.state == CaptureState.FAILED


def test_chunk_before_start_is_an_error():
    capture = _capture()
    with pytest.raises(RecordingError):
        capture.append_chunk(b"early")


@pytest.mark.asyncio
async def test_upload_retries_then_returns_ref(flaky_artifacts, instant_sleep):
    capture = _capture()
    capture.start()
    capture.append_chunk(b"v" * (2 * 1024 * 1024 + 100))
    capture.stop()

    uploader = flaky_artifacts(failures=2)
    ref = await capture.upload(uploader, retries=2, backoff=0, sleep=instant_sleep)
    assert ref == "mock-interviews/sess-1/stage-5.webm"
    assert uploader.attempts == 3
    assert uploader.uploads[0][2] == 2 * 1024 * 1024 + 100

    # a sealed upload is not repeated
    assert await capture.upload(uploader, sleep=instant_sleep) == ref
    assert uploader.attempts == 3


@pytest.mark.asyncio
async def test_upload_gives_up_after_retries(flaky_artifacts, instant_sleep):
    capture = _capture()
    capture.start()
    capture.append_chunk(b"data")
    capture.stop()

    uploader = flaky_artifacts(failures=5)
    with pytest.raises(UploadError) as exc:
        await capture.upload(uploader, retries=1, backoff=0, sleep=instant_sleep)
    assert exc.value.retryable
    assert uploader.attempts == 2
    assert capture.artifact_ref is None


def test_release_discards_buffered_chunks():
    capture = _capture()
    capture.start()
    capture.append_chunk(b"data")
    capture.release()
    assert capture.state == CaptureState.RELEASED
    assert capture.size == 0
