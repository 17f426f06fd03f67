import pytest

from services.artifact_store import FirebaseArtifactStore


class FakeBlob:
    def __init__(self, bucket, path):
        self.bucket = bucket
        self.path = path

    def upload_from_string(self, data, content_type=None):
        self.bucket.objects[self.path] = (data, content_type)

    def generate_signed_url(self, expiration, version):
        return f"https://storage.googleapis.com/bucket/{self.path}?v={version}&ttl={int(expiration.total_seconds())}"


class FakeBucket:
    def __init__(self):
        self.objects = {}

    def blob(self, path):
        return FakeBlob(self, path)


def test_blob_path_uses_extension_for_content_type():
    path = FirebaseArtifactStore.blob_path("sess-1", 5, "video/webm;codecs=vp9,opus")
    assert path.startswith("mock-interviews/sess-1/stage-5-")
    assert path.endswith(".webm")
    assert FirebaseArtifactStore.blob_path("sess-1", 5, "application/octet-stream").endswith(".bin")


@pytest.mark.asyncio
async def test_upload_then_sign():
    bucket = FakeBucket()
    store = FirebaseArtifactStore(bucket_factory=lambda: bucket)

    ref = await store.upload_recording("sess-1", 5, b"video-bytes", "video/webm")
    assert bucket.objects[ref] == (b"video-bytes", "video/webm")

    url = await store.playback_url(ref)
    assert url.startswith(f"https://storage.googleapis.com/bucket/{ref}?v=v4")
