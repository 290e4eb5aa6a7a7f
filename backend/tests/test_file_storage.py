from pathlib import Path

import pytest

from finance_importer.storage.file_storage import discard_staged, load_staged, stage_upload


def test_upload_is_staged_in_redis(fake_redis):
    location = stage_upload(b"Date,Amount\n", "job-1", "upload.csv")

    assert location == "redis:job-1"
    assert load_staged(location, "job-1") == b"Date,Amount\n"

    discard_staged(location, "job-1")
    with pytest.raises(FileNotFoundError):
        load_staged(location, "job-1")


def test_local_fallback_when_redis_is_down(fake_redis):
    fake_redis.available = False

    location = stage_upload(b"Date,Amount\n", "job-2", "upload.xlsx")

    path = Path(location)
    assert path.suffix == ".xlsx"
    assert load_staged(location, "job-2") == b"Date,Amount\n"

    discard_staged(location, "job-2")
    assert not path.exists()
