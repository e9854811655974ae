import pytest

from security.passwords import hash_password, password_matches


def test_hash_matches_only_its_own_password():
    stored = hash_password("s3cret-pass")

    assert stored != "s3cret-pass"
    assert password_matches(stored, "s3cret-pass")
    assert not password_matches(stored, "S3cret-pass")


def test_hashes_are_salted():
    assert hash_password("s3cret-pass") != hash_password("s3cret-pass")


@pytest.mark.parametrize("stored", ["", "s3cret-pass"])
def test_unrecognised_stored_value_never_matches(stored):
    assert not password_matches(stored, "s3cret-pass")
