"""Tests for cms_vault.files — CredentialFileStore."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from cms_vault.certificates import build_subject
from cms_vault.errors import ConfirmationRequiredError, IoError, NotFoundError
from cms_vault.files import CredentialFileStore


@pytest.fixture()
def files(tmp_path: Path) -> CredentialFileStore:
    return CredentialFileStore(tmp_path / "credentials")


class TestCredentialFileStore:
    def test_path_uses_subject(self, files: CredentialFileStore) -> None:
        subject = build_subject("svc1")
        assert files.path_for(subject).name == f"{subject}.txt"

    def test_write_creates_directory(self, files: CredentialFileStore) -> None:
        subject = build_subject("svc1")
        path = files.write(subject, b"envelope")
        assert files.directory.is_dir()
        assert files.read(path) == b"envelope"
        assert files.exists(subject)

    def test_write_refuses_overwrite_without_confirmation(
        self, files: CredentialFileStore
    ) -> None:
        subject = build_subject("svc1")
        files.write(subject, b"first")
        with pytest.raises(ConfirmationRequiredError):
            files.write(subject, b"second")
        assert files.read(files.path_for(subject)) == b"first"

    def test_overwrite_when_confirmed(self, files: CredentialFileStore) -> None:
        subject = build_subject("svc1")
        files.write(subject, b"first")
        files.write(subject, b"second", overwrite=True)
        assert files.read(files.path_for(subject)) == b"second"

    def test_list_all_in_write_order(self, files: CredentialFileStore) -> None:
        subjects = [build_subject("svc1") for _ in range(5)]
        for subject in subjects:
            files.write(subject, b"x")
        assert [p.stem for p in files.list_all("svc1")] == subjects

    def test_rewrite_moves_file_to_newest(self, files: CredentialFileStore) -> None:
        first, second = build_subject("svc1"), build_subject("svc1")
        files.write(first, b"a")
        files.write(second, b"b")
        files.write(first, b"c", overwrite=True)
        assert files.find_latest("svc1") == files.path_for(first)

    def test_write_order_beats_future_mtime(self, files: CredentialFileStore) -> None:
        old = build_subject("svc1")
        old_path = files.write(old, b"a")
        future = old_path.stat().st_mtime_ns + 10_000_000_000
        os.utime(old_path, ns=(future, future))

        new = build_subject("svc1")
        files.write(new, b"b")
        assert files.find_latest("svc1") == files.path_for(new)

    def test_list_all_is_exact(self, files: CredentialFileStore) -> None:
        own = build_subject("svc1")
        files.write(own, b"a")
        files.write(build_subject("svc1-extra"), b"b")
        (files.directory / "notes.txt").write_text("unrelated")
        assert files.list_all("svc1") == [files.path_for(own)]

    def test_find_latest_none(self, files: CredentialFileStore) -> None:
        assert files.find_latest("svc1") is None
        assert files.list_identities() == []

    def test_list_identities(self, files: CredentialFileStore) -> None:
        for identity in ("beta", "alpha", "beta"):
            files.write(build_subject(identity), b"x")
        assert files.list_identities() == ["alpha", "beta"]

    def test_read_missing_file(self, files: CredentialFileStore, tmp_path: Path) -> None:
        with pytest.raises(NotFoundError):
            files.read(tmp_path / "missing.txt")

    def test_delete(self, files: CredentialFileStore) -> None:
        subject = build_subject("svc1")
        path = files.write(subject, b"x")
        files.delete(path)
        assert not files.exists(subject)

    def test_delete_missing_raises_io_error(self, files: CredentialFileStore) -> None:
        with pytest.raises(IoError):
            files.delete(files.path_for(build_subject("svc1")))

    def test_write_failure_raises_io_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = CredentialFileStore(blocker / "credentials")
        with pytest.raises(IoError):
            store.write(build_subject("svc1"), b"x")
