"""Tests for metadata and download-based checksum verification."""

from __future__ import annotations

import hashlib
from pathlib import Path
from unittest.mock import patch

from clients.s3_client import S3Client
from models.checksum_policy import ChecksumAlgorithm
from models.verification_result import VerificationOutcome, VerificationResult, combine_outcomes
from services import verification
from services.cancellation import CancellationToken
from services.checksum_record import write_checksum_record
from services.verification import LegacyVerifier, MetadataVerifier

from conftest import PREFIX, FakeS3, client_error, write_files


class TestMetadataVerifier:
    def test_all_objects_with_checksums_verify(self, fake_s3: FakeS3, s3_client: S3Client) -> None:
        for name in ("a", "b", "c"):
            fake_s3.put(f"{PREFIX}{name}", b"x", checksums={"ChecksumCRC64NVME": "AAAAAAAAAAA="})

        result = MetadataVerifier(s3_client).verify(ChecksumAlgorithm.CRC64NVME)

        assert result.verified_count == 3
        assert result.outcome is VerificationOutcome.VERIFIED
        # Metadata verification never downloads content
        assert fake_s3.download_calls == []

    def test_objects_without_checksum_are_partial(self, fake_s3: FakeS3, s3_client: S3Client) -> None:
        fake_s3.put(f"{PREFIX}new", b"x", checksums={"ChecksumCRC64NVME": "AAAAAAAAAAA="})
        fake_s3.put(f"{PREFIX}legacy", b"x")

        result = MetadataVerifier(s3_client).verify(ChecksumAlgorithm.CRC64NVME)

        assert result.verified_count == 1
        assert result.missing_count == 1
        assert result.error_count == 0
        assert result.outcome is VerificationOutcome.PARTIAL

    def test_request_failure_is_an_error(self, fake_s3: FakeS3, s3_client: S3Client) -> None:
        fake_s3.put(f"{PREFIX}a", b"x", checksums={"ChecksumCRC64NVME": "AAAAAAAAAAA="})
        fake_s3.put(f"{PREFIX}b", b"x")
        fake_s3.head_errors[f"{PREFIX}b"] = client_error("InternalError", "HeadObject")

        result = MetadataVerifier(s3_client).verify(ChecksumAlgorithm.CRC64NVME)

        assert result.verified_count == 1
        assert result.error_count == 1
        assert result.outcome is VerificationOutcome.FAILED

    def test_empty_destination_verifies(self, s3_client: S3Client) -> None:
        result = MetadataVerifier(s3_client).verify(ChecksumAlgorithm.CRC64NVME)

        assert result.total_checked == 0
        assert result.outcome is VerificationOutcome.VERIFIED

    def test_cancellation_fails_verification(self, fake_s3: FakeS3, s3_client: S3Client) -> None:
        fake_s3.put(f"{PREFIX}a", b"x", checksums={"ChecksumCRC64NVME": "AAAAAAAAAAA="})
        token = CancellationToken()
        token.cancel()

        result = MetadataVerifier(s3_client).verify(ChecksumAlgorithm.CRC64NVME, token)

        assert result.cancelled
        assert result.verified_count == 0
        assert result.outcome is VerificationOutcome.FAILED


class TestLegacyVerifier:
    def _upload(self, fake_s3: FakeS3, source_dir: Path, files: dict[str, bytes]) -> None:
        write_files(source_dir, files)
        for relative_path, body in files.items():
            fake_s3.put(f"{PREFIX}{relative_path}", body)

    def test_matching_digests_verify(self, fake_s3: FakeS3, s3_client: S3Client, source_dir: Path,
                                     tmp_path: Path) -> None:
        self._upload(fake_s3, source_dir, {"a.txt": b"a" * 10, "dir/b.txt": b"b" * 20})
        record = tmp_path / "checksums.txt"
        write_checksum_record(source_dir, record)

        result = LegacyVerifier(s3_client).verify(record)

        assert result.verified_count == 2
        assert result.outcome is VerificationOutcome.VERIFIED
        assert sorted(fake_s3.download_calls) == [f"{PREFIX}a.txt", f"{PREFIX}dir/b.txt"]

    def test_corrupted_object_is_an_error(self, fake_s3: FakeS3, s3_client: S3Client, source_dir: Path,
                                          tmp_path: Path) -> None:
        self._upload(fake_s3, source_dir, {"a.txt": b"a", "b.txt": b"b"})
        fake_s3.corrupt_downloads.add(f"{PREFIX}b.txt")
        record = tmp_path / "checksums.txt"
        write_checksum_record(source_dir, record)

        result = LegacyVerifier(s3_client).verify(record)

        assert result.verified_count == 1
        assert result.error_count == 1
        assert "b.txt: checksum mismatch" in result.errors[0]
        assert result.outcome is VerificationOutcome.FAILED

    def test_mismatch_reports_expected_and_actual_digests(
        self, fake_s3: FakeS3, s3_client: S3Client, source_dir: Path, tmp_path: Path
    ) -> None:
        self._upload(fake_s3, source_dir, {"b.txt": b"b"})
        fake_s3.corrupt_downloads.add(f"{PREFIX}b.txt")
        record = tmp_path / "checksums.txt"
        write_checksum_record(source_dir, record)
        expected = hashlib.sha256(b"b").hexdigest()
        actual = hashlib.sha256(b"bcorrupted").hexdigest()

        with patch.object(verification.logger, "error") as log_error:
            result = LegacyVerifier(s3_client).verify(record)

        assert result.errors == [f"b.txt: checksum mismatch (expected {expected}, actual {actual})"]
        mismatch = next(c for c in log_error.call_args_list if c.args[0] == "Checksum mismatch")
        assert mismatch.kwargs["extra"]["expected"] == expected
        assert mismatch.kwargs["extra"]["actual"] == actual

    def test_missing_object_is_an_error(self, fake_s3: FakeS3, s3_client: S3Client, source_dir: Path,
                                        tmp_path: Path) -> None:
        self._upload(fake_s3, source_dir, {"a.txt": b"a"})
        write_files(source_dir, {"never-uploaded.txt": b"z"})
        record = tmp_path / "checksums.txt"
        write_checksum_record(source_dir, record)

        result = LegacyVerifier(s3_client).verify(record)

        assert result.error_count == 1
        assert "never-uploaded.txt: failed to download from S3" in result.errors

    def test_cancellation_fails_verification(self, fake_s3: FakeS3, s3_client: S3Client, source_dir: Path,
                                             tmp_path: Path) -> None:
        self._upload(fake_s3, source_dir, {"a.txt": b"a"})
        record = tmp_path / "checksums.txt"
        write_checksum_record(source_dir, record)
        token = CancellationToken()
        token.cancel()

        result = LegacyVerifier(s3_client).verify(record, token)

        assert result.cancelled
        assert fake_s3.download_calls == []


class TestCombineOutcomes:
    def test_nothing_ran(self) -> None:
        assert combine_outcomes([]) is VerificationOutcome.NOT_RUN

    def test_worst_outcome_wins(self) -> None:
        verified = VerificationResult(strategy="metadata", verified_count=3)
        partial = VerificationResult(strategy="metadata", verified_count=2, missing_count=1)
        failed = VerificationResult(strategy="legacy")
        failed.add_error("a.txt: checksum mismatch")

        assert combine_outcomes([verified, partial]) is VerificationOutcome.PARTIAL
        assert combine_outcomes([partial, failed]) is VerificationOutcome.FAILED
        assert combine_outcomes([verified]) is VerificationOutcome.VERIFIED
