"""
Tests for frame fingerprinting and deduplication.
"""

from vtcapture.capture.fingerprint import FrameDeduplicator, fingerprint_state


class TestFingerprintState:
    """Tests for state hashing."""

    def test_digest_is_short_hex(self):
        """Fingerprints should be 16 hex characters."""
        digest = fingerprint_state("matrix(1, 0, 0, 1, 0, 0)|1|Hello#0.5")

        assert len(digest) == 16
        int(digest, 16)

    def test_same_state_same_digest(self):
        """Identical state strings should hash identically."""
        assert fingerprint_state("a|1|x") == fingerprint_state("a|1|x")
        assert fingerprint_state("a|1|x") != fingerprint_state("a|0.5|x")


class TestFrameDeduplicator:
    """Tests for duplicate classification."""

    def test_first_frame_is_never_duplicate(self):
        """With no prior fingerprint nothing is a duplicate."""
        dedup = FrameDeduplicator()

        assert dedup.classify("abc") is False

    def test_identical_run_accounting(self):
        """N identical fingerprints should classify as 1 unique and N-1 duplicates."""
        dedup = FrameDeduplicator()
        unique = duplicates = 0

        for _ in range(10):
            if dedup.classify("same"):
                duplicates += 1
            else:
                unique += 1
                dedup.commit("same")

        assert (unique, duplicates) == (1, 9)
        stats = dedup.get_stats()
        assert stats.frames_checked == 10
        assert stats.duplicates_detected == 9
        assert stats.unique_frames == 1

    def test_classify_does_not_commit(self):
        """classify() alone should not change the reference."""
        dedup = FrameDeduplicator()
        dedup.classify("a")

        assert dedup.prior is None
        assert dedup.classify("a") is False

    def test_compares_only_to_previous_frame(self):
        """A fingerprint seen earlier but not last is not a duplicate."""
        dedup = FrameDeduplicator()
        dedup.commit("a")
        dedup.commit("b")

        assert dedup.classify("a") is False
        assert dedup.classify("b") is True

    def test_reset_forgets_prior(self):
        """After reset the next frame is unique again."""
        dedup = FrameDeduplicator()
        dedup.commit("a")
        dedup.reset()

        assert dedup.classify("a") is False
        assert dedup.get_stats().resets == 1

    def test_disabled_never_reports_duplicates(self):
        """With dedup disabled every frame is unique."""
        dedup = FrameDeduplicator(enabled=False)
        dedup.commit("a")

        assert dedup.classify("a") is False
        assert dedup.prior is None

    def test_missing_fingerprint_is_unique(self):
        """A frame without a fingerprint cannot be a duplicate."""
        dedup = FrameDeduplicator()
        dedup.commit("a")

        assert dedup.classify(None) is False

    def test_stats_to_dict(self):
        dedup = FrameDeduplicator()
        dedup.commit("a")

        assert dedup.get_stats().to_dict() == {
            "frames_checked": 0,
            "duplicates_detected": 0,
            "unique_frames": 1,
            "resets": 0,
        }
