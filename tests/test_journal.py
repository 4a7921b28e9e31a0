"""
Tests for the relay journal.
"""

import pytest

from nano_relay.journal import RelayJournal, parse_database_url

ORIGINAL = "nano_3i1aq1cchnmbn9x5rsbap8b15akfh7wj7pwskuzi7ahz8oq6cobd99d4r3b7"
SECONDARY = "nano_3t6k35gi95xu6tergt6p69ck76ogmitsa8mnijtpxm9fkcm736xtoncuohr3"


@pytest.fixture
def journal(tmp_path):
    journal = RelayJournal(f"sqlite:///{tmp_path / 'journal.db'}")
    yield journal
    journal.close()


class TestRelayJournal:
    """Tests for recording relay progress."""

    def test_start_creates_in_progress_entry(self, journal) -> None:
        relay_id = journal.start(ORIGINAL, SECONDARY, "ab" * 32)

        record = journal.get(relay_id)

        assert record is not None
        assert record.status == "in_progress"
        assert record.step == "idle"
        assert record.block_hashes == {}
        assert record.amount_raw is None

    def test_record_step_keeps_exact_amount(self, journal) -> None:
        relay_id = journal.start(ORIGINAL, SECONDARY, "ab" * 32)
        amount = 2**127 + 3

        journal.record_step(relay_id, "sent_out", "01" * 32, amount)
        journal.record_step(relay_id, "received_by_secondary", "02" * 32, amount)

        record = journal.get(relay_id)
        assert record.step == "received_by_secondary"
        assert record.amount_raw == amount
        assert record.block_hashes == {
            "sent_out": "01" * 32,
            "received_by_secondary": "02" * 32,
        }

    def test_unknown_step_rejected(self, journal) -> None:
        relay_id = journal.start(ORIGINAL, SECONDARY, "ab" * 32)
        with pytest.raises(KeyError):
            journal.record_step(relay_id, "teleported", "01" * 32)

    def test_unfinished_listing(self, journal) -> None:
        done = journal.start(ORIGINAL, SECONDARY, "ab" * 32)
        stuck = journal.start(ORIGINAL, SECONDARY, "ab" * 32)
        running = journal.start(ORIGINAL, SECONDARY, "ab" * 32)

        journal.mark_completed(done)
        journal.mark_aborted(stuck, "no receivable")

        unfinished = journal.list_unfinished()

        assert [r.id for r in unfinished] == [stuck, running]
        assert unfinished[0].error == "no receivable"

    def test_find_by_secondary_newest_first(self, journal) -> None:
        first = journal.start(ORIGINAL, SECONDARY, "ab" * 32)
        second = journal.start(ORIGINAL, SECONDARY, "ab" * 32)
        journal.start(SECONDARY, ORIGINAL, "cd" * 32)

        assert [r.id for r in journal.find_by_secondary(SECONDARY)] == [second, first]

    def test_missing_record(self, journal) -> None:
        assert journal.get(12345) is None


class TestDatabaseUrl:
    """Tests for URL normalization."""

    def test_postgres_scheme_normalized(self) -> None:
        assert parse_database_url("postgres://u:p@h/db") == "postgresql://u:p@h/db"

    def test_sqlite_untouched(self) -> None:
        assert parse_database_url("sqlite:///./relay.db") == "sqlite:///./relay.db"

    def test_password_masked(self, journal) -> None:
        assert journal._mask_url("postgresql://u:secret@h/db") == "postgresql://u:***@h/db"
