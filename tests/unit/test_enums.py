"""Unit tests for StrEnum definitions."""

import pytest

from sqldao.enums import TransactionNesting


class TestTransactionNesting:
    """Tests for TransactionNesting enum."""

    def test_not_allowed_value(self):
        """NOT_ALLOWED should have string value 'not_allowed'."""
        assert TransactionNesting.NOT_ALLOWED == "not_allowed"
        assert TransactionNesting.NOT_ALLOWED.value == "not_allowed"

    def test_all_members(self):
        """TransactionNesting should have exactly 3 members."""
        assert len(TransactionNesting) == 3
        assert set(TransactionNesting) == {
            TransactionNesting.NOT_ALLOWED,
            TransactionNesting.NESTED,
            TransactionNesting.DETACHED,
        }

    @pytest.mark.parametrize("value", ["nested", "detached"])
    def test_lookup_by_value(self, value):
        """Members can be built from their config string."""
        assert TransactionNesting(value) == value

    def test_unknown_value_rejected(self):
        with pytest.raises(ValueError):
            TransactionNesting("sometimes")
